"""
Capability probing for one environment.

Each capability is proven by the smallest read that needs it. A failed read is
recorded as an unavailable :class:`CapabilityStatus`; nothing is raised, so the
comparison can degrade section by section instead of failing outright.
"""

import logging
from typing import Callable, Dict, Tuple

from envdrift.models import Capability, CapabilityStatus, EnvironmentCapabilityMatrix

logger = logging.getLogger(__name__)

# capability -> (reader method, message, reason code)
METADATA_CHECKS: Dict[Capability, Tuple[str, str, str]] = {
    Capability.TABLES: (
        "probe_tables",
        "Cannot read table metadata from information_schema",
        "TABLES_READ_FAILED",
    ),
    Capability.COLUMNS: (
        "probe_columns",
        "Cannot read column metadata from information_schema",
        "COLUMNS_READ_FAILED",
    ),
    Capability.CONSTRAINTS: (
        "probe_constraints",
        "Cannot read constraint metadata from information_schema",
        "CONSTRAINTS_READ_FAILED",
    ),
    Capability.INDEXES: (
        "probe_indexes",
        "Cannot read index metadata from pg_catalog",
        "INDEXES_READ_FAILED",
    ),
    Capability.MIGRATION_LEDGER: (
        "probe_migration_ledger",
        "Cannot read migration ledger (flyway_schema_history)",
        "MIGRATION_LEDGER_READ_FAILED",
    ),
    Capability.GRANTS: (
        "probe_grants",
        "Cannot read grant metadata from information_schema",
        "GRANTS_READ_FAILED",
    ),
}


def _attempt(check: Callable[[], object], capability: Capability, message: str, code: str) -> CapabilityStatus:
    try:
        check()
    except Exception as e:
        logger.warning("%s capability check failed: %s", capability.value, e)
        return CapabilityStatus.unavailable(message, code)
    return CapabilityStatus.ok()


class CapabilityProbe:

    def probe(self, environment_name: str, connection_id: str, reader) -> EnvironmentCapabilityMatrix:
        """Build the full capability matrix for ``reader``.

        When the connection itself cannot be opened every other capability is
        marked unavailable with ``CONNECT_FAILED`` without further reads.
        """
        logger.info("Probing capabilities for %s (%s)", environment_name, connection_id)

        connect = _attempt(reader.check_connect, Capability.CONNECT,
                           "Cannot establish connection", "CONNECT_FAILED")
        if not connect.available:
            denied = CapabilityStatus.unavailable("Not checked: connection failed", "CONNECT_FAILED")
            statuses = {c.value: denied for c in Capability}
            statuses[Capability.CONNECT.value] = connect
            return EnvironmentCapabilityMatrix(environment_name, connection_id, **statuses)

        statuses = {
            Capability.CONNECT.value: connect,
            Capability.IDENTITY.value: self._check_identity(reader),
        }
        for capability, (method, message, code) in METADATA_CHECKS.items():
            statuses[capability.value] = _attempt(getattr(reader, method), capability, message, code)

        matrix = EnvironmentCapabilityMatrix(environment_name, connection_id, **statuses)
        missing = matrix.unavailable()
        if missing:
            logger.info("%s capabilities unavailable: %s", environment_name, ", ".join(c.value for c in missing))
        return matrix

    @staticmethod
    def _check_identity(reader) -> CapabilityStatus:
        try:
            identity = reader.identity()
        except Exception as e:
            logger.warning("identity capability check failed: %s", e)
            return CapabilityStatus.unavailable("Permission denied reading identity", "IDENTITY_PERMISSION_DENIED")
        if identity is None:
            return CapabilityStatus.unavailable("Cannot read identity", "IDENTITY_READ_FAILED")
        return CapabilityStatus.ok()
