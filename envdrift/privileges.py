import logging
from typing import List, Optional

from envdrift.catalog import DEFAULT_LEDGER_TABLE
from envdrift.models import Capability, EnvironmentCapabilityMatrix, PrivilegeRequirement

logger = logging.getLogger(__name__)

GRANTEE = "<your_user>"


class PrivilegeGapAnalyzer:
    """Turns unavailable capabilities into the grants that would unblock them."""

    def __init__(self, ledger_table: str = DEFAULT_LEDGER_TABLE):
        self.ledger_table = ledger_table
        # capability -> (label, catalog object)
        self.requirements = [
            (Capability.COLUMNS, "Columns", "information_schema.columns"),
            (Capability.CONSTRAINTS, "Constraints", "information_schema.table_constraints"),
            (Capability.INDEXES, "Indexes", "pg_catalog.pg_indexes"),
            (Capability.MIGRATION_LEDGER, "Migration Ledger", ledger_table),
        ]

    def analyze(self, capabilities: EnvironmentCapabilityMatrix) -> List[PrivilegeRequirement]:
        missing = []
        for capability, label, catalog_object in self.requirements:
            status = capabilities.status(capability)
            if status.available:
                continue
            missing.append(PrivilegeRequirement(
                capability=label,
                reason=f"SELECT on {catalog_object}",
                message=status.message,
                required_grants=[f"GRANT SELECT ON {catalog_object} TO {GRANTEE}"],
            ))
        if missing:
            logger.info("%s is missing %d metadata privilege(s)", capabilities.environment_name, len(missing))
        return missing

    def render_request_script(self, requirements: List[PrivilegeRequirement], target_env: str) -> Optional[str]:
        """Render a copy-pasteable grant request, or None when nothing is missing."""
        if not requirements:
            return None

        lines = [
            "-- Privilege Request for Environment Comparison",
            f"-- Target Environment: {target_env}",
            "-- Purpose: Enable full schema drift detection",
            "",
            "-- These grants provide read-only metadata access",
            "-- No data access is granted",
            "",
            "-- Grant read access to information_schema (standard SQL catalog)",
            "-- Note: information_schema is typically readable by default, but may be restricted",
            f"-- GRANT SELECT ON ALL TABLES IN SCHEMA information_schema TO {GRANTEE};",
            "",
            "-- Grant read access to pg_catalog (PostgreSQL system catalog)",
            f"GRANT SELECT ON pg_catalog.pg_indexes TO {GRANTEE};",
            f"GRANT SELECT ON pg_catalog.pg_constraint TO {GRANTEE};",
            f"GRANT SELECT ON pg_catalog.pg_class TO {GRANTEE};",
            "",
            "-- Optional: Grant access to the migration ledger (if Flyway is in use)",
            f"GRANT SELECT ON {self.ledger_table} TO {GRANTEE};",
            "",
            "-- Minimal privilege set (if above is too broad):",
        ]
        for req in requirements:
            lines.append(f"-- {req.capability}: {req.reason}")
            lines.extend(f"{grant};" for grant in req.required_grants)
            lines.append("")
        lines.append("-- After applying grants, reconnect and re-run comparison")
        return "\n".join(lines) + "\n"
