"""
Read-only catalog queries against one PostgreSQL environment.

Every method opens its own short-lived connection from the engine pool and
raises SQLAlchemy errors unchanged; the probe and drift layers turn those into
unavailable capabilities or sections.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import text
from sqlalchemy.engine import Engine

from envdrift.connections import CONNECT_TIMEOUT_SECONDS, ConnectionContext, build_engine
from envdrift.models import (
    ColumnInfo,
    ConstraintInfo,
    Identity,
    IndexInfo,
    InstalledBySummary,
    MigrationRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "public.flyway_schema_history"
INSTALLED_BY_LIMIT = 10

# ---- probe queries ----
Q_PROBE_CONNECT = "SELECT 1"

Q_IDENTITY = "SELECT current_user AS curr_user, current_database() AS db"

Q_PROBE_TABLES = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = :schema
LIMIT 1
"""

Q_PROBE_COLUMNS = """
SELECT column_name, data_type
FROM information_schema.columns
WHERE table_schema = :schema
LIMIT 1
"""

Q_PROBE_CONSTRAINTS = """
SELECT constraint_name, constraint_type
FROM information_schema.table_constraints
WHERE table_schema = :schema
LIMIT 1
"""

Q_PROBE_INDEXES = """
SELECT indexname
FROM pg_catalog.pg_indexes
WHERE schemaname = :schema
LIMIT 1
"""

Q_PROBE_GRANTS = """
SELECT grantee, privilege_type
FROM information_schema.table_privileges
WHERE table_schema = :schema
LIMIT 1
"""

# ---- metadata queries ----
Q_LIST_TABLES = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = :schema
  AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

Q_LIST_TABLES_BY_NAME = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = :schema
  AND table_name = ANY(:names)
ORDER BY table_name
"""

Q_COLUMNS = """
SELECT column_name, data_type, is_nullable, column_default
FROM information_schema.columns
WHERE table_schema = :schema AND table_name = :table
ORDER BY ordinal_position
"""

# NOT NULL constraints are reported with OID-derived names that never match
# across environments; nullability is covered by the columns section.
Q_CONSTRAINTS = """
SELECT
  tc.constraint_name,
  tc.constraint_type,
  pg_get_constraintdef(c.oid, true) AS definition
FROM information_schema.table_constraints tc
LEFT JOIN pg_catalog.pg_namespace ns ON ns.nspname = tc.constraint_schema
LEFT JOIN pg_catalog.pg_constraint c
  ON c.conname = tc.constraint_name AND c.connamespace = ns.oid
WHERE tc.table_schema = :schema
  AND tc.table_name = :table
  AND tc.constraint_name NOT LIKE '%_not_null'
ORDER BY tc.constraint_name
"""

Q_INDEXES = """
SELECT
  i.indexname,
  i.indexdef,
  COALESCE(ix.indisunique, false) AS is_unique,
  COALESCE(ix.indisprimary, false) AS is_primary
FROM pg_catalog.pg_indexes i
LEFT JOIN pg_catalog.pg_namespace n ON n.nspname = i.schemaname
LEFT JOIN pg_catalog.pg_class ic ON ic.relname = i.indexname AND ic.relnamespace = n.oid
LEFT JOIN pg_catalog.pg_index ix ON ix.indexrelid = ic.oid
WHERE i.schemaname = :schema AND i.tablename = :table
ORDER BY i.indexname
"""


def _ledger_queries(ledger_table: str) -> Dict[str, str]:
    return {
        "probe": f"SELECT version FROM {ledger_table} LIMIT 1",
        "latest": f"""
SELECT installed_rank, version, description, type, script, installed_by,
       installed_on, execution_time, success
FROM {ledger_table}
WHERE success = true
ORDER BY installed_rank DESC
LIMIT 1
""",
        "failed_count": f"SELECT count(*) AS cnt FROM {ledger_table} WHERE success = false",
        "installed_by": f"""
SELECT installed_by, count(*) AS applied_count, max(installed_on) AS last_seen
FROM {ledger_table}
GROUP BY installed_by
ORDER BY applied_count DESC, installed_by
LIMIT :limit
""",
        "history_after": f"""
SELECT installed_rank, version, description, type, script, installed_by,
       installed_on, execution_time, success
FROM {ledger_table}
WHERE installed_rank > :rank
ORDER BY installed_rank
""",
    }


def _record(row) -> MigrationRecord:
    return MigrationRecord(
        rank=row["installed_rank"],
        version=row["version"],
        description=row["description"],
        type=row["type"],
        script=row["script"],
        installed_by=row["installed_by"],
        installed_on=row["installed_on"],
        execution_time_ms=row["execution_time"],
        success=row["success"],
    )


class CatalogReader:
    """Catalog access for one environment scoped to ``schema``."""

    def __init__(self, engine: Engine, schema: str, ledger_table: str = DEFAULT_LEDGER_TABLE):
        self.engine = engine
        self.schema = schema
        self._ledger = _ledger_queries(ledger_table)

    @classmethod
    def from_context(cls, ctx: ConnectionContext, schema: Optional[str] = None,
                     ledger_table: str = DEFAULT_LEDGER_TABLE,
                     connect_timeout: int = CONNECT_TIMEOUT_SECONDS) -> "CatalogReader":
        return cls(build_engine(ctx, connect_timeout), schema or ctx.schema, ledger_table)

    def close(self) -> None:
        """Release pooled connections held against the environment."""
        self.engine.dispose()

    def _rows(self, sql: str, **params) -> List[dict]:
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(text(sql), params).mappings().all()]

    # ---- probes: return normally when the read succeeds ----
    def check_connect(self) -> None:
        self._rows(Q_PROBE_CONNECT)

    def identity(self) -> Optional[Identity]:
        rows = self._rows(Q_IDENTITY)
        if not rows:
            return None
        return Identity(current_user=rows[0]["curr_user"], database=rows[0]["db"])

    def probe_tables(self) -> None:
        self._rows(Q_PROBE_TABLES, schema=self.schema)

    def probe_columns(self) -> None:
        self._rows(Q_PROBE_COLUMNS, schema=self.schema)

    def probe_constraints(self) -> None:
        self._rows(Q_PROBE_CONSTRAINTS, schema=self.schema)

    def probe_indexes(self) -> None:
        self._rows(Q_PROBE_INDEXES, schema=self.schema)

    def probe_migration_ledger(self) -> None:
        self._rows(self._ledger["probe"])

    def probe_grants(self) -> None:
        self._rows(Q_PROBE_GRANTS, schema=self.schema)

    # ---- structure ----
    def list_tables(self, names: Optional[Iterable[str]] = None) -> Set[str]:
        names = list(names or [])
        if names:
            rows = self._rows(Q_LIST_TABLES_BY_NAME, schema=self.schema, names=names)
        else:
            rows = self._rows(Q_LIST_TABLES, schema=self.schema)
        return {r["table_name"] for r in rows}

    def columns(self, table: str) -> Dict[str, ColumnInfo]:
        return {
            r["column_name"]: ColumnInfo(
                name=r["column_name"],
                data_type=r["data_type"],
                is_nullable=r["is_nullable"] == "YES",
                column_default=r["column_default"],
            )
            for r in self._rows(Q_COLUMNS, schema=self.schema, table=table)
        }

    def constraints(self, table: str) -> Dict[str, ConstraintInfo]:
        return {
            r["constraint_name"]: ConstraintInfo(r["constraint_name"], r["constraint_type"], r["definition"])
            for r in self._rows(Q_CONSTRAINTS, schema=self.schema, table=table)
        }

    def indexes(self, table: str) -> Dict[str, IndexInfo]:
        return {
            r["indexname"]: IndexInfo(r["indexname"], r["indexdef"], bool(r["is_unique"]), bool(r["is_primary"]))
            for r in self._rows(Q_INDEXES, schema=self.schema, table=table)
        }

    # ---- migration ledger ----
    def latest_applied(self) -> Optional[MigrationRecord]:
        rows = self._rows(self._ledger["latest"])
        return _record(rows[0]) if rows else None

    def failed_count(self) -> int:
        return int(self._rows(self._ledger["failed_count"])[0]["cnt"])

    def installed_by_summary(self, limit: int = INSTALLED_BY_LIMIT) -> List[InstalledBySummary]:
        return [
            InstalledBySummary(r["installed_by"], int(r["applied_count"]), r["last_seen"])
            for r in self._rows(self._ledger["installed_by"], limit=limit)
        ]

    def ledger_history(self, after_rank: int) -> List[MigrationRecord]:
        return [_record(r) for r in self._rows(self._ledger["history_after"], rank=after_rank)]
