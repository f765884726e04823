import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_jsonable(value: Any) -> Any:
    """Render models as plain JSON types with camelCase keys."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


class Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


class DriftStatus(str, Enum):
    MATCH = "MATCH"
    DIFFER = "DIFFER"


class DriftSeverity(str, Enum):
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"


class ComparisonMode(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    BLOCKED = "BLOCKED"


class Capability(str, Enum):
    CONNECT = "connect"
    IDENTITY = "identity"
    TABLES = "tables"
    COLUMNS = "columns"
    CONSTRAINTS = "constraints"
    INDEXES = "indexes"
    MIGRATION_LEDGER = "migration_ledger"
    GRANTS = "grants"


COMPATIBILITY = "Compatibility"
PERFORMANCE = "Performance"


# ---- capability matrix ----

@dataclass(frozen=True)
class CapabilityStatus(Serializable):
    available: bool
    message: Optional[str] = None
    reason_code: Optional[str] = None

    @classmethod
    def ok(cls) -> "CapabilityStatus":
        return cls(True, "Available", None)

    @classmethod
    def unavailable(cls, message: str, reason_code: str) -> "CapabilityStatus":
        return cls(False, message, reason_code)


@dataclass(frozen=True)
class EnvironmentCapabilityMatrix(Serializable):
    environment_name: str
    connection_id: str
    connect: CapabilityStatus
    identity: CapabilityStatus
    tables: CapabilityStatus
    columns: CapabilityStatus
    constraints: CapabilityStatus
    indexes: CapabilityStatus
    migration_ledger: CapabilityStatus
    grants: CapabilityStatus

    def status(self, capability: Capability) -> CapabilityStatus:
        return getattr(self, capability.value)

    def unavailable(self) -> List[Capability]:
        return [c for c in Capability if not self.status(c).available]


# ---- catalog rows ----

@dataclass(frozen=True)
class Identity(Serializable):
    current_user: str
    database: str


@dataclass(frozen=True)
class ColumnInfo(Serializable):
    name: str
    data_type: str
    is_nullable: bool
    column_default: Optional[str] = None


@dataclass(frozen=True)
class ConstraintInfo(Serializable):
    name: str
    kind: str  # PRIMARY KEY | UNIQUE | FOREIGN KEY | CHECK | EXCLUDE
    definition: Optional[str] = None


@dataclass(frozen=True)
class IndexInfo(Serializable):
    name: str
    definition: str
    is_unique: bool = False
    is_primary: bool = False


# ---- drift ----

@dataclass(frozen=True)
class SectionAvailability(Serializable):
    available: bool
    unavailability_reason: Optional[str] = None
    reason_code: Optional[str] = None
    required_access: Optional[str] = None
    impact_if_missing: Optional[str] = None

    @classmethod
    def ok(cls) -> "SectionAvailability":
        return cls(True)

    @classmethod
    def unavailable(cls, reason: Optional[str], reason_code: Optional[str],
                    required_access: str, impact: str) -> "SectionAvailability":
        return cls(False, reason, reason_code, required_access, impact)


@dataclass(frozen=True)
class DriftItem(Serializable):
    category: str
    object_name: str
    attribute: str
    source_value: Any
    target_value: Any
    status: DriftStatus
    severity: DriftSeverity
    risk_level: Optional[str]
    message: str


@dataclass(frozen=True)
class DriftSection(Serializable):
    name: str
    description: str
    availability: SectionAvailability
    items: List[DriftItem] = field(default_factory=list)
    match_count: int = 0
    differ_count: int = 0
    unknown_count: int = 0

    def differing(self) -> List[DriftItem]:
        return [i for i in self.items if i.status is DriftStatus.DIFFER]


@dataclass(frozen=True)
class BlastRadiusItem(Serializable):
    object_name: str
    drift_type: str
    drift_subtype: Optional[str]
    category: str
    risk_level: str
    symptoms: List[str]
    is_group_representative: bool = False
    group_size: int = 1


# ---- migration ledger ----

@dataclass(frozen=True)
class MigrationRecord(Serializable):
    rank: Optional[int]
    version: Optional[str]
    description: Optional[str] = None
    type: Optional[str] = None
    script: Optional[str] = None
    installed_by: Optional[str] = None
    installed_on: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    success: Optional[bool] = None


@dataclass(frozen=True)
class InstalledBySummary(Serializable):
    installed_by: Optional[str]
    applied_count: int
    last_seen: Optional[datetime] = None


@dataclass(frozen=True)
class LedgerSummary(Serializable):
    latest_applied: Optional[MigrationRecord]
    failed_count: int
    installed_by_summary: List[InstalledBySummary] = field(default_factory=list)


@dataclass(frozen=True)
class LedgerWarning(Serializable):
    environment: str
    code: str
    message: str


@dataclass(frozen=True)
class MigrationComparison(Serializable):
    available: bool
    message: str
    source_version: Optional[str] = None
    target_version: Optional[str] = None
    source_rank: Optional[int] = None
    target_rank: Optional[int] = None
    version_match: bool = False
    source_failed_count: Optional[int] = None
    target_failed_count: Optional[int] = None
    source_installed_by: Optional[str] = None
    target_installed_by: Optional[str] = None
    warnings: List[LedgerWarning] = field(default_factory=list)

    @classmethod
    def unavailable(cls, message: str) -> "MigrationComparison":
        return cls(False, message)


@dataclass(frozen=True)
class MigrationGap(Serializable):
    detectable: bool
    message: str
    missing_migrations: List[MigrationRecord] = field(default_factory=list)
    source_head_rank: Optional[int] = None
    target_head_rank: Optional[int] = None


# ---- privileges, conclusions, response ----

@dataclass(frozen=True)
class PrivilegeRequirement(Serializable):
    capability: str
    reason: str
    message: Optional[str]
    required_grants: List[str]


@dataclass(frozen=True)
class NextAction(Serializable):
    label: str
    target: str


@dataclass(frozen=True)
class DiagnosticConclusion(Serializable):
    severity: DriftSeverity
    category: str
    title: str
    evidence: List[str]
    impact: str
    recommendation: str
    actions: List[NextAction] = field(default_factory=list)


@dataclass(frozen=True)
class ComparisonKPIs(Serializable):
    compatibility_errors: int
    performance_warnings: int
    missing_migrations: int
    has_critical_issues: bool


@dataclass(frozen=True)
class ComparisonRequest(Serializable):
    source_connection_id: str
    target_connection_id: str
    source_environment_name: str = "SOURCE"
    target_environment_name: str = "TARGET"
    schema: str = "public"
    specific_tables: Optional[List[str]] = None


@dataclass(frozen=True)
class ComparisonResult(Serializable):
    source_environment: str
    target_environment: str
    source_identity: str
    target_identity: str
    schema: str
    mode: ComparisonMode
    mode_banner: str
    kpis: ComparisonKPIs
    source_capabilities: EnvironmentCapabilityMatrix
    target_capabilities: EnvironmentCapabilityMatrix
    drift_sections: List[DriftSection]
    migration_comparison: MigrationComparison
    migration_gap: MigrationGap
    blast_radius: List[BlastRadiusItem]
    conclusions: List[DiagnosticConclusion]
    missing_privileges: List[PrivilegeRequirement]
    privilege_request_script: Optional[str]
    generated_at: str

    def section(self, name: str) -> Optional[DriftSection]:
        return next((s for s in self.drift_sections if s.name == name), None)
