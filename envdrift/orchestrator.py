"""
orchestrator
============

Runs one source/target comparison end to end.

Flow
----
1. Resolve both connection ids and open a catalog reader per side.
2. Probe both capability matrices (two threads).
3. Derive the comparison mode from connect/tables/metadata availability.
4. Compare tables, then columns/constraints/indexes over the tables present
   on both sides.
5. Compare migration ledgers and list the target's missing migrations.
6. Blast radius, privilege gaps, conclusions, KPIs.

Catalog read failures never escape this module; they surface as unavailable
capabilities, sections or a non-detectable migration gap. Only bad input and
unknown connection ids raise.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from envdrift.blast_radius import BlastRadiusAnalyzer
from envdrift.capabilities import CapabilityProbe
from envdrift.catalog import CatalogReader
from envdrift.config import Settings, load_settings
from envdrift.connections import ConnectionContext, ConnectionRegistry
from envdrift.drift import (
    COLUMNS,
    CONSTRAINTS,
    INDEXES,
    DriftDetector,
    read_failed_section,
)
from envdrift.errors import ConnectionNotFoundError, InvalidRequestError
from envdrift.migrations import MigrationGapAnalyzer, compare_ledgers
from envdrift.models import (
    COMPATIBILITY,
    PERFORMANCE,
    Capability,
    ComparisonKPIs,
    ComparisonMode,
    ComparisonRequest,
    ComparisonResult,
    DiagnosticConclusion,
    DriftSection,
    DriftSeverity,
    EnvironmentCapabilityMatrix,
    MigrationComparison,
    MigrationGap,
    NextAction,
)
from envdrift.privileges import PrivilegeGapAnalyzer

logger = logging.getLogger(__name__)

METADATA_CAPABILITIES = (Capability.COLUMNS, Capability.CONSTRAINTS, Capability.INDEXES)
CAPABILITY_SECTION_NAMES = {
    Capability.COLUMNS: COLUMNS,
    Capability.CONSTRAINTS: CONSTRAINTS,
    Capability.INDEXES: INDEXES,
}

ReaderFactory = Callable[[ConnectionContext, str], object]


def _close(reader) -> None:
    # injected readers may hold nothing to release
    close = getattr(reader, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        logger.warning("Failed to close catalog reader: %s", e)


def determine_mode(source: EnvironmentCapabilityMatrix, target: EnvironmentCapabilityMatrix) -> ComparisonMode:
    sides = (source, target)
    if any(not caps.connect.available or not caps.tables.available for caps in sides):
        return ComparisonMode.BLOCKED
    if any(not caps.status(c).available for caps in sides for c in METADATA_CAPABILITIES):
        return ComparisonMode.PARTIAL
    return ComparisonMode.FULL


def mode_banner(mode: ComparisonMode, target_env: str) -> str:
    if mode is ComparisonMode.FULL:
        return "✅ Full Comparison: Full schema comparison available for both environments."
    if mode is ComparisonMode.PARTIAL:
        return f"⚠️ Partial Comparison: {target_env} metadata access is limited. Some drift results may be unknown."
    return f"❌ Blocked Comparison: {target_env} connection lacks required metadata access."


def compute_kpis(sections: List[DriftSection], gap: MigrationGap) -> ComparisonKPIs:
    items = [i for s in sections for i in s.items]
    compatibility_errors = sum(
        1 for i in items if i.category == COMPATIBILITY and i.severity is DriftSeverity.ERROR
    )
    # every Performance item counts, MATCH evidence included
    performance_warnings = sum(1 for i in items if i.category == PERFORMANCE)
    missing = len(gap.missing_migrations) if gap.detectable else 0
    return ComparisonKPIs(
        compatibility_errors=compatibility_errors,
        performance_warnings=performance_warnings,
        missing_migrations=missing,
        has_critical_issues=compatibility_errors > 0 or missing > 0,
    )


def validate_request(request: ComparisonRequest) -> None:
    if not request.source_connection_id or not request.source_connection_id.strip():
        raise InvalidRequestError("sourceConnectionId is required")
    if not request.target_connection_id or not request.target_connection_id.strip():
        raise InvalidRequestError("targetConnectionId is required")
    if not request.schema or not request.schema.strip():
        raise InvalidRequestError("schema must not be blank")
    if request.specific_tables is not None:
        if any(not t or not t.strip() for t in request.specific_tables):
            raise InvalidRequestError("specificTables must not contain blank names")


class ConclusionBuilder:
    """Turns the comparison evidence into ordered, human-readable findings."""

    def build(self, mode: ComparisonMode, sections: List[DriftSection], comparison: MigrationComparison,
              gap: MigrationGap, source_caps: EnvironmentCapabilityMatrix,
              target_caps: EnvironmentCapabilityMatrix) -> List[DiagnosticConclusion]:
        conclusions = []
        overall = self._overall(mode, sections, gap)
        if overall:
            conclusions.append(overall)
        if comparison.available and not comparison.version_match:
            conclusions.append(self._migration(comparison, gap))
        indexes = next((s for s in sections if s.name == INDEXES), None)
        if indexes is not None and indexes.differ_count > 0:
            conclusions.append(self._indexes(indexes))
        if mode is ComparisonMode.PARTIAL:
            conclusions.append(self._partial(source_caps, target_caps))
        return conclusions

    @staticmethod
    def _overall(mode, sections, gap) -> Optional[DiagnosticConclusion]:
        items = [i for s in sections for i in s.differing()]
        errors = [i for i in items if i.severity is DriftSeverity.ERROR]
        warnings = [i for i in items if i.severity is DriftSeverity.WARN]
        has_missing = gap.detectable and bool(gap.missing_migrations)

        if errors:
            evidence = [
                f"Total critical differences: {len(errors)}",
                f"Compatibility issues: {sum(1 for i in errors if i.category == COMPATIBILITY)}",
            ]
            evidence.extend(f"{i.object_name}: {i.message}" for i in errors[:3])
            actions = [
                NextAction("Show Drift Details", "drift-sections"),
                NextAction("Show Blast Radius", "blast-radius"),
            ]
            if has_missing:
                actions.append(NextAction("Show Missing Migrations", "missing-migrations"))
            return DiagnosticConclusion(
                DriftSeverity.ERROR, "Compatibility",
                "Critical schema drift detected - application failures likely",
                evidence,
                "INSERT/UPDATE/SELECT operations will fail; application may crash or return errors",
                "Review and apply missing migrations to align target schema",
                actions,
            )

        if warnings:
            return DiagnosticConclusion(
                DriftSeverity.WARN, "Performance",
                "Schema differences detected - performance inconsistencies likely",
                [
                    f"Total warnings: {len(warnings)}",
                    f"Performance-related: {sum(1 for i in warnings if i.category == PERFORMANCE)}",
                ],
                "Query performance may differ; some operations may be slower",
                "Review index differences to ensure consistent performance",
                [
                    NextAction("Show Index Drift", "indexes-section"),
                    NextAction("Show Blast Radius", "blast-radius"),
                ],
            )

        if mode is ComparisonMode.FULL:
            return DiagnosticConclusion(
                DriftSeverity.INFO, "Alignment",
                "No schema drift detected - environments are aligned",
                ["All tables match", "All columns match", "All indexes match"],
                "No compatibility or performance risks detected",
                "Continue monitoring for future changes",
            )
        return None

    @staticmethod
    def _migration(comparison: MigrationComparison, gap: MigrationGap) -> DiagnosticConclusion:
        evidence = [
            f"Source latest version: {comparison.source_version}",
            f"Target latest version: {comparison.target_version}",
            f"Source head rank: {comparison.source_rank}",
            f"Target head rank: {comparison.target_rank}",
            f"Source failed migrations: {comparison.source_failed_count or 0}",
            f"Target failed migrations: {comparison.target_failed_count or 0}",
        ]
        actions = []
        if gap.detectable and gap.missing_migrations:
            evidence.append(f"Missing migrations: {len(gap.missing_migrations)}")
            actions.append(NextAction("Show Missing Migrations", "missing-migrations"))
        elif not gap.detectable:
            evidence.append(gap.message)
        actions.append(NextAction("Open Migration Ledger (Target)", "migration-ledger-target"))
        actions.append(NextAction("Copy Diagnostics", "copy-diagnostics"))

        return DiagnosticConclusion(
            DriftSeverity.ERROR, "Migration",
            "Migration ledger mismatch detected - target missing migrations",
            evidence,
            "Target likely missing migration(s) that introduced schema objects used by the app",
            f"Apply all migrations up to version {comparison.source_version} to target environment",
            actions,
        )

    @staticmethod
    def _indexes(section: DriftSection) -> DiagnosticConclusion:
        evidence = [f"Index differences: {section.differ_count}"]
        high_risk = [i.object_name for i in section.differing() if i.risk_level == "High"]
        if high_risk:
            evidence.append(f"High-risk indexes: {len(high_risk)} ({', '.join(high_risk)})")
        return DiagnosticConclusion(
            DriftSeverity.WARN, "Performance",
            "Index drift detected - query performance at risk",
            evidence,
            "Slow queries, timeouts, and CPU spikes likely under load",
            "Review and align indexes to ensure consistent query performance",
            [
                NextAction("Show Index Details", "indexes-section"),
                NextAction("Show Performance Impact", "blast-radius"),
            ],
        )

    @staticmethod
    def _partial(source_caps: EnvironmentCapabilityMatrix,
                 target_caps: EnvironmentCapabilityMatrix) -> DiagnosticConclusion:
        evidence = []
        for capability in METADATA_CAPABILITIES:
            for caps in (source_caps, target_caps):
                status = caps.status(capability)
                if not status.available:
                    evidence.append(
                        f"{CAPABILITY_SECTION_NAMES[capability]}: {caps.environment_name}: {status.message}"
                    )
        return DiagnosticConclusion(
            DriftSeverity.WARN, "Access",
            "Comparison is partial due to limited metadata access",
            evidence,
            "Some drift may be undetectable with current privileges",
            "Request read-only access to information_schema and pg_catalog for full comparison",
            [
                NextAction("Show Capability Matrix", "capability-matrix"),
                NextAction("Copy Privilege Request", "privilege-request"),
            ],
        )


class ComparisonOrchestrator:

    def __init__(self, registry: ConnectionRegistry, reader_factory: Optional[ReaderFactory] = None,
                 settings: Optional[Settings] = None):
        self.registry = registry
        self.settings = settings or load_settings()
        self.reader_factory = reader_factory or self._catalog_reader
        self.probe = CapabilityProbe()
        self.detector = DriftDetector(self.settings.max_match_items)
        self.gap_analyzer = MigrationGapAnalyzer()
        self.blast_radius = BlastRadiusAnalyzer()
        self.privileges = PrivilegeGapAnalyzer(self.settings.ledger_table)
        self.conclusions = ConclusionBuilder()

    def _catalog_reader(self, ctx: ConnectionContext, schema: str) -> CatalogReader:
        return CatalogReader.from_context(ctx, schema, self.settings.ledger_table, self.settings.connect_timeout)

    def _resolve(self, role: str, connection_id: str) -> ConnectionContext:
        ctx = self.registry.get(connection_id)
        if ctx is None:
            raise ConnectionNotFoundError(role, connection_id)
        return ctx

    def compare(self, request: ComparisonRequest) -> ComparisonResult:
        validate_request(request)
        source_ctx = self._resolve("Source", request.source_connection_id)
        target_ctx = self._resolve("Target", request.target_connection_id)
        source_env = request.source_environment_name
        target_env = request.target_environment_name

        logger.info("Comparing %s (%s) -> %s (%s), schema=%s",
                    source_env, source_ctx.id, target_env, target_ctx.id, request.schema)

        readers = []
        try:
            source = self.reader_factory(source_ctx, request.schema)
            readers.append(source)
            target = self.reader_factory(target_ctx, request.schema)
            readers.append(target)
            return self._compare(request, source_ctx, target_ctx, source, target)
        finally:
            for reader in readers:
                _close(reader)

    def _compare(self, request: ComparisonRequest, source_ctx: ConnectionContext,
                 target_ctx: ConnectionContext, source, target) -> ComparisonResult:
        source_env = request.source_environment_name
        target_env = request.target_environment_name

        with ThreadPoolExecutor(max_workers=2) as pool:
            source_future = pool.submit(self.probe.probe, source_env, source_ctx.id, source)
            target_future = pool.submit(self.probe.probe, target_env, target_ctx.id, target)
            source_caps = source_future.result()
            target_caps = target_future.result()

        mode = determine_mode(source_caps, target_caps)
        logger.info("Comparison mode: %s", mode.value)

        sections = self._compare_sections(source, target, source_caps, target_caps, request.specific_tables)

        comparison = compare_ledgers(source, target, source_caps, target_caps)
        gap = self.gap_analyzer.analyze(comparison, source, source_caps, target_caps)

        blast_radius = self.blast_radius.analyze(sections)

        missing_privileges = self.privileges.analyze(target_caps)
        script = self.privileges.render_request_script(missing_privileges, target_env)

        conclusions = self.conclusions.build(mode, sections, comparison, gap, source_caps, target_caps)
        kpis = compute_kpis(sections, gap)

        logger.info("Comparison finished: mode=%s sections=%d compatibility_errors=%d missing_migrations=%d",
                    mode.value, len(sections), kpis.compatibility_errors, kpis.missing_migrations)

        return ComparisonResult(
            source_environment=source_env,
            target_environment=target_env,
            source_identity=source_ctx.identity(source_env),
            target_identity=target_ctx.identity(target_env),
            schema=request.schema,
            mode=mode,
            mode_banner=mode_banner(mode, target_env),
            kpis=kpis,
            source_capabilities=source_caps,
            target_capabilities=target_caps,
            drift_sections=sections,
            migration_comparison=comparison,
            migration_gap=gap,
            blast_radius=blast_radius,
            conclusions=conclusions,
            missing_privileges=missing_privileges,
            privilege_request_script=script,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    def _compare_sections(self, source, target, source_caps, target_caps,
                          specific_tables: Optional[List[str]]) -> List[DriftSection]:
        tables = self.detector.compare_tables(source, target, source_caps, target_caps, specific_tables)
        sections = [tables]
        if not tables.availability.available:
            return sections

        try:
            common: Set[str] = (self.detector.list_tables(source, specific_tables)
                                & self.detector.list_tables(target, specific_tables))
        except Exception as e:
            return sections + [read_failed_section(name, e) for name in (COLUMNS, CONSTRAINTS, INDEXES)]

        if not common:
            logger.info("No tables present on both sides; skipping column, constraint and index sections")
            return sections

        sections.append(self.detector.compare_columns(source, target, source_caps, target_caps, common))
        sections.append(self.detector.compare_constraints(source, target, source_caps, target_caps, common))
        sections.append(self.detector.compare_indexes(source, target, source_caps, target_caps, common))
        return sections
