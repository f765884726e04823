"""
Migration ledger comparison and gap analysis.

The ledger is a Flyway-style history table: one row per applied migration with
an installed rank, a version and a success flag. Comparison looks at the latest
successful entry on each side; gap analysis lists the source entries the target
has not applied yet, and only when the ordering is unambiguous.
"""

import logging
from typing import List, Optional

from envdrift.models import (
    EnvironmentCapabilityMatrix,
    Identity,
    LedgerSummary,
    LedgerWarning,
    MigrationComparison,
    MigrationGap,
)

logger = logging.getLogger(__name__)


def summarize_ledger(reader) -> LedgerSummary:
    return LedgerSummary(
        latest_applied=reader.latest_applied(),
        failed_count=reader.failed_count(),
        installed_by_summary=reader.installed_by_summary(),
    )


def ledger_warnings(environment: str, summary: LedgerSummary, identity: Optional[Identity]) -> List[LedgerWarning]:
    warnings = []

    installers = sorted({s.installed_by for s in summary.installed_by_summary if s.installed_by})
    if len(installers) > 1:
        warnings.append(LedgerWarning(
            environment,
            "MULTIPLE_INSTALLERS",
            f"Migrations were applied by {len(installers)} different users: {', '.join(installers)}",
        ))

    latest = summary.latest_applied
    if latest is not None and identity is not None and identity.current_user != latest.installed_by:
        warnings.append(LedgerWarning(
            environment,
            "CREDENTIAL_DRIFT",
            f"Latest migration was installed by {latest.installed_by}, "
            f"but you are connected as {identity.current_user}",
        ))
    return warnings


def _identity(reader, caps: EnvironmentCapabilityMatrix) -> Optional[Identity]:
    if not caps.identity.available:
        return None
    try:
        return reader.identity()
    except Exception as e:
        logger.warning("Identity read failed for %s: %s", caps.environment_name, e)
        return None


def compare_ledgers(source, target, source_caps: EnvironmentCapabilityMatrix,
                    target_caps: EnvironmentCapabilityMatrix) -> MigrationComparison:
    """Compare the ledger heads of both environments."""
    if not source_caps.migration_ledger.available or not target_caps.migration_ledger.available:
        return MigrationComparison.unavailable("Migration ledger not accessible in one or both environments")

    try:
        source_summary = summarize_ledger(source)
        target_summary = summarize_ledger(target)
    except Exception as e:
        logger.error("Failed to compare migration ledgers: %s", e)
        return MigrationComparison.unavailable(f"Failed to read migration ledger: {e}")

    s_latest = source_summary.latest_applied
    t_latest = target_summary.latest_applied
    source_version = s_latest.version if s_latest else None
    target_version = t_latest.version if t_latest else None
    version_match = source_version == target_version

    warnings = (
        ledger_warnings(source_caps.environment_name, source_summary, _identity(source, source_caps))
        + ledger_warnings(target_caps.environment_name, target_summary, _identity(target, target_caps))
    )

    return MigrationComparison(
        available=True,
        message="Migration versions match" if version_match
        else f"Migration version mismatch: {source_version} vs {target_version}",
        source_version=source_version,
        target_version=target_version,
        source_rank=s_latest.rank if s_latest else None,
        target_rank=t_latest.rank if t_latest else None,
        version_match=version_match,
        source_failed_count=source_summary.failed_count,
        target_failed_count=target_summary.failed_count,
        source_installed_by=s_latest.installed_by if s_latest else None,
        target_installed_by=t_latest.installed_by if t_latest else None,
        warnings=warnings,
    )


class MigrationGapAnalyzer:

    def analyze(self, comparison: MigrationComparison, source, source_caps: EnvironmentCapabilityMatrix,
                target_caps: EnvironmentCapabilityMatrix) -> MigrationGap:
        """List the successful source migrations the target has not applied.

        Only a source head strictly ahead of the target head is treated as a
        gap; any other ordering is reported as not detectable.
        """
        if (not source_caps.migration_ledger.available or not target_caps.migration_ledger.available
                or not comparison.available):
            return MigrationGap(False, "Migration ledger not accessible")

        source_rank = comparison.source_rank
        target_rank = comparison.target_rank

        if comparison.version_match:
            return MigrationGap(True, "Migration versions match - no missing migrations", [],
                                source_rank, target_rank)

        if source_rank is None or target_rank is None or source_rank <= target_rank:
            return MigrationGap(False, "Cannot determine missing migrations - version ordering unclear", [],
                                source_rank, target_rank)

        try:
            history = source.ledger_history(after_rank=target_rank)
        except Exception as e:
            logger.error("Failed to analyze missing migrations: %s", e)
            return MigrationGap(False, f"Failed to read migration ledger details: {e}", [],
                                source_rank, target_rank)

        missing = sorted(
            (m for m in history if m.rank is not None and m.rank > target_rank and m.success),
            key=lambda m: m.rank,
        )
        return MigrationGap(True, f"Target is missing {len(missing)} migration(s)", missing,
                            source_rank, target_rank)
