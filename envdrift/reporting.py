"""
reporting
=========

Markdown rendering of a finished comparison.

The output is what "Copy Diagnostics" hands to a ticket or chat: banner,
KPIs, capability matrix, differing drift items, blast radius, migration gap,
conclusions and the privilege request script. MATCH items are counted but not
listed.

Primary API
-----------
- :func:`render_markdown`
"""

from typing import List

from envdrift.models import Capability, CapabilityStatus, ComparisonResult, DriftSection


def _cell(value) -> str:
    if value is None:
        return ""
    return str(value).replace("|", "\\|").replace("\n", " ")


def _status(status: CapabilityStatus) -> str:
    if status.available:
        return "yes"
    return f"no ({status.reason_code})" if status.reason_code else "no"


def _capability_table(result: ComparisonResult) -> List[str]:
    lines = [
        f"| Capability | {result.source_environment} | {result.target_environment} |",
        "|---|---|---|",
    ]
    for capability in Capability:
        lines.append(
            f"| {capability.value} | {_status(result.source_capabilities.status(capability))} "
            f"| {_status(result.target_capabilities.status(capability))} |"
        )
    return lines


def _section(section: DriftSection) -> List[str]:
    lines = [f"### {section.name}", ""]
    availability = section.availability
    if not availability.available:
        lines.append(f"_Unavailable: {availability.unavailability_reason}_")
        if availability.required_access:
            lines.append(f"- Required access: {availability.required_access}")
        if availability.impact_if_missing:
            lines.append(f"- Impact: {availability.impact_if_missing}")
        lines.append("")
        return lines

    lines.append(f"Matches: {section.match_count}, differences: {section.differ_count}")
    lines.append("")

    differing = section.differing()
    if not differing:
        lines.extend(["- ✅ No differences", ""])
        return lines

    lines.append("| Severity | Object | Attribute | Source | Target | Risk |")
    lines.append("|---|---|---|---|---|---|")
    for item in differing:
        lines.append(
            f"| {item.severity.value} | {_cell(item.object_name)} | {_cell(item.attribute)} "
            f"| {_cell(item.source_value)} | {_cell(item.target_value)} | {_cell(item.risk_level)} |"
        )
    lines.append("")
    return lines


def render_markdown(result: ComparisonResult) -> str:
    """Render ``result`` as a standalone Markdown document."""
    kpis = result.kpis
    lines: List[str] = [
        f"# Environment Comparison: {result.source_environment} → {result.target_environment}",
        "",
        f"_Generated: {result.generated_at}_",
        "",
        f"- Source: {result.source_identity}",
        f"- Target: {result.target_identity}",
        f"- Schema: {result.schema}",
        f"- Mode: {result.mode.value}",
        "",
        f"> {result.mode_banner}",
        "",
        "## Summary",
        "",
        f"- Compatibility errors: {kpis.compatibility_errors}",
        f"- Performance warnings: {kpis.performance_warnings}",
        f"- Missing migrations: {kpis.missing_migrations}",
        f"- Critical issues: {'yes' if kpis.has_critical_issues else 'no'}",
        "",
    ]

    if result.conclusions:
        lines.extend(["## Conclusions", ""])
        for conclusion in result.conclusions:
            lines.append(f"### [{conclusion.severity.value}] {conclusion.title}")
            lines.append("")
            lines.extend(f"- {e}" for e in conclusion.evidence)
            lines.append("")
            lines.append(f"**Impact:** {conclusion.impact}")
            lines.append("")
            lines.append(f"**Recommendation:** {conclusion.recommendation}")
            lines.append("")

    lines.extend(["## Capabilities", ""])
    lines.extend(_capability_table(result))
    lines.append("")

    lines.extend(["## Drift", ""])
    if not result.drift_sections:
        lines.extend(["_No sections compared._", ""])
    for section in result.drift_sections:
        lines.extend(_section(section))

    if result.blast_radius:
        lines.extend(["## Blast Radius", ""])
        for item in result.blast_radius:
            subtype = f" ({item.drift_subtype})" if item.drift_subtype else ""
            lines.append(f"- **{item.object_name}**: {item.drift_type}{subtype} [{item.risk_level}]")
            lines.extend(f"  - {s}" for s in item.symptoms)
        lines.append("")

    comparison = result.migration_comparison
    gap = result.migration_gap
    lines.extend(["## Migrations", "", f"- {comparison.message}"])
    if comparison.available:
        lines.append(f"- Source: {comparison.source_version} (rank {comparison.source_rank})")
        lines.append(f"- Target: {comparison.target_version} (rank {comparison.target_rank})")
    for warning in comparison.warnings:
        lines.append(f"- ⚠️ {warning.environment} {warning.code}: {warning.message}")
    lines.append(f"- {gap.message}")
    for record in gap.missing_migrations:
        lines.append(f"  - {record.rank}: V{record.version} {record.description or ''}".rstrip())
    lines.append("")

    if result.privilege_request_script:
        lines.extend(["## Privilege Request", "", "```sql", result.privilege_request_script.rstrip(), "```", ""])

    return "\n".join(lines)
