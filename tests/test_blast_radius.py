from envdrift.blast_radius import CRITICAL_INDEX_SYMPTOM, BlastRadiusAnalyzer, analyze_item
from envdrift.drift import COLUMNS, INDEXES, TABLES, SECTION_SPECS
from envdrift.models import (
    COMPATIBILITY,
    PERFORMANCE,
    DriftItem,
    DriftSection,
    DriftSeverity,
    DriftStatus,
    SectionAvailability,
)


def _section(name, *items):
    spec = SECTION_SPECS[name]
    differ = sum(1 for i in items if i.status is DriftStatus.DIFFER)
    return DriftSection(name, spec.description, SectionAvailability.ok(), list(items),
                        len(items) - differ, differ)


def _differ(category, name, attribute, source, target, risk="High", severity=DriftSeverity.ERROR):
    return DriftItem(category, name, attribute, source, target, DriftStatus.DIFFER, severity, risk, "")


def _index_mismatch(name, source="CREATE INDEX i ON t USING btree (a)",
                    target="CREATE INDEX i ON t USING btree (a, b)"):
    return _differ(PERFORMANCE, name, "definition", source, target, "Medium", DriftSeverity.WARN)


def test_missing_table_symptoms():
    """
    A table missing in target is a High risk with query failure symptoms
    """
    item = analyze_item(_differ(COMPATIBILITY, "orders", "exists", True, False), TABLES)

    assert item.drift_type == "Missing table"
    assert item.risk_level == "High"
    assert 'INSERT/UPDATE/DELETE fails: relation "orders" does not exist' in item.symptoms


def test_nullability_direction():
    """
    Tightened and relaxed nullability report different symptoms
    """
    tightened = analyze_item(_differ(COMPATIBILITY, "users.email", "is_nullable", True, False), COLUMNS)
    loosened = analyze_item(_differ(COMPATIBILITY, "users.email", "is_nullable", False, True), COLUMNS)

    assert any("NOT NULL constraint violation" in s for s in tightened.symptoms)
    assert any("Unexpected NULL" in s for s in loosened.symptoms)


def test_missing_column_names_the_column():
    item = analyze_item(_differ(COMPATIBILITY, "users.email", "exists", True, False), COLUMNS)

    assert 'INSERT/UPDATE fails: column "email" does not exist' in item.symptoms


def test_match_and_unknown_items_have_no_blast_radius():
    match = DriftItem(COMPATIBILITY, "orders", "exists", True, True, DriftStatus.MATCH,
                      DriftSeverity.INFO, None, "")
    extra_table = _differ(COMPATIBILITY, "extra", "exists", False, True, "Low", DriftSeverity.WARN)

    assert analyze_item(match, TABLES) is None
    assert analyze_item(extra_table, TABLES) is None


def test_high_risk_missing_index_is_critical():
    item = analyze_item(
        _differ(PERFORMANCE, "users.users_email_key", "exists", True, False, "High", DriftSeverity.WARN),
        INDEXES,
    )
    assert item.drift_type == "Missing index"
    assert CRITICAL_INDEX_SYMPTOM in item.symptoms


def test_generic_index_mismatches_are_grouped():
    """
    Several generic index mismatches collapse into one representative
    """
    section = _section(INDEXES, _index_mismatch("t.a_idx"), _index_mismatch("t.b_idx"), _index_mismatch("t.c_idx"))
    result = BlastRadiusAnalyzer().analyze([section])

    assert len(result) == 1
    group = result[0]
    assert group.is_group_representative
    assert group.group_size == 3
    assert group.object_name == "Multiple indexes"
    assert group.drift_subtype == "3 indexes"


def test_single_generic_mismatch_is_kept_as_is():
    result = BlastRadiusAnalyzer().analyze([_section(INDEXES, _index_mismatch("t.a_idx"))])

    assert [r.object_name for r in result] == ["t.a_idx"]
    assert not result[0].is_group_representative


def test_uniqueness_change_is_never_grouped():
    section = _section(
        INDEXES,
        _index_mismatch("t.a_idx"),
        _index_mismatch("t.b_idx"),
        _index_mismatch("t.u_idx", "CREATE UNIQUE INDEX u ON t USING btree (a)", "CREATE INDEX u ON t USING btree (a)"),
    )
    result = BlastRadiusAnalyzer().analyze([section])

    names = [r.object_name for r in result]
    assert "t.u_idx" in names
    assert next(r for r in result if r.is_group_representative).group_size == 2


def test_sorted_by_risk_and_deterministic():
    """
    Blast radius is ordered by risk and stable across runs
    """
    sections = [
        _section(INDEXES, _index_mismatch("t.a_idx"), _index_mismatch("t.b_idx")),
        _section(TABLES, _differ(COMPATIBILITY, "orders", "exists", True, False)),
    ]
    analyzer = BlastRadiusAnalyzer()
    first = analyzer.analyze(sections)
    second = analyzer.analyze(sections)

    assert [r.risk_level for r in first] == ["High", "Medium"]
    assert [r.to_dict() for r in first] == [r.to_dict() for r in second]


def test_unavailable_sections_are_ignored():
    spec = SECTION_SPECS[TABLES]
    section = DriftSection(
        TABLES, spec.description,
        SectionAvailability.unavailable("no access", "TABLES_READ_FAILED", spec.required_access,
                                        spec.impact_if_missing),
        [_differ(COMPATIBILITY, "orders", "exists", True, False)],
    )
    assert BlastRadiusAnalyzer().analyze([section]) == []
