import pytest

from envdrift.drift import DriftDetector, classify_index_difference, missing_index_risk
from envdrift.models import ConstraintInfo, DriftSeverity, DriftStatus
from tests.conftest import FakeReader, column, index, users_table


@pytest.fixture
def detector():
    return DriftDetector()


def _tables(*names):
    return {name: {} for name in names}


def test_table_drift_is_symmetric(detector, matrices):
    """
    Tables missing on either side are both reported
    """
    source = FakeReader(_tables("a", "b", "c"))
    target = FakeReader(_tables("b", "c", "d", "e"))
    section = detector.compare_tables(source, target, *matrices(source, target))

    differing = section.differing()
    assert len(differing) == 3  # a missing in target, d and e only in target
    assert section.match_count == 2
    assert section.differ_count == 3

    missing = next(i for i in differing if i.object_name == "a")
    assert (missing.severity, missing.risk_level) == (DriftSeverity.ERROR, "High")
    extra = next(i for i in differing if i.object_name == "d")
    assert (extra.severity, extra.risk_level) == (DriftSeverity.WARN, "Low")


def test_match_items_are_capped_but_counted(matrices):
    """
    MATCH items stop being listed past the cap but keep being counted
    """
    names = [f"t{i:03d}" for i in range(150)]
    source = FakeReader(_tables(*names, "only_source"))
    target = FakeReader(_tables(*names))
    section = DriftDetector(max_match_items=100).compare_tables(source, target, *matrices(source, target))

    matches = [i for i in section.items if i.status is DriftStatus.MATCH]
    assert section.match_count == 150
    assert len(matches) == 100
    assert len(section.differing()) == 1


def test_specific_tables_filter(detector, matrices):
    source = FakeReader(_tables("users", "orders", "audit"))
    target = FakeReader(_tables("users"))
    section = detector.compare_tables(source, target, *matrices(source, target), specific_tables=["users"])

    assert section.differ_count == 0
    assert section.match_count == 1


def test_tables_gated_by_capability(detector, matrices):
    source = FakeReader(_tables("users"))
    target = FakeReader(_tables("users"), failing={"tables"})
    section = detector.compare_tables(source, target, *matrices(source, target))

    assert not section.availability.available
    assert section.availability.reason_code == "TABLES_READ_FAILED"
    assert section.availability.unavailability_reason.startswith("TARGET: ")
    assert section.availability.required_access
    assert section.items == []


def test_listing_without_grant_visibility_stays_authoritative(detector, matrices):
    """Unreadable grants do not weaken the table listing."""
    source = FakeReader(_tables("users", "orders"))
    target = FakeReader(_tables("users"), failing={"grants"})
    section = detector.compare_tables(source, target, *matrices(source, target))

    assert section.availability.available
    assert section.availability.reason_code is None
    assert [i.object_name for i in section.differing()] == ["orders"]


def test_listing_read_failure_makes_section_unavailable(detector, matrices):
    source = FakeReader(_tables("users"))
    target = FakeReader(_tables("users"), broken={"list_tables"})
    section = detector.compare_tables(source, target, *matrices(source, target))

    assert not section.availability.available
    assert section.availability.reason_code == "TABLES_READ_FAILED"


def test_column_differences(detector, matrices):
    """
    Type, nullability and default changes per column
    """
    source = FakeReader({"users": {"columns": [
        column("id", nullable=False),
        column("email", "text", nullable=True),
        column("status", "text", default="'active'::text"),
        column("legacy"),
    ]}})
    target = FakeReader({"users": {"columns": [
        column("id", nullable=False),
        column("email", "character varying", nullable=False),
        column("status", "text", default="'new'::text"),
        column("extra"),
    ]}})
    section = detector.compare_columns(source, target, *matrices(source, target), ["users"])

    by_key = {(i.object_name, i.attribute): i for i in section.differing()}
    assert by_key[("users.email", "data_type")].severity is DriftSeverity.ERROR
    assert by_key[("users.email", "is_nullable")].source_value is True
    assert by_key[("users.status", "default")].severity is DriftSeverity.WARN
    assert by_key[("users.legacy", "exists")].risk_level == "High"
    assert by_key[("users.extra", "exists")].risk_level == "Low"
    assert section.match_count == 1


@pytest.mark.parametrize("kind, severity, risk", [
    ("PRIMARY KEY", DriftSeverity.ERROR, "High"),
    ("UNIQUE", DriftSeverity.ERROR, "High"),
    ("FOREIGN KEY", DriftSeverity.WARN, "Medium"),
    ("CHECK", DriftSeverity.WARN, "Medium"),
])
def test_missing_constraint_severity(detector, matrices, kind, severity, risk):
    source = FakeReader({"users": {"constraints": [ConstraintInfo("users_c", kind)]}})
    target = FakeReader({"users": {"constraints": []}})
    section = detector.compare_constraints(source, target, *matrices(source, target), ["users"])

    [item] = section.differing()
    assert (item.severity, item.risk_level) == (severity, risk)


def test_constraint_kind_mismatch(detector, matrices):
    source = FakeReader({"users": {"constraints": [ConstraintInfo("users_c", "UNIQUE")]}})
    target = FakeReader({"users": {"constraints": [ConstraintInfo("users_c", "CHECK")]}})
    section = detector.compare_constraints(source, target, *matrices(source, target), ["users"])

    [item] = section.differing()
    assert item.attribute == "type"
    assert item.severity is DriftSeverity.ERROR


def test_index_drift(detector, matrices):
    """
    Missing and changed indexes get their classification and risk
    """
    source = FakeReader({"users": users_table()})
    target_table = users_table(indexes=[
        index("users_pkey", "users", unique=True),
        index("users_name_idx", "users", "name", method="hash"),
        index("users_new_idx", "users", "created_at"),
    ])
    target = FakeReader({"users": target_table})
    section = detector.compare_indexes(source, target, *matrices(source, target), ["users"])

    by_name = {i.object_name: i for i in section.differing()}
    assert by_name["users.users_email_key"].risk_level == "High"
    assert by_name["users.users_name_idx"].message.endswith("(Method differs: btree → hash)")
    assert by_name["users.users_new_idx"].risk_level == "Low"
    assert section.match_count == 1


def test_metadata_sections_gated(detector, matrices):
    source = FakeReader({"users": users_table()})
    target = FakeReader({"users": users_table()}, failing={"indexes"})
    caps = matrices(source, target)

    section = detector.compare_indexes(source, target, *caps, ["users"])
    assert not section.availability.available
    assert section.availability.reason_code == "INDEXES_READ_FAILED"
    assert detector.compare_columns(source, target, *caps, ["users"]).availability.available


def test_mid_section_read_failure(detector, matrices):
    """
    A read failure inside a section makes only that section unavailable
    """
    source = FakeReader({"users": users_table()}, broken={"constraints"})
    target = FakeReader({"users": users_table()})
    section = detector.compare_constraints(source, target, *matrices(source, target), ["users"])

    assert not section.availability.available
    assert section.availability.reason_code == "CONSTRAINTS_READ_FAILED"
    assert section.items == []


@pytest.mark.parametrize("source, target, expected", [
    ("CREATE INDEX i ON t USING btree (a)", "CREATE INDEX i ON t USING gin (a)", "Method differs: btree → gin"),
    ("CREATE UNIQUE INDEX i ON t USING btree (a)", "CREATE INDEX i ON t USING btree (a)", "Uniqueness removed"),
    ("CREATE INDEX i ON t USING btree (a)", "CREATE UNIQUE INDEX i ON t USING btree (a)", "Uniqueness added"),
    ("CREATE INDEX i ON t USING btree (a)", "CREATE INDEX i ON t USING btree (a) WHERE a > 0",
     "Partial predicate added"),
    ("CREATE INDEX i ON t USING btree (a) WHERE a > 0", "CREATE INDEX i ON t USING btree (a)",
     "Partial predicate removed"),
    ("CREATE INDEX i ON t USING btree (a) WHERE a > 0", "CREATE INDEX i ON t USING btree (a) WHERE a > 1",
     "Partial predicate differs"),
    ("CREATE INDEX i ON t USING btree (a)", "CREATE INDEX i ON t USING btree (a, b)", "Definition differs"),
])
def test_classify_index_difference(source, target, expected):
    assert classify_index_difference(source, target) == expected


def test_missing_index_risk():
    assert missing_index_risk("CREATE UNIQUE INDEX i ON t (a)") == "High"
    assert missing_index_risk("CREATE INDEX i ON t (a)") == "Medium"
