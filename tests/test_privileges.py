from envdrift.privileges import PrivilegeGapAnalyzer
from tests.conftest import FakeReader


def test_no_requirements_when_everything_is_readable(probe):
    analyzer = PrivilegeGapAnalyzer()
    requirements = analyzer.analyze(probe.probe("PROD", "pt-1", FakeReader()))

    assert requirements == []
    assert analyzer.render_request_script(requirements, "PROD") is None


def test_requirements_follow_fixed_order(probe):
    """
    Missing privileges are listed in a fixed capability order
    """
    matrix = probe.probe("PROD", "pt-1", FakeReader(failing={"migration_ledger", "indexes", "columns"}))
    requirements = PrivilegeGapAnalyzer().analyze(matrix)

    assert [r.capability for r in requirements] == ["Columns", "Indexes", "Migration Ledger"]
    assert requirements[1].required_grants == ["GRANT SELECT ON pg_catalog.pg_indexes TO <your_user>"]
    assert requirements[1].message == matrix.indexes.message


def test_grants_and_identity_do_not_produce_requirements(probe):
    matrix = probe.probe("PROD", "pt-1", FakeReader(failing={"grants", "identity"}))
    assert PrivilegeGapAnalyzer().analyze(matrix) == []


def test_request_script(probe):
    """
    Request script names the grants for every missing capability
    """
    analyzer = PrivilegeGapAnalyzer(ledger_table="ops.flyway_schema_history")
    requirements = analyzer.analyze(probe.probe("PROD", "pt-1", FakeReader(failing={"indexes"})))
    script = analyzer.render_request_script(requirements, "PROD")

    assert "-- Target Environment: PROD" in script
    assert "GRANT SELECT ON ops.flyway_schema_history TO <your_user>;" in script
    assert "-- Indexes: SELECT on pg_catalog.pg_indexes" in script
    assert script.rstrip().endswith("-- After applying grants, reconnect and re-run comparison")
