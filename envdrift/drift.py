"""
drift
=====

Section-by-section structural drift between a source and a target
environment.

Sections
--------
- Tables: existence of base tables (optionally limited to requested names).
- Columns: existence, data type, nullability and default per column.
- Constraints: named constraints and their kind.
- Indexes: named indexes and their definition text.

Columns, constraints and indexes only look at tables present on both sides.
Every section checks the capability matrices of both sides first and returns
an "unavailable" section instead of reading when either side lacks access.
Iteration is in sorted name order, so the MATCH cap always keeps the same
items for the same input.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from envdrift.models import (
    COMPATIBILITY,
    PERFORMANCE,
    Capability,
    DriftItem,
    DriftSection,
    DriftSeverity,
    DriftStatus,
    EnvironmentCapabilityMatrix,
    SectionAvailability,
)

logger = logging.getLogger(__name__)

MAX_MATCH_ITEMS = 100

TABLES = "Tables"
COLUMNS = "Columns"
CONSTRAINTS = "Constraints"
INDEXES = "Indexes"

CRITICAL_CONSTRAINT_KINDS = {"PRIMARY KEY", "UNIQUE"}

_USING = re.compile(r"\bUSING\s+(\w+)", re.IGNORECASE)


@dataclass(frozen=True)
class SectionSpec:
    name: str
    description: str
    capability: Capability
    required_access: str
    impact_if_missing: str


SECTION_SPECS = {
    TABLES: SectionSpec(
        TABLES, "Table existence and structure", Capability.TABLES,
        "read access to information_schema.tables",
        "Cannot detect missing or extra tables",
    ),
    COLUMNS: SectionSpec(
        COLUMNS, "Column definitions and types", Capability.COLUMNS,
        "read access to information_schema.columns",
        "Cannot detect column type mismatches or missing columns",
    ),
    CONSTRAINTS: SectionSpec(
        CONSTRAINTS, "Primary keys, foreign keys, unique constraints", Capability.CONSTRAINTS,
        "read access to information_schema.table_constraints",
        "Cannot detect constraint mismatches",
    ),
    INDEXES: SectionSpec(
        INDEXES, "Table indexes and their definitions", Capability.INDEXES,
        "read access to pg_catalog.pg_indexes",
        "Cannot detect index drift; performance issues may be undetectable",
    ),
}


def classify_index_difference(source_def: Optional[str], target_def: Optional[str]) -> str:
    """Name what changed between two index definitions."""
    if source_def is None or target_def is None:
        return "Definition differs"

    source_method = _USING.search(source_def)
    target_method = _USING.search(target_def)
    if source_method and target_method:
        s_method, t_method = source_method.group(1).lower(), target_method.group(1).lower()
        if s_method != t_method:
            return f"Method differs: {s_method} → {t_method}"

    source_unique = "UNIQUE" in source_def.upper()
    target_unique = "UNIQUE" in target_def.upper()
    if source_unique != target_unique:
        return "Uniqueness removed" if source_unique else "Uniqueness added"

    source_partial = " WHERE " in source_def.upper()
    target_partial = " WHERE " in target_def.upper()
    if source_partial != target_partial:
        return "Partial predicate removed" if source_partial else "Partial predicate added"
    if source_partial and target_partial:
        return "Partial predicate differs"

    return "Definition differs"


def missing_index_risk(definition: str) -> str:
    # text heuristic over the definition, not the catalog's unique/primary flags
    upper = definition.upper()
    if "UNIQUE" in upper or "PRIMARY KEY" in upper:
        return "High"
    return "Medium"


class _SectionBuilder:
    """Collects items for one section, capping MATCH evidence but not counts."""

    def __init__(self, spec: SectionSpec, max_match_items: int):
        self.spec = spec
        self.max_match_items = max_match_items
        self.items: List[DriftItem] = []
        self.match_count = 0
        self.differ_count = 0

    def differ(self, category, object_name, attribute, source_value, target_value,
               severity, risk_level, message) -> None:
        self.items.append(DriftItem(category, object_name, attribute, source_value, target_value,
                                    DriftStatus.DIFFER, severity, risk_level, message))
        self.differ_count += 1

    def match(self, category, object_name, attribute, source_value, target_value, message) -> None:
        if self.match_count < self.max_match_items:
            self.items.append(DriftItem(category, object_name, attribute, source_value, target_value,
                                        DriftStatus.MATCH, DriftSeverity.INFO, None, message))
        self.match_count += 1

    def build(self) -> DriftSection:
        return DriftSection(
            self.spec.name,
            self.spec.description,
            SectionAvailability.ok(),
            self.items,
            self.match_count,
            self.differ_count,
        )


def _unavailable(spec: SectionSpec, reason: Optional[str], reason_code: Optional[str]) -> DriftSection:
    return DriftSection(
        spec.name,
        spec.description,
        SectionAvailability.unavailable(reason, reason_code, spec.required_access, spec.impact_if_missing),
    )


def _capability_gate(spec: SectionSpec, source_caps: EnvironmentCapabilityMatrix,
                     target_caps: EnvironmentCapabilityMatrix) -> Optional[DriftSection]:
    for caps in (source_caps, target_caps):
        status = caps.status(spec.capability)
        if not status.available:
            reason = f"{caps.environment_name}: {status.message}"
            return _unavailable(spec, reason, status.reason_code)
    return None


def read_failed_section(name: str, error: Exception) -> DriftSection:
    spec = SECTION_SPECS[name]
    logger.warning("%s comparison aborted, catalog read failed: %s", spec.name, error)
    return _unavailable(
        spec,
        f"Failed to read {spec.name.lower()} metadata: {error}",
        f"{spec.capability.name}_READ_FAILED",
    )


class DriftDetector:

    def __init__(self, max_match_items: int = MAX_MATCH_ITEMS):
        self.max_match_items = max_match_items

    def list_tables(self, reader, specific_tables: Optional[Iterable[str]] = None) -> Set[str]:
        return reader.list_tables(specific_tables)

    def compare_tables(self, source, target, source_caps: EnvironmentCapabilityMatrix,
                       target_caps: EnvironmentCapabilityMatrix,
                       specific_tables: Optional[List[str]] = None) -> DriftSection:
        spec = SECTION_SPECS[TABLES]
        gated = _capability_gate(spec, source_caps, target_caps)
        if gated:
            return gated

        try:
            source_tables = self.list_tables(source, specific_tables)
            target_tables = self.list_tables(target, specific_tables)
        except Exception as e:
            return read_failed_section(spec.name, e)

        section = _SectionBuilder(spec, self.max_match_items)
        for table in sorted(source_tables | target_tables):
            if table not in target_tables:
                section.differ(COMPATIBILITY, table, "exists", True, False, DriftSeverity.ERROR, "High",
                               f"Table '{table}' exists in source but missing in target")
            elif table not in source_tables:
                section.differ(COMPATIBILITY, table, "exists", False, True, DriftSeverity.WARN, "Low",
                               f"Table '{table}' exists in target but not in source")
            else:
                section.match(COMPATIBILITY, table, "exists", True, True,
                              f"Table '{table}' exists in both environments")
        return section.build()

    def compare_columns(self, source, target, source_caps: EnvironmentCapabilityMatrix,
                        target_caps: EnvironmentCapabilityMatrix, common_tables: Iterable[str]) -> DriftSection:
        spec = SECTION_SPECS[COLUMNS]
        gated = _capability_gate(spec, source_caps, target_caps)
        if gated:
            return gated

        section = _SectionBuilder(spec, self.max_match_items)
        try:
            for table in sorted(common_tables):
                source_cols = source.columns(table)
                target_cols = target.columns(table)
                for column in sorted(source_cols.keys() | target_cols.keys()):
                    self._compare_column(section, f"{table}.{column}",
                                         source_cols.get(column), target_cols.get(column))
        except Exception as e:
            return read_failed_section(spec.name, e)
        return section.build()

    @staticmethod
    def _compare_column(section: _SectionBuilder, name: str, source_col, target_col) -> None:
        if source_col is None:
            section.differ(COMPATIBILITY, name, "exists", False, True, DriftSeverity.WARN, "Low",
                           f"Column '{name}' exists in target but not in source")
            return
        if target_col is None:
            section.differ(COMPATIBILITY, name, "exists", True, False, DriftSeverity.ERROR, "High",
                           f"Column '{name}' exists in source but missing in target")
            return

        differs = False
        if source_col.data_type != target_col.data_type:
            section.differ(COMPATIBILITY, name, "data_type", source_col.data_type, target_col.data_type,
                           DriftSeverity.ERROR, "High",
                           f"Column '{name}' type mismatch: {source_col.data_type} vs {target_col.data_type}")
            differs = True
        if source_col.is_nullable != target_col.is_nullable:
            section.differ(COMPATIBILITY, name, "is_nullable", source_col.is_nullable, target_col.is_nullable,
                           DriftSeverity.ERROR, "High",
                           f"Column '{name}' nullability mismatch: {source_col.is_nullable} vs {target_col.is_nullable}")
            differs = True
        if source_col.column_default != target_col.column_default:
            section.differ(COMPATIBILITY, name, "default", source_col.column_default, target_col.column_default,
                           DriftSeverity.WARN, "Medium",
                           f"Column '{name}' default mismatch: {source_col.column_default} vs {target_col.column_default}")
            differs = True
        if not differs:
            section.match(COMPATIBILITY, name, "all_attributes", "matches", "matches",
                          f"Column '{name}' matches in both environments")

    def compare_constraints(self, source, target, source_caps: EnvironmentCapabilityMatrix,
                            target_caps: EnvironmentCapabilityMatrix, common_tables: Iterable[str]) -> DriftSection:
        spec = SECTION_SPECS[CONSTRAINTS]
        gated = _capability_gate(spec, source_caps, target_caps)
        if gated:
            return gated

        section = _SectionBuilder(spec, self.max_match_items)
        try:
            for table in sorted(common_tables):
                source_cons = source.constraints(table)
                target_cons = target.constraints(table)
                for constraint in sorted(source_cons.keys() | target_cons.keys()):
                    name = f"{table}.{constraint}"
                    s, t = source_cons.get(constraint), target_cons.get(constraint)
                    if s is None:
                        section.differ(COMPATIBILITY, name, "exists", False, True, DriftSeverity.WARN, "Low",
                                       f"Constraint '{name}' exists in target but not in source")
                    elif t is None:
                        critical = s.kind.upper() in CRITICAL_CONSTRAINT_KINDS
                        section.differ(COMPATIBILITY, name, "exists", True, False,
                                       DriftSeverity.ERROR if critical else DriftSeverity.WARN,
                                       "High" if critical else "Medium",
                                       f"Constraint '{name}' ({s.kind}) exists in source but missing in target")
                    elif s.kind != t.kind:
                        section.differ(COMPATIBILITY, name, "type", s.kind, t.kind, DriftSeverity.ERROR, "High",
                                       f"Constraint '{name}' type mismatch: {s.kind} vs {t.kind}")
                    else:
                        section.match(COMPATIBILITY, name, "type", s.kind, t.kind,
                                      f"Constraint '{name}' ({s.kind}) matches in both environments")
        except Exception as e:
            return read_failed_section(spec.name, e)
        return section.build()

    def compare_indexes(self, source, target, source_caps: EnvironmentCapabilityMatrix,
                        target_caps: EnvironmentCapabilityMatrix, common_tables: Iterable[str]) -> DriftSection:
        spec = SECTION_SPECS[INDEXES]
        gated = _capability_gate(spec, source_caps, target_caps)
        if gated:
            return gated

        section = _SectionBuilder(spec, self.max_match_items)
        try:
            for table in sorted(common_tables):
                source_idx = source.indexes(table)
                target_idx = target.indexes(table)
                for index in sorted(source_idx.keys() | target_idx.keys()):
                    name = f"{table}.{index}"
                    s, t = source_idx.get(index), target_idx.get(index)
                    if s is None:
                        section.differ(PERFORMANCE, name, "exists", False, True, DriftSeverity.WARN, "Low",
                                       f"Index '{name}' exists in target but not in source")
                    elif t is None:
                        section.differ(PERFORMANCE, name, "exists", True, False, DriftSeverity.WARN,
                                       missing_index_risk(s.definition),
                                       f"Index '{name}' exists in source but missing in target")
                    elif s.definition != t.definition:
                        subtype = classify_index_difference(s.definition, t.definition)
                        section.differ(PERFORMANCE, name, "definition", s.definition, t.definition,
                                       DriftSeverity.WARN, "Medium",
                                       f"Index '{name}' definition differs ({subtype})")
                    else:
                        section.match(PERFORMANCE, name, "definition", s.definition, t.definition,
                                      f"Index '{name}' matches in both environments")
        except Exception as e:
            return read_failed_section(spec.name, e)
        return section.build()
