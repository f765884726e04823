"""
blast_radius
============

Translates differing drift items into the symptoms a running application is
likely to show, then collapses low-information repeats.

The mapping is a plain lookup table keyed by
``(category, object kind, attribute, direction)``. A new kind of drift is a new
entry in :data:`SYMPTOM_RULES`; items without an entry produce no symptoms.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from envdrift.drift import COLUMNS, CONSTRAINTS, INDEXES, TABLES, classify_index_difference
from envdrift.models import (
    COMPATIBILITY,
    PERFORMANCE,
    BlastRadiusItem,
    DriftItem,
    DriftSection,
    DriftStatus,
)

logger = logging.getLogger(__name__)

RISK_ORDER = {"High": 1, "Medium": 2, "Low": 3}

INDEX_MISMATCH = "Index definition mismatch"
GENERIC_INDEX_SYMPTOMS = (
    "Different query execution plans between environments",
    "Inconsistent query performance",
)
CRITICAL_INDEX_SYMPTOM = "CRITICAL: This may be a unique or primary key index - data integrity at risk"

SECTION_KINDS = {TABLES: "table", COLUMNS: "column", CONSTRAINTS: "constraint", INDEXES: "index"}

MISSING_IN_TARGET = "missing_in_target"
ONLY_IN_TARGET = "only_in_target"
CHANGED = "changed"
NULLABLE_TO_NOT_NULL = "nullable_to_not_null"
NOT_NULL_TO_NULLABLE = "not_null_to_nullable"


@dataclass(frozen=True)
class SymptomRule:
    drift_type: str
    subtype: Callable[[DriftItem], Optional[str]]
    symptoms: Tuple[str, ...]
    critical_when_high: bool = False


def _fixed(text: str) -> Callable[[DriftItem], str]:
    return lambda item: text


def _index_subtype(item: DriftItem) -> str:
    return classify_index_difference(item.source_value, item.target_value)


SYMPTOM_RULES: Dict[Tuple[str, str, str, str], SymptomRule] = {
    (COMPATIBILITY, "table", "exists", MISSING_IN_TARGET): SymptomRule(
        "Missing table", _fixed("Table removed"), (
            'INSERT/UPDATE/DELETE fails: relation "{object}" does not exist',
            "SELECT queries fail completely",
            "Application startup failures if table is accessed during initialization",
        )),
    (COMPATIBILITY, "column", "exists", MISSING_IN_TARGET): SymptomRule(
        "Missing column", _fixed("Column removed"), (
            'INSERT/UPDATE fails: column "{leaf}" does not exist',
            "SELECT fails if application queries this column",
            "Application errors: null references or field mapping failures",
        )),
    (COMPATIBILITY, "column", "data_type", CHANGED): SymptomRule(
        "Column type mismatch", lambda i: f"Type changed: {i.source_value} → {i.target_value}", (
            "INSERT/UPDATE fails: column type mismatch errors",
            "Data truncation or precision loss",
            "Application type casting errors",
        )),
    (COMPATIBILITY, "column", "is_nullable", NULLABLE_TO_NOT_NULL): SymptomRule(
        "Nullability mismatch", lambda i: f"Nullable: {i.source_value} → {i.target_value}", (
            "INSERT/UPDATE with NULL values fails: NOT NULL constraint violation",
        )),
    (COMPATIBILITY, "column", "is_nullable", NOT_NULL_TO_NULLABLE): SymptomRule(
        "Nullability mismatch", lambda i: f"Nullable: {i.source_value} → {i.target_value}", (
            "Unexpected NULL values may cause application logic errors",
        )),
    (COMPATIBILITY, "column", "default", CHANGED): SymptomRule(
        "Default value mismatch", lambda i: f"Default: {i.source_value} → {i.target_value}", (
            'Rows inserted without a value for "{leaf}" get a different default',
        )),
    (COMPATIBILITY, "constraint", "exists", MISSING_IN_TARGET): SymptomRule(
        "Missing constraint", _fixed("Constraint removed"), (
            "Rows rejected in source are accepted in target",
            "Duplicate or orphaned rows may accumulate in {table}",
        )),
    (COMPATIBILITY, "constraint", "type", CHANGED): SymptomRule(
        "Constraint type mismatch", lambda i: f"Kind changed: {i.source_value} → {i.target_value}", (
            "Writes validated differently between environments",
            "Errors seen in one environment cannot be reproduced in the other",
        )),
    (PERFORMANCE, "index", "exists", MISSING_IN_TARGET): SymptomRule(
        "Missing index", _fixed("Index removed"), (
            "Slow queries / table scans on {table}",
            "Query timeouts under load",
            "CPU spikes during peak usage",
        ), critical_when_high=True),
    (PERFORMANCE, "index", "definition", CHANGED): SymptomRule(
        INDEX_MISMATCH, _index_subtype, GENERIC_INDEX_SYMPTOMS),
}

# extra symptoms for index changes that alter integrity, keyed by subtype
INDEX_SUBTYPE_SYMPTOMS = {
    "Uniqueness removed": "Duplicate values accepted in target that source rejects",
    "Uniqueness added": "INSERT/UPDATE may fail in target with duplicate key violations",
}


def _direction(item: DriftItem) -> str:
    if item.attribute == "exists":
        return MISSING_IN_TARGET if item.source_value and not item.target_value else ONLY_IN_TARGET
    if item.attribute == "is_nullable":
        return NULLABLE_TO_NOT_NULL if item.source_value and not item.target_value else NOT_NULL_TO_NULLABLE
    return CHANGED


def _split(object_name: str) -> Tuple[str, str]:
    if "." in object_name:
        table, leaf = object_name.rsplit(".", 1)
        return table, leaf
    return object_name, object_name


def symptom_key(item: DriftItem, section_name: str) -> Tuple[str, str, str, str]:
    return item.category, SECTION_KINDS.get(section_name, ""), item.attribute, _direction(item)


def analyze_item(item: DriftItem, section_name: str) -> Optional[BlastRadiusItem]:
    """Return the blast radius of one item, or None when it has no symptoms."""
    if item.status is not DriftStatus.DIFFER:
        return None
    rule = SYMPTOM_RULES.get(symptom_key(item, section_name))
    if rule is None:
        return None

    table, leaf = _split(item.object_name)
    symptoms = [s.format(object=item.object_name, table=table, leaf=leaf) for s in rule.symptoms]
    subtype = rule.subtype(item)
    if rule.drift_type == INDEX_MISMATCH and subtype in INDEX_SUBTYPE_SYMPTOMS:
        symptoms.append(INDEX_SUBTYPE_SYMPTOMS[subtype])
    if rule.critical_when_high and item.risk_level == "High":
        symptoms.append(CRITICAL_INDEX_SYMPTOM)

    return BlastRadiusItem(
        object_name=item.object_name,
        drift_type=rule.drift_type,
        drift_subtype=subtype,
        category=item.category,
        risk_level=item.risk_level or "Medium",
        symptoms=symptoms,
    )


def _is_generic(item: BlastRadiusItem) -> bool:
    return (
        item.drift_type == INDEX_MISMATCH
        and item.risk_level == "Medium"
        and tuple(item.symptoms) == GENERIC_INDEX_SYMPTOMS
    )


def _risk_rank(item: BlastRadiusItem) -> Tuple[int, str]:
    return RISK_ORDER.get(item.risk_level, 4), item.drift_type


class BlastRadiusAnalyzer:

    def analyze(self, sections: Iterable[DriftSection]) -> List[BlastRadiusItem]:
        items: List[BlastRadiusItem] = []
        for section in sections:
            if not section.availability.available:
                continue
            for drift_item in section.items:
                radius = analyze_item(drift_item, section.name)
                if radius is not None:
                    items.append(radius)
        return self.group_and_prioritize(items)

    @staticmethod
    def group_and_prioritize(items: List[BlastRadiusItem]) -> List[BlastRadiusItem]:
        unique = [i for i in items if not _is_generic(i)]
        generic = [i for i in items if _is_generic(i)]

        result = list(unique)
        if len(generic) > 1:
            result.append(BlastRadiusItem(
                object_name="Multiple indexes",
                drift_type="Index definition mismatches",
                drift_subtype=f"{len(generic)} indexes",
                category=PERFORMANCE,
                risk_level="Medium",
                symptoms=[
                    "Inconsistent query performance between environments",
                    "Different execution plans may cause timing differences",
                ],
                is_group_representative=True,
                group_size=len(generic),
            ))
        elif generic:
            result.append(generic[0])

        result.sort(key=_risk_rank)
        logger.debug("Blast radius: %d items (%d generic index mismatches)", len(result), len(generic))
        return result
