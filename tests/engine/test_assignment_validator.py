import math
from datetime import date, datetime

import pytest

from crewguard.engine.validator import PROPOSED_ASSIGNMENT_ID, AssignmentValidator
from crewguard.errors import InvalidInputError, NotFoundError
from crewguard.schemas.models import (
    ConflictType,
    Division,
    LaborRequirement,
    Severity,
)
from crewguard.store.memory import InMemoryAssignmentStore


class _ExplodingStore(InMemoryAssignmentStore):
    """Any read fails; used to prove input checks run before the store is touched."""

    def get_phase(self, phase_id):
        raise RuntimeError("store must not be read")

    def get_employee(self, employee_id):
        raise RuntimeError("store must not be read")


@pytest.fixture()
def validator(store, cfg, clock):
    return AssignmentValidator(store, cfg, clock)


@pytest.fixture()
def p1(store, make_employee, make_phase):
    """E1 (plumbing, 8h/day) and P1 (2024-01-01..2024-01-05, crew of 1)."""
    store.upsert_employee(make_employee("E1"))
    store.upsert_phase(make_phase("P1"))
    return store


def test_scenario_extra_hours_on_booked_day_is_double_booking(validator, p1, make_assignment):
    # --- Arrange ---
    p1.upsert_assignment(make_assignment("A1", day=date(2024, 1, 2), hours=8))

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 2), 4)

    # --- Assert ---
    assert result.is_valid is False
    assert [c.type for c in result.conflicts] == [ConflictType.DOUBLE_BOOKING]
    c = result.conflicts[0]
    assert c.related_entities == frozenset({"A1", PROPOSED_ASSIGNMENT_ID})
    assert c.metadata["total_hours"] == 12
    assert result.warnings == []


def test_outside_phase_window_always_blocks_first(
    validator, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    # Wrong division and a double booking on the same day would also apply
    store.upsert_employee(make_employee("E1", division=Division.HVAC_COMMERCIAL))
    store.upsert_phase(make_phase("P1"))
    store.upsert_phase(make_phase("P9", start_date=date(2024, 1, 8), end_date=date(2024, 1, 12)))
    store.upsert_assignment(make_assignment("A9", phase_id="P9", day=date(2024, 1, 8), hours=8))

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 8), 8)

    # --- Assert ---
    assert result.is_valid is False
    assert [c.type for c in result.conflicts] == [ConflictType.DATE_RANGE_VIOLATION]
    assert result.conflicts[0].severity == Severity.CRITICAL
    assert result.conflicts[0].entity_id == PROPOSED_ASSIGNMENT_ID


@pytest.mark.parametrize("hours", [0, -2, 24.5, math.nan, True, "4"])
def test_malformed_hours_rejected_before_store_access(cfg, clock, hours):
    validator = AssignmentValidator(_ExplodingStore(), cfg, clock)

    with pytest.raises(InvalidInputError):
        validator.validate("P1", "E1", date(2024, 1, 2), hours)


def test_datetime_is_not_accepted_as_day(validator, p1):
    with pytest.raises(InvalidInputError):
        validator.validate("P1", "E1", datetime(2024, 1, 2, 8, 0), 4)


@pytest.mark.parametrize("phase_id, employee_id", [("NOPE", "E1"), ("P1", "NOPE")])
def test_unknown_ids_raise_not_found(validator, p1, phase_id, employee_id):
    with pytest.raises(NotFoundError):
        validator.validate(phase_id, employee_id, date(2024, 1, 2), 4)


def test_skill_mismatch_is_only_a_warning(validator, store, make_employee, make_phase):
    store.upsert_employee(make_employee("E1", division=Division.HVAC_COMMERCIAL))
    store.upsert_phase(make_phase("P1"))

    result = validator.validate("P1", "E1", date(2024, 1, 2), 4)

    assert result.is_valid is True
    assert result.conflicts == []
    assert [c.type for c in result.warnings] == [ConflictType.SKILL_MISMATCH]


def test_soft_overstaffing_warns(validator, p1, make_employee, make_assignment):
    # --- Arrange ---
    # crew_size 1, hard limit ceil(1.5) = 2; E1 would be the second member
    p1.upsert_employee(make_employee("E2"))
    p1.upsert_assignment(make_assignment("A2", employee_id="E2", day=date(2024, 1, 3)))

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 2), 4)

    # --- Assert ---
    assert result.is_valid is True
    assert [(c.type, c.severity) for c in result.warnings] == [
        (ConflictType.CAPACITY_OVERFLOW, Severity.LOW)
    ]
    assert result.warnings[0].metadata["assigned"] == 2


def test_hard_limit_overstaffing_blocks(
    validator, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    # crew_size 2 -> hard limit 3; three members already on the phase
    store.upsert_phase(make_phase("P1", labor=LaborRequirement(crew_size=2)))
    for eid in ("E1", "E2", "E3", "E4"):
        store.upsert_employee(make_employee(eid))
    for eid in ("E2", "E3", "E4"):
        store.upsert_assignment(make_assignment(f"A-{eid}", employee_id=eid, day=date(2024, 1, 3)))

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 2), 4)

    # --- Assert ---
    assert result.is_valid is False
    assert [(c.type, c.severity) for c in result.conflicts] == [
        (ConflictType.CAPACITY_OVERFLOW, Severity.HIGH)
    ]
    assert result.conflicts[0].metadata["hard_limit"] == 3


def test_existing_crew_member_does_not_grow_headcount(
    validator, p1, make_employee, make_assignment
):
    p1.upsert_employee(make_employee("E2"))
    p1.upsert_assignment(make_assignment("A1", employee_id="E1", day=date(2024, 1, 2), hours=4))
    p1.upsert_assignment(make_assignment("A2", employee_id="E2", day=date(2024, 1, 2), hours=4))

    result = validator.validate("P1", "E1", date(2024, 1, 3), 4)

    assert result.is_valid is True
    assert result.warnings == []


def test_weekly_overallocation_is_a_warning(
    validator, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    # 4 x 8h already booked this week against a 36h weekly capacity
    store.upsert_employee(make_employee("E1", weekly_capacity_hours=36))
    store.upsert_phase(make_phase("P1"))
    store.upsert_assignment(
        make_assignment("A1", day=date(2024, 1, 1), end_date=date(2024, 1, 4), hours=8)
    )

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 5), 8)

    # --- Assert ---
    assert result.is_valid is True
    assert [(c.type, c.severity) for c in result.warnings] == [
        (ConflictType.OVERALLOCATION, Severity.MEDIUM)
    ]
    assert result.warnings[0].metadata["total_hours"] == 40


def test_unrelated_existing_conflicts_are_not_reported(validator, p1, make_assignment):
    # E1 is already double-booked on Wednesday; a Tuesday proposal stays clean
    p1.upsert_assignment(make_assignment("A1", day=date(2024, 1, 3), hours=8))
    p1.upsert_assignment(make_assignment("A2", day=date(2024, 1, 3), hours=4))

    result = validator.validate("P1", "E1", date(2024, 1, 2), 4)

    assert result.is_valid is True
    assert result.warnings == []


def test_near_weekly_limit_is_a_low_warning(validator, p1, make_assignment):
    # --- Arrange ---
    # 32h booked against the default 40h week; 6h more lands above the 36h threshold
    p1.upsert_assignment(
        make_assignment("A1", day=date(2024, 1, 1), end_date=date(2024, 1, 4), hours=8)
    )

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 5), 6)

    # --- Assert ---
    assert result.is_valid is True
    assert [(c.type, c.severity) for c in result.warnings] == [
        (ConflictType.OVERALLOCATION, Severity.LOW)
    ]
    w = result.warnings[0]
    assert w.metadata["approaching"] is True
    assert w.metadata["total_hours"] == 38
    assert w.metadata["excess_hours"] == 0
    assert w.metadata["threshold_hours"] == pytest.approx(36)


def test_near_weekly_limit_threshold_is_configurable(store, cfg, clock, p1, make_assignment):
    p1.upsert_assignment(
        make_assignment("A1", day=date(2024, 1, 1), end_date=date(2024, 1, 4), hours=8)
    )
    relaxed_cfg = cfg.model_copy(update={"weekly_warning_ratio": 1.0})
    relaxed = AssignmentValidator(store, relaxed_cfg, clock)

    result = relaxed.validate("P1", "E1", date(2024, 1, 5), 6)

    assert result.is_valid is True
    assert result.warnings == []


def test_first_assignment_on_phase_without_labor_requirement_is_clean(
    validator, store, make_employee, make_phase
):
    # --- Arrange ---
    store.upsert_employee(make_employee("E1"))
    store.upsert_phase(make_phase("P1", labor=LaborRequirement()))

    # --- Act ---
    result = validator.validate("P1", "E1", date(2024, 1, 2), 8)

    # --- Assert ---
    assert result.is_valid is True
    assert result.conflicts == []
    assert result.warnings == []
