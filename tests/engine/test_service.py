import logging
from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest

from crewguard import ConflictEngine
from crewguard.schemas.models import (
    ConflictType,
    LaborRequirement,
    ScopeFilter,
    Severity,
)


@pytest.fixture()
def double_booked(store, make_employee, make_phase, make_assignment):
    store.upsert_employee(make_employee("E1"))
    store.upsert_employee(make_employee("E2"))
    store.upsert_phase(make_phase("P1", labor=LaborRequirement(crew_size=2)))
    store.upsert_assignment(make_assignment("A1", hours=8))
    store.upsert_assignment(make_assignment("A2", hours=4))
    store.upsert_assignment(make_assignment("A3", employee_id="E2", day=date(2024, 1, 3)))
    return store


def test_rejects_second_booking_on_a_full_day(
    engine, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    store.upsert_employee(make_employee("E1"))
    store.upsert_phase(make_phase("P1"))
    store.upsert_assignment(make_assignment("A1", hours=8))

    # --- Act ---
    result = engine.validate_assignment("P1", "E1", date(2024, 1, 2), 4)

    # --- Assert ---
    assert result.is_valid is False
    assert [c.type for c in result.conflicts] == [ConflictType.DOUBLE_BOOKING]
    assert result.conflicts[0].metadata["total_hours"] == 12


def test_understaffed_phase_starting_soon_is_high(
    engine, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    store.upsert_employee(make_employee("E1"))
    store.upsert_phase(
        make_phase(
            "P2",
            start_date=date(2024, 1, 4),
            end_date=date(2024, 1, 10),
            labor=LaborRequirement(crew_size=3),
        )
    )
    store.upsert_assignment(make_assignment("A1", phase_id="P2", day=date(2024, 1, 4)))

    # --- Act ---
    conflicts = engine.scan_all_conflicts()

    # --- Assert ---
    assert len(conflicts) == 1
    c = conflicts[0]
    assert (c.type, c.severity, c.entity_id) == (
        ConflictType.CAPACITY_OVERFLOW,
        Severity.HIGH,
        "P2",
    )
    assert c.metadata["shortfall"] == 2
    assert c.metadata["days_until_start"] == 3


def test_repeated_scans_agree_apart_from_detection_time(store, cfg, double_booked):
    # --- Arrange ---
    ticks = count()
    t0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    engine = ConflictEngine(store, cfg, clock=lambda: t0 + timedelta(seconds=next(ticks)))

    # --- Act ---
    first = engine.scan_all_conflicts(force_refresh=True)
    second = engine.scan_all_conflicts(force_refresh=True)

    # --- Assert ---
    def stable(cs):
        return [(c.id, c.type, c.severity, c.entity_id, c.description) for c in cs]

    assert first and stable(first) == stable(second)
    assert first[0].detected_at != second[0].detected_at


def test_results_stay_cached_until_cleared(engine, double_booked):
    # --- Arrange ---
    assert len(engine.scan_all_conflicts()) == 1
    double_booked.remove_assignment("A2")

    # --- Act ---
    stale = engine.scan_all_conflicts()
    engine.clear_cache()
    fresh = engine.scan_all_conflicts()

    # --- Assert ---
    assert [c.type for c in stale] == [ConflictType.DOUBLE_BOOKING]
    assert fresh == []


def test_force_refresh_bypasses_cache(engine, double_booked):
    engine.scan_all_conflicts()
    double_booked.remove_assignment("A2")

    assert engine.scan_all_conflicts(force_refresh=True) == []


def test_store_listener_invalidates_cache(engine, double_booked):
    double_booked.add_listener(engine.on_store_change)
    assert len(engine.scan_all_conflicts()) == 1

    double_booked.remove_assignment("A2")

    assert engine.scan_all_conflicts() == []
    assert len(engine.cache) == 1  # repopulated by the second scan


def test_clear_cache_logs(engine, caplog):
    caplog.set_level(logging.INFO, logger="crewguard.engine.service")

    engine.clear_cache()

    assert "Conflict cache cleared" in caplog.text


def test_validation_does_not_touch_cache(engine, double_booked):
    engine.validate_assignment("P1", "E2", date(2024, 1, 4), 4)

    assert len(engine.cache) == 0


def test_scan_results_ordered_by_severity(
    engine, store, make_employee, make_phase, make_assignment
):
    # --- Arrange ---
    store.upsert_employee(make_employee("E1"))
    store.upsert_employee(make_employee("E2"))
    store.upsert_phase(make_phase("P1"))
    store.upsert_assignment(make_assignment("A1", hours=8))
    store.upsert_assignment(make_assignment("A2", hours=4))
    store.upsert_assignment(make_assignment("A3", employee_id="E2", day=date(2024, 1, 3)))

    # --- Act ---
    conflicts = engine.scan_all_conflicts()

    # --- Assert ---
    assert [c.type for c in conflicts] == [
        ConflictType.DOUBLE_BOOKING,
        ConflictType.CAPACITY_OVERFLOW,
    ]
    ranks = [c.severity.rank for c in conflicts]
    assert ranks == sorted(ranks, reverse=True)


def test_scope_limits_the_audit(engine, double_booked):
    conflicts = engine.scan_all_conflicts(ScopeFilter(employee_id="E2"))

    assert all(c.type != ConflictType.DOUBLE_BOOKING for c in conflicts)
    assert len(engine.cache) == 1


def test_suggestions_through_engine(engine, double_booked):
    conflict = engine.scan_all_conflicts()[0]

    suggestions = engine.get_resolution_suggestions(conflict)

    assert suggestions
    assert suggestions[0].rank == 1
