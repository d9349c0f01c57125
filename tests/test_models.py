from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from crewguard.schemas.models import (
    Assignment,
    Conflict,
    ConflictType,
    Division,
    EmployeeType,
    EngineConfig,
    EntityType,
    LaborRequirement,
    Project,
    ProjectStatus,
    ReportConfig,
    ScopeFilter,
    Severity,
)


def test_labor_requirement_role_breakdown():
    labor = LaborRequirement(needs_foreman=True, journeymen=2, apprentices=1)

    assert labor.required_headcount == 4
    assert labor.role_requirements == {
        EmployeeType.FOREMAN: 1,
        EmployeeType.JOURNEYMAN: 2,
        EmployeeType.APPRENTICE: 1,
    }
    assert labor.hard_limit(1.5) == 6


def test_labor_requirement_crew_size_wins_for_headcount():
    labor = LaborRequirement(crew_size=3, needs_foreman=True, journeymen=5)

    assert labor.required_headcount == 3
    assert labor.role_requirements == {EmployeeType.FOREMAN: 1}
    assert labor.hard_limit(1.5) == 5  # ceil(4.5)


def test_severity_total_order():
    ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == 4


def test_project_status_closed_flags():
    assert ProjectStatus.CANCELLED.is_closed
    assert ProjectStatus.COMPLETED.is_closed
    assert not ProjectStatus.ON_HOLD.is_closed


@pytest.mark.parametrize("hours", [0, -1, 24.5])
def test_assignment_rejects_hours_out_of_range(hours):
    with pytest.raises(ValidationError):
        Assignment(
            id="A1",
            employee_id="E1",
            phase_id="P1",
            assignment_date=date(2024, 1, 2),
            hours_allocated=hours,
        )


def test_domain_models_are_frozen(make_employee):
    e = make_employee("E1")
    with pytest.raises(ValidationError):
        e.is_active = False


def test_conflict_dedup_key_ignores_primary_position():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    a = Conflict(
        id="x",
        type=ConflictType.DOUBLE_BOOKING,
        severity=Severity.HIGH,
        entity_type=EntityType.EMPLOYEE,
        entity_id="E1",
        related_entities=frozenset({"A1", "A2"}),
        detected_at=now,
        description="",
    )
    b = a.model_copy(update={"entity_id": "A1", "related_entities": frozenset({"E1", "A2"})})

    assert a.dedup_key == b.dedup_key == (ConflictType.DOUBLE_BOOKING, ("A1", "A2", "E1"))


def test_scope_filter_fingerprint_is_stable():
    assert ScopeFilter().fingerprint() == "all"
    scope = ScopeFilter(division=Division.HVAC_COMMERCIAL, since=date(2024, 1, 1))
    assert scope.fingerprint() == "division=HVAC_COMMERCIAL;since=2024-01-01"
    assert scope.fingerprint() == ScopeFilter(**scope.model_dump()).fingerprint()


def test_engine_config_defaults_and_compatibility(make_employee):
    cfg = EngineConfig(
        division_compatibility={Division.PLUMBING_COMMERCIAL: [Division.PLUMBING_MULTIFAMILY]}
    )

    assert cfg.default_daily_capacity_hours == 8.0
    assert cfg.daily_capacity(make_employee("E1")) == 8.0
    assert cfg.daily_capacity(make_employee("E2", daily_capacity_hours=10)) == 10
    assert cfg.divisions_compatible(Division.PLUMBING_COMMERCIAL, Division.PLUMBING_MULTIFAMILY)
    assert not cfg.divisions_compatible(
        Division.PLUMBING_MULTIFAMILY, Division.PLUMBING_COMMERCIAL
    )


def test_engine_config_forbids_unknown_fields():
    with pytest.raises(ValidationError):
        EngineConfig(unknown_threshold=3)


def test_engine_config_report_section_is_validated():
    cfg = EngineConfig()

    assert isinstance(cfg.report, ReportConfig)
    assert cfg.report.write_report is True
    assert cfg.weekly_warning_ratio == 0.9
    with pytest.raises(ValidationError):
        EngineConfig(report={"write_report": True, "bogus": 1})


def test_project_window_must_not_be_inverted():
    with pytest.raises(ValidationError, match="project window"):
        Project(
            id="PR1",
            division=Division.PLUMBING_MULTIFAMILY,
            start_date=date(2024, 1, 10),
            end_date=date(2024, 1, 1),
        )


def test_open_ended_and_single_day_windows_are_accepted(make_project, make_phase):
    project = make_project("PR1", end_date=None)
    phase = make_phase("P1", start_date=date(2024, 1, 3), end_date=date(2024, 1, 3))

    assert project.end_date is None
    assert phase.start_date == phase.end_date


def test_phase_window_must_not_be_inverted(make_phase):
    with pytest.raises(ValidationError, match="phase window"):
        make_phase("P1", start_date=date(2024, 1, 5), end_date=date(2024, 1, 1))


def test_assignment_block_must_not_end_before_it_starts(make_assignment):
    with pytest.raises(ValidationError, match="assignment block"):
        make_assignment("A1", day=date(2024, 1, 3), end_date=date(2024, 1, 2))


def test_availability_window_must_not_be_inverted(make_employee):
    with pytest.raises(ValidationError, match="availability window"):
        make_employee(
            "E1", availability_start=date(2024, 2, 1), availability_end=date(2024, 1, 1)
        )
