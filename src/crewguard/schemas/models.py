"""
@brief
Pydantic data models for the CrewGuard conflict engine.

@details
Defines the canonical model families:
    - Domain snapshots read from the assignment store
      (Employee, Project, Phase, Assignment)
    - Derived engine values (Conflict, ValidationResult, Suggestion)
    - Query scope (ScopeFilter)
    - Runtime configuration (EngineConfig, loaded from config.yaml)

Domain models are frozen: the engine only reads snapshots and never mutates
records owned by the store. Categorical fields are closed enumerations.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class _StrictBaseModel(BaseModel):
    """
    @brief
    Base model enforcing strict defaults for configuration contracts.

    @details
    Forbids unknown fields and preserves exact naming rules.
    """

    model_config = {
        "extra": "forbid",  # Reject unknown fields
        "populate_by_name": True,  # Allow population by field name
    }


class _DomainModel(BaseModel):
    """
    @brief
    Base model for immutable domain snapshots.

    @details
    Same strictness as configuration models, plus `frozen=True` so that a
    snapshot handed to the evaluators cannot drift while a scan is running.
    Enum members are kept as enums (not raw values) for exhaustive matching.
    """

    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "frozen": True,
    }


def _check_order(start: date | None, end: date | None, what: str) -> None:
    if start is not None and end is not None and start > end:
        raise ValueError(f"{what}: start {start.isoformat()} is after end {end.isoformat()}")


# ------------------------------------------------------------
# Closed enumerations
# ------------------------------------------------------------
class Division(str, Enum):
    """Trade divisions an employee or project belongs to."""

    PLUMBING_MULTIFAMILY = "PLUMBING_MULTIFAMILY"
    PLUMBING_COMMERCIAL = "PLUMBING_COMMERCIAL"
    PLUMBING_CUSTOM = "PLUMBING_CUSTOM"
    HVAC_MULTIFAMILY = "HVAC_MULTIFAMILY"
    HVAC_COMMERCIAL = "HVAC_COMMERCIAL"


class EmployeeType(str, Enum):
    FOREMAN = "FOREMAN"
    JOURNEYMAN = "JOURNEYMAN"
    APPRENTICE = "APPRENTICE"


class ProjectStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

    @property
    def is_closed(self) -> bool:
        """True for projects that must not receive labor anymore."""
        return self in (ProjectStatus.CANCELLED, ProjectStatus.COMPLETED)


class ConflictType(str, Enum):
    DOUBLE_BOOKING = "DOUBLE_BOOKING"
    OVERALLOCATION = "OVERALLOCATION"
    SKILL_MISMATCH = "SKILL_MISMATCH"
    CAPACITY_OVERFLOW = "CAPACITY_OVERFLOW"
    DATE_RANGE_VIOLATION = "DATE_RANGE_VIOLATION"


class Severity(str, Enum):
    """Conflict severity; total order CRITICAL > HIGH > MEDIUM > LOW."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class EntityType(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    PHASE = "PHASE"
    PROJECT = "PROJECT"
    ASSIGNMENT = "ASSIGNMENT"


class SuggestionType(str, Enum):
    ALTERNATE_DATE = "ALTERNATE_DATE"
    ALTERNATE_EMPLOYEE = "ALTERNATE_EMPLOYEE"
    ADD_CREW = "ADD_CREW"
    REDUCE_CREW = "REDUCE_CREW"
    REDUCE_HOURS = "REDUCE_HOURS"
    MOVE_INTO_WINDOW = "MOVE_INTO_WINDOW"
    REMOVE_ASSIGNMENT = "REMOVE_ASSIGNMENT"
    SINGLE_LEAD = "SINGLE_LEAD"


# ------------------------------------------------------------
# Store-owned domain snapshots
# ------------------------------------------------------------
class Employee(_DomainModel):
    """
    @brief
    Snapshot of one crew member as read from the assignment store.

    @params
        daily_capacity_hours : float | None
            Per-day hour limit; None means the engine default applies.
        availability_start / availability_end : date | None
            Inclusive availability window; open-ended when None.
    """

    id: str = Field(..., description="Unique employee identifier")
    name: str = Field("", description="Display name")
    division: Division
    employee_type: EmployeeType = EmployeeType.JOURNEYMAN
    is_active: bool = True
    weekly_capacity_hours: float = Field(40.0, gt=0.0, le=168.0)
    daily_capacity_hours: float | None = Field(None, gt=0.0, le=24.0)
    skills: tuple[str, ...] = ()
    availability_start: date | None = None
    availability_end: date | None = None

    @model_validator(mode="after")
    def _availability_order(self) -> Employee:
        _check_order(self.availability_start, self.availability_end, "availability window")
        return self


class Project(_DomainModel):
    id: str = Field(..., description="Unique project identifier")
    name: str = ""
    division: Division
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: date
    end_date: date | None = None

    @model_validator(mode="after")
    def _window_order(self) -> Project:
        _check_order(self.start_date, self.end_date, "project window")
        return self


class LaborRequirement(_DomainModel):
    """
    @brief
    Labor requirement of a phase.

    @details
    Either a plain `crew_size`, or a role breakdown
    `(needs_foreman, journeymen, apprentices)`. When `crew_size` is set it wins
    for the headcount total; the role breakdown is still honored for the
    foreman requirement.
    """

    crew_size: int | None = Field(None, ge=0)
    needs_foreman: bool = False
    journeymen: int = Field(0, ge=0)
    apprentices: int = Field(0, ge=0)

    @property
    def required_headcount(self) -> int:
        if self.crew_size is not None:
            return self.crew_size
        return int(self.needs_foreman) + self.journeymen + self.apprentices

    @property
    def role_requirements(self) -> dict[EmployeeType, int]:
        """Per-role minimums; empty when only `crew_size` is declared."""
        if self.crew_size is not None:
            return {EmployeeType.FOREMAN: 1} if self.needs_foreman else {}
        roles = {
            EmployeeType.FOREMAN: int(self.needs_foreman),
            EmployeeType.JOURNEYMAN: self.journeymen,
            EmployeeType.APPRENTICE: self.apprentices,
        }
        return {role: count for role, count in roles.items() if count > 0}

    def hard_limit(self, ratio: float) -> int:
        """Headcount above which overstaffing blocks a new assignment."""
        return math.ceil(self.required_headcount * ratio)


class Phase(_DomainModel):
    id: str = Field(..., description="Unique phase identifier")
    name: str = ""
    project: Project
    start_date: date
    end_date: date
    labor: LaborRequirement = Field(default_factory=LaborRequirement)
    progress_percentage: float = Field(0.0, ge=0.0, le=100.0)
    required_skills: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _window_order(self) -> Phase:
        _check_order(self.start_date, self.end_date, "phase window")
        return self

    @property
    def project_id(self) -> str:
        return self.project.id

    @property
    def division(self) -> Division:
        return self.project.division


class Assignment(_DomainModel):
    """
    @brief
    One employee's committed labor against a phase.

    @details
    `assignment_date` is a single day, or the first day of a multi-day block
    ending at `end_date` (inclusive). `hours_allocated` applies to every day of
    the block.
    """

    id: str = Field(..., description="Unique assignment identifier")
    employee_id: str
    phase_id: str
    assignment_date: date
    end_date: date | None = None
    hours_allocated: float = Field(..., gt=0.0, le=24.0)
    is_lead: bool = False
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _window_order(self) -> Assignment:
        _check_order(self.assignment_date, self.end_date, "assignment block")
        return self

    @property
    def last_date(self) -> date:
        return self.end_date or self.assignment_date


# ------------------------------------------------------------
# Derived engine values
# ------------------------------------------------------------
class Conflict(_DomainModel):
    """
    @brief
    Derived finding that an invariant over assignments is violated or at risk.

    @details
    Never persisted by the engine. Two conflicts describe the same finding
    when their `dedup_key` matches.
    """

    id: str
    type: ConflictType
    severity: Severity
    entity_type: EntityType
    entity_id: str
    related_entities: frozenset[str] = frozenset()
    detected_at: datetime
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[ConflictType, tuple[str, ...]]:
        return self.type, tuple(sorted({self.entity_id} | set(self.related_entities)))


class ValidationResult(_DomainModel):
    is_valid: bool
    conflicts: list[Conflict] = Field(default_factory=list)
    warnings: list[Conflict] = Field(default_factory=list)


class Suggestion(_DomainModel):
    """Read-only remediation proposal for one conflict."""

    rank: int = Field(..., ge=1)
    suggestion_type: SuggestionType
    conflict_id: str
    description: str
    employee_id: str | None = None
    phase_id: str | None = None
    assignment_id: str | None = None
    proposed_date: date | None = None
    window_start: date | None = None
    window_end: date | None = None
    remaining_capacity_hours: float | None = None


class ScopeFilter(_DomainModel):
    """
    @brief
    Query scope shared by the store adapter and the conflict cache.

    @details
    All fields are optional; an empty filter means "everything active".
    `since`/`until` bound assignment days (inclusive).
    """

    since: date | None = None
    until: date | None = None
    employee_id: str | None = None
    phase_id: str | None = None
    project_id: str | None = None
    division: Division | None = None

    def fingerprint(self) -> str:
        """Stable cache key; "all" for the unfiltered scope."""
        parts = []
        for name, value in sorted(self.model_dump(exclude_none=True).items()):
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            parts.append(f"{name}={value}")
        return ";".join(parts) if parts else "all"


# ------------------------------------------------------------
# Runtime configuration
# ------------------------------------------------------------
class ReportConfig(_StrictBaseModel):
    """
    @brief
    Controls the audit report written by the CLI runner.
    """

    write_report: bool = True
    include_suggestions: bool = True


class EngineConfig(_StrictBaseModel):
    """
    @brief
    Runtime configuration loaded from config.yaml.

    @details
    Thresholds and horizons used by the rule evaluators, the validator,
    the advisor and the cache. Defaults are usable without a config file.
    """

    timezone: str = Field("UTC", description="IANA timezone name used to derive 'today'")
    default_daily_capacity_hours: float = Field(
        8.0, gt=0.0, le=24.0, description="Daily capacity when the employee declares none"
    )
    overallocation_escalation_ratio: float = Field(
        0.2, ge=0.0, description="Weekly overrun fraction above which OVERALLOCATION is HIGH"
    )
    weekly_warning_ratio: float = Field(
        0.9, gt=0.0, le=1.0, description="Fraction of weekly capacity above which validation warns"
    )
    understaffing_horizon_days: int = Field(
        7, ge=0, description="Days before phase start at which understaffing becomes HIGH"
    )
    lookback_days: int = Field(
        14, ge=0, description="Historical window included in a default scan"
    )
    capacity_hard_limit_ratio: float = Field(
        1.5, ge=1.0, description="Headcount ratio above which overstaffing blocks validation"
    )
    max_suggestions: int = Field(5, ge=1, description="Maximum suggestions per conflict")
    cache_max_entries: int = Field(32, ge=1, description="Maximum cached scan scopes")
    week_start_day: int = Field(0, ge=0, le=6, description="0 = Monday ... 6 = Sunday")
    division_compatibility: dict[Division, list[Division]] = Field(
        default_factory=dict,
        description="Extra divisions an employee division may staff, keyed by employee division",
    )

    output_dir: str | None = "data/output"
    report: ReportConfig = Field(default_factory=ReportConfig)

    def daily_capacity(self, employee: Employee) -> float:
        if employee.daily_capacity_hours is not None:
            return employee.daily_capacity_hours
        return self.default_daily_capacity_hours

    def divisions_compatible(self, employee_division: Division, project_division: Division) -> bool:
        if employee_division == project_division:
            return True
        return project_division in self.division_compatibility.get(employee_division, [])


__all__ = [
    "Assignment",
    "Conflict",
    "ConflictType",
    "Division",
    "Employee",
    "EmployeeType",
    "EngineConfig",
    "EntityType",
    "LaborRequirement",
    "Phase",
    "Project",
    "ProjectStatus",
    "ReportConfig",
    "ScopeFilter",
    "Severity",
    "Suggestion",
    "SuggestionType",
    "ValidationResult",
]
