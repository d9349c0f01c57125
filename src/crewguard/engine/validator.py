# src/crewguard/engine/validator.py
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta

from crewguard.engine.rules import (
    OVERSTAFFED,
    evaluate_date_range,
    evaluate_double_booking,
    evaluate_overallocation,
    evaluate_skill_mismatch,
    evaluate_weekly_headroom,
    make_conflict,
)
from crewguard.engine.snapshot import Clock, WorkingSet, WorkingSetBuilder, utc_now
from crewguard.engine.time_window import TimeWindow, week_start
from crewguard.errors import InvalidInputError
from crewguard.schemas.models import (
    Assignment,
    Conflict,
    ConflictType,
    EngineConfig,
    EntityType,
    Phase,
    ScopeFilter,
    Severity,
    ValidationResult,
)
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)

PROPOSED_ASSIGNMENT_ID = "proposed"


def _involves(conflict: Conflict, assignment_id: str) -> bool:
    return assignment_id == conflict.entity_id or assignment_id in conflict.related_entities


class AssignmentValidator:
    """
    @brief
    Synchronous pre-commit check for one proposed assignment.

    @details
    Scoped to the single employee/phase pair: only the employee's commitments
    in the surrounding weeks and the phase's current crew are read. The cache
    is never touched, so every result is fresh.

    Blocking checks run first and short-circuit in this order:
      DATE_RANGE_VIOLATION → DOUBLE_BOOKING → CAPACITY_OVERFLOW at hard limit.
    If none blocks, non-blocking warnings are collected:
      SKILL_MISMATCH, OVERALLOCATION (overrun or near the weekly limit),
      soft CAPACITY_OVERFLOW.
    Phases without a labor requirement skip both capacity checks.
    """

    def __init__(self, store: AssignmentStore, cfg: EngineConfig, clock: Clock = utc_now) -> None:
        self.store = store
        self.cfg = cfg
        self.clock = clock

    def validate(
        self, phase_id: str, employee_id: str, day: date, hours: float
    ) -> ValidationResult:
        """
        @brief
        Validate a proposed assignment before it is persisted.

        @params
            phase_id : str
                Target phase.
            employee_id : str
                Employee to assign.
            day : date
                Assignment date.
            hours : float
                Hours allocated on that day, in (0, 24].

        @returns
            ValidationResult; `is_valid` is False iff a blocking conflict exists.

        @raises
            InvalidInputError
                Hours out of range or `day` not a date; raised before any store read.
            NotFoundError
                Phase or employee id does not resolve.
            StoreUnavailableError
                The store failed to return data.
        """
        # (1) Reject malformed input before touching the store
        self._check_input(day, hours)

        # (2) Resolve the pair and the commitments around the proposed day
        builder = WorkingSetBuilder(self.store, self.clock, self.cfg.timezone)
        phase = builder.phase(phase_id)
        builder.employee(employee_id)
        candidate = Assignment(
            id=PROPOSED_ASSIGNMENT_ID,
            employee_id=employee_id,
            phase_id=phase_id,
            assignment_date=day,
            hours_allocated=hours,
        )
        first = week_start(day, self.cfg.week_start_day)
        around = TimeWindow(first, first + timedelta(days=6))
        existing = builder.assignments(
            ScopeFilter(employee_id=employee_id, since=around.start, until=around.end)
        )
        crew = builder.assignments(ScopeFilter(phase_id=phase_id))
        ws = builder.build([*existing, candidate], [phase], {phase_id: crew})

        only_candidate = self._only_candidate(ws, candidate)
        crew_before = self._active_crew(ws, phase)
        joins_crew = candidate.employee_id not in crew_before
        headcount = len(crew_before) + int(joins_crew)

        # (3) Blocking checks, short-circuit on the first finding
        blocking_checks = (
            lambda: evaluate_date_range(only_candidate, self.cfg),
            lambda: self._scoped(evaluate_double_booking(ws, self.cfg)),
            lambda: self._hard_capacity(ws, phase, candidate, headcount, joins_crew),
        )
        for check in blocking_checks:
            blocking = check()
            if blocking:
                logger.info(
                    "Validation rejected %s on %s for %s: %s",
                    employee_id,
                    day.isoformat(),
                    phase_id,
                    blocking[0].type.value,
                )
                return ValidationResult(is_valid=False, conflicts=blocking, warnings=[])

        # (4) Non-blocking warnings
        warnings: list[Conflict] = []
        warnings.extend(evaluate_skill_mismatch(only_candidate, self.cfg))
        warnings.extend(self._scoped(evaluate_overallocation(ws, self.cfg)))
        warnings.extend(self._scoped(evaluate_weekly_headroom(ws, self.cfg)))
        warnings.extend(self._soft_capacity(ws, phase, candidate, headcount, joins_crew))

        return ValidationResult(is_valid=True, conflicts=[], warnings=warnings)

    # ---------- Input checks ----------
    @staticmethod
    def _check_input(day: date, hours: float) -> None:
        if isinstance(day, datetime) or not isinstance(day, date):
            raise InvalidInputError(
                message=f"Assignment date must be a date, got {type(day).__name__}",
                source="AssignmentValidator.validate",
                suggested_action="Pass a datetime.date for the assignment day.",
            )
        if isinstance(hours, bool) or not isinstance(hours, (int, float)) or math.isnan(hours):
            raise InvalidInputError(
                message=f"Hours must be a number, got {hours!r}",
                source="AssignmentValidator.validate",
                suggested_action="Pass hours as a number in (0, 24].",
            )
        if hours <= 0 or hours > 24:
            raise InvalidInputError(
                message=f"Hours out of range: {hours} (expected 0 < hours <= 24)",
                source="AssignmentValidator.validate",
                suggested_action="Allocate more than 0 and at most 24 hours per day.",
            )

    # ---------- Scoping helpers ----------
    @staticmethod
    def _only_candidate(ws: WorkingSet, candidate: Assignment) -> WorkingSet:
        """Same snapshot restricted to the proposed assignment."""
        return WorkingSet(
            assignments=(candidate,),
            employees=ws.employees,
            phases=ws.phases,
            phase_assignments=ws.phase_assignments,
            today=ws.today,
            detected_at=ws.detected_at,
            audited_phase_ids=ws.audited_phase_ids,
        )

    @staticmethod
    def _scoped(conflicts: list[Conflict]) -> list[Conflict]:
        """Keep only findings the proposed assignment takes part in (per-employee rules)."""
        return [c for c in conflicts if _involves(c, PROPOSED_ASSIGNMENT_ID)]

    # ---------- Staffing ----------
    @staticmethod
    def _active_crew(ws: WorkingSet, phase: Phase) -> set[str]:
        return {
            a.employee_id
            for a in ws.phase_assignments.get(phase.id, ())
            if ws.employee(a.employee_id).is_active
        }

    def _capacity_conflict(
        self, ws: WorkingSet, phase: Phase, candidate: Assignment, headcount: int, hard: bool
    ) -> Conflict:
        required = phase.labor.required_headcount
        limit = phase.labor.hard_limit(self.cfg.capacity_hard_limit_ratio)
        severity = Severity.HIGH if hard else Severity.LOW
        label = "beyond hard limit" if hard else "above requirement"
        return make_conflict(
            ConflictType.CAPACITY_OVERFLOW,
            severity,
            EntityType.PHASE,
            phase.id,
            [phase.project_id, candidate.id],
            f"Phase {phase.name or phase.id} would have {headcount}/{required} crew ({label})",
            ws.detected_at,
            metadata={
                "phase_id": phase.id,
                "project_id": phase.project_id,
                "division": phase.division.value,
                "direction": OVERSTAFFED,
                "required": required,
                "assigned": headcount,
                "excess": headcount - required,
                "hard_limit": limit,
                "employee_id": candidate.employee_id,
            },
        )

    def _hard_capacity(
        self, ws: WorkingSet, phase: Phase, candidate: Assignment, headcount: int, joins: bool
    ) -> list[Conflict]:
        if phase.labor.required_headcount == 0:
            return []
        limit = phase.labor.hard_limit(self.cfg.capacity_hard_limit_ratio)
        if joins and headcount > limit:
            return [self._capacity_conflict(ws, phase, candidate, headcount, hard=True)]
        return []

    def _soft_capacity(
        self, ws: WorkingSet, phase: Phase, candidate: Assignment, headcount: int, joins: bool
    ) -> list[Conflict]:
        if phase.labor.required_headcount == 0:
            return []
        if joins and headcount > phase.labor.required_headcount:
            return [self._capacity_conflict(ws, phase, candidate, headcount, hard=False)]
        return []
