# src/crewguard/engine/advisor.py
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from crewguard.engine.rules import (
    EMPLOYEE_INACTIVE,
    MULTIPLE_LEADS,
    OVERSTAFFED,
    PROJECT_CLOSED,
)
from crewguard.engine.snapshot import Clock, WorkingSetBuilder, local_today, store_call, utc_now
from crewguard.engine.time_window import (
    TimeWindow,
    assignment_window,
    availability_window,
    phase_window,
    project_window,
)
from crewguard.engine.validator import PROPOSED_ASSIGNMENT_ID
from crewguard.errors import InvalidInputError
from crewguard.schemas.models import (
    Conflict,
    ConflictType,
    Division,
    Employee,
    EmployeeType,
    EngineConfig,
    Phase,
    ScopeFilter,
    Suggestion,
    SuggestionType,
)
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """Replacement employee with the spare hours found in the target window."""

    employee: Employee
    remaining_hours: float
    division_match: bool

    def sort_key(self) -> tuple[float, bool, str]:
        # Remaining capacity desc, exact division first, then id
        return (-self.remaining_hours, not self.division_match, self.employee.id)


def _meta(conflict: Conflict, key: str) -> Any:
    try:
        return conflict.metadata[key]
    except KeyError:
        raise InvalidInputError(
            message=f"Conflict {conflict.id} lacks metadata '{key}' required for suggestions",
            source="ResolutionAdvisor.suggest",
            suggested_action="Pass a conflict produced by the scanner or the validator.",
        ) from None


def _iso(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class ResolutionAdvisor:
    """
    @brief
    Proposes ranked, read-only remediation options for one conflict.

    @details
    Candidate employees are ordered by a deterministic comparator:
    remaining capacity in the target window (descending), exact division
    match before a merely compatible one, then employee id. At most
    `cfg.max_suggestions` suggestions are returned, ranked from 1.
    The advisor never writes to the store and does not re-validate what it
    proposes; callers run the validator on the option they pick.
    """

    _HANDLERS: dict[ConflictType, str] = {
        ConflictType.DOUBLE_BOOKING: "_for_double_booking",
        ConflictType.OVERALLOCATION: "_for_overallocation",
        ConflictType.SKILL_MISMATCH: "_for_skill_mismatch",
        ConflictType.CAPACITY_OVERFLOW: "_for_capacity",
        ConflictType.DATE_RANGE_VIOLATION: "_for_date_range",
    }

    def __init__(self, store: AssignmentStore, cfg: EngineConfig, clock: Clock = utc_now) -> None:
        self.store = store
        self.cfg = cfg
        self.clock = clock

    def suggest(self, conflict: Conflict) -> list[Suggestion]:
        """
        @brief
        Ranked suggestions for `conflict`; empty when nothing viable is found.

        @raises
            InvalidInputError
                The conflict lacks the metadata its type needs.
            NotFoundError
                A referenced employee or phase no longer exists.
            StoreUnavailableError
                The store failed to return data.
        """
        builder = WorkingSetBuilder(self.store, self.clock, self.cfg.timezone)
        today = local_today(self.clock(), self.cfg.timezone)
        handler = getattr(self, self._HANDLERS[conflict.type])
        drafts: list[dict[str, Any]] = handler(conflict, builder, today)

        suggestions = [
            Suggestion(rank=rank, conflict_id=conflict.id, **draft)
            for rank, draft in enumerate(drafts[: self.cfg.max_suggestions], start=1)
        ]
        logger.debug(
            "Advisor: %d suggestion(s) for %s %s",
            len(suggestions),
            conflict.type.value,
            conflict.id,
        )
        return suggestions

    # ---------- Per-type handlers ----------
    def _for_double_booking(
        self, conflict: Conflict, builder: WorkingSetBuilder, today: date
    ) -> list[dict[str, Any]]:
        employee = builder.employee(_meta(conflict, "employee_id"))
        hours_by_id: dict[str, float] = _meta(conflict, "hours_by_assignment")
        phase_by_id: dict[str, str] = _meta(conflict, "phase_by_assignment")
        dates = sorted(date.fromisoformat(d) for d in _meta(conflict, "dates"))

        # (1) Move the proposed assignment if present, else the lightest one
        mover = min(hours_by_id, key=lambda i: (i != PROPOSED_ASSIGNMENT_ID, hours_by_id[i], i))
        hours = hours_by_id[mover]
        phase = builder.phase(phase_by_id[mover])

        # (2) Other days in the phase window with spare daily capacity
        alternates: list[dict[str, Any]] = []
        window = self._bookable_window(phase, employee, today)
        if window is not None:
            capacity = self.cfg.daily_capacity(employee)
            booked = self._booked_hours(employee.id, window, exclude={mover})
            days = sorted(
                (d for d in window.days() if d not in dates),
                key=lambda d: (abs((d - dates[0]).days), d),
            )
            for day in days:
                spare = capacity - booked.get(day, 0.0)
                if spare < hours:
                    continue
                alternates.append(
                    {
                        "suggestion_type": SuggestionType.ALTERNATE_DATE,
                        "description": (
                            f"Move assignment {mover} to {day.isoformat()} "
                            f"({spare:g}h free for {employee.name or employee.id})"
                        ),
                        "employee_id": employee.id,
                        "phase_id": phase.id,
                        "assignment_id": mover,
                        "proposed_date": day,
                        "remaining_capacity_hours": spare,
                    }
                )
                if len(alternates) >= (self.cfg.max_suggestions + 1) // 2:
                    break

        # (3) Qualified employees free on the overbooked days
        target = TimeWindow(dates[0], dates[-1])
        candidates = self._rank_candidates(
            phase, target, daily_hours=hours, exclude={employee.id}
        )
        return alternates + [
            self._alternate_employee(c, phase, mover, f"Reassign {mover} to") for c in candidates
        ]

    def _for_overallocation(
        self, conflict: Conflict, builder: WorkingSetBuilder, today: date
    ) -> list[dict[str, Any]]:
        employee = builder.employee(_meta(conflict, "employee_id"))
        week = date.fromisoformat(_meta(conflict, "week_start"))
        excess = float(_meta(conflict, "excess_hours"))
        limit = "capacity"
        if conflict.metadata.get("approaching"):
            # Near the limit: trim back under the warning threshold instead
            excess = float(_meta(conflict, "total_hours")) - float(
                _meta(conflict, "threshold_hours")
            )
            limit = "the warning threshold"
        hours_by_id: dict[str, float] = _meta(conflict, "hours_by_assignment")
        phase_by_id: dict[str, str] = _meta(conflict, "phase_by_assignment")
        week_window = TimeWindow(week, week + timedelta(days=6))

        # (1) Trim the week back under the limit, starting from the largest assignment
        largest = max(hours_by_id, key=lambda i: (hours_by_id[i], i))
        drafts: list[dict[str, Any]] = [
            {
                "suggestion_type": SuggestionType.REDUCE_HOURS,
                "description": (
                    f"Reduce {employee.name or employee.id}'s hours in week of "
                    f"{week.isoformat()} by {excess:g}h to get back to {limit} "
                    f"(largest: {largest})"
                ),
                "employee_id": employee.id,
                "assignment_id": largest,
                "phase_id": phase_by_id.get(largest),
                "window_start": week_window.start,
                "window_end": week_window.end,
            }
        ]

        # (2) Hand the largest assignment to someone with room that week
        phase = builder.phase(phase_by_id[largest])
        target = week_window.intersection(phase_window(phase))
        if target is not None:
            candidates = self._rank_candidates(
                phase, target, min_remaining=hours_by_id[largest], exclude={employee.id}
            )
            drafts.extend(
                self._alternate_employee(c, phase, largest, f"Reassign {largest} to")
                for c in candidates
            )
        return drafts

    def _for_skill_mismatch(
        self, conflict: Conflict, builder: WorkingSetBuilder, today: date
    ) -> list[dict[str, Any]]:
        employee_id = _meta(conflict, "employee_id")
        phase = builder.phase(_meta(conflict, "phase_id"))
        window = self._remaining_phase_window(phase, today)
        if window is None:
            return []
        candidates = self._rank_candidates(phase, window, exclude={employee_id})
        return [
            self._alternate_employee(c, phase, None, f"Replace {employee_id} on {phase.id} with")
            for c in candidates
        ]

    def _for_capacity(
        self, conflict: Conflict, builder: WorkingSetBuilder, today: date
    ) -> list[dict[str, Any]]:
        phase = builder.phase(conflict.entity_id)
        direction = _meta(conflict, "direction")
        if direction == MULTIPLE_LEADS:
            return self._single_lead(conflict, builder, phase)
        if direction == OVERSTAFFED:
            return self._reduce_crew(conflict, builder, phase)

        window = self._remaining_phase_window(phase, today)
        if window is None:
            return []
        missing_foreman = bool(conflict.metadata.get("missing_foreman", False))
        candidates = self._rank_candidates(
            phase,
            window,
            exclude=set(conflict.metadata.get("crew_ids", ())),
            foremen_first=missing_foreman,
        )
        return [
            {
                "suggestion_type": SuggestionType.ADD_CREW,
                "description": (
                    f"Add {c.employee.name or c.employee.id} "
                    f"({c.employee.employee_type.value.lower()}) to phase "
                    f"{phase.name or phase.id}, {c.remaining_hours:g}h free "
                    f"{window.start.isoformat()}..{window.end.isoformat()}"
                ),
                "employee_id": c.employee.id,
                "phase_id": phase.id,
                "window_start": window.start,
                "window_end": window.end,
                "remaining_capacity_hours": c.remaining_hours,
            }
            for c in candidates
        ]

    def _for_date_range(
        self, conflict: Conflict, builder: WorkingSetBuilder, today: date
    ) -> list[dict[str, Any]]:
        assignment_id = _meta(conflict, "assignment_id")
        reasons: list[str] = _meta(conflict, "reasons")
        phase = builder.phase(_meta(conflict, "phase_id"))
        valid_start = _iso(conflict.metadata.get("valid_start"))
        valid_end = _iso(conflict.metadata.get("valid_end"))
        current = date.fromisoformat(_meta(conflict, "assignment_date"))

        remove = {
            "suggestion_type": SuggestionType.REMOVE_ASSIGNMENT,
            "description": f"Remove assignment {assignment_id}; no valid dates remain",
            "assignment_id": assignment_id,
            "phase_id": phase.id,
        }

        # (1) Nothing to move into
        if PROJECT_CLOSED in reasons or valid_start is None or valid_end is None:
            return [remove]
        bounds = TimeWindow(valid_start, valid_end)

        # (2) Inactive employee: the work needs someone else
        if EMPLOYEE_INACTIVE in reasons:
            target = TimeWindow.single(current) if bounds.contains(current) else bounds
            candidates = self._rank_candidates(
                phase,
                target,
                daily_hours=float(_meta(conflict, "hours_allocated")),
                exclude={_meta(conflict, "employee_id")},
            )
            drafts = [
                self._alternate_employee(c, phase, assignment_id, f"Reassign {assignment_id} to")
                for c in candidates
            ]
            return drafts or [remove]

        # (3) Move into the valid bounds, nearest day first
        proposed = min(max(current, bounds.start), bounds.end)
        return [
            {
                "suggestion_type": SuggestionType.MOVE_INTO_WINDOW,
                "description": (
                    f"Move assignment {assignment_id} into "
                    f"{bounds.start.isoformat()}..{bounds.end.isoformat()} "
                    f"(nearest: {proposed.isoformat()})"
                ),
                "employee_id": _meta(conflict, "employee_id"),
                "phase_id": phase.id,
                "assignment_id": assignment_id,
                "proposed_date": proposed,
                "window_start": bounds.start,
                "window_end": bounds.end,
            }
        ]

    def _reduce_crew(
        self, conflict: Conflict, builder: WorkingSetBuilder, phase: Phase
    ) -> list[dict[str, Any]]:
        rows = store_call(
            self.store.list_active_assignments,
            ScopeFilter(phase_id=phase.id),
            source="store.list_active_assignments",
        )
        hours: dict[str, float] = defaultdict(float)
        leads: set[str] = set()
        for a in rows:
            hours[a.employee_id] += a.hours_allocated * assignment_window(a).length_days
            if a.is_lead:
                leads.add(a.employee_id)
        crew = [builder.employee(i) for i in sorted(hours)]
        crew = [e for e in crew if e.is_active]
        foremen = [e for e in crew if e.employee_type == EmployeeType.FOREMAN]

        # A just-proposed employee is the first one to drop
        proposed = conflict.metadata.get("employee_id")
        if proposed is not None and proposed not in hours:
            return [
                {
                    "suggestion_type": SuggestionType.REDUCE_CREW,
                    "description": f"Do not add {proposed} to phase {phase.name or phase.id}",
                    "employee_id": proposed,
                    "phase_id": phase.id,
                }
            ]

        # Release non-leads with the least committed hours; keep the only foreman
        releasable = [e for e in crew if not (phase.labor.needs_foreman and foremen == [e])]
        releasable.sort(key=lambda e: (e.id in leads, hours[e.id], e.id))
        excess = int(conflict.metadata.get("excess", len(releasable)))
        return [
            {
                "suggestion_type": SuggestionType.REDUCE_CREW,
                "description": (
                    f"Release {e.name or e.id} from phase {phase.name or phase.id} "
                    f"({hours[e.id]:g}h committed)"
                ),
                "employee_id": e.id,
                "phase_id": phase.id,
            }
            for e in releasable[:excess]
        ]

    def _single_lead(
        self, conflict: Conflict, builder: WorkingSetBuilder, phase: Phase
    ) -> list[dict[str, Any]]:
        dates = sorted(date.fromisoformat(d) for d in _meta(conflict, "dates"))
        leads = [builder.employee(i) for i in _meta(conflict, "lead_employee_ids")]

        # Foremen keep the lead first, then employee id
        leads.sort(key=lambda e: (e.employee_type != EmployeeType.FOREMAN, e.id))
        drafts: list[dict[str, Any]] = []
        for keep in leads:
            others = ", ".join(e.id for e in leads if e is not keep)
            drafts.append(
                {
                    "suggestion_type": SuggestionType.SINGLE_LEAD,
                    "description": (
                        f"Keep {keep.name or keep.id} as lead on phase {phase.name or phase.id} "
                        f"and assign {others} as crew"
                    ),
                    "employee_id": keep.id,
                    "phase_id": phase.id,
                    "window_start": dates[0],
                    "window_end": dates[-1],
                }
            )
        return drafts

    # ---------- Candidate search ----------
    def _staffing_divisions(self, division: Division) -> list[Division]:
        """Project division first, then employee divisions configured as compatible."""
        extra = sorted(
            (d for d, targets in self.cfg.division_compatibility.items() if division in targets),
            key=lambda d: d.value,
        )
        return [division, *(d for d in extra if d != division)]

    def _rank_candidates(
        self,
        phase: Phase,
        window: TimeWindow,
        *,
        daily_hours: float = 0.0,
        min_remaining: float = 0.0,
        exclude: Iterable[str] = (),
        foremen_first: bool = False,
    ) -> list[Candidate]:
        """
        @brief
        Active, available, qualified employees with room in `window`.

        @params
            daily_hours : float
                Hours that must fit on every day of the window.
            min_remaining : float
                Lower bound on total spare hours across the window.
            foremen_first : bool
                Order foremen ahead of other roles.
        """
        excluded = set(exclude)
        pool: dict[str, Employee] = {}
        for division in self._staffing_divisions(phase.division):
            found = store_call(
                self.store.list_available_employees,
                division,
                window,
                source="store.list_available_employees",
            )
            for employee in found:
                pool.setdefault(employee.id, employee)

        candidates: list[Candidate] = []
        required = set(phase.required_skills)
        for employee in pool.values():
            if employee.id in excluded or not employee.is_active:
                continue
            if not required <= set(employee.skills):
                continue
            if not window.within(availability_window(employee)):
                continue
            capacity = self.cfg.daily_capacity(employee)
            booked = self._booked_hours(employee.id, window)
            spare_by_day = [capacity - booked.get(day, 0.0) for day in window.days()]
            if min(spare_by_day) < daily_hours:
                continue
            remaining = sum(max(spare, 0.0) for spare in spare_by_day)
            if remaining <= 0 or remaining < min_remaining:
                continue
            candidates.append(
                Candidate(
                    employee=employee,
                    remaining_hours=remaining,
                    division_match=employee.division == phase.division,
                )
            )

        candidates.sort(key=Candidate.sort_key)
        if foremen_first:
            candidates.sort(key=lambda c: c.employee.employee_type != EmployeeType.FOREMAN)
        return candidates

    def _booked_hours(
        self, employee_id: str, window: TimeWindow, exclude: Iterable[str] = ()
    ) -> dict[date, float]:
        skipped = set(exclude)
        rows = store_call(
            self.store.list_active_assignments,
            ScopeFilter(employee_id=employee_id, since=window.start, until=window.end),
            source="store.list_active_assignments",
        )
        booked: dict[date, float] = defaultdict(float)
        for a in rows:
            if a.id in skipped:
                continue
            overlap = assignment_window(a).intersection(window)
            if overlap is None:
                continue
            for day in overlap.days():
                booked[day] += a.hours_allocated
        return booked

    # ---------- Windows ----------
    @staticmethod
    def _remaining_phase_window(phase: Phase, today: date) -> TimeWindow | None:
        """Phase window from today on; None once the phase is over."""
        if today > phase.end_date:
            return None
        return TimeWindow(max(today, phase.start_date), phase.end_date)

    def _bookable_window(self, phase: Phase, employee: Employee, today: date) -> TimeWindow | None:
        window = self._remaining_phase_window(phase, today)
        for bound in (project_window(phase.project), availability_window(employee)):
            if window is None:
                return None
            window = window.intersection(bound)
        return window

    @staticmethod
    def _alternate_employee(
        candidate: Candidate, phase: Phase, assignment_id: str | None, verb: str
    ) -> dict[str, Any]:
        employee = candidate.employee
        return {
            "suggestion_type": SuggestionType.ALTERNATE_EMPLOYEE,
            "description": (
                f"{verb} {employee.name or employee.id} "
                f"({candidate.remaining_hours:g}h free, {employee.division.value})"
            ),
            "employee_id": employee.id,
            "phase_id": phase.id,
            "assignment_id": assignment_id,
            "remaining_capacity_hours": candidate.remaining_hours,
        }


_unhandled = set(ConflictType) - set(ResolutionAdvisor._HANDLERS)
if _unhandled:
    raise RuntimeError(f"No advisor handler for: {sorted(t.value for t in _unhandled)}")
