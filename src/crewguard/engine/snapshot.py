# src/crewguard/engine/snapshot.py
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

from crewguard.errors import CrewGuardError, NotFoundError, StoreUnavailableError
from crewguard.schemas.models import Assignment, Employee, Phase, ScopeFilter
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_timezone(dt: datetime) -> datetime:
    """Treat naive clock readings as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def local_today(now: datetime, tz_name: str) -> date:
    return _ensure_timezone(now).astimezone(ZoneInfo(tz_name)).date()


def store_call(func: Callable[..., T], *args: Any, source: str, **kwargs: Any) -> T:
    """
    @brief
    Invoke one store adapter method with the engine's failure policy.

    @details
    Engine errors raised by the adapter (NotFoundError and friends) pass
    through unchanged. Anything else means the adapter failed to return data
    and is wrapped into StoreUnavailableError. No retry is attempted.
    """
    try:
        return func(*args, **kwargs)
    except CrewGuardError:
        raise
    except Exception as e:
        raise StoreUnavailableError(
            message=f"Assignment store call failed: {e}",
            source=source,
            suggested_action="Check the store backend and retry the request.",
        ) from e


@dataclass(frozen=True)
class WorkingSet:
    """
    @brief
    Immutable snapshot the rule evaluators run against.

    @details
    Holds the assignments under evaluation, every employee and phase they
    reference, and the per-phase assignment lists used for staffing checks.
    `today` and `detected_at` are fixed once per request so that evaluators
    stay referentially transparent.
    """

    assignments: tuple[Assignment, ...]
    employees: dict[str, Employee]
    phases: dict[str, Phase]
    phase_assignments: dict[str, tuple[Assignment, ...]]
    today: date
    detected_at: datetime
    audited_phase_ids: tuple[str, ...] = field(default=())

    def employee(self, employee_id: str) -> Employee:
        try:
            return self.employees[employee_id]
        except KeyError:
            raise NotFoundError(
                message=f"Employee not found in working set: {employee_id}",
                source="WorkingSet.employee",
            ) from None

    def phase(self, phase_id: str) -> Phase:
        try:
            return self.phases[phase_id]
        except KeyError:
            raise NotFoundError(
                message=f"Phase not found in working set: {phase_id}",
                source="WorkingSet.phase",
            ) from None


class WorkingSetBuilder:
    """
    @brief
    Resolves store records into a WorkingSet.

    @details
    Memoizes employee and phase lookups for the lifetime of one request so
    that each id is fetched at most once. Unknown ids surface as
    NotFoundError from the store.
    """

    def __init__(self, store: AssignmentStore, clock: Clock, tz_name: str) -> None:
        self.store = store
        self.clock = clock
        self.tz_name = tz_name
        self._employees: dict[str, Employee] = {}
        self._phases: dict[str, Phase] = {}

    def employee(self, employee_id: str) -> Employee:
        if employee_id not in self._employees:
            self._employees[employee_id] = store_call(
                self.store.get_employee, employee_id, source="store.get_employee"
            )
        return self._employees[employee_id]

    def phase(self, phase_id: str) -> Phase:
        if phase_id not in self._phases:
            self._phases[phase_id] = store_call(
                self.store.get_phase, phase_id, source="store.get_phase"
            )
        return self._phases[phase_id]

    def add_phase(self, phase: Phase) -> None:
        self._phases.setdefault(phase.id, phase)

    def assignments(self, scope: ScopeFilter | None) -> list[Assignment]:
        return store_call(
            self.store.list_active_assignments, scope, source="store.list_active_assignments"
        )

    def active_phases(self, scope: ScopeFilter | None) -> list[Phase]:
        return store_call(self.store.list_active_phases, scope, source="store.list_active_phases")

    def build(
        self,
        assignments: Iterable[Assignment],
        audited_phases: Iterable[Phase] = (),
        phase_assignments: dict[str, list[Assignment]] | None = None,
    ) -> WorkingSet:
        """
        @brief
        Resolve every reference and freeze the snapshot.

        @params
            assignments : Iterable[Assignment]
                Assignments to evaluate per employee (double booking,
                overallocation, mismatch, date range).
            audited_phases : Iterable[Phase]
                Phases checked for staffing.
            phase_assignments : dict[str, list[Assignment]] | None
                Full assignment list per audited phase.
        """
        now = _ensure_timezone(self.clock())
        rows = tuple(assignments)
        phase_rows = {pid: tuple(items) for pid, items in (phase_assignments or {}).items()}

        # (1) Resolve phases under audit and those referenced by assignments
        for phase in audited_phases:
            self.add_phase(phase)
        for a in rows:
            self.phase(a.phase_id)
            self.employee(a.employee_id)

        # (2) Resolve crew members of audited phases
        for items in phase_rows.values():
            for a in items:
                self.employee(a.employee_id)

        return WorkingSet(
            assignments=rows,
            employees=dict(self._employees),
            phases=dict(self._phases),
            phase_assignments=phase_rows,
            today=local_today(now, self.tz_name),
            detected_at=now,
            audited_phase_ids=tuple(sorted(phase_rows)),
        )
