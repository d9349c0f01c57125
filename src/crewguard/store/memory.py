# src/crewguard/store/memory.py
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from crewguard.engine.time_window import TimeWindow, availability_window
from crewguard.errors import NotFoundError
from crewguard.schemas.models import (
    Assignment,
    Division,
    Employee,
    Phase,
    Project,
    ScopeFilter,
)
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, str], None]


class InMemoryAssignmentStore(AssignmentStore):
    """
    @brief
    Reference store adapter backed by plain dictionaries.

    @details
    Used by the CLI runner (fed by SnapshotLoader) and by the test-suite.
    Reads and writes are serialized by one lock. Every mutation notifies the
    registered listeners with (record_kind, record_id) after the lock is
    released, which is where callers hook `ConflictEngine.clear_cache`.
    """

    def __init__(
        self,
        employees: Iterable[Employee] = (),
        projects: Iterable[Project] = (),
        phases: Iterable[Phase] = (),
        assignments: Iterable[Assignment] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []
        self._employees: dict[str, Employee] = {e.id: e for e in employees}
        self._projects: dict[str, Project] = {p.id: p for p in projects}
        self._phases: dict[str, Phase] = {}
        self._assignments: dict[str, Assignment] = {a.id: a for a in assignments}
        for phase in phases:
            self._projects.setdefault(phase.project.id, phase.project)
            self._phases[phase.id] = phase

    # ---------- Change notification ----------
    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, kind: str, record_id: str) -> None:
        logger.debug("Store mutation: %s %s", kind, record_id)
        for listener in list(self._listeners):
            listener(kind, record_id)

    # ---------- Mutations (not part of the engine contract) ----------
    def upsert_employee(self, employee: Employee) -> None:
        with self._lock:
            self._employees[employee.id] = employee
        self._notify("employee", employee.id)

    def upsert_project(self, project: Project) -> None:
        with self._lock:
            self._projects[project.id] = project
            # Re-embed the new project snapshot into its phases
            for phase_id, phase in list(self._phases.items()):
                if phase.project.id == project.id:
                    self._phases[phase_id] = phase.model_copy(update={"project": project})
        self._notify("project", project.id)

    def upsert_phase(self, phase: Phase) -> None:
        with self._lock:
            self._projects[phase.project.id] = phase.project
            self._phases[phase.id] = phase
        self._notify("phase", phase.id)

    def upsert_assignment(self, assignment: Assignment) -> None:
        with self._lock:
            self._assignments[assignment.id] = assignment
        self._notify("assignment", assignment.id)

    def remove_assignment(self, assignment_id: str) -> None:
        with self._lock:
            if assignment_id not in self._assignments:
                raise NotFoundError(
                    message=f"Assignment not found: {assignment_id}",
                    source="InMemoryAssignmentStore.remove_assignment",
                )
            del self._assignments[assignment_id]
        self._notify("assignment", assignment_id)

    # ---------- AssignmentStore contract ----------
    def list_active_assignments(self, scope: ScopeFilter | None = None) -> list[Assignment]:
        scope = scope or ScopeFilter()
        with self._lock:
            rows = [a for a in self._assignments.values() if self._assignment_in_scope(a, scope)]
        return sorted(rows, key=lambda a: (a.assignment_date, a.id))

    def get_employee(self, employee_id: str) -> Employee:
        with self._lock:
            employee = self._employees.get(employee_id)
        if employee is None:
            raise NotFoundError(
                message=f"Employee not found: {employee_id}",
                source="InMemoryAssignmentStore.get_employee",
                suggested_action="Check the employee id or reload the snapshot.",
            )
        return employee

    def get_phase(self, phase_id: str) -> Phase:
        with self._lock:
            phase = self._phases.get(phase_id)
        if phase is None:
            raise NotFoundError(
                message=f"Phase not found: {phase_id}",
                source="InMemoryAssignmentStore.get_phase",
                suggested_action="Check the phase id or reload the snapshot.",
            )
        return phase

    def list_available_employees(
        self, division: Division | None = None, date_range: TimeWindow | None = None
    ) -> list[Employee]:
        with self._lock:
            candidates = list(self._employees.values())
        out = []
        for employee in candidates:
            if not employee.is_active:
                continue
            if division is not None and employee.division != division:
                continue
            if date_range is not None and not availability_window(employee).overlaps(date_range):
                continue
            out.append(employee)
        return sorted(out, key=lambda e: e.id)

    def list_active_phases(self, scope: ScopeFilter | None = None) -> list[Phase]:
        scope = scope or ScopeFilter()
        with self._lock:
            phases = list(self._phases.values())
        out = []
        for phase in phases:
            if phase.project.status.is_closed:
                continue
            if scope.since is not None and phase.end_date < scope.since:
                continue
            if scope.until is not None and phase.start_date > scope.until:
                continue
            if scope.phase_id is not None and phase.id != scope.phase_id:
                continue
            if scope.project_id is not None and phase.project.id != scope.project_id:
                continue
            if scope.division is not None and phase.division != scope.division:
                continue
            out.append(phase)
        return sorted(out, key=lambda p: (p.start_date, p.id))

    # ---------- Helpers ----------
    def _assignment_in_scope(self, assignment: Assignment, scope: ScopeFilter) -> bool:
        # Caller holds the lock
        if scope.employee_id is not None and assignment.employee_id != scope.employee_id:
            return False
        if scope.phase_id is not None and assignment.phase_id != scope.phase_id:
            return False
        if scope.since is not None and assignment.last_date < scope.since:
            return False
        if scope.until is not None and assignment.assignment_date > scope.until:
            return False
        if scope.project_id is not None or scope.division is not None:
            phase = self._phases.get(assignment.phase_id)
            if phase is None:
                return False
            if scope.project_id is not None and phase.project.id != scope.project_id:
                return False
            if scope.division is not None and phase.division != scope.division:
                return False
        return True
