# src/crewguard/store/base.py
from __future__ import annotations

from abc import ABC, abstractmethod

from crewguard.engine.time_window import TimeWindow
from crewguard.schemas.models import Assignment, Division, Employee, Phase, ScopeFilter


class AssignmentStore(ABC):
    """
    @brief
    Read contract the engine consumes from the persistence layer.

    @details
    Implementations own all I/O and retry policy. Lookups of unknown ids
    raise NotFoundError; infrastructure failures should raise
    StoreUnavailableError (the engine wraps anything else into it).
    The engine never calls a mutating method on the store.
    """

    @abstractmethod
    def list_active_assignments(self, scope: ScopeFilter | None = None) -> list[Assignment]:
        """Assignments whose days intersect the scope's since/until and match its ids."""

    @abstractmethod
    def get_employee(self, employee_id: str) -> Employee:
        pass

    @abstractmethod
    def get_phase(self, phase_id: str) -> Phase:
        """Phase with its project embedded."""

    @abstractmethod
    def list_available_employees(
        self, division: Division | None = None, date_range: TimeWindow | None = None
    ) -> list[Employee]:
        """Active employees, optionally restricted to a division and an availability overlap."""

    @abstractmethod
    def list_active_phases(self, scope: ScopeFilter | None = None) -> list[Phase]:
        """Phases of non-closed projects that have not ended before `scope.since`."""
