# src/crewguard/engine/time_window.py
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta

from crewguard.errors import InvalidInputError
from crewguard.schemas.models import Assignment, Employee, Phase, Project


@dataclass(frozen=True)
class TimeWindow:
    """
    @brief
    Inclusive day interval [start, end].

    @details
    A window with start == end is a valid single-day window. Construction
    with start > end is rejected with InvalidInputError so that no evaluator
    ever sees an inverted range.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise InvalidInputError(
                message=f"Window bounds must be dates, got {self.start!r}..{self.end!r}",
                source="TimeWindow",
                suggested_action="Pass datetime.date values for window bounds.",
            )
        if self.start > self.end:
            raise InvalidInputError(
                message=f"Inverted window: {self.start.isoformat()} > {self.end.isoformat()}",
                source="TimeWindow",
                suggested_action="Ensure start date is on or before end date.",
            )

    @classmethod
    def single(cls, day: date) -> TimeWindow:
        return cls(day, day)

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days + 1

    def days(self) -> Iterator[date]:
        """Iterate every day of the window in order."""
        for offset in range(self.length_days):
            yield self.start + timedelta(days=offset)

    def overlaps(self, other: TimeWindow) -> bool:
        return overlaps(self, other)

    def contains(self, day: date) -> bool:
        return contains(self, day)

    def within(self, other: TimeWindow) -> bool:
        """True iff every day of this window lies inside `other`."""
        return other.start <= self.start and self.end <= other.end

    def intersection(self, other: TimeWindow) -> TimeWindow | None:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start > end:
            return None
        return TimeWindow(start, end)


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    """True iff the two windows share at least one day."""
    return a.start <= b.end and b.start <= a.end


def contains(window: TimeWindow, day: date) -> bool:
    return window.start <= day <= window.end


def week_start(day: date, week_start_day: int = 0) -> date:
    """First day of the week containing `day` (0 = Monday ... 6 = Sunday)."""
    return day - timedelta(days=(day.weekday() - week_start_day) % 7)


# ----------------------------
# Windows of domain records
# ----------------------------
def assignment_window(assignment: Assignment) -> TimeWindow:
    return TimeWindow(assignment.assignment_date, assignment.last_date)


def phase_window(phase: Phase) -> TimeWindow:
    return TimeWindow(phase.start_date, phase.end_date)


def project_window(project: Project) -> TimeWindow:
    return TimeWindow(project.start_date, project.end_date or date.max)


def availability_window(employee: Employee) -> TimeWindow:
    """Employee availability; open ends become date.min / date.max."""
    return TimeWindow(
        employee.availability_start or date.min,
        employee.availability_end or date.max,
    )
