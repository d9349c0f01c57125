# src/crewguard/engine/rules.py
"""
@brief
Rule evaluators, one pure function per conflict type.

@details
Every evaluator has the signature `(WorkingSet, EngineConfig) -> list[Conflict]`
and must not mutate its inputs. Findings are returned as Conflict values;
exceptions are reserved for malformed data (inverted windows, unknown ids).
"""

from __future__ import annotations

import hashlib
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any

from crewguard.engine.snapshot import WorkingSet
from crewguard.engine.time_window import (
    assignment_window,
    availability_window,
    phase_window,
    project_window,
    week_start,
)
from crewguard.schemas.models import (
    Assignment,
    Conflict,
    ConflictType,
    EmployeeType,
    EngineConfig,
    EntityType,
    Severity,
)

Evaluator = Callable[[WorkingSet, EngineConfig], list[Conflict]]

# Reason codes carried in DATE_RANGE_VIOLATION metadata
OUTSIDE_PHASE_WINDOW = "OUTSIDE_PHASE_WINDOW"
PROJECT_CLOSED = "PROJECT_CLOSED"
PROJECT_NOT_STARTED = "PROJECT_NOT_STARTED"
PROJECT_ENDED = "PROJECT_ENDED"
EMPLOYEE_INACTIVE = "EMPLOYEE_INACTIVE"
EMPLOYEE_UNAVAILABLE = "EMPLOYEE_UNAVAILABLE"

UNDERSTAFFED = "UNDERSTAFFED"
OVERSTAFFED = "OVERSTAFFED"
MULTIPLE_LEADS = "MULTIPLE_LEADS"


def make_conflict(
    ctype: ConflictType,
    severity: Severity,
    entity_type: EntityType,
    entity_id: str,
    related: Iterable[str],
    description: str,
    detected_at: datetime,
    metadata: dict[str, Any] | None = None,
) -> Conflict:
    """
    @brief
    Build a Conflict with a deterministic id.

    @details
    The id is a digest of the deduplication key (type plus the sorted set of
    involved entity ids), so repeated scans over the same data yield the
    same ids.
    """
    related_set = frozenset(r for r in related if r != entity_id)
    key = "|".join([ctype.value, *sorted({entity_id} | related_set)])
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
    return Conflict(
        id=f"{ctype.value.lower()}-{digest}",
        type=ctype,
        severity=severity,
        entity_type=entity_type,
        entity_id=entity_id,
        related_entities=related_set,
        detected_at=detected_at,
        description=description,
        metadata=metadata or {},
    )


def _by_employee(assignments: Iterable[Assignment]) -> dict[str, list[Assignment]]:
    grouped: dict[str, list[Assignment]] = defaultdict(list)
    for a in assignments:
        grouped[a.employee_id].append(a)
    return grouped


# ----------------------------
# DOUBLE_BOOKING
# ----------------------------
def evaluate_double_booking(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """
    @brief
    Detect days on which an employee's overlapping assignments exceed daily capacity.

    @details
    Assignments are expanded to the days they cover. A day holding two or
    more assignments whose hours sum above the employee's daily capacity is
    an overbooked day. Overbooked days that share any assignment are chained
    into one conflict, so a pair of multi-day blocks yields a single finding
    even when a third assignment joins them on some of those days. Severity
    is CRITICAL when all involved windows are identical (full same-day
    overlap) and HIGH when the overlap is partial.
    """
    conflicts: list[Conflict] = []

    for employee_id, rows in sorted(_by_employee(ws.assignments).items()):
        employee = ws.employee(employee_id)
        capacity = cfg.daily_capacity(employee)

        # (1) Expand assignments to the days they cover
        per_day: dict[date, list[Assignment]] = defaultdict(list)
        for a in rows:
            for day in assignment_window(a).days():
                per_day[day].append(a)

        # (2) Chain overbooked days whose assignment sets intersect
        groups: list[tuple[set[str], list[tuple[date, float]]]] = []
        for day, day_rows in sorted(per_day.items()):
            if len(day_rows) < 2:
                continue
            total = sum(a.hours_allocated for a in day_rows)
            if total <= capacity:
                continue
            ids = {a.id for a in day_rows}
            days = [(day, total)]
            for group in [g for g in groups if g[0] & ids]:
                groups.remove(group)
                ids |= group[0]
                days = group[1] + days
            groups.append((ids, sorted(days)))

        # (3) One conflict per connected group
        by_id = {a.id: a for a in rows}
        for id_set, days in groups:
            ids = tuple(sorted(id_set))
            involved = [by_id[i] for i in ids]
            windows = {assignment_window(a) for a in involved}
            severity = Severity.CRITICAL if len(windows) == 1 else Severity.HIGH
            peak_day, peak = max(days, key=lambda d: d[1])
            conflicts.append(
                make_conflict(
                    ConflictType.DOUBLE_BOOKING,
                    severity,
                    EntityType.EMPLOYEE,
                    employee_id,
                    ids,
                    (
                        f"Employee {employee.name or employee_id} is booked for {peak:g}h on "
                        f"{peak_day.isoformat()} (daily capacity {capacity:g}h)"
                    ),
                    ws.detected_at,
                    metadata={
                        "employee_id": employee_id,
                        "dates": [d.isoformat() for d, _ in days],
                        "total_hours": peak,
                        "daily_capacity": capacity,
                        "assignment_ids": list(ids),
                        "phase_ids": sorted({a.phase_id for a in involved}),
                        "hours_by_assignment": {a.id: a.hours_allocated for a in involved},
                        "phase_by_assignment": {a.id: a.phase_id for a in involved},
                    },
                )
            )

    return conflicts


# ----------------------------
# OVERALLOCATION
# ----------------------------
def _weekly_hours(
    rows: Iterable[Assignment], cfg: EngineConfig
) -> tuple[dict[date, float], dict[date, dict[str, float]]]:
    """Per-week totals and per-assignment contributions, keyed by week start."""
    hours: dict[date, float] = defaultdict(float)
    contributors: dict[date, dict[str, float]] = defaultdict(dict)
    for a in rows:
        for day in assignment_window(a).days():
            week = week_start(day, cfg.week_start_day)
            hours[week] += a.hours_allocated
            contributors[week][a.id] = contributors[week].get(a.id, 0.0) + a.hours_allocated
    return hours, contributors


def _overallocation_conflict(
    ws: WorkingSet,
    employee_id: str,
    week: date,
    total: float,
    contributions: dict[str, float],
    phase_of: dict[str, str],
    severity: Severity,
    description: str,
    **extra: Any,
) -> Conflict:
    weekly_capacity = ws.employee(employee_id).weekly_capacity_hours
    ids = sorted(contributions)
    return make_conflict(
        ConflictType.OVERALLOCATION,
        severity,
        EntityType.EMPLOYEE,
        employee_id,
        ids,
        description,
        ws.detected_at,
        metadata={
            "employee_id": employee_id,
            "week_start": week.isoformat(),
            "total_hours": total,
            "weekly_capacity": weekly_capacity,
            "excess_hours": max(total - weekly_capacity, 0.0),
            "assignment_ids": ids,
            "hours_by_assignment": dict(sorted(contributions.items())),
            "phase_by_assignment": {i: phase_of[i] for i in ids},
            **extra,
        },
    )


def evaluate_overallocation(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """Weekly hours above capacity: MEDIUM, or HIGH beyond the escalation ratio."""
    conflicts: list[Conflict] = []

    for employee_id, rows in sorted(_by_employee(ws.assignments).items()):
        employee = ws.employee(employee_id)
        weekly_capacity = employee.weekly_capacity_hours
        hours, contributors = _weekly_hours(rows, cfg)
        phase_of = {a.id: a.phase_id for a in rows}

        for week, total in sorted(hours.items()):
            if total <= weekly_capacity:
                continue
            excess = total - weekly_capacity
            escalated = excess > weekly_capacity * cfg.overallocation_escalation_ratio
            conflicts.append(
                _overallocation_conflict(
                    ws,
                    employee_id,
                    week,
                    total,
                    contributors[week],
                    phase_of,
                    Severity.HIGH if escalated else Severity.MEDIUM,
                    (
                        f"Employee {employee.name or employee_id} has {total:g}h in week of "
                        f"{week.isoformat()} (weekly capacity {weekly_capacity:g}h)"
                    ),
                )
            )

    return conflicts


def evaluate_weekly_headroom(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """
    @brief
    Weeks that stay within capacity but cross the warning threshold.

    @details
    Emitted as LOW OVERALLOCATION with `approaching=True` and zero excess.
    Only the validator uses it; a full scan reports actual overruns only.
    """
    conflicts: list[Conflict] = []

    for employee_id, rows in sorted(_by_employee(ws.assignments).items()):
        employee = ws.employee(employee_id)
        weekly_capacity = employee.weekly_capacity_hours
        threshold = weekly_capacity * cfg.weekly_warning_ratio
        hours, contributors = _weekly_hours(rows, cfg)
        phase_of = {a.id: a.phase_id for a in rows}

        for week, total in sorted(hours.items()):
            if not threshold < total <= weekly_capacity:
                continue
            conflicts.append(
                _overallocation_conflict(
                    ws,
                    employee_id,
                    week,
                    total,
                    contributors[week],
                    phase_of,
                    Severity.LOW,
                    (
                        f"Employee {employee.name or employee_id} is approaching the weekly "
                        f"limit: {total:g}h of {weekly_capacity:g}h in week of {week.isoformat()}"
                    ),
                    approaching=True,
                    threshold_hours=threshold,
                )
            )

    return conflicts


# ----------------------------
# SKILL_MISMATCH
# ----------------------------
def evaluate_skill_mismatch(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """Division incompatibility or missing phase skills; always MEDIUM."""
    conflicts: list[Conflict] = []

    pairs: dict[tuple[str, str], list[str]] = defaultdict(list)
    for a in ws.assignments:
        pairs[(a.employee_id, a.phase_id)].append(a.id)

    for (employee_id, phase_id), assignment_ids in sorted(pairs.items()):
        employee = ws.employee(employee_id)
        phase = ws.phase(phase_id)

        division_ok = cfg.divisions_compatible(employee.division, phase.division)
        missing = sorted(set(phase.required_skills) - set(employee.skills))
        if division_ok and not missing:
            continue

        problems = []
        if not division_ok:
            problems.append(
                f"division {employee.division.value} does not match {phase.division.value}"
            )
        if missing:
            problems.append(f"missing skills {', '.join(missing)}")

        conflicts.append(
            make_conflict(
                ConflictType.SKILL_MISMATCH,
                Severity.MEDIUM,
                EntityType.EMPLOYEE,
                employee_id,
                [phase_id],
                f"Employee {employee.name or employee_id} on phase {phase.name or phase_id}: "
                + "; ".join(problems),
                ws.detected_at,
                metadata={
                    "employee_id": employee_id,
                    "phase_id": phase_id,
                    "employee_division": employee.division.value,
                    "project_division": phase.division.value,
                    "division_mismatch": not division_ok,
                    "missing_skills": missing,
                    "assignment_ids": sorted(assignment_ids),
                },
            )
        )

    return conflicts


# ----------------------------
# CAPACITY_OVERFLOW
# ----------------------------
def evaluate_capacity(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """
    @brief
    Compare each audited phase's assigned crew with its labor requirement.

    @details
    Crew = distinct active employees holding an assignment on the phase.
    Understaffing (total headcount, per-role minimum or missing foreman) is
    HIGH once the phase start is within the configured horizon or the phase
    is running, LOW before that; finished phases are not checked for
    understaffing.
    Overstaffing is LOW, informational only. A phase without a declared
    requirement (required headcount 0) is not checked for staffing.
    More than one lead assignment on the same day of a phase is a MEDIUM
    finding with direction MULTIPLE_LEADS.
    """
    conflicts: list[Conflict] = []

    for phase_id in ws.audited_phase_ids:
        phase = ws.phase(phase_id)
        labor = phase.labor
        required = labor.required_headcount
        conflicts.extend(_multiple_leads(ws, phase_id))
        if required == 0:
            continue

        # (1) Build the active crew and its role counts
        crew_ids = sorted(
            {
                a.employee_id
                for a in ws.phase_assignments.get(phase_id, ())
                if ws.employee(a.employee_id).is_active
            }
        )
        role_counts: dict[EmployeeType, int] = defaultdict(int)
        for employee_id in crew_ids:
            role_counts[ws.employee(employee_id).employee_type] += 1

        # (2) Shortfalls
        headcount_short = max(required - len(crew_ids), 0)
        role_short = {
            role.value: need - role_counts[role]
            for role, need in labor.role_requirements.items()
            if role_counts[role] < need
        }
        missing_foreman = labor.needs_foreman and role_counts[EmployeeType.FOREMAN] == 0
        days_until_start = (phase.start_date - ws.today).days

        metadata: dict[str, Any] = {
            "phase_id": phase_id,
            "project_id": phase.project_id,
            "division": phase.division.value,
            "required": required,
            "assigned": len(crew_ids),
            "crew_ids": crew_ids,
            "hard_limit": labor.hard_limit(cfg.capacity_hard_limit_ratio),
            "days_until_start": days_until_start,
        }

        understaffed = headcount_short > 0 or bool(role_short) or missing_foreman
        if understaffed and phase.end_date >= ws.today:
            imminent = days_until_start <= cfg.understaffing_horizon_days
            severity = Severity.HIGH if imminent else Severity.LOW
            details = [f"{len(crew_ids)}/{required} crew assigned"]
            if missing_foreman:
                details.append("no foreman assigned")
            details.extend(f"{count} {role.lower()} short" for role, count in role_short.items())
            metadata.update(
                direction=UNDERSTAFFED,
                shortfall=headcount_short,
                role_shortfalls=role_short,
                missing_foreman=missing_foreman,
            )
            conflicts.append(
                make_conflict(
                    ConflictType.CAPACITY_OVERFLOW,
                    severity,
                    EntityType.PHASE,
                    phase_id,
                    [phase.project_id],
                    f"Phase {phase.name or phase_id} is understaffed: " + ", ".join(details),
                    ws.detected_at,
                    metadata=metadata,
                )
            )
        elif len(crew_ids) > required:
            excess = len(crew_ids) - required
            metadata.update(direction=OVERSTAFFED, excess=excess)
            conflicts.append(
                make_conflict(
                    ConflictType.CAPACITY_OVERFLOW,
                    Severity.LOW,
                    EntityType.PHASE,
                    phase_id,
                    [phase.project_id],
                    f"Phase {phase.name or phase_id} is overstaffed: "
                    f"{len(crew_ids)}/{required} crew assigned",
                    ws.detected_at,
                    metadata=metadata,
                )
            )

    return conflicts


def _multiple_leads(ws: WorkingSet, phase_id: str) -> list[Conflict]:
    """Days of a phase with more than one lead; days sharing a lead set collapse."""
    phase = ws.phase(phase_id)
    leads_by_day: dict[date, list[Assignment]] = defaultdict(list)
    for a in ws.phase_assignments.get(phase_id, ()):
        if not a.is_lead:
            continue
        for day in assignment_window(a).days():
            leads_by_day[day].append(a)

    findings: dict[tuple[str, ...], list[date]] = {}
    employees_of: dict[tuple[str, ...], list[str]] = {}
    for day, leads in sorted(leads_by_day.items()):
        if len({a.employee_id for a in leads}) < 2:
            continue
        ids = tuple(sorted(a.id for a in leads))
        findings.setdefault(ids, []).append(day)
        employees_of[ids] = sorted({a.employee_id for a in leads})

    return [
        make_conflict(
            ConflictType.CAPACITY_OVERFLOW,
            Severity.MEDIUM,
            EntityType.PHASE,
            phase_id,
            [phase.project_id, *ids],
            (
                f"Phase {phase.name or phase_id} has {len(ids)} leads on "
                f"{days[0].isoformat()}: {', '.join(employees_of[ids])}"
            ),
            ws.detected_at,
            metadata={
                "phase_id": phase_id,
                "project_id": phase.project_id,
                "division": phase.division.value,
                "direction": MULTIPLE_LEADS,
                "dates": [d.isoformat() for d in days],
                "lead_assignment_ids": list(ids),
                "lead_employee_ids": employees_of[ids],
            },
        )
        for ids, days in findings.items()
    ]


# ----------------------------
# DATE_RANGE_VIOLATION
# ----------------------------
def evaluate_date_range(ws: WorkingSet, cfg: EngineConfig) -> list[Conflict]:
    """
    @brief
    Flag assignments outside their phase, project or employee availability.

    @details
    All reasons found for one assignment are reported in a single CRITICAL
    conflict. Covers days outside the phase window, a closed project, days
    before the project start or after its end, an inactive employee and days
    outside the employee availability window.
    """
    conflicts: list[Conflict] = []

    for a in ws.assignments:
        employee = ws.employee(a.employee_id)
        phase = ws.phase(a.phase_id)
        project = phase.project
        window = assignment_window(a)
        p_window = phase_window(phase)

        # (1) Collect every violated bound
        reasons: list[str] = []
        messages: list[str] = []
        if not window.within(p_window):
            reasons.append(OUTSIDE_PHASE_WINDOW)
            messages.append(
                f"outside phase window {p_window.start.isoformat()}..{p_window.end.isoformat()}"
            )
        if project.status.is_closed:
            reasons.append(PROJECT_CLOSED)
            messages.append(f"project {project.name or project.id} is {project.status.value}")
        else:
            if window.start < project.start_date:
                reasons.append(PROJECT_NOT_STARTED)
                messages.append(f"project starts on {project.start_date.isoformat()}")
            if project.end_date is not None and window.end > project.end_date:
                reasons.append(PROJECT_ENDED)
                messages.append(f"project ended on {project.end_date.isoformat()}")
        if not employee.is_active:
            reasons.append(EMPLOYEE_INACTIVE)
            messages.append(f"employee {employee.name or employee.id} is inactive")
        elif not window.within(availability_window(employee)):
            reasons.append(EMPLOYEE_UNAVAILABLE)
            messages.append("outside employee availability window")

        if not reasons:
            continue

        # (2) Valid bounds for the advisor: phase ∩ project ∩ availability
        bounds = p_window.intersection(project_window(project))
        if bounds is not None:
            bounds = bounds.intersection(availability_window(employee))

        conflicts.append(
            make_conflict(
                ConflictType.DATE_RANGE_VIOLATION,
                Severity.CRITICAL,
                EntityType.ASSIGNMENT,
                a.id,
                [a.employee_id, a.phase_id],
                f"Assignment {a.id} on {a.assignment_date.isoformat()}: " + "; ".join(messages),
                ws.detected_at,
                metadata={
                    "assignment_id": a.id,
                    "employee_id": a.employee_id,
                    "phase_id": a.phase_id,
                    "assignment_date": a.assignment_date.isoformat(),
                    "hours_allocated": a.hours_allocated,
                    "reasons": reasons,
                    "valid_start": bounds.start.isoformat() if bounds else None,
                    "valid_end": bounds.end.isoformat() if bounds else None,
                },
            )
        )

    return conflicts


EVALUATORS: dict[ConflictType, Evaluator] = {
    ConflictType.DATE_RANGE_VIOLATION: evaluate_date_range,
    ConflictType.DOUBLE_BOOKING: evaluate_double_booking,
    ConflictType.OVERALLOCATION: evaluate_overallocation,
    ConflictType.SKILL_MISMATCH: evaluate_skill_mismatch,
    ConflictType.CAPACITY_OVERFLOW: evaluate_capacity,
}

_missing = set(ConflictType) - set(EVALUATORS)
if _missing:
    raise RuntimeError(f"No evaluator registered for: {sorted(t.value for t in _missing)}")


__all__ = [
    "EVALUATORS",
    "evaluate_capacity",
    "evaluate_date_range",
    "evaluate_double_booking",
    "evaluate_overallocation",
    "evaluate_skill_mismatch",
    "evaluate_weekly_headroom",
    "make_conflict",
]
