import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

# (1) Add repository root and src/ to sys.path to enable absolute imports
#     The root directory contains scripts/, src/, and config/.
ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from crewguard.engine.service import ConflictEngine  # noqa: E402
from crewguard.schemas.models import (  # noqa: E402
    Assignment,
    Division,
    Employee,
    EngineConfig,
    LaborRequirement,
    Phase,
    Project,
)
from crewguard.store.memory import InMemoryAssignmentStore  # noqa: E402

# Monday; every test sees the same "now"
FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _employee(employee_id: str = "E1", **kw) -> Employee:
    fields = {"name": f"Worker {employee_id}", "division": Division.PLUMBING_MULTIFAMILY}
    fields.update(kw)
    return Employee(id=employee_id, **fields)


def _project(project_id: str = "PR1", **kw) -> Project:
    fields = {
        "name": f"Project {project_id}",
        "division": Division.PLUMBING_MULTIFAMILY,
        "start_date": date(2024, 1, 1),
    }
    fields.update(kw)
    return Project(id=project_id, **fields)


def _phase(phase_id: str = "P1", project: Project | None = None, **kw) -> Phase:
    fields = {
        "name": f"Phase {phase_id}",
        "project": project or _project(),
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 1, 5),
        "labor": LaborRequirement(crew_size=1),
    }
    fields.update(kw)
    return Phase(id=phase_id, **fields)


def _assignment(
    assignment_id: str,
    employee_id: str = "E1",
    phase_id: str = "P1",
    day: date = date(2024, 1, 2),
    hours: float = 8.0,
    **kw,
) -> Assignment:
    return Assignment(
        id=assignment_id,
        employee_id=employee_id,
        phase_id=phase_id,
        assignment_date=day,
        hours_allocated=hours,
        **kw,
    )


@pytest.fixture()
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def clock():
    """Deterministic clock returning FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture()
def cfg() -> EngineConfig:
    return EngineConfig()


@pytest.fixture()
def store() -> InMemoryAssignmentStore:
    return InMemoryAssignmentStore()


@pytest.fixture()
def engine(store, cfg, clock) -> ConflictEngine:
    return ConflictEngine(store, cfg, clock=clock)


@pytest.fixture()
def make_employee():
    return _employee


@pytest.fixture()
def make_project():
    return _project


@pytest.fixture()
def make_phase():
    return _phase


@pytest.fixture()
def make_assignment():
    return _assignment
