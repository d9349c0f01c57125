# tests/dataloader/test_snapshot_loader.py

from pathlib import Path

import pytest
import yaml

from crewguard.dataloader.snapshot_loader import SnapshotIssue, SnapshotLoader
from crewguard.errors import DataError
from crewguard.schemas.models import ProjectStatus, ScopeFilter

ROOT = Path(__file__).resolve().parents[2]


def _minimal() -> dict:
    return {
        "employees": [{"id": "E1", "division": "PLUMBING_MULTIFAMILY"}],
        "projects": [
            {"id": "PR1", "division": "PLUMBING_MULTIFAMILY", "start_date": "2024-01-01"}
        ],
        "phases": [
            {
                "id": "P1",
                "project_id": "PR1",
                "start_date": "2024-01-01",
                "end_date": "2024-01-05",
                "labor": {"crew_size": 1},
            }
        ],
        "assignments": [
            {
                "id": "A1",
                "employee_id": "E1",
                "phase_id": "P1",
                "assignment_date": "2024-01-02",
                "hours_allocated": 8,
            }
        ],
    }


def _dump(tmp_path: Path, data) -> Path:
    path = tmp_path / "snapshot.yaml"
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)
    return path


def test_sample_snapshot_loads():
    """
    @brief
    The shipped sample snapshot builds a complete store.

    @details
    Phases carry their embedded project, including closed ones, so that the
    engine can flag assignments on cancelled work.
    """
    # --- Act ---
    store = SnapshotLoader().load(ROOT / "data" / "sample" / "snapshot.yaml")

    # --- Assert ---
    assert len(store.list_active_assignments()) == 6
    assert [e.id for e in store.list_available_employees()] == ["E1", "E2", "E3", "E4", "E5", "E7"]
    assert store.get_phase("P3").project.status == ProjectStatus.CANCELLED
    assert [p.id for p in store.list_active_phases()] == ["P1", "P2"]
    assert [a.id for a in store.list_active_assignments(ScopeFilter(employee_id="E1"))] == [
        "A1",
        "A2",
    ]


def test_minimal_snapshot_loads(tmp_path: Path):
    store = SnapshotLoader().load(_dump(tmp_path, _minimal()))

    assert store.get_phase("P1").project.id == "PR1"
    assert store.get_employee("E1").is_active


def test_missing_sections_default_to_empty(tmp_path: Path):
    store = SnapshotLoader().load(_dump(tmp_path, {"employees": []}))

    assert store.list_active_assignments() == []


def test_unknown_section_is_fatal(tmp_path: Path):
    data = _minimal() | {"crews": []}

    with pytest.raises(DataError, match="Unknown snapshot section"):
        SnapshotLoader().load(_dump(tmp_path, data))


def test_section_must_be_a_list(tmp_path: Path):
    data = _minimal() | {"employees": {"id": "E1"}}

    with pytest.raises(DataError, match="must be a list"):
        SnapshotLoader().load(_dump(tmp_path, data))


def test_duplicate_id_rejected(tmp_path: Path):
    data = _minimal()
    data["employees"].append({"id": "E1", "division": "HVAC_COMMERCIAL"})

    with pytest.raises(DataError, match="duplicate_id"):
        SnapshotLoader().load(_dump(tmp_path, data))


@pytest.mark.parametrize(
    "field, value, fragment",
    [
        ("employee_id", "E404", "unknown employee_id E404"),
        ("phase_id", "P404", "unknown phase_id P404"),
    ],
)
def test_bad_assignment_rejected(tmp_path: Path, field: str, value: str, fragment: str):
    data = _minimal()
    data["assignments"][0][field] = value

    with pytest.raises(DataError) as exc:
        SnapshotLoader().load(_dump(tmp_path, data))
    assert "invalid_reference" in str(exc.value)
    assert fragment in str(exc.value)


def test_unknown_project_reference_rejected(tmp_path: Path):
    data = _minimal()
    data["phases"][0]["project_id"] = "PR404"

    with pytest.raises(DataError, match="unknown project_id PR404"):
        SnapshotLoader().load(_dump(tmp_path, data))


@pytest.mark.parametrize(
    "section, field, value, fragment",
    [
        ("projects", "end_date", "2023-12-31", "project window"),
        ("phases", "end_date", "2023-12-31", "phase window"),
        ("assignments", "end_date", "2024-01-01", "assignment block"),
    ],
)
def test_inverted_window_is_a_schema_error(
    tmp_path: Path, section: str, field: str, value: str, fragment: str
):
    # --- Arrange ---
    data = _minimal()
    data[section][0][field] = value

    # --- Act ---
    with pytest.raises(DataError) as exc:
        SnapshotLoader().load(_dump(tmp_path, data))

    # --- Assert ---
    assert f"{section}[0]" in str(exc.value)
    assert "schema_error" in str(exc.value)
    assert fragment in str(exc.value)


def test_schema_error_reported(tmp_path: Path):
    data = _minimal()
    data["assignments"][0]["hours_allocated"] = 30

    with pytest.raises(DataError, match="schema_error"):
        SnapshotLoader().load(_dump(tmp_path, data))


def test_issue_formatting():
    issue = SnapshotIssue("duplicate_id", "employees", 3, None, "Duplicate id")

    assert str(issue) == "employees[3] (?): duplicate_id: Duplicate id"
