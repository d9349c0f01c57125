# src/crewguard/dataloader/snapshot_loader.py
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from crewguard.dataloader.yaml_reader import read_yaml_mapping
from crewguard.errors import DataError
from crewguard.schemas.models import Assignment, Employee, Phase, Project
from crewguard.store.memory import InMemoryAssignmentStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(slots=True)
class SnapshotIssue:
    kind: str
    section: str
    index: int
    record_id: str | None
    message: str

    def __str__(self) -> str:
        where = f"{self.section}[{self.index}] ({self.record_id or '?'})"
        return f"{where}: {self.kind}: {self.message}"


@dataclass(slots=True)
class _Parsed:
    employees: dict[str, Employee] = field(default_factory=dict)
    projects: dict[str, Project] = field(default_factory=dict)
    phases: dict[str, Phase] = field(default_factory=dict)
    assignments: dict[str, Assignment] = field(default_factory=dict)
    issues: list[SnapshotIssue] = field(default_factory=list)


class SnapshotLoader:
    """
    YAML snapshot → InMemoryAssignmentStore.

    Layout:
      employees:   [{id, name, division, employee_type, is_active, ...}]
      projects:    [{id, name, division, status, start_date, end_date}]
      phases:      [{id, name, project_id, start_date, end_date, labor, ...}]
      assignments: [{id, employee_id, phase_id, assignment_date, hours_allocated, ...}]

    Record-level checks (collected, then reported together):
      * schema violation or inverted date window → issue
      * duplicate id → issue (first record kept)
      * unknown project/employee/phase reference → issue

    Fatal (raise DataError immediately): missing/unreadable file, invalid
    YAML, unknown top-level section, section that is not a list.
    Any collected issue also raises DataError once parsing completes, so the
    store is never built from a partially valid snapshot.
    """

    SECTIONS = ("employees", "projects", "phases", "assignments")
    MAX_REPORTED_ISSUES = 10

    def load(self, path: Path) -> InMemoryAssignmentStore:
        data = read_yaml_mapping(
            path, DataError, source="SnapshotLoader._read_yaml", what="snapshot file"
        )
        parsed = self._parse(data)
        self._report_summary(path, parsed)
        return InMemoryAssignmentStore(
            employees=parsed.employees.values(),
            projects=parsed.projects.values(),
            phases=parsed.phases.values(),
            assignments=parsed.assignments.values(),
        )

    # ------------------------------
    # Internal helpers
    # ------------------------------
    def _sections(self, data: dict[str, Any]) -> dict[str, list[Any]]:
        unknown = sorted(set(data) - set(self.SECTIONS))
        if unknown:
            raise DataError(
                message=f"Unknown snapshot section(s): {', '.join(unknown)}",
                source="SnapshotLoader._sections",
                suggested_action=f"Use only: {', '.join(self.SECTIONS)}",
            )
        sections: dict[str, list[Any]] = {}
        for name in self.SECTIONS:
            rows = data.get(name) or []
            if not isinstance(rows, list):
                raise DataError(
                    message=f"Section '{name}' must be a list, got {type(rows).__name__}",
                    source="SnapshotLoader._sections",
                    suggested_action=f"Write '{name}' as a YAML sequence of mappings.",
                )
            sections[name] = rows
        return sections

    def _parse(self, data: dict[str, Any]) -> _Parsed:
        sections = self._sections(data)
        out = _Parsed()

        # (1) Leaf records
        for idx, row in enumerate(sections["employees"]):
            self._add(out, out.employees, "employees", idx, row, Employee.model_validate)
        for idx, row in enumerate(sections["projects"]):
            self._add(out, out.projects, "projects", idx, row, Project.model_validate)

        # (2) Phases embed their project
        for idx, row in enumerate(sections["phases"]):
            self._add(out, out.phases, "phases", idx, row, self._phase_factory(out))

        # (3) Assignments must reference known employees and phases
        for idx, row in enumerate(sections["assignments"]):
            a = self._add(out, out.assignments, "assignments", idx, row, Assignment.model_validate)
            if a is None:
                continue
            problems = []
            if a.employee_id not in out.employees:
                problems.append(f"unknown employee_id {a.employee_id}")
            if a.phase_id not in out.phases:
                problems.append(f"unknown phase_id {a.phase_id}")
            if problems:
                out.issues.append(
                    SnapshotIssue(
                        "invalid_reference", "assignments", idx, a.id, "; ".join(problems)
                    )
                )
                del out.assignments[a.id]

        return out

    @staticmethod
    def _phase_factory(out: _Parsed) -> Callable[[Any], Phase]:
        def build(row: Any) -> Phase:
            if not isinstance(row, dict):
                return Phase.model_validate(row)
            fields = dict(row)
            project_id = fields.pop("project_id", None)
            if project_id not in out.projects:
                raise KeyError(f"unknown project_id {project_id}")
            return Phase.model_validate({**fields, "project": out.projects[project_id]})

        return build

    @staticmethod
    def _add(
        out: _Parsed,
        target: dict[str, M],
        section: str,
        idx: int,
        row: Any,
        factory: Callable[[Any], M],
    ) -> M | None:
        record_id = row.get("id") if isinstance(row, dict) else None
        try:
            record = factory(row)
        except ValidationError as e:
            out.issues.append(
                SnapshotIssue("schema_error", section, idx, record_id, str(e).replace("\n", " "))
            )
            return None
        except KeyError as e:
            out.issues.append(
                SnapshotIssue("invalid_reference", section, idx, record_id, str(e.args[0]))
            )
            return None

        if record.id in target:  # type: ignore[attr-defined]
            out.issues.append(
                SnapshotIssue(
                    "duplicate_id",
                    section,
                    idx,
                    record_id,
                    "Duplicate id (later occurrence skipped)",
                )
            )
            return None
        target[record.id] = record  # type: ignore[attr-defined]
        return record

    def _report_summary(self, path: Path, parsed: _Parsed) -> None:
        if not parsed.issues:
            logger.info(
                "SnapshotLoader OK: %d employee(s), %d project(s), %d phase(s), "
                "%d assignment(s) from %s",
                len(parsed.employees),
                len(parsed.projects),
                len(parsed.phases),
                len(parsed.assignments),
                path,
            )
            return

        # Aggregate by kind
        counts: dict[str, int] = {}
        for issue in parsed.issues:
            counts[issue.kind] = counts.get(issue.kind, 0) + 1
        summary = ", ".join(f"{k}={v}" for k, v in counts.items())
        logger.error(
            "SnapshotLoader failed: %d issue(s) in %s [%s]", len(parsed.issues), path, summary
        )

        shown = parsed.issues[: self.MAX_REPORTED_ISSUES]
        more = len(parsed.issues) - len(shown)
        details = "; ".join(str(i) for i in shown) + (f"; ... {more} more" if more > 0 else "")
        raise DataError(
            message=f"Invalid snapshot {path}: {details}",
            source="SnapshotLoader._parse",
            suggested_action="Fix the listed records: ids must be unique, references must resolve.",
        )


__all__ = ["SnapshotIssue", "SnapshotLoader"]
