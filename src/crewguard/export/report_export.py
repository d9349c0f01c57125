# src/crewguard/export/report_export.py
from __future__ import annotations

import json
import os
import tempfile
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from crewguard.errors import DataError
from crewguard.schemas.models import (
    Conflict,
    ConflictType,
    Severity,
    Suggestion,
    ValidationResult,
)

REPORT_FILENAME = "conflict_report.json"


def _conflict_record(
    conflict: Conflict, suggestions: Sequence[Suggestion] | None
) -> dict[str, Any]:
    row = conflict.model_dump(mode="json")
    row["related_entities"] = sorted(conflict.related_entities)
    if suggestions is not None:
        row["suggestions"] = [s.model_dump(mode="json", exclude_none=True) for s in suggestions]
    return row


def build_report(
    conflicts: Sequence[Conflict],
    generated_at: datetime,
    suggestions: Mapping[str, Sequence[Suggestion]] | None = None,
    validation: ValidationResult | None = None,
) -> dict[str, Any]:
    """
    @brief
    Assembles the JSON-ready audit report.

    @details
    Conflicts keep the order they are given in (the scanner's severity
    order). The summary counts every severity and every conflict type, zero
    included, so that consumers can rely on a fixed key set.

    @params
        conflicts : Sequence[Conflict]
            Scan result.
        generated_at : datetime
            Report timestamp.
        suggestions : Mapping[str, Sequence[Suggestion]] | None
            Suggestions keyed by conflict id; omitted from the report when None.
        validation : ValidationResult | None
            Result of an optional single-assignment validation.

    @returns
        Report dictionary with `generated_at`, `summary`, `conflicts` and,
        when given, `validation`.
    """
    by_severity = Counter(c.severity for c in conflicts)
    by_type = Counter(c.type for c in conflicts)
    report: dict[str, Any] = {
        "generated_at": generated_at.isoformat(),
        "summary": {
            "total": len(conflicts),
            "by_severity": {s.value: by_severity.get(s, 0) for s in Severity},
            "by_type": {t.value: by_type.get(t, 0) for t in ConflictType},
        },
        "conflicts": [
            _conflict_record(c, None if suggestions is None else suggestions.get(c.id, []))
            for c in conflicts
        ],
    }
    if validation is not None:
        report["validation"] = {
            "is_valid": validation.is_valid,
            "conflicts": [_conflict_record(c, None) for c in validation.conflicts],
            "warnings": [_conflict_record(c, None) for c in validation.warnings],
        }
    return report


def write_report(report: dict[str, Any], out_dir: Path) -> Path:
    """
    @brief
    Writes conflict_report.json atomically in UTF-8 encoding.

    @raises
        DataError
            If the report is not a dict or JSON serialization fails.
    """
    if not isinstance(report, dict):
        raise DataError("report must be a dict", source="export.write_report")

    # (1) Validate JSON serializability before touching the filesystem
    try:
        payload = json.dumps(report, ensure_ascii=False, sort_keys=True, indent=2)
    except (TypeError, ValueError) as e:
        raise DataError(
            f"report not JSON-serializable: {e}",
            source="export.write_report",
            suggested_action="Build the report with build_report().",
        ) from e

    # (2) Atomically write validated payload
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / REPORT_FILENAME
    _atomic_write_text(target, payload)
    return target


def _atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """
    @brief
    Performs atomic text file writing using a temporary file swap.

    @details
    Writes text to a temporary file within the same directory, then replaces
    the destination in a single filesystem operation.

    @raises
        DataError
            On write or rename failure.
    """
    path = Path(path)
    tmp_dir = path.parent
    tmp_dir.mkdir(parents=True, exist_ok=True)

    # (1) Create temporary file near the target for atomicity
    fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", dir=str(tmp_dir))
    try:
        with open(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        # (2) Clean up temp file on error
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise DataError(
            f"atomic write failed for {path}: {e}",
            source="export._atomic_write_text",
            suggested_action="Check output directory permissions and disk space.",
        ) from e


__all__ = ["REPORT_FILENAME", "build_report", "write_report"]
