# scripts/run.py
from __future__ import annotations

import argparse
import logging
import sys
import time
import traceback
from collections.abc import Sequence
from datetime import date
from pathlib import Path
from typing import Any

from crewguard.dataloader.config_loader import ConfigLoader
from crewguard.dataloader.snapshot_loader import SnapshotLoader
from crewguard.engine.service import ConflictEngine
from crewguard.engine.snapshot import Clock, utc_now
from crewguard.errors import CrewGuardError, InvalidInputError
from crewguard.export.report_export import build_report, write_report
from crewguard.schemas.models import Severity, Suggestion, ValidationResult


def _setup_logging() -> None:
    """
    @brief
    Initializes global logging configuration.

    @details
    Sets the default logging level to INFO and defines a simple console format.
    """
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """
    @brief
    Parses command-line arguments for the CrewGuard audit runner.

    @details
    - config path (YAML),
    - snapshot path (YAML),
    - output directory for the report,
    - optional single-assignment validation.
    """
    parser = argparse.ArgumentParser(
        prog="crewguard-run",
        description="Audit a crew schedule snapshot: load → scan → suggest → export",
    )

    # (1) Config path argument
    parser.add_argument(
        "--config",
        type=str,
        default="config/config.yaml",
        help="Path to config YAML (default: config/config.yaml)",
    )

    # (2) Snapshot path argument
    parser.add_argument(
        "--input",
        type=str,
        default="data/sample/snapshot.yaml",
        help="Path to schedule snapshot YAML (default: data/sample/snapshot.yaml)",
    )

    # (3) Output directory argument; falls back to output_dir from the config
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory for conflict_report.json (default: config output_dir)",
    )

    # (4) Optional pre-commit validation of one proposed assignment
    parser.add_argument(
        "--validate",
        nargs=4,
        metavar=("PHASE", "EMPLOYEE", "DATE", "HOURS"),
        default=None,
        help="Validate a proposed assignment, e.g. --validate P1 E1 2024-01-02 4",
    )

    return parser.parse_args(argv)


def _parse_proposal(values: Sequence[str]) -> tuple[str, str, date, float]:
    phase_id, employee_id, day_raw, hours_raw = values
    try:
        day = date.fromisoformat(day_raw)
        hours = float(hours_raw)
    except ValueError as e:
        raise InvalidInputError(
            message=f"Invalid --validate arguments {list(values)}: {e}",
            source="scripts.run",
            suggested_action="Use --validate PHASE EMPLOYEE YYYY-MM-DD HOURS",
        ) from e
    return phase_id, employee_id, day, hours


def run_audit(
    config_path: Path,
    input_path: Path,
    output_dir: Path | None = None,
    proposal: Sequence[str] | None = None,
    clock: Clock = utc_now,
) -> dict[str, Any]:
    """
    @brief
    Executes the full CrewGuard audit.

    @details
    Performs sequential steps:
    (1) Load configuration and the schedule snapshot into an in-memory store.
    (2) Optionally validate one proposed assignment.
    (3) Scan all conflicts and collect suggestions per conflict.
    (4) Export conflict_report.json and return summary metadata.

    @params
        config_path : Path
            Path to the YAML configuration file.
        input_path : Path
            Path to the snapshot YAML file.
        output_dir : Path | None
            Report directory; None uses `output_dir` from the configuration.
        proposal : Sequence[str] | None
            (phase_id, employee_id, ISO date, hours) to validate.
        clock : Clock
            Source of "now" for the engine.

    @returns
        Dictionary with conflict counts, the validation verdict and artifact paths.

    @raises
        CrewGuardError
            On configuration, snapshot, or input issues.
    """
    # (1) Start timer and load inputs
    t0 = time.perf_counter()
    logging.info("Loading config: %s", config_path)
    cfg = ConfigLoader().load(config_path)

    logging.info("Loading snapshot: %s", input_path)
    store = SnapshotLoader().load(input_path)
    engine = ConflictEngine(store, cfg, clock=clock)
    store.add_listener(engine.on_store_change)

    # (2) Validate the proposed assignment, when requested
    validation: ValidationResult | None = None
    if proposal is not None:
        phase_id, employee_id, day, hours = _parse_proposal(proposal)
        logging.info("Validating %s on %s for %s (%gh)…", employee_id, day, phase_id, hours)
        validation = engine.validate_assignment(phase_id, employee_id, day, hours)
        for c in validation.conflicts:
            logging.warning("Blocking %s [%s]: %s", c.type.value, c.severity.value, c.description)
        for c in validation.warnings:
            logging.info("Warning %s [%s]: %s", c.type.value, c.severity.value, c.description)

    # (3) Full scan and suggestions
    logging.info("Scanning conflicts…")
    conflicts = engine.scan_all_conflicts()
    suggestions: dict[str, list[Suggestion]] | None = None
    if cfg.report.include_suggestions:
        suggestions = {c.id: engine.get_resolution_suggestions(c) for c in conflicts}
    for c in conflicts:
        logging.info("%-8s %-20s %s", c.severity.value, c.type.value, c.description)

    # (4) Export report
    report_path: Path | None = None
    if cfg.report.write_report:
        target_dir = output_dir or (Path(cfg.output_dir) if cfg.output_dir else None)
        if target_dir is None:
            logging.info("No output directory configured; report not written.")
        else:
            report = build_report(conflicts, clock(), suggestions, validation)
            report_path = write_report(report, target_dir)

    dt = time.perf_counter() - t0
    logging.info("Audit finished in %.2f s: %d conflict(s)", dt, len(conflicts))

    return {
        "num_conflicts": len(conflicts),
        "by_severity": {s.value: sum(c.severity == s for c in conflicts) for s in Severity},
        "validation_valid": None if validation is None else validation.is_valid,
        "artifacts": {"conflict_report": report_path},
    }


def main(argv: Sequence[str] | None = None) -> int:
    """
    @brief
    CLI entry point for the CrewGuard audit.

    @details
    Returns numeric exit codes suitable for shell integration:
      0 – clean (no conflicts, proposed assignment valid when given)
      1 – conflicts found, proposal rejected, or controlled failure
      2 – unexpected crash
    """
    _setup_logging()
    args = _parse_args(argv)

    config_path = Path(args.config)
    input_path = Path(args.input)
    output_dir = Path(args.output) if args.output else None

    try:
        result = run_audit(config_path, input_path, output_dir, args.validate)
        report_path = result["artifacts"].get("conflict_report")
        if report_path:
            logging.info("Report written to %s", Path(report_path).as_posix())
        clean = result["num_conflicts"] == 0 and result["validation_valid"] is not False
        return 0 if clean else 1

    except CrewGuardError as e:
        logging.error(str(e))
        return 1
    except Exception:
        logging.error("Unexpected error occurred:")
        traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
