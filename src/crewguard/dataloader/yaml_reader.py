# src/crewguard/dataloader/yaml_reader.py
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from crewguard.errors import CrewGuardError


def read_yaml_mapping(
    path: Path, error_cls: type[CrewGuardError], source: str, what: str = "YAML file"
) -> dict[str, Any]:
    """
    @brief
    Read YAML file into Python mapping with strict checks.

    @details
    Validates path type, existence, extension, readability and syntax.
    Ensures non-empty content and top-level mapping structure before returning
    a normalized dictionary. Every failure is raised as `error_cls` so that
    configuration and snapshot loaders keep their own error type.

    @params
        path : Path
            Path to the YAML file.
        error_cls : type[CrewGuardError]
            Error raised for any structural or I/O problem.
        source : str
            Reported as the error source.
        what : str
            Human name of the file used in messages.

    @returns
        Parsed dictionary.
    """
    # (1) Validate path type and existence
    if not isinstance(path, Path):
        raise error_cls(
            message=f"Invalid path type: expected pathlib.Path, got {type(path).__name__}",
            source=source,
            suggested_action=f"Pass a pathlib.Path object pointing to the {what}.",
        )

    if not path.exists():
        raise error_cls(
            message=f"{what[0].upper()}{what[1:]} not found: {path}",
            source=source,
            suggested_action=f"Ensure the {what} exists and the path is correct.",
        )

    # (2) Enforce correct file extension
    if path.suffix.lower() not in {".yaml", ".yml"}:
        raise error_cls(
            message=f"Invalid file extension for {what}: {path.suffix}",
            source=source,
            suggested_action="Use .yaml or .yml extension.",
        )

    # (3) Read and parse YAML content
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise error_cls(
            message=f"YAML parsing failed: {e}",
            source=source,
            suggested_action="Fix YAML syntax/indentation.",
        ) from e
    except OSError as e:
        raise error_cls(
            message=f"Unable to read {what}: {e}",
            source=source,
            suggested_action="Check file permissions and path accessibility.",
        ) from e

    # (4) Validate structural integrity of parsed data
    if data is None:
        raise error_cls(
            message=f"{what[0].upper()}{what[1:]} is empty: {path}",
            source=source,
            suggested_action=f"Populate the {what} with the required sections.",
        )

    if not isinstance(data, Mapping):
        raise error_cls(
            message=f"Root of {what} must be a mapping (key: value pairs).",
            source=source,
            suggested_action="Ensure top-level YAML structure uses key: value mappings.",
        )

    # (5) Normalize mapping to plain dict[str, Any]
    return dict(data)


__all__ = ["read_yaml_mapping"]
