# src/crewguard/dataloader/config_loader.py
from __future__ import annotations

from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from crewguard.dataloader.yaml_reader import read_yaml_mapping
from crewguard.errors import ConfigError
from crewguard.schemas.models import EngineConfig


class ConfigLoader:
    """
    @brief
    Loader responsible for reading and validating engine configuration.

    @details
    Reads YAML from disk, parses it into a mapping, validates structure
    against the Pydantic `EngineConfig` schema, and raises structured
    `ConfigError` instances for all failure modes.
    """

    def load(self, path: Path) -> EngineConfig:
        """
        @brief
        Load and validate configuration from YAML file.

        @params
            path : Path
                Filesystem path to configuration file (.yaml or .yml).

        @returns
            Validated EngineConfig instance with defaults applied.

        @raises
            ConfigError
                Raised if file is missing, malformed, or fails schema validation.
        """
        # (1) Read and parse YAML configuration file
        data = read_yaml_mapping(
            path, ConfigError, source="ConfigLoader._read_yaml", what="configuration file"
        )

        # (2) Validate mapping against Pydantic schema
        return self._validate(data)

    def _validate(self, data: dict[str, Any]) -> EngineConfig:
        """
        @brief
        Validate parsed configuration mapping via Pydantic schema.

        @details
        Wraps `ValidationError` in a structured `ConfigError` with contextual
        information about field mismatches, missing keys, or type violations.
        An unknown IANA timezone is rejected here as well so that the engine
        never fails on it mid-request.
        """
        # (1) Attempt schema validation via Pydantic
        try:
            cfg = EngineConfig(**data)
        except ValidationError as e:
            # (2) Wrap Pydantic error in standardized ConfigError
            raise ConfigError(
                message=f"Invalid configuration structure: {e}",
                source="ConfigLoader._validate",
                suggested_action=(
                    "Check field names, types, and bounds in config.yaml. "
                    "Remove unknown keys (extra fields are forbidden)."
                ),
            ) from e

        # (3) Resolve the timezone once
        try:
            ZoneInfo(cfg.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(
                message=f"Unknown timezone: {cfg.timezone!r}",
                source="ConfigLoader._validate",
                suggested_action="Use an IANA timezone name such as 'UTC' or 'America/Denver'.",
            ) from e
        return cfg


__all__ = ["ConfigLoader"]
