"""Configuration resolution with precedence handling.

Programmatic > Environment > Project file > Defaults
"""

import dataclasses
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from facility_intake.exceptions import ConfigurationError

from .loaders import ConfigFileError, EnvironmentConfigLoader, FileConfigLoader
from .schema import IntakeSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig

log = logging.getLogger(__name__)


class ConfigResolver:
    """Merges configuration sources and records where each value came from."""

    def __init__(self) -> None:
        self.file_loader = FileConfigLoader()
        self.env_loader = EnvironmentConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources.

        Args:
            programmatic: Overrides with the highest precedence.
            project_root: Directory holding ``pyproject.toml``.

        Returns:
            ResolvedConfig with merged values and per-field origins.

        Raises:
            ConfigurationError: If a source is malformed or the merged values
                fail validation.
        """
        merged: dict[str, Any] = IntakeSettings.model_construct().to_dict()
        origin: dict[str, ConfigOrigin] = dict.fromkeys(merged, "default")

        layers: list[tuple[ConfigOrigin, dict[str, Any]]] = []
        try:
            layers.append(("file", self.file_loader.load_project_config(project_root)))
            layers.append(("env", self.env_loader.load_env_config()))
        except (ValueError, ConfigFileError) as e:
            raise ConfigurationError(str(e)) from e
        layers.append(("programmatic", dict(programmatic or {})))

        for source, values in layers:
            for field_name, value in values.items():
                if field_name in merged:
                    merged[field_name] = value
                    origin[field_name] = source

        try:
            validated = IntakeSettings(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        frozen = FrozenConfig(
            **{
                f.name: getattr(validated, f.name)
                for f in dataclasses.fields(FrozenConfig)
            }
        )
        log.debug("Resolved configuration: %r", frozen)
        return ResolvedConfig(config=frozen, origin=origin)


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    project_root: Path | None = None,
) -> FrozenConfig:
    """Resolve and freeze configuration in one step."""
    return ConfigResolver().resolve(programmatic, project_root=project_root).to_frozen()
