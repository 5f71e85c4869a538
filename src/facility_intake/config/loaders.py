"""Environment and file configuration loading.

Each loader returns only the fields its source actually sets, already
coerced to the schema's types, so the resolver can layer them.
"""

import os
from pathlib import Path
import tomllib
from typing import Any

from pydantic import TypeAdapter, ValidationError

from .schema import API_KEY_FIELDS, IntakeSettings

TOOL_SECTION = "facility_intake"


class ConfigFileError(Exception):
    """Raised when a configuration file cannot be read or parsed."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


def _coerce(field_name: str, raw: Any) -> Any:
    annotation = IntakeSettings.model_fields[field_name].annotation
    return TypeAdapter(annotation).validate_python(raw)


def _env_names(field_name: str) -> tuple[str, ...]:
    if field_name in API_KEY_FIELDS:
        return API_KEY_FIELDS[field_name]
    return (f"INTAKE_{field_name.upper()}",)


class EnvironmentConfigLoader:
    """Reads ``INTAKE_*`` variables and conventional provider key names."""

    def load_env_config(self) -> dict[str, Any]:
        """Load configuration values present in the environment.

        Returns:
            Field name to coerced value, for fields that are set.

        Raises:
            ValueError: If a variable holds a value of the wrong type.
        """
        values: dict[str, Any] = {}
        for field_name in IntakeSettings.model_fields:
            for env_var in _env_names(field_name):
                if env_var not in os.environ:
                    continue
                raw = os.environ[env_var]
                try:
                    values[field_name] = _coerce(field_name, raw)
                except ValidationError as e:
                    raise ValueError(
                        f"Invalid environment variable value: {env_var}={raw!r}. "
                        f"Error: {e}"
                    ) from e
                break
        return values


class FileConfigLoader:
    """Reads ``[tool.facility_intake]`` from the nearest ``pyproject.toml``."""

    def load_project_config(self, project_root: Path | None = None) -> dict[str, Any]:
        """Load configuration from the project file.

        Args:
            project_root: Directory to start searching from. Defaults to the
                current directory; parents are searched as well.

        Returns:
            Field name to coerced value. Empty when there is no file or no
            ``facility_intake`` section.

        Raises:
            ConfigFileError: If the file exists but is malformed.
        """
        path = self._find_pyproject(project_root)
        if path is None:
            return {}
        try:
            with path.open(mode="rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e

        section = data.get("tool", {}).get(TOOL_SECTION, {})
        if not isinstance(section, dict):
            raise ConfigFileError(path, f"[tool.{TOOL_SECTION}] must be a table")

        values: dict[str, Any] = {}
        for key, raw in section.items():
            if key not in IntakeSettings.model_fields:
                continue
            try:
                values[key] = _coerce(key, raw)
            except ValidationError as e:
                raise ConfigFileError(path, f"Invalid value for {key}: {e}", e) from e
        return values

    def _find_pyproject(self, project_root: Path | None) -> Path | None:
        start = (project_root or Path.cwd()).resolve()
        for directory in (start, *start.parents):
            candidate = directory / "pyproject.toml"
            if candidate.is_file():
                return candidate
            if project_root is not None:
                # An explicit root is not searched above.
                return None
        return None
