import dataclasses

import pytest

from facility_intake.config import (
    ConfigResolver,
    FrozenConfig,
    IntakeSettings,
    resolve_config,
)
from facility_intake.core.types import ProviderName
from facility_intake.exceptions import ConfigurationError

pytestmark = pytest.mark.unit


def _write_pyproject(path, body: str) -> None:
    (path / "pyproject.toml").write_text(f"[tool.facility_intake]\n{body}\n")


def test_defaults():
    config = resolve_config()

    assert config == FrozenConfig()
    assert config.low_confidence_threshold == 0.70
    assert config.suggest_threshold == 0.75
    assert config.auto_accept_threshold == 0.90
    assert config.chunk_concurrency == 3
    assert config.max_chunk_size == 100_000
    assert config.use_real_api is False
    assert config.circuit_breaker is False


def test_precedence_programmatic_over_env_over_file(tmp_path, monkeypatch):
    _write_pyproject(tmp_path, "chunk_concurrency = 4\nconflict_tolerance = 0.1\nmin_sheet_chars = 5")
    monkeypatch.setenv("INTAKE_CHUNK_CONCURRENCY", "5")
    monkeypatch.setenv("INTAKE_MIN_SHEET_CHARS", "7")

    resolved = ConfigResolver().resolve({"chunk_concurrency": 6}, project_root=tmp_path)

    assert resolved.config.chunk_concurrency == 6
    assert resolved.config.min_sheet_chars == 7
    assert resolved.config.conflict_tolerance == 0.1
    assert resolved.origin["chunk_concurrency"] == "programmatic"
    assert resolved.origin["min_sheet_chars"] == "env"
    assert resolved.origin["conflict_tolerance"] == "file"
    assert resolved.origin["max_chunk_size"] == "default"


def test_project_file_found_from_working_directory(tmp_path):
    _write_pyproject(tmp_path, "heartbeat_seconds = 5.0")

    assert resolve_config().heartbeat_seconds == 5.0


def test_env_values_are_coerced(monkeypatch):
    monkeypatch.setenv("INTAKE_CIRCUIT_BREAKER", "true")
    monkeypatch.setenv("INTAKE_LOW_CONFIDENCE_THRESHOLD", "0.65")

    config = resolve_config()

    assert config.circuit_breaker is True
    assert config.low_confidence_threshold == 0.65


def test_invalid_env_value_raises_configuration_error(monkeypatch):
    monkeypatch.setenv("INTAKE_CHUNK_CONCURRENCY", "many")

    with pytest.raises(ConfigurationError):
        resolve_config()


def test_malformed_project_file_raises_configuration_error(tmp_path):
    (tmp_path / "pyproject.toml").write_text("[tool.facility_intake\nbroken")

    with pytest.raises(ConfigurationError):
        resolve_config(project_root=tmp_path)


def test_thresholds_must_be_ordered():
    with pytest.raises(ConfigurationError):
        resolve_config({"low_confidence_threshold": 0.8, "suggest_threshold": 0.75})


def test_out_of_bounds_values_are_rejected():
    with pytest.raises(ConfigurationError):
        resolve_config({"chunk_concurrency": 0})


def test_real_api_requires_a_key():
    with pytest.raises(ConfigurationError):
        resolve_config({"use_real_api": True})


def test_conventional_provider_key_names(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

    config = resolve_config({"use_real_api": True})

    assert config.api_keys() == {ProviderName.ANTHROPIC: "sk-ant-test"}


def test_keys_are_redacted(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret-value")

    resolved = ConfigResolver().resolve()

    assert "sk-secret-value" not in repr(resolved.config)
    assert "sk-secret-value" not in str(resolved)
    assert "sk-secret-value" not in resolved.audit()
    assert "openai_api_key: env:<redacted>" in resolved.audit()


def test_frozen_config_is_immutable():
    config = FrozenConfig()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.chunk_concurrency = 9  # type: ignore[misc]


def test_with_overrides_marks_programmatic_origin():
    resolved = ConfigResolver().resolve()

    updated = resolved.with_overrides(chunk_concurrency=8, unknown_field=1)

    assert updated.config.chunk_concurrency == 8
    assert updated.origin["chunk_concurrency"] == "programmatic"
    assert resolved.config.chunk_concurrency == 3


def test_settings_and_frozen_config_share_fields():
    assert set(IntakeSettings.model_fields) == {f.name for f in dataclasses.fields(FrozenConfig)}
