"""
Global test configuration and shared fixtures.
"""

import logging
import os

import pytest

from facility_intake.config import FrozenConfig
from tests.helpers import FakeClock

_PROVIDER_KEYS = ("ANTHROPIC_API_KEY", "GEMINI_API_KEY", "OPENAI_API_KEY", "XAI_API_KEY")


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_intake_env(request, monkeypatch):
    """Ensure a clean INTAKE_* and provider-key environment for each test.

    Escape hatch: mark a test with @pytest.mark.allow_env_pollution to keep
    the current environment unchanged.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("INTAKE_"):
            monkeypatch.delenv(key, raising=False)
    for key in _PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)
    # Avoid DEBUG toggles switching telemetry on
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_project_root(request, monkeypatch, tmp_path):
    """Run from an empty directory so no real pyproject.toml is picked up."""
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    monkeypatch.chdir(tmp_path)


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Keep HTTP client debug chatter out of captured logs."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# --- Test Environment Markers ---
def pytest_configure(config):
    """Register the markers used to select test tiers."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Component integration tests with scripted providers",
        "contract: Behavioral guarantees of public types",
        "allow_env_pollution: Keep the ambient environment for this test",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture
def config() -> FrozenConfig:
    """Default configuration with mock providers."""
    return FrozenConfig()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
