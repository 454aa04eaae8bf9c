from __future__ import annotations

import pytest

from bilmap.encoders.registry import refresh_encoders
from bilmap.perf import ENV_PROFILE_DIR
from bilmap.settings import ENV_SETTINGS


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path) -> None:
    """Prevent local settings and profiling dirs from bleeding into tests."""
    monkeypatch.setenv(ENV_SETTINGS, str(tmp_path / "missing_settings.json"))
    monkeypatch.delenv(ENV_PROFILE_DIR, raising=False)


@pytest.fixture
def fresh_encoders():
    """Reset the encoder registry around a test."""
    refresh_encoders()
    yield
    refresh_encoders()
