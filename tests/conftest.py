import os
import tempfile
from pathlib import Path

import pytest

_TEST_HOME = Path(tempfile.mkdtemp(prefix="pianotrap-tests-"))

_TEST_ENV_DEFAULTS = {
    "VERBOSE_LOG_CAPTURE_ENABLED": "0",
    "PIANOTRAP_USER_CONFIG": str(_TEST_HOME / "pianotrap" / "config"),
    "PIANOBAR_CONFIG_DIR": str(_TEST_HOME / "pianobar"),
    "EVENT_LOG_PATH": str(_TEST_HOME / "pianobar_event.log"),
}

for key, value in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep environment-driven settings stable across tests."""

    for key, value in _TEST_ENV_DEFAULTS.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("PIANOTRAP_SAVE_DIR", raising=False)
