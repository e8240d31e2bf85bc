import importlib
from pathlib import Path

import pytest

base = importlib.import_module("pianotrap.config.base")

EXPECTED_INT_VALUE = 42
EXPECTED_FLOAT_VALUE = 0.5


@pytest.fixture
def reload_base(monkeypatch: pytest.MonkeyPatch):
    def _reload(**env: str):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return importlib.reload(base)

    yield _reload
    monkeypatch.undo()
    importlib.reload(base)


def test_defaults_are_loaded(reload_base) -> None:
    module = reload_base()

    assert module.CLIENT_COMMAND == "pianobar"
    assert module.CLIENT_QUIT_KEY == "q"
    assert module.MIN_FILE_BYTES == 50 * 1024
    assert module.HARD_TIMEOUT_SECONDS == 1800.0
    assert module.COMPLETION_THRESHOLD_SECONDS == 5.0
    assert module.OUTPUT_EXTENSION == "mp3"
    assert module.ENCODER_AUDIO_FILTER == "volume=2"


def test_env_overrides_are_applied(reload_base) -> None:
    module = reload_base(
        MIN_FILE_BYTES="1024",
        STALL_GRACE_SECONDS="2.5",
        AUDIO_DEDICATED_SINK="no",
        OUTPUT_EXTENSION=".ogg",
    )

    assert module.MIN_FILE_BYTES == 1024
    assert module.STALL_GRACE_SECONDS == 2.5
    assert module.AUDIO_DEDICATED_SINK is False
    assert module.OUTPUT_EXTENSION == "ogg"


def test_invalid_env_values_fall_back(reload_base, capsys: pytest.CaptureFixture[str]) -> None:
    module = reload_base(MIN_FILE_BYTES="lots", HARD_TIMEOUT_SECONDS="forever")

    assert module.MIN_FILE_BYTES == 50 * 1024
    assert module.HARD_TIMEOUT_SECONDS == 1800.0
    err = capsys.readouterr().err
    assert "Invalid value for MIN_FILE_BYTES='lots'" in err
    assert "HARD_TIMEOUT_SECONDS" in err


def test_env_helpers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PT_INT", str(EXPECTED_INT_VALUE))
    monkeypatch.setenv("PT_FLOAT", str(EXPECTED_FLOAT_VALUE))
    monkeypatch.setenv("PT_BOOL", "Yes")
    monkeypatch.setenv("PT_STR", "   ")

    assert base._env_int("PT_INT", 0) == EXPECTED_INT_VALUE
    assert base._env_float("PT_FLOAT", 0.0) == EXPECTED_FLOAT_VALUE
    assert base._env_bool("PT_BOOL") is True
    assert base._env_bool("PT_MISSING", True) is True
    assert base._env_str("PT_STR", "fallback") == "fallback"


def test_save_dir_override_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIANOTRAP_SAVE_DIR", str(tmp_path / "env"))

    result = base.load_save_dir(tmp_path / "flag", config_path=tmp_path / "config")

    assert result == tmp_path / "flag"


def test_save_dir_env_beats_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config"
    config.write_text(f"{tmp_path / 'file'}\n", encoding="utf-8")
    monkeypatch.setenv("PIANOTRAP_SAVE_DIR", str(tmp_path / "env"))

    assert base.load_save_dir(config_path=config) == tmp_path / "env"


def test_save_dir_reads_first_non_empty_line(tmp_path: Path) -> None:
    config = tmp_path / "config"
    config.write_text(f"\n   \n{tmp_path / 'music'}  \nignored\n", encoding="utf-8")

    assert base.load_save_dir(config_path=config) == tmp_path / "music"


def test_missing_config_file_is_created_with_default(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / "pianotrap" / "config"

    result = base.load_save_dir(config_path=config)

    assert result == base.DEFAULT_SAVE_DIR
    assert config.read_text(encoding="utf-8") == f"{base.DEFAULT_SAVE_DIR}\n"
    assert "Created default config file" in capsys.readouterr().err
