import pytest

from pianotrap.cli import logging_utils
from pianotrap.session import SessionState


@pytest.fixture(autouse=True)
def reset_logger_state():
    """Ensure each test starts with logging disabled and no open files."""

    logging_utils.configure_verbose_log_capture(None)
    logging_utils.set_verbose_logging(False)
    logging_utils.set_raw_terminal(False)
    yield
    logging_utils.configure_verbose_log_capture(None)
    logging_utils.set_verbose_logging(False)
    logging_utils.set_raw_terminal(False)


def test_verbose_entries_reach_the_log_file_when_console_is_quiet(tmp_path, capsys):
    log_file = tmp_path / "logs" / "session.log"
    logging_utils.configure_verbose_log_capture(log_file)

    logging_utils.LOGGER.verbose(logging_utils.CAPTURE_LOG_LABEL, "encoder", "pid=1", end="!")
    logging_utils.configure_verbose_log_capture(None)

    data = log_file.read_text(encoding="utf-8")
    assert "[CAPTURE] encoder pid=1" in data
    assert data.endswith("!")
    assert "\x1b" not in data
    assert capsys.readouterr().out == ""


def test_state_transition_is_logged(tmp_path):
    log_file = tmp_path / "session.log"
    logging_utils.configure_verbose_log_capture(log_file)

    logging_utils.log_state_transition(None, SessionState.IDLE, "boot")
    logging_utils.log_state_transition(SessionState.IDLE, SessionState.RECORDING, "song")
    logging_utils.log_state_transition(SessionState.RECORDING, SessionState.RECORDING, "noop")
    logging_utils.configure_verbose_log_capture(None)

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert "Entered IDLE (boot)" in lines[0]
    assert "IDLE -> RECORDING (song)" in lines[1]


def test_per_session_capture_generates_iso_filename(tmp_path):
    log_dir = tmp_path / "logs"
    logging_utils.configure_verbose_log_capture(log_dir, per_session=True)
    path = logging_utils.current_verbose_log_path()
    logging_utils.configure_verbose_log_capture(None)

    assert path is not None
    assert path.parent == log_dir
    assert "T" in path.stem
    assert path.stem[:4].isdigit()


def test_log_line_has_timestamp_and_colored_label(capsys):
    logging_utils.LOGGER.log(logging_utils.TRACK_LOG_LABEL, "Song detected")

    out = capsys.readouterr().out
    assert out.startswith("[")
    assert f"{logging_utils.COLOR_GREEN}[TRACK]{logging_utils.RESET} Song detected" in out


def test_errors_go_to_stderr(capsys):
    logging_utils.LOGGER.log(logging_utils.ERROR_LOG_LABEL, "boom", error=True)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "boom" in captured.err


def test_raw_terminal_uses_carriage_returns(capsys):
    logging_utils.set_raw_terminal(True)

    logging_utils.LOGGER.log(logging_utils.SYSTEM_LOG_LABEL, "first\nsecond")

    out = capsys.readouterr().out
    assert "first\r\n" in out
    assert out.endswith("\r\n")


def test_unknown_log_option_is_rejected():
    with pytest.raises(TypeError):
        logging_utils.LOGGER.log("SYSTEM", "hi", bogus=True)


@pytest.mark.parametrize(
    ("raw", "clean"),
    [
        ("\x1b[2K\x1b[0;32m|>\x1b[0m Song", "|> Song"),
        ("\x1b]0;pianobar\x07title", "title"),
        ("\x1b(Bplain", "plain"),
    ],
)
def test_strip_ansi_sequences(raw, clean):
    assert logging_utils.strip_ansi_sequences(raw) == clean
