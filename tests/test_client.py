import asyncio
import os
import pty
import sys
import termios

import pytest

from pianotrap.cli import logging_utils
from pianotrap.client import InputForwarder, StreamingClient, TerminalMode, describe_exit
from pianotrap.core.exceptions import ClientStartError
from pianotrap.transcript import TranscriptReader

pytestmark = pytest.mark.skipif(
    not sys.platform.startswith(("linux", "darwin")), reason="requires POSIX terminals"
)


class _Recorder:
    def __init__(self):
        self.writes: list[bytes] = []
        self.quits: list[str] = []
        self.pauses: list[str] = []

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    def quit(self, reason: str) -> None:
        self.quits.append(reason)

    def pause(self, key: str) -> None:
        self.pauses.append(key)


class _TtyStream:
    def __init__(self, fd: int):
        self._fd = fd

    def fileno(self) -> int:
        return self._fd

    def isatty(self) -> bool:
        return os.isatty(self._fd)


# ----------------------------------------------------------------------
# Input forwarding
def test_forwarder_passes_keystrokes_through():
    recorder = _Recorder()
    forwarder = InputForwarder(recorder.write, recorder.quit, fd=0, quit_keys=[b"q"])

    forwarder.feed(b"n")
    forwarder.feed(b"+")

    assert recorder.writes == [b"n", b"+"]
    assert recorder.quits == []


def test_forwarder_withholds_quit_key_and_requests_shutdown():
    recorder = _Recorder()
    forwarder = InputForwarder(recorder.write, recorder.quit, fd=0, quit_keys=[b"q"])

    forwarder.feed(b"nq+")
    forwarder.feed(b"p")

    assert recorder.writes == [b"n"]
    assert recorder.quits == ["quit key 'q'"]
    assert forwarder.quit_requested is True


def test_forwarder_treats_ctrl_c_as_quit():
    recorder = _Recorder()
    forwarder = InputForwarder(recorder.write, recorder.quit, fd=0, quit_keys=[b"q"])

    forwarder.feed(b"\x03")

    assert recorder.writes == []
    assert recorder.quits == ["Ctrl-C"]


def test_forwarder_forwards_pause_key_and_reports_it():
    recorder = _Recorder()
    forwarder = InputForwarder(
        recorder.write, recorder.quit, on_pause=recorder.pause, fd=0, pause_keys=[b"p", b"S"]
    )

    forwarder.feed(b"n")
    forwarder.feed(b"p")
    forwarder.feed(b"S")

    assert recorder.writes == [b"n", b"p", b"S"]
    assert recorder.pauses == ["p", "S"]
    assert recorder.quits == []


def test_pause_key_after_quit_key_is_not_reported():
    recorder = _Recorder()
    forwarder = InputForwarder(
        recorder.write, recorder.quit, on_pause=recorder.pause, fd=0, quit_keys=[b"q"]
    )

    forwarder.feed(b"qp")

    assert recorder.pauses == []
    assert recorder.quits == ["quit key 'q'"]


@pytest.mark.asyncio
async def test_forwarder_reads_from_watched_fd():
    read_fd, write_fd = os.pipe()
    os.set_blocking(read_fd, False)
    recorder = _Recorder()
    forwarder = InputForwarder(recorder.write, recorder.quit, fd=read_fd, quit_keys=[b"q"])
    try:
        await forwarder.start()
        os.write(write_fd, b"s")
        for _ in range(100):
            if recorder.writes:
                break
            await asyncio.sleep(0.01)
        await forwarder.stop()
    finally:
        os.close(read_fd)
        os.close(write_fd)

    assert recorder.writes == [b"s"]


# ----------------------------------------------------------------------
# Terminal mode
@pytest.mark.asyncio
async def test_terminal_mode_skips_non_tty():
    read_fd, write_fd = os.pipe()
    try:
        terminal = TerminalMode(_TtyStream(read_fd))
        await terminal.start()
        assert terminal.is_raw is False
        await terminal.stop()
    finally:
        os.close(read_fd)
        os.close(write_fd)


@pytest.mark.asyncio
async def test_terminal_mode_enters_and_restores_raw_mode():
    master_fd, slave_fd = pty.openpty()
    try:
        original = termios.tcgetattr(slave_fd)
        terminal = TerminalMode(_TtyStream(slave_fd))

        await terminal.start()
        raw = termios.tcgetattr(slave_fd)
        assert terminal.is_raw is True
        assert not raw[3] & termios.ICANON
        assert logging_utils.LOGGER._raw_terminal is True

        await terminal.stop()
        terminal.restore()

        assert termios.tcgetattr(slave_fd) == original
        assert logging_utils.LOGGER._raw_terminal is False
    finally:
        os.close(master_fd)
        os.close(slave_fd)


# ----------------------------------------------------------------------
# Streaming client
async def _drain(client: StreamingClient) -> str:
    reader = TranscriptReader(client.master_fd, poll_interval=0.01)
    return "\n".join([chunk async for chunk in reader])


@pytest.mark.asyncio
async def test_client_runs_in_pty_with_routing_env():
    client = StreamingClient(
        ["/bin/sh", "-c", 'test -t 0 && echo "tty:$PULSE_SINK"; exit 3'],
        env_provider=lambda: {"PULSE_SINK": "PianobarSink"},
    )
    await client.start()
    try:
        output = await asyncio.wait_for(_drain(client), timeout=5.0)
        returncode = await asyncio.wait_for(client.wait(), timeout=5.0)
    finally:
        await client.stop()

    assert "tty:PianobarSink" in output
    assert returncode == 3
    assert describe_exit(returncode) == "status 3"


@pytest.mark.asyncio
async def test_client_terminate_stops_long_running_process():
    client = StreamingClient("sleep 30", terminate_grace=1.0)
    await client.start()

    returncode = await asyncio.wait_for(client.terminate(), timeout=5.0)
    await client.stop()

    assert returncode is not None and returncode < 0
    assert describe_exit(returncode).startswith("signal")


@pytest.mark.asyncio
async def test_client_forwards_input():
    client = StreamingClient(["/bin/sh", "-c", "read line; echo got:$line"])
    await client.start()
    try:
        client.write(b"hello\n")
        output = await asyncio.wait_for(_drain(client), timeout=5.0)
    finally:
        await client.stop()

    assert "got:hello" in output


@pytest.mark.asyncio
async def test_missing_client_binary_raises():
    client = StreamingClient(["/nonexistent/pianobar-binary"])

    with pytest.raises(ClientStartError):
        await client.start()
    assert client.started is False
