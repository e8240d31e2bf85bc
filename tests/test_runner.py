import asyncio
import shlex
from functools import partial
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest

from pianotrap.capture import CaptureSupervisor
from pianotrap.cli import runner
from pianotrap.cli.shutdown import ShutdownCoordinator
from pianotrap.core.services import BaseService
from pianotrap.session import RecordingSession
from pianotrap.session.controller import SessionController
from pianotrap.transcript import EventClassifier, StationChanged, TrackAnnounced


class _Reader:
    def __init__(self, chunks: list[str], hard_error: Optional[OSError] = None):
        self._chunks = chunks
        self.hard_error = hard_error

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk


class _Controller:
    def __init__(self, *, fail: bool = False):
        self.events: list = []
        self.closes: list[str] = []
        self.fail = fail

    async def handle_event(self, event) -> None:
        if self.fail:
            raise RuntimeError("controller exploded")
        self.events.append(event)

    async def close(self, *, reason: str = "") -> None:
        self.closes.append(reason)


class _Services:
    def __init__(self):
        self.stopped = 0

    async def stop_all(self) -> None:
        self.stopped += 1


class _Client:
    def __init__(self, returncode: int):
        self.returncode = returncode

    async def wait(self) -> int:
        await asyncio.sleep(0)
        return self.returncode


@pytest.mark.asyncio
async def test_transcript_events_reach_controller_then_shutdown():
    controller = _Controller()
    coordinator = ShutdownCoordinator(controller, _Services())
    reader = _Reader(['|>  Station "Rock" (9)\n|>  "Song" by "Band" on "LP"', "(i) Login... Ok."])

    await runner.drive_transcript(reader, EventClassifier(), controller, coordinator)
    await asyncio.wait_for(coordinator.done.wait(), timeout=1.0)

    assert controller.events == [
        StationChanged(name="Rock"),
        TrackAnnounced(title="Song", artist="Band", album="LP"),
    ]
    assert controller.closes == ["shutdown"]
    assert coordinator.reason == "client terminal closed"
    assert coordinator.failed is False


@pytest.mark.asyncio
async def test_hard_read_error_is_a_failed_shutdown():
    controller = _Controller()
    coordinator = ShutdownCoordinator(controller, _Services())
    reader = _Reader([], hard_error=OSError(22, "Invalid argument"))

    await runner.drive_transcript(reader, EventClassifier(), controller, coordinator)
    await asyncio.wait_for(coordinator.done.wait(), timeout=1.0)

    assert coordinator.failed is True
    assert coordinator.reason.startswith("terminal read error")


@pytest.mark.asyncio
async def test_controller_error_triggers_failed_shutdown():
    controller = _Controller(fail=True)
    coordinator = ShutdownCoordinator(controller, _Services())
    reader = _Reader(['|>  Station "Rock" (9)'])

    await runner.drive_transcript(reader, EventClassifier(), controller, coordinator)
    await asyncio.wait_for(coordinator.done.wait(), timeout=1.0)

    assert coordinator.failed is True
    assert coordinator.reason == "transcript processing failed"


@pytest.mark.asyncio
async def test_client_exit_requests_shutdown():
    services = _Services()
    coordinator = ShutdownCoordinator(_Controller(), services)

    await runner.watch_client(_Client(0), coordinator)
    await asyncio.wait_for(coordinator.done.wait(), timeout=1.0)

    assert coordinator.reason == "client exited with status 0"
    assert services.stopped == 1


class _SignalDuringStartSupervisor:
    extension = "mp3"

    def __init__(self):
        self.coordinator: Optional[ShutdownCoordinator] = None
        self.started: list[str] = []
        self.stopped: list[tuple[str, bool]] = []

    async def start_session(self, path: Path, track, on_outcome):
        self.started.append(track.title)
        self.coordinator.request("signal SIGTERM")
        await asyncio.sleep(0.01)
        return RecordingSession(
            path=path,
            track=track,
            process=SimpleNamespace(pid=99, returncode=None),
            started_at=0.0,
        )

    async def stop_session(self, session: RecordingSession, *, delete: bool) -> None:
        self.stopped.append((session.track.title, delete))


@pytest.mark.asyncio
async def test_no_recording_outlives_a_shutdown_requested_mid_chunk(tmp_path: Path):
    supervisor = _SignalDuringStartSupervisor()
    controller = SessionController(supervisor, tmp_path)
    coordinator = ShutdownCoordinator(controller, _Services())
    supervisor.coordinator = coordinator
    reader = _Reader(['|>  "One" by "Band"\n|>  "Two" by "Band"'])

    await runner.drive_transcript(reader, EventClassifier(), controller, coordinator)
    await asyncio.wait_for(coordinator.done.wait(), timeout=1.0)

    assert supervisor.started == ["One"]
    assert supervisor.stopped == [("One", True)]
    assert controller.active_session is None
    assert controller.closed is True


@pytest.mark.asyncio
async def test_run_fails_when_save_dir_cannot_be_created(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory", encoding="utf-8")

    assert await runner.run_pianotrap(blocker / "music", event_hook=False) is False


class _SilentRouting(BaseService):
    source = "fake.monitor"
    client_env: dict = {}

    def __init__(self, **kwargs):
        super().__init__("audio routing")
        self.volume_raised = 0

    async def _start(self) -> None:
        return None

    async def _stop(self) -> None:
        return None

    async def raise_volume(self) -> None:
        self.volume_raised += 1


class _EncoderProcess:
    pid = 777

    def __init__(self):
        self.returncode = None
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.returncode = -15
        self.stderr.feed_eof()
        self._exited.set()

    kill = terminate

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


async def _fake_encoder(*argv, **kwargs):
    Path(argv[-1]).write_bytes(b"\0" * (64 * 1024))
    return _EncoderProcess()


CLIENT_SCRIPT = """\
echo '|>  Station "Rock" (1)'
echo '|>  "Song" by "Band" on "LP"'
sleep 0.3
echo 'SONGFINISH'
sleep 0.3
"""


@pytest.mark.asyncio
async def test_session_records_track_from_client_transcript(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    script = tmp_path / "client.sh"
    script.write_text(CLIENT_SCRIPT, encoding="utf-8")
    monkeypatch.setattr(runner, "PulseAudioRouting", _SilentRouting)
    monkeypatch.setattr(
        runner, "CaptureSupervisor", partial(CaptureSupervisor, process_factory=_fake_encoder)
    )
    save_dir = tmp_path / "music"

    succeeded = await asyncio.wait_for(
        runner.run_pianotrap(
            save_dir,
            client_command=f"/bin/sh {shlex.quote(str(script))}",
            event_hook=False,
        ),
        timeout=10.0,
    )

    assert succeeded is True
    recorded = save_dir / "Rock" / "Song - Band.mp3"
    assert recorded.exists()
    assert recorded.stat().st_size == 64 * 1024
