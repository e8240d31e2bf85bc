"""Wire the client, transcript pipeline, recorder and shutdown together."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import Optional

from pianotrap.audio import PulseAudioRouting
from pianotrap.capture import CaptureSupervisor
from pianotrap.cli.logging_utils import (
    CLIENT_LOG_LABEL,
    ERROR_LOG_LABEL,
    LOGGER,
    SYSTEM_LOG_LABEL,
)
from pianotrap.cli.shutdown import ShutdownCoordinator
from pianotrap.client import (
    InputForwarder,
    StreamingClient,
    TerminalMode,
    describe_exit,
    install_event_hook,
)
from pianotrap.config import AUDIO_DEDICATED_SINK, CLIENT_COMMAND, EVENT_HOOK_ENABLED
from pianotrap.core.exceptions import PianotrapError
from pianotrap.core.services import ServiceSupervisor
from pianotrap.session.controller import SessionController
from pianotrap.transcript import EventClassifier, PlaybackInterrupted, TranscriptReader

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def _echo_to_stdout(data: bytes) -> None:
    try:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    except (OSError, ValueError) as exc:
        LOGGER.verbose(CLIENT_LOG_LABEL, f"Unable to echo client output: {exc}")


async def drive_transcript(
    reader: TranscriptReader,
    classifier: EventClassifier,
    controller: SessionController,
    coordinator: ShutdownCoordinator,
) -> None:
    """Feed classified transcript events to the controller until the terminal closes."""

    try:
        async for chunk in reader:
            for event in classifier.classify(chunk):
                if coordinator.stopping.is_set():
                    return
                await controller.handle_event(event)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        LOGGER.log(
            ERROR_LOG_LABEL, f"Transcript processing failed: {exc}", error=True, exc_info=exc
        )
        coordinator.request("transcript processing failed", failed=True)
        return

    if reader.hard_error is not None:
        coordinator.request(f"terminal read error: {reader.hard_error}", failed=True)
    else:
        coordinator.request("client terminal closed")


async def watch_client(client: StreamingClient, coordinator: ShutdownCoordinator) -> None:
    returncode = await client.wait()
    coordinator.request(f"client exited with {describe_exit(returncode)}")


async def run_pianotrap(
    save_dir: Path,
    *,
    client_command: str = CLIENT_COMMAND,
    dedicated_sink: bool = AUDIO_DEDICATED_SINK,
    event_hook: bool = EVENT_HOOK_ENABLED,
) -> bool:
    """Run one recording session; return False when it ended in failure."""

    try:
        save_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.log(ERROR_LOG_LABEL, f"Cannot create save directory {save_dir}: {exc}", error=True)
        return False
    LOGGER.log(SYSTEM_LOG_LABEL, f"Saving recordings under {save_dir}")

    if event_hook:
        try:
            install_event_hook()
        except OSError as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Could not install the event hook: {exc}", error=True)

    coordinator: Optional[ShutdownCoordinator] = None
    controller: Optional[SessionController] = None
    early_quit: list[str] = []
    pause_tasks: set[asyncio.Task[None]] = set()

    def _request_quit(reason: str) -> None:
        if coordinator is None:
            early_quit.append(reason)
        else:
            coordinator.request(reason)

    def _report_pause(key: str) -> None:
        if controller is None:
            return
        LOGGER.verbose(CLIENT_LOG_LABEL, f"Pause key {key!r} pressed")
        task = asyncio.get_running_loop().create_task(
            controller.handle_event(PlaybackInterrupted(reason="pause")), name="pause-report"
        )
        pause_tasks.add(task)
        task.add_done_callback(_pause_reported)

    def _pause_reported(task: asyncio.Task[None]) -> None:
        pause_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.log(
                ERROR_LOG_LABEL, f"Pause handling failed: {task.exception()}", error=True
            )

    routing = PulseAudioRouting(dedicated_sink=dedicated_sink)
    client = StreamingClient(client_command, env_provider=lambda: routing.client_env)
    terminal = TerminalMode()
    forwarder = InputForwarder(client.write, _request_quit, on_pause=_report_pause)
    services = ServiceSupervisor([routing, terminal, client, forwarder])

    try:
        await services.start_all()
    except PianotrapError as exc:
        LOGGER.log(ERROR_LOG_LABEL, f"Startup failed: {exc}", error=True)
        return False

    supervisor = CaptureSupervisor(routing.source, routing=routing)
    controller = SessionController(supervisor, save_dir)
    coordinator = ShutdownCoordinator(controller, services)
    reader = TranscriptReader(
        client.master_fd, echo=_echo_to_stdout, stop_event=coordinator.stopping
    )

    loop = asyncio.get_running_loop()
    installed_signals: list[signal.Signals] = []
    for sig in SHUTDOWN_SIGNALS:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, coordinator.request, f"signal {sig.name}")
            installed_signals.append(sig)

    tasks = [
        asyncio.create_task(
            drive_transcript(reader, EventClassifier(), controller, coordinator),
            name="transcript-driver",
        ),
        asyncio.create_task(watch_client(client, coordinator), name="client-watcher"),
    ]
    if early_quit:
        coordinator.request(early_quit[0])

    try:
        await coordinator.done.wait()
    except asyncio.CancelledError:
        await coordinator.shutdown("cancelled")
        raise
    except Exception as exc:
        LOGGER.log(ERROR_LOG_LABEL, f"Session failed: {exc}", error=True)
        await coordinator.shutdown("unexpected error", failed=True)
    finally:
        for sig in installed_signals:
            loop.remove_signal_handler(sig)
        pending = [*tasks, *pause_tasks]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    LOGGER.log(SYSTEM_LOG_LABEL, f"Stopped ({coordinator.reason})")
    return not coordinator.failed


__all__ = ["drive_transcript", "run_pianotrap", "watch_client"]
