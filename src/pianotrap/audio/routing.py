"""PulseAudio routing: a capture source carrying only the client's audio."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from pianotrap.cli.logging_utils import AUDIO_LOG_LABEL, ERROR_LOG_LABEL, LOGGER
from pianotrap.config import (
    AUDIO_CHANNELS,
    AUDIO_DEDICATED_SINK,
    AUDIO_LOOPBACK_LATENCY_MSEC,
    AUDIO_SAMPLE_RATE,
    AUDIO_SINK_NAME,
)
from pianotrap.core.exceptions import BootstrapError
from pianotrap.core.services import BaseService

PACTL_TIMEOUT_SECONDS = 10.0
FULL_VOLUME = "100%"


@dataclass(frozen=True, slots=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(*argv: str, timeout: float = PACTL_TIMEOUT_SECONDS) -> CommandResult:
    """Run ``argv`` to completion and capture its output."""

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return CommandResult(returncode=127, stdout="", stderr=str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(returncode=124, stdout="", stderr=f"{argv[0]} timed out")

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


class PulseAudioRouting(BaseService):
    """Provide a monitorable source for the client's playback.

    With ``dedicated_sink`` enabled a null sink is created for the client and
    looped back to the user's default output, so the capture holds only the
    client's audio while the user keeps hearing it. Otherwise the default
    sink's monitor is used directly.
    """

    def __init__(
        self,
        *,
        dedicated_sink: bool = AUDIO_DEDICATED_SINK,
        sink_name: str = AUDIO_SINK_NAME,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        channels: int = AUDIO_CHANNELS,
        latency_msec: int = AUDIO_LOOPBACK_LATENCY_MSEC,
        runner: CommandRunner = run_command,
    ):
        super().__init__("audio routing")
        self._dedicated_sink = dedicated_sink
        self._sink_name = sink_name
        self._sample_rate = sample_rate
        self._channels = channels
        self._latency_msec = latency_msec
        self._run = runner
        self._source: Optional[str] = None
        self._playback_sink: Optional[str] = None
        self._loaded_modules: list[str] = []

    @property
    def source(self) -> str:
        if self._source is None:
            raise BootstrapError("Audio routing has not been acquired")
        return self._source

    @property
    def client_env(self) -> dict[str, str]:
        """Environment that directs the client's playback into the routed sink."""

        if self._playback_sink is None:
            return {}
        return {"PULSE_SINK": self._playback_sink}

    async def acquire(self) -> str:
        await self.start()
        return self.source

    async def release(self) -> None:
        await self.stop()

    async def _start(self) -> None:
        if self._dedicated_sink:
            try:
                self._source = await self._create_dedicated_sink()
            except BootstrapError as exc:
                LOGGER.log(
                    AUDIO_LOG_LABEL,
                    f"Dedicated sink unavailable ({exc}); using the default sink monitor",
                )
                await self._unload_modules()
        if self._source is None:
            self._source = await self._default_monitor_source()
        LOGGER.log(AUDIO_LOG_LABEL, f"Using PulseAudio monitor source: {self._source}")

    async def _stop(self) -> None:
        await self._unload_modules()
        self._source = None
        self._playback_sink = None

    async def raise_volume(self) -> None:
        """Make sure the routed sink is audible and unmuted before capturing."""

        sink = self._playback_sink or "@DEFAULT_SINK@"
        for argv in (
            ("pactl", "set-sink-volume", sink, FULL_VOLUME),
            ("pactl", "set-sink-mute", sink, "0"),
        ):
            result = await self._run(*argv)
            if not result.ok:
                LOGGER.log(
                    ERROR_LOG_LABEL,
                    f"{' '.join(argv[1:3])} failed: {result.stderr.strip()}",
                    error=True,
                )

    # ------------------------------------------------------------------
    # Helpers
    async def _default_sink(self) -> str:
        result = await self._run("pactl", "get-default-sink")
        sink = result.stdout.strip()
        if not result.ok or not sink:
            raise BootstrapError(
                f"Could not determine the default sink: {result.stderr.strip() or 'no output'}"
            )
        return sink

    async def _default_monitor_source(self) -> str:
        sink = await self._default_sink()
        result = await self._run("pactl", "list", "short", "sources")
        if not result.ok:
            raise BootstrapError(f"Error listing sources: {result.stderr.strip()}")
        expected = f"{sink}.monitor"
        for line in result.stdout.splitlines():
            fields = line.split("\t")
            if len(fields) > 1 and fields[1].strip() == expected:
                return expected
        raise BootstrapError(f"No monitor source found for default sink {sink}")

    async def _create_dedicated_sink(self) -> str:
        original_sink = await self._default_sink()
        await self._unload_stale_sink()

        module_id = await self._load_module(
            "module-null-sink",
            f"sink_name={self._sink_name}",
            f"sink_properties=device.description={self._sink_name}",
            f"rate={self._sample_rate}",
            f"channels={self._channels}",
        )
        if module_id is None:
            raise BootstrapError(f"Failed to create {self._sink_name}")
        self._playback_sink = self._sink_name
        LOGGER.verbose(AUDIO_LOG_LABEL, f"Created {self._sink_name} (module {module_id})")

        monitor = f"{self._sink_name}.monitor"
        loopback_id = await self._load_module(
            "module-loopback",
            f"sink={original_sink}",
            f"source={monitor}",
            f"rate={self._sample_rate}",
            f"channels={self._channels}",
            f"latency_msec={self._latency_msec}",
            "adjust_time=0",
        )
        if loopback_id is None:
            LOGGER.log(
                AUDIO_LOG_LABEL,
                f"Failed to create loopback to {original_sink}; playback will be silent",
                error=True,
            )
        else:
            LOGGER.verbose(AUDIO_LOG_LABEL, f"Looped {monitor} back to {original_sink}")
        return monitor

    async def _unload_stale_sink(self) -> None:
        result = await self._run("pactl", "list", "short", "modules")
        if not result.ok:
            return
        for line in result.stdout.splitlines():
            if self._sink_name not in line:
                continue
            module_id = line.split("\t", 1)[0].strip()
            if module_id and (await self._run("pactl", "unload-module", module_id)).ok:
                LOGGER.verbose(AUDIO_LOG_LABEL, f"Unloaded stale {self._sink_name} ({module_id})")

    async def _load_module(self, module: str, *args: str) -> Optional[str]:
        result = await self._run("pactl", "load-module", module, *args)
        module_id = result.stdout.strip()
        if not result.ok or not module_id:
            return None
        self._loaded_modules.append(module_id)
        return module_id

    async def _unload_modules(self) -> None:
        while self._loaded_modules:
            module_id = self._loaded_modules.pop()
            result = await self._run("pactl", "unload-module", module_id)
            if not result.ok:
                LOGGER.verbose(AUDIO_LOG_LABEL, f"Unable to unload module {module_id}")
        self._playback_sink = None


__all__ = ["CommandResult", "CommandRunner", "PulseAudioRouting", "run_command"]
