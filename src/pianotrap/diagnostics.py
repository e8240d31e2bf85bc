"""
Helper routines for validating the audio setup outside a recording session.
"""

from pianotrap.audio import PulseAudioRouting
from pianotrap.capture import EncoderCommand
from pianotrap.cli.logging_utils import AUDIO_LOG_LABEL, ERROR_LOG_LABEL, LOGGER
from pianotrap.config import AUDIO_DEDICATED_SINK
from pianotrap.core.exceptions import BootstrapError


async def check_audio_source(*, dedicated_sink: bool = AUDIO_DEDICATED_SINK, routing=None) -> bool:
    """Resolve the capture source, show the encoder command, then release it."""
    print("\n=== Audio Source Check ===\n")

    routing = routing or PulseAudioRouting(dedicated_sink=dedicated_sink)
    try:
        source = await routing.acquire()
    except BootstrapError as exc:
        LOGGER.log(ERROR_LOG_LABEL, f"No capture source available: {exc}", error=True)
        return False

    try:
        LOGGER.log(AUDIO_LOG_LABEL, f"Capture source: {source}")
        for key, value in routing.client_env.items():
            LOGGER.log(AUDIO_LOG_LABEL, f"Client environment: {key}={value}")
        argv = EncoderCommand().build(source, "<output>")
        print(f"\nEncoder command: {' '.join(argv)}")
    finally:
        await routing.release()

    print("\n=== Check Complete ===")
    return True
