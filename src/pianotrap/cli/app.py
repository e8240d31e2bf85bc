"""
Record every track a terminal radio client plays into per-station folders.
Runs the client in a pseudo-terminal, follows its output, and drives ffmpeg.
"""

import argparse
import asyncio
import sys
from functools import partial

from pianotrap.cli.logging_utils import (
    ERROR_LOG_LABEL,
    LOGGER,
    SYSTEM_LOG_LABEL,
    current_verbose_log_path,
    set_verbose_logging,
)
from pianotrap.cli.runner import run_pianotrap
from pianotrap.config import (
    AUDIO_DEDICATED_SINK,
    CLIENT_COMMAND,
    EVENT_HOOK_ENABLED,
    load_save_dir,
)
from pianotrap.diagnostics import check_audio_source


def parse_args(argv=None):
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Record tracks from a terminal streaming-radio client."
    )
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["run", "check-audio"],
        default="run",
        help="Select an execution mode (default: run)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed diagnostic logs (state changes, encoder pids, etc.).",
    )
    parser.add_argument(
        "--save-dir",
        help=(
            "Directory recordings are written under. Defaults to PIANOTRAP_SAVE_DIR, "
            "then the first line of ~/.config/pianotrap/config, then ~/Music."
        ),
    )
    parser.add_argument(
        "--client",
        default=CLIENT_COMMAND,
        help=f"Streaming client command to run (default: {CLIENT_COMMAND!r}).",
    )
    parser.add_argument(
        "--no-dedicated-sink",
        dest="dedicated_sink",
        action="store_false",
        default=AUDIO_DEDICATED_SINK,
        help="Capture the default sink's monitor instead of a dedicated null sink.",
    )
    parser.add_argument(
        "--no-event-hook",
        dest="event_hook",
        action="store_false",
        default=EVENT_HOOK_ENABLED,
        help="Do not install the client's song-finished event command.",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""

    args = parse_args(argv)
    set_verbose_logging(args.verbose)
    log_path = current_verbose_log_path()
    if log_path is not None:
        LOGGER.verbose(SYSTEM_LOG_LABEL, f"Verbose log: {log_path}")

    if args.mode == "check-audio":
        run_func = partial(check_audio_source, dedicated_sink=args.dedicated_sink)
    else:
        try:
            save_dir = load_save_dir(args.save_dir)
        except OSError as e:
            LOGGER.log(ERROR_LOG_LABEL, f"Could not resolve the save directory: {e}", error=True)
            sys.exit(1)
        run_func = partial(
            run_pianotrap,
            save_dir,
            client_command=args.client,
            dedicated_sink=args.dedicated_sink,
            event_hook=args.event_hook,
        )

    try:
        succeeded = asyncio.run(run_func())
    except KeyboardInterrupt:
        LOGGER.log(SYSTEM_LOG_LABEL, "Shutdown requested")
        return
    except Exception as e:
        LOGGER.log(ERROR_LOG_LABEL, f"CLI error: {e}", error=True)
        sys.exit(1)

    if not succeeded:
        sys.exit(1)


if __name__ == "__main__":
    main()
