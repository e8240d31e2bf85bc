"""Install pianobar's event command so finished songs show up in the transcript."""

from __future__ import annotations

from pathlib import Path

from pianotrap.cli.logging_utils import CLIENT_LOG_LABEL, LOGGER
from pianotrap.config import EVENT_LOG_PATH, PIANOBAR_CONFIG_DIR

EVENT_SCRIPT_NAME = "eventcmd.sh"
EVENT_COMMAND_KEY = "event_command"
SCRIPT_MODE = 0o755
CONFIG_MODE = 0o644

_SCRIPT_TEMPLATE = """#!/bin/bash
# The client passes song details on stdin as key=value lines.
while IFS='=' read -r key value; do
    case "$key" in
        ''|*[!A-Za-z0-9_]*) ;;
        *) printf -v "pianobar_$key" '%s' "$value" ;;
    esac
done
echo "EVENT: $1" >> {log_path}
echo "SONGNAME: $pianobar_title" >> {log_path}
echo "ARTIST: $pianobar_artist" >> {log_path}
echo "STATION: $pianobar_stationName" >> {log_path}
if [ "$1" = "songstart" ]; then
    echo "SONGSTART: $pianobar_title by $pianobar_artist on $pianobar_stationName"
fi
if [ "$1" = "songfinish" ]; then
    echo "SONGFINISH ${{pianobar_songPlayed:-0}}/${{pianobar_songDuration:-0}}"
fi
"""


def render_event_script(log_path: Path = EVENT_LOG_PATH) -> str:
    return _SCRIPT_TEMPLATE.format(log_path=log_path)


def install_event_hook(
    config_dir: Path = PIANOBAR_CONFIG_DIR, *, log_path: Path = EVENT_LOG_PATH
) -> Path:
    """Create the hook script and register it in the client's config file.

    An existing script is left untouched, as is a config file that already
    names an event command. Returns the script path.
    """

    config_dir.mkdir(parents=True, exist_ok=True)
    script_path = config_dir / EVENT_SCRIPT_NAME
    if not script_path.exists():
        script_path.write_text(render_event_script(log_path), encoding="utf-8")
        script_path.chmod(SCRIPT_MODE)
        LOGGER.log(CLIENT_LOG_LABEL, f"Created event command script at {script_path}")

    config_path = config_dir / "config"
    entry = f"{EVENT_COMMAND_KEY} = {script_path}\n"
    if not config_path.exists():
        config_path.write_text(entry, encoding="utf-8")
        config_path.chmod(CONFIG_MODE)
        LOGGER.log(CLIENT_LOG_LABEL, f"Created client config at {config_path}")
        return script_path

    existing = config_path.read_text(encoding="utf-8", errors="replace")
    if EVENT_COMMAND_KEY not in existing:
        with config_path.open("a", encoding="utf-8") as handle:
            if existing and not existing.endswith("\n"):
                handle.write("\n")
            handle.write(entry)
        LOGGER.log(CLIENT_LOG_LABEL, f"Appended {EVENT_COMMAND_KEY} to {config_path}")
    return script_path


__all__ = ["EVENT_SCRIPT_NAME", "install_event_hook", "render_event_script"]
