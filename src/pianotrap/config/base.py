"""
Shared configuration helpers and runtime settings for pianotrap.

Defaults live in ``config/defaults.toml`` next to this module and can be
overridden via environment variables, a ``.env`` file, or CLI flags.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import tomllib
from dotenv import find_dotenv, load_dotenv

DEFAULTS_PATH = Path(__file__).resolve().with_name("defaults.toml")
ENV_PATH = find_dotenv(usecwd=True)

if ENV_PATH:
    load_dotenv(ENV_PATH)

if not DEFAULTS_PATH.exists():  # pragma: no cover - packaging issue
    raise FileNotFoundError(
        f"Missing configuration defaults at {DEFAULTS_PATH}. Reinstall pianotrap."
    )

with DEFAULTS_PATH.open("rb") as defaults_file:
    _DEFAULTS = tomllib.load(defaults_file)


def _coerce_path(value: str | Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    return path


def _env_bool(name: str, default: bool = False) -> bool:
    """Return True when the env var is set to a truthy value."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        _warn_invalid_env_value(name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        _warn_invalid_env_value(name, value, default)
        return default


def _env_path(name: str, default: str) -> Path:
    raw = os.getenv(name, default)
    return _coerce_path(raw)


def _env_str(name: str, default: str) -> str:
    """Return the stripped env value, or ``default`` when unset or blank."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _warn_invalid_env_value(name: str, value: str | None, default: object) -> None:
    """Emit a warning when env overrides cannot be parsed."""

    sys.stderr.write(f"Invalid value for {name}={value!r}; falling back to {default!r}.\n")


# Storage
_STORAGE = _DEFAULTS["storage"]
DEFAULT_SAVE_DIR = _coerce_path(_STORAGE["save_dir"])
USER_CONFIG_PATH = _env_path("PIANOTRAP_USER_CONFIG", _STORAGE["user_config_path"])


def _write_default_user_config(config_path: Path, save_dir: Path) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(f"{save_dir}\n", encoding="utf-8")
    sys.stderr.write(
        f"Created default config file at {config_path} with save directory: {save_dir}\n"
    )


def load_save_dir(
    override: str | Path | None = None,
    *,
    config_path: Path | None = None,
) -> Path:
    """
    Resolve the directory recordings are written under.

    Precedence: explicit ``override`` > ``PIANOTRAP_SAVE_DIR`` > the first
    non-empty line of the user config file > ``defaults.toml``. A missing user
    config file is created holding the default directory.
    """

    if override:
        return _coerce_path(override)

    env_value = os.getenv("PIANOTRAP_SAVE_DIR")
    if env_value and env_value.strip():
        return _coerce_path(env_value.strip())

    path = config_path or USER_CONFIG_PATH
    if not path.exists():
        _write_default_user_config(path, DEFAULT_SAVE_DIR)
        return DEFAULT_SAVE_DIR

    for line in path.read_text(encoding="utf-8").splitlines():
        if line.strip():
            return _coerce_path(line.strip())
    return DEFAULT_SAVE_DIR


# Streaming client
_CLIENT = _DEFAULTS["client"]
CLIENT_COMMAND = _env_str("PIANOTRAP_CLIENT_COMMAND", _CLIENT["command"])
CLIENT_QUIT_KEY = _env_str("PIANOTRAP_QUIT_KEY", _CLIENT["quit_key"])[:1]
CLIENT_PAUSE_KEYS = _env_str("PIANOTRAP_PAUSE_KEYS", _CLIENT["pause_keys"])
CLIENT_TERMINATE_GRACE_SECONDS = _env_float(
    "CLIENT_TERMINATE_GRACE_SECONDS", _CLIENT["terminate_grace_seconds"]
)
PIANOBAR_CONFIG_DIR = _env_path("PIANOBAR_CONFIG_DIR", _CLIENT["pianobar_config_dir"])
EVENT_HOOK_ENABLED = _env_bool("EVENT_HOOK_ENABLED", _CLIENT["event_hook_enabled"])
EVENT_LOG_PATH = _env_path("EVENT_LOG_PATH", _CLIENT["event_log_path"])

# Transcript reader
_READER = _DEFAULTS["reader"]
READER_POLL_INTERVAL = _env_float("READER_POLL_INTERVAL", _READER["poll_interval_seconds"])
READER_READ_SIZE = _env_int("READER_READ_SIZE", _READER["read_size"])

# Encoder
_ENCODER = _DEFAULTS["encoder"]
ENCODER_BINARY = _env_str("ENCODER_BINARY", _ENCODER["binary"])
ENCODER_INPUT_FORMAT = _env_str("ENCODER_INPUT_FORMAT", _ENCODER["input_format"])
ENCODER_CODEC = _env_str("ENCODER_CODEC", _ENCODER["codec"])
ENCODER_AUDIO_FILTER = os.getenv("ENCODER_AUDIO_FILTER", _ENCODER["audio_filter"]).strip()
OUTPUT_EXTENSION = _env_str("OUTPUT_EXTENSION", _ENCODER["extension"]).lstrip(".")

# Capture supervision
_CAPTURE = _DEFAULTS["capture"]
TERMINATE_GRACE_SECONDS = _env_float(
    "TERMINATE_GRACE_SECONDS", _CAPTURE["terminate_grace_seconds"]
)
EXIT_WAIT_TIMEOUT_SECONDS = _env_float(
    "EXIT_WAIT_TIMEOUT_SECONDS", _CAPTURE["exit_wait_timeout_seconds"]
)
HARD_TIMEOUT_SECONDS = _env_float("HARD_TIMEOUT_SECONDS", _CAPTURE["hard_timeout_seconds"])
MIN_FILE_BYTES = _env_int("MIN_FILE_BYTES", _CAPTURE["min_file_bytes"])

# Stall watchdog
_STALL = _DEFAULTS["stall"]
STALL_GRACE_SECONDS = _env_float("STALL_GRACE_SECONDS", _STALL["grace_seconds"])
STALL_SAMPLE_INTERVAL_SECONDS = _env_float(
    "STALL_SAMPLE_INTERVAL_SECONDS", _STALL["sample_interval_seconds"]
)
STALL_MIN_BYTES = _env_int("STALL_MIN_BYTES", _STALL["min_bytes"])

# Session heuristics
_SESSION = _DEFAULTS["session"]
COMPLETION_THRESHOLD_SECONDS = _env_float(
    "COMPLETION_THRESHOLD_SECONDS", _SESSION["completion_threshold_seconds"]
)
FALLBACK_STATION_NAME = _env_str("FALLBACK_STATION_NAME", _SESSION["fallback_station_name"])

# Audio routing
_AUDIO = _DEFAULTS["audio"]
AUDIO_DEDICATED_SINK = _env_bool("AUDIO_DEDICATED_SINK", _AUDIO["dedicated_sink"])
AUDIO_SINK_NAME = _env_str("AUDIO_SINK_NAME", _AUDIO["sink_name"])
AUDIO_SAMPLE_RATE = _env_int("AUDIO_SAMPLE_RATE", _AUDIO["sample_rate"])
AUDIO_CHANNELS = _env_int("AUDIO_CHANNELS", _AUDIO["channels"])
AUDIO_LOOPBACK_LATENCY_MSEC = _env_int(
    "AUDIO_LOOPBACK_LATENCY_MSEC", _AUDIO["loopback_latency_msec"]
)

# Logging
_LOGGING = _DEFAULTS.get("logging", {})
VERBOSE_LOG_CAPTURE_ENABLED = _env_bool(
    "VERBOSE_LOG_CAPTURE_ENABLED", _LOGGING.get("verbose_capture_enabled", False)
)
if VERBOSE_LOG_CAPTURE_ENABLED:
    _DEFAULT_VERBOSE_DIR = _LOGGING.get("verbose_log_directory")
    default_verbose_dir = (
        _DEFAULT_VERBOSE_DIR.strip()
        if isinstance(_DEFAULT_VERBOSE_DIR, str) and _DEFAULT_VERBOSE_DIR.strip()
        else "logs"
    )

    VERBOSE_LOG_DIRECTORY = _env_path("VERBOSE_LOG_DIRECTORY", default_verbose_dir)
else:
    VERBOSE_LOG_DIRECTORY = None

__all__ = [
    "DEFAULTS_PATH",
    "ENV_PATH",
    "_DEFAULTS",
    "_coerce_path",
    "_env_bool",
    "_env_int",
    "_env_float",
    "_env_path",
    "_env_str",
    "DEFAULT_SAVE_DIR",
    "USER_CONFIG_PATH",
    "load_save_dir",
    "CLIENT_COMMAND",
    "CLIENT_PAUSE_KEYS",
    "CLIENT_QUIT_KEY",
    "CLIENT_TERMINATE_GRACE_SECONDS",
    "PIANOBAR_CONFIG_DIR",
    "EVENT_HOOK_ENABLED",
    "EVENT_LOG_PATH",
    "READER_POLL_INTERVAL",
    "READER_READ_SIZE",
    "ENCODER_BINARY",
    "ENCODER_INPUT_FORMAT",
    "ENCODER_CODEC",
    "ENCODER_AUDIO_FILTER",
    "OUTPUT_EXTENSION",
    "TERMINATE_GRACE_SECONDS",
    "EXIT_WAIT_TIMEOUT_SECONDS",
    "HARD_TIMEOUT_SECONDS",
    "MIN_FILE_BYTES",
    "STALL_GRACE_SECONDS",
    "STALL_SAMPLE_INTERVAL_SECONDS",
    "STALL_MIN_BYTES",
    "COMPLETION_THRESHOLD_SECONDS",
    "FALLBACK_STATION_NAME",
    "AUDIO_DEDICATED_SINK",
    "AUDIO_SINK_NAME",
    "AUDIO_SAMPLE_RATE",
    "AUDIO_CHANNELS",
    "AUDIO_LOOPBACK_LATENCY_MSEC",
    "VERBOSE_LOG_CAPTURE_ENABLED",
    "VERBOSE_LOG_DIRECTORY",
]
