"""procwatch environment configuration.

Environment variables:
    PROCWATCH_LOG_DEBUG: debug logging
        - true/1/yes = on (log to a temp file at DEBUG level)
        - false/0/no = off (default, log to stderr at INFO level)

    PROCWATCH_POLL_INTERVAL_US: default sleep between checks in wait()
        - microseconds, default 10000
        - clamped to 100..1000000

    PROCWATCH_SELECT_TIMEOUT: upper bound for one readiness wait while iterating
        - seconds, default 0.1
        - clamped to 0.001..5.0

    PROCWATCH_KILL_AFTER: default --kill-after grace period of the timeout wrapper
        - seconds, default 10.0
        - "none" disables the flag

    PROCWATCH_TIMEOUT_COMMAND: executable used to enforce timeouts
        - default "timeout" (GNU coreutils)

    PROCWATCH_SPOOL_MAX_SIZE: bytes kept in memory per output buffer before spilling to disk
        - default 2097152

    PROCWATCH_READ_CHUNK_SIZE: bytes requested per pipe read
        - default 65536
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_POLL_INTERVAL_US = 10_000
DEFAULT_SELECT_TIMEOUT = 0.1
DEFAULT_KILL_AFTER = 10.0
DEFAULT_TIMEOUT_COMMAND = "timeout"
DEFAULT_SPOOL_MAX_SIZE = 2 * 1024 * 1024
DEFAULT_READ_CHUNK_SIZE = 65536


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    """Parse an integer environment variable and clamp it into [low, high]."""
    if not value:
        return default
    try:
        return max(low, min(int(value), high))
    except ValueError:
        return default


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float environment variable and clamp it into [low, high]."""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_kill_after(value: str | None) -> float | None:
    """Parse the kill-after grace period.

    Returns:
        Seconds, or None when the flag is disabled. Invalid or
        non-positive values fall back to the default.
    """
    if value is None or not value.strip():
        return DEFAULT_KILL_AFTER
    value = value.strip().lower()
    if value in ("none", "off", "false"):
        return None
    try:
        seconds = float(value)
    except ValueError:
        return DEFAULT_KILL_AFTER
    return seconds if seconds > 0.0 else DEFAULT_KILL_AFTER


@dataclass
class Config:
    """procwatch configuration.

    Attributes:
        log_debug: debug logging (to a temp file)
        log_file: log file path (set when log_debug is on)
        poll_interval_us: default wait() poll interval in microseconds
        select_timeout: upper bound for one readiness wait in seconds
        kill_after_seconds: default --kill-after for timeouts (None = omit)
        timeout_command: wrapper executable used for timeouts
        spool_max_size: in-memory size of an output buffer before spilling
        read_chunk_size: bytes requested per pipe read
    """

    log_debug: bool = False
    log_file: str | None = None
    poll_interval_us: int = DEFAULT_POLL_INTERVAL_US
    select_timeout: float = DEFAULT_SELECT_TIMEOUT
    kill_after_seconds: float | None = DEFAULT_KILL_AFTER
    timeout_command: str = DEFAULT_TIMEOUT_COMMAND
    spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE

    def __repr__(self) -> str:
        return (
            f"Config(log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"poll_interval_us={self.poll_interval_us}, "
            f"select_timeout={self.select_timeout}, "
            f"kill_after_seconds={self.kill_after_seconds}, "
            f"timeout_command={self.timeout_command}, "
            f"spool_max_size={self.spool_max_size}, "
            f"read_chunk_size={self.read_chunk_size})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "procwatch"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procwatch_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROCWATCH_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    timeout_command = os.environ.get("PROCWATCH_TIMEOUT_COMMAND", "").strip()

    return Config(
        log_debug=log_debug,
        log_file=log_file,
        poll_interval_us=_parse_int(
            os.environ.get("PROCWATCH_POLL_INTERVAL_US"),
            DEFAULT_POLL_INTERVAL_US,
            100,
            1_000_000,
        ),
        select_timeout=_parse_float(
            os.environ.get("PROCWATCH_SELECT_TIMEOUT"),
            DEFAULT_SELECT_TIMEOUT,
            0.001,
            5.0,
        ),
        kill_after_seconds=_parse_kill_after(os.environ.get("PROCWATCH_KILL_AFTER")),
        timeout_command=timeout_command or DEFAULT_TIMEOUT_COMMAND,
        spool_max_size=_parse_int(
            os.environ.get("PROCWATCH_SPOOL_MAX_SIZE"),
            DEFAULT_SPOOL_MAX_SIZE,
            0,
            1 << 30,
        ),
        read_chunk_size=_parse_int(
            os.environ.get("PROCWATCH_READ_CHUNK_SIZE"),
            DEFAULT_READ_CHUNK_SIZE,
            512,
            1 << 24,
        ),
    )


# Global configuration instance (loaded lazily)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
