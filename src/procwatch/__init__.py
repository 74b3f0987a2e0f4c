"""procwatch - spawn and supervise external processes.

Environment variables:
    PROCWATCH_LOG_DEBUG: debug logging to a temp file (default false)
    PROCWATCH_POLL_INTERVAL_US: wait() poll interval (default 10000)
    PROCWATCH_KILL_AFTER: default timeout grace period (default 10.0)

Usage:
    procwatch --timeout 30 -- make test
"""

__version__ = "0.1.0"

from .runtime import (
    ExitCode,
    ProcessBuilder,
    ProcessFailedError,
    ProcessResult,
    ProcessRunner,
)

__all__ = [
    "__version__",
    "ExitCode",
    "ProcessBuilder",
    "ProcessFailedError",
    "ProcessResult",
    "ProcessRunner",
]
