"""Process value types.

ProcessInfo and TimeoutInfo are created by the builder when a process is
spawned; ProcessResult is created once by the runner when the process is
reaped. All three are immutable.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from .streams import ByteBuffer

__all__ = [
    "Command",
    "ExitCode",
    "TimeoutInfo",
    "ProcessInfo",
    "ProcessResult",
]

# A shell string, or an argument vector
Command = Union[str, tuple[str, ...]]


class ExitCode(IntEnum):
    """Exit codes with a conventional meaning.

    128 + N means the process was terminated by signal N.
    """

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_USAGE = 2
    TIMED_OUT = 124
    TIMEOUT_COMMAND_FAILED = 125
    COMMAND_NOT_EXECUTABLE = 126
    COMMAND_NOT_FOUND = 127
    INVALID_ARGUMENT = 128
    SIGHUP = 129
    SIGINT = 130
    SIGKILL = 137
    SIGSEGV = 139
    SIGTERM = 143
    STATUS_OUT_OF_RANGE = 255


@dataclass(frozen=True)
class TimeoutInfo:
    """Timeout enforced by the external ``timeout`` wrapper.

    Attributes:
        duration_seconds: time limit for the command
        signal: signal sent when the limit is hit
        kill_after_seconds: grace period before SIGKILL (None = never)
    """

    duration_seconds: float
    signal: int = signal.SIGTERM
    kill_after_seconds: float | None = 10.0


@dataclass(frozen=True)
class ProcessInfo:
    """Description of a spawned process.

    Attributes:
        defined_command: command as given to the builder
        executed_command: command actually executed (timeout wrapper included)
        working_directory: directory the process was started in
        envs: environment overrides (None = inherited unchanged)
        timeout: timeout settings, if any
        term_signal: signal used by terminate()
        expected_exit_codes: non-zero exit codes not treated as failure
        pid: OS process id
    """

    defined_command: Command
    executed_command: Command
    working_directory: str
    envs: dict[str, str] | None
    timeout: TimeoutInfo | None
    term_signal: int
    expected_exit_codes: tuple[int, ...]
    pid: int


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished process."""

    info: ProcessInfo
    exit_code: int
    stdin: ByteBuffer | None
    stdout: ByteBuffer
    stderr: ByteBuffer

    def succeeded(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def failed(self) -> bool:
        return not self.succeeded()

    def timed_out(self) -> bool:
        return self.exit_code == ExitCode.TIMED_OUT

    def read_stdout_buffer(self) -> bytes:
        """Return stdout not consumed yet and advance past it."""
        return self.stdout.read_to_end()

    def read_stderr_buffer(self) -> bytes:
        """Return stderr not consumed yet and advance past it."""
        return self.stderr.read_to_end()

    def get_stdin(self) -> bytes:
        """Everything written to stdin (empty when nothing was written)."""
        if self.stdin is None:
            return b""
        return self.stdin.read_from_start_to_end()

    def get_stdout(self) -> bytes:
        return self.stdout.read_from_start_to_end()

    def get_stderr(self) -> bytes:
        return self.stderr.read_from_start_to_end()
