"""Runtime exceptions.

procwatch runtime module v0.1.0
"""

from __future__ import annotations

import json
import signal
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from .types import ProcessResult

__all__ = [
    "ProcessError",
    "InvalidArgumentError",
    "ProcessSpawnError",
    "SignalRegistrationError",
    "ProcessFailedError",
    "StreamIOError",
]


class ProcessError(Exception):
    """Base exception for the runtime.

    Attributes:
        context: extra values describing the failure
    """

    def __init__(self, message: str, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})


class InvalidArgumentError(ProcessError, ValueError):
    """A builder argument was rejected before anything was spawned."""
    pass


class ProcessSpawnError(ProcessError):
    """The OS refused to create the process."""
    pass


class SignalRegistrationError(ProcessError):
    """A signal or exit callback could not be registered.

    Raised for uncatchable signals, duplicate exit callbacks for one pid,
    and handler installation from a thread other than the main thread.
    """
    pass


_EXIT_CODE_DESCRIPTIONS = {
    1: "General error",
    2: "Misuse of shell builtins",
    124: "Timed out",
    125: "Timeout command failed",
    126: "Permission denied",
    127: "Command not found",
}


class ProcessFailedError(ProcessError):
    """The process exited with a code that is neither 0 nor expected.

    Attributes:
        command: the command as it was defined (before timeout wrapping)
        exit_code: the exit code (128 + N when killed by signal N)
        result: the full result, so buffered output can be inspected
    """

    def __init__(
        self,
        command: str | Sequence[str],
        exit_code: int,
        result: ProcessResult,
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.result = result

        encoded = json.dumps(
            command if isinstance(command, str) else list(command),
            ensure_ascii=False,
            separators=(",", ":"),
        )
        message = f"{encoded} {self._describe(exit_code)}"

        stderr = result.get_stderr().decode(errors="replace").rstrip("\n")
        if stderr:
            message += "\n" + stderr

        super().__init__(message, {"exit_code": exit_code, "result": result})

    @staticmethod
    def _describe(exit_code: int) -> str:
        if 128 < exit_code < 160:
            number = exit_code - 128
            try:
                name = signal.Signals(number).name
            except ValueError:
                name = "Unknown"
            return f"Terminated by {name} ({number})."

        message = f"Exited with code {exit_code}"
        description = _EXIT_CODE_DESCRIPTIONS.get(exit_code)
        if description:
            message += f": {description}"
        return message + "."


class StreamIOError(ProcessError):
    """A pipe or buffer operation failed at the OS level.

    Attributes:
        errno: OS error number (may be None)
        strerror: OS error message
    """

    def __init__(self, operation: str, error: OSError) -> None:
        self.errno = error.errno
        self.strerror = error.strerror or str(error)
        super().__init__(
            f"Stream {operation} failed: [{self.errno}] {self.strerror}",
            {"operation": operation},
        )
