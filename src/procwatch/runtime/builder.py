"""Process builder.

Collects the command and its options, then spawns the process and hands
back a ProcessRunner.

Example:
    result = (
        ProcessBuilder(["bash", "build.sh"])
        .in_directory("/workspace")
        .timeout(30.0)
        .expected_exit_codes(ExitCode.GENERAL_ERROR)
        .start()
        .wait()
    )
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import Callable, Mapping, Sequence

from ..config import get_config
from .errors import InvalidArgumentError, ProcessSpawnError
from .events import EventHandler, ProcessFinished, ProcessStarted
from .observer import ExitObserver, get_observer
from .process_runner import ProcessRunner
from .types import Command, ProcessInfo, TimeoutInfo

__all__ = ["ProcessBuilder"]

logger = logging.getLogger(__name__)

# Marker for "use the configured default"
_DEFAULT = object()


def _format_seconds(value: float) -> str:
    """Format seconds for the timeout wrapper: millisecond precision, no trailing zeros."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return f"{text}s"


class ProcessBuilder:
    """Fluent builder for a supervised process.

    Args:
        command: argument vector, or a string run through ``/bin/sh -c``
        directory: working directory (None = current directory)
        envs: environment overrides merged over the parent environment
        timeout: timeout settings
        term_signal: signal sent by ProcessRunner.terminate() (default SIGTERM)
        expected_exit_codes: non-zero exit codes that are not failures
        observer: exit observer (default: the process-wide one)
    """

    def __init__(
        self,
        command: str | Sequence[str],
        *,
        directory: str | os.PathLike[str] | None = None,
        envs: Mapping[str, str] | None = None,
        timeout: TimeoutInfo | None = None,
        term_signal: int | None = None,
        expected_exit_codes: Sequence[int] | None = None,
        observer: ExitObserver | None = None,
    ) -> None:
        self._command: Command = command if isinstance(command, str) else tuple(command)
        self._directory = os.fspath(directory) if directory is not None else None
        self._envs = dict(envs) if envs is not None else None
        self._timeout = timeout
        self._term_signal = term_signal
        self._expected_exit_codes = tuple(expected_exit_codes or ())
        self._observer = observer
        self._on_started: EventHandler[ProcessStarted] | None = None
        self._on_finished: EventHandler[ProcessFinished] | None = None

    def in_directory(self, path: str | os.PathLike[str] | None) -> ProcessBuilder:
        self._directory = os.fspath(path) if path is not None else None
        return self

    def envs(self, envs: Mapping[str, str] | None) -> ProcessBuilder:
        self._envs = dict(envs) if envs is not None else None
        return self

    def timeout(
        self,
        duration_seconds: float | None,
        signal: int = signal.SIGTERM,
        kill_after_seconds: float | None | object = _DEFAULT,
    ) -> ProcessBuilder:
        """Limit the run time through the external ``timeout`` command.

        Args:
            duration_seconds: time limit; None removes a previously set timeout
            signal: signal sent when the limit is hit
            kill_after_seconds: grace period before SIGKILL; None disables it.
                Defaults to the configured kill-after (10s).

        Raises:
            InvalidArgumentError: duration or kill-after is not > 0
        """
        if kill_after_seconds is _DEFAULT:
            kill_after_seconds = get_config().kill_after_seconds

        if duration_seconds is not None and duration_seconds <= 0.0:
            raise InvalidArgumentError(
                f"Expected duration_seconds to be > 0.0. Got {duration_seconds}.",
                {"command": self._command, "duration_seconds": duration_seconds},
            )

        if kill_after_seconds is not None and kill_after_seconds <= 0.0:
            raise InvalidArgumentError(
                f"Expected kill_after_seconds to be > 0.0. Got {kill_after_seconds}.",
                {"command": self._command, "kill_after_seconds": kill_after_seconds},
            )

        self._timeout = (
            TimeoutInfo(float(duration_seconds), signal, kill_after_seconds)
            if duration_seconds is not None
            else None
        )
        return self

    def term_signal(self, signal: int) -> ProcessBuilder:
        self._term_signal = signal
        return self

    def expected_exit_codes(self, *codes: int) -> ProcessBuilder:
        self._expected_exit_codes = tuple(int(code) for code in codes)
        return self

    def on_started(self, callback: Callable[[ProcessStarted], object]) -> ProcessBuilder:
        if self._on_started is None:
            self._on_started = EventHandler()
        self._on_started.do(callback)
        return self

    def on_finished(self, callback: Callable[[ProcessFinished], object]) -> ProcessBuilder:
        if self._on_finished is None:
            self._on_finished = EventHandler()
        self._on_finished.do(callback)
        return self

    def build_command(self) -> Command:
        """Return the command to execute, prefixed by the timeout wrapper if needed."""
        prefix = self._build_timeout_command()
        command = self._command
        if not prefix:
            return command
        if isinstance(command, str):
            return " ".join(prefix) + " " + command
        return tuple(prefix) + command

    def _build_timeout_command(self) -> list[str]:
        """Arguments for timeout(1), omitting flags that match its defaults.

        See https://man7.org/linux/man-pages/man1/timeout.1.html
        """
        timeout = self._timeout
        if timeout is None:
            return []

        command = [get_config().timeout_command]

        if timeout.signal != signal.SIGTERM:
            command += ["--signal", str(int(timeout.signal))]

        if timeout.kill_after_seconds is not None:
            command += ["--kill-after", _format_seconds(timeout.kill_after_seconds)]

        command.append(_format_seconds(timeout.duration_seconds))
        return command

    def start(self) -> ProcessRunner:
        """Spawn the process.

        Raises:
            ProcessSpawnError: the OS refused to start the process
        """
        executed = self.build_command()
        observer = self._observer if self._observer is not None else get_observer()

        env = None
        if self._envs is not None:
            env = {**os.environ, **self._envs}

        # Observation MUST start before the process exists, see ExitObserver.
        observer.start_tracking()

        try:
            process = subprocess.Popen(
                executed,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._directory,
                env=env,
                shell=isinstance(executed, str),
                bufsize=0,
            )
        except OSError as e:
            observer.stop_tracking()
            raise ProcessSpawnError(
                f"Failed to start process: {e}",
                {"info": self._build_info(executed, -1)},
            ) from e

        info = self._build_info(executed, process.pid)

        logger.debug(
            f"Started process pid={info.pid} "
            f"command={info.executed_command!r} cwd={info.working_directory}"
        )

        if self._on_started is not None:
            self._on_started.emit(ProcessStarted(info))

        return ProcessRunner(process, observer, info, self._on_finished)

    def _build_info(self, executed: Command, pid: int) -> ProcessInfo:
        return ProcessInfo(
            defined_command=self._command,
            executed_command=executed,
            working_directory=self._directory if self._directory is not None else os.getcwd(),
            envs=dict(self._envs) if self._envs is not None else None,
            timeout=self._timeout,
            term_signal=self._term_signal if self._term_signal is not None else signal.SIGTERM,
            expected_exit_codes=self._expected_exit_codes,
            pid=pid,
        )
