"""Process runner with non-blocking pipes and signal-driven completion.

procwatch runtime module v0.1.0

This module provides:
- Blocking wait for the result (sleep-polling, sync or async)
- Live iteration over stdout/stderr chunks (readiness multiplexing)
- Signal delivery and graceful termination (term signal -> timeout -> SIGKILL)
- Stdin writing with a replayable recording

Key design points:
- Completion is driven by the ExitObserver, not by polling the process
- Pipes are drained before they are closed, so output written right before
  exit is never lost
- Pipe data is always appended at the end of its buffer; the buffer
  position marks what the caller has consumed, so drained bytes stay
  readable until the caller asks for them
- Pipe and buffer access holds signal delivery, since the completion
  handler runs from the SIGCHLD handler on the main thread
"""

from __future__ import annotations

import contextlib
import logging
import os
import selectors
import signal
import subprocess
import time
from typing import TYPE_CHECKING, Iterator

import anyio

from ..config import get_config
from .errors import ProcessFailedError, StreamIOError
from .events import EventHandler, ProcessFinished
from .streams import ByteBuffer
from .types import ExitCode, ProcessInfo, ProcessResult

if TYPE_CHECKING:
    from .observer import ExitObserver

__all__ = [
    "ProcessRunner",
    "STDOUT",
    "STDERR",
]

logger = logging.getLogger(__name__)

# Stream ids yielded by live iteration
STDOUT = 1
STDERR = 2


class ProcessRunner:
    """Handle of a running process.

    States are Running -> Done. The transition happens exactly once, when
    the observer reports the exit: the pipes are drained, ``ProcessFinished``
    is emitted, the result is built and the pipes are closed.

    Example:
        runner = ProcessBuilder(["my-cli", "--json"]).start()

        for stream, chunk in runner:
            handle_output(stream, chunk)

        result = runner.wait()
    """

    def __init__(
        self,
        process: subprocess.Popen,
        observer: ExitObserver,
        info: ProcessInfo,
        on_finished: EventHandler[ProcessFinished] | None = None,
    ) -> None:
        self.info = info
        self._process = process
        self._dispatcher = observer.dispatcher
        self._on_finished = on_finished
        self._chunk_size = get_config().read_chunk_size

        self._stdin: ByteBuffer | None = None
        self._buffers = {STDOUT: ByteBuffer(), STDERR: ByteBuffer()}
        self._pipes = {STDOUT: process.stdout, STDERR: process.stderr}
        self._eof = {STDOUT: False, STDERR: False}

        self._result: ProcessResult | None = None
        self._error: ProcessFailedError | None = None
        self._closed = False
        # Write ends of the pipes waking iterators blocked in select()
        self._wakeups: list[int] = []

        for pipe in self._pipes.values():
            if pipe is not None:
                os.set_blocking(pipe.fileno(), False)

        # May complete the runner right away if the process already exited
        observer.on_exit(info.pid, self._on_exit)

    def __del__(self) -> None:
        with contextlib.suppress(Exception):
            if self.signal(signal.SIGKILL):
                # The reaper collects it; Popen must not queue it for its own waitpid
                self._process.returncode = -signal.SIGKILL

    def __repr__(self) -> str:
        state = "running" if self.is_running() else "done"
        return f"ProcessRunner(pid={self.info.pid}, {state})"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return not self._closed

    def is_done(self) -> bool:
        return not self.is_running()

    @property
    def result(self) -> ProcessResult | None:
        """The result once the process is done, else None."""
        return self._result

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wait(self, poll_interval_us: int | None = None) -> ProcessResult:
        """Block until the process is done.

        Pipes are emptied into the buffers while waiting so a chatty
        process never blocks on a full pipe.

        Args:
            poll_interval_us: sleep between checks in microseconds
                (default 10ms, see PROCWATCH_POLL_INTERVAL_US)

        Returns:
            The result; the same object on every call

        Raises:
            ProcessFailedError: the exit code is neither 0 nor expected
        """
        interval = self._poll_interval(poll_interval_us)
        while self.is_running():
            self._pull_pipes()
            time.sleep(interval)
        return self._get_result()

    async def wait_async(self, poll_interval_us: int | None = None) -> ProcessResult:
        """Async variant of wait() that yields to the event loop between checks."""
        interval = self._poll_interval(poll_interval_us)
        while self.is_running():
            self._pull_pipes()
            await anyio.sleep(interval)
        return self._get_result()

    def __iter__(self) -> Iterator[tuple[int, bytes]]:
        """Yield ``(stream, chunk)`` pairs as output becomes available.

        ``stream`` is STDOUT (1) or STDERR (2). Iteration stops once the
        process is done, after yielding whatever was drained at exit and
        not consumed yet.
        """
        timeout = get_config().select_timeout
        wake_r, wake_w = os.pipe()
        os.set_blocking(wake_r, False)
        os.set_blocking(wake_w, False)

        try:
            with selectors.DefaultSelector() as selector:
                selector.register(wake_r, selectors.EVENT_READ, None)
                with self._dispatcher.deferred():
                    if not self._closed:
                        self._wakeups.append(wake_w)
                        for stream, pipe in self._pipes.items():
                            if pipe is not None and not self._eof[stream]:
                                selector.register(pipe.fileno(), selectors.EVENT_READ, stream)

                while self.is_running():
                    for key, _ in selector.select(timeout):
                        stream = key.data
                        if stream is None:
                            # Woken by _release()
                            with contextlib.suppress(BlockingIOError):
                                os.read(wake_r, 64)
                            continue
                        chunk = self._read_stream(stream)
                        if chunk:
                            yield stream, chunk
                        if self.is_running() and self._eof[stream]:
                            selector.unregister(key.fd)
        finally:
            with self._dispatcher.deferred():
                if wake_w in self._wakeups:
                    self._wakeups.remove(wake_w)
            os.close(wake_r)
            os.close(wake_w)

        for stream in (STDOUT, STDERR):
            chunk = self._read_stream(stream)
            if chunk:
                yield stream, chunk

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def signal(self, signum: int) -> bool:
        """Send ``signum`` to the process.

        Returns:
            True if the signal was sent, False if the process is done
        """
        with self._dispatcher.deferred():
            if not self.is_running():
                return False
            try:
                os.kill(self.info.pid, signum)
            except ProcessLookupError:
                return False
        logger.debug(f"Sent signal {signum} to pid={self.info.pid}")
        return True

    def terminate(self, timeout_seconds: float | None = None) -> bool:
        """Send the term signal, escalating to SIGKILL after ``timeout_seconds``.

        Returns:
            True if the term signal was sent
        """
        signaled = self.signal(self.info.term_signal)

        if signaled and timeout_seconds is not None:
            deadline = time.monotonic() + timeout_seconds
            interval = self._poll_interval(None)
            while self.is_running():
                remaining = deadline - time.monotonic()
                if remaining <= 0.0:
                    break
                time.sleep(min(interval, remaining))

            if self.is_running():
                logger.debug(f"Process pid={self.info.pid} still running, sending SIGKILL")
                self.signal(signal.SIGKILL)

        return signaled

    # ------------------------------------------------------------------
    # Standard streams
    # ------------------------------------------------------------------

    def write_to_stdin(self, data: str | bytes, append_newline: bool = True) -> bool:
        """Record ``data`` and write it to the process stdin.

        Returns:
            True if the data reached the pipe, False if the pipe is closed
            (the data is recorded either way)
        """
        if isinstance(data, str):
            data = data.encode()
        if append_newline:
            data += b"\n"

        if self._stdin is None:
            self._stdin = ByteBuffer()
        self._stdin.write(data)

        with self._dispatcher.deferred():
            pipe = self._process.stdin
            if self._closed or pipe is None or pipe.closed:
                return False

            view = memoryview(data)
            try:
                while view:
                    written = os.write(pipe.fileno(), view)
                    view = view[written:]
            except BrokenPipeError:
                return False
            except OSError as e:
                raise StreamIOError("write", e) from e
        return True

    def read_stdout_buffer(self) -> bytes:
        """Return stdout not consumed yet, without blocking."""
        return self._read_stream(STDOUT)

    def read_stderr_buffer(self) -> bytes:
        """Return stderr not consumed yet, without blocking."""
        return self._read_stream(STDERR)

    def _read_stream(self, stream: int) -> bytes:
        with self._dispatcher.deferred():
            # Once done the pipes are closed; the buffer holds everything.
            if not self._closed:
                self._pull(stream)
            return self._buffers[stream].read_to_end()

    def _pull_pipes(self) -> None:
        with self._dispatcher.deferred():
            if not self._closed:
                for stream in (STDOUT, STDERR):
                    self._pull(stream)

    def _pull(self, stream: int) -> int:
        """Append what the pipe has right now to the end of its buffer.

        The buffer position is rewound over the appended bytes, so they
        stay unread.

        Returns:
            Number of bytes appended
        """
        pipe = self._pipes[stream]
        if pipe is None or self._eof[stream]:
            return 0

        output = self._read_pipe(pipe.fileno(), stream)
        if not output:
            return 0

        buffer = self._buffers[stream]
        position = buffer.tell()
        buffer.seek(0, os.SEEK_END)
        buffer.write(output)
        buffer.seek(position)
        return len(output)

    def _read_pipe(self, fd: int, stream: int) -> bytes:
        """Read everything currently available on a non-blocking pipe."""
        chunks: list[bytes] = []
        while True:
            try:
                chunk = os.read(fd, self._chunk_size)
            except BlockingIOError:
                break
            except OSError as e:
                raise StreamIOError("read", e) from e
            if not chunk:
                self._eof[stream] = True
                break
            chunks.append(chunk)
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _on_exit(self, exit_code: int) -> None:
        """Called once by the observer when the process has been reaped."""
        try:
            # Unread output is lost once the pipes are closed
            self._pull_pipes()
            self._handle_exit(exit_code)
        finally:
            self._release(exit_code)

    def _handle_exit(self, exit_code: int) -> None:
        logger.debug(f"Process finished pid={self.info.pid} exit_code={exit_code}")

        if self._on_finished is not None:
            self._on_finished.emit(ProcessFinished(self.info, exit_code))

        result = self._result = ProcessResult(
            info=self.info,
            exit_code=exit_code,
            stdin=self._stdin,
            stdout=self._buffers[STDOUT],
            stderr=self._buffers[STDERR],
        )

        if exit_code == ExitCode.SUCCESS or exit_code in self.info.expected_exit_codes:
            return

        self._error = ProcessFailedError(self.info.defined_command, exit_code, result)
        logger.debug(f"Process failed pid={self.info.pid}: {self._error}")

    def _release(self, exit_code: int) -> None:
        for pipe in (self._process.stdin, self._process.stdout, self._process.stderr):
            if pipe is not None:
                with contextlib.suppress(OSError):
                    pipe.close()
        # Already reaped; keeps Popen from waiting on a pid it no longer owns
        self._process.returncode = exit_code
        self._closed = True

        for fd in self._wakeups:
            with contextlib.suppress(OSError):
                os.write(fd, b"\0")

    def _get_result(self) -> ProcessResult:
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise RuntimeError("ProcessResult is not set")
        return self._result

    @staticmethod
    def _poll_interval(poll_interval_us: int | None) -> float:
        if poll_interval_us is None:
            poll_interval_us = get_config().poll_interval_us
        return poll_interval_us / 1_000_000
