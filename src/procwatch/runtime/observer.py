"""Child exit observer.

Routes SIGCHLD events from the dispatcher to per-pid exit callbacks.

A child can exit before anybody attached a callback for it (it may even
exit before spawn returned its pid). Such exit codes are buffered in
``pending`` and handed over when ``on_exit()`` is called. For the same
reason tracking has to start before the process is spawned: otherwise the
SIGCHLD of a child that exits immediately could arrive while nothing
listens, and its exit code would be lost.

SIGCHLD is delivered for every child of this process, including ones not
started through this observer, so ``pending`` can collect unrelated pids.
It is cleared whenever the number of tracked processes drops back to zero.
"""

from __future__ import annotations

import inspect
import logging
import os
import signal
import weakref
from typing import Callable, Union

from .errors import SignalRegistrationError
from .signals import SignalDispatcher, SignalEvent, SignalListener, get_dispatcher

__all__ = ["ExitObserver", "ExitCallback", "get_observer"]

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int], None]
_CallbackRef = Union[ExitCallback, "weakref.WeakMethod[ExitCallback]"]

_EXIT_CODES = (os.CLD_EXITED, os.CLD_KILLED)


class ExitObserver:
    """Tracks outstanding children and invokes their exit callbacks.

    Example:
        observer.start_tracking()           # before spawning
        process = subprocess.Popen(...)
        observer.on_exit(process.pid, on_exit)

    Attributes:
        dispatcher: signal dispatcher delivering SIGCHLD events
    """

    def __init__(self, dispatcher: SignalDispatcher | None = None) -> None:
        self.dispatcher = dispatcher if dispatcher is not None else get_dispatcher()
        self._active_count = 0
        self._listener: SignalListener | None = None
        self._pending: dict[int, int] = {}
        self._callbacks: dict[int, _CallbackRef] = {}

    @property
    def active_count(self) -> int:
        """Number of processes currently tracked."""
        return self._active_count

    @property
    def pending(self) -> dict[int, int]:
        """Exit codes received before a callback was attached (copy)."""
        return dict(self._pending)

    @property
    def is_observing(self) -> bool:
        """Whether the SIGCHLD listener is registered."""
        return self._listener is not None

    def start_tracking(self) -> ExitObserver:
        """Count one more process; the first one registers the SIGCHLD listener.

        Must be called before the process is spawned.
        """
        with self.dispatcher.deferred():
            if self._active_count == 0:
                self._listener = self.dispatcher.handle(signal.SIGCHLD, self.handle_child_event)
                logger.debug("Exit observation started")
            self._active_count += 1
        return self

    def stop_tracking(self) -> None:
        """Count one process less; the last one unregisters and clears ``pending``."""
        with self.dispatcher.deferred():
            if self._active_count == 0:
                logger.warning("stop_tracking() called with no tracked process")
                return

            self._active_count -= 1

            if self._active_count == 0:
                if self._listener is not None:
                    self.dispatcher.unregister(signal.SIGCHLD, self._listener)
                    self._listener = None
                if self._pending:
                    logger.debug(f"Discarding exit codes of untracked pids {sorted(self._pending)}")
                self._pending.clear()
                logger.debug("Exit observation stopped")

    def on_exit(self, pid: int, callback: ExitCallback) -> None:
        """Attach the exit callback for ``pid``.

        Runs the callback immediately when the exit was already seen.
        Bound methods are held weakly: a discarded owner is not kept alive
        by its exit callback, and its exit is then only counted.

        Raises:
            SignalRegistrationError: a callback is already attached for ``pid``
        """
        with self.dispatcher.deferred():
            if pid in self._callbacks:
                raise SignalRegistrationError(
                    f"Callback already registered for pid: {pid}",
                    {"pid": pid},
                )

            if pid not in self._pending:
                self._callbacks[pid] = (
                    weakref.WeakMethod(callback) if inspect.ismethod(callback) else callback
                )
                return

            exit_code = self._pending.pop(pid)
            logger.debug(f"pid={pid} exited before its callback was attached (code={exit_code})")
            try:
                callback(exit_code)
            finally:
                self.stop_tracking()

    def handle_child_event(self, event: SignalEvent) -> None:
        """SIGCHLD listener: deliver or buffer one child's exit code."""
        info = event.info
        if info.code not in _EXIT_CODES:
            return

        entry = self._callbacks.pop(info.pid, None)
        if entry is None:
            self._pending[info.pid] = info.status
            return

        callback = entry() if isinstance(entry, weakref.WeakMethod) else entry
        try:
            if callback is None:
                logger.debug(f"Owner of pid={info.pid} is gone, exit code {info.status} dropped")
            else:
                callback(info.status)
        finally:
            self.stop_tracking()


# Process-wide observer (created lazily)
_observer: ExitObserver | None = None


def get_observer() -> ExitObserver:
    """Return the process-wide observer bound to the process-wide dispatcher."""
    global _observer
    if _observer is None:
        _observer = ExitObserver()
    return _observer
