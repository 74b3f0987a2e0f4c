"""Per-signal listener registry with queued OS delivery.

The dispatcher owns one OS-level handler per signal that has at least one
listener. The OS handler does not call listeners directly: it appends the
signal number to a queue which is drained right away unless a drain is
already running or delivery is held through ``deferred()``. Listeners
therefore never run nested inside each other, and code that mutates the
registry (or state guarded by it) can hold delivery while it does so.

SIGCHLD is special: one delivery may stand for several children changing
state, so draining it reaps with ``waitpid(-1, WNOHANG | WUNTRACED)``
until nothing is left and dispatches one event per exited or killed child.
Stopped children are skipped.

Python runs signal handlers on the main thread only, so installing a
handler from another thread is rejected.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .errors import SignalRegistrationError

__all__ = [
    "SignalDispatcher",
    "SignalEvent",
    "SignalInfo",
    "SignalListener",
    "TERM_SIGNALS",
    "UNCATCHABLE_SIGNALS",
    "get_dispatcher",
    "name_of",
]

logger = logging.getLogger(__name__)

# https://www.gnu.org/software/libc/manual/html_node/Termination-Signals.html
TERM_SIGNALS: tuple[int, ...] = (
    signal.SIGHUP,
    signal.SIGINT,
    signal.SIGQUIT,
    signal.SIGTERM,
)

UNCATCHABLE_SIGNALS = frozenset({signal.SIGKILL, signal.SIGSEGV})


def name_of(signum: int) -> str:
    """Return the name of a signal number, e.g. ``"SIGTERM"``."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        raise ValueError(f"Unknown signal: {signum}") from None


@dataclass(frozen=True)
class SignalInfo:
    """Raw information attached to a signal event.

    For SIGCHLD events ``pid`` is the child, ``code`` is ``os.CLD_EXITED`` or
    ``os.CLD_KILLED`` and ``status`` is the exit status (128 + N when the
    child was killed by signal N). For other signals ``pid`` is this
    process and ``status``/``code`` are 0, since Python handlers do not
    receive the sender.
    """

    pid: int
    status: int = 0
    code: int = 0


class SignalEvent:
    """One dispatch of a signal to its listeners.

    Attributes:
        signal: signal number
        info: raw signal information
    """

    def __init__(self, signum: int, info: SignalInfo, terminate: bool = False) -> None:
        self.signal = signum
        self.info = info
        self._terminate = terminate
        self._evict = False

    def should_terminate(self, toggle: bool = True) -> SignalEvent:
        """Mark (or unmark) this process to exit with 128 + signal once all listeners ran."""
        self._terminate = toggle
        return self

    def marked_for_termination(self) -> bool:
        return self._terminate

    def evict_listener(self, toggle: bool = True) -> SignalEvent:
        """Ask for the listener currently running to be removed after it returns."""
        self._evict = toggle
        return self

    def will_evict_listener(self) -> bool:
        return self._evict

    def __repr__(self) -> str:
        return (
            f"SignalEvent(signal={self.signal}, info={self.info}, "
            f"terminate={self._terminate})"
        )


class SignalListener:
    """Registration handle wrapping a callback.

    The same callback may be registered several times; each registration
    gets its own handle and is removed through that handle.
    """

    def __init__(self, callback: Callable[[SignalEvent], Any]) -> None:
        self.callback = callback

    def __call__(self, event: SignalEvent) -> None:
        self.callback(event)

    def __repr__(self) -> str:
        return f"SignalListener({getattr(self.callback, '__qualname__', self.callback)!r})"


class SignalDispatcher:
    """Registry mapping signal numbers to ordered listener lists.

    Example:
        dispatcher = SignalDispatcher()
        listener = dispatcher.handle(signal.SIGUSR1, lambda e: print(e.signal))
        ...
        dispatcher.unregister(signal.SIGUSR1, listener)

    Args:
        install_os_handlers: when False, nothing is installed with
            ``signal.signal`` and events only arrive through ``dispatch()``
            or ``deliver()``. Used for isolated tests.
    """

    def __init__(self, install_os_handlers: bool = True) -> None:
        self._install_os_handlers = install_os_handlers
        self._listeners: dict[int, list[SignalListener]] = {}
        self._previous_handlers: dict[int, Any] = {}
        self._queue: deque[int] = deque()
        self._held = 0
        self._draining = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def handle(self, signum: int, callback: Callable[[SignalEvent], Any]) -> SignalListener:
        """Register a plain callback and return its listener handle."""
        return self.register(signum, SignalListener(callback))

    def register(self, signum: int, listener: SignalListener) -> SignalListener:
        """Append ``listener`` for ``signum``, installing the OS handler on first use.

        Raises:
            SignalRegistrationError: for SIGKILL/SIGSEGV, or when the OS
                handler cannot be installed from the current thread
        """
        if signum in UNCATCHABLE_SIGNALS:
            raise SignalRegistrationError(
                "SIGKILL and SIGSEGV cannot be captured.",
                {"signal": signum, "listener": listener},
            )

        with self.deferred():
            if signum not in self._listeners:
                self._install(signum)
                self._listeners[signum] = []
            self._listeners[signum].append(listener)

        return listener

    def unregister(self, signum: int, listener: SignalListener) -> int:
        """Remove ``listener`` from ``signum``; return the number of registrations removed.

        Removing the last listener restores the handler that was in place
        before this dispatcher installed its own.
        """
        with self.deferred():
            listeners = self._listeners.get(signum)
            if listeners is None:
                return 0

            remaining = [registered for registered in listeners if registered is not listener]
            removed = len(listeners) - len(remaining)
            listeners[:] = remaining

            if not listeners:
                self.clear_handlers(signum)

        return removed

    def clear_handlers(self, signum: int) -> bool:
        """Drop every listener of ``signum`` and uninstall its OS handler."""
        with self.deferred():
            if signum not in self._listeners:
                return False
            del self._listeners[signum]
            self._uninstall(signum)
        return True

    def clear_all_handlers(self) -> None:
        for signum in self.registered_signals():
            self.clear_handlers(signum)

    def registered_signals(self) -> list[int]:
        """Signals with an installed handler, in registration order."""
        return list(self._listeners)

    def has_listeners(self, signum: int) -> bool:
        return bool(self._listeners.get(signum))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def deferred(self) -> Iterator[None]:
        """Queue OS deliveries until the block exits, then drain them."""
        self._held += 1
        try:
            yield
        finally:
            self._held -= 1
            if self._held == 0:
                self._drain()

    def deliver(self, signum: int) -> None:
        """Queue a notification for ``signum`` as if the OS had delivered it."""
        if signum == signal.SIGCHLD and signum in self._queue:
            # One pending reap pass covers every child
            return
        self._queue.append(signum)
        self._drain()

    def dispatch(self, signum: int, info: SignalInfo) -> SignalEvent | None:
        """Invoke the listeners of ``signum`` with one new event.

        Listeners run in registration order over a snapshot of the list, so
        a listener removed during this dispatch is removed for the next one.

        Returns:
            The dispatched event, or None when nothing listens to ``signum``.

        Raises:
            SystemExit: with code 128 + signal when the event is marked for
                termination after all listeners ran
            Exception: the first error raised by a listener, re-raised once
                every listener ran
        """
        listeners = self._listeners.get(signum)
        if not listeners:
            return None

        event = SignalEvent(signum, info, terminate=signum in TERM_SIGNALS)

        error: Exception | None = None

        for listener in list(listeners):
            event.evict_listener(False)
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Error in {name_of(signum)} listener {listener!r}: {e}")
                if error is None:
                    error = e
            if event.will_evict_listener():
                current = self._listeners.get(signum)
                if current is not None and listener in current:
                    current.remove(listener)

        # Listeners may have cleared the signal themselves
        if signum in self._listeners and not self._listeners[signum]:
            self.clear_handlers(signum)

        if error is not None:
            raise error

        if event.marked_for_termination():
            # https://tldp.org/LDP/abs/html/exitcodes.html
            logger.info(f"{name_of(signum)} received, exiting with {128 + signum}")
            sys.exit(128 + signum)

        return event

    def _on_os_signal(self, signum: int, frame: Any) -> None:
        self.deliver(signum)

    def _drain(self) -> None:
        # Re-checked after each pass: a delivery may land between the last
        # popleft() and the flag being reset.
        while self._queue and not self._held and not self._draining:
            self._draining = True
            try:
                while self._queue:
                    signum = self._queue.popleft()
                    if signum == signal.SIGCHLD:
                        self._reap_children()
                    else:
                        self.dispatch(signum, SignalInfo(pid=os.getpid()))
            finally:
                self._draining = False

    def _reap_children(self) -> None:
        """Collect every pending child state change and dispatch exits and kills.

        A reaped status cannot be collected twice, so a failing listener
        does not stop the loop; the first error is raised at the end.
        """
        error: Exception | None = None

        while self.has_listeners(signal.SIGCHLD):
            try:
                pid, status = os.waitpid(-1, os.WNOHANG | os.WUNTRACED)
            except ChildProcessError:
                break

            if pid == 0:
                break

            if os.WIFEXITED(status):
                info = SignalInfo(pid=pid, status=os.WEXITSTATUS(status), code=os.CLD_EXITED)
            elif os.WIFSIGNALED(status):
                info = SignalInfo(pid=pid, status=128 + os.WTERMSIG(status), code=os.CLD_KILLED)
            elif os.WIFSTOPPED(status):
                logger.debug(f"Child pid={pid} stopped by {name_of(os.WSTOPSIG(status))}, ignored")
                continue
            else:
                continue

            logger.debug(f"Reaped child pid={pid} status={info.status}")
            try:
                self.dispatch(signal.SIGCHLD, info)
            except Exception as e:
                if error is None:
                    error = e

        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # OS handler installation
    # ------------------------------------------------------------------

    def _install(self, signum: int) -> None:
        if not self._install_os_handlers:
            return
        try:
            self._previous_handlers[signum] = signal.signal(signum, self._on_os_signal)
        except ValueError as e:
            raise SignalRegistrationError(
                f"Cannot install handler for {name_of(signum)}: {e}",
                {"signal": signum},
            ) from e
        logger.debug(f"Installed handler for {name_of(signum)}")

    def _uninstall(self, signum: int) -> None:
        if not self._install_os_handlers:
            return
        previous = self._previous_handlers.pop(signum, signal.SIG_DFL)
        if previous is None:
            # Installed outside Python; the default is the closest match
            previous = signal.SIG_DFL
        try:
            signal.signal(signum, previous)
        except ValueError as e:
            logger.warning(f"Error restoring handler for {name_of(signum)}: {e}")
            return
        logger.debug(f"Restored handler for {name_of(signum)}")


# Process-wide dispatcher (created lazily)
_dispatcher: SignalDispatcher | None = None


def get_dispatcher() -> SignalDispatcher:
    """Return the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = SignalDispatcher()
    return _dispatcher
