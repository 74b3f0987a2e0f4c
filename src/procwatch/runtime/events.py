"""Process lifecycle events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from .types import ProcessInfo

__all__ = ["EventHandler", "ProcessStarted", "ProcessFinished"]

logger = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class ProcessStarted:
    """Emitted right after the OS process was created."""

    info: ProcessInfo


@dataclass(frozen=True)
class ProcessFinished:
    """Emitted once the process was reaped, before its result is returned."""

    info: ProcessInfo
    exit_code: int


class EventHandler(Generic[E]):
    """Ordered list of callbacks for one event type.

    Notifications are fire-and-forget: return values are ignored and a
    failing callback is logged without stopping the others.
    """

    def __init__(self) -> None:
        self._callbacks: list[Callable[[E], object]] = []

    def do(self, callback: Callable[[E], object]) -> None:
        """Append a callback."""
        self._callbacks.append(callback)

    def remove(self, callback: Callable[[E], object]) -> int:
        """Remove every registration of ``callback``; return how many were removed."""
        before = len(self._callbacks)
        self._callbacks = [cb for cb in self._callbacks if cb != callback]
        return before - len(self._callbacks)

    def has_listeners(self) -> bool:
        return bool(self._callbacks)

    def emit(self, event: E) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Error in {type(event).__name__} callback: {e}")

    def __len__(self) -> int:
        return len(self._callbacks)
