"""Runtime module for process spawning and supervision.

This module provides process execution with signal-driven exit
observation, live output streaming and reliable termination.
"""

from __future__ import annotations

from .builder import ProcessBuilder
from .errors import (
    InvalidArgumentError,
    ProcessError,
    ProcessFailedError,
    ProcessSpawnError,
    SignalRegistrationError,
    StreamIOError,
)
from .events import EventHandler, ProcessFinished, ProcessStarted
from .observer import ExitObserver, get_observer
from .process_runner import STDERR, STDOUT, ProcessRunner
from .signals import (
    SignalDispatcher,
    SignalEvent,
    SignalInfo,
    SignalListener,
    get_dispatcher,
    name_of,
)
from .streams import ByteBuffer
from .types import ExitCode, ProcessInfo, ProcessResult, TimeoutInfo

__all__ = [
    "ByteBuffer",
    "EventHandler",
    "ExitCode",
    "ExitObserver",
    "InvalidArgumentError",
    "ProcessBuilder",
    "ProcessError",
    "ProcessFailedError",
    "ProcessFinished",
    "ProcessInfo",
    "ProcessResult",
    "ProcessRunner",
    "ProcessSpawnError",
    "ProcessStarted",
    "STDERR",
    "STDOUT",
    "SignalDispatcher",
    "SignalEvent",
    "SignalInfo",
    "SignalListener",
    "SignalRegistrationError",
    "StreamIOError",
    "TimeoutInfo",
    "get_dispatcher",
    "get_observer",
    "name_of",
]
