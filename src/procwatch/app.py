"""procwatch command line entry point.

Runs one command under supervision, streams its output, forwards
SIGINT/SIGTERM to it and exits with its exit code.

Usage:
    procwatch [options] -- command [args...]
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Sequence

from .config import get_config
from .runtime import (
    STDOUT,
    ExitCode,
    ProcessBuilder,
    ProcessFailedError,
    ProcessSpawnError,
    SignalEvent,
    get_dispatcher,
)

__all__ = ["main", "run"]

logger = logging.getLogger(__name__)

# Signals forwarded to the child instead of stopping procwatch
FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _parse_signal(value: str) -> int:
    """Parse a signal given as a number, ``TERM`` or ``SIGTERM``."""
    value = value.strip()
    if value.isdigit():
        return int(value)
    name = value.upper()
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return int(signal.Signals[name])
    except KeyError:
        raise argparse.ArgumentTypeError(f"unknown signal: {value}") from None


def _parse_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid seconds: {value}") from None
    if seconds <= 0.0:
        raise argparse.ArgumentTypeError(f"expected seconds > 0, got {value}")
    return seconds


def _parse_kill_after(value: str) -> float | None:
    if value.strip().lower() == "none":
        return None
    return _parse_seconds(value)


def _parse_env(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value}")
    return key, val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procwatch",
        description="Run a command under supervision and exit with its exit code.",
    )
    parser.add_argument("--timeout", type=_parse_seconds, help="time limit in seconds")
    parser.add_argument(
        "--timeout-signal",
        type=_parse_signal,
        default=signal.SIGTERM,
        help="signal sent when the time limit is hit (default TERM)",
    )
    parser.add_argument(
        "--kill-after",
        type=_parse_kill_after,
        default=argparse.SUPPRESS,
        help="grace period before SIGKILL after a timeout, or 'none' (default 10s)",
    )
    parser.add_argument(
        "--term-signal",
        type=_parse_signal,
        default=None,
        help="signal used to ask the command to stop (default TERM)",
    )
    parser.add_argument(
        "--expect",
        type=int,
        action="append",
        default=[],
        metavar="CODE",
        help="exit code that is not a failure (repeatable)",
    )
    parser.add_argument("--cwd", help="working directory")
    parser.add_argument(
        "--env",
        type=_parse_env,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="environment override (repeatable)",
    )
    parser.add_argument(
        "--shell",
        action="store_true",
        help="join the command into one string run by /bin/sh",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run")
    return parser


def _build(args: argparse.Namespace) -> ProcessBuilder:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise SystemExit("procwatch: no command given")

    builder = ProcessBuilder(" ".join(command) if args.shell else command)
    builder.in_directory(args.cwd)
    if args.env:
        builder.envs(dict(args.env))
    if args.term_signal is not None:
        builder.term_signal(args.term_signal)
    if args.expect:
        builder.expected_exit_codes(*args.expect)
    if args.timeout is not None:
        if hasattr(args, "kill_after"):
            builder.timeout(args.timeout, args.timeout_signal, args.kill_after)
        else:
            builder.timeout(args.timeout, args.timeout_signal)
    return builder


def run(args: argparse.Namespace) -> int:
    """Run the command described by ``args`` and return its exit code."""
    builder = _build(args)
    builder.on_started(
        lambda event: logger.debug(f"Started pid={event.info.pid}: {event.info.executed_command}")
    )

    try:
        runner = builder.start()
    except ProcessSpawnError as e:
        logger.error(str(e))
        if isinstance(e.__cause__, FileNotFoundError):
            return ExitCode.COMMAND_NOT_FOUND
        return ExitCode.COMMAND_NOT_EXECUTABLE

    dispatcher = get_dispatcher()

    def forward(event: SignalEvent) -> None:
        logger.info(f"Forwarding signal {event.signal} to pid={runner.info.pid}")
        event.should_terminate(False)
        runner.signal(event.signal)

    listeners = [(signum, dispatcher.handle(signum, forward)) for signum in FORWARDED_SIGNALS]

    try:
        for stream, chunk in runner:
            out = sys.stdout.buffer if stream == STDOUT else sys.stderr.buffer
            out.write(chunk)
            out.flush()
        result = runner.wait()
    except ProcessFailedError as e:
        logger.info(str(e).splitlines()[0])
        return e.exit_code
    finally:
        for signum, listener in listeners:
            dispatcher.unregister(signum, listener)

    logger.debug(f"Finished pid={result.info.pid} exit_code={result.exit_code}")
    return result.exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    config = get_config()
    args = build_parser().parse_args(argv)

    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG mode: log to a temp file
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # Default: log to stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger (third-party libraries) stays at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # Verbose logging only for the procwatch namespace
    logging.getLogger("procwatch").setLevel(log_level)

    logger.debug(f"Starting procwatch: {config}")

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
