"""ProcessBuilder tests: executed command shapes and argument validation."""

from __future__ import annotations

import os
import signal
from unittest import mock

import pytest

from procwatch.config import reload_config
from procwatch.runtime import (
    InvalidArgumentError,
    ProcessBuilder,
    ProcessSpawnError,
    TimeoutInfo,
    get_observer,
)


class TestBuildCommand:
    """Test the command actually executed."""

    def test_without_timeout(self):
        builder = ProcessBuilder(["sleep", "1"])
        assert builder.build_command() == ("sleep", "1")

    def test_string_without_timeout(self):
        assert ProcessBuilder("echo hi").build_command() == "echo hi"

    def test_default_timeout(self):
        builder = ProcessBuilder(["sleep", "1"]).timeout(5)
        assert builder.build_command() == ("timeout", "--kill-after", "10s", "5s", "sleep", "1")

    def test_timeout_with_signal_and_no_kill_after(self):
        builder = ProcessBuilder(["sleep", "1"]).timeout(0.01, signal.SIGKILL, None)
        assert builder.build_command() == ("timeout", "--signal", "9", "0.01s", "sleep", "1")

    def test_fractional_seconds(self):
        builder = ProcessBuilder(["sleep", "1"]).timeout(1.5, kill_after_seconds=0.25)
        assert builder.build_command() == ("timeout", "--kill-after", "0.25s", "1.5s", "sleep", "1")

    def test_string_command_with_timeout(self):
        builder = ProcessBuilder("echo hi").timeout(1, kill_after_seconds=None)
        assert builder.build_command() == "timeout 1s echo hi"

    def test_timeout_none_clears(self):
        builder = ProcessBuilder(["sleep", "1"]).timeout(5).timeout(None)
        assert builder.build_command() == ("sleep", "1")

    def test_timeout_info_constructor(self):
        builder = ProcessBuilder(
            ["sleep", "1"],
            timeout=TimeoutInfo(2.0, signal.SIGINT, None),
        )
        assert builder.build_command() == (
            "timeout",
            "--signal",
            str(int(signal.SIGINT)),
            "2s",
            "sleep",
            "1",
        )

    def test_kill_after_from_env(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_KILL_AFTER": "none"}, clear=False):
            reload_config()
            builder = ProcessBuilder(["sleep", "1"]).timeout(3)
            assert builder.build_command() == ("timeout", "3s", "sleep", "1")

    def test_timeout_command_from_env(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT_COMMAND": "gtimeout"}, clear=False):
            reload_config()
            builder = ProcessBuilder(["sleep", "1"]).timeout(3, kill_after_seconds=None)
            assert builder.build_command() == ("gtimeout", "3s", "sleep", "1")


class TestValidation:
    """Test rejected arguments."""

    @pytest.mark.parametrize("duration", [0, 0.0, -1.0])
    def test_non_positive_duration(self, duration: float):
        with pytest.raises(InvalidArgumentError, match="Expected duration_seconds to be > 0.0"):
            ProcessBuilder(["sleep", "1"]).timeout(duration)

    @pytest.mark.parametrize("kill_after", [0, -0.5])
    def test_non_positive_kill_after(self, kill_after: float):
        with pytest.raises(InvalidArgumentError, match="Expected kill_after_seconds to be > 0.0"):
            ProcessBuilder(["sleep", "1"]).timeout(1, kill_after_seconds=kill_after)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            ProcessBuilder(["sleep", "1"]).timeout(-1)


class TestSpawnFailure:
    """Test OS-level spawn failures."""

    def test_missing_executable(self, tmp_path):
        observer = get_observer()

        with pytest.raises(ProcessSpawnError) as exc_info:
            ProcessBuilder([str(tmp_path / "no-such-program")]).start()

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert exc_info.value.context["info"].pid == -1
        assert observer.active_count == 0

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ProcessSpawnError):
            ProcessBuilder(["true"]).in_directory(tmp_path / "missing").start()

        assert get_observer().active_count == 0


class TestInfo:
    """Test the recorded process information."""

    def test_info_defaults(self):
        runner = ProcessBuilder(["true"]).start()
        runner.wait()

        info = runner.info
        assert info.defined_command == ("true",)
        assert info.executed_command == ("true",)
        assert info.working_directory == os.getcwd()
        assert info.envs is None
        assert info.timeout is None
        assert info.term_signal == signal.SIGTERM
        assert info.expected_exit_codes == ()
        assert info.pid > 0

    def test_info_from_builder(self, tmp_path):
        runner = (
            ProcessBuilder(["true"])
            .in_directory(tmp_path)
            .envs({"A": "1"})
            .term_signal(signal.SIGINT)
            .expected_exit_codes(3, 4)
            .start()
        )
        runner.wait()

        info = runner.info
        assert info.working_directory == str(tmp_path)
        assert info.envs == {"A": "1"}
        assert info.term_signal == signal.SIGINT
        assert info.expected_exit_codes == (3, 4)
