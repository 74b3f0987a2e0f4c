"""Command line tests."""

from __future__ import annotations

import argparse
import os
import shutil
import signal
import threading

import pytest

from procwatch.app import _parse_signal, build_parser, main

pytestmark = [
    pytest.mark.integration,
    pytest.mark.timeout(30),
    pytest.mark.skipif(os.name != "posix", reason="POSIX only"),
]


class TestParser:
    """Test argument parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("TERM", signal.SIGTERM), ("SIGINT", signal.SIGINT), ("kill", signal.SIGKILL), ("9", 9)],
    )
    def test_parse_signal(self, value: str, expected: int):
        assert _parse_signal(value) == expected

    def test_parse_unknown_signal(self):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_signal("NOPE")

    def test_options(self):
        args = build_parser().parse_args(
            ["--timeout", "2", "--expect", "3", "--expect", "4", "--env", "A=1", "echo", "hi"]
        )

        assert args.timeout == 2.0
        assert args.expect == [3, 4]
        assert args.env == [("A", "1")]
        assert args.command == ["echo", "hi"]
        assert not hasattr(args, "kill_after")

    def test_kill_after_none(self):
        args = build_parser().parse_args(["--kill-after", "none", "true"])
        assert args.kill_after is None

    def test_invalid_env(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--env", "NOVALUE", "true"])

    def test_invalid_timeout(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--timeout", "0", "true"])

    def test_no_command(self):
        with pytest.raises(SystemExit):
            main([])


class TestMain:
    """Test running commands through main()."""

    def test_stdout_streamed(self, capsys: pytest.CaptureFixture):
        assert main(["--", "sh", "-c", "echo hi"]) == 0
        assert capsys.readouterr().out == "hi\n"

    def test_stderr_streamed(self, script, capsys: pytest.CaptureFixture):
        assert main(script("outputs.sh")) == 0

        captured = capsys.readouterr()
        assert captured.out == "out\n"
        assert "err\n" in captured.err

    def test_exit_code_propagated(self):
        assert main(["sh", "-c", "exit 3"]) == 3

    def test_expected_exit_code(self):
        assert main(["--expect", "3", "sh", "-c", "exit 3"]) == 3

    def test_command_not_found(self, tmp_path):
        assert main([str(tmp_path / "no-such-program")]) == 127

    def test_env(self, script, capsys: pytest.CaptureFixture):
        assert main(["--env", "PROCWATCH_TEST_VALUE=abc", *script("echo-env.sh")]) == 0
        assert capsys.readouterr().out == "abc"

    def test_shell(self, capsys: pytest.CaptureFixture):
        assert main(["--shell", "echo", "a", "&&", "echo", "b"]) == 0
        assert capsys.readouterr().out == "a\nb\n"

    def test_cwd(self, tmp_path, capsys: pytest.CaptureFixture):
        assert main(["--cwd", str(tmp_path), "pwd"]) == 0
        assert os.path.samefile(capsys.readouterr().out.strip(), tmp_path)

    @pytest.mark.skipif(shutil.which("timeout") is None, reason="timeout command not available")
    def test_timeout(self):
        assert main(["--timeout", "0.1", "sleep", "5"]) == 124

    def test_forwards_sigterm(self, script, capsys: pytest.CaptureFixture):
        """SIGTERM sent to procwatch reaches the child instead of exiting."""
        previous = signal.getsignal(signal.SIGTERM)
        timer = threading.Timer(0.5, os.kill, (os.getpid(), signal.SIGTERM))
        timer.start()
        try:
            exit_code = main(script("trap-sigterm.sh"))
        finally:
            timer.cancel()

        assert exit_code == 0
        assert "trapped" in capsys.readouterr().out
        assert signal.getsignal(signal.SIGTERM) == previous
