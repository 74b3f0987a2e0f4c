"""Config module tests.

Covers PROCWATCH_* environment variable parsing and the global instance.
"""

from __future__ import annotations

import os
from unittest import mock

import pytest

from procwatch.config import (
    DEFAULT_KILL_AFTER,
    DEFAULT_POLL_INTERVAL_US,
    DEFAULT_READ_CHUNK_SIZE,
    DEFAULT_SELECT_TIMEOUT,
    Config,
    get_config,
    load_config,
    reload_config,
)

PROCWATCH_VARS = (
    "PROCWATCH_LOG_DEBUG",
    "PROCWATCH_POLL_INTERVAL_US",
    "PROCWATCH_SELECT_TIMEOUT",
    "PROCWATCH_KILL_AFTER",
    "PROCWATCH_TIMEOUT_COMMAND",
    "PROCWATCH_SPOOL_MAX_SIZE",
    "PROCWATCH_READ_CHUNK_SIZE",
)


def clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k not in PROCWATCH_VARS}


class TestDefaults:
    """Test values when nothing is set."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, clean_env(), clear=True):
            config = load_config()

        assert config.log_debug is False
        assert config.log_file is None
        assert config.poll_interval_us == DEFAULT_POLL_INTERVAL_US
        assert config.select_timeout == DEFAULT_SELECT_TIMEOUT
        assert config.kill_after_seconds == DEFAULT_KILL_AFTER
        assert config.timeout_command == "timeout"
        assert config.read_chunk_size == DEFAULT_READ_CHUNK_SIZE

    def test_dataclass_defaults_match_env_defaults(self):
        with mock.patch.dict(os.environ, clean_env(), clear=True):
            assert load_config() == Config()


class TestParseBool:
    """Test boolean parsing."""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "Yes", "on"])
    def test_truthy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_LOG_DEBUG": value}, clear=False):
            config = load_config()
            assert config.log_debug is True
            assert config.log_file is not None
            assert config.log_file.endswith(".log")

    @pytest.mark.parametrize("value", ["false", "False", "FALSE", "0", "no", "No", "off", ""])
    def test_falsy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_LOG_DEBUG": value}, clear=False):
            config = load_config()
            assert config.log_debug is False
            assert config.log_file is None


class TestParseNumbers:
    """Test numeric parsing and clamping."""

    def test_poll_interval(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_POLL_INTERVAL_US": "500"}, clear=False):
            assert load_config().poll_interval_us == 500

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("1", 100), ("99999999", 1_000_000), ("abc", DEFAULT_POLL_INTERVAL_US)],
    )
    def test_poll_interval_clamped(self, value: str, expected: int):
        with mock.patch.dict(os.environ, {"PROCWATCH_POLL_INTERVAL_US": value}, clear=False):
            assert load_config().poll_interval_us == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("0.5", 0.5), ("0", 0.001), ("60", 5.0), ("x", DEFAULT_SELECT_TIMEOUT)],
    )
    def test_select_timeout(self, value: str, expected: float):
        with mock.patch.dict(os.environ, {"PROCWATCH_SELECT_TIMEOUT": value}, clear=False):
            assert load_config().select_timeout == expected

    def test_read_chunk_size_clamped(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_READ_CHUNK_SIZE": "1"}, clear=False):
            assert load_config().read_chunk_size == 512

    def test_spool_max_size(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_SPOOL_MAX_SIZE": "1024"}, clear=False):
            assert load_config().spool_max_size == 1024


class TestKillAfter:
    """Test the default kill-after grace period."""

    @pytest.mark.parametrize("value", ["none", "None", "off", "false"])
    def test_disabled(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_KILL_AFTER": value}, clear=False):
            assert load_config().kill_after_seconds is None

    def test_custom(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_KILL_AFTER": "2.5"}, clear=False):
            assert load_config().kill_after_seconds == 2.5

    @pytest.mark.parametrize("value", ["0", "-1", "soon"])
    def test_invalid_falls_back(self, value: str):
        with mock.patch.dict(os.environ, {"PROCWATCH_KILL_AFTER": value}, clear=False):
            assert load_config().kill_after_seconds == DEFAULT_KILL_AFTER


class TestTimeoutCommand:
    def test_custom(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT_COMMAND": " gtimeout "}, clear=False):
            assert load_config().timeout_command == "gtimeout"

    def test_blank_uses_default(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_TIMEOUT_COMMAND": "  "}, clear=False):
            assert load_config().timeout_command == "timeout"


class TestConfigMethods:
    def test_repr(self):
        config = Config(log_debug=True, kill_after_seconds=None)
        repr_str = repr(config)
        assert "log_debug=True" in repr_str
        assert "kill_after_seconds=None" in repr_str
        assert "timeout_command=timeout" in repr_str


class TestGlobalConfig:
    """Test the global configuration instance."""

    def test_get_config_returns_same_instance(self):
        reload_config()
        config1 = get_config()
        config2 = get_config()
        assert config1 is config2

    def test_reload_config_creates_new_instance(self):
        config1 = get_config()
        config2 = reload_config()
        assert config1 is not config2

    def test_reload_picks_up_env(self):
        with mock.patch.dict(os.environ, {"PROCWATCH_POLL_INTERVAL_US": "2000"}, clear=False):
            assert reload_config().poll_interval_us == 2000
            assert get_config().poll_interval_us == 2000
