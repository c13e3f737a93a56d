"""Tests for limiter configuration resolution."""

import dataclasses
import logging
from unittest.mock import patch

import pytest

from scriptlimit.core import limiter_config
from scriptlimit.core.errors import ConfigurationAppError
from scriptlimit.core.limiter_config import (
    LimiterDefaults,
    configure_limits,
    get_limiter_defaults,
    resolve_limiter_config,
    to_logging_level,
)
from scriptlimit.core.registry import (
    BUILTIN_SCRIPTS,
    FIXED_WINDOW_HEADERS,
    TOKEN_BUCKET_HEADERS,
    LimiterDefinition,
    ScriptDefinition,
)
from scriptlimit.core.response import put_response


async def global_cmd(command):
    return None


async def limiter_cmd(command):
    return None


async def call_cmd(command):
    return None


def call_key(request):
    return ["call"]


def limiter_key(request):
    return ["limiter"]


def custom_response(request, config, outcome):
    return None


def custom_source():
    return "return {'allow', {}}"


class TestDefaults:
    """Built-in defaults when only the required options are given."""

    def test_minimal_installation_uses_fixed_window(self) -> None:
        config = resolve_limiter_config(
            {"opts": [10, 60], "key": call_key},
            LimiterDefaults(cmd=global_cmd),
        )

        assert config.limiter_id == "fixed_window"
        assert config.script_id == "fixed_window"
        assert config.headers == FIXED_WINDOW_HEADERS
        assert config.script is BUILTIN_SCRIPTS["fixed_window"].script
        assert config.opts == (10, 60)
        assert config.cmd is global_cmd
        assert config.key is call_key
        assert config.response is put_response
        assert config.log_level == logging.ERROR

    def test_token_bucket_limiter(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "token_bucket", "opts": [20, 600, 5], "key": call_key},
            LimiterDefaults(cmd=global_cmd),
        )

        assert config.script_id == "token_bucket"
        assert config.headers == TOKEN_BUCKET_HEADERS
        assert config.opts == (20, 600, 5)


class TestPrecedence:
    """Most specific source wins: call > limiter entry > global > built-in."""

    def _defaults(self, **limiter_fields) -> LimiterDefaults:
        return LimiterDefaults(
            cmd=global_cmd,
            log_level="error",
            response=None,
            limiters={"custom": LimiterDefinition(luascript="fixed_window", **limiter_fields)},
        )

    def test_limiter_log_level_beats_global(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key},
            self._defaults(log_level="warning"),
        )

        assert config.log_level == logging.WARNING

    def test_call_log_level_beats_limiter(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key, "log_level": "debug"},
            self._defaults(log_level="warning"),
        )

        assert config.log_level == logging.DEBUG

    def test_global_log_level_used_when_limiter_silent(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key},
            dataclasses.replace(self._defaults(), log_level="info"),
        )

        assert config.log_level == logging.INFO

    def test_limiter_can_disable_logging_despite_global_level(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key},
            self._defaults(log_level=False),
        )

        assert config.log_level is None

    def test_cmd_precedence(self) -> None:
        defaults = self._defaults(cmd=limiter_cmd)

        from_limiter = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key}, defaults
        )
        from_call = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key, "cmd": call_cmd}, defaults
        )

        assert from_limiter.cmd is limiter_cmd
        assert from_call.cmd is call_cmd

    def test_key_and_opts_from_limiter_entry(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom"},
            self._defaults(key=limiter_key, opts=[5, 30]),
        )

        assert config.key is limiter_key
        assert config.opts == (5, 30)

    def test_call_key_and_opts_override_limiter_entry(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "key": call_key, "opts": [7, 70]},
            self._defaults(key=limiter_key, opts=[5, 30]),
        )

        assert config.key is call_key
        assert config.opts == (7, 70)

    def test_response_precedence(self) -> None:
        config = resolve_limiter_config(
            {"limiter": "custom", "opts": [1, 1], "key": call_key},
            self._defaults(response=custom_response),
        )

        assert config.response is custom_response


class TestRegistryShadowing:
    """User registries shadow built-in entries with the same id."""

    def test_user_limiter_shadows_builtin(self) -> None:
        defaults = LimiterDefaults(
            cmd=global_cmd,
            limiters={"fixed_window": LimiterDefinition(luascript="token_bucket")},
        )

        config = resolve_limiter_config({"opts": [1, 1, 1], "key": call_key}, defaults)

        assert config.limiter_id == "fixed_window"
        assert config.script_id == "token_bucket"

    def test_user_script_shadows_builtin(self) -> None:
        defaults = LimiterDefaults(
            cmd=global_cmd,
            luascripts={"fixed_window": ScriptDefinition(script=custom_source, headers=["x-custom"])},
        )

        config = resolve_limiter_config({"opts": [1], "key": call_key}, defaults)

        assert config.script is custom_source
        assert config.headers == ("x-custom",)

    def test_builtin_still_found_next_to_user_entries(self) -> None:
        defaults = LimiterDefaults(
            cmd=global_cmd,
            limiters={"custom": LimiterDefinition(luascript="custom_script")},
            luascripts={"custom_script": ScriptDefinition(script=custom_source, headers=[])},
        )

        config = resolve_limiter_config({"limiter": "token_bucket", "opts": [1, 1, 1], "key": call_key}, defaults)

        assert config.script_id == "token_bucket"


class TestConfigurationErrors:
    """Unresolvable configurations fail at installation time."""

    @pytest.mark.parametrize(
        ("options", "code"),
        [
            ({"key": call_key}, "missing_opts"),
            ({"opts": [1, 1]}, "missing_key"),
            ({"limiter": "nope", "opts": [1, 1], "key": call_key}, "unknown_limiter"),
            ({"opts": [1, 1], "key": call_key, "burst": 3}, "unknown_option"),
            ({"opts": "10,60", "key": call_key}, "invalid_opts"),
            ({"opts": [10, [60]], "key": call_key}, "invalid_opts"),
            ({"opts": [1, 1], "key": "not-callable"}, "invalid_key"),
            ({"opts": [1, 1], "key": call_key, "log_level": "loud"}, "invalid_log_level"),
        ],
    )
    def test_invalid_call_options(self, options, code) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            resolve_limiter_config(options, LimiterDefaults(cmd=global_cmd))

        assert exc_info.value.code == code

    def test_missing_cmd(self) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            resolve_limiter_config({"opts": [1, 1], "key": call_key}, LimiterDefaults())

        assert exc_info.value.code == "missing_cmd"
        assert "SCRIPTLIMIT_REDIS_URL" in exc_info.value.details["hint"]

    def test_limiter_without_luascript(self) -> None:
        defaults = LimiterDefaults(cmd=global_cmd, limiters={"bare": LimiterDefinition()})

        with pytest.raises(ConfigurationAppError) as exc_info:
            resolve_limiter_config({"limiter": "bare", "opts": [1], "key": call_key}, defaults)

        assert exc_info.value.code == "missing_luascript"

    def test_unregistered_luascript(self) -> None:
        defaults = LimiterDefaults(
            cmd=global_cmd,
            limiters={"custom": LimiterDefinition(luascript="custom_bucket")},
        )

        with pytest.raises(ConfigurationAppError) as exc_info:
            resolve_limiter_config({"limiter": "custom", "opts": [1], "key": call_key}, defaults)

        assert exc_info.value.code == "unknown_luascript"


def test_resolved_config_is_immutable() -> None:
    config = resolve_limiter_config({"opts": [10, 60], "key": call_key}, LimiterDefaults(cmd=global_cmd))

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.opts = (1, 1)  # type: ignore[misc]


def test_resolved_opts_are_copied() -> None:
    opts = [10, 60]
    config = resolve_limiter_config({"opts": opts, "key": call_key}, LimiterDefaults(cmd=global_cmd))

    opts.append(99)

    assert config.opts == (10, 60)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("error", logging.ERROR),
        ("WARNING", logging.WARNING),
        (logging.INFO, logging.INFO),
        (False, None),
        ("false", None),
    ],
)
def test_to_logging_level(value, expected) -> None:
    assert to_logging_level(value) == expected


class TestProcessDefaults:
    """Boundary lookup of process-wide defaults."""

    def test_configured_defaults_win_over_settings(self) -> None:
        configure_limits(cmd=global_cmd, log_level="warning")

        defaults = get_limiter_defaults()

        assert defaults.cmd is global_cmd
        assert defaults.log_level == "warning"

    @patch("scriptlimit.core.limiter_config.settings")
    def test_settings_log_level_used_when_not_configured(self, mock_settings) -> None:
        mock_settings.limit.redis_url = None
        mock_settings.limit.log_level = False

        defaults = get_limiter_defaults()

        assert defaults.cmd is None
        assert defaults.log_level is False

    @patch("scriptlimit.core.limiter_config.settings")
    def test_redis_url_builds_shared_default_executor(self, mock_settings) -> None:
        from scriptlimit.adapters.redis import RedisCommandExecutor

        mock_settings.limit.redis_url = "redis://localhost:6379/0"
        mock_settings.limit.redis_socket_timeout_seconds = 1.0
        mock_settings.limit.log_level = "error"
        limiter_config._default_redis_executor.cache_clear()

        first = get_limiter_defaults().cmd
        second = get_limiter_defaults().cmd

        assert isinstance(first, RedisCommandExecutor)
        assert first is second

    def test_configure_limits_registers_user_limiters(self) -> None:
        configure_limits(
            cmd=global_cmd,
            limiters={"custom": LimiterDefinition(luascript="custom_bucket", key=limiter_key, opts=[3])},
            luascripts={"custom_bucket": ScriptDefinition(script=custom_source, headers=["x-a", "x-b"])},
        )

        config = resolve_limiter_config({"limiter": "custom"}, get_limiter_defaults())

        assert config.script_id == "custom_bucket"
        assert config.headers == ("x-a", "x-b")
        assert config.opts == (3,)
