"""Tests for sitekeeper.config — TOML loading, env resolution and validation."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from sitekeeper.config import (
    CONFIG_PATH_ENV,
    ConfigError,
    default_config_path,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

MINIMAL = '[github]\nowner = "Org"\nrepo = "site"\n'


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "sitekeeper.toml"
    path.write_text(content)
    return path


class TestResolveEnvVars:
    def test_resolves_nested_values(self):
        with patch.dict(os.environ, {"TOKEN": "abc"}):
            result = resolve_env_vars({"a": ["${TOKEN}", 1], "b": {"c": "x-${TOKEN}"}})

        assert result == {"a": ["abc", 1], "b": {"c": "x-abc"}}

    def test_missing_variables_reported_together(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigError, match="ONE, TWO"):
                resolve_env_vars("${ONE}/${TWO}")


class TestLoadConfig:
    def test_minimal_config_gets_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, MINIMAL))

        assert config.github.branch == "master"
        assert config.scheduler.timezone == "Europe/London"
        assert config.scheduler.cleanup_cron == "0 0 * * *"
        assert config.scheduler.repeating_cron == "5 0 * * *"
        assert config.scheduler.retention_days == 7
        assert config.scheduler.advance_weeks == 4
        assert config.scheduler.events_path == "data/times.json"
        assert config.scheduler.rules_path == "data/repeating-events.json"
        assert config.deployments.website_url == "https://org.github.io/site/"
        assert config.deployments.repo_url == "https://github.com/Org/site"
        assert config.deployments.poll_interval_s == 15.0
        assert config.deployments.max_wait_s == 300.0
        assert config.webhook.enabled is False
        assert config.webhook.path == "/webhook/github"
        assert config.audit.channel_id is None

    def test_full_config(self, tmp_path):
        content = MINIMAL + (
            '[scheduler]\ntimezone = "America/New_York"\nadvance_weeks = 2\n'
            '[webhook]\nenabled = true\nbranch = "main"\nsecret = "${HOOK_SECRET}"\n'
            "poll_interval_s = 60\n"
            "[audit]\ntelegram_token = \"t\"\nchannel_id = -1001234\n"
            '[logging]\nlevel = "debug"\nformat = "JSON"\n'
        )

        with patch.dict(os.environ, {"HOOK_SECRET": "hush"}):
            config = load_config(_write(tmp_path, content))

        assert config.scheduler.timezone == "America/New_York"
        assert config.scheduler.advance_weeks == 2
        assert config.webhook.enabled is True
        assert config.webhook.branch == "refs/heads/main"
        assert config.webhook.secret == "hush"
        assert config.webhook.poll_interval_s == 60.0
        assert config.audit.channel_id == "-1001234"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write(tmp_path, "[github\n"))

    def test_env_path_is_default(self, tmp_path):
        path = _write(tmp_path, MINIMAL)

        with patch.dict(os.environ, {CONFIG_PATH_ENV: str(path)}):
            assert default_config_path() == path
            assert load_config().github.repo == "site"


class TestValidation:
    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({}, "github.owner"),
            ({"github": {"owner": "o"}}, "github.repo"),
            ({"github": {"owner": "o", "repo": "r"}, "scheduler": {"timezone": "Mars/Base"}},
             "timezone"),
            ({"github": {"owner": "o", "repo": "r"}, "scheduler": {"cleanup_cron": "daily"}},
             "cleanup_cron"),
            ({"github": {"owner": "o", "repo": "r"}, "scheduler": {"retention_days": 0}},
             "retention_days"),
            ({"github": {"owner": "o", "repo": "r"}, "webhook": {"path": "hook"}},
             "webhook.path"),
            ({"github": {"owner": "o", "repo": "r"}, "logging": {"format": "xml"}},
             "logging.format"),
            ({"github": "o/r"}, "TOML table"),
        ],
    )
    def test_rejects_invalid(self, data, message):
        with pytest.raises(ConfigError, match=message):
            parse_config(data)
