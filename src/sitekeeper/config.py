"""sitekeeper configuration loading and validation.

Reads ``sitekeeper.toml``, resolves ``${VAR_NAME}`` references from the
environment, validates every section and returns a :class:`SitekeeperConfig`.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

DEFAULT_CONFIG_PATH = Path("sitekeeper.toml")
CONFIG_PATH_ENV = "SITEKEEPER_CONFIG"

# ${VAR_NAME} references; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class GitHubConfig:
    """Repository holding the site's data files, from [github]."""

    owner: str
    repo: str
    token: str | None = None
    branch: str = "master"
    api_base: str = "https://api.github.com"


@dataclass
class SchedulerConfig:
    """Daily job settings from [scheduler]."""

    timezone: str = "Europe/London"
    cleanup_cron: str = "0 0 * * *"
    repeating_cron: str = "5 0 * * *"
    retention_days: int = 7
    advance_weeks: int = 4
    events_path: str = "data/times.json"
    rules_path: str = "data/repeating-events.json"
    dry_run: bool = False


@dataclass
class DeploymentsConfig:
    """Deployment tracking settings from [deployments]."""

    website_url: str = ""
    repo_url: str = ""
    poll_interval_s: float = 15.0
    max_wait_s: float = 300.0
    track_scheduler_commits: bool = False


@dataclass
class WebhookConfig:
    """Inbound push webhook and fallback poller from [webhook]."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 40200
    path: str = "/webhook/github"
    branch: str = "refs/heads/master"
    secret: str | None = None
    poll_interval_s: float = 0.0


@dataclass
class AuditConfig:
    """Telegram audit channel from [audit]."""

    telegram_token: str | None = None
    channel_id: str | None = None


@dataclass
class NotifyConfig:
    """Bot tokens used to answer operators, from [notify]."""

    telegram_token: str | None = None
    discord_token: str | None = None


@dataclass
class LoggingConfig:
    """Logging configuration from [logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class SitekeeperConfig:
    github: GitHubConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    deployments: DeploymentsConfig = field(default_factory=DeploymentsConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)  # keep placeholder for error reporting
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return section


def _optional_str(section: dict[str, Any], key: str, where: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string when set")
    return value.strip() or None


def _positive_number(section: dict[str, Any], key: str, default: float, where: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {where}.{key}: {raw!r}. Must be a number.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {where}.{key}: {raw!r}. Must be positive.")
    return value


def _parse_github(data: dict[str, Any]) -> GitHubConfig:
    section = _section(data, "github")
    owner = _optional_str(section, "owner", "github")
    repo = _optional_str(section, "repo", "github")
    if owner is None:
        raise ConfigError("Missing required field: github.owner")
    if repo is None:
        raise ConfigError("Missing required field: github.repo")
    return GitHubConfig(
        owner=owner,
        repo=repo,
        token=_optional_str(section, "token", "github"),
        branch=_optional_str(section, "branch", "github") or "master",
        api_base=_optional_str(section, "api_base", "github") or "https://api.github.com",
    )


def _parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    section = _section(data, "scheduler")
    defaults = SchedulerConfig()

    timezone = str(section.get("timezone", defaults.timezone))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid scheduler.timezone: {timezone!r}") from exc

    crons = {}
    for key in ("cleanup_cron", "repeating_cron"):
        cron = str(section.get(key, getattr(defaults, key)))
        if not croniter.is_valid(cron):
            raise ConfigError(f"Invalid scheduler.{key}: {cron!r}")
        crons[key] = cron

    retention_days = int(_positive_number(section, "retention_days", 7, "scheduler"))
    advance_weeks = int(_positive_number(section, "advance_weeks", 4, "scheduler"))

    return SchedulerConfig(
        timezone=timezone,
        retention_days=retention_days,
        advance_weeks=advance_weeks,
        events_path=_optional_str(section, "events_path", "scheduler") or defaults.events_path,
        rules_path=_optional_str(section, "rules_path", "scheduler") or defaults.rules_path,
        dry_run=bool(section.get("dry_run", False)),
        **crons,
    )


def _parse_deployments(data: dict[str, Any], github: GitHubConfig) -> DeploymentsConfig:
    section = _section(data, "deployments")
    website_url = _optional_str(section, "website_url", "deployments") or (
        f"https://{github.owner.lower()}.github.io/{github.repo}/"
    )
    repo_url = _optional_str(section, "repo_url", "deployments") or (
        f"https://github.com/{github.owner}/{github.repo}"
    )
    return DeploymentsConfig(
        website_url=website_url,
        repo_url=repo_url,
        poll_interval_s=_positive_number(section, "poll_interval_s", 15.0, "deployments"),
        max_wait_s=_positive_number(section, "max_wait_s", 300.0, "deployments"),
        track_scheduler_commits=bool(section.get("track_scheduler_commits", False)),
    )


def _parse_webhook(data: dict[str, Any]) -> WebhookConfig:
    section = _section(data, "webhook")
    defaults = WebhookConfig()

    path = _optional_str(section, "path", "webhook") or defaults.path
    if not path.startswith("/"):
        raise ConfigError(f"Invalid webhook.path: {path!r}. Must start with '/'.")

    branch = _optional_str(section, "branch", "webhook") or defaults.branch
    if not branch.startswith("refs/"):
        branch = f"refs/heads/{branch}"

    raw_poll = section.get("poll_interval_s", 0)
    try:
        poll_interval_s = float(raw_poll)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid webhook.poll_interval_s: {raw_poll!r}") from exc
    if poll_interval_s < 0:
        raise ConfigError(f"Invalid webhook.poll_interval_s: {raw_poll!r}. Must be >= 0.")

    return WebhookConfig(
        enabled=bool(section.get("enabled", False)),
        host=_optional_str(section, "host", "webhook") or defaults.host,
        port=int(_positive_number(section, "port", defaults.port, "webhook")),
        path=path,
        branch=branch,
        secret=_optional_str(section, "secret", "webhook"),
        poll_interval_s=poll_interval_s,
    )


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(
        level=str(section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=_optional_str(section, "log_root", "logging"),
    )


def parse_config(data: dict[str, Any]) -> SitekeeperConfig:
    """Validate an already-parsed TOML mapping."""
    data = resolve_env_vars(data)
    github = _parse_github(data)
    audit = _section(data, "audit")
    notify = _section(data, "notify")
    return SitekeeperConfig(
        github=github,
        scheduler=_parse_scheduler(data),
        deployments=_parse_deployments(data, github),
        webhook=_parse_webhook(data),
        audit=AuditConfig(
            telegram_token=_optional_str(audit, "telegram_token", "audit"),
            channel_id=_optional_str(audit, "channel_id", "audit"),
        ),
        notify=NotifyConfig(
            telegram_token=_optional_str(notify, "telegram_token", "notify"),
            discord_token=_optional_str(notify, "discord_token", "notify"),
        ),
        logging=_parse_logging(data),
    )


def default_config_path() -> Path:
    env_path = os.environ.get(CONFIG_PATH_ENV)
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> SitekeeperConfig:
    """Load and validate ``sitekeeper.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    toml_path = Path(path) if path is not None else default_config_path()

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
