"""Unified configuration loaded from .letterbox.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".letterbox.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "letterbox" / "config.toml"


class StorageConfig(BaseModel):
    """[storage] section."""

    directory: str = "./letterbox-data"


class PollerConfig(BaseModel):
    """[poller] section."""

    interval_minutes: int = 30
    page_size: int = 50
    batch_width: int = 5
    backoff_base_minutes: int = 5
    backoff_factor: int = 3
    backoff_cap_minutes: int = 24 * 60

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.interval_minutes)


class FetchConfig(BaseModel):
    """[fetch] section."""

    timeout: float = 10.0
    max_redirects: int = 5
    user_agent: str = "Letterbox/1.0 (RSS Reader)"


class DedupConfig(BaseModel):
    """[dedup] section: near-duplicate recency windows per channel."""

    feed_window_days: int = 7
    email_window_hours: int = 24

    @property
    def feed_window(self) -> timedelta:
        return timedelta(days=self.feed_window_days)

    @property
    def email_window(self) -> timedelta:
        return timedelta(hours=self.email_window_hours)


class ValidatorConfig(BaseModel):
    """[validator] section."""

    min_confidence: int = 70
    rate_limit: int = 10
    rate_window_seconds: int = 60
    trusted_domains: list[str] = Field(default_factory=list)


class EmailConfig(BaseModel):
    """[email] section."""

    forwarding_domain: str = "newsletters.app"


class NotificationConfig(BaseModel):
    """[notifications] section."""

    slack_webhook: str = ""
    ntfy_url: str = ""
    ntfy_topic: str = "letterbox"
    enabled: bool = True

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.slack_webhook or self.ntfy_url)


class LoggingConfig(BaseModel):
    """[logging] section."""

    level: str = "INFO"


class LetterboxConfig(BaseModel):
    """Top-level configuration model."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path | None = None) -> LetterboxConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .letterbox.toml in CWD
    3. ~/.config/letterbox/config.toml

    Then overlay environment variables.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged LetterboxConfig.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG_PATH.exists():
            data = _load_toml(GLOBAL_CONFIG_PATH)
            logger.info("Loaded config from %s", GLOBAL_CONFIG_PATH)

    config = LetterboxConfig.model_validate(data) if data else LetterboxConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: LetterboxConfig, **cli_kwargs: object) -> LetterboxConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).

    Args:
        config: Base config.
        **cli_kwargs: CLI flag values, e.g. ``storage_directory``,
            ``poll_interval``, ``log_level``.

    Returns:
        Updated config with CLI overrides applied.
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "storage_directory": ("storage", "directory"),
        "poll_interval": ("poller", "interval_minutes"),
        "batch_width": ("poller", "batch_width"),
        "page_size": ("poller", "page_size"),
        "fetch_timeout": ("fetch", "timeout"),
        "forwarding_domain": ("email", "forwarding_domain"),
        "log_level": ("logging", "level"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = value

    return LetterboxConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: LetterboxConfig) -> LetterboxConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "LETTERBOX_STORAGE_DIR": ("storage", "directory"),
        "LETTERBOX_POLL_INTERVAL": ("poller", "interval_minutes"),
        "LETTERBOX_MAX_CONCURRENT": ("poller", "batch_width"),
        "LETTERBOX_PAGE_SIZE": ("poller", "page_size"),
        "LETTERBOX_FETCH_TIMEOUT": ("fetch", "timeout"),
        "LETTERBOX_FORWARDING_DOMAIN": ("email", "forwarding_domain"),
        "LETTERBOX_SLACK_WEBHOOK": ("notifications", "slack_webhook"),
        "LETTERBOX_NTFY_URL": ("notifications", "ntfy_url"),
        "LETTERBOX_NTFY_TOPIC": ("notifications", "ntfy_topic"),
        "LETTERBOX_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    enabled_raw = os.environ.get("LETTERBOX_NOTIFICATIONS_ENABLED")
    if enabled_raw is not None:
        data["notifications"]["enabled"] = enabled_raw.lower() in ("true", "1", "yes")

    return LetterboxConfig.model_validate(data)
