"""
Configuration management for the task auction service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import yaml
from pydantic import BaseModel, ConfigDict, model_validator

REDACTION_MARKER = "***REDACTED***"


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity provider connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_path: str
    timeout_seconds: int


class EventsConfig(BaseModel):
    """Notification channel configuration. No webhook means log-only delivery."""

    model_config = ConfigDict(extra="forbid")
    webhook_url: str | None
    timeout_seconds: int


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class AuctionConfig(BaseModel):
    """Budget, deadline and paging policy."""

    model_config = ConfigDict(extra="forbid")
    budget_min: float
    budget_max: float
    max_deadline_days: int
    bid_edit_window_days: int
    default_page_size: int
    max_page_size: int

    @model_validator(mode="after")
    def _check_bounds(self) -> AuctionConfig:
        if self.budget_min > self.budget_max:
            msg = "auction.budget_min must not exceed auction.budget_max"
            raise ValueError(msg)
        if self.default_page_size > self.max_page_size:
            msg = "auction.default_page_size must not exceed auction.max_page_size"
            raise ValueError(msg)
        return self


class LimitsConfig(BaseModel):
    """Per-user admission limits."""

    model_config = ConfigDict(extra="forbid")
    max_pending_bids_per_user: int
    window_seconds: int
    max_tasks_per_window: int
    max_bids_per_window: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    events: EventsConfig
    request: RequestConfig
    auction: AuctionConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH or the working directory."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the YAML config file."""
    config_path = get_config_path()
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password is None and parts.username is None:
        return url
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{REDACTION_MARKER}@{host}", parts.path, parts.query, ""))


def get_safe_config() -> dict[str, Any]:
    """Get configuration with credentials in URLs redacted."""
    data = get_settings().model_dump()
    data["identity"]["base_url"] = _redact_url(data["identity"]["base_url"])
    if data["events"]["webhook_url"] is not None:
        data["events"]["webhook_url"] = _redact_url(data["events"]["webhook_url"])
    return data
