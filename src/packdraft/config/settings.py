"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        game: dict[str, Any] | None = None,
        resolution: dict[str, Any] | None = None,
        polymarket: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.game = game or {}
        self.resolution = resolution or {}
        self.polymarket = polymarket or {}
        self.api = api or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            game=raw.get("game"),
            resolution=raw.get("resolution"),
            polymarket=raw.get("polymarket"),
            api=raw.get("api"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/packdraft.duckdb")

    @property
    def cards_per_pack(self) -> int:
        return int(self.game.get("cards_per_pack", 5))

    @property
    def weekly_pack_limit(self) -> int:
        return int(self.game.get("weekly_pack_limit", 5))

    @property
    def premium_pack_price(self) -> float:
        return float(self.game.get("premium_pack_price", 0.1))

    @property
    def resolution_batch_size(self) -> int:
        return int(self.resolution.get("batch_size", 20))

    @property
    def resolution_concurrency(self) -> int:
        return int(self.resolution.get("concurrency", 5))

    @property
    def poll_timeout_sec(self) -> float:
        return float(self.resolution.get("poll_timeout_sec", 15.0))

    @property
    def base_backoff_minutes(self) -> int:
        return int(self.resolution.get("base_backoff_minutes", 60))

    @property
    def max_backoff_minutes(self) -> int:
        return int(self.resolution.get("max_backoff_minutes", 24 * 60))

    @property
    def claim_lease_sec(self) -> int:
        return int(self.resolution.get("claim_lease_sec", 300))

    @property
    def sweep_interval_sec(self) -> float:
        return float(self.resolution.get("sweep_interval_sec", 300))

    @property
    def gamma_api_base(self) -> str:
        return self.polymarket.get("gamma_api_base", "https://gamma-api.polymarket.com")

    @property
    def clob_api_base(self) -> str:
        return self.polymarket.get("clob_api_base", "https://clob.polymarket.com")

    @property
    def venue_timeout_sec(self) -> float:
        return float(self.polymarket.get("request_timeout_sec", 10.0))

    @property
    def venue_requests_per_sec(self) -> float:
        return float(self.polymarket.get("requests_per_sec", 10.0))

    @property
    def cron_secret(self) -> str:
        return self.api.get("cron_secret", "") or ""

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
