from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

CONFIG_FILE = Path("feedpipe_config.json")

REQUIRED_ENV_VARS = [
    "GEMINI_API_KEY",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "database_path": "feedpipe.db",
    "screenshot_root": "public",
    "reasoning_model": "gemini-2.0-flash",
    "max_attempts": 3,
    "base_delay": 5.0,
    "rate_limit_delay": 60.0,
    "inter_item_delay": 5.0,
    "transcript_languages": ["ko", "en"],
    "stuck_after_minutes": 30,
    "metrics_days": 7,
    "metrics_platforms": ["x", "threads", "reddit", "youtube"],
    "metrics_collect_delay": 0.5,
    "metrics_collect_times": ["08:00", "14:00", "20:00"],
    "auto_publish_min_score": 7,
    "schedule_interval_minutes": 60,
    "api_host": "127.0.0.1",
    "api_port": 5001,
}


@dataclass
class Settings:
    """Holds all pipeline configuration loaded from environment variables and config file."""

    gemini_api_key: str
    youtube_api_key: str | None = None
    database_path: str = "feedpipe.db"
    screenshot_root: str = "public"
    reasoning_model: str = "gemini-2.0-flash"
    max_attempts: int = 3
    base_delay: float = 5.0
    rate_limit_delay: float = 60.0
    inter_item_delay: float = 5.0
    transcript_languages: list[str] = field(default_factory=lambda: ["ko", "en"])
    stuck_after_minutes: int = 30
    metrics_days: int = 7
    metrics_platforms: list[str] = field(default_factory=list)
    metrics_collect_delay: float = 0.5
    metrics_collect_times: list[str] = field(default_factory=list)
    auto_publish_min_score: int = 7
    schedule_interval_minutes: int = 60
    api_host: str = "127.0.0.1"
    api_port: int = 5001


def _config_path() -> Path:
    return Path(os.getenv("FEEDPIPE_CONFIG", str(CONFIG_FILE)))


def _load_config_file(path: Path | None = None) -> dict[str, Any]:
    """``DEFAULT_CONFIG`` overlaid with the JSON file at *path*, if present."""
    path = path or _config_path()
    if not path.exists():
        return dict(DEFAULT_CONFIG)

    with open(path, encoding="utf-8") as f:
        try:
            overrides = json.load(f)
        except json.JSONDecodeError as exc:
            raise EnvironmentError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(overrides, dict):
        raise EnvironmentError(f"{path} must contain a JSON object")

    unknown = sorted(set(overrides) - set(DEFAULT_CONFIG))
    if unknown:
        logger.warning("Ignoring unknown keys in %s: %s", path, ", ".join(unknown))
    return {**DEFAULT_CONFIG, **{k: v for k, v in overrides.items() if k in DEFAULT_CONFIG}}


def _require_env() -> dict[str, str]:
    values = {name: os.getenv(name, "").strip() for name in REQUIRED_ENV_VARS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Set them in .env or the process environment."
        )
    return values


def load_settings() -> Settings:
    env_values = _require_env()
    config = _load_config_file()

    return Settings(
        gemini_api_key=env_values["GEMINI_API_KEY"],
        youtube_api_key=os.getenv("YOUTUBE_API_KEY") or None,
        database_path=os.getenv("FEEDPIPE_DB", config["database_path"]),
        screenshot_root=config["screenshot_root"],
        reasoning_model=config["reasoning_model"],
        max_attempts=int(config["max_attempts"]),
        base_delay=float(config["base_delay"]),
        rate_limit_delay=float(config["rate_limit_delay"]),
        inter_item_delay=float(config["inter_item_delay"]),
        transcript_languages=list(config["transcript_languages"]),
        stuck_after_minutes=int(config["stuck_after_minutes"]),
        metrics_days=int(config["metrics_days"]),
        metrics_platforms=list(config["metrics_platforms"]),
        metrics_collect_delay=float(config["metrics_collect_delay"]),
        metrics_collect_times=list(config["metrics_collect_times"]),
        auto_publish_min_score=int(config["auto_publish_min_score"]),
        schedule_interval_minutes=int(config["schedule_interval_minutes"]),
        api_host=config["api_host"],
        api_port=int(config["api_port"]),
    )
