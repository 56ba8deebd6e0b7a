"""
Pipeline configuration.

Values come from the dataclass defaults, then ``curator/config/pipeline.yaml``
(or a file passed explicitly), then environment variables.
"""

import os
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from curator.models.content import FeedConfig


logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "pipeline.yaml"
DEFAULT_FEEDS_PATH = CONFIG_DIR / "feeds.yaml"

ENV_OVERRIDES: Dict[str, str] = {
    "GEMINI_API_KEY": "gemini_api_key",
    "GEMINI_MODEL": "gemini_model",
    "CURATOR_MAX_ARTICLES": "max_articles",
    "CURATOR_MIN_INTERVAL": "min_interval",
    "CURATOR_STRICT_MODE": "strict_mode",
    "CURATOR_VALIDATE_URLS": "validate_urls",
    "CURATOR_ENHANCE_CONTENT": "enhance_content",
    "LOG_LEVEL": "log_level",
    "LOG_DIR": "log_dir",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised when a configuration file cannot be used"""
    pass


@dataclass
class PipelineConfig:
    """Pipeline configuration"""
    # Backend
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    max_retries: int = 3
    retry_base_delay: float = 2.0

    # Sources
    feeds_path: str = str(DEFAULT_FEEDS_PATH)
    authority_path: Optional[str] = None
    max_articles_per_feed: int = 25
    max_concurrent_feeds: int = 10
    min_articles_for_window: int = 10

    # Filtering and scoring
    validate_urls: bool = False
    url_timeout: float = 5.0
    strict_freshness: bool = False
    min_freshness_score: float = 20.0

    # Selection
    max_articles: int = 10
    target_articles: int = 7
    minimum_articles: int = 4

    # Enhancement
    enhance_content: bool = True
    enhance_max_articles: int = 20

    # Scheduling
    min_interval: float = 10.0
    max_queue_size: int = 20
    request_timeout: float = 90.0
    rate_limit_requests: int = 1
    rate_limit_window: float = 30.0

    # Validation
    strict_mode: bool = False
    min_alignment: float = 0.3

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    extra: Dict[str, Any] = field(default_factory=dict)


def _coerce(name: str, value: Any, default: Any) -> Any:
    if value is None:
        return None
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigError(f"Invalid boolean for {name}: {value!r}")
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found at {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """
    Build a PipelineConfig.

    A missing or unreadable default file falls back to built-in defaults; an
    explicitly requested file that cannot be read raises ConfigError.
    """
    config = PipelineConfig()
    defaults = {f.name: getattr(config, f.name) for f in fields(config) if f.name != "extra"}
    env = os.environ if env is None else env

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    try:
        data = _read_yaml(config_path) or {}
    except ConfigError as e:
        if path:
            raise
        logger.warning(f"Using default pipeline config: {e}")
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {config_path}, got {type(data).__name__}")

    for key, value in data.items():
        if key in defaults:
            setattr(config, key, _coerce(key, value, defaults[key]))
        else:
            config.extra[key] = value
    if config.extra:
        logger.debug(f"Unrecognized config keys kept in extra: {sorted(config.extra)}")

    for env_name, attr in ENV_OVERRIDES.items():
        raw = env.get(env_name)
        if raw is not None and raw != "":
            setattr(config, attr, _coerce(env_name, raw, defaults[attr]))

    if config.minimum_articles > config.target_articles:
        raise ConfigError("minimum_articles cannot exceed target_articles")
    return config


def load_feed_configs(path: Optional[str] = None) -> List[FeedConfig]:
    """Read feed descriptors; entries without id, name or url are skipped."""
    feeds_path = Path(path) if path else DEFAULT_FEEDS_PATH
    data = _read_yaml(feeds_path)
    entries = data.get("feeds", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ConfigError(f"Expected a list of feeds in {feeds_path}")

    feeds: List[FeedConfig] = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict) or not all(entry.get(k) for k in ("id", "name", "url")):
            logger.warning(f"Skipping malformed feed entry in {feeds_path}: {entry!r}")
            continue
        feed_id = str(entry["id"])
        if feed_id in seen:
            logger.warning(f"Skipping duplicate feed id: {feed_id}")
            continue
        seen.add(feed_id)
        feeds.append(FeedConfig(
            id=feed_id,
            name=str(entry["name"]),
            url=str(entry["url"]),
            category=str(entry.get("category") or "technology"),
            enabled=bool(entry.get("enabled", True)),
            priority=int(entry.get("priority", 1)),
        ))

    logger.info(f"📋 Loaded {len(feeds)} feeds from {feeds_path.name}")
    return feeds
