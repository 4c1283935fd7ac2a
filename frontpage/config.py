"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- SanityConfig: Content API connection settings
- UpdatesConfig: Live subscription and polling behaviour
- RulesConfig: Homepage section caps and trending threshold
- LoggingConfig: Logging behavior
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml


DEFAULT_ARTICLES_QUERY = (
    '*[_type == "article"] | order(publishedAt desc) {'
    "_id, title, slug, publishedAt, excerpt, readCount, mediaType, "
    "isBreakingNews, isLeadStory, isFeatured, isLatestUpdate, "
    '"author": author->{name}, "categories": categories[]->{title}'
    "}"
)


@dataclass
class SanityConfig:
    """Configuration for the document content API.

    Attributes:
        project_id: Project identifier, used as the API subdomain
        dataset: Dataset name (e.g., "production")
        api_version: Dated API version string
        use_cdn: Read through the API CDN; off so edits show up immediately
        token: Optional inline read token (overrides env var)
        token_env: Environment variable holding a read-only token
        timeout_seconds: HTTP request timeout
        trust_env: Whether to respect system proxy settings
        user_agent: HTTP User-Agent header string
        articles_query: GROQ query returning the homepage article list
    """

    project_id: str = "tvi7xjbr"
    dataset: str = "production"
    api_version: str = "2023-05-03"
    use_cdn: bool = False
    token: str | None = None
    token_env: str = "SANITY_READ_TOKEN"
    timeout_seconds: float = 20.0
    trust_env: bool = True
    user_agent: str = "frontpage/0.1"
    articles_query: str = DEFAULT_ARTICLES_QUERY


@dataclass
class UpdatesConfig:
    """Configuration for the live/polling update coordinator.

    Attributes:
        use_live: Try a push subscription before falling back to polling
        poll_interval_seconds: Poll interval for read-only sessions
        admin_poll_interval_seconds: Poll interval for editorial sessions
        amplify_delay_seconds: Delay of the extra refresh after a lead/breaking delivery
        amplify_debounce_seconds: Minimum gap since the last forced refresh for that extra refresh
        backoff_max_seconds: Ceiling for the failure backoff delay
        jitter_ratio: Random jitter added to backoff delays, as a fraction of the delay
        failure_threshold: Consecutive failures before the persistent-failure signal
    """

    use_live: bool = True
    poll_interval_seconds: float = 15.0
    admin_poll_interval_seconds: float = 10.0
    amplify_delay_seconds: float = 0.15
    amplify_debounce_seconds: float = 5.0
    backoff_max_seconds: float = 120.0
    jitter_ratio: float = 0.1
    failure_threshold: int = 5


@dataclass
class RulesConfig:
    """Configuration for homepage section selection.

    Attributes:
        featured_limit: Maximum featured stories displayed
        latest_limit: Maximum latest updates displayed
        video_limit: Maximum video reports displayed
        trending_limit: Maximum trending stories displayed
        trending_threshold: Read count an article must exceed to trend
    """

    featured_limit: int = 3
    latest_limit: int = 5
    video_limit: int = 4
    trending_limit: int = 5
    trending_threshold: int = 100


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "frontpage.jsonl"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    sanity: SanityConfig = field(default_factory=SanityConfig)
    updates: UpdatesConfig = field(default_factory=UpdatesConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(
        sanity=SanityConfig(**data["sanity"]),
        updates=UpdatesConfig(**data["updates"]),
        rules=RulesConfig(**data["rules"]),
        logging=LoggingConfig(**data["logging"]),
    )


def get_sanity_token(cfg: SanityConfig) -> str | None:
    """Get the API token from inline config or environment variable."""
    if cfg.token:
        return cfg.token
    return os.getenv(cfg.token_env)
