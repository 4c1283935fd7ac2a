"""
Core data types for the frontpage package.

This module defines the structures shared by the rule engine and the
update coordinator:
- Article: One content document as seen by the homepage
- EnforcedChange: Audit record of a flag cleared during enforcement
- ValidationReport: Outcome of one validation pass
- Selections: Per-section homepage picks plus the report
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import re
from typing import Any, Mapping

from .errors import MalformedArticleError


_SLUG_RE = re.compile(r"^[A-Za-z0-9_-]{1,200}$")


class MediaType(str, Enum):
    STANDARD = "standard"
    VIDEO = "video"


# The CMS stores standard articles as "article".
_MEDIA_TYPE_ALIASES = {
    "standard": MediaType.STANDARD,
    "article": MediaType.STANDARD,
    "video": MediaType.VIDEO,
}


@dataclass(frozen=True)
class Article:
    """A content document with its homepage placement flags.

    Attributes:
        id: Opaque unique identifier
        title: Display headline
        published_at: Publication timestamp, used for recency tie-breaks
        read_count: Non-negative view counter, proxy for trending
        media_type: Standard article or video report
        is_breaking_news: Candidate for the breaking news banner
        is_lead_story: Candidate for the top homepage slot
        is_featured: Tagged for the featured section
        is_latest_update: Tagged for the latest updates sidebar
        excerpt: Short summary (display only)
        author: Author name (display only)
        categories: Category titles (display only)
        slug: URL slug, None when missing or unsafe
    """

    id: str
    title: str
    published_at: datetime | None = None
    read_count: int = 0
    media_type: MediaType = MediaType.STANDARD
    is_breaking_news: bool = False
    is_lead_story: bool = False
    is_featured: bool = False
    is_latest_update: bool = False
    excerpt: str = ""
    author: str | None = None
    categories: tuple[str, ...] = ()
    slug: str | None = None

    def __post_init__(self):
        # naive timestamps are UTC
        if self.published_at is not None and self.published_at.tzinfo is None:
            object.__setattr__(self, "published_at", self.published_at.replace(tzinfo=timezone.utc))

    @property
    def is_video(self) -> bool:
        return self.media_type is MediaType.VIDEO

    @property
    def has_priority_flag(self) -> bool:
        """True for articles that occupy the banner or the lead slot."""
        return self.is_breaking_news or self.is_lead_story

    def is_untagged(self, trending_threshold: int = 100) -> bool:
        """True when the article belongs to no homepage section."""
        return (
            not self.is_breaking_news
            and not self.is_lead_story
            and not self.is_featured
            and not self.is_latest_update
            and not self.is_video
            and self.read_count <= trending_threshold
        )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Article":
        """Build an Article from a content API document.

        Accepts the camelCase keys used by the content API (``_id``,
        ``publishedAt``, ``readCount``, ``mediaType``, ``isLeadStory``...)
        as well as the snake_case attribute names.

        Raises:
            MalformedArticleError: If id or title is missing, or a rule
                field (timestamp, read count, media type, flag) cannot be read
        """
        if not isinstance(record, Mapping):
            raise MalformedArticleError(None, "record", f"expected a mapping, got {type(record).__name__}")

        article_id = _pick(record, "_id", "id")
        if article_id is None or str(article_id).strip() == "":
            raise MalformedArticleError(None, "id")
        article_id = str(article_id)

        title = _pick(record, "title")
        if not isinstance(title, str) or not title.strip():
            raise MalformedArticleError(article_id, "title")

        return cls(
            id=article_id,
            title=title,
            published_at=_parse_timestamp(article_id, _pick(record, "publishedAt", "published_at")),
            read_count=_parse_read_count(article_id, _pick(record, "readCount", "read_count")),
            media_type=_parse_media_type(article_id, _pick(record, "mediaType", "media_type")),
            is_breaking_news=_parse_flag(article_id, "isBreakingNews", _pick(record, "isBreakingNews", "is_breaking_news")),
            is_lead_story=_parse_flag(article_id, "isLeadStory", _pick(record, "isLeadStory", "is_lead_story")),
            is_featured=_parse_flag(article_id, "isFeatured", _pick(record, "isFeatured", "is_featured")),
            is_latest_update=_parse_flag(article_id, "isLatestUpdate", _pick(record, "isLatestUpdate", "is_latest_update")),
            excerpt=_pick(record, "excerpt") or "",
            author=_parse_author(_pick(record, "author")),
            categories=_parse_categories(_pick(record, "categories")),
            slug=validate_slug(_parse_slug(_pick(record, "slug"))),
        )


@dataclass(frozen=True)
class EnforcedChange:
    """One corrective action taken by the rule engine.

    Attributes:
        article_id: Article whose flag was cleared
        title: Its headline, for operator-facing messages
        flag: Attribute name of the cleared flag
        message: Human-readable description
    """

    article_id: str
    title: str
    flag: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationReport:
    """Result of validating one article list.

    Produced fresh on every call and never persisted. ``is_valid`` is
    False only when a hard rule (single breaking news, single lead story)
    was violated before enforcement; warnings never affect it.
    """

    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    enforced_changes: list[EnforcedChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "enforced_changes": [
                {"article_id": c.article_id, "flag": c.flag, "message": c.message}
                for c in self.enforced_changes
            ],
        }


@dataclass
class Selections:
    """Homepage section picks derived from an enforced article list."""

    breaking_news: Article | None = None
    lead_story: Article | None = None
    featured: list[Article] = field(default_factory=list)
    latest_updates: list[Article] = field(default_factory=list)
    videos: list[Article] = field(default_factory=list)
    trending: list[Article] = field(default_factory=list)
    report: ValidationReport = field(default_factory=ValidationReport)

    def to_dict(self) -> dict[str, Any]:
        """Section contents as article ids, plus the report."""
        return {
            "breaking_news": self.breaking_news.id if self.breaking_news else None,
            "lead_story": self.lead_story.id if self.lead_story else None,
            "featured": [a.id for a in self.featured],
            "latest_updates": [a.id for a in self.latest_updates],
            "videos": [a.id for a in self.videos],
            "trending": [a.id for a in self.trending],
            "report": self.report.to_dict(),
        }


def validate_slug(slug: str | None) -> str | None:
    """Return the slug if it is path-safe, otherwise None."""
    if not slug or not _SLUG_RE.match(slug):
        return None
    return slug


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _parse_timestamp(article_id: str, value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise MalformedArticleError(article_id, "publishedAt", f"unsupported type {type(value).__name__}")
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise MalformedArticleError(article_id, "publishedAt", str(exc)) from exc


def _parse_read_count(article_id: str, value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedArticleError(article_id, "readCount", f"not a number: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise MalformedArticleError(article_id, "readCount", f"not an integer: {value!r}")
    if value < 0:
        raise MalformedArticleError(article_id, "readCount", "negative")
    return int(value)


def _parse_flag(article_id: str, name: str, value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedArticleError(article_id, name, f"not a boolean: {value!r}")
    return value


def _parse_media_type(article_id: str, value: Any) -> MediaType:
    if value is None:
        return MediaType.STANDARD
    if isinstance(value, MediaType):
        return value
    media_type = _MEDIA_TYPE_ALIASES.get(str(value).lower())
    if media_type is None:
        raise MalformedArticleError(article_id, "mediaType", f"unknown value {value!r}")
    return media_type


def _parse_author(value: Any) -> str | None:
    if isinstance(value, Mapping):
        return value.get("name")
    return value


def _parse_categories(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    titles = []
    for item in value:
        if isinstance(item, Mapping):
            item = item.get("title")
        if item:
            titles.append(str(item))
    return tuple(titles)


def _parse_slug(value: Any) -> str | None:
    if isinstance(value, Mapping):
        return value.get("current")
    return value
