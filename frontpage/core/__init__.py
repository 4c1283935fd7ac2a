"""
Core domain models and business logic.

This package contains the article types, the homepage placement rules
and the session variants. Nothing here performs I/O.
"""

from .errors import (
    ContentAPIError,
    FetchFailure,
    FrontpageError,
    MalformedArticleError,
    PersistentFetchFailure,
    SubscriptionFailure,
)
from .rules import coerce_articles, select_homepage_sections, validate_and_enforce
from .session import Anonymous, Authenticated, Session, is_admin, poll_interval_for
from .types import Article, EnforcedChange, MediaType, Selections, ValidationReport

__all__ = [
    "Article",
    "MediaType",
    "EnforcedChange",
    "ValidationReport",
    "Selections",
    "coerce_articles",
    "validate_and_enforce",
    "select_homepage_sections",
    "Authenticated",
    "Anonymous",
    "Session",
    "is_admin",
    "poll_interval_for",
    "FrontpageError",
    "MalformedArticleError",
    "ContentAPIError",
    "FetchFailure",
    "SubscriptionFailure",
    "PersistentFetchFailure",
]
