"""
Exception taxonomy for the frontpage core.

Rule violations are never raised: they are reported in-band through
ValidationReport. The classes here cover the remaining cases:
- MalformedArticleError: raised by the rule engine for unusable input
- ContentAPIError: raised by the content API client on transport failures
- FetchFailure, SubscriptionFailure, PersistentFetchFailure: passed to the
  update coordinator's on_error callback, never raised out of it
"""

from __future__ import annotations


class FrontpageError(Exception):
    """Base class for all frontpage errors."""


class MalformedArticleError(FrontpageError):
    """An article record lacks a field the rule engine needs.

    Attributes:
        article_id: Identifier of the offending record, if it had one
        field: Name of the missing or invalid field
    """

    def __init__(self, article_id: str | None, field: str, detail: str | None = None):
        self.article_id = article_id
        self.field = field
        message = f"Article {article_id or '<unknown>'} has missing or invalid '{field}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ContentAPIError(FrontpageError):
    """The content API returned an error or an unreadable response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class FetchFailure(FrontpageError):
    """A fetch attempt failed. Transient: polling continues."""

    def __init__(self, cause: BaseException, forced: bool = True):
        self.cause = cause
        self.forced = forced
        super().__init__(f"Fetch failed: {type(cause).__name__}: {cause}")


class SubscriptionFailure(FrontpageError):
    """The live channel could not be established or broke down.

    Reported once; the coordinator falls back to polling and does not
    retry the subscription.
    """

    def __init__(self, cause: BaseException | None = None, message: str | None = None):
        self.cause = cause
        if message is None:
            message = "Live subscription failed"
            if cause is not None:
                message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)


class PersistentFetchFailure(FrontpageError):
    """Circuit-open signal after too many consecutive poll failures."""

    def __init__(self, consecutive_failures: int, last_cause: BaseException | None = None):
        self.consecutive_failures = consecutive_failures
        self.last_cause = last_cause
        super().__init__(f"{consecutive_failures} consecutive fetch failures; content source looks offline")
