"""
Homepage placement rules.

Enforces the slot invariants on an article list before it is rendered:
1. At most one breaking news story (most recent wins)
2. At most one lead story (most recent wins)

and derives the homepage sections from the enforced list. Violations of
the two hard rules are corrected in memory and reported; nothing here
writes back to the content store or raises for a business-rule problem.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping

from ..config import RulesConfig
from .errors import MalformedArticleError
from .types import Article, EnforcedChange, Selections, ValidationReport


# flag attribute -> (label used in errors, label used in change messages)
_UNIQUE_FLAGS = (
    ("is_breaking_news", "breaking news stories", "breaking news"),
    ("is_lead_story", "lead stories", "lead story"),
)


def coerce_articles(items: Iterable[Article | Mapping[str, Any]]) -> list[Article]:
    """Turn raw content records into Articles, passing Articles through.

    Raises:
        MalformedArticleError: If a record lacks a required field
    """
    articles: list[Article] = []
    for item in items:
        if isinstance(item, Article):
            articles.append(item)
        else:
            articles.append(Article.from_record(item))
    return articles


def validate_and_enforce(
    articles: Iterable[Article | Mapping[str, Any]],
    cfg: RulesConfig | None = None,
) -> tuple[list[Article], ValidationReport]:
    """Validate placement flags and clear the ones that break uniqueness.

    For each unique flag, when several articles carry it the flag is kept
    on the most recently published one and cleared on the others. Ties on
    ``published_at`` go to the smallest id. The returned list has the same
    order and ids as the input; articles whose flag was cleared are new
    copies, input objects are never modified.

    Args:
        articles: Articles or raw content records
        cfg: Section caps used for the soft warnings

    Returns:
        Tuple of (enforced article list, validation report)

    Raises:
        MalformedArticleError: If a record is unusable, or a flag conflict
            needs a recency decision and a conflicting article has no
            ``published_at``
    """
    cfg = cfg or RulesConfig()
    enforced = coerce_articles(articles)
    report = ValidationReport()

    for flag, plural, label in _UNIQUE_FLAGS:
        _enforce_unique(enforced, flag, plural, label, report)

    report.warnings.extend(_soft_warnings(enforced, cfg))
    report.is_valid = not report.errors
    return enforced, report


def select_homepage_sections(
    articles: Iterable[Article | Mapping[str, Any]],
    cfg: RulesConfig | None = None,
) -> Selections:
    """Pick the articles for every homepage section.

    Sections come straight from the enforced list; an empty section stays
    empty. Only tagged articles are returned: untagged ones are reachable
    by direct link but never placed.
    """
    cfg = cfg or RulesConfig()
    enforced, report = validate_and_enforce(articles, cfg)

    breaking = next((a for a in enforced if a.is_breaking_news), None)
    lead = next((a for a in enforced if a.is_lead_story), None)
    featured = [a for a in enforced if a.is_featured and not a.is_lead_story][: cfg.featured_limit]
    latest = [a for a in enforced if a.is_latest_update][: cfg.latest_limit]
    videos = [a for a in enforced if a.is_video][: cfg.video_limit]
    # sorted() is stable, so equal read counts keep their input order
    trending = sorted(
        (a for a in enforced if a.read_count > cfg.trending_threshold),
        key=lambda a: a.read_count,
        reverse=True,
    )[: cfg.trending_limit]

    return Selections(
        breaking_news=breaking,
        lead_story=lead,
        featured=featured,
        latest_updates=latest,
        videos=videos,
        trending=trending,
        report=report,
    )


def _enforce_unique(
    articles: list[Article],
    flag: str,
    plural: str,
    label: str,
    report: ValidationReport,
) -> None:
    flagged = [(i, a) for i, a in enumerate(articles) if getattr(a, flag)]
    if len(flagged) <= 1:
        return

    report.errors.append(f"RULE VIOLATION: {len(flagged)} {plural} found. Only 1 allowed.")

    for _, article in flagged:
        if article.published_at is None:
            raise MalformedArticleError(article.id, "publishedAt", f"needed to resolve {len(flagged)} {plural}")

    # Latest timestamp first; equal timestamps fall back to ascending id.
    ranked = sorted(flagged, key=lambda pair: pair[1].id)
    ranked.sort(key=lambda pair: pair[1].published_at, reverse=True)
    winner_index = ranked[0][0]

    for index, article in flagged:
        if index == winner_index:
            continue
        articles[index] = replace(article, **{flag: False})
        report.enforced_changes.append(
            EnforcedChange(
                article_id=article.id,
                title=article.title,
                flag=flag,
                message=f'Removed {label} flag from "{article.title}"',
            )
        )


def _soft_warnings(articles: list[Article], cfg: RulesConfig) -> list[str]:
    warnings: list[str] = []

    lead = next((a for a in articles if a.is_lead_story), None)
    if lead is not None and lead.is_featured:
        warnings.append(
            f'Lead story "{lead.title}" is also marked as featured. '
            "It is left out of the featured section."
        )

    both = next((a for a in articles if a.is_breaking_news and a.is_lead_story), None)
    if both is not None:
        warnings.append(
            f'Article "{both.title}" is both breaking news and lead story. '
            "Consider using separate articles."
        )

    featured_count = sum(1 for a in articles if a.is_featured and not a.is_lead_story)
    if featured_count > cfg.featured_limit:
        warnings.append(
            f"{featured_count} featured articles found. Only first {cfg.featured_limit} will be displayed."
        )

    latest_count = sum(1 for a in articles if a.is_latest_update)
    if latest_count > cfg.latest_limit:
        warnings.append(
            f"{latest_count} latest update articles found. Only first {cfg.latest_limit} will be displayed."
        )

    untagged = sum(1 for a in articles if a.is_untagged(cfg.trending_threshold))
    if untagged:
        warnings.append(
            f"{untagged} articles have no homepage section tags and will not appear on homepage."
        )

    return warnings
