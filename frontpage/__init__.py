"""
Frontpage - homepage placement rules and live content updates.

This package keeps a newspaper homepage consistent: it enforces the
single lead story / single breaking news invariants on article lists
and keeps subscribers supplied with fresh lists through a live
subscription with polling fallback.

Main entry point is the CLI via `frontpage check` / `frontpage watch`.

Example:
    $ frontpage check -i articles.json
"""

__all__ = [
    "__version__",
    "Article",
    "ValidationReport",
    "Selections",
    "validate_and_enforce",
    "select_homepage_sections",
    "UpdateCoordinator",
    "ContentContext",
]
__version__ = "0.1.0"

from .context import ContentContext
from .core.rules import select_homepage_sections, validate_and_enforce
from .core.types import Article, Selections, ValidationReport
from .live.coordinator import UpdateCoordinator
