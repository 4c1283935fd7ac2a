"""
Application-owned content context.

A ContentContext is built once by the application and handed to whatever
needs homepage content. It owns the content API client and the update
coordinator; init() and dispose() are explicit, nothing is started on
import.

Example:
    async with ContentContext(cfg, session=Anonymous()) as ctx:
        await ctx.watch(render)
        ...
"""

from __future__ import annotations

import logging
from typing import Callable

from .config import AppConfig, get_sanity_token
from .core.errors import MalformedArticleError
from .core.rules import select_homepage_sections
from .core.session import Anonymous, Session, poll_interval_for
from .core.types import Selections
from .live.coordinator import FetchFn, SubscribeFn, UpdateCoordinator
from .logging_utils import log_event, log_validation_report
from .sanity.client import SanityClient


SelectionsCallback = Callable[[Selections], None]
ErrorCallback = Callable[[BaseException], None]


class ContentContext:
    """Owns the content client and the live homepage feed.

    Collaborators can be injected (tests, alternative backends); when
    they are not, init() builds a SanityClient from the config.
    """

    def __init__(
        self,
        cfg: AppConfig | None = None,
        session: Session | None = None,
        fetch: FetchFn | None = None,
        subscribe: SubscribeFn | None = None,
        logger: logging.Logger | None = None,
    ):
        self.cfg = cfg or AppConfig()
        self.session = session if session is not None else Anonymous()
        self._fetch = fetch
        self._subscribe = subscribe
        self._logger = logger or logging.getLogger("frontpage")
        self._client: SanityClient | None = None
        self._coordinator: UpdateCoordinator | None = None
        self._initialized = False

    @property
    def coordinator(self) -> UpdateCoordinator | None:
        return self._coordinator

    async def init(self) -> None:
        if self._initialized:
            return
        if self._fetch is None:
            self._client = SanityClient(
                self.cfg.sanity,
                token=get_sanity_token(self.cfg.sanity),
                logger=self._logger.getChild("sanity"),
            )
            self._fetch = self._client.fetch
            if self._subscribe is None:
                self._subscribe = self._client.subscribe
        self._initialized = True
        log_event(
            self._logger,
            "Content context ready",
            event="context_init",
            project_id=self.cfg.sanity.project_id,
            dataset=self.cfg.sanity.dataset,
            session=type(self.session).__name__,
        )

    async def snapshot(self) -> Selections:
        """Fetch once and return the homepage selections."""
        self._require_init()
        articles = await self._fetch(self.cfg.sanity.articles_query, {})
        selections = select_homepage_sections(articles, self.cfg.rules)
        log_validation_report(self._logger, selections.report)
        return selections

    async def watch(
        self,
        on_selections: SelectionsCallback,
        on_error: ErrorCallback | None = None,
    ) -> UpdateCoordinator:
        """Start delivering fresh homepage selections.

        Malformed content is passed to on_error rather than dropped. A
        second call while a feed is running returns the running coordinator.
        """
        self._require_init()
        if self._coordinator is not None and self._coordinator.is_active:
            return self._coordinator

        def handle_data(articles) -> None:
            try:
                selections = select_homepage_sections(articles, self.cfg.rules)
            except MalformedArticleError as exc:
                handle_error(exc)
                return
            log_validation_report(self._logger, selections.report)
            on_selections(selections)

        def handle_error(exc: BaseException) -> None:
            self._logger.warning("Homepage feed error: %s", exc)
            if on_error is not None:
                on_error(exc)

        self._coordinator = UpdateCoordinator(
            self._fetch,
            self._subscribe if self.cfg.updates.use_live else None,
            query=self.cfg.sanity.articles_query,
            cfg=self.cfg.updates,
            poll_interval=poll_interval_for(self.session, self.cfg.updates),
            logger=self._logger.getChild("live"),
        )
        await self._coordinator.start(handle_data, handle_error)
        return self._coordinator

    async def dispose(self) -> None:
        if self._coordinator is not None:
            await self._coordinator.aclose()
            self._coordinator = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._fetch = None
            self._subscribe = None
        if self._initialized:
            log_event(self._logger, "Content context disposed", event="context_dispose")
        self._initialized = False

    async def __aenter__(self) -> "ContentContext":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    def _require_init(self) -> None:
        if not self._initialized:
            raise RuntimeError("ContentContext.init() must be awaited first")
