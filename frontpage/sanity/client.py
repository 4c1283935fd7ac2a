"""
Content API client for a Sanity-style document store.

Provides the two collaborators the update coordinator needs:
1. fetch: GROQ query over HTTP, returning parsed Articles
2. subscribe: server-sent event stream from the listen endpoint,
   turned into ChangeSignal notifications

Both use a shared httpx.AsyncClient; the client owns it unless one is
passed in.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import Any, AsyncIterator, Callable, Iterable, Iterator

import httpx

from ..config import SanityConfig
from ..core.errors import ContentAPIError, SubscriptionFailure
from ..core.rules import coerce_articles
from ..core.types import Article
from ..live.coordinator import ChangeSignal


@dataclass
class SSEDecoder:
    """Incremental decoder for a text/event-stream body.

    Feed it one line at a time (without the newline); it returns an
    (event, data) pair whenever a blank line completes an event. JSON
    payloads are decoded, anything else is returned as text.
    """

    event: str = "message"
    data_lines: list[str] = field(default_factory=list)

    def feed(self, line: str) -> tuple[str, Any] | None:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self.event = value
        elif name == "data":
            self.data_lines.append(value)
        return None

    def _dispatch(self) -> tuple[str, Any] | None:
        if not self.data_lines and self.event == "message":
            return None
        raw = "\n".join(self.data_lines)
        event = self.event
        self.event = "message"
        self.data_lines = []
        try:
            data = json.loads(raw) if raw else None
        except ValueError:
            data = raw
        return event, data


def parse_sse_lines(lines: Iterable[str]) -> Iterator[tuple[str, Any]]:
    decoder = SSEDecoder()
    for line in lines:
        item = decoder.feed(line)
        if item is not None:
            yield item
    item = decoder.feed("")
    if item is not None:
        yield item


async def aparse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, Any]]:
    decoder = SSEDecoder()
    async for line in lines:
        item = decoder.feed(line)
        if item is not None:
            yield item


class ListenSubscription:
    """Handle for a running listen stream."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def closed(self) -> bool:
        return self._task.done()

    def unsubscribe(self) -> None:
        if not self._task.done():
            self._task.cancel()


class SanityClient:
    """Read-only client for the content API.

    Attributes:
        cfg: Connection settings
        base_url: Versioned API root for the configured project
    """

    def __init__(
        self,
        cfg: SanityConfig,
        token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.cfg = cfg
        self._token = token
        self._logger = logger or logging.getLogger(__name__)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=cfg.timeout_seconds,
            trust_env=cfg.trust_env,
            headers={"User-Agent": cfg.user_agent},
        )
        if token and self._logger.isEnabledFor(logging.DEBUG):
            self._logger.warning("Content API token configured; it must be a read-only token")

    @property
    def base_url(self) -> str:
        host = "apicdn" if self.cfg.use_cdn else "api"
        return f"https://{self.cfg.project_id}.{host}.sanity.io/v{self.cfg.api_version}"

    def build_params(self, query: str, params: dict[str, Any] | None = None) -> dict[str, str]:
        """Encode a GROQ query and its parameters as URL query arguments.

        Parameters are JSON-encoded under ``$name`` keys, which is how the
        query endpoint receives them.
        """
        encoded = {"query": query}
        for key, value in (params or {}).items():
            encoded[f"${key}"] = json.dumps(value)
        return encoded

    def _headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def fetch(self, query: str, params: dict[str, Any] | None = None) -> list[Article]:
        """Run a query and parse the result into Articles.

        Raises:
            ContentAPIError: On transport failure, HTTP error status or an
                unreadable body
            MalformedArticleError: If a returned document is unusable
        """
        url = f"{self.base_url}/data/query/{self.cfg.dataset}"
        try:
            resp = await self._http.get(url, params=self.build_params(query, params), headers=self._headers())
        except httpx.HTTPError as exc:
            raise ContentAPIError(f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code >= 400:
            raise ContentAPIError(f"Content API returned HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ContentAPIError(f"Content API returned invalid JSON: {exc}", resp.status_code) from exc

        result = payload.get("result") if isinstance(payload, dict) else None
        if result is None:
            return []
        if not isinstance(result, list):
            raise ContentAPIError(f"Expected a list result, got {type(result).__name__}", resp.status_code)

        articles = coerce_articles(result)
        self._logger.debug("Fetched %d articles", len(articles), extra={"cache_bust": (params or {}).get("_cacheBust")})
        return articles

    async def subscribe(
        self,
        query: str,
        params: dict[str, Any],
        on_update: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> ListenSubscription:
        """Open a listen stream; returns once the server has welcomed it.

        Raises:
            SubscriptionFailure: If the stream cannot be established within
                the configured timeout
        """
        loop = asyncio.get_running_loop()
        ready: asyncio.Future = loop.create_future()
        task = loop.create_task(self._listen(query, params, on_update, on_error, ready))
        try:
            await asyncio.wait_for(ready, timeout=self.cfg.timeout_seconds)
        except asyncio.TimeoutError as exc:
            task.cancel()
            raise SubscriptionFailure(exc, "Timed out waiting for the listen stream") from exc
        except SubscriptionFailure:
            task.cancel()
            raise
        return ListenSubscription(task)

    async def _listen(
        self,
        query: str,
        params: dict[str, Any],
        on_update: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
        ready: asyncio.Future,
    ) -> None:
        url = f"{self.base_url}/data/listen/{self.cfg.dataset}"
        request_params = self.build_params(query, params)
        request_params["includeResult"] = "false"
        request_params["visibility"] = "query"
        headers = {**self._headers(), "Accept": "text/event-stream"}
        timeout = httpx.Timeout(self.cfg.timeout_seconds, read=None)

        try:
            async with self._http.stream("GET", url, params=request_params, headers=headers, timeout=timeout) as resp:
                if resp.status_code >= 400:
                    raise ContentAPIError(f"Listen endpoint returned HTTP {resp.status_code}", resp.status_code)
                async for event, data in aparse_sse_lines(resp.aiter_lines()):
                    if event == "welcome":
                        if not ready.done():
                            ready.set_result(None)
                    elif event == "mutation":
                        data = data if isinstance(data, dict) else {}
                        on_update(
                            ChangeSignal(
                                document_id=data.get("documentId"),
                                transition=data.get("transition", "update"),
                            )
                        )
                    elif event in ("channelError", "disconnect"):
                        raise ContentAPIError(f"Listen stream {event}: {data}")
            raise ContentAPIError("Listen stream closed by server")
        except Exception as exc:  # noqa: BLE001
            if not ready.done():
                ready.set_exception(SubscriptionFailure(exc))
                return
            on_error(exc)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
