"""
Live/polling update coordinator.

Keeps a subscriber supplied with a fresh article list for as long as it
is attached, using a fallback ladder:
1. Live mode: a push subscription delivers lists or change signals
2. Polling: a forced, cache-busted fetch on a fixed interval
3. Offline: polling keeps going with capped exponential backoff, and a
   persistent-failure signal is raised once after too many failures

Everything runs on one asyncio event loop. Each start() opens a new
epoch; every callback checks its epoch first, so nothing reaches the
subscriber after stop(), even from a fetch that was already in flight.
Each fetch and push takes a sequence number and a response older than
the last delivered one is dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from functools import partial
import itertools
import logging
import random
import time
from typing import Any, Awaitable, Callable, Coroutine, Mapping, Protocol, Sequence, Union

from ..config import DEFAULT_ARTICLES_QUERY, UpdatesConfig
from ..core.errors import FetchFailure, PersistentFetchFailure, SubscriptionFailure
from ..core.types import Article
from ..logging_utils import log_event


class CoordinatorState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    POLLING = "polling"
    OFFLINE = "offline"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ChangeSignal:
    """Bare "something changed" notification from a push channel.

    Attributes:
        document_id: Changed document, when the channel reports it
        transition: Kind of change ("update", "appear", "disappear")
    """

    document_id: str | None = None
    transition: str = "update"


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


ArticleList = Sequence[Union[Article, Mapping[str, Any]]]
PushUpdate = Union[ArticleList, ChangeSignal]
FetchFn = Callable[[str, dict[str, Any]], Awaitable[ArticleList]]
SubscribeFn = Callable[
    [str, dict[str, Any], Callable[[PushUpdate], None], Callable[[BaseException], None]],
    Awaitable[Subscription],
]
DataCallback = Callable[[list[Union[Article, Mapping[str, Any]]]], None]
ErrorCallback = Callable[[BaseException], None]


class UpdateCoordinator:
    """Delivers fresh article lists to one subscriber at a time.

    Attributes:
        state: Current CoordinatorState
        last_delivery_at: Clock reading of the most recent delivery, or None
    """

    def __init__(
        self,
        fetch: FetchFn,
        subscribe: SubscribeFn | None = None,
        query: str = DEFAULT_ARTICLES_QUERY,
        params: dict[str, Any] | None = None,
        cfg: UpdatesConfig | None = None,
        poll_interval: float | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._subscribe = subscribe
        self._query = query
        self._params = dict(params or {})
        self._cfg = cfg or UpdatesConfig()
        self._poll_interval = poll_interval if poll_interval is not None else self._cfg.poll_interval_seconds
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self.state = CoordinatorState.IDLE
        self.last_delivery_at: float | None = None
        self._active = False
        self._epoch = 0
        self._on_data: DataCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._subscription: Subscription | None = None
        self._poll_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._cancelled: list[asyncio.Task] = []
        self._seq = itertools.count(1)
        self._delivered_seq = 0
        self._last_forced_at: float | None = None
        self._last_cache_bust = 0
        self._consecutive_failures = 0
        self._circuit_open = False
        self._subscription_failed = False

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def start(self, on_data: DataCallback, on_error: ErrorCallback | None = None) -> None:
        """Attach a subscriber and begin delivering article lists.

        A second start() without stop() in between is ignored.
        """
        if self._active:
            self._logger.debug("Update coordinator already active; start ignored")
            return

        self._active = True
        self._epoch += 1
        epoch = self._epoch
        self._on_data = on_data
        self._on_error = on_error
        self._delivered_seq = 0
        self._last_forced_at = None
        self._consecutive_failures = 0
        self._circuit_open = False
        self._subscription_failed = False
        self._set_state(CoordinatorState.CONNECTING)

        if self._subscribe is None or not self._cfg.use_live:
            self._start_polling(epoch)
            return

        try:
            subscription = await self._subscribe(
                self._query,
                dict(self._params),
                partial(self._handle_push, epoch),
                partial(self._handle_push_error, epoch),
            )
        except Exception as exc:  # noqa: BLE001
            if epoch != self._epoch:
                return
            self._report_subscription_failure(epoch, exc)
            self._start_polling(epoch)
            return

        # stop() or a push error may have happened while connecting
        if epoch != self._epoch or self._poll_task is not None:
            subscription.unsubscribe()
            return

        self._subscription = subscription
        self._set_state(CoordinatorState.LIVE)
        self._spawn(self._refresh(epoch, forced=True))

    def stop(self) -> None:
        """Detach the subscriber and release timers and the subscription.

        Idempotent, and safe to call from inside on_data/on_error.
        """
        if not self._active and self.state is CoordinatorState.STOPPED:
            return

        self._epoch += 1
        self._active = False
        self._release_subscription()
        self._poll_task = None
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        self._cancelled = [t for t in self._cancelled if not t.done()] + tasks
        self._on_data = None
        self._on_error = None
        self._set_state(CoordinatorState.STOPPED)

    async def aclose(self) -> None:
        """stop() and wait for cancelled tasks to unwind."""
        self.stop()
        pending, self._cancelled = self._cancelled, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def refresh_now(self) -> bool:
        """Run one forced refresh outside the regular schedule."""
        if not self._active:
            return False
        return await self._refresh(self._epoch, forced=True)

    def _handle_push(self, epoch: int, update: PushUpdate) -> None:
        if epoch != self._epoch:
            return
        if isinstance(update, ChangeSignal):
            self._spawn(self._refresh(epoch, forced=False))
            return
        self._deliver(epoch, next(self._seq), list(update))

    def _handle_push_error(self, epoch: int, exc: BaseException) -> None:
        if epoch != self._epoch:
            return
        self._release_subscription()
        self._report_subscription_failure(epoch, exc)
        self._start_polling(epoch)

    def _start_polling(self, epoch: int) -> None:
        if epoch != self._epoch:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._set_state(CoordinatorState.POLLING)
        self._poll_task = self._spawn(self._poll_loop(epoch))

    async def _poll_loop(self, epoch: int) -> None:
        loop = asyncio.get_running_loop()
        while epoch == self._epoch:
            tick_started = loop.time()
            ok = await self._refresh(epoch, forced=True)
            if epoch != self._epoch:
                return
            # ticks are spaced from their start, not from when the fetch returned
            elapsed = loop.time() - tick_started
            await asyncio.sleep(max(0.0, self._next_delay(ok) - elapsed))

    async def _refresh(self, epoch: int, forced: bool) -> bool:
        seq = next(self._seq)
        if forced:
            params = self._cache_busted_params()
            self._last_forced_at = self._clock()
        else:
            params = dict(self._params)

        try:
            articles = await self._fetch(self._query, params)
        except Exception as exc:  # noqa: BLE001
            if epoch == self._epoch:
                self._record_failure(epoch, exc, forced)
            return False

        if epoch != self._epoch:
            return False
        self._record_success()
        self._deliver(epoch, seq, list(articles))
        return True

    def _deliver(self, epoch: int, seq: int, articles: list[Any]) -> None:
        if epoch != self._epoch or self._on_data is None:
            return
        if seq <= self._delivered_seq:
            self._logger.debug("Dropping stale article list", extra={"seq": seq, "delivered_seq": self._delivered_seq})
            return
        self._delivered_seq = seq
        self.last_delivery_at = self._clock()

        try:
            self._on_data(articles)
        except Exception:  # noqa: BLE001
            self._logger.exception("Article subscriber raised while handling an update")

        if epoch == self._epoch:
            self._maybe_amplify(epoch, articles)

    def _maybe_amplify(self, epoch: int, articles: list[Any]) -> None:
        """Schedule one extra refresh after a lead/breaking delivery.

        Backends can lag behind their own change notifications; the extra
        refresh picks up the settled state. Debounced against the last
        forced refresh so a burst of pushes yields a single refresh.
        """
        if not any(_has_priority_flag(a) for a in articles):
            return
        now = self._clock()
        if self._last_forced_at is not None and now - self._last_forced_at <= self._cfg.amplify_debounce_seconds:
            return
        self._last_forced_at = now
        self._spawn(self._delayed_refresh(epoch))

    async def _delayed_refresh(self, epoch: int) -> None:
        await asyncio.sleep(self._cfg.amplify_delay_seconds)
        if epoch == self._epoch:
            await self._refresh(epoch, forced=True)

    def _record_failure(self, epoch: int, exc: BaseException, forced: bool) -> None:
        self._consecutive_failures += 1
        if self._poll_task is not None:
            self._set_state(CoordinatorState.OFFLINE)
        log_event(
            self._logger,
            "Article fetch failed",
            event="fetch_failed",
            error=f"{type(exc).__name__}: {exc}",
            consecutive_failures=self._consecutive_failures,
        )
        self._report_error(epoch, FetchFailure(exc, forced=forced))

        threshold = self._cfg.failure_threshold
        if threshold > 0 and self._consecutive_failures >= threshold and not self._circuit_open:
            self._circuit_open = True
            self._report_error(epoch, PersistentFetchFailure(self._consecutive_failures, exc))

    def _record_success(self) -> None:
        if self._consecutive_failures:
            log_event(
                self._logger,
                "Article fetch recovered",
                event="fetch_recovered",
                after_failures=self._consecutive_failures,
            )
        self._consecutive_failures = 0
        self._circuit_open = False
        if self.state is CoordinatorState.OFFLINE:
            self._set_state(CoordinatorState.POLLING)

    def _next_delay(self, ok: bool) -> float:
        """Seconds until the next poll: the interval, or backoff after failures."""
        if ok or self._consecutive_failures == 0:
            return self._poll_interval
        ceiling = max(self._cfg.backoff_max_seconds, self._poll_interval)
        delay = min(self._poll_interval * 2 ** (self._consecutive_failures - 1), ceiling)
        if self._cfg.jitter_ratio > 0:
            delay += random.uniform(0, self._cfg.jitter_ratio * delay)
        return delay

    def _cache_busted_params(self) -> dict[str, Any]:
        bust = max(int(time.time() * 1000), self._last_cache_bust + 1)
        self._last_cache_bust = bust
        return {**self._params, "_cacheBust": bust, "_forceRefresh": True}

    def _report_subscription_failure(self, epoch: int, exc: BaseException) -> None:
        if self._subscription_failed:
            return
        self._subscription_failed = True
        log_event(
            self._logger,
            "Live subscription unavailable; falling back to polling",
            event="subscription_failed",
            error=f"{type(exc).__name__}: {exc}",
        )
        error = exc if isinstance(exc, SubscriptionFailure) else SubscriptionFailure(exc)
        self._report_error(epoch, error)

    def _report_error(self, epoch: int, error: BaseException) -> None:
        if epoch != self._epoch or self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:  # noqa: BLE001
            self._logger.exception("Article subscriber raised while handling an error")

    def _release_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            subscription.unsubscribe()
        except Exception:  # noqa: BLE001
            self._logger.exception("Failed to release live subscription")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Update coordinator task failed", exc_info=exc)

    def _set_state(self, state: CoordinatorState) -> None:
        if state is self.state:
            return
        self._logger.debug("Update coordinator %s -> %s", self.state.value, state.value)
        self.state = state


def _has_priority_flag(item: Any) -> bool:
    if isinstance(item, Article):
        return item.has_priority_flag
    if isinstance(item, Mapping):
        return bool(
            item.get("isLeadStory")
            or item.get("isBreakingNews")
            or item.get("is_lead_story")
            or item.get("is_breaking_news")
        )
    return False
