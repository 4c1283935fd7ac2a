"""Tests for the live/polling update coordinator."""

from __future__ import annotations

import asyncio

from frontpage.config import UpdatesConfig
from frontpage.core.errors import FetchFailure, PersistentFetchFailure, SubscriptionFailure
from frontpage.core.types import Article
from frontpage.live.coordinator import ChangeSignal, CoordinatorState, UpdateCoordinator


LEAD = Article(id="lead", title="Lead", is_lead_story=True)
PLAIN = Article(id="plain", title="Plain")


def _cfg(**kwargs) -> UpdatesConfig:
    kwargs.setdefault("jitter_ratio", 0.0)
    kwargs.setdefault("amplify_delay_seconds", 0.01)
    return UpdatesConfig(**kwargs)


class FakeSource:
    """Fetch collaborator returning canned lists, optionally failing."""

    def __init__(self, result=None, fail_times: int = 0, delay: float = 0.0, always_fail: bool = False):
        self.result = [PLAIN] if result is None else result
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.delay = delay
        self.calls: list[dict] = []

    async def fetch(self, query, params):
        self.calls.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or len(self.calls) <= self.fail_times:
            raise ConnectionError("backend down")
        return list(self.result)


class FakeChannel:
    """Subscribe collaborator that hands its callbacks to the test."""

    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.on_update = None
        self.on_error = None
        self.unsubscribed = 0

    async def subscribe(self, query, params, on_update, on_error):
        if self.fail is not None:
            raise self.fail
        self.on_update = on_update
        self.on_error = on_error
        return self

    def unsubscribe(self):
        self.unsubscribed += 1


def test_polling_delivers_with_cache_busting():
    async def scenario():
        source = FakeSource()
        received = []
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=0.02)

        await coordinator.start(received.append)
        assert coordinator.state is CoordinatorState.POLLING
        await asyncio.sleep(0.07)
        await coordinator.aclose()
        return source, received, coordinator

    source, received, coordinator = asyncio.run(scenario())

    assert len(received) >= 2
    assert all(call["_forceRefresh"] is True for call in source.calls)
    busts = [call["_cacheBust"] for call in source.calls]
    assert busts == sorted(set(busts))
    assert coordinator.state is CoordinatorState.STOPPED


def test_no_callbacks_after_stop():
    async def scenario():
        source = FakeSource()
        received = []
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=0.01)

        await coordinator.start(received.append)
        await asyncio.sleep(0.035)
        coordinator.stop()
        count = len(received)
        await asyncio.sleep(0.05)
        return count, received

    count, received = asyncio.run(scenario())

    assert count >= 1
    assert len(received) == count


def test_in_flight_fetch_resolving_after_stop_is_ignored():
    async def scenario():
        gate = asyncio.Event()
        received, errors = [], []

        async def slow_fetch(query, params):
            # Shielded so the result arrives even though stop() cancels the caller.
            await asyncio.shield(gate.wait())
            return [PLAIN]

        coordinator = UpdateCoordinator(slow_fetch, cfg=_cfg(), poll_interval=10)
        await coordinator.start(received.append, errors.append)
        await asyncio.sleep(0.01)
        coordinator.stop()
        gate.set()
        await asyncio.sleep(0.02)
        return received, errors

    received, errors = asyncio.run(scenario())

    assert received == []
    assert errors == []


def test_stop_from_inside_callback():
    async def scenario():
        source = FakeSource()
        received = []
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=0.01)

        def on_data(articles):
            received.append(articles)
            coordinator.stop()

        await coordinator.start(on_data)
        await asyncio.sleep(0.05)
        return received, coordinator

    received, coordinator = asyncio.run(scenario())

    assert len(received) == 1
    assert coordinator.state is CoordinatorState.STOPPED
    assert not coordinator.is_active


def test_start_twice_keeps_one_session():
    async def scenario():
        source = FakeSource()
        channel = FakeChannel()
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10)

        await coordinator.start(lambda articles: None)
        await coordinator.start(lambda articles: None)
        await asyncio.sleep(0.02)
        await coordinator.aclose()
        return source, channel

    source, channel = asyncio.run(scenario())

    # one initial refresh, one subscription
    assert len(source.calls) == 1
    assert channel.unsubscribed == 1


def test_start_twice_in_polling_mode_has_one_timer():
    async def scenario():
        source = FakeSource()
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=10)

        await coordinator.start(lambda articles: None)
        await coordinator.start(lambda articles: None)
        await asyncio.sleep(0.02)
        await coordinator.aclose()
        return source

    assert len(asyncio.run(scenario()).calls) == 1


def test_stop_is_idempotent_and_restartable():
    async def scenario():
        source = FakeSource()
        received = []
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=10)

        coordinator.stop()
        coordinator.stop()
        assert coordinator.state is CoordinatorState.STOPPED

        await coordinator.start(received.append)
        await asyncio.sleep(0.01)
        coordinator.stop()
        coordinator.stop()
        await coordinator.start(received.append)
        await asyncio.sleep(0.01)
        await coordinator.aclose()
        return received

    assert len(asyncio.run(scenario())) == 2


def test_live_mode_delivers_pushes_and_refetches_on_signal():
    async def scenario():
        source = FakeSource()
        channel = FakeChannel()
        received = []
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10)

        await coordinator.start(received.append)
        assert coordinator.state is CoordinatorState.LIVE
        await asyncio.sleep(0.01)

        pushed = [Article(id="pushed", title="Pushed")]
        channel.on_update(pushed)
        channel.on_update(ChangeSignal(document_id="pushed"))
        await asyncio.sleep(0.01)
        await coordinator.aclose()
        return source, channel, received

    source, channel, received = asyncio.run(scenario())

    assert [a.id for a in received[1]] == ["pushed"]
    assert len(received) == 3
    assert "_cacheBust" in source.calls[0]
    # change signals re-fetch without the cache-busting parameters
    assert "_cacheBust" not in source.calls[1]
    assert channel.unsubscribed == 1


def test_subscription_setup_failure_falls_back_to_polling():
    async def scenario():
        source = FakeSource()
        channel = FakeChannel(fail=RuntimeError("no websocket"))
        received, errors = [], []
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10)

        await coordinator.start(received.append, errors.append)
        state = coordinator.state
        await asyncio.sleep(0.01)
        await coordinator.aclose()
        return state, received, errors

    state, received, errors = asyncio.run(scenario())

    assert state is CoordinatorState.POLLING
    assert len(received) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionFailure)
    assert isinstance(errors[0].cause, RuntimeError)


def test_push_error_falls_back_to_polling_once():
    async def scenario():
        source = FakeSource()
        channel = FakeChannel()
        errors = []
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10)

        await coordinator.start(lambda articles: None, errors.append)
        await asyncio.sleep(0.01)
        channel.on_error(ConnectionResetError("stream dropped"))
        channel.on_error(ConnectionResetError("stream dropped again"))
        state = coordinator.state
        await asyncio.sleep(0.01)
        await coordinator.aclose()
        return source, channel, errors, state

    source, channel, errors, state = asyncio.run(scenario())

    assert state is CoordinatorState.POLLING
    assert [type(e) for e in errors] == [SubscriptionFailure]
    assert channel.unsubscribed == 1
    # initial live refresh plus the first poll
    assert len(source.calls) == 2


def test_fetch_failures_go_offline_and_recover():
    async def scenario():
        source = FakeSource(fail_times=2)
        received, errors, states = [], [], []
        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(backoff_max_seconds=0.05), poll_interval=0.01)

        def on_error(exc):
            errors.append(exc)
            states.append(coordinator.state)

        await coordinator.start(received.append, on_error)
        await asyncio.sleep(0.1)
        final_state = coordinator.state
        await coordinator.aclose()
        return received, errors, states, final_state

    received, errors, states, final_state = asyncio.run(scenario())

    assert len(errors) == 2
    assert all(isinstance(e, FetchFailure) for e in errors)
    assert isinstance(errors[0].cause, ConnectionError)
    assert states == [CoordinatorState.OFFLINE, CoordinatorState.OFFLINE]
    assert len(received) >= 1
    assert final_state is CoordinatorState.POLLING


def test_persistent_failure_is_signalled_once():
    async def scenario():
        source = FakeSource(always_fail=True)
        errors = []
        coordinator = UpdateCoordinator(
            source.fetch,
            cfg=_cfg(failure_threshold=3, backoff_max_seconds=0.01),
            poll_interval=0.01,
        )
        await coordinator.start(lambda articles: None, errors.append)
        await asyncio.sleep(0.12)
        still_polling = coordinator.is_active
        await coordinator.aclose()
        return errors, still_polling

    errors, still_polling = asyncio.run(scenario())

    persistent = [e for e in errors if isinstance(e, PersistentFetchFailure)]
    assert len(persistent) == 1
    assert persistent[0].consecutive_failures == 3
    assert sum(isinstance(e, FetchFailure) for e in errors) >= 4
    assert still_polling


def test_backoff_delays_are_capped():
    coordinator = UpdateCoordinator(
        FakeSource().fetch,
        cfg=_cfg(backoff_max_seconds=60),
        poll_interval=10,
    )
    delays = []
    for failures in range(1, 6):
        coordinator._consecutive_failures = failures  # noqa: SLF001
        delays.append(coordinator._next_delay(ok=False))  # noqa: SLF001

    assert delays == [10, 20, 40, 60, 60]
    assert coordinator._next_delay(ok=True) == 10  # noqa: SLF001


def test_backoff_jitter_stays_within_ratio():
    coordinator = UpdateCoordinator(
        FakeSource().fetch,
        cfg=UpdatesConfig(jitter_ratio=0.5, backoff_max_seconds=100),
        poll_interval=10,
    )
    coordinator._consecutive_failures = 2  # noqa: SLF001

    for _ in range(20):
        assert 20 <= coordinator._next_delay(ok=False) <= 30  # noqa: SLF001


def test_lead_story_delivery_triggers_one_debounced_refresh():
    async def scenario():
        now = [0.0]
        source = FakeSource()
        channel = FakeChannel()
        received = []
        coordinator = UpdateCoordinator(
            source.fetch,
            channel.subscribe,
            cfg=_cfg(),
            poll_interval=10,
            clock=lambda: now[0],
        )

        await coordinator.start(received.append)
        await asyncio.sleep(0.01)

        now[0] = 10.0
        channel.on_update([LEAD])
        now[0] = 11.0
        channel.on_update([LEAD])
        await asyncio.sleep(0.05)
        await coordinator.aclose()
        return source, received

    source, received = asyncio.run(scenario())

    # initial refresh + one amplified refresh; the second push is debounced
    assert len(source.calls) == 2
    assert "_cacheBust" in source.calls[1]
    assert len(received) == 4


def test_no_amplification_within_debounce_window():
    async def scenario():
        now = [0.0]
        source = FakeSource()
        channel = FakeChannel()
        coordinator = UpdateCoordinator(
            source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10, clock=lambda: now[0]
        )
        await coordinator.start(lambda articles: None)
        await asyncio.sleep(0.01)
        now[0] = 3.0
        channel.on_update([LEAD])
        await asyncio.sleep(0.05)
        await coordinator.aclose()
        return source

    assert len(asyncio.run(scenario()).calls) == 1


def test_stale_response_does_not_overwrite_newer_data():
    async def scenario():
        source = FakeSource(result=[Article(id="old", title="Old")], delay=0.03)
        channel = FakeChannel()
        received = []
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(), poll_interval=10)

        await coordinator.start(received.append)
        await asyncio.sleep(0.005)
        # initial refresh is still in flight when the push arrives
        channel.on_update([Article(id="new", title="New")])
        await asyncio.sleep(0.06)
        await coordinator.aclose()
        return received

    received = asyncio.run(scenario())

    assert [[a.id for a in articles] for articles in received] == [["new"]]


def test_subscriber_exception_does_not_stop_polling():
    async def scenario():
        source = FakeSource()
        calls = []

        def on_data(articles):
            calls.append(articles)
            if len(calls) == 1:
                raise ValueError("render failed")

        coordinator = UpdateCoordinator(source.fetch, cfg=_cfg(), poll_interval=0.01)
        await coordinator.start(on_data)
        await asyncio.sleep(0.05)
        await coordinator.aclose()
        return calls

    assert len(asyncio.run(scenario())) >= 2


def test_live_disabled_in_config_goes_straight_to_polling():
    async def scenario():
        source = FakeSource()
        channel = FakeChannel()
        coordinator = UpdateCoordinator(source.fetch, channel.subscribe, cfg=_cfg(use_live=False), poll_interval=10)
        await coordinator.start(lambda articles: None)
        state = coordinator.state
        await coordinator.aclose()
        return state, channel

    state, channel = asyncio.run(scenario())

    assert state is CoordinatorState.POLLING
    assert channel.on_update is None


def test_slow_fetch_keeps_fixed_poll_cadence():
    async def scenario():
        loop = asyncio.get_running_loop()
        starts = []

        async def slow_fetch(query, params):
            starts.append(loop.time())
            await asyncio.sleep(0.1)
            return [PLAIN]

        coordinator = UpdateCoordinator(slow_fetch, cfg=_cfg(), poll_interval=0.15)
        await coordinator.start(lambda articles: None)
        await asyncio.sleep(0.5)
        await coordinator.aclose()
        return starts

    starts = asyncio.run(scenario())

    assert len(starts) >= 3
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    # fetch time is not added on top of the interval
    assert all(0.13 <= gap < 0.22 for gap in gaps)
