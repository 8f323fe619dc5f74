import asyncio
from types import SimpleNamespace

import pytest

from app.sync.distributor import SyncDistributor
from app.sync.feed import ChangeEvent, InMemoryChangeFeed, auction_topic
from app.sync.policy import ChannelState, PollingPolicy


class FakeSleep:
    """Записывает запрошенные задержки и ждет, пока тест их не отпустит"""

    def __init__(self):
        self.calls: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future]] = []

    async def __call__(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self.calls.append(delay)
        self._waiters.append((delay, future))
        await future

    def release(self, delay: float | None = None) -> None:
        pending = []
        for waited, future in self._waiters:
            if delay is None or waited == delay:
                if not future.done():
                    future.set_result(None)
            else:
                pending.append((waited, future))
        self._waiters = pending


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def settle():
    for _ in range(20):
        await asyncio.sleep(0)


class CountingFetch:
    def __init__(self, fail_on=()):
        self.calls = 0
        self.fail_on = set(fail_on)

    async def __call__(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError("store down")
        return SimpleNamespace(auction=SimpleNamespace(status="active"), n=self.calls)


@pytest.fixture
def sleeper():
    return FakeSleep()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sync_feed():
    return InMemoryChangeFeed()


def _distributor(fetch, sync_feed, sleeper, clock, **kwargs):
    return SyncDistributor(
        auction_topic("auc-1"),
        fetch,
        feed=sync_feed,
        policy=PollingPolicy(),
        clock=clock,
        sleep=sleeper,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_start_fetches_and_connects(sync_feed, sleeper, clock):
    fetch = CountingFetch()
    distributor = _distributor(fetch, sync_feed, sleeper, clock)
    seen = []
    distributor.on_snapshot(seen.append)

    await distributor.start()
    await settle()
    try:
        assert fetch.calls == 1
        assert seen[0].n == 1
        assert distributor.channel_state is ChannelState.CONNECTED
        assert sync_feed.subscriber_count(auction_topic("auc-1")) == 1
        assert distributor.current_interval() == 30
    finally:
        await distributor.stop()

    assert distributor.channel_state is ChannelState.DISCONNECTED
    assert sync_feed.subscriber_count(auction_topic("auc-1")) == 0


@pytest.mark.asyncio
async def test_poll_error_keeps_schedule(sync_feed, sleeper, clock):
    fetch = CountingFetch(fail_on={2})
    distributor = _distributor(fetch, sync_feed, sleeper, clock)
    errors = []

    async def on_error(exc):
        errors.append(exc)

    distributor.on_error(on_error)
    await distributor.start()
    await settle()
    try:
        polls_before = len(sleeper.calls)
        sleeper.release()
        await settle()

        assert fetch.calls == 2
        assert isinstance(errors[0], RuntimeError)
        assert isinstance(distributor.last_error, RuntimeError)
        # The last good snapshot stays in place
        assert distributor.snapshot.n == 1
        assert len(sleeper.calls) == polls_before + 1

        sleeper.release()
        await settle()
        assert fetch.calls == 3
        assert distributor.snapshot.n == 3
        assert distributor.last_error is None
    finally:
        await distributor.stop()


@pytest.mark.asyncio
async def test_failing_listeners_do_not_stop_polling(sync_feed, sleeper, clock):
    fetch = CountingFetch(fail_on={2})
    distributor = _distributor(fetch, sync_feed, sleeper, clock)

    def broken_error_listener(exc):
        raise ValueError("viewer bug")

    async def broken_snapshot_listener(snapshot):
        raise ValueError("viewer bug")

    distributor.on_error(broken_error_listener)
    distributor.on_snapshot(broken_snapshot_listener)
    await distributor.start()
    await settle()
    try:
        # Failing fetch, the error listener raises
        sleeper.release()
        await settle()
        assert fetch.calls == 2
        poll_task = distributor._tasks[0]
        assert not poll_task.done()

        # Successful fetch, the snapshot listener raises
        sleeper.release()
        await settle()
        assert fetch.calls == 3
        assert distributor.snapshot.n == 3
        assert not poll_task.done()

        # Push notifications are still handled
        await sync_feed.publish(ChangeEvent("auctions", "UPDATE", "auc-1", "auc-1"))
        await settle()
        assert fetch.calls == 4
        assert not distributor._tasks[1].done()
    finally:
        await distributor.stop()


@pytest.mark.asyncio
async def test_push_event_triggers_refresh(sync_feed, sleeper, clock):
    fetch = CountingFetch()
    distributor = _distributor(fetch, sync_feed, sleeper, clock)
    await distributor.start()
    await settle()
    try:
        await sync_feed.publish(ChangeEvent("auction_bids", "INSERT", "bid-1", "auc-1"))
        await settle()
        assert fetch.calls == 2

        # Events for other auctions are not delivered to this topic
        await sync_feed.publish(ChangeEvent("auction_bids", "INSERT", "bid-2", "auc-2"))
        await settle()
        assert fetch.calls == 2
    finally:
        await distributor.stop()


@pytest.mark.asyncio
async def test_regaining_visibility_refreshes(sync_feed, sleeper, clock):
    fetch = CountingFetch()
    distributor = _distributor(fetch, sync_feed, sleeper, clock)
    await distributor.start()
    await settle()
    try:
        await distributor.set_visible(False)
        assert distributor.current_interval() == 300
        assert fetch.calls == 1

        await distributor.set_visible(True)
        assert fetch.calls == 2
        # Already visible: nothing to catch up on
        await distributor.set_visible(True)
        assert fetch.calls == 2
    finally:
        await distributor.stop()


@pytest.mark.asyncio
async def test_idle_and_terminal_intervals(sync_feed, sleeper, clock):
    distributor = _distributor(CountingFetch(), sync_feed, sleeper, clock)
    assert distributor.current_interval() == 15

    clock.now += 301
    assert distributor.current_interval() == 60
    distributor.note_activity()
    assert distributor.current_interval() == 15

    distributor.snapshot = SimpleNamespace(auction=SimpleNamespace(status="completed"))
    assert distributor.current_interval() == 60
    clock.now += 301
    assert distributor.current_interval() == 300


@pytest.mark.asyncio
async def test_superseded_refresh_is_discarded(sync_feed, sleeper, clock):
    gates: list[asyncio.Future] = []

    async def fetch():
        gate = asyncio.get_running_loop().create_future()
        gates.append(gate)
        return await gate

    distributor = _distributor(fetch, sync_feed, sleeper, clock)
    first = asyncio.create_task(distributor.refresh("poll"))
    await settle()
    second = asyncio.create_task(distributor.refresh("auction_bids:UPDATE"))
    await settle()

    gates[1].set_result("fresh")
    assert await second is True
    gates[0].set_result("stale")
    assert await first is False
    assert distributor.snapshot == "fresh"


@pytest.mark.asyncio
async def test_channel_drop_resubscribes_and_refetches(sync_feed, sleeper, clock):
    fetch = CountingFetch()
    distributor = _distributor(fetch, sync_feed, sleeper, clock, resubscribe_delays=(1.0, 2.0))
    await distributor.start()
    await settle()
    try:
        sync_feed.drop_all()
        await settle()
        assert distributor.channel_state is ChannelState.DISCONNECTED
        assert 1.0 in sleeper.calls
        # Polling still runs while the channel is down
        assert distributor.current_interval() == 15

        sleeper.release(1.0)
        await settle()
        assert distributor.channel_state is ChannelState.CONNECTED
        assert fetch.calls == 2
        assert sync_feed.subscriber_count(auction_topic("auc-1")) == 1
    finally:
        await distributor.stop()
