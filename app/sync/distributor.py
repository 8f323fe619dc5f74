"""Keeps one viewer's copy of an auction (or a collection) fresh.

Two independent drivers trigger a re-fetch of the full snapshot:

* the push channel: every change notification on the topic causes a pull;
* the polling timer: rescheduled after every tick with an interval chosen by
  :class:`PollingPolicy`, so it keeps working when the channel is down.

Results of a refresh that was overtaken by a newer one are discarded.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from app.sync.feed import ChangeFeed, ChannelDisconnected, Subscription, get_change_feed
from app.sync.policy import ChannelState, PollingPolicy, ViewerConditions

logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[Any]]
Listener = Callable[[Any], Any]

RESUBSCRIBE_DELAYS = (1.0, 2.0, 5.0, 10.0, 30.0)


def _snapshot_status(snapshot: Any) -> str | None:
    auction = getattr(snapshot, "auction", None)
    return getattr(auction, "status", None)


class SyncDistributor:
    def __init__(
        self,
        topic: str,
        fetch: Fetch,
        feed: ChangeFeed | None = None,
        policy: PollingPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        resubscribe_delays: Sequence[float] = RESUBSCRIBE_DELAYS,
    ) -> None:
        self.topic = topic
        self._fetch = fetch
        self._feed = feed or get_change_feed()
        self.policy = policy or PollingPolicy.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._resubscribe_delays = tuple(resubscribe_delays)

        self.channel_state = ChannelState.CONNECTING
        self.visible = True
        self.snapshot: Any = None
        self.last_error: Exception | None = None
        self.running = False

        self._last_activity = clock()
        self._generation = 0
        self._applied_generation = 0
        self._subscription: Subscription | None = None
        self._tasks: list[asyncio.Task] = []
        self._snapshot_listeners: list[Listener] = []
        self._error_listeners: list[Listener] = []

    # Listeners

    def on_snapshot(self, listener: Listener) -> None:
        self._snapshot_listeners.append(listener)

    def on_error(self, listener: Listener) -> None:
        self._error_listeners.append(listener)

    async def _notify(self, listeners: list[Listener], payload: Any) -> None:
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                # Ошибка слушателя не должна останавливать опрос и канал
                logger.exception("Sync listener failed", extra={"topic": self.topic})

    # Viewer state

    def conditions(self) -> ViewerConditions:
        return ViewerConditions(
            channel=self.channel_state,
            visible=self.visible,
            idle_seconds=max(0.0, self._clock() - self._last_activity),
            auction_status=_snapshot_status(self.snapshot),
        )

    def current_interval(self) -> float:
        return self.policy.next_interval(self.conditions())

    def note_activity(self) -> None:
        self._last_activity = self._clock()

    async def set_visible(self, visible: bool) -> None:
        regained = visible and not self.visible
        self.visible = visible
        if regained:
            # Out-of-band refresh; the polling schedule continues unchanged
            self.note_activity()
            await self.refresh("visible")

    # Lifecycle

    async def start(self) -> None:
        if self.running:
            logger.warning("Sync distributor already running", extra={"topic": self.topic})
            return
        self.running = True
        await self.refresh("initial")
        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._channel_loop()),
        ]
        logger.info("Sync distributor started", extra={"topic": self.topic})

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        self.channel_state = ChannelState.DISCONNECTED
        logger.info("Sync distributor stopped", extra={"topic": self.topic})

    # Pull

    async def refresh(self, reason: str) -> bool:
        """Fetch the current snapshot; returns False if failed or superseded."""
        self._generation += 1
        generation = self._generation
        started = self._clock()
        try:
            snapshot = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = e
            logger.warning(
                "Snapshot fetch failed",
                extra={"topic": self.topic, "reason": reason, "error": str(e)},
            )
            await self._notify(self._error_listeners, e)
            return False

        if generation < self._applied_generation:
            logger.debug("Superseded snapshot discarded", extra={"topic": self.topic, "reason": reason})
            return False
        self._applied_generation = generation
        self.snapshot = snapshot
        self.last_error = None
        logger.debug(
            "Snapshot refreshed",
            extra={"topic": self.topic, "reason": reason, "took_ms": round((self._clock() - started) * 1000)},
        )
        await self._notify(self._snapshot_listeners, snapshot)
        return True

    async def _poll_loop(self) -> None:
        while self.running:
            interval = self.current_interval()
            logger.debug("Next poll scheduled", extra={"topic": self.topic, "interval": interval})
            await self._sleep(interval)
            if not self.running:
                return
            await self.refresh("poll")

    # Push

    async def _channel_loop(self) -> None:
        failures = 0
        while self.running:
            self.channel_state = ChannelState.CONNECTING
            try:
                subscription = await self._feed.subscribe(self.topic)
            except ChannelDisconnected as e:
                logger.warning("Subscribe failed", extra={"topic": self.topic, "error": str(e)})
            else:
                self._subscription = subscription
                self.channel_state = ChannelState.CONNECTED
                logger.info("Change channel connected", extra={"topic": self.topic, "channel": self.channel_state.value})
                if failures:
                    # Changes may have been missed while disconnected
                    await self.refresh("resubscribed")
                failures = 0
                try:
                    async for event in subscription:
                        await self.refresh(f"{event.table}:{event.event}")
                except ChannelDisconnected as e:
                    logger.warning("Change channel dropped", extra={"topic": self.topic, "error": str(e)})
                finally:
                    self._subscription = None
                    await subscription.close()

            self.channel_state = ChannelState.DISCONNECTED
            if not self.running:
                return
            delay = self._resubscribe_delays[min(failures, len(self._resubscribe_delays) - 1)]
            failures += 1
            await self._sleep(delay)
