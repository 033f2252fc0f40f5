"""Pushing result snapshots to subscribed observers.

``Broadcaster`` keeps the subscriptions and delivers one snapshot to every
subscriber of a run. ``BroadcastLoop`` decides *when*: on a fixed tick for
every running run, and once more shortly after a run turns terminal so
observers always receive the final result.

Delivery never queues. A subscriber that misses a tick gets the next
snapshot, which is complete on its own.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from barrage._internal.logging import get_logger

if TYPE_CHECKING:
    from barrage.engine.store import RunStore
    from barrage.metrics.models import TestResult

logger = get_logger("broadcast.fanout")


class Subscriber(Protocol):
    """Anything that can receive a result snapshot."""

    async def send(self, result: TestResult) -> None: ...


class Broadcaster:
    """Registry of subscribers keyed by run id.

    Args:
        send_timeout: Seconds a single delivery may take before it is dropped.
    """

    def __init__(self, send_timeout: float = 0.5) -> None:
        self._send_timeout = send_timeout
        self._subscribers: dict[str, set[Subscriber]] = {}

    def subscribe(self, run_id: str, subscriber: Subscriber) -> None:
        self._subscribers.setdefault(run_id, set()).add(subscriber)
        logger.debug("Subscriber added for run %s", run_id)

    def unsubscribe(self, run_id: str, subscriber: Subscriber) -> None:
        subscribers = self._subscribers.get(run_id)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            del self._subscribers[run_id]

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        """Drop *subscriber* from every run, e.g. when its connection closes."""
        for run_id in list(self._subscribers):
            self.unsubscribe(run_id, subscriber)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))

    async def publish(self, run_id: str, result: TestResult) -> int:
        """Deliver *result* to every subscriber of *run_id* concurrently.

        Failed or slow deliveries are logged and skipped; the subscriber
        stays registered.

        Args:
            run_id: Run the snapshot belongs to.
            result: Snapshot to deliver; must not be mutated afterwards.

        Returns:
            Number of successful deliveries.
        """
        subscribers = list(self._subscribers.get(run_id, ()))
        if not subscribers:
            return 0
        outcomes = await asyncio.gather(
            *(self._deliver(subscriber, result) for subscriber in subscribers)
        )
        return sum(outcomes)

    async def _deliver(self, subscriber: Subscriber, result: TestResult) -> bool:
        try:
            await asyncio.wait_for(subscriber.send(result), self._send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Delivery of run %s failed: %r", result.id, exc)
            return False
        return True


class BroadcastLoop:
    """Publishes running runs on a fixed interval.

    Args:
        store: Source of run snapshots.
        broadcaster: Delivers snapshots to subscribers.
        interval: Seconds between ticks.
        final_delay: Settle delay before the post-terminal publication.
    """

    def __init__(
        self,
        store: RunStore,
        broadcaster: Broadcaster,
        *,
        interval: float = 0.5,
        final_delay: float = 1.0,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._interval = interval
        self._final_delay = final_delay
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking on the running event loop. No-op if already started."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="broadcast-loop")
        logger.debug("Broadcast loop started (interval=%.2fs)", self._interval)

    async def stop(self) -> None:
        """Stop ticking and drop any pending final publications."""
        tasks = [t for t in (self._task, *self._pending) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._pending.clear()

    async def tick(self) -> int:
        """Publish one snapshot of every running run.

        Returns:
            Number of runs published.
        """
        published = 0
        for record in self._store.running():
            snapshot = self._store.snapshot(record.run_id)
            if snapshot is None:
                continue
            await self._broadcaster.publish(snapshot.id, snapshot)
            published += 1
        return published

    def publish_final(self, run_id: str) -> None:
        """Schedule the post-terminal publication of *run_id*.

        Safe to call from synchronous code running on the event loop.
        """
        task = asyncio.get_running_loop().create_task(self._publish_final(run_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish_final(self, run_id: str) -> None:
        await asyncio.sleep(self._final_delay)
        snapshot = self._store.snapshot(run_id)
        if snapshot is None:
            return
        delivered = await self._broadcaster.publish(run_id, snapshot)
        logger.debug(
            "Final snapshot of run %s (%s) sent to %d subscribers",
            run_id,
            snapshot.status.value,
            delivered,
        )

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Broadcast tick failed")
            await asyncio.sleep(self._interval)
