"""
Progress broadcaster - keyed publish/subscribe for sync progress.

Channels are keyed by (workspace_id, source_id). Runs publish from worker
threads; subscribers consume from the event loop that created them. Publish
never blocks: each subscriber has a bounded queue and a full queue drops the
event for that subscriber only.

A channel remembers its last event so a subscriber that (re)connects
mid-run sees the current percentage at once. The channel is torn down after
the completion event.
"""

import asyncio
import threading
import time
from typing import AsyncIterator, Optional
import structlog

from config import settings
from models.sync import ProgressEvent

logger = structlog.get_logger(__name__)


ChannelKey = tuple[str, str]


class Subscription:
    """One subscriber's view of a channel."""

    def __init__(
        self,
        broadcaster: "ProgressBroadcaster",
        key: ChannelKey,
        loop: asyncio.AbstractEventLoop,
        maxsize: int,
    ):
        self._broadcaster = broadcaster
        self.key = key
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: ProgressEvent) -> None:
        """Queue an event from any thread without blocking."""
        if self.closed:
            return
        try:
            self.loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed; the subscriber is gone.
            self.closed = True

    def _put(self, event: ProgressEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def events(
        self,
        keepalive_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AsyncIterator[Optional[ProgressEvent]]:
        """
        Yield events until completion or the subscription timeout.

        Yields None when no event arrived within the keepalive interval, so
        the transport can send a keepalive.
        """
        keepalive = keepalive_seconds or settings.progress_keepalive_seconds
        timeout = timeout_seconds or settings.progress_subscription_timeout_seconds
        deadline = time.monotonic() + timeout

        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.info("progress_subscription_timed_out", key=self.key)
                    return
                try:
                    event = await asyncio.wait_for(self.queue.get(), timeout=min(keepalive, remaining))
                except asyncio.TimeoutError:
                    if deadline - time.monotonic() <= 0:
                        logger.info("progress_subscription_timed_out", key=self.key)
                        return
                    yield None
                    continue

                yield event
                if event.completed:
                    return
        finally:
            self.close()

    def close(self) -> None:
        self.closed = True
        self._broadcaster.unsubscribe(self)


class ProgressBroadcaster:
    """Keyed progress channels shared by runs and subscribers."""

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.progress_queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[ChannelKey, set[Subscription]] = {}
        self._last_event: dict[ChannelKey, ProgressEvent] = {}

    def subscribe(self, workspace_id: str, source_id: str) -> Subscription:
        """
        Attach a subscriber to a channel.

        Must be called from inside the event loop that will consume it.
        """
        key = (workspace_id, source_id)
        subscription = Subscription(self, key, asyncio.get_running_loop(), self.queue_size)

        with self._lock:
            self._subscribers.setdefault(key, set()).add(subscription)
            last = self._last_event.get(key)

        if last is not None:
            subscription.offer(last)

        logger.debug("progress_subscribed", workspace_id=workspace_id, source_id=source_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.key)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.key]

    def publish(self, event: ProgressEvent) -> int:
        """
        Send an event to every subscriber of its channel.

        Returns:
            Number of subscribers the event was offered to
        """
        key = (event.workspace_id, event.source_id)
        with self._lock:
            subscribers = list(self._subscribers.get(key, ()))
            if event.completed:
                self._last_event.pop(key, None)
            else:
                self._last_event[key] = event

        for subscription in subscribers:
            subscription.offer(event)

        if event.completed:
            self.close_channel(event.workspace_id, event.source_id)

        return len(subscribers)

    def close_channel(self, workspace_id: str, source_id: str) -> None:
        """Forget a channel after its run completed."""
        key = (workspace_id, source_id)
        with self._lock:
            self._subscribers.pop(key, None)
            self._last_event.pop(key, None)

    def subscriber_count(self, workspace_id: str, source_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get((workspace_id, source_id), ()))


# Singleton instance
_broadcaster: Optional[ProgressBroadcaster] = None


def get_progress_broadcaster() -> ProgressBroadcaster:
    """Get or create ProgressBroadcaster singleton."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = ProgressBroadcaster()
    return _broadcaster
