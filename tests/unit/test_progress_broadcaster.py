"""
Unit tests for progress broadcasting.

Run: pytest tests/unit/test_progress_broadcaster.py -v
"""

import asyncio
import threading

from models.sync import ProgressEvent, SyncState
from services.progress_broadcaster import ProgressBroadcaster


def make_event(percentage: int, workspace_id="ws-1", source_id="src-1", completed=False) -> ProgressEvent:
    return ProgressEvent(
        run_id="run-1",
        workspace_id=workspace_id,
        source_id=source_id,
        current=percentage,
        percentage=percentage,
        status=f"step {percentage}",
        state=SyncState.DONE if completed else SyncState.FETCHING,
        completed=completed,
    )


async def collect(subscription, keepalive=0.05, timeout=1.0) -> list:
    return [e async for e in subscription.events(keepalive_seconds=keepalive, timeout_seconds=timeout)]


class TestPublishSubscribe:
    """Tests for keyed delivery."""

    def test_subscriber_receives_events_until_completion(self):
        """Should deliver events in order and stop after completion."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            broadcaster.publish(make_event(8))
            broadcaster.publish(make_event(50))
            broadcaster.publish(make_event(100, completed=True))
            return await collect(subscription)

        events = asyncio.run(scenario())

        assert [e.percentage for e in events] == [8, 50, 100]
        assert events[-1].completed is True
        assert broadcaster.subscriber_count("ws-1", "src-1") == 0

    def test_keys_are_isolated(self):
        """Should not deliver another source's events."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            broadcaster.publish(make_event(30, source_id="src-2"))
            broadcaster.publish(make_event(30, workspace_id="ws-2"))
            broadcaster.publish(make_event(100, completed=True))
            return await collect(subscription)

        events = asyncio.run(scenario())

        assert len(events) == 1
        assert events[0].source_id == "src-1"

    def test_publish_without_subscribers(self):
        """Should accept events nobody listens to."""
        broadcaster = ProgressBroadcaster()

        assert broadcaster.publish(make_event(8)) == 0

    def test_fan_out(self):
        """Should deliver each event to every subscriber."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            first = broadcaster.subscribe("ws-1", "src-1")
            second = broadcaster.subscribe("ws-1", "src-1")
            offered = broadcaster.publish(make_event(100, completed=True))
            return offered, await collect(first), await collect(second)

        offered, first, second = asyncio.run(scenario())

        assert offered == 2
        assert len(first) == len(second) == 1


class TestReplayAndLifetime:
    """Tests for replay, keepalive and timeout."""

    def test_late_subscriber_gets_last_event(self):
        """Should replay the latest event to a new subscriber."""
        broadcaster = ProgressBroadcaster()
        broadcaster.publish(make_event(20))
        broadcaster.publish(make_event(35))

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            broadcaster.publish(make_event(100, completed=True))
            return await collect(subscription)

        events = asyncio.run(scenario())

        assert [e.percentage for e in events] == [35, 100]

    def test_completed_channel_not_replayed(self):
        """Should forget the channel after its completion event."""
        broadcaster = ProgressBroadcaster()
        broadcaster.publish(make_event(50))
        broadcaster.publish(make_event(100, completed=True))

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            return await collect(subscription, keepalive=0.02, timeout=0.1)

        events = asyncio.run(scenario())

        assert all(e is None for e in events)

    def test_keepalive_then_timeout(self):
        """Should yield None while idle and end at the timeout."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            return await collect(subscription, keepalive=0.02, timeout=0.15)

        events = asyncio.run(scenario())

        assert len(events) >= 2
        assert all(e is None for e in events)
        assert broadcaster.subscriber_count("ws-1", "src-1") == 0


class TestBackpressure:
    """Tests for slow subscribers and cross-thread publishing."""

    def test_full_queue_drops_events(self):
        """Should drop events for a subscriber whose queue is full."""
        broadcaster = ProgressBroadcaster(queue_size=2)

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")
            for percentage in (10, 20, 30, 40):
                broadcaster.publish(make_event(percentage))
            # Let the loop run the queued puts.
            await asyncio.sleep(0.01)
            return subscription

        subscription = asyncio.run(scenario())

        assert subscription.queue.qsize() == 2
        assert subscription.dropped == 2

    def test_publish_from_worker_thread(self):
        """Should deliver events published from another thread."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            subscription = broadcaster.subscribe("ws-1", "src-1")

            def worker():
                for percentage in (8, 20, 80):
                    broadcaster.publish(make_event(percentage))
                broadcaster.publish(make_event(100, completed=True))

            thread = threading.Thread(target=worker)
            thread.start()
            events = await collect(subscription, keepalive=0.5, timeout=2.0)
            thread.join()
            return events

        events = asyncio.run(scenario())

        assert [e.percentage for e in events if e is not None] == [8, 20, 80, 100]

    def test_publish_after_loop_closed(self):
        """Should not fail when a subscriber's loop is gone."""
        broadcaster = ProgressBroadcaster()

        async def scenario():
            return broadcaster.subscribe("ws-1", "src-1")

        subscription = asyncio.run(scenario())
        broadcaster.publish(make_event(50))

        assert subscription.closed is True
