import asyncio
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from fakes import FakeClock, FakeRedis
from newsdesk.jobs.queue import PROCESS_READ
from newsdesk.services.read_tracking import (
    ANONYMOUS_IDENTIFIER,
    ReadThrottle,
    ReadTracker,
    dedup_key,
    resolve_identifier,
)


class _FakeSessionContext:
    async def __aenter__(self):
        return SimpleNamespace()

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _EventLog:
    """Replaces record_read_event; keeps appended events in memory."""

    def __init__(self) -> None:
        self.events: list[SimpleNamespace] = []

    async def record(self, session, article_id, reader_id):
        event = SimpleNamespace(
            id=f"evt-{len(self.events) + 1}",
            article_id=article_id,
            reader_id=reader_id,
            read_at=datetime(2026, 3, 1, 12, 0, len(self.events), tzinfo=timezone.utc),
        )
        self.events.append(event)
        return event


class _UnavailableRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")


def _tracker(redis=None, window_seconds: int = 10, fail_open: bool = True) -> ReadTracker:
    throttle = ReadThrottle(redis or FakeRedis(), window_seconds=window_seconds, fail_open=fail_open)
    return ReadTracker(throttle, _FakeSessionContext, AsyncMock())


class IdentifierTests(unittest.TestCase):
    def test_reader_id_takes_precedence_over_ip(self) -> None:
        self.assertEqual(resolve_identifier("reader-1", "10.0.0.1"), "reader-1")

    def test_ip_used_for_guests(self) -> None:
        self.assertEqual(resolve_identifier(None, "10.0.0.1"), "10.0.0.1")

    def test_anonymous_sentinel_when_nothing_known(self) -> None:
        self.assertEqual(resolve_identifier(None, None), ANONYMOUS_IDENTIFIER)
        self.assertEqual(resolve_identifier("", ""), ANONYMOUS_IDENTIFIER)

    def test_dedup_key_layout(self) -> None:
        self.assertEqual(dedup_key("article-1", "10.0.0.1"), "read_limit:article-1:10.0.0.1")


class ReadTrackerTests(unittest.IsolatedAsyncioTestCase):
    async def test_repeated_reads_inside_window_record_one_event(self) -> None:
        clock = FakeClock()
        tracker = _tracker(FakeRedis(clock))
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            outcomes = [await tracker.record_read("article-1", "reader-1", "10.0.0.1") for _ in range(5)]
            clock.advance(9.9)
            outcomes.append(await tracker.record_read("article-1", "reader-1", "10.0.0.1"))

        self.assertEqual(outcomes, [True, False, False, False, False, False])
        self.assertEqual(len(log.events), 1)

    async def test_read_after_window_expires_records_again(self) -> None:
        clock = FakeClock()
        tracker = _tracker(FakeRedis(clock))
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", None, "10.0.0.1")
            clock.advance(10)
            recorded = await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertTrue(recorded)
        self.assertEqual(len(log.events), 2)

    async def test_window_is_configurable(self) -> None:
        clock = FakeClock()
        tracker = _tracker(FakeRedis(clock), window_seconds=60)
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", None, "10.0.0.1")
            clock.advance(30)
            await tracker.record_read("article-1", None, "10.0.0.1")
            clock.advance(30)
            await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertEqual(len(log.events), 2)

    async def test_authenticated_reader_is_not_merged_with_guest_on_same_ip(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", None, "10.0.0.1")
            await tracker.record_read("article-1", "reader-1", "10.0.0.1")

        self.assertEqual([e.reader_id for e in log.events], [None, "reader-1"])

    async def test_distinct_guest_ips_are_both_recorded(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", None, "10.0.0.1")
            await tracker.record_read("article-1", None, "10.0.0.2")

        self.assertEqual(len(log.events), 2)

    async def test_guests_without_address_share_the_anonymous_identity(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", None, None)
            await tracker.record_read("article-1", None, None)

        self.assertEqual(len(log.events), 1)

    async def test_same_reader_on_different_articles_is_recorded_per_article(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", "reader-1", None)
            await tracker.record_read("article-2", "reader-1", None)

        self.assertEqual([e.article_id for e in log.events], ["article-1", "article-2"])

    async def test_concurrent_reads_by_one_identifier_count_once(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            outcomes = await asyncio.gather(
                *(tracker.record_read("article-1", "reader-1", None) for _ in range(10))
            )

        self.assertEqual(sum(outcomes), 1)
        self.assertEqual(len(log.events), 1)

    async def test_recorded_read_is_dispatched_with_article_and_timestamp(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", "reader-1", None)

        tracker.queue.add.assert_awaited_once_with(
            PROCESS_READ,
            {"article_id": "article-1", "read_at": "2026-03-01T12:00:00+00:00"},
        )

    async def test_skipped_read_has_no_side_effects(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            await tracker.record_read("article-1", "reader-1", None)
            tracker.queue.add.reset_mock()
            await tracker.record_read("article-1", "reader-1", None)

        self.assertEqual(len(log.events), 1)
        tracker.queue.add.assert_not_awaited()

    async def test_store_failure_is_swallowed_and_nothing_is_dispatched(self) -> None:
        tracker = _tracker()

        with patch(
            "newsdesk.services.read_tracking.record_read_event",
            AsyncMock(side_effect=RuntimeError("database unavailable")),
        ):
            recorded = await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertFalse(recorded)
        tracker.queue.add.assert_not_awaited()

    async def test_dispatch_failure_keeps_the_recorded_event(self) -> None:
        tracker = _tracker()
        tracker.queue.add.side_effect = RedisConnectionError("Connection refused")
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            recorded = await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertTrue(recorded)
        self.assertEqual(len(log.events), 1)

    async def test_unreachable_dedup_store_fails_open_by_default(self) -> None:
        tracker = _tracker(_UnavailableRedis())
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            recorded = await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertTrue(recorded)
        self.assertEqual(len(log.events), 1)

    async def test_unreachable_dedup_store_can_fail_closed(self) -> None:
        tracker = _tracker(_UnavailableRedis(), fail_open=False)
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            recorded = await tracker.record_read("article-1", None, "10.0.0.1")

        self.assertFalse(recorded)
        self.assertEqual(log.events, [])

    async def test_spawn_runs_in_background_and_drain_waits_for_it(self) -> None:
        tracker = _tracker()
        log = _EventLog()

        with patch("newsdesk.services.read_tracking.record_read_event", side_effect=log.record):
            task = tracker.spawn("article-1", "reader-1", None)
            self.assertEqual(tracker.pending, 1)
            await tracker.drain()

        self.assertTrue(task.done())
        self.assertTrue(task.result())
        self.assertEqual(tracker.pending, 0)
        self.assertEqual(len(log.events), 1)


if __name__ == "__main__":
    unittest.main()
