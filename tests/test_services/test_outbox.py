"""Tests for the transactional outbox dispatcher."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.config import settings
from paperhub.database import utcnow
from paperhub.models.outbox import OutboxStatus
from paperhub.services.outbox import backoff_delay_seconds, dispatch_pending_events, enqueue_event


class TestBackoff:
    @pytest.mark.parametrize("attempts,expected", [(1, 30), (2, 60), (3, 120), (5, 480), (6, 900), (10, 900)])
    def test_doubles_and_caps(self, attempts, expected):
        assert backoff_delay_seconds(attempts, 30, 900) == expected


class TestDispatch:
    async def test_success_marks_done(self, db_session: AsyncSession):
        handler = AsyncMock()
        event = await enqueue_event(db_session, "test.event", {"key": "value"})

        stats = await dispatch_pending_events(db_session, {"test.event": handler}, now=utcnow() + timedelta(seconds=1))

        handler.assert_awaited_once_with(db_session, {"key": "value"})
        assert stats.processed == 1
        assert event.status == OutboxStatus.DONE.value
        assert event.attempts == 1
        assert event.processed_at is not None

    async def test_failure_retried_with_backoff(self, db_session: AsyncSession):
        handler = AsyncMock(side_effect=RuntimeError("downstream unavailable"))
        event = await enqueue_event(db_session, "test.event", {})
        now = utcnow() + timedelta(seconds=1)

        stats = await dispatch_pending_events(db_session, {"test.event": handler}, now=now)
        assert stats.retried == 1
        assert event.status == OutboxStatus.PENDING.value
        assert event.available_at == now + timedelta(seconds=settings.outbox_base_delay_seconds)
        assert "downstream unavailable" in event.last_error

        # Not due yet
        stats = await dispatch_pending_events(db_session, {"test.event": handler}, now=now + timedelta(seconds=5))
        assert stats.retried == 0
        assert handler.await_count == 1

        later = event.available_at
        await dispatch_pending_events(db_session, {"test.event": handler}, now=later)
        assert event.attempts == 2
        assert event.available_at == later + timedelta(seconds=2 * settings.outbox_base_delay_seconds)

    async def test_gives_up_after_max_attempts(self, db_session: AsyncSession):
        handler = AsyncMock(side_effect=ValueError("bad payload"))
        event = await enqueue_event(db_session, "test.event", {})
        now = utcnow() + timedelta(seconds=1)

        with patch.object(settings, "outbox_max_attempts", 2):
            await dispatch_pending_events(db_session, {"test.event": handler}, now=now)
            stats = await dispatch_pending_events(db_session, {"test.event": handler}, now=now + timedelta(hours=1))

        assert stats.failed == 1
        assert event.status == OutboxStatus.FAILED.value
        assert event.attempts == 2

    async def test_unknown_event_type_fails(self, db_session: AsyncSession):
        event = await enqueue_event(db_session, "nobody.listens", {})
        stats = await dispatch_pending_events(db_session, {}, now=utcnow() + timedelta(seconds=1))
        assert stats.failed == 1
        assert event.status == OutboxStatus.FAILED.value
        assert event.last_error == "No handler registered"

    async def test_handler_writes_rolled_back_on_failure(self, db_session: AsyncSession):
        from tests.helpers import create_user

        user = await create_user(db_session)

        async def handler(db, payload):
            user.name = "Changed"
            await db.flush()
            raise RuntimeError("fail after write")

        await enqueue_event(db_session, "test.event", {})
        await dispatch_pending_events(db_session, {"test.event": handler}, now=utcnow() + timedelta(seconds=1))

        await db_session.refresh(user)
        assert user.name == "Test Student"
