"""Transactional outbox — enqueue follow-up work and dispatch it with retries.

Events are written in the same transaction as the state change that caused
them, so a committed payment transition always has its follow-up recorded.
The dispatcher runs each handler in its own savepoint; failures are retried
with exponential backoff until ``outbox_max_attempts`` is reached.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.config import settings
from paperhub.database import utcnow
from paperhub.models.outbox import OutboxEvent, OutboxStatus

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
PAYMENT_REFUNDED = "payment.refunded"

EventHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[None]]


@dataclass
class DispatchStats:
    processed: int = 0
    retried: int = 0
    failed: int = 0


def backoff_delay_seconds(attempts: int, base_delay: int, max_delay: int) -> int:
    delay = base_delay * (2 ** max(attempts - 1, 0))
    return min(delay, max_delay)


async def enqueue_event(
    db: AsyncSession, event_type: str, payload: dict[str, Any]
) -> OutboxEvent:
    """Record an event to be dispatched after the current transaction commits."""
    event = OutboxEvent(
        event_type=event_type,
        payload=payload,
        status=OutboxStatus.PENDING.value,
        available_at=utcnow(),
    )
    db.add(event)
    await db.flush()
    logger.debug("Enqueued outbox event %s (%s)", event.id, event_type)
    return event


async def dispatch_pending_events(
    db: AsyncSession,
    handlers: Mapping[str, EventHandler],
    limit: int | None = None,
    now: datetime | None = None,
) -> DispatchStats:
    """Run handlers for every due pending event, oldest first."""
    now = now or utcnow()
    stats = DispatchStats()

    result = await db.execute(
        select(OutboxEvent)
        .where(
            OutboxEvent.status == OutboxStatus.PENDING.value,
            OutboxEvent.available_at <= now,
        )
        .order_by(OutboxEvent.available_at)
        .limit(limit or settings.outbox_batch_size)
    )
    events = list(result.scalars().all())

    for event in events:
        handler = handlers.get(event.event_type)
        event.attempts += 1
        if handler is None:
            logger.error("No handler registered for outbox event type %s", event.event_type)
            event.status = OutboxStatus.FAILED.value
            event.last_error = "No handler registered"
            stats.failed += 1
            continue

        try:
            async with db.begin_nested():
                await handler(db, dict(event.payload))
        except Exception as exc:
            event.last_error = f"{type(exc).__name__}: {exc}"[:1000]
            if event.attempts >= settings.outbox_max_attempts:
                event.status = OutboxStatus.FAILED.value
                stats.failed += 1
                logger.error(
                    "Outbox event %s (%s) failed permanently after %s attempts",
                    event.id,
                    event.event_type,
                    event.attempts,
                    exc_info=True,
                )
            else:
                delay = backoff_delay_seconds(
                    event.attempts,
                    settings.outbox_base_delay_seconds,
                    settings.outbox_max_delay_seconds,
                )
                event.available_at = now + timedelta(seconds=delay)
                stats.retried += 1
                logger.warning(
                    "Outbox event %s (%s) failed, retrying in %ss: %s",
                    event.id,
                    event.event_type,
                    delay,
                    exc,
                )
        else:
            event.status = OutboxStatus.DONE.value
            event.processed_at = now
            event.last_error = None
            stats.processed += 1

    await db.flush()
    if events:
        logger.info(
            "Outbox dispatch: %s processed, %s retried, %s failed",
            stats.processed,
            stats.retried,
            stats.failed,
        )
    return stats
