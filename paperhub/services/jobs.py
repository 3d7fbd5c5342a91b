"""Background loops started from the application lifespan.

Each tick opens its own session and commits on success. A failing tick is
logged and the loop carries on at the next interval.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paperhub.config import settings
from paperhub.database import async_session_factory
from paperhub.services.outbox import dispatch_pending_events
from paperhub.services.payment_events import PAYMENT_EVENT_HANDLERS
from paperhub.services.subscription_service import (
    cleanup_orphaned_subscriptions,
    expire_old_subscriptions,
)

logger = logging.getLogger(__name__)


async def run_subscription_sweep(session_factory: async_sessionmaker[AsyncSession]) -> tuple[int, int]:
    async with session_factory() as db:
        expired = await expire_old_subscriptions(db)
        orphans = await cleanup_orphaned_subscriptions(db)
        await db.commit()
    return expired, orphans


async def run_outbox_dispatch(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as db:
        stats = await dispatch_pending_events(db, PAYMENT_EVENT_HANDLERS)
        await db.commit()
    return stats.processed


async def subscription_sweep_loop(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> None:
    interval = settings.subscription_sweep_interval_seconds
    logger.info("Subscription sweep started (interval=%ss)", interval)
    while True:
        try:
            expired, orphans = await run_subscription_sweep(session_factory)
            if expired or orphans:
                logger.info("Sweep: %s expired, %s orphaned removed", expired, orphans)
        except Exception:
            logger.exception("Subscription sweep failed")
        await asyncio.sleep(interval)


async def outbox_loop(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> None:
    interval = settings.outbox_poll_interval_seconds
    logger.info("Outbox dispatcher started (interval=%ss)", interval)
    while True:
        try:
            await run_outbox_dispatch(session_factory)
        except Exception:
            logger.exception("Outbox dispatch failed")
        await asyncio.sleep(interval)


def start_background_jobs() -> list[asyncio.Task]:
    return [
        asyncio.create_task(subscription_sweep_loop(), name="subscription-sweep"),
        asyncio.create_task(outbox_loop(), name="outbox-dispatch"),
    ]


async def stop_background_jobs(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background jobs stopped")
