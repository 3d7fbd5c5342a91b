"""Outbox handlers for settled payments.

Each handler receives the event payload written by ``settle_payment`` and must
be safe to run more than once.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.models.payment import Payment, PaymentPurpose, PaymentStatus
from paperhub.models.subscription import SubscriptionStatus
from paperhub.models.user import User
from paperhub.services.outbox import (
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    PAYMENT_SUCCEEDED,
    EventHandler,
)
from paperhub.services.payment_service import get_payment_by_transaction_id
from paperhub.services.subscription_service import (
    activate_subscription,
    cancel_subscription,
    get_subscription_for_payment,
    refresh_access_level,
)

logger = logging.getLogger(__name__)


async def _load_payment(db: AsyncSession, payload: dict[str, Any]) -> Payment:
    payment = await get_payment_by_transaction_id(db, payload["transaction_id"])
    if payment is None:
        raise LookupError(f"Payment {payload['transaction_id']} not found")
    return payment


async def handle_payment_succeeded(db: AsyncSession, payload: dict[str, Any]) -> None:
    payment = await _load_payment(db, payload)
    if payment.status != PaymentStatus.SUCCESS.value:
        logger.warning("Skipping success handler for %s in status %s", payment.transaction_id, payment.status)
        return

    user = await db.get(User, payment.user_id) if payment.user_id else None
    if user is not None and not user.payment_completed:
        user.payment_completed = True
        user.payment_amount = payment.amount
        user.payment_date = payment.completed_at
        logger.info("Marked user %s as paid via %s", user.id, payment.transaction_id)

    if payment.purpose == PaymentPurpose.SUBSCRIPTION.value:
        subscription = await get_subscription_for_payment(db, payment)
        if subscription is None:
            logger.warning("No subscription found for successful payment %s", payment.transaction_id)
        else:
            await activate_subscription(db, subscription)

    if user is not None:
        await refresh_access_level(db, user)
    await db.flush()


async def handle_payment_failed(db: AsyncSession, payload: dict[str, Any]) -> None:
    payment = await _load_payment(db, payload)
    subscription = await get_subscription_for_payment(db, payment)
    if subscription is not None and subscription.status == SubscriptionStatus.PENDING.value:
        await cancel_subscription(
            db, subscription, reason=f"Payment failed ({payment.error_code or 'unknown'})"
        )


async def handle_payment_refunded(db: AsyncSession, payload: dict[str, Any]) -> None:
    payment = await _load_payment(db, payload)
    subscription = await get_subscription_for_payment(db, payment)
    if subscription is not None and subscription.status in (
        SubscriptionStatus.PENDING.value,
        SubscriptionStatus.ACTIVE.value,
    ):
        await cancel_subscription(
            db, subscription, reason=f"Payment refunded: {payment.refund_reason or 'no reason given'}"
        )
    if payment.user_id:
        user = await db.get(User, payment.user_id)
        if user is not None:
            await refresh_access_level(db, user)


PAYMENT_EVENT_HANDLERS: dict[str, EventHandler] = {
    PAYMENT_SUCCEEDED: handle_payment_succeeded,
    PAYMENT_FAILED: handle_payment_failed,
    PAYMENT_REFUNDED: handle_payment_refunded,
}
