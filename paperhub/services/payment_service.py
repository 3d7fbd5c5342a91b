"""Payment service — initiation, status transitions and reconciliation."""

import logging
import math
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from paperhub.billing.exceptions import (
    AmountMismatch,
    BillingError,
    DuplicatePendingPayment,
    InvalidPaymentTransition,
    PaymentInitiationFailed,
    PaymentNotFound,
    ProviderError,
)
from paperhub.billing.nkwapay_client import get_payment_status, map_provider_status, request_collection
from paperhub.billing.phone import mask_phone, normalize_phone
from paperhub.billing.plans import get_plan
from paperhub.config import settings
from paperhub.database import utcnow
from paperhub.models.payment import (
    OPEN_STATUSES,
    Payment,
    PaymentPurpose,
    PaymentStatus,
    check_transition,
)
from paperhub.models.user import User
from paperhub.services.outbox import (
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    PAYMENT_SUCCEEDED,
    enqueue_event,
)

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    PaymentStatus.SUCCESS: PAYMENT_SUCCEEDED,
    PaymentStatus.FAILED: PAYMENT_FAILED,
    PaymentStatus.REFUNDED: PAYMENT_REFUNDED,
}


@dataclass
class InitiationResult:
    transaction_id: str
    provider_transaction_id: str | None
    amount: int
    status: str
    message: str = "Payment initiated. Confirm the request on your phone."


def generate_transaction_id(prefix: str = "PAY") -> str:
    """Unique local reference: prefix, millisecond timestamp, random hex."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4).upper()}"


def fixed_fee(purpose: PaymentPurpose) -> int | None:
    if purpose == PaymentPurpose.REGISTRATION_FEE:
        return settings.registration_fee_amount
    if purpose == PaymentPurpose.TEST_FEE:
        return settings.test_fee_amount
    return None


def resolve_amount(
    purpose: PaymentPurpose, amount: int | None = None, plan_type: str | None = None
) -> int:
    """Work out what to charge for a purpose, validating any amount the caller sent."""
    if purpose == PaymentPurpose.SUBSCRIPTION:
        if plan_type is None:
            raise BillingError("A plan is required for subscription payments")
        expected = get_plan(plan_type).price
    else:
        expected = fixed_fee(purpose)

    if expected is None:
        if amount is None or amount <= 0:
            raise BillingError("A positive amount is required")
        return amount
    if amount is not None and amount != expected:
        raise AmountMismatch(expected, amount)
    return expected


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_payment_by_transaction_id(db: AsyncSession, transaction_id: str) -> Payment | None:
    result = await db.execute(select(Payment).where(Payment.transaction_id == transaction_id))
    return result.scalar_one_or_none()


async def get_open_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    purpose: PaymentPurpose | str,
    plan_type: str | None = None,
) -> Payment | None:
    """The user's pending or processing payment for ``purpose`` (and plan), if any."""
    plan_filter = Payment.plan_type.is_(None) if plan_type is None else Payment.plan_type == plan_type
    result = await db.execute(
        select(Payment).where(
            Payment.user_id == user_id,
            Payment.purpose == PaymentPurpose(purpose).value,
            plan_filter,
            Payment.status.in_([s.value for s in OPEN_STATUSES]),
        )
    )
    return result.scalars().first()


async def get_user_payment(db: AsyncSession, user: User, transaction_id: str) -> Payment:
    """Fetch a payment owned by ``user``. Raises PaymentNotFound otherwise."""
    payment = await get_payment_by_transaction_id(db, transaction_id)
    if payment is None or payment.user_id != user.id:
        raise PaymentNotFound()
    return payment


async def list_user_payments(
    db: AsyncSession, user_id: uuid.UUID, page: int = 1, limit: int = 20
) -> tuple[list[Payment], int]:
    base = select(Payment).where(Payment.user_id == user_id)
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    result = await db.execute(
        base.order_by(Payment.initiated_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total


async def list_payments(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    purpose: str | None = None,
    user_id: uuid.UUID | None = None,
    phone: str | None = None,
) -> tuple[list[Payment], int]:
    """Admin listing with optional filters, newest first."""
    query = select(Payment)
    if phone:
        query = query.where(Payment.phone_number == normalize_phone(phone))
    if status:
        query = query.where(Payment.status == status)
    if purpose:
        query = query.where(Payment.purpose == purpose)
    if user_id:
        query = query.where(Payment.user_id == user_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Payment.initiated_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total


async def payment_stats(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    """Counts and totals per status, plus today's volume."""
    now = now or utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    rows = (
        await db.execute(
            select(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
            .group_by(Payment.status)
            .order_by(Payment.status)
        )
    ).all()
    by_status = [
        {"status": status, "count": count, "total_amount": int(total)} for status, count, total in rows
    ]
    counts = {row["status"]: row for row in by_status}

    today = (
        await db.execute(select(func.count(Payment.id)).where(Payment.initiated_at >= start_of_day))
    ).scalar_one()

    def _count(*statuses: PaymentStatus) -> int:
        return sum(counts[s.value]["count"] for s in statuses if s.value in counts)

    return {
        "by_status": by_status,
        "total_payments": sum(row["count"] for row in by_status),
        "successful_payments": _count(PaymentStatus.SUCCESS),
        "pending_payments": _count(PaymentStatus.PENDING, PaymentStatus.PROCESSING),
        "total_revenue": counts.get(PaymentStatus.SUCCESS.value, {}).get("total_amount", 0),
        "today_payments": today,
    }


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


async def transition_payment(
    db: AsyncSession,
    payment: Payment,
    target: PaymentStatus,
    now: datetime | None = None,
    **changes: Any,
) -> bool:
    """Move ``payment`` to ``target`` with a compare-and-set on its current status.

    Returns False when the payment already sits at ``target`` (replays are
    no-ops). Raises ``InvalidPaymentTransition`` when the move is not allowed,
    including when a concurrent writer got there first with a different
    terminal status.
    """
    now = now or utcnow()
    values: dict[str, Any] = {"status": target.value, **changes}
    if target in (PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
        values.setdefault("completed_at", now)
    elif target == PaymentStatus.REFUNDED:
        values.setdefault("refunded_at", now)

    # A lost race re-reads the row and tries again from the new status.
    for _ in range(3):
        current = payment.payment_status
        if current == target:
            return False
        check_transition(current, target)

        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            for key, value in values.items():
                set_committed_value(payment, key, value)
            logger.info(
                "Payment %s: %s -> %s", payment.transaction_id, current.value, target.value
            )
            return True

        await db.refresh(payment)

    raise InvalidPaymentTransition(payment.status, target.value)


async def settle_payment(
    db: AsyncSession,
    payment: Payment,
    target: PaymentStatus,
    source: str,
    **changes: Any,
) -> bool:
    """Apply a terminal status and record the follow-up outbox event in the same unit of work."""
    changed = await transition_payment(db, payment, target, **changes)
    if changed and target in _TERMINAL_EVENTS:
        await enqueue_event(
            db,
            _TERMINAL_EVENTS[target],
            {
                "payment_id": str(payment.id),
                "transaction_id": payment.transaction_id,
                "source": source,
            },
        )
    return changed


# ---------------------------------------------------------------------------
# Initiation
# ---------------------------------------------------------------------------


async def initiate_payment(
    db: AsyncSession,
    user: User,
    phone: str,
    purpose: PaymentPurpose | str = PaymentPurpose.REGISTRATION_FEE,
    description: str | None = None,
    amount: int | None = None,
    plan_type: str | None = None,
    transaction_id: str | None = None,
    subscription_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> InitiationResult:
    """Create a Payment and ask the provider to collect it.

    Raises InvalidPhoneFormat or AmountMismatch before anything is written.
    Raises DuplicatePendingPayment while another payment for the same purpose
    (and, for subscriptions, the same plan) is still open and younger than the
    pending timeout; an older one is marked failed with ``error_code="timeout"``
    and a new attempt goes ahead.

    The pending Payment is committed before the provider is called, so a
    callback that arrives while the call is in flight finds it. If the
    provider refuses, the Payment is kept as failed and PaymentInitiationFailed
    is raised.
    """
    phone_number = normalize_phone(phone)
    purpose = PaymentPurpose(purpose)
    charge = resolve_amount(purpose, amount, plan_type)
    lock_plan = get_plan(plan_type).name if purpose == PaymentPurpose.SUBSCRIPTION else None
    now = now or utcnow()

    existing = await get_open_payment(db, user.id, purpose, lock_plan)
    if existing is not None:
        timeout = timedelta(minutes=settings.pending_payment_timeout_minutes)
        if now - existing.initiated_at < timeout:
            raise DuplicatePendingPayment(existing.transaction_id)
        await settle_payment(
            db,
            existing,
            PaymentStatus.FAILED,
            source="timeout",
            now=now,
            error_code="timeout",
            error_message="No confirmation received before the payment timed out",
        )
        logger.info("Expired stale payment %s for user %s", existing.transaction_id, user.id)

    payment = Payment(
        transaction_id=transaction_id or generate_transaction_id("PAY"),
        amount=charge,
        currency=settings.currency,
        phone_number=phone_number,
        status=PaymentStatus.PENDING.value,
        purpose=purpose.value,
        plan_type=lock_plan,
        description=description,
        user_id=user.id,
        user_email=user.email,
        subscription_id=subscription_id,
        initiated_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(payment)
    except IntegrityError:
        # Lost the race for the open-payment slot.
        winner = await get_open_payment(db, user.id, purpose, lock_plan)
        raise DuplicatePendingPayment(winner.transaction_id if winner else "") from None

    # No transaction stays open across the provider call.
    await db.commit()

    logger.info(
        "Initiating %s payment %s: %s %s from %s",
        purpose.value,
        payment.transaction_id,
        charge,
        settings.currency,
        mask_phone(phone_number),
    )

    try:
        response = await request_collection(charge, phone_number, payment.transaction_id, description)
    except ProviderError as e:
        try:
            await transition_payment(
                db,
                payment,
                PaymentStatus.FAILED,
                now=now,
                error_code=e.code,
                error_message=e.detail,
            )
        except InvalidPaymentTransition:
            logger.warning(
                "Payment %s was settled as %s while the provider call failed",
                payment.transaction_id,
                payment.status,
            )
        logger.warning("Provider refused payment %s (%s)", payment.transaction_id, e.code)
        raise PaymentInitiationFailed(payment.transaction_id) from e

    provider_id = response.get("id") or response.get("transactionId")
    details: dict[str, Any] = {"provider_response": response}
    if provider_id:
        details["provider_transaction_id"] = str(provider_id)
    try:
        await transition_payment(db, payment, PaymentStatus.PROCESSING, **details)
    except InvalidPaymentTransition:
        # A callback settled it while the provider call was in flight.
        if payment.provider_transaction_id:
            details.pop("provider_transaction_id", None)
        for key, value in details.items():
            setattr(payment, key, value)
        await db.flush()
        logger.info(
            "Payment %s already %s when the provider answered", payment.transaction_id, payment.status
        )
    return InitiationResult(
        transaction_id=payment.transaction_id,
        provider_transaction_id=payment.provider_transaction_id,
        amount=payment.amount,
        status=payment.status,
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


async def check_payment_status(db: AsyncSession, transaction_id: str) -> Payment:
    """Return the payment, asking the provider first if it is still open.

    Terminal payments are returned as stored without contacting the provider.
    Provider errors propagate as ProviderError.
    """
    payment = await get_payment_by_transaction_id(db, transaction_id)
    if payment is None:
        raise PaymentNotFound()
    if payment.is_terminal or not payment.provider_transaction_id:
        return payment

    data = await get_payment_status(payment.provider_transaction_id)
    target = map_provider_status(data.get("status"))
    if target is None:
        return payment

    changes: dict[str, Any] = {}
    if target == PaymentStatus.FAILED:
        changes = {"error_code": "provider_failed", "error_message": "Payment was declined or cancelled"}
    try:
        await settle_payment(db, payment, target, source="reconciler", **changes)
    except InvalidPaymentTransition:
        logger.warning(
            "Provider reports %s for %s but it is already %s",
            target.value,
            transaction_id,
            payment.status,
        )
    return payment


async def refund_payment(db: AsyncSession, transaction_id: str, reason: str) -> Payment:
    """Mark a successful payment refunded. The linked subscription is cancelled by the outbox."""
    payment = await get_payment_by_transaction_id(db, transaction_id)
    if payment is None:
        raise PaymentNotFound()
    await settle_payment(
        db, payment, PaymentStatus.REFUNDED, source="admin", refund_reason=reason
    )
    return payment
