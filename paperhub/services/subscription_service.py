"""Subscription service — purchase, expiry and access evaluation."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.billing.exceptions import (
    AmountMismatch,
    BillingError,
    DuplicateActiveSubscription,
    SubscriptionAlreadyCancelled,
    SubscriptionNotFound,
)
from paperhub.billing.phone import normalize_phone
from paperhub.billing.plans import PLANS_FOR_SERVICE, compute_end_date, get_plan, plan_features
from paperhub.config import settings
from paperhub.database import utcnow
from paperhub.models.payment import Payment, PaymentPurpose, PaymentStatus
from paperhub.models.subscription import PlanType, Subscription, SubscriptionStatus
from paperhub.models.user import User
from paperhub.services.payment_service import (
    InitiationResult,
    generate_transaction_id,
    initiate_payment,
)

logger = logging.getLogger(__name__)

SERVICES = ("courses", "tests", "ai")


@dataclass
class AccessDecision:
    has_access: bool
    service: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    required_plans: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_active_subscriptions(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> list[Subscription]:
    """Subscriptions whose status is active and whose window is still open."""
    now = now or utcnow()
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date > now,
        )
        .order_by(Subscription.end_date.desc())
    )
    return list(result.scalars().all())


async def get_active_subscription(
    db: AsyncSession, user_id: uuid.UUID, plan_type: str, now: datetime | None = None
) -> Subscription | None:
    now = now or utcnow()
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.plan_type == plan_type,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date > now,
        )
    )
    return result.scalars().first()


async def get_subscription_for_payment(db: AsyncSession, payment: Payment) -> Subscription | None:
    """The subscription a payment pays for, by id or by shared transaction id."""
    if payment.subscription_id is not None:
        subscription = await db.get(Subscription, payment.subscription_id)
        if subscription is not None:
            return subscription
    result = await db.execute(
        select(Subscription).where(Subscription.transaction_id == payment.transaction_id)
    )
    return result.scalars().first()


async def list_user_subscriptions(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.start_date.desc())
    )
    return list(result.scalars().all())


async def get_user_subscription(
    db: AsyncSession, user: User, subscription_id: uuid.UUID
) -> Subscription:
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None or subscription.user_id != user.id:
        raise SubscriptionNotFound()
    return subscription


async def list_all_subscriptions(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    plan_type: str | None = None,
) -> tuple[list[Subscription], int]:
    """Admin listing with optional status and plan filters."""
    query = select(Subscription)
    if status:
        query = query.where(Subscription.status == status)
    if plan_type:
        query = query.where(Subscription.plan_type == plan_type)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Subscription.start_date.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


async def subscribe(
    db: AsyncSession,
    user: User,
    plan_type: str,
    phone: str,
    amount: int | None = None,
    course_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> tuple[Subscription, InitiationResult]:
    """Create a pending subscription and start collecting its payment.

    The legacy ``per_course`` plan is sold as ``daily``. The pending row is
    committed together with its Payment before the provider is called. If
    initiation fails the subscription is deleted again and the failed Payment
    stays for the audit trail.
    """
    plan = get_plan(plan_type)
    if plan_type == PlanType.PER_COURSE.value and course_id is None:
        raise BillingError("A course is required for per-course access")
    phone_number = normalize_phone(phone)
    now = now or utcnow()

    existing = await get_active_subscription(db, user.id, plan.name, now)
    if existing is not None:
        raise DuplicateActiveSubscription(existing.id)

    if amount is not None and amount != plan.price:
        raise AmountMismatch(plan.price, amount)

    subscription = Subscription(
        user_id=user.id,
        plan_type=plan.name,
        course_id=course_id,
        amount=plan.price,
        currency=settings.currency,
        status=SubscriptionStatus.PENDING.value,
        start_date=now,
        end_date=compute_end_date(plan.name, now),
        transaction_id=generate_transaction_id("SUB"),
        **plan_features(plan),
    )
    db.add(subscription)
    await db.flush()

    try:
        result = await initiate_payment(
            db,
            user,
            phone_number,
            purpose=PaymentPurpose.SUBSCRIPTION,
            description=f"Subscription: {plan.display_name}",
            amount=plan.price,
            plan_type=plan.name,
            transaction_id=subscription.transaction_id,
            subscription_id=subscription.id,
            now=now,
        )
    except BillingError:
        await db.delete(subscription)
        await db.flush()
        logger.warning(
            "Removed subscription %s after payment initiation failed", subscription.transaction_id
        )
        raise

    logger.info(
        "User %s subscribing to %s (%s)", user.id, plan.name, subscription.transaction_id
    )
    return subscription, result


async def activate_subscription(db: AsyncSession, subscription: Subscription) -> bool:
    """Pending -> active once its payment succeeds. Anything else is left alone."""
    if subscription.status == SubscriptionStatus.ACTIVE.value:
        return False
    if subscription.status != SubscriptionStatus.PENDING.value:
        logger.warning(
            "Not activating subscription %s in status %s", subscription.id, subscription.status
        )
        return False
    subscription.status = SubscriptionStatus.ACTIVE.value
    await db.flush()
    logger.info("Activated subscription %s (%s)", subscription.id, subscription.plan_type)
    return True


async def cancel_subscription(
    db: AsyncSession,
    subscription: Subscription,
    reason: str | None = None,
    now: datetime | None = None,
) -> Subscription:
    if subscription.status == SubscriptionStatus.CANCELLED.value:
        raise SubscriptionAlreadyCancelled()
    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = now or utcnow()
    subscription.cancellation_reason = reason
    await db.flush()
    logger.info("Cancelled subscription %s: %s", subscription.id, reason or "no reason given")
    return subscription


async def cancel_user_subscription(
    db: AsyncSession,
    user: User,
    subscription_id: uuid.UUID,
    reason: str | None = None,
) -> Subscription:
    """Cancel one of the user's own subscriptions and drop the access it gave."""
    subscription = await get_user_subscription(db, user, subscription_id)
    await cancel_subscription(db, subscription, reason or "Cancelled by user")
    await refresh_access_level(db, user)
    return subscription


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


async def refresh_access_level(
    db: AsyncSession, user: User, now: datetime | None = None
) -> list[Subscription]:
    """Recompute the user's cached access flags from their active subscriptions."""
    now = now or utcnow()
    active = await get_active_subscriptions(db, user.id, now)

    user.access_courses = any(s.course_access for s in active)
    user.access_tests = any(s.test_access for s in active)
    user.access_unlimited_ai = any(s.unlimited_ai for s in active)
    user.ai_tokens_limit = settings.free_ai_token_limit + sum(
        s.ai_token_limit for s in active if not s.unlimited_ai
    )
    user.access_refreshed_at = now
    await db.flush()
    return active


async def check_access(
    db: AsyncSession,
    user: User,
    service: str,
    course_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide whether ``user`` may use ``service`` right now."""
    if service not in SERVICES:
        raise BillingError(f"Unknown service '{service}'. Expected one of: {', '.join(SERVICES)}")

    active = await refresh_access_level(db, user, now)
    details: dict[str, Any] = {"active_subscriptions": len(active)}

    if service == "ai":
        has_access = user.access_unlimited_ai or user.ai_tokens_used < user.ai_tokens_limit
        details.update(
            unlimited=user.access_unlimited_ai,
            tokens_used=user.ai_tokens_used,
            token_limit=user.ai_tokens_limit,
        )
    else:
        has_access = user.access_courses if service == "courses" else user.access_tests
        if not has_access and course_id is not None:
            # Only rows imported from the old store grant a single course;
            # new per_course purchases are stored as daily with full access.
            has_access = any(
                s.course_id == course_id and (service == "courses" or s.test_access)
                for s in active
            )
            details["course_id"] = str(course_id)

    required = [] if has_access else PLANS_FOR_SERVICE[service]
    if has_access:
        message = f"Access granted to {service}"
    else:
        message = f"Access denied to {service}. Subscribe to one of: {', '.join(required)}"
    return AccessDecision(
        has_access=has_access,
        service=service,
        message=message,
        details=details,
        required_plans=required,
    )


async def consume_ai_token(db: AsyncSession, user: User) -> bool:
    """Spend one AI token. Unlimited users always succeed; others stop at their limit."""
    if user.access_unlimited_ai:
        return True
    result = await db.execute(
        update(User)
        .where(User.id == user.id, User.ai_tokens_used < User.ai_tokens_limit)
        .values(ai_tokens_used=User.ai_tokens_used + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(user)
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def expire_old_subscriptions(db: AsyncSession, now: datetime | None = None) -> int:
    """Mark active subscriptions past their end date as expired.

    Affected users get their access cache recomputed. Running it again for
    the same ``now`` changes nothing and returns 0.
    """
    now = now or utcnow()
    rows = (
        await db.execute(
            select(Subscription.id, Subscription.user_id).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date < now,
            )
        )
    ).all()
    if not rows:
        return 0

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.id.in_([row.id for row in rows]),
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        .values(status=SubscriptionStatus.EXPIRED.value)
        .execution_options(synchronize_session="fetch")
    )

    user_ids = {row.user_id for row in rows}
    users = (await db.execute(select(User).where(User.id.in_(user_ids)))).scalars().all()
    for user in users:
        await refresh_access_level(db, user, now)

    logger.info("Expired %s subscriptions for %s users", result.rowcount, len(user_ids))
    return result.rowcount


async def cleanup_orphaned_subscriptions(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete stale pending subscriptions that no live payment refers to."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.orphan_subscription_grace_minutes)
    live_payment = exists().where(
        and_(
            Payment.transaction_id == Subscription.transaction_id,
            Payment.status.in_(
                [PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value, PaymentStatus.SUCCESS.value]
            ),
        )
    )
    ids = (
        await db.execute(
            select(Subscription.id).where(
                Subscription.status == SubscriptionStatus.PENDING.value,
                Subscription.start_date < cutoff,
                ~live_payment,
            )
        )
    ).scalars().all()
    if not ids:
        return 0

    await db.execute(
        delete(Subscription)
        .where(Subscription.id.in_(ids))
        .execution_options(synchronize_session="fetch")
    )
    logger.info("Removed %s orphaned pending subscriptions", len(ids))
    return len(ids)


async def reset_monthly_ai_tokens(db: AsyncSession) -> int:
    """Zero the AI usage counter of every user on the free allowance."""
    result = await db.execute(
        update(User)
        .where(User.access_unlimited_ai.is_(False), User.ai_tokens_used > 0)
        .values(ai_tokens_used=0)
        .execution_options(synchronize_session="fetch")
    )
    logger.info("Reset AI token usage for %s users", result.rowcount)
    return result.rowcount
