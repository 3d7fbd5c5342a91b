"""Subscription API endpoints — plans, purchase, access checks and admin sweeps."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.api.deps import get_current_active_user, get_current_admin_user, get_db
from paperhub.api.errors import http_error
from paperhub.billing.dependencies import consume_ai_access
from paperhub.billing.exceptions import BillingError, PaymentInitiationFailed
from paperhub.billing.plans import get_plans
from paperhub.billing.rate_limit import payment_rate_limit
from paperhub.config import settings
from paperhub.models.user import User
from paperhub.schemas.payment import PaymentInitiateResponse
from paperhub.schemas.subscription import (
    AccessCheckResponse,
    AiUsageResponse,
    CancelSubscriptionRequest,
    MaintenanceResponse,
    MySubscriptionsResponse,
    PlanResponse,
    PlansListResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
)
from paperhub.services.payment_service import page_count
from paperhub.services.subscription_service import (
    cancel_user_subscription,
    check_access,
    cleanup_orphaned_subscriptions,
    expire_old_subscriptions,
    list_all_subscriptions,
    list_user_subscriptions,
    reset_monthly_ai_tokens,
    subscribe,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                name=p.name,
                display_name=p.display_name,
                price=p.price,
                currency=settings.currency,
                duration_days=p.duration_days,
                course_access=p.course_access,
                test_access=p.test_access,
                ai_access=p.ai_access,
                unlimited_ai=p.unlimited_ai,
                description=p.description,
            )
            for p in get_plans().values()
        ]
    )


@router.post(
    "/subscribe",
    response_model=SubscribeResponse,
    dependencies=[Depends(payment_rate_limit)],
)
async def create_subscription(
    body: SubscribeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscribeResponse:
    """Buy a plan. Access starts once the payment is confirmed."""
    try:
        subscription, payment = await subscribe(
            db,
            current_user,
            body.plan_type,
            body.phone_number,
            amount=body.amount,
            course_id=body.course_id,
        )
    except PaymentInitiationFailed as e:
        # The failed Payment stays for the audit trail; the subscription was already removed.
        await db.commit()
        raise http_error(e) from None
    except BillingError as e:
        raise http_error(e) from None

    return SubscribeResponse(
        subscription=SubscriptionResponse.model_validate(subscription),
        payment=PaymentInitiateResponse.model_validate(payment),
        message="Subscription created. Confirm the payment on your phone to activate it.",
    )


@router.get("/my-subscriptions", response_model=MySubscriptionsResponse)
async def my_subscriptions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> MySubscriptionsResponse:
    subscriptions = [
        SubscriptionResponse.model_validate(s)
        for s in await list_user_subscriptions(db, current_user.id)
    ]
    active = [s for s in subscriptions if s.is_active]
    return MySubscriptionsResponse(
        subscriptions=subscriptions,
        active=active,
        total=len(subscriptions),
        active_count=len(active),
    )


@router.get("/check-access", response_model=AccessCheckResponse)
async def check_service_access(
    service: str = Query(..., pattern="^(courses|tests|ai)$"),
    course_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> AccessCheckResponse:
    """Whether the caller may use ``service`` right now."""
    decision = await check_access(db, current_user, service, course_id=course_id)
    return AccessCheckResponse(
        has_access=decision.has_access,
        service=decision.service,
        message=decision.message,
        details=decision.details,
        required_plans=decision.required_plans,
    )


@router.post("/ai-usage", response_model=AiUsageResponse)
async def record_ai_usage(current_user: User = Depends(consume_ai_access)) -> AiUsageResponse:
    """Charge one AI request against the caller's allowance.

    Answers 403 with the upgrade plans once the free allowance is spent.
    """
    if current_user.access_unlimited_ai:
        return AiUsageResponse(
            unlimited=True,
            tokens_used=current_user.ai_tokens_used,
            token_limit=current_user.ai_tokens_limit,
        )
    return AiUsageResponse(
        unlimited=False,
        tokens_used=current_user.ai_tokens_used,
        token_limit=current_user.ai_tokens_limit,
        tokens_remaining=max(current_user.ai_tokens_limit - current_user.ai_tokens_used, 0),
    )


@router.put("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel(
    subscription_id: uuid.UUID,
    body: CancelSubscriptionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    try:
        subscription = await cancel_user_subscription(
            db, current_user, subscription_id, reason=body.reason if body else None
        )
    except BillingError as e:
        raise http_error(e) from None
    return SubscriptionResponse.model_validate(subscription)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/admin/all", response_model=SubscriptionListResponse)
async def admin_list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = Query(None),
    plan_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> SubscriptionListResponse:
    items, total = await list_all_subscriptions(db, page, limit, status=status, plan_type=plan_type)
    return SubscriptionListResponse(
        items=[SubscriptionResponse.model_validate(s) for s in items],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


@router.post("/admin/expire-check", response_model=MaintenanceResponse)
async def admin_expire_check(
    reset_tokens: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
) -> MaintenanceResponse:
    """Run the expiry sweep now and reset free AI token usage unless ``reset_tokens=false``."""
    expired = await expire_old_subscriptions(db)
    orphans = await cleanup_orphaned_subscriptions(db)
    tokens_reset = await reset_monthly_ai_tokens(db) if reset_tokens else 0
    logger.info("Admin %s ran expire-check: %s expired, %s orphans", admin.id, expired, orphans)
    return MaintenanceResponse(
        subscriptions_expired=expired,
        orphans_removed=orphans,
        tokens_reset=tokens_reset,
    )
