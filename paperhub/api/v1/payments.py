"""Payment API endpoints — fees, initiation, status and admin tooling."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.api.deps import get_current_active_user, get_current_admin_user, get_db
from paperhub.api.errors import http_error
from paperhub.billing.exceptions import BillingError, PaymentInitiationFailed, ProviderError
from paperhub.billing.rate_limit import payment_rate_limit
from paperhub.config import settings
from paperhub.models.user import User
from paperhub.schemas.payment import (
    FeeResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentListResponse,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentStatusResponse,
    RefundRequest,
)
from paperhub.services.payment_service import (
    check_payment_status,
    get_user_payment,
    initiate_payment,
    list_payments,
    list_user_payments,
    page_count,
    payment_stats,
    refund_payment,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/payment", tags=["payments"])


@router.get("/fee", response_model=FeeResponse)
async def get_fee() -> FeeResponse:
    """Current registration fee (public)."""
    amount = settings.registration_fee_amount
    return FeeResponse(
        amount=amount,
        currency=settings.currency,
        formatted_amount=f"{amount:,} {settings.currency}",
    )


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    dependencies=[Depends(payment_rate_limit)],
)
async def initiate(
    body: PaymentInitiateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PaymentInitiateResponse:
    """Start a mobile-money collection for a fee."""
    try:
        result = await initiate_payment(
            db,
            current_user,
            body.phone_number,
            purpose=body.purpose,
            description=body.description,
            amount=body.amount,
        )
    except PaymentInitiationFailed as e:
        # Keep the failed Payment before the error response rolls the session back.
        await db.commit()
        raise http_error(e) from None
    except BillingError as e:
        raise http_error(e) from None

    return PaymentInitiateResponse.model_validate(result)


@router.get("/status/{transaction_id}", response_model=PaymentStatusResponse)
async def get_status(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PaymentStatusResponse:
    """Status of one of the caller's payments, refreshed from the provider while open."""
    try:
        await get_user_payment(db, current_user, transaction_id)
        payment = await check_payment_status(db, transaction_id)
    except ProviderError as e:
        logger.error("Status check for %s failed: %s (%s)", transaction_id, e.code, e.detail)
        raise http_error(e) from None
    except BillingError as e:
        raise http_error(e) from None
    return PaymentStatusResponse.model_validate(payment)


@router.get("/history", response_model=PaymentListResponse)
async def history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> PaymentListResponse:
    """The caller's payments, newest first."""
    items, total = await list_user_payments(db, current_user.id, page, limit)
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/admin/all", response_model=PaymentListResponse)
async def admin_list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = Query(None),
    purpose: str | None = Query(None),
    phone: str | None = Query(None),
    user_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> PaymentListResponse:
    try:
        items, total = await list_payments(
            db, page, limit, status=status, purpose=purpose, user_id=user_id, phone=phone
        )
    except BillingError as e:
        raise http_error(e) from None
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


@router.get("/admin/stats", response_model=PaymentStatsResponse)
async def admin_stats(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> PaymentStatsResponse:
    return PaymentStatsResponse(**await payment_stats(db))


@router.post("/admin/retry/{transaction_id}", response_model=PaymentResponse)
async def admin_retry(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
) -> PaymentResponse:
    """Re-run the provider status check for a payment."""
    logger.info("Admin %s re-checking payment %s", admin.id, transaction_id)
    try:
        payment = await check_payment_status(db, transaction_id)
    except ProviderError as e:
        logger.error("Admin re-check of %s failed: %s (%s)", transaction_id, e.code, e.detail)
        raise http_error(e) from None
    except BillingError as e:
        raise http_error(e) from None
    return PaymentResponse.model_validate(payment)


@router.post("/admin/{transaction_id}/refund", response_model=PaymentResponse)
async def admin_refund(
    transaction_id: str,
    body: RefundRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
) -> PaymentResponse:
    """Record a refund made outside the provider and revoke the access it paid for."""
    try:
        payment = await refund_payment(db, transaction_id, body.reason)
    except BillingError as e:
        raise http_error(e) from None
    logger.info("Admin %s refunded payment %s", admin.id, transaction_id)
    return PaymentResponse.model_validate(payment)
