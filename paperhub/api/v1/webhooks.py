"""Nkwa Pay webhook endpoint — receives payment status callbacks."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.billing.exceptions import InvalidSignature
from paperhub.billing.webhooks import SIGNATURE_HEADERS, process_webhook
from paperhub.database import get_db
from paperhub.schemas.payment import WebhookAckResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/payment", tags=["webhooks"])


@router.post("/webhook", response_model=WebhookAckResponse)
async def nkwapay_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> WebhookAckResponse:
    """Receive a provider callback.

    Always answers 200 so the provider does not retry; the outcome is in the body.
    """
    # Raw bytes, the signature covers the exact body
    raw_body = await request.body()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), None)

    try:
        async with db.begin_nested():
            result = await process_webhook(db, raw_body, signature)
    except InvalidSignature:
        logger.warning("Webhook signature verification failed")
        return WebhookAckResponse(success=False, message="Invalid signature")
    except Exception:
        logger.exception("Error processing payment webhook")
        return WebhookAckResponse(success=False, message="Webhook processing failed")

    return WebhookAckResponse(success=result.success, status=result.status, message=result.message)
