"""Nkwa Pay webhook processing — verify, record and apply provider callbacks."""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.billing.exceptions import InvalidPaymentTransition, InvalidSignature
from paperhub.billing.nkwapay_client import map_provider_status
from paperhub.config import settings
from paperhub.models.payment import PaymentStatus
from paperhub.schemas.payment import WebhookPayload
from paperhub.services.payment_service import get_payment_by_transaction_id, settle_payment

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-signature", "x-nkwa-signature")


@dataclass
class WebhookResult:
    success: bool
    message: str
    status: str | None = None
    transaction_id: str | None = None


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None) -> None:
    """Raise InvalidSignature unless ``signature`` matches the body.

    A missing secret or a missing signature is always a rejection.
    """
    secret = settings.nkwapay_webhook_secret
    if not secret:
        logger.error("Webhook rejected: NKWAPAY_WEBHOOK_SECRET is not configured")
        raise InvalidSignature()
    if not signature:
        raise InvalidSignature()
    expected = compute_signature(raw_body, secret)
    # Bytes, so a non-ASCII header is a mismatch rather than a TypeError
    if not hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8")):
        raise InvalidSignature()


async def process_webhook(db: AsyncSession, raw_body: bytes, signature: str | None) -> WebhookResult:
    """Apply one provider callback to its Payment.

    Replays of an already-applied terminal status are no-ops. A callback that
    contradicts a terminal status is recorded but does not change it.
    """
    verify_signature(raw_body, signature)

    try:
        data = json.loads(raw_body)
        payload = WebhookPayload.model_validate(data)
    except (ValueError, ValidationError):
        logger.warning("Webhook body could not be parsed")
        return WebhookResult(success=False, message="Invalid payload")

    payment = await get_payment_by_transaction_id(db, payload.reference)
    if payment is None:
        logger.warning("Webhook for unknown reference %s", payload.reference)
        return WebhookResult(
            success=False, message="Unknown payment reference", transaction_id=payload.reference
        )

    payment.webhook_attempts += 1
    payment.webhook_received = True
    payment.webhook_payload = data
    if payload.transaction_id and not payment.provider_transaction_id:
        payment.provider_transaction_id = payload.transaction_id
    await db.flush()

    target = map_provider_status(payload.status)
    if target is None:
        logger.info("Webhook for %s with non-final status %r", payment.transaction_id, payload.status)
        return WebhookResult(
            success=True,
            message="Status recorded",
            status=payment.status,
            transaction_id=payment.transaction_id,
        )

    if (
        target == PaymentStatus.SUCCESS
        and payload.amount is not None
        and payload.amount != payment.amount
    ):
        logger.error(
            "Webhook amount %s does not match payment %s amount %s",
            payload.amount,
            payment.transaction_id,
            payment.amount,
        )
        return WebhookResult(
            success=False,
            message="Amount mismatch",
            status=payment.status,
            transaction_id=payment.transaction_id,
        )

    changes = {}
    if target == PaymentStatus.FAILED:
        changes = {"error_code": "provider_failed", "error_message": "Payment was declined or cancelled"}
    try:
        changed = await settle_payment(db, payment, target, source="webhook", **changes)
    except InvalidPaymentTransition:
        logger.warning(
            "Ignoring webhook for %s: already %s, callback says %s",
            payment.transaction_id,
            payment.status,
            target.value,
        )
        return WebhookResult(
            success=False,
            message="Payment already finalized",
            status=payment.status,
            transaction_id=payment.transaction_id,
        )

    return WebhookResult(
        success=True,
        message="Payment status updated" if changed else "Duplicate webhook ignored",
        status=payment.status,
        transaction_id=payment.transaction_id,
    )
