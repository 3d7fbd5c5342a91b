"""Helpers shared by test modules: user factories, tokens and webhook signing."""

import hashlib
import hmac
import json
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.auth.jwt import create_token_pair
from paperhub.auth.passwords import hash_password
from paperhub.billing.plans import get_plan, plan_features
from paperhub.config import settings
from paperhub.database import utcnow
from paperhub.models.payment import Payment, PaymentPurpose, PaymentStatus
from paperhub.models.subscription import Subscription, SubscriptionStatus
from paperhub.models.user import User
from paperhub.services.payment_service import generate_transaction_id

PHONE = "677123456"
CANONICAL_PHONE = "237677123456"


async def create_user(db_session: AsyncSession, role: str = "student", **fields) -> User:
    """Create a user directly in the DB."""
    unique = uuid.uuid4().hex[:8]
    values = {
        "email": f"{role}-{unique}@test.com",
        "hashed_password": hash_password("testpass123"),
        "name": f"Test {role.title()}",
        "is_active": True,
        "role": role,
    }
    values.update(fields)
    user = User(**values)
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


def headers_for(user: User) -> dict[str, str]:
    tokens = create_token_pair(str(user.id), user.role)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


async def create_payment(
    db_session: AsyncSession,
    user: User,
    status: PaymentStatus = PaymentStatus.PROCESSING,
    purpose: PaymentPurpose = PaymentPurpose.REGISTRATION_FEE,
    amount: int | None = None,
    initiated_at: datetime | None = None,
    **fields,
) -> Payment:
    """Insert a payment row without going through the provider."""
    values = {
        "transaction_id": generate_transaction_id("PAY"),
        "amount": amount or settings.registration_fee_amount,
        "currency": "XAF",
        "phone_number": CANONICAL_PHONE,
        "status": status.value,
        "purpose": purpose.value,
        "user_id": user.id,
        "user_email": user.email,
        "initiated_at": initiated_at or utcnow(),
    }
    values.update(fields)
    payment = Payment(**values)
    db_session.add(payment)
    await db_session.flush()
    return payment


async def create_subscription(
    db_session: AsyncSession,
    user: User,
    plan_type: str = "weekly",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    start: datetime | None = None,
    **fields,
) -> Subscription:
    """Insert a subscription with the plan's features and computed end date."""
    plan = get_plan(plan_type)
    start = start or utcnow()
    values = {
        "user_id": user.id,
        "plan_type": plan_type,
        "amount": plan.price,
        "currency": "XAF",
        "status": status.value,
        "start_date": start,
        "end_date": start + timedelta(days=plan.duration_days),
        "transaction_id": generate_transaction_id("SUB"),
        **plan_features(plan),
    }
    values.update(fields)
    subscription = Subscription(**values)
    db_session.add(subscription)
    await db_session.flush()
    return subscription


def sign(body: bytes, secret: str | None = None) -> str:
    """Signature header value for a webhook body."""
    key = (secret or settings.nkwapay_webhook_secret).encode("utf-8")
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def webhook_body(reference: str, status: str = "successful", **extra) -> bytes:
    return json.dumps({"reference": reference, "status": status, **extra}).encode("utf-8")
