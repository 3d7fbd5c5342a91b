"""Seed the database with an admin account and a demo student.

The demo student has a paid registration fee and an active weekly plan, so the
access checks and admin views have something to show.

Run from the repository root:
    python -m scripts.seed_data
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add the repository root to the path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.auth.passwords import hash_password
from paperhub.billing.plans import compute_end_date, get_plan, plan_features
from paperhub.config import settings
from paperhub.database import async_session_factory, engine, utcnow
from paperhub.models.payment import Payment, PaymentPurpose, PaymentStatus
from paperhub.models.subscription import Subscription, SubscriptionStatus
from paperhub.models.user import User
from paperhub.services.payment_service import generate_transaction_id
from paperhub.services.subscription_service import refresh_access_level

ADMIN_USER = {
    "email": "admin@paperhub.cm",
    "password": "admin1234",
    "name": "PaperHub Admin",
}

DEMO_STUDENT = {
    "email": "student@paperhub.cm",
    "password": "student1234",
    "name": "Demo Student",
    "phone": "237670000001",
}


async def _replace_user(session: AsyncSession, email: str) -> None:
    result = await session.execute(select(User).where(User.email == email))
    existing = result.scalar_one_or_none()
    if existing is None:
        return
    print(f"⚠️  User '{email}' already exists. Deleting and re-seeding...")
    # Payments are kept by the FK (SET NULL); remove the demo ones explicitly.
    await session.execute(delete(Payment).where(Payment.user_id == existing.id))
    await session.execute(delete(Subscription).where(Subscription.user_id == existing.id))
    await session.execute(delete(User).where(User.id == existing.id))
    await session.flush()


async def seed_accounts(session: AsyncSession) -> tuple[User, User]:
    """Create the admin and demo student. Idempotent: existing accounts are replaced."""
    for account in (ADMIN_USER, DEMO_STUDENT):
        await _replace_user(session, account["email"])

    admin = User(
        email=ADMIN_USER["email"],
        hashed_password=hash_password(ADMIN_USER["password"]),
        name=ADMIN_USER["name"],
        role="admin",
    )
    session.add(admin)

    now = utcnow()
    paid_at = now - timedelta(days=2)
    student = User(
        email=DEMO_STUDENT["email"],
        hashed_password=hash_password(DEMO_STUDENT["password"]),
        name=DEMO_STUDENT["name"],
        role="student",
        payment_completed=True,
        payment_amount=settings.registration_fee_amount,
        payment_date=paid_at,
    )
    session.add(student)
    await session.flush()

    session.add(
        Payment(
            transaction_id=generate_transaction_id("PAY"),
            amount=settings.registration_fee_amount,
            currency=settings.currency,
            phone_number=DEMO_STUDENT["phone"],
            status=PaymentStatus.SUCCESS.value,
            purpose=PaymentPurpose.REGISTRATION_FEE.value,
            description="Registration fee",
            user_id=student.id,
            user_email=student.email,
            initiated_at=paid_at,
            completed_at=paid_at,
            webhook_received=True,
            webhook_attempts=1,
        )
    )

    plan = get_plan("weekly")
    subscription = Subscription(
        user_id=student.id,
        plan_type=plan.name,
        amount=plan.price,
        currency=settings.currency,
        status=SubscriptionStatus.ACTIVE.value,
        start_date=paid_at,
        end_date=compute_end_date(plan.name, paid_at),
        transaction_id=generate_transaction_id("SUB"),
        **plan_features(plan),
    )
    session.add(subscription)
    await session.flush()

    session.add(
        Payment(
            transaction_id=subscription.transaction_id,
            amount=plan.price,
            currency=settings.currency,
            phone_number=DEMO_STUDENT["phone"],
            status=PaymentStatus.SUCCESS.value,
            purpose=PaymentPurpose.SUBSCRIPTION.value,
            plan_type=plan.name,
            description=f"Subscription: {plan.display_name}",
            user_id=student.id,
            user_email=student.email,
            subscription_id=subscription.id,
            initiated_at=paid_at,
            completed_at=paid_at,
            webhook_received=True,
            webhook_attempts=1,
        )
    )
    await session.flush()
    await refresh_access_level(session, student, now)
    return admin, student


async def seed() -> None:
    async with async_session_factory() as session:
        admin, student = await seed_accounts(session)
        await session.commit()

    print("=" * 60)
    print("📊 Seed Summary")
    print("=" * 60)
    print(f"   Admin:   {admin.email} / {ADMIN_USER['password']}")
    print(f"   Student: {student.email} / {DEMO_STUDENT['password']} (weekly plan, fee paid)")
    print("=" * 60)
    print("🎉 Done! You can now log in at /api/v1/auth/login")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
