"""Payment model — one attempted mobile-money collection.

Payments form the financial audit trail and are never deleted. Status moves
through a fixed transition table; anything outside it raises
``InvalidPaymentTransition``.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from paperhub.billing.exceptions import InvalidPaymentTransition
from paperhub.database import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentPurpose(str, enum.Enum):
    REGISTRATION_FEE = "registration_fee"
    TEST_FEE = "test_fee"
    SUBSCRIPTION = "subscription"
    OTHER = "other"


OPEN_STATUSES: frozenset[PaymentStatus] = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})

TERMINAL_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED}
)

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.SUCCESS: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def check_transition(current: PaymentStatus | str, target: PaymentStatus | str) -> None:
    """Raise ``InvalidPaymentTransition`` unless ``current -> target`` is allowed."""
    current = PaymentStatus(current)
    target = PaymentStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidPaymentTransition(current.value, target.value)


_OPEN_PAYMENT_FILTER = text("status IN ('pending', 'processing')")


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A mobile-money collection request and its provider-side outcome."""

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
        Index("ix_payments_phone_status", "phone_number", "status"),
    )

    # Identifiers
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)

    # Payment details
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="XAF")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    purpose: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PaymentPurpose.REGISTRATION_FEE.value
    )
    # Set for subscription payments only
    plan_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ownership
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Provider and webhook bookkeeping
    provider_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    webhook_received: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    webhook_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    webhook_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lifecycle
    initiated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.payment_status in TERMINAL_STATUSES

    @property
    def formatted_amount(self) -> str:
        return f"{self.amount:,} {self.currency}"

    def __repr__(self) -> str:
        return (
            f"<Payment(transaction_id={self.transaction_id!r}, status={self.status}, "
            f"amount={self.amount}, purpose={self.purpose})>"
        )


# At most one open payment per (user, purpose, plan). Fees have no plan, so
# the lock covers the whole purpose; each plan type has its own slot.
Index(
    "uq_payments_open_user_purpose_plan",
    Payment.user_id,
    Payment.purpose,
    func.coalesce(Payment.plan_type, ""),
    unique=True,
    postgresql_where=_OPEN_PAYMENT_FILTER,
    sqlite_where=_OPEN_PAYMENT_FILTER,
)
