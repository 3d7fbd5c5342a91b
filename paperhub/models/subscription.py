"""Subscription model — one purchased access window."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paperhub.database import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PlanType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    FOUR_MONTH = "four_month"
    AI_MONTHLY = "ai_monthly"
    PER_COURSE = "per_course"  # legacy, new purchases are mapped to daily


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks one access window bought by a user.

    ``end_date`` is computed from the plan duration when the row is created and
    is never exposed for editing.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status_end", "user_id", "status", "end_date"),
        Index("ix_subscriptions_user_plan_course", "user_id", "plan_type", "course_id"),
        Index("ix_subscriptions_end_status", "end_date", "status"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_type: Mapped[str] = mapped_column(String(32), nullable=False)
    course_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="XAF")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.PENDING.value, index=True
    )

    # Access window
    start_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)

    # Link to the payment that pays for this window
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Features granted while active
    course_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    test_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_token_limit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unlimited_ai: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscriptions", lazy="noload")  # type: ignore[name-defined]  # noqa: F821

    def is_active_at(self, now: datetime | None = None) -> bool:
        """Active means status is active and the window has not closed yet."""
        now = now or utcnow()
        return self.status == SubscriptionStatus.ACTIVE.value and self.end_date > now

    @property
    def is_active(self) -> bool:
        return self.is_active_at()

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, plan_type={self.plan_type}, "
            f"status={self.status}, end_date={self.end_date})>"
        )
