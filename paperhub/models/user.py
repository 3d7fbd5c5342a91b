"""User model — authentication, legacy payment flags and the derived access cache."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paperhub.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Student or administrator account."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="student", nullable=False)

    # Legacy one-off registration fee
    payment_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Access level cache, recomputed from active subscriptions
    access_courses: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    access_tests: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    access_unlimited_ai: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_tokens_limit: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    access_refreshed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    subscriptions: Mapped[list["Subscription"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Subscription", back_populates="user", lazy="noload"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
