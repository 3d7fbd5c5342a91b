"""Outbox model — side effects recorded in the same transaction as their cause."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from paperhub.database import Base, UUIDPrimaryKeyMixin, utcnow


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class OutboxEvent(UUIDPrimaryKeyMixin, Base):
    """A follow-up action waiting to be dispatched by the outbox worker."""

    __tablename__ = "outbox_events"
    __table_args__ = (Index("ix_outbox_events_status_available", "status", "available_at"),)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return f"<OutboxEvent(id={self.id}, type={self.event_type!r}, status={self.status}, attempts={self.attempts})>"
