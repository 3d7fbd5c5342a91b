"""Pydantic v2 request/response schemas for payment endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PaymentInitiateRequest(BaseModel):
    """Start a one-off payment. Subscriptions go through /subscriptions/subscribe."""

    phone_number: str = Field(
        ...,
        min_length=1,
        max_length=20,
        validation_alias=AliasChoices("phone_number", "phoneNumber", "phone"),
    )
    purpose: Literal["registration_fee", "test_fee", "other"] = "registration_fee"
    amount: int | None = Field(None, gt=0)
    description: str | None = Field(None, max_length=255)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WebhookPayload(BaseModel):
    """Body of a provider callback. Unknown fields are kept for the audit copy."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    reference: str = Field(..., min_length=1, validation_alias=AliasChoices("reference", "externalReference"))
    status: str | None = None
    transaction_id: str | None = Field(
        None, validation_alias=AliasChoices("transactionId", "transaction_id", "id")
    )
    amount: int | None = None
    phone_number: str | None = Field(None, validation_alias=AliasChoices("phoneNumber", "phone_number"))


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class FeeResponse(BaseModel):
    """Current registration fee."""

    amount: int
    currency: str
    formatted_amount: str


class PaymentInitiateResponse(BaseModel):
    transaction_id: str
    provider_transaction_id: str | None = None
    amount: int
    status: str
    message: str

    model_config = ConfigDict(from_attributes=True)


class PaymentStatusResponse(BaseModel):
    """Status as seen by the paying user."""

    transaction_id: str
    status: str
    amount: int
    currency: str
    purpose: str
    phone_number: str
    completed_at: datetime | None = None
    webhook_received: bool

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    """Full payment record for history and admin views."""

    id: uuid.UUID
    transaction_id: str
    provider_transaction_id: str | None = None
    amount: int
    currency: str
    phone_number: str
    status: str
    purpose: str
    plan_type: str | None = None
    description: str | None = None
    user_id: uuid.UUID | None = None
    user_email: str | None = None
    subscription_id: uuid.UUID | None = None
    initiated_at: datetime
    completed_at: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None
    webhook_received: bool
    webhook_attempts: int
    refund_reason: str | None = None
    refunded_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(BaseModel):
    """Paginated list of payments."""

    items: list[PaymentResponse]
    total: int
    page: int
    limit: int
    pages: int


class StatusCount(BaseModel):
    status: str
    count: int
    total_amount: int


class PaymentStatsResponse(BaseModel):
    by_status: list[StatusCount]
    total_payments: int
    successful_payments: int
    pending_payments: int
    total_revenue: int
    today_payments: int


class WebhookAckResponse(BaseModel):
    """Always returned with HTTP 200 so the provider stops retrying."""

    success: bool
    status: str | None = None
    message: str
