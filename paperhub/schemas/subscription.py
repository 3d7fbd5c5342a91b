"""Pydantic v2 request/response schemas for subscription endpoints."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from paperhub.schemas.payment import PaymentInitiateResponse

# --- Request schemas ---


class SubscribeRequest(BaseModel):
    """Buy a plan and pay for it by mobile money."""

    plan_type: str = Field(..., validation_alias=AliasChoices("plan_type", "planType"))
    phone_number: str = Field(
        ...,
        min_length=1,
        max_length=20,
        validation_alias=AliasChoices("phone_number", "phoneNumber", "phone"),
    )
    amount: int | None = Field(None, gt=0)
    course_id: uuid.UUID | None = Field(None, validation_alias=AliasChoices("course_id", "courseId"))


class CancelSubscriptionRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    price: int
    currency: str
    duration_days: int
    course_access: bool
    test_access: bool
    ai_access: bool
    unlimited_ai: bool
    description: str


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_type: str
    course_id: uuid.UUID | None = None
    amount: int
    currency: str
    status: str
    start_date: datetime
    end_date: datetime
    transaction_id: str
    course_access: bool
    test_access: bool
    ai_access: bool
    unlimited_ai: bool
    ai_token_limit: int
    is_active: bool
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SubscribeResponse(BaseModel):
    subscription: SubscriptionResponse
    payment: PaymentInitiateResponse
    message: str


class MySubscriptionsResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
    active: list[SubscriptionResponse]
    total: int
    active_count: int


class SubscriptionListResponse(BaseModel):
    """Paginated list of subscriptions (admin)."""

    items: list[SubscriptionResponse]
    total: int
    page: int
    limit: int
    pages: int


class AccessCheckResponse(BaseModel):
    has_access: bool
    service: str
    message: str
    details: dict[str, Any] = {}
    required_plans: list[str] = []


class AiUsageResponse(BaseModel):
    """Token balance after one AI request has been charged."""

    unlimited: bool
    tokens_used: int
    token_limit: int
    tokens_remaining: int | None = None


class MaintenanceResponse(BaseModel):
    """Result of an admin-triggered maintenance sweep."""

    subscriptions_expired: int
    orphans_removed: int
    tokens_reset: int = 0
