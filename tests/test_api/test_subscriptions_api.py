"""Tests for the subscription endpoints — plans, subscribe, access and cancel."""

import uuid
from unittest.mock import AsyncMock, patch

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.billing.exceptions import ProviderError
from paperhub.models.subscription import SubscriptionStatus
from paperhub.models.user import User
from tests.helpers import PHONE, create_subscription, create_user, headers_for


def _mock_collection(**kwargs):
    return patch(
        "paperhub.services.payment_service.request_collection",
        new_callable=AsyncMock,
        **kwargs,
    )


class TestPlans:
    async def test_lists_catalog_publicly(self, client: AsyncClient):
        response = await client.get("/api/v1/subscriptions/plans")
        assert response.status_code == 200
        plans = {p["name"]: p for p in response.json()["plans"]}
        assert set(plans) == {"daily", "weekly", "monthly", "four_month", "ai_monthly"}
        assert plans["weekly"]["price"] == 500
        assert plans["ai_monthly"]["unlimited_ai"] is True
        assert plans["daily"]["currency"] == "XAF"


class TestSubscribe:
    async def test_subscribe_starts_payment(self, client: AsyncClient, auth_headers: dict):
        with _mock_collection(return_value={"id": "nkwa-s1"}):
            response = await client.post(
                "/api/v1/subscriptions/subscribe",
                json={"planType": "weekly", "phoneNumber": PHONE},
                headers=auth_headers,
            )
        assert response.status_code == 200
        data = response.json()
        assert data["subscription"]["status"] == "pending"
        assert data["subscription"]["is_active"] is False
        assert data["payment"]["transaction_id"] == data["subscription"]["transaction_id"]
        assert data["payment"]["status"] == "processing"

    async def test_unknown_plan(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_type": "yearly", "phone_number": PHONE},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert "Available plans" in response.json()["detail"]

    async def test_duplicate_active_is_409(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        existing = await create_subscription(db_session, test_user, "monthly")
        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_type": "monthly", "phone_number": PHONE},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["subscription_id"] == str(existing.id)

    async def test_provider_failure_leaves_no_subscription(self, client: AsyncClient, auth_headers: dict):
        with _mock_collection(side_effect=ProviderError("http_503", "maintenance")):
            response = await client.post(
                "/api/v1/subscriptions/subscribe",
                json={"plan_type": "daily", "phone_number": PHONE},
                headers=auth_headers,
            )
        assert response.status_code == 500

        mine = await client.get("/api/v1/subscriptions/my-subscriptions", headers=auth_headers)
        assert mine.json()["total"] == 0
        history = await client.get("/api/v1/payment/history", headers=auth_headers)
        assert history.json()["items"][0]["status"] == "failed"


class TestMySubscriptions:
    async def test_splits_active(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "weekly")
        await create_subscription(db_session, test_user, "monthly", status=SubscriptionStatus.CANCELLED)

        response = await client.get("/api/v1/subscriptions/my-subscriptions", headers=headers_for(test_user))
        data = response.json()
        assert data["total"] == 2
        assert data["active_count"] == 1
        assert data["active"][0]["plan_type"] == "weekly"


class TestCheckAccess:
    async def test_denied_without_plan(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/subscriptions/check-access?service=courses", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["has_access"] is False
        assert "weekly" in data["required_plans"]

    async def test_granted_with_plan(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "daily")
        response = await client.get(
            "/api/v1/subscriptions/check-access?service=tests", headers=headers_for(test_user)
        )
        assert response.json()["has_access"] is True

    async def test_free_ai_allowance(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/subscriptions/check-access?service=ai", headers=auth_headers)
        data = response.json()
        assert data["has_access"] is True
        assert data["details"]["token_limit"] == 10

    async def test_unknown_service_is_422(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/subscriptions/check-access?service=videos", headers=auth_headers)
        assert response.status_code == 422


class TestCancel:
    async def test_cancel_then_cancel_again(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        subscription = await create_subscription(db_session, test_user, "weekly")
        headers = headers_for(test_user)

        response = await client.put(
            f"/api/v1/subscriptions/{subscription.id}/cancel", json={"reason": "Exams finished"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "Exams finished"

        again = await client.put(f"/api/v1/subscriptions/{subscription.id}/cancel", headers=headers)
        assert again.status_code == 400

    async def test_cancel_unknown_is_404(self, client: AsyncClient, auth_headers: dict):
        response = await client.put(f"/api/v1/subscriptions/{uuid.uuid4()}/cancel", headers=auth_headers)
        assert response.status_code == 404

    async def test_cancel_someone_elses_is_404(self, client: AsyncClient, db_session: AsyncSession, test_user: User):
        other = await create_user(db_session)
        subscription = await create_subscription(db_session, other, "weekly")
        response = await client.put(
            f"/api/v1/subscriptions/{subscription.id}/cancel", headers=headers_for(test_user)
        )
        assert response.status_code == 404


class TestAiUsage:
    async def test_free_allowance_runs_out(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=8)
        headers = headers_for(user)

        first = await client.post("/api/v1/subscriptions/ai-usage", headers=headers)
        assert first.status_code == 200
        assert first.json() == {"unlimited": False, "tokens_used": 9, "token_limit": 10, "tokens_remaining": 1}

        second = await client.post("/api/v1/subscriptions/ai-usage", headers=headers)
        assert second.json()["tokens_remaining"] == 0

        refused = await client.post("/api/v1/subscriptions/ai-usage", headers=headers)
        assert refused.status_code == 403
        assert refused.json()["detail"]["required_plans"] == ["ai_monthly"]

        await db_session.refresh(user)
        assert user.ai_tokens_used == 10

    async def test_unlimited_plan_is_not_charged(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=25)
        await create_subscription(db_session, user, "ai_monthly")

        for _ in range(3):
            response = await client.post("/api/v1/subscriptions/ai-usage", headers=headers_for(user))
            assert response.status_code == 200
            assert response.json()["unlimited"] is True

        await db_session.refresh(user)
        assert user.ai_tokens_used == 25
