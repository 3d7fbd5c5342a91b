"""Tests for access gating dependencies — courses, tests and AI."""

import uuid
from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.billing.dependencies import (
    consume_ai_access,
    require_ai_access,
    require_course_access,
    require_test_access,
)
from paperhub.database import get_db, utcnow
from paperhub.models.subscription import SubscriptionStatus
from paperhub.models.user import User
from tests.helpers import create_subscription, create_user, headers_for


class TestRequireCourseAccess:
    async def test_active_plan_allows(self, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "weekly")
        user = await require_course_access(course_id=None, db=db_session, user=test_user)
        assert user is test_user

    async def test_no_plan_denied_with_subscribe_hint(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(HTTPException) as exc_info:
            await require_course_access(course_id=None, db=db_session, user=test_user)
        assert exc_info.value.status_code == 403
        detail = exc_info.value.detail
        assert detail["service"] == "courses"
        assert "weekly" in detail["required_plans"]
        assert detail["subscribe_url"] == "/api/v1/subscriptions/plans"

    async def test_expired_window_denied(self, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "daily", start=utcnow() - timedelta(days=2))
        with pytest.raises(HTTPException):
            await require_course_access(course_id=None, db=db_session, user=test_user)

    async def test_pending_subscription_denied(self, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "weekly", status=SubscriptionStatus.PENDING)
        with pytest.raises(HTTPException):
            await require_course_access(course_id=None, db=db_session, user=test_user)

    async def test_legacy_per_course_unlocks_only_its_course(self, db_session: AsyncSession, test_user: User):
        course_id = uuid.uuid4()
        await create_subscription(
            db_session,
            test_user,
            "per_course",
            course_id=course_id,
            course_access=False,
            test_access=False,
        )
        user = await require_course_access(course_id=course_id, db=db_session, user=test_user)
        assert user is test_user
        with pytest.raises(HTTPException):
            await require_course_access(course_id=uuid.uuid4(), db=db_session, user=test_user)


class TestRequireTestAccess:
    async def test_ai_plan_does_not_unlock_tests(self, db_session: AsyncSession, test_user: User):
        await create_subscription(db_session, test_user, "ai_monthly")
        with pytest.raises(HTTPException) as exc_info:
            await require_test_access(course_id=None, db=db_session, user=test_user)
        assert exc_info.value.detail["service"] == "tests"


class TestRequireAiAccess:
    async def test_free_tokens_allow_until_exhausted(self, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=9, ai_tokens_limit=10)
        assert await require_ai_access(course_id=None, db=db_session, user=user) is user

        user.ai_tokens_used = 10
        await db_session.flush()
        with pytest.raises(HTTPException) as exc_info:
            await require_ai_access(course_id=None, db=db_session, user=user)
        assert exc_info.value.detail["required_plans"] == ["ai_monthly"]

    async def test_unlimited_plan_ignores_counter(self, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=500)
        await create_subscription(db_session, user, "ai_monthly")
        assert await require_ai_access(course_id=None, db=db_session, user=user) is user

    async def test_consume_refuses_when_allowance_gone(self, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=10, ai_tokens_limit=10)
        with pytest.raises(HTTPException) as exc_info:
            await consume_ai_access(db=db_session, user=user)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["tokens_used"] == 10

    async def test_consume_charges_free_user(self, db_session: AsyncSession):
        user = await create_user(db_session, ai_tokens_used=3, ai_tokens_limit=10)
        assert await consume_ai_access(db=db_session, user=user) is user
        assert user.ai_tokens_used == 4


class TestGatedRoute:
    """The dependency mounted on a real route."""

    @pytest.fixture
    def gated_app(self, db_session: AsyncSession) -> FastAPI:
        app = FastAPI()

        @app.get("/courses/content")
        async def content(user: User = Depends(require_course_access)):
            return {"email": user.email}

        async def override_get_db():
            yield db_session

        app.dependency_overrides[get_db] = override_get_db
        return app

    async def test_route_denied_then_allowed(self, gated_app: FastAPI, db_session: AsyncSession, test_user: User):
        transport = ASGITransport(app=gated_app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            denied = await ac.get("/courses/content", headers=headers_for(test_user))
            assert denied.status_code == 403
            assert denied.json()["detail"]["service"] == "courses"

            await create_subscription(db_session, test_user, "monthly")
            allowed = await ac.get("/courses/content", headers=headers_for(test_user))
            assert allowed.status_code == 200
            assert allowed.json()["email"] == test_user.email
