"""Access gating dependencies — enforce subscription access on protected routes."""

import logging
import uuid

from fastapi import Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from paperhub.auth.dependencies import get_current_active_user
from paperhub.database import get_db
from paperhub.models.user import User
from paperhub.services.subscription_service import AccessDecision, check_access, consume_ai_token

logger = logging.getLogger(__name__)


def _forbidden(decision: AccessDecision) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": decision.message,
            "service": decision.service,
            "required_plans": decision.required_plans,
            "subscribe_url": "/api/v1/subscriptions/plans",
        },
    )


def require_access(service: str):
    """Build a dependency that returns the user if they may use ``service``."""

    async def dependency(
        course_id: uuid.UUID | None = Query(None),
        db: AsyncSession = Depends(get_db),
        user: User = Depends(get_current_active_user),
    ) -> User:
        decision = await check_access(db, user, service, course_id=course_id)
        if not decision.has_access:
            logger.info("Denied %s access to user %s", service, user.id)
            raise _forbidden(decision)
        return user

    dependency.__name__ = f"require_{service}_access"
    return dependency


require_course_access = require_access("courses")
require_test_access = require_access("tests")
require_ai_access = require_access("ai")


async def consume_ai_access(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_ai_access),
) -> User:
    """Spend one AI token for the request. Unlimited users are never charged."""
    if not await consume_ai_token(db, user):
        # Another request took the last free token after the check.
        logger.info("AI token limit reached for user %s", user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "AI token limit reached. Upgrade to continue using AI features.",
                "service": "ai",
                "tokens_used": user.ai_tokens_used,
                "token_limit": user.ai_tokens_limit,
                "subscribe_url": "/api/v1/subscriptions/plans",
            },
        )
    return user
