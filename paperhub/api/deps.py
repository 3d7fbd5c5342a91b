"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and access gating dependencies::

    from paperhub.api.deps import get_db, get_current_active_user
"""

from paperhub.auth.dependencies import (
    get_current_active_user,
    get_current_admin_user,
    get_current_user,
)
from paperhub.billing.dependencies import (
    require_access,
    require_ai_access,
    require_course_access,
    require_test_access,
)
from paperhub.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "get_current_admin_user",
    "require_access",
    "require_course_access",
    "require_test_access",
    "require_ai_access",
]
