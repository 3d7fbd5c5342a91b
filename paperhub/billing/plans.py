"""Plan catalog — prices, durations and the features each plan unlocks."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from paperhub.billing.exceptions import UnknownPlan
from paperhub.models.subscription import PlanType


@dataclass(frozen=True)
class Plan:
    """A purchasable access window."""

    name: str
    display_name: str
    price: int  # XAF
    duration_days: int
    course_access: bool
    test_access: bool
    ai_access: bool
    unlimited_ai: bool
    description: str
    ai_token_limit: int = 0


PLANS: dict[str, Plan] = {
    "daily": Plan(
        name="daily",
        display_name="Daily Access",
        price=100,
        duration_days=1,
        course_access=True,
        test_access=True,
        ai_access=False,
        unlimited_ai=False,
        description="Full access to all courses for 1 day",
    ),
    "weekly": Plan(
        name="weekly",
        display_name="Weekly Plan",
        price=500,
        duration_days=7,
        course_access=True,
        test_access=True,
        ai_access=False,
        unlimited_ai=False,
        description="Full access to all courses for 1 week",
    ),
    "monthly": Plan(
        name="monthly",
        display_name="Monthly Plan",
        price=1500,
        duration_days=30,
        course_access=True,
        test_access=True,
        ai_access=False,
        unlimited_ai=False,
        description="Full access to all courses for 1 month",
    ),
    "four_month": Plan(
        name="four_month",
        display_name="4-Month Plan",
        price=4000,
        duration_days=120,
        course_access=True,
        test_access=True,
        ai_access=False,
        unlimited_ai=False,
        description="Full access to all courses for 4 months",
    ),
    "ai_monthly": Plan(
        name="ai_monthly",
        display_name="AI Monthly Plan",
        price=500,
        duration_days=30,
        course_access=False,
        test_access=False,
        ai_access=True,
        unlimited_ai=True,
        description="Unlimited AI access for 1 month",
    ),
}

VALID_PLAN_NAMES: set[str] = set(PLANS.keys())

# Plans that unlock each gated service, used in denial messages.
PLANS_FOR_SERVICE: dict[str, list[str]] = {
    "courses": [p.name for p in PLANS.values() if p.course_access],
    "tests": [p.name for p in PLANS.values() if p.test_access],
    "ai": [p.name for p in PLANS.values() if p.unlimited_ai],
}


def get_plans() -> dict[str, Plan]:
    """Return the full catalog."""
    return PLANS


def resolve_plan_type(plan_type: str) -> str:
    """Map legacy plan names onto their current equivalent."""
    if plan_type == PlanType.PER_COURSE.value:
        return PlanType.DAILY.value
    return plan_type


def get_plan(plan_type: str) -> Plan:
    """Get a plan by name. Raises UnknownPlan if it is not in the catalog."""
    plan = PLANS.get(resolve_plan_type(plan_type))
    if plan is None:
        raise UnknownPlan(plan_type, sorted(VALID_PLAN_NAMES))
    return plan


def compute_end_date(plan_type: str, start: datetime) -> datetime:
    """End of the access window for a plan starting at ``start``."""
    return start + timedelta(days=get_plan(plan_type).duration_days)


def plan_features(plan: Plan) -> dict[str, bool | int]:
    """Feature flags copied onto a Subscription when it is created."""
    return {
        "course_access": plan.course_access,
        "test_access": plan.test_access,
        "ai_access": plan.ai_access,
        "ai_token_limit": plan.ai_token_limit,
        "unlimited_ai": plan.unlimited_ai,
    }
