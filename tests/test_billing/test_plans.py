"""Tests for the plan catalog."""

from datetime import datetime

import pytest

from paperhub.billing.exceptions import UnknownPlan
from paperhub.billing.plans import (
    PLANS,
    PLANS_FOR_SERVICE,
    compute_end_date,
    get_plan,
    plan_features,
    resolve_plan_type,
)


class TestCatalog:
    """Prices and durations are part of the public contract."""

    @pytest.mark.parametrize(
        "name,price,days",
        [
            ("daily", 100, 1),
            ("weekly", 500, 7),
            ("monthly", 1500, 30),
            ("four_month", 4000, 120),
            ("ai_monthly", 500, 30),
        ],
    )
    def test_price_and_duration(self, name, price, days):
        plan = get_plan(name)
        assert plan.price == price
        assert plan.duration_days == days

    def test_content_plans_exclude_ai(self):
        for name in ("daily", "weekly", "monthly", "four_month"):
            plan = PLANS[name]
            assert plan.course_access and plan.test_access
            assert not plan.unlimited_ai

    def test_ai_plan_is_ai_only(self):
        plan = PLANS["ai_monthly"]
        assert plan.unlimited_ai and plan.ai_access
        assert not plan.course_access and not plan.test_access

    def test_plans_for_service(self):
        assert PLANS_FOR_SERVICE["ai"] == ["ai_monthly"]
        assert "ai_monthly" not in PLANS_FOR_SERVICE["courses"]
        assert set(PLANS_FOR_SERVICE["tests"]) == {"daily", "weekly", "monthly", "four_month"}


class TestGetPlan:
    def test_unknown_plan_lists_available(self):
        with pytest.raises(UnknownPlan) as exc_info:
            get_plan("yearly")
        assert "weekly" in exc_info.value.message
        assert exc_info.value.plan_type == "yearly"

    def test_per_course_maps_to_daily(self):
        assert resolve_plan_type("per_course") == "daily"
        assert get_plan("per_course").name == "daily"


class TestComputeEndDate:
    def test_weekly_adds_seven_days(self):
        assert compute_end_date("weekly", datetime(2026, 1, 1, 12)) == datetime(2026, 1, 8, 12)

    def test_four_month_is_120_days(self):
        assert compute_end_date("four_month", datetime(2026, 1, 1)) == datetime(2026, 5, 1)


def test_plan_features_copies_flags():
    features = plan_features(PLANS["ai_monthly"])
    assert features == {
        "course_access": False,
        "test_access": False,
        "ai_access": True,
        "ai_token_limit": 0,
        "unlimited_ai": True,
    }
