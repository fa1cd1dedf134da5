"""
Tests for subscription models.

Run with: pytest tests/test_models.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from spendflow.core.subscriptions.models import (
    BillingInterval,
    Plan,
    PlanLimits,
    PlanTier,
    Subscription,
    SubscriptionProjection,
    SubscriptionStatus,
    coerce_timestamp,
)


NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _subscription(**overrides) -> Subscription:
    data = dict(
        user_id="user-1",
        plan_id="plan-1",
        status=SubscriptionStatus.ACTIVE,
        current_period_start=NOW,
        current_period_end=NOW + timedelta(days=30),
    )
    data.update(overrides)
    return Subscription(**data)


class TestPlanTier:
    def test_ordering(self):
        assert PlanTier.FREE.order < PlanTier.PRO.order < PlanTier.ENTERPRISE.order


class TestPlanLimits:
    def test_defaults_are_free_tier(self):
        limits = PlanLimits.defaults()
        assert limits.max_cards == 2
        assert limits.max_transactions == 10
        assert not any([
            limits.analytics,
            limits.export,
            limits.priority_support,
            limits.api_access,
            limits.team_management,
            limits.custom_integrations,
        ])

    def test_rejects_limits_below_sentinel(self):
        with pytest.raises(ValidationError):
            PlanLimits(max_cards=-2, max_transactions=10)

    def test_allows_under_limit(self):
        limits = PlanLimits(max_cards=2, max_transactions=10)
        assert limits.allows("max_cards", 1)
        assert not limits.allows("max_cards", 2)

    def test_unlimited_ignores_count(self):
        limits = PlanLimits(max_cards=-1, max_transactions=-1)
        assert limits.allows("max_cards", 10_000)
        assert limits.allows("max_transactions", 10_000)

    def test_has_feature_accepts_both_spellings(self):
        limits = PlanLimits(max_cards=5, max_transactions=-1, api_access=True)
        assert limits.has_feature("api_access")
        assert limits.has_feature("apiAccess")
        assert not limits.has_feature("export")

    def test_unknown_feature_denied(self):
        limits = PlanLimits(max_cards=-1, max_transactions=-1, analytics=True)
        assert not limits.has_feature("teleportation")
        assert not limits.has_feature("max_cards")

    def test_firestore_dict_uses_camel_case(self):
        data = PlanLimits.defaults().to_firestore_dict()
        assert data["maxCards"] == 2
        assert "prioritySupport" in data
        assert "max_cards" not in data


class TestPlan:
    def test_round_trip_through_firestore_payload(self):
        plan = Plan(
            name="pro_monthly",
            display_name="Professional",
            tier=PlanTier.PRO,
            price=499,
            limits=PlanLimits(max_cards=5, max_transactions=-1),
        )
        data = plan.to_firestore_dict()
        assert data["tier"] == "pro"
        assert data["displayName"] == "Professional"
        assert "id" not in data

        restored = Plan.from_firestore_dict("plan-1", data)
        assert restored.id == "plan-1"
        assert restored.tier == PlanTier.PRO
        assert restored.limits.max_transactions == -1

    def test_monthly_price_for_yearly_plan(self):
        plan = Plan(name="pro_yearly", tier=PlanTier.PRO, price=4800, interval=BillingInterval.YEAR)
        assert plan.monthly_price == 400

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            Plan(name="broken", price=-1)

    def test_missing_limits_fall_back_to_defaults(self):
        plan = Plan.from_firestore_dict("p", {"name": "legacy", "tier": "free", "price": 0})
        assert plan.limits == PlanLimits.defaults()


class TestSubscription:
    def test_period_end_must_follow_start(self):
        with pytest.raises(ValidationError):
            _subscription(current_period_end=NOW)

    def test_trial_end_must_follow_trial_start(self):
        with pytest.raises(ValidationError):
            _subscription(trial_start=NOW, trial_end=NOW - timedelta(days=1))

    @pytest.mark.parametrize(
        "status,active",
        [
            (SubscriptionStatus.ACTIVE, True),
            (SubscriptionStatus.TRIALING, True),
            (SubscriptionStatus.PAST_DUE, False),
            (SubscriptionStatus.CANCELED, False),
        ],
    )
    def test_is_active(self, status, active):
        assert _subscription(status=status).is_active is active

    def test_naive_timestamps_become_utc(self):
        sub = Subscription.from_firestore_dict(
            "s1",
            {
                "userId": "u",
                "planId": "p",
                "status": "active",
                "currentPeriodStart": datetime(2024, 1, 1),
                "currentPeriodEnd": datetime(2024, 1, 31),
            },
        )
        assert sub.current_period_start.tzinfo is not None

    def test_coerce_timestamp_from_seconds(self):
        class ProtoTimestamp:
            seconds = 0
            nanos = 0

        assert coerce_timestamp(ProtoTimestamp()) == datetime(1970, 1, 1, tzinfo=timezone.utc)


class TestProjection:
    def test_build_copies_plan_tier_and_limits(self):
        plan = Plan(
            id="pro",
            name="pro_monthly",
            tier=PlanTier.PRO,
            price=499,
            limits=PlanLimits(max_cards=5, max_transactions=-1, export=True),
        )
        sub = _subscription(id="s1", plan_id="pro", cancel_at_period_end=True)
        data = SubscriptionProjection.build(sub, plan).to_firestore_dict()

        assert data["tier"] == "pro"
        assert data["status"] == "active"
        assert data["cancelAtPeriodEnd"] is True
        assert data["features"]["maxCards"] == 5
        assert data["features"]["export"] is True
