"""
Tests for subscription analytics.

Run with: pytest tests/test_analytics.py -v
"""

from datetime import datetime, timezone

from spendflow.core.subscriptions.constants import PLANS_COLLECTION
from spendflow.core.subscriptions.models import BillingInterval, PlanTier, SubscriptionStatus
from tests.conftest import make_plan


MARCH = datetime(2024, 3, 15, tzinfo=timezone.utc)


class TestAnalytics:
    def test_empty(self, service):
        analytics = service.get_analytics(now=MARCH)

        assert analytics.total_active_subscriptions == 0
        assert analytics.total_mrr == 0
        assert analytics.churn_rate == 0.0
        assert analytics.subscriptions_by_plan == {"free": 0, "pro": 0, "enterprise": 0}

    def test_rollup(self, service, plans):
        yearly = service.create_plan(
            make_plan(PlanTier.PRO, 4800, id="pro_yearly", interval=BillingInterval.YEAR)
        )
        service.create_subscription("a", plans["pro"].id)
        service.create_subscription("b", plans["enterprise"].id, trial_days=14)
        service.create_subscription("c", plans["free"].id)
        service.create_subscription("d", plans["pro"].id)
        service.cancel_subscription("d")
        service.sync_billing_status("d", status=SubscriptionStatus.CANCELED)
        service.create_subscription("e", yearly.id)

        analytics = service.get_analytics(now=MARCH)

        assert analytics.total_active_subscriptions == 4
        assert analytics.subscriptions_by_plan == {"free": 1, "pro": 2, "enterprise": 1}
        # Trialing enterprise is not revenue; yearly is spread over twelve months
        assert analytics.total_mrr == 499 + 400
        assert analytics.total_arr == (499 + 400) * 12
        assert analytics.churn_rate == 20.0
        assert analytics.conversion_rate == 50.0
        assert analytics.average_revenue_per_user == 449.5
        assert analytics.new_subscriptions_this_month == 5
        assert analytics.canceled_subscriptions_this_month == 1

    def test_other_month_not_counted_as_new(self, service, plans):
        service.create_subscription("a", plans["pro"].id)

        analytics = service.get_analytics(now=datetime(2024, 4, 2, tzinfo=timezone.utc))

        assert analytics.new_subscriptions_this_month == 0
        assert analytics.total_active_subscriptions == 1

    def test_missing_plan_counts_as_free(self, db, service, plans):
        sub = service.create_subscription("a", plans["pro"].id)
        del db.docs(PLANS_COLLECTION)[sub.plan_id]

        analytics = service.get_analytics(now=MARCH)

        assert analytics.subscriptions_by_plan["free"] == 1
        assert analytics.total_mrr == 0
