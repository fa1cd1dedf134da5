"""
Subscription analytics.

Full recomputation over every subscription and plan document on each call.
Read-only.
"""

from datetime import datetime
from typing import Dict, Optional

from spendflow.core.subscriptions.models import (
    ACTIVE_STATUSES,
    Plan,
    PlanTier,
    SubscriptionAnalytics,
    SubscriptionStatus,
    utcnow,
)
from spendflow.core.subscriptions.plans import PlanRepository
from spendflow.core.subscriptions.repository import SubscriptionRepository


def _same_month(value: Optional[datetime], now: datetime) -> bool:
    return value is not None and value.year == now.year and value.month == now.month


class AnalyticsAggregator:
    def __init__(self, subscriptions: SubscriptionRepository, plans: PlanRepository):
        self._subscriptions = subscriptions
        self._plans = plans

    def compute(self, now: Optional[datetime] = None) -> SubscriptionAnalytics:
        """
        Roll up the subscription collection.

        - Active means ``active`` or ``trialing``; churn is the share of all
          rows that are neither, as a percentage.
        - Revenue counts only ``active`` rows on pro/enterprise plans, with
          yearly prices spread over twelve months.
        """
        now = now or utcnow()
        plans: Dict[str, Plan] = {plan.id: plan for plan in self._plans.list_all()}
        subscriptions = self._subscriptions.list_all()

        by_tier = {tier.value: 0 for tier in PlanTier}
        total_active = 0
        paying = 0
        mrr = 0
        new_this_month = 0
        canceled_this_month = 0

        for subscription in subscriptions:
            if _same_month(subscription.created_at, now):
                new_this_month += 1
            if _same_month(subscription.canceled_at, now):
                canceled_this_month += 1

            if subscription.status not in ACTIVE_STATUSES:
                continue
            total_active += 1

            plan = plans.get(subscription.plan_id)
            tier = plan.tier if plan else PlanTier.FREE
            by_tier[tier.value] += 1

            if plan and plan.is_paid and subscription.status == SubscriptionStatus.ACTIVE:
                paying += 1
                mrr += plan.monthly_price

        total = len(subscriptions)
        inactive = total - total_active
        return SubscriptionAnalytics(
            total_active_subscriptions=total_active,
            total_mrr=mrr,
            total_arr=mrr * 12,
            subscriptions_by_plan=by_tier,
            churn_rate=round(inactive / total * 100, 2) if total else 0.0,
            conversion_rate=round(paying / total_active * 100, 2) if total_active else 0.0,
            average_revenue_per_user=round(mrr / paying, 2) if paying else 0.0,
            new_subscriptions_this_month=new_this_month,
            canceled_subscriptions_this_month=canceled_this_month,
        )
