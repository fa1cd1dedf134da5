"""
Entitlement Evaluator

Maps a user's current subscription and its plan to the capability set that
gated features check. Always derived from the live subscription and plan
documents, never from the projection cached on the user profile.
"""

from typing import Optional, Tuple

from spendflow.config import logger
from spendflow.core.subscriptions.constants import LIMITED_ACTIONS
from spendflow.core.subscriptions.models import Entitlements, Plan, PlanLimits, PlanTier
from spendflow.core.subscriptions.plans import PlanRepository
from spendflow.core.subscriptions.repository import SubscriptionRepository, UsageRepository


class EntitlementEvaluator:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        plans: PlanRepository,
        usage: UsageRepository,
    ):
        self._subscriptions = subscriptions
        self._plans = plans
        self._usage = usage

    def _resolve_plan(self, user_id: str) -> Tuple[Optional[str], Optional[Plan]]:
        subscription = self._subscriptions.get_current(user_id)
        if subscription is None:
            return None, None
        plan = self._plans.get_by_id(subscription.plan_id)
        if plan is None:
            logger.warning(
                "Subscription %s references missing plan %s, using free-tier defaults",
                subscription.id,
                subscription.plan_id,
            )
        return subscription.plan_id, plan

    def get_entitlements(self, user_id: str) -> Entitlements:
        plan_id, plan = self._resolve_plan(user_id)
        if plan is None:
            return Entitlements(tier=PlanTier.FREE, plan_id=None, limits=PlanLimits.defaults(), is_default=True)
        return Entitlements(tier=plan.tier, plan_id=plan_id, limits=plan.limits)

    def get_user_limits(self, user_id: str) -> PlanLimits:
        """
        Limits for the user's current plan.

        Falls back to the free-tier defaults (2 cards, 10 transactions, no
        features) when there is no subscription or its plan cannot be found.
        """
        return self.get_entitlements(user_id).limits

    def check_plan_limits(self, user_id: str, action: str) -> bool:
        """
        Return True if the user may perform one more ``action``.

        Only the free tier is counted; paid tiers always pass.

        Raises:
            ValueError: If ``action`` is not a limited action
        """
        if action not in LIMITED_ACTIONS:
            raise ValueError(f"Unknown limited action: {action}")
        limit_name, collection_name = LIMITED_ACTIONS[action]

        entitlements = self.get_entitlements(user_id)
        if entitlements.tier != PlanTier.FREE:
            return True

        limits = entitlements.limits
        if PlanLimits.is_unlimited(getattr(limits, limit_name)):
            return True

        count = self._usage.count_owned(collection_name, user_id)
        allowed = limits.allows(limit_name, count)
        if not allowed:
            logger.info("User %s reached %s limit (%d) for %s", user_id, limit_name, count, action)
        return allowed

    def has_feature(self, user_id: str, feature: str) -> bool:
        """Boolean capability check; anything unknown is denied."""
        return self.get_user_limits(user_id).has_feature(feature)
