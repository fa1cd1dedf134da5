"""
Subscription Management Module

Plan catalog, entitlement evaluation and subscription lifecycle on top of
Firestore.
"""

from spendflow.core.subscriptions.entitlements import EntitlementEvaluator
from spendflow.core.subscriptions.lifecycle import SubscriptionLifecycleManager, classify_plan_change
from spendflow.core.subscriptions.models import (
    Entitlements,
    Plan,
    PlanLimits,
    PlanTier,
    Subscription,
    SubscriptionStatus,
)
from spendflow.core.subscriptions.plans import PlanRepository, PlanService
from spendflow.core.subscriptions.service import SubscriptionService, get_subscription_service

__all__ = [
    "EntitlementEvaluator",
    "Entitlements",
    "Plan",
    "PlanLimits",
    "PlanRepository",
    "PlanService",
    "PlanTier",
    "Subscription",
    "SubscriptionLifecycleManager",
    "SubscriptionService",
    "SubscriptionStatus",
    "classify_plan_change",
    "get_subscription_service",
]
