"""
Subscription Service

Entry point used by request handlers. Wires the catalog, evaluator,
lifecycle manager, ledgers and notifications around one Firestore client
and routes every mutation through the operation queue.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from google.cloud import firestore

from spendflow.core.firebase_client import get_firestore_client
from spendflow.core.subscriptions.analytics import AnalyticsAggregator
from spendflow.core.subscriptions.entitlements import EntitlementEvaluator
from spendflow.core.subscriptions.ledger import ChangeLedger, PaymentLedger
from spendflow.core.subscriptions.lifecycle import SubscriptionLifecycleManager
from spendflow.core.subscriptions.models import (
    Entitlements,
    PaymentStatus,
    Plan,
    PlanLimits,
    Subscription,
    SubscriptionAnalytics,
    SubscriptionChange,
    SubscriptionNotification,
    SubscriptionPayment,
    utcnow,
)
from spendflow.core.subscriptions.notifications import NotificationEmitter
from spendflow.core.subscriptions.plans import PlanRepository, PlanService
from spendflow.core.subscriptions.queue import OperationQueue
from spendflow.core.subscriptions.repository import (
    SubscriptionRepository,
    UsageRepository,
    UserProfileRepository,
)


class SubscriptionService:
    def __init__(
        self,
        plans: PlanService,
        subscriptions: SubscriptionRepository,
        entitlements: EntitlementEvaluator,
        lifecycle: SubscriptionLifecycleManager,
        analytics: AnalyticsAggregator,
        changes: ChangeLedger,
        payments: PaymentLedger,
        notifications: NotificationEmitter,
        profiles: UserProfileRepository,
        queue: Optional[OperationQueue] = None,
    ):
        self.plans = plans
        self.subscriptions = subscriptions
        self.entitlements = entitlements
        self.lifecycle = lifecycle
        self.analytics = analytics
        self.changes = changes
        self.payments = payments
        self.notifications = notifications
        self.profiles = profiles
        self.queue = queue or OperationQueue()

    @classmethod
    def from_firestore(
        cls,
        db: firestore.Client,
        queue: Optional[OperationQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SubscriptionService":
        """Build the full object graph on top of one Firestore client."""
        plan_repo = PlanRepository(db)
        plan_service = PlanService(plan_repo)
        subscriptions = SubscriptionRepository(db)
        profiles = UserProfileRepository(db)
        changes = ChangeLedger(db)
        payments = PaymentLedger(db)
        notifications = NotificationEmitter(db)
        return cls(
            plans=plan_service,
            subscriptions=subscriptions,
            entitlements=EntitlementEvaluator(subscriptions, plan_repo, UsageRepository(db)),
            lifecycle=SubscriptionLifecycleManager(
                subscriptions,
                plan_service,
                profiles,
                changes,
                payments,
                notifications,
                clock=clock,
            ),
            analytics=AnalyticsAggregator(subscriptions, plan_repo),
            changes=changes,
            payments=payments,
            notifications=notifications,
            profiles=profiles,
            queue=queue,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_plans(self) -> List[Plan]:
        return self.plans.get_plans()

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self.plans.get_plan(plan_id)

    def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        return self.subscriptions.get_current(user_id)

    def get_user_limits(self, user_id: str) -> PlanLimits:
        return self.entitlements.get_user_limits(user_id)

    def get_entitlements(self, user_id: str) -> Entitlements:
        return self.entitlements.get_entitlements(user_id)

    def check_plan_limits(self, user_id: str, action: str) -> bool:
        return self.entitlements.check_plan_limits(user_id, action)

    def has_feature(self, user_id: str, feature: str) -> bool:
        return self.entitlements.has_feature(user_id, feature)

    def list_changes(self, user_id: str, limit: Optional[int] = None) -> List[SubscriptionChange]:
        return self.changes.list_for_user(user_id, limit=limit)

    def list_payments(self, user_id: str, limit: Optional[int] = None) -> List[SubscriptionPayment]:
        return self.payments.list_for_user(user_id, limit=limit)

    def list_notifications(self, user_id: str, unread_only: bool = False) -> List[SubscriptionNotification]:
        return self.notifications.list_for_user(user_id, unread_only=unread_only)

    def get_analytics(self, now: Optional[datetime] = None) -> SubscriptionAnalytics:
        return self.analytics.compute(now)

    def is_admin(self, user_id: str) -> bool:
        return self.profiles.is_admin(user_id)

    def watch_subscription(self, user_id: str, callback: Callable[[Optional[Subscription]], None]):
        return self.subscriptions.watch_current(user_id, callback)

    def watch_notifications(self, user_id: str, callback: Callable[[List[SubscriptionNotification]], None]):
        return self.notifications.watch(user_id, callback)

    # -------------------------------------------------------------------------
    # Mutations (serialized)
    # -------------------------------------------------------------------------

    def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        trial_days: Optional[int] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> Subscription:
        return self.queue.enqueue(
            lambda: self.lifecycle.create_subscription(
                user_id,
                plan_id,
                trial_days=trial_days,
                stripe_subscription_id=stripe_subscription_id,
            )
        )

    def change_plan(self, user_id: str, plan_id: str, subscription_id: Optional[str] = None) -> Subscription:
        return self.queue.enqueue(lambda: self.lifecycle.change_plan(user_id, plan_id, subscription_id))

    def cancel_subscription(self, user_id: str, subscription_id: Optional[str] = None) -> Subscription:
        return self.queue.enqueue(lambda: self.lifecycle.cancel_subscription(user_id, subscription_id))

    def reactivate_subscription(self, user_id: str, subscription_id: Optional[str] = None) -> Subscription:
        return self.queue.enqueue(lambda: self.lifecycle.reactivate_subscription(user_id, subscription_id))

    def sync_billing_status(self, user_id: str, **fields: Any) -> Subscription:
        return self.queue.enqueue(lambda: self.lifecycle.sync_billing_status(user_id, **fields))

    def record_payment(
        self,
        user_id: str,
        subscription_id: str,
        amount: int,
        status: PaymentStatus,
        **details: Any,
    ) -> SubscriptionPayment:
        return self.queue.enqueue(
            lambda: self.lifecycle.record_payment(user_id, subscription_id, amount, status, **details)
        )

    def notify_trial_ending(self, user_id: str) -> Optional[SubscriptionNotification]:
        return self.lifecycle.notify_trial_ending(user_id)

    def mark_notification_read(self, user_id: str, notification_id: str) -> SubscriptionNotification:
        return self.queue.enqueue(lambda: self.notifications.mark_read(user_id, notification_id))

    # -------------------------------------------------------------------------
    # Catalog administration
    # -------------------------------------------------------------------------

    def create_plan(self, plan: Plan) -> Plan:
        return self.plans.create_plan(plan)

    def update_plan(self, plan_id: str, updates: Dict[str, Any]) -> Plan:
        return self.plans.update_plan(plan_id, updates)

    def deactivate_plan(self, plan_id: str) -> Plan:
        return self.plans.deactivate_plan(plan_id)

    def ensure_default_plans_exist(self) -> List[Plan]:
        return self.plans.ensure_default_plans_exist()


# Global service instance for request handlers
_subscription_service: Optional[SubscriptionService] = None


def get_subscription_service() -> SubscriptionService:
    """Get the process-wide service, built on first use."""
    global _subscription_service
    if _subscription_service is None:
        _subscription_service = SubscriptionService.from_firestore(get_firestore_client())
    return _subscription_service
