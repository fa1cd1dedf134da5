"""
Subscription Lifecycle Manager

State transitions over ``Subscription.status`` and ``planId``. Every
transition that changes plan or status appends exactly one change record and
refreshes the user profile projection before returning. The subscription
write and the projection write are separate documents and not atomic; the
subscription record stays authoritative.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from spendflow.config import SUBSCRIPTION_PERIOD_DAYS, logger
from spendflow.core.security import log_security_event
from spendflow.core.subscriptions.exceptions import (
    ActiveSubscriptionExistsError,
    InvalidTransitionError,
    SubscriptionNotFoundError,
    SubscriptionOwnershipError,
)
from spendflow.core.subscriptions.ledger import ChangeLedger, PaymentLedger
from spendflow.core.subscriptions.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ChangeType,
    NotificationType,
    PaymentMethodInfo,
    PaymentStatus,
    Plan,
    PlanTier,
    Subscription,
    SubscriptionChange,
    SubscriptionNotification,
    SubscriptionPayment,
    SubscriptionProjection,
    SubscriptionStatus,
    utcnow,
)
from spendflow.core.subscriptions.notifications import NotificationEmitter
from spendflow.core.subscriptions.plans import PlanService
from spendflow.core.subscriptions.repository import SubscriptionRepository, UserProfileRepository


def classify_plan_change(from_plan: Optional[Plan], to_plan: Plan) -> ChangeType:
    """
    Upgrade or downgrade, by tier order free < pro < enterprise.

    A missing source plan counts as free. Within the same tier the monthly
    price decides.
    """
    from_order = from_plan.tier.order if from_plan else PlanTier.FREE.order
    to_order = to_plan.tier.order
    if to_order != from_order:
        return ChangeType.UPGRADE if to_order > from_order else ChangeType.DOWNGRADE

    from_price = from_plan.monthly_price if from_plan else 0
    return ChangeType.UPGRADE if to_plan.monthly_price > from_price else ChangeType.DOWNGRADE


class SubscriptionLifecycleManager:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        plans: PlanService,
        profiles: UserProfileRepository,
        changes: ChangeLedger,
        payments: PaymentLedger,
        notifications: NotificationEmitter,
        period_days: int = SUBSCRIPTION_PERIOD_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._subscriptions = subscriptions
        self._plans = plans
        self._profiles = profiles
        self._changes = changes
        self._payments = payments
        self._notifications = notifications
        self._period_days = period_days
        self._clock = clock

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _resolve_owned(
        self,
        user_id: str,
        subscription_id: Optional[str],
        current_only: bool = True,
    ) -> Subscription:
        current = self._subscriptions.get_current(user_id)
        if subscription_id is None:
            if current is None:
                raise SubscriptionNotFoundError(f"current subscription of user {user_id}")
            return current

        subscription = self._subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        if subscription.user_id != user_id:
            log_security_event(
                "subscription_ownership_mismatch",
                user_id=user_id,
                details={"subscription_id": subscription_id, "owner_id": subscription.user_id},
            )
            raise SubscriptionOwnershipError(user_id, subscription_id)
        # Only the newest record may change state; older ones are history
        if current_only and (subscription.superseded_by or current is None or current.id != subscription.id):
            raise InvalidTransitionError(
                f"Subscription {subscription_id} has been superseded and can no longer change"
            )
        return subscription

    def _record_change(
        self,
        user_id: str,
        change_type: ChangeType,
        from_plan_id: Optional[str],
        to_plan_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SubscriptionChange:
        return self._changes.append(
            SubscriptionChange(
                user_id=user_id,
                from_plan_id=from_plan_id,
                to_plan_id=to_plan_id,
                change_type=change_type,
                effective_date=self._clock(),
                metadata=metadata or {},
            )
        )

    def _sync_projection(self, subscription: Subscription, plan: Plan) -> None:
        self._profiles.write_projection(subscription.user_id, SubscriptionProjection.build(subscription, plan))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        trial_days: Optional[int] = None,
        stripe_subscription_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """
        Start a subscription on ``plan_id``.

        Raises:
            PlanNotFoundError: If the plan is unknown or inactive
            ActiveSubscriptionExistsError: If the current subscription is active or trialing
            ValueError: If trial_days is negative or longer than the billing period
        """
        if trial_days is not None and trial_days < 0:
            raise ValueError("trial_days must be non-negative")
        if trial_days is not None and trial_days > self._period_days:
            raise ValueError(f"trial_days cannot exceed the {self._period_days}-day billing period")

        plan = self._plans.require_plan(plan_id)
        current = self._subscriptions.get_current(user_id)
        if current is not None and current.is_active:
            raise ActiveSubscriptionExistsError(user_id, current.id)

        now = self._clock()
        trialing = bool(trial_days)
        subscription = self._subscriptions.create(
            Subscription(
                user_id=user_id,
                plan_id=plan.id,
                status=SubscriptionStatus.TRIALING if trialing else SubscriptionStatus.ACTIVE,
                current_period_start=now,
                current_period_end=now + timedelta(days=self._period_days),
                trial_start=now if trialing else None,
                trial_end=now + timedelta(days=trial_days) if trialing else None,
                stripe_subscription_id=stripe_subscription_id,
                metadata=metadata or {},
                created_at=now,
                updated_at=now,
            )
        )

        if current is not None:
            self._subscriptions.update(current.id, {"supersededBy": subscription.id})

        self._record_change(
            user_id,
            ChangeType.REACTIVATE,
            current.plan_id if current else None,
            plan.id,
            metadata={"subscriptionId": subscription.id},
        )
        self._sync_projection(subscription, plan)
        self._notifications.emit(
            user_id,
            NotificationType.SUBSCRIPTION_CREATED,
            "Subscription Activated",
            f"Your {plan.display_name} subscription has been activated.",
            data={"planId": plan.id, "planName": plan.display_name},
        )

        logger.info(
            "Subscription %s created for user %s on plan %s (%s)",
            subscription.id,
            user_id,
            plan.id,
            subscription.status.value,
        )
        return subscription

    def change_plan(self, user_id: str, plan_id: str, subscription_id: Optional[str] = None) -> Subscription:
        """
        Move an active or trialing subscription to another plan in place.

        The billing period is kept and no proration is computed. Choosing the
        current plan returns the subscription untouched.

        Raises:
            SubscriptionNotFoundError: If there is no subscription to change
            SubscriptionOwnershipError: If the subscription belongs to someone else
            InvalidTransitionError: If the subscription is not active or trialing
            PlanNotFoundError: If the target plan is unknown or inactive
        """
        subscription = self._resolve_owned(user_id, subscription_id)
        if not subscription.is_active:
            raise InvalidTransitionError(
                f"Cannot change plan of a {subscription.status.value} subscription"
            )
        if plan_id == subscription.plan_id:
            return subscription

        new_plan = self._plans.require_plan(plan_id)
        current_plan = self._plans.get_plan(subscription.plan_id)
        change_type = classify_plan_change(current_plan, new_plan)

        updated = self._subscriptions.update(subscription.id, {"planId": new_plan.id})
        self._record_change(
            user_id,
            change_type,
            subscription.plan_id,
            new_plan.id,
            metadata={"subscriptionId": subscription.id},
        )
        self._sync_projection(updated, new_plan)
        self._notifications.emit(
            user_id,
            NotificationType.SUBSCRIPTION_UPDATED,
            "Subscription Updated",
            f"Your subscription has been changed to {new_plan.display_name}.",
            data={"planId": new_plan.id, "changeType": change_type.value},
        )

        logger.info(
            "Subscription %s %sd from %s to %s for user %s",
            subscription.id,
            change_type.value,
            subscription.plan_id,
            new_plan.id,
            user_id,
        )
        return updated

    def cancel_subscription(self, user_id: str, subscription_id: Optional[str] = None) -> Subscription:
        """
        Schedule cancellation at the end of the current period.

        The status is left as is; the move to ``canceled`` comes from the
        billing provider when the period ends.
        """
        subscription = self._resolve_owned(user_id, subscription_id)
        plan = self._plans.require_plan(subscription.plan_id, active_only=False)

        updated = self._subscriptions.update(
            subscription.id,
            {"cancelAtPeriodEnd": True, "canceledAt": self._clock()},
        )
        self._record_change(
            user_id,
            ChangeType.CANCEL,
            subscription.plan_id,
            subscription.plan_id,
            metadata={"subscriptionId": subscription.id},
        )
        self._sync_projection(updated, plan)
        self._notifications.emit(
            user_id,
            NotificationType.SUBSCRIPTION_CANCELED,
            "Subscription Canceled",
            f"Your {plan.display_name} subscription will end on "
            f"{updated.current_period_end.date().isoformat()}.",
            data={"planId": plan.id, "currentPeriodEnd": updated.current_period_end.isoformat()},
        )

        logger.info("Subscription %s set to cancel at period end for user %s", subscription.id, user_id)
        return updated

    def reactivate_subscription(self, user_id: str, subscription_id: Optional[str] = None) -> Subscription:
        """Clear a scheduled cancellation and force the status back to active."""
        subscription = self._resolve_owned(user_id, subscription_id)
        plan = self._plans.require_plan(subscription.plan_id, active_only=False)

        updated = self._subscriptions.update(
            subscription.id,
            {
                "cancelAtPeriodEnd": False,
                "canceledAt": None,
                "status": SubscriptionStatus.ACTIVE.value,
            },
        )
        self._record_change(
            user_id,
            ChangeType.REACTIVATE,
            subscription.plan_id,
            subscription.plan_id,
            metadata={"subscriptionId": subscription.id, "previousStatus": subscription.status.value},
        )
        self._sync_projection(updated, plan)
        self._notifications.emit(
            user_id,
            NotificationType.SUBSCRIPTION_UPDATED,
            "Subscription Reactivated",
            f"Your {plan.display_name} subscription has been reactivated.",
            data={"planId": plan.id},
        )

        logger.info("Subscription %s reactivated for user %s", subscription.id, user_id)
        return updated

    # -------------------------------------------------------------------------
    # Billing provider events
    # -------------------------------------------------------------------------

    def sync_billing_status(
        self,
        user_id: str,
        status: Optional[SubscriptionStatus] = None,
        current_period_end: Optional[datetime] = None,
        cancel_at_period_end: Optional[bool] = None,
        canceled_at: Optional[datetime] = None,
        stripe_subscription_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Subscription:
        """
        Apply state reported by the billing provider to the subscription.

        Every status change records one change: ``reactivate`` when the new
        status is ``active``/``trialing`` and ``cancel`` otherwise, with both
        statuses in the metadata. The user is notified when the subscription
        ends or recovers and when it falls into ``past_due``/``unpaid``.
        """
        subscription = self._resolve_owned(user_id, subscription_id)
        if current_period_end is not None and current_period_end <= subscription.current_period_start:
            raise ValueError("currentPeriodEnd must be after currentPeriodStart")

        updates: Dict[str, Any] = {}
        if status is not None:
            updates["status"] = SubscriptionStatus(status).value
        if current_period_end is not None:
            updates["currentPeriodEnd"] = current_period_end
        if cancel_at_period_end is not None:
            updates["cancelAtPeriodEnd"] = cancel_at_period_end
        if canceled_at is not None:
            updates["canceledAt"] = canceled_at
        if stripe_subscription_id is not None:
            updates["stripeSubscriptionId"] = stripe_subscription_id
        if not updates:
            return subscription

        plan = self._plans.require_plan(subscription.plan_id, active_only=False)
        updated = self._subscriptions.update(subscription.id, updates)

        previous_status = subscription.status
        new_status = updated.status
        if new_status != previous_status:
            change_type = ChangeType.REACTIVATE if new_status in ACTIVE_STATUSES else ChangeType.CANCEL
            self._record_change(
                user_id,
                change_type,
                plan.id,
                plan.id,
                metadata={
                    "subscriptionId": subscription.id,
                    "source": "billing_provider",
                    "previousStatus": previous_status.value,
                    "status": new_status.value,
                },
            )

            if new_status in TERMINAL_STATUSES and previous_status not in TERMINAL_STATUSES:
                self._notifications.emit(
                    user_id,
                    NotificationType.SUBSCRIPTION_CANCELED,
                    "Subscription Ended",
                    f"Your {plan.display_name} subscription has ended.",
                    data={"planId": plan.id},
                )
            elif new_status in ACTIVE_STATUSES and previous_status not in ACTIVE_STATUSES:
                self._notifications.emit(
                    user_id,
                    NotificationType.SUBSCRIPTION_UPDATED,
                    "Subscription Active",
                    f"Your {plan.display_name} subscription is active again.",
                    data={"planId": plan.id},
                )
            elif new_status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID):
                self._notifications.emit(
                    user_id,
                    NotificationType.PAYMENT_FAILED,
                    "Payment Failed",
                    "Your subscription payment failed. Please update your payment method.",
                    data={"subscriptionId": subscription.id, "status": new_status.value},
                )

        self._sync_projection(updated, plan)
        logger.info(
            "Subscription %s synced from billing provider for user %s (status %s -> %s)",
            subscription.id,
            user_id,
            previous_status.value,
            new_status.value,
        )
        return updated

    def record_payment(
        self,
        user_id: str,
        subscription_id: str,
        amount: int,
        status: PaymentStatus,
        currency: str = "usd",
        payment_method: Optional[PaymentMethodInfo] = None,
        stripe_payment_intent_id: Optional[str] = None,
        invoice_url: Optional[str] = None,
        receipt_url: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SubscriptionPayment:
        """Append a billing event and tell the user whether it went through."""
        subscription = self._resolve_owned(user_id, subscription_id, current_only=False)
        payment = self._payments.append(
            SubscriptionPayment(
                user_id=user_id,
                subscription_id=subscription.id,
                amount=amount,
                currency=currency,
                status=status,
                payment_method=payment_method,
                stripe_payment_intent_id=stripe_payment_intent_id,
                invoice_url=invoice_url,
                receipt_url=receipt_url,
                description=description,
                metadata=metadata or {},
            )
        )

        if payment.status == PaymentStatus.SUCCEEDED:
            self._notifications.emit(
                user_id,
                NotificationType.PAYMENT_SUCCEEDED,
                "Payment Successful",
                f"Your payment of {amount / 100:.2f} {currency.upper()} was processed successfully.",
                data={"amount": amount, "currency": currency, "paymentId": payment.id},
            )
        elif payment.status in (PaymentStatus.FAILED, PaymentStatus.REQUIRES_PAYMENT_METHOD):
            self._notifications.emit(
                user_id,
                NotificationType.PAYMENT_FAILED,
                "Payment Failed",
                "Your subscription payment failed. Please update your payment method.",
                data={"amount": amount, "currency": currency, "paymentId": payment.id},
            )
        return payment

    def notify_trial_ending(self, user_id: str) -> Optional[SubscriptionNotification]:
        """Warn a trialing user that the trial is about to end; no-op otherwise."""
        subscription = self._resolve_owned(user_id, None)
        if subscription.status != SubscriptionStatus.TRIALING or subscription.trial_end is None:
            return None
        trial_end = subscription.trial_end
        return self._notifications.emit(
            user_id,
            NotificationType.TRIAL_ENDING,
            "Trial Ending Soon",
            f"Your trial ends on {trial_end.date().isoformat()}. "
            "Add a payment method to continue your subscription.",
            data={"trialEndDate": trial_end.isoformat()},
        )
