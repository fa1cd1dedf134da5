from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from spendflow.config import logger
from spendflow.core.firebase_client import get_current_user
from spendflow.core.subscriptions.models import Entitlements, PlanTier, Subscription, SubscriptionNotification
from spendflow.core.subscriptions.service import SubscriptionService, get_subscription_service
from spendflow.schemas import (
    ChangePlanRequest,
    ChangesListResponse,
    CreateSubscriptionRequest,
    CurrentSubscriptionResponse,
    LimitCheckResponse,
    NotificationsListResponse,
    PaymentsListResponse,
    PlansListResponse,
    SubscriptionActionRequest,
)

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


@router.get("/plans", response_model=PlansListResponse)
async def list_plans(
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> PlansListResponse:
    """List purchasable plans, cheapest first."""
    return PlansListResponse(plans=service.get_plans())


@router.get("/me", response_model=CurrentSubscriptionResponse)
async def get_my_subscription(
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> CurrentSubscriptionResponse:
    """Current subscription, its plan and the resolved entitlements."""
    uid = user["uid"]
    subscription = service.get_user_subscription(uid)
    plan = service.get_plan(subscription.plan_id) if subscription else None
    entitlements = service.get_entitlements(uid)
    return CurrentSubscriptionResponse(
        subscription=subscription,
        plan=plan,
        entitlements=entitlements,
        can_upgrade=entitlements.tier != PlanTier.ENTERPRISE,
        can_downgrade=entitlements.tier != PlanTier.FREE,
    )


@router.get("/me/limits", response_model=Entitlements)
async def get_my_limits(
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Entitlements:
    return service.get_entitlements(user["uid"])


@router.get("/me/limits/{action}", response_model=LimitCheckResponse)
async def check_my_limit(
    action: str,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> LimitCheckResponse:
    """Whether the caller may add one more card or transaction."""
    try:
        allowed = service.check_plan_limits(user["uid"], action)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return LimitCheckResponse(action=action, allowed=allowed)


# Handlers that go through the operation queue are plain ``def`` so they run in
# the threadpool; its retry backoff sleeps and must not block the event loop.

@router.post("", response_model=Subscription, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: CreateSubscriptionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    uid = user["uid"]
    try:
        subscription = service.create_subscription(uid, payload.plan_id, trial_days=payload.trial_days)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info("User %s subscribed to plan %s", uid, payload.plan_id)
    return subscription


@router.post("/change-plan", response_model=Subscription)
def change_plan(
    payload: ChangePlanRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    """Upgrade or downgrade the caller's subscription."""
    return service.change_plan(user["uid"], payload.plan_id, payload.subscription_id)


@router.post("/cancel", response_model=Subscription)
def cancel_subscription(
    payload: SubscriptionActionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return service.cancel_subscription(user["uid"], payload.subscription_id)


@router.post("/reactivate", response_model=Subscription)
def reactivate_subscription(
    payload: SubscriptionActionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    return service.reactivate_subscription(user["uid"], payload.subscription_id)


# -----------------------------------------------------------------------------
# History & Notifications
# -----------------------------------------------------------------------------

@router.get("/me/changes", response_model=ChangesListResponse)
async def list_my_changes(
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> ChangesListResponse:
    return ChangesListResponse(changes=service.list_changes(user["uid"]))


@router.get("/me/payments", response_model=PaymentsListResponse)
async def list_my_payments(
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> PaymentsListResponse:
    return PaymentsListResponse(payments=service.list_payments(user["uid"]))


@router.get("/me/notifications", response_model=NotificationsListResponse)
async def list_my_notifications(
    unread_only: bool = False,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> NotificationsListResponse:
    notifications = service.list_notifications(user["uid"], unread_only=unread_only)
    return NotificationsListResponse(
        notifications=notifications,
        unread_count=sum(1 for n in notifications if not n.read),
    )


@router.post("/me/notifications/{notification_id}/read", response_model=SubscriptionNotification)
def mark_notification_read(
    notification_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionNotification:
    return service.mark_notification_read(user["uid"], notification_id)
