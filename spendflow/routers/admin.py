from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from spendflow.config import logger
from spendflow.core.firebase_client import get_current_user
from spendflow.core.security import log_security_event
from spendflow.core.subscriptions.models import Plan, Subscription, SubscriptionAnalytics
from spendflow.core.subscriptions.service import SubscriptionService, get_subscription_service
from spendflow.schemas import (
    AdminPlanChangeRequest,
    PlanCreateRequest,
    PlansListResponse,
    PlanUpdateRequest,
    SeedPlansResponse,
)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def require_admin(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> str:
    """Dependency to require the ``isAdmin`` flag on the caller's profile."""
    uid = user["uid"]
    if not service.is_admin(uid):
        log_security_event("unauthorized_admin_access", request=request, user_id=uid)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return uid


# -----------------------------------------------------------------------------
# Plan Management Endpoints
# -----------------------------------------------------------------------------

@router.get("/plans", response_model=PlansListResponse)
async def list_plans(
    include_inactive: bool = False,
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> PlansListResponse:
    """List plans, optionally including deactivated ones (admin only)."""
    return PlansListResponse(plans=service.plans.get_all_plans(include_inactive=include_inactive))


@router.post("/plans", response_model=Plan, status_code=status.HTTP_201_CREATED)
async def create_plan(
    payload: PlanCreateRequest,
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Plan:
    """Create a new plan (admin only)."""
    try:
        plan = service.create_plan(payload.to_plan())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info("Plan %s created by admin %s", plan.id, uid)
    return plan


@router.patch("/plans/{plan_id}", response_model=Plan)
async def update_plan(
    plan_id: str,
    payload: PlanUpdateRequest,
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Plan:
    """Update an existing plan (admin only)."""
    updates = payload.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        plan = service.update_plan(plan_id, updates)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info("Plan %s updated by admin %s", plan_id, uid)
    return plan


@router.delete("/plans/{plan_id}", response_model=Plan)
async def deactivate_plan(
    plan_id: str,
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Plan:
    """Take a plan off sale; plans are never deleted (admin only)."""
    plan = service.deactivate_plan(plan_id)
    logger.info("Plan %s deactivated by admin %s", plan_id, uid)
    return plan


@router.post("/plans/seed", response_model=SeedPlansResponse)
async def seed_plans(
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SeedPlansResponse:
    """Create any missing default plans (admin only)."""
    created = service.ensure_default_plans_exist()
    logger.info("Default plans seeded by admin %s (%d created)", uid, len(created))
    return SeedPlansResponse(created=created, valid=service.plans.verify_plans())


# -----------------------------------------------------------------------------
# Subscription Administration
# -----------------------------------------------------------------------------

@router.get("/analytics", response_model=SubscriptionAnalytics)
async def get_analytics(
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionAnalytics:
    return service.get_analytics()


@router.put("/subscriptions/{user_id}/plan", response_model=Subscription)
def change_user_plan(
    user_id: str,
    payload: AdminPlanChangeRequest,
    uid: str = Depends(require_admin),
    service: SubscriptionService = Depends(get_subscription_service),
) -> Subscription:
    """Move a user's current subscription to another plan (admin only)."""
    subscription = service.change_plan(user_id, payload.plan_id)
    logger.info(
        "Admin %s moved user %s to plan %s (reason: %s)",
        uid,
        user_id,
        payload.plan_id,
        payload.reason or "none given",
    )
    return subscription
