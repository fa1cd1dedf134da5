"""
Pydantic models for request/response validation.

Domain models from ``spendflow.core.subscriptions.models`` are returned
directly as response bodies; this module holds the request payloads and the
response envelopes around them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from spendflow.config import SUBSCRIPTION_PERIOD_DAYS
from spendflow.core.subscriptions.models import (
    BillingInterval,
    Entitlements,
    Plan,
    PlanFeature,
    PlanLimits,
    PlanTier,
    Subscription,
    SubscriptionChange,
    SubscriptionNotification,
    SubscriptionPayment,
)


# -----------------------------------------------------------------------------
# Base Models
# -----------------------------------------------------------------------------

class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# -----------------------------------------------------------------------------
# Subscription Requests
# -----------------------------------------------------------------------------

class CreateSubscriptionRequest(BaseSchema):
    plan_id: str = Field(..., min_length=1, max_length=128)
    trial_days: Optional[int] = Field(default=None, ge=0, le=SUBSCRIPTION_PERIOD_DAYS)


class ChangePlanRequest(BaseSchema):
    plan_id: str = Field(..., min_length=1, max_length=128)
    subscription_id: Optional[str] = Field(default=None, max_length=128)


class SubscriptionActionRequest(BaseSchema):
    """Cancel/reactivate payload; the current subscription is used when no id is given."""
    subscription_id: Optional[str] = Field(default=None, max_length=128)


# -----------------------------------------------------------------------------
# Subscription Responses
# -----------------------------------------------------------------------------

class PlansListResponse(BaseSchema):
    plans: List[Plan]


class CurrentSubscriptionResponse(BaseSchema):
    subscription: Optional[Subscription] = None
    plan: Optional[Plan] = None
    entitlements: Entitlements
    can_upgrade: bool
    can_downgrade: bool


class LimitCheckResponse(BaseSchema):
    action: str
    allowed: bool


class ChangesListResponse(BaseSchema):
    changes: List[SubscriptionChange]


class PaymentsListResponse(BaseSchema):
    payments: List[SubscriptionPayment]


class NotificationsListResponse(BaseSchema):
    notifications: List[SubscriptionNotification]
    unread_count: int


# -----------------------------------------------------------------------------
# Admin
# -----------------------------------------------------------------------------

class PlanCreateRequest(BaseSchema):
    """Request to create a new plan."""
    id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=100)
    tier: PlanTier
    price: int = Field(..., ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    interval: BillingInterval = BillingInterval.MONTH
    description: str = Field(default="", max_length=500)
    is_popular: bool = False
    is_active: bool = True
    stripe_price_id: Optional[str] = None
    limits: PlanLimits
    features: List[PlanFeature] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def lowercase_currency(cls, v: str) -> str:
        return v.lower()

    def to_plan(self) -> Plan:
        return Plan.model_validate(self.model_dump())


class PlanUpdateRequest(BaseSchema):
    """Request to update an existing plan; omitted fields are left alone."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    tier: Optional[PlanTier] = None
    price: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    interval: Optional[BillingInterval] = None
    description: Optional[str] = Field(default=None, max_length=500)
    is_popular: Optional[bool] = None
    is_active: Optional[bool] = None
    stripe_price_id: Optional[str] = None
    limits: Optional[PlanLimits] = None
    features: Optional[List[PlanFeature]] = None

    def to_updates(self) -> Dict[str, Any]:
        """camelCase field updates for the plan document."""
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return data


class AdminPlanChangeRequest(BaseSchema):
    plan_id: str = Field(..., min_length=1, max_length=128)
    reason: Optional[str] = Field(default=None, max_length=500)


class SeedPlansResponse(BaseSchema):
    created: List[Plan]
    valid: bool


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------

class HealthResponse(BaseSchema):
    status: str
    version: str
    timestamp: datetime
