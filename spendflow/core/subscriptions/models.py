"""
Subscription Models

Type-safe models for plans, subscriptions and the append-only ledgers.

Documents are stored with camelCase field names; the models expose
snake_case attributes and map between the two through pydantic aliases.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from spendflow.core.subscriptions.constants import DEFAULT_PLAN_LIMITS, TIER_ORDER, UNLIMITED


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_timestamp(value: Any) -> Any:
    """Normalize Firestore timestamps (and naive datetimes) to aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    # Firestore Timestamp has timestamp() method
    if hasattr(value, "timestamp"):
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    # Protobuf Timestamp has seconds and nanos
    if hasattr(value, "seconds"):
        return datetime.fromtimestamp(value.seconds + getattr(value, "nanos", 0) / 1e9, tz=timezone.utc)
    return value


Timestamp = Annotated[datetime, BeforeValidator(coerce_timestamp)]


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def order(self) -> int:
        return TIER_ORDER[self.value]


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})
TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED})


class ChangeType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCEL = "cancel"
    REACTIVATE = "reactivate"


class ChangeStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"
    CANCELED = "canceled"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"


class PaymentMethodType(str, Enum):
    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class NotificationType(str, Enum):
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    TRIAL_ENDING = "trial_ending"
    RENEWAL_REMINDER = "renewal_reminder"


class FirestoreModel(BaseModel):
    """Base model for documents persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_firestore_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dictionary (document id excluded)."""
        data = self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
        return _encode(data)

    @classmethod
    def from_firestore_dict(cls, doc_id: Optional[str], data: Dict[str, Any]):
        """Create model from a Firestore document payload."""
        payload = dict(data)
        if doc_id is not None:
            payload["id"] = doc_id
        return cls.model_validate(payload)

    @classmethod
    def from_snapshot(cls, snapshot):
        return cls.from_firestore_dict(snapshot.id, snapshot.to_dict() or {})


# -----------------------------------------------------------------------------
# Plans
# -----------------------------------------------------------------------------

class PlanLimits(FirestoreModel):
    """Capability set granted by a plan. Numeric limits use -1 for unlimited."""

    max_cards: int = Field(..., ge=UNLIMITED)
    max_transactions: int = Field(..., ge=UNLIMITED)
    analytics: bool = False
    export: bool = False
    priority_support: bool = False
    api_access: bool = False
    team_management: bool = False
    custom_integrations: bool = False

    @classmethod
    def defaults(cls) -> "PlanLimits":
        return cls.model_validate(DEFAULT_PLAN_LIMITS)

    @staticmethod
    def is_unlimited(value: int) -> bool:
        return value == UNLIMITED

    def allows(self, limit_name: str, current_count: int) -> bool:
        """Return True if one more item fits under the named numeric limit."""
        limit = getattr(self, limit_name)
        if self.is_unlimited(limit):
            return True
        return current_count < limit

    def has_feature(self, feature: str) -> bool:
        """Boolean capability lookup; unknown names are never granted."""
        field_name = _feature_field(feature)
        if field_name is None:
            return False
        return getattr(self, field_name) is True


_FEATURE_FIELDS = (
    "analytics",
    "export",
    "priority_support",
    "api_access",
    "team_management",
    "custom_integrations",
)


def _feature_field(feature: str) -> Optional[str]:
    for name in _FEATURE_FIELDS:
        if feature in (name, to_camel(name)):
            return name
    return None


class PlanFeature(FirestoreModel):
    """Display entry for the plan comparison table."""

    id: str
    name: str
    description: Optional[str] = None
    included: bool = True
    limit: Optional[int] = None


class Plan(FirestoreModel):
    """A purchasable subscription tier."""

    id: Optional[str] = None
    name: str = ""
    display_name: str = ""
    tier: PlanTier = PlanTier.FREE
    price: int = Field(default=0, ge=0, description="Price in minor currency units")
    currency: str = "usd"
    interval: BillingInterval = BillingInterval.MONTH
    description: str = ""
    is_popular: bool = False
    is_active: bool = True
    stripe_price_id: Optional[str] = None
    limits: PlanLimits = Field(default_factory=PlanLimits.defaults)
    features: List[PlanFeature] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    @property
    def monthly_price(self) -> int:
        """Price normalized to one month, in minor units."""
        if self.interval == BillingInterval.YEAR:
            return round(self.price / 12)
        return self.price

    @property
    def is_paid(self) -> bool:
        return self.tier in (PlanTier.PRO, PlanTier.ENTERPRISE)


# -----------------------------------------------------------------------------
# Subscriptions
# -----------------------------------------------------------------------------

class Subscription(FirestoreModel):
    """One user's relationship to a plan over time."""

    id: Optional[str] = None
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_start: Timestamp
    current_period_end: Timestamp
    cancel_at_period_end: bool = False
    canceled_at: Optional[Timestamp] = None
    trial_start: Optional[Timestamp] = None
    trial_end: Optional[Timestamp] = None
    stripe_subscription_id: Optional[str] = None
    superseded_by: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_periods(self) -> "Subscription":
        if self.current_period_end <= self.current_period_start:
            raise ValueError("currentPeriodEnd must be after currentPeriodStart")
        if self.trial_start and self.trial_end and self.trial_end <= self.trial_start:
            raise ValueError("trialEnd must be after trialStart")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class SubscriptionChange(FirestoreModel):
    """Immutable audit record of one lifecycle transition."""

    id: Optional[str] = None
    user_id: str
    from_plan_id: Optional[str] = None
    to_plan_id: str
    change_type: ChangeType
    effective_date: Timestamp = Field(default_factory=utcnow)
    proration_amount: Optional[int] = None
    status: ChangeStatus = ChangeStatus.COMPLETED
    stripe_invoice_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class PaymentMethodInfo(FirestoreModel):
    id: str
    type: PaymentMethodType = PaymentMethodType.CARD
    last4: Optional[str] = Field(None, min_length=4, max_length=4)
    brand: Optional[str] = None
    expiry_month: Optional[int] = Field(None, ge=1, le=12)
    expiry_year: Optional[int] = None
    country: Optional[str] = None
    is_default: bool = False


class SubscriptionPayment(FirestoreModel):
    """Immutable record of one billing event."""

    id: Optional[str] = None
    user_id: str
    subscription_id: str
    amount: int = Field(..., ge=0)
    currency: str = "usd"
    status: PaymentStatus
    payment_method: Optional[PaymentMethodInfo] = None
    stripe_payment_intent_id: Optional[str] = None
    invoice_url: Optional[str] = None
    receipt_url: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class SubscriptionNotification(FirestoreModel):
    id: Optional[str] = None
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    email_sent: bool = False
    created_at: Timestamp = Field(default_factory=utcnow)


class SubscriptionProjection(FirestoreModel):
    """Denormalized copy of subscription state cached on the user profile."""

    tier: PlanTier
    status: SubscriptionStatus
    current_period_end: Timestamp
    cancel_at_period_end: bool
    start_date: Timestamp
    trial_end: Optional[Timestamp] = None
    plan_id: str
    stripe_subscription_id: Optional[str] = None
    features: PlanLimits

    @classmethod
    def build(cls, subscription: Subscription, plan: Plan) -> "SubscriptionProjection":
        return cls(
            tier=plan.tier,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            start_date=subscription.created_at,
            trial_end=subscription.trial_end,
            plan_id=subscription.plan_id,
            stripe_subscription_id=subscription.stripe_subscription_id,
            features=plan.limits,
        )


# -----------------------------------------------------------------------------
# Read models
# -----------------------------------------------------------------------------

class Entitlements(FirestoreModel):
    """Capability set resolved for a user at call time."""

    tier: PlanTier
    plan_id: Optional[str] = None
    limits: PlanLimits
    is_default: bool = False


class SubscriptionAnalytics(FirestoreModel):
    total_active_subscriptions: int = 0
    total_mrr: int = 0
    total_arr: int = 0
    subscriptions_by_plan: Dict[str, int] = Field(
        default_factory=lambda: {tier.value: 0 for tier in PlanTier}
    )
    churn_rate: float = 0.0
    conversion_rate: float = 0.0
    average_revenue_per_user: float = 0.0
    new_subscriptions_this_month: int = 0
    canceled_subscriptions_this_month: int = 0
