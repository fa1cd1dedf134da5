"""
Plan Catalog

Data access and business rules for subscription plans stored in Firestore.
Active plans are cached in memory and the cache is dropped on every write.
"""

import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from spendflow.config import PLAN_CACHE_TTL_SECONDS, logger
from spendflow.core.firebase_client import get_firestore_client
from spendflow.core.subscriptions.constants import PLANS_COLLECTION
from spendflow.core.subscriptions.exceptions import PlanNotFoundError
from spendflow.core.subscriptions.models import (
    BillingInterval,
    Plan,
    PlanFeature,
    PlanLimits,
    PlanTier,
)


class PlanRepository:
    """
    Repository for plan documents with an in-memory cache of active plans.

    The cache is per instance; for production with multiple workers each
    process keeps its own copy and sees admin edits after the TTL expires.
    """

    def __init__(self, db: Optional[firestore.Client] = None, cache_ttl_seconds: int = PLAN_CACHE_TTL_SECONDS):
        self.db = db or get_firestore_client()
        self._cache: Optional[List[Plan]] = None
        self._cache_lock = Lock()
        self._cache_ttl_seconds = cache_ttl_seconds
        self._last_cache_update: Optional[float] = None

    @property
    def collection(self) -> firestore.CollectionReference:
        return self.db.collection(PLANS_COLLECTION)

    def _is_cache_valid(self) -> bool:
        if self._cache is None or self._last_cache_update is None:
            return False
        age = time.time() - self._last_cache_update
        return age < self._cache_ttl_seconds

    def invalidate_cache(self) -> None:
        with self._cache_lock:
            self._cache = None
            self._last_cache_update = None
            logger.debug("Plan cache invalidated")

    def list_active(self, use_cache: bool = True) -> List[Plan]:
        """
        Get active plans ordered by ascending price.

        Args:
            use_cache: Whether to serve from the in-memory cache

        Returns:
            List of active plans
        """
        with self._cache_lock:
            if use_cache and self._is_cache_valid():
                return list(self._cache)

            docs = self.collection.where(filter=FieldFilter("isActive", "==", True)).stream()
            plans: List[Plan] = []
            for doc in docs:
                try:
                    plans.append(Plan.from_snapshot(doc))
                except ValueError as e:
                    logger.error("Failed to parse plan %s: %s", doc.id, e)

            # Sorted client-side so the query needs no composite index
            plans.sort(key=lambda p: (p.price, p.tier.order))
            self._cache = plans
            self._last_cache_update = time.time()
            logger.debug("Plan cache refreshed: %d plans loaded", len(plans))
            return list(plans)

    def list_all(self) -> List[Plan]:
        """Get every plan including deactivated ones, ordered by price."""
        plans = [Plan.from_snapshot(doc) for doc in self.collection.stream()]
        return sorted(plans, key=lambda p: (p.price, p.tier.order))

    def get_by_id(self, plan_id: str) -> Optional[Plan]:
        """
        Get a plan by ID, active or not.

        Always reads through to Firestore so entitlement checks see admin
        edits immediately.
        """
        if not plan_id:
            return None
        snapshot = self.collection.document(plan_id).get()
        if not snapshot.exists:
            return None
        return Plan.from_snapshot(snapshot)

    def find_by_name_and_tier(self, name: str, tier: PlanTier) -> Optional[Plan]:
        query = (
            self.collection
            .where(filter=FieldFilter("name", "==", name))
            .where(filter=FieldFilter("tier", "==", tier.value))
            .limit(1)
        )
        for doc in query.stream():
            return Plan.from_snapshot(doc)
        return None

    def create(self, plan: Plan) -> Plan:
        """
        Create a new plan document.

        Uses ``plan.id`` as the document id when given, otherwise Firestore
        generates one.
        """
        now = datetime.now(timezone.utc)
        plan.created_at = now
        plan.updated_at = now

        doc_ref = self.collection.document(plan.id) if plan.id else self.collection.document()
        doc_ref.set(plan.to_firestore_dict())
        plan.id = doc_ref.id

        self.invalidate_cache()
        logger.info("Created plan: %s (%s)", plan.id, plan.tier.value)
        return plan

    def update(self, plan_id: str, updates: Dict[str, Any]) -> Optional[Plan]:
        """
        Merge camelCase field updates into an existing plan.

        Returns:
            Updated plan if found, None otherwise
        """
        doc_ref = self.collection.document(plan_id)
        if not doc_ref.get().exists:
            return None

        update_data = dict(updates)
        update_data["updatedAt"] = datetime.now(timezone.utc)
        doc_ref.update(update_data)

        self.invalidate_cache()
        logger.info("Updated plan: %s (fields: %s)", plan_id, ", ".join(sorted(updates)))
        return self.get_by_id(plan_id)


class PlanService:
    """
    Business rules for the plan catalog.

    Plans are never hard-deleted; deactivation flips ``isActive``.
    """

    def __init__(self, repository: PlanRepository):
        self._repo = repository

    def get_plans(self) -> List[Plan]:
        """Active plans, ascending by price."""
        return self._repo.list_active()

    def get_all_plans(self, include_inactive: bool = False) -> List[Plan]:
        if include_inactive:
            return self._repo.list_all()
        return self._repo.list_active()

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._repo.get_by_id(plan_id)

    def require_plan(self, plan_id: str, active_only: bool = True) -> Plan:
        """
        Resolve a plan or raise.

        Raises:
            PlanNotFoundError: If the plan is missing (or inactive when active_only)
        """
        plan = self._repo.get_by_id(plan_id)
        if plan is None or (active_only and not plan.is_active):
            raise PlanNotFoundError(plan_id)
        return plan

    def find_plan_for_tier(self, tier: PlanTier) -> Optional[Plan]:
        """
        Resolve "the" active plan for a tier.

        Duplicates are tolerated; the cheapest wins and a warning is logged.
        """
        candidates = [p for p in self._repo.list_active() if p.tier == tier]
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.warning(
                "Multiple active plans found for tier %s (%d plans), using %s",
                tier.value,
                len(candidates),
                candidates[0].id,
            )
        return candidates[0]

    def create_plan(self, plan: Plan) -> Plan:
        if not plan.name or not plan.display_name:
            raise ValueError("Plan name and display name are required")
        return self._repo.create(plan)

    def update_plan(self, plan_id: str, updates: Dict[str, Any]) -> Plan:
        """
        Update an existing plan.

        Args:
            plan_id: Plan identifier
            updates: camelCase fields to merge

        Raises:
            ValueError: If updates are invalid
            PlanNotFoundError: If the plan does not exist
        """
        if "id" in updates:
            raise ValueError("Cannot update plan ID")

        existing = self._repo.get_by_id(plan_id)
        if existing is None:
            raise PlanNotFoundError(plan_id)

        # Validate by applying the updates to the current document
        merged = existing.to_firestore_dict()
        merged.update(updates)
        Plan.from_firestore_dict(plan_id, merged)

        updated = self._repo.update(plan_id, updates)
        if updated is None:
            raise PlanNotFoundError(plan_id)
        return updated

    def deactivate_plan(self, plan_id: str) -> Plan:
        """Take a plan off sale without deleting it."""
        return self.update_plan(plan_id, {"isActive": False})

    def ensure_default_plans_exist(self) -> List[Plan]:
        """
        Seed the default plans, skipping any already present by name and tier.

        Returns:
            Plans created by this call
        """
        created: List[Plan] = []
        for plan in default_plans():
            if self._repo.find_by_name_and_tier(plan.name, plan.tier):
                logger.info("Plan '%s' already exists, skipping", plan.display_name)
                continue
            created.append(self._repo.create(plan))
            logger.info("Created default plan: %s (%s)", plan.display_name, plan.tier.value)
        return created

    def verify_plans(self) -> bool:
        """Check that every tier has an active plan."""
        all_valid = True
        active = self._repo.list_active(use_cache=False)
        for tier in PlanTier:
            tier_plans = [p for p in active if p.tier == tier]
            if not tier_plans:
                logger.error("Missing active plan for tier: %s", tier.value)
                all_valid = False
            elif len(tier_plans) > 1:
                logger.warning("Multiple active plans found for tier: %s (%d plans)", tier.value, len(tier_plans))
        return all_valid


def default_plans() -> List[Plan]:
    """The catalog shipped with a fresh installation."""
    return [
        Plan(
            name="free",
            display_name="Essential",
            tier=PlanTier.FREE,
            price=0,
            interval=BillingInterval.MONTH,
            description="Perfect for getting started with personal finance tracking",
            limits=PlanLimits.defaults(),
            features=[
                PlanFeature(id="cards", name="Up to 2 cards", limit=2),
                PlanFeature(id="transactions", name="Up to 10 transactions", limit=10),
                PlanFeature(id="analytics", name="Basic analytics", included=False),
                PlanFeature(id="export", name="Data export", included=False),
                PlanFeature(id="support", name="Community support"),
            ],
        ),
        Plan(
            name="pro_monthly",
            display_name="Professional",
            tier=PlanTier.PRO,
            price=499,
            interval=BillingInterval.MONTH,
            description="Advanced features for serious money managers",
            is_popular=True,
            limits=PlanLimits(
                max_cards=5,
                max_transactions=-1,
                analytics=True,
                export=True,
            ),
            features=[
                PlanFeature(id="cards", name="Up to 5 cards", limit=5),
                PlanFeature(id="transactions", name="Unlimited transactions"),
                PlanFeature(id="analytics", name="Advanced analytics"),
                PlanFeature(id="export", name="Data export (CSV/PDF)"),
                PlanFeature(id="support", name="Email support"),
                PlanFeature(id="sync", name="Multi-device sync"),
            ],
        ),
        Plan(
            name="enterprise_monthly",
            display_name="Enterprise",
            tier=PlanTier.ENTERPRISE,
            price=999,
            interval=BillingInterval.MONTH,
            description="Complete solution for businesses and power users",
            limits=PlanLimits(
                max_cards=-1,
                max_transactions=-1,
                analytics=True,
                export=True,
                priority_support=True,
                api_access=True,
                team_management=True,
                custom_integrations=True,
            ),
            features=[
                PlanFeature(id="cards", name="Unlimited cards"),
                PlanFeature(id="transactions", name="Unlimited transactions"),
                PlanFeature(id="analytics", name="Advanced analytics & insights"),
                PlanFeature(id="export", name="Custom reports & export"),
                PlanFeature(id="support", name="Priority phone & email support"),
                PlanFeature(id="api", name="API access"),
                PlanFeature(id="team", name="Team collaboration"),
                PlanFeature(id="integrations", name="Custom integrations"),
                PlanFeature(id="manager", name="Dedicated account manager"),
            ],
        ),
    ]
