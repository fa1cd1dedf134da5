"""
Tests for the plan catalog.

Run with: pytest tests/test_plans.py -v
"""

import pytest

from spendflow.core.subscriptions.constants import PLANS_COLLECTION
from spendflow.core.subscriptions.exceptions import PlanNotFoundError
from spendflow.core.subscriptions.models import Plan, PlanLimits, PlanTier
from spendflow.core.subscriptions.plans import PlanRepository, default_plans
from tests.conftest import make_plan


class TestPlanRepository:
    def test_create_with_explicit_id(self, db, plan_repo):
        plan = plan_repo.create(make_plan(PlanTier.PRO, 499, id="pro"))
        assert plan.id == "pro"
        assert db.docs(PLANS_COLLECTION)["pro"]["tier"] == "pro"

    def test_create_generates_id(self, plan_repo):
        plan = plan_repo.create(make_plan(PlanTier.FREE, 0))
        assert plan.id
        assert plan_repo.get_by_id(plan.id).name == plan.name

    def test_get_by_id_missing(self, plan_repo):
        assert plan_repo.get_by_id("nope") is None
        assert plan_repo.get_by_id("") is None

    def test_list_active_served_from_cache(self, db, plan_repo):
        plan_repo.create(make_plan(PlanTier.FREE, 0, id="free"))
        assert len(plan_repo.list_active()) == 1

        # Written behind the repository's back
        db.collection(PLANS_COLLECTION).document("pro").set(
            make_plan(PlanTier.PRO, 499).to_firestore_dict()
        )
        assert len(plan_repo.list_active()) == 1
        assert len(plan_repo.list_active(use_cache=False)) == 2

    def test_cache_expires(self, db):
        repo = PlanRepository(db, cache_ttl_seconds=0)
        repo.create(make_plan(PlanTier.FREE, 0, id="free"))
        repo.list_active()
        db.collection(PLANS_COLLECTION).document("pro").set(
            make_plan(PlanTier.PRO, 499).to_firestore_dict()
        )
        assert len(repo.list_active()) == 2

    def test_writes_invalidate_cache(self, plan_repo):
        plan_repo.create(make_plan(PlanTier.FREE, 0, id="free"))
        plan_repo.list_active()
        plan_repo.create(make_plan(PlanTier.PRO, 499, id="pro"))
        assert [p.id for p in plan_repo.list_active()] == ["free", "pro"]

    def test_update_missing_returns_none(self, plan_repo):
        assert plan_repo.update("missing", {"price": 1}) is None

    def test_malformed_plan_skipped(self, db, plan_repo):
        plan_repo.create(make_plan(PlanTier.FREE, 0, id="free"))
        db.collection(PLANS_COLLECTION).document("bad").set({"isActive": True, "price": -5})
        assert [p.id for p in plan_repo.list_active()] == ["free"]


class TestPlanService:
    def test_get_plans_sorted_and_active_only(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.ENTERPRISE, 999, id="enterprise"))
        plan_service.create_plan(make_plan(PlanTier.FREE, 0, id="free"))
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro"))
        plan_service.create_plan(make_plan(PlanTier.PRO, 299, id="legacy", is_active=False))

        plans = plan_service.get_plans()

        assert [p.id for p in plans] == ["free", "pro", "enterprise"]
        assert [p.price for p in plans] == sorted(p.price for p in plans)

    def test_deactivated_plan_drops_out(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.FREE, 0, id="free"))
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro"))

        deactivated = plan_service.deactivate_plan("pro")

        assert deactivated.is_active is False
        assert [p.id for p in plan_service.get_plans()] == ["free"]
        assert {p.id for p in plan_service.get_all_plans(include_inactive=True)} == {"free", "pro"}

    def test_require_plan(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro", is_active=False))

        with pytest.raises(PlanNotFoundError):
            plan_service.require_plan("pro")
        assert plan_service.require_plan("pro", active_only=False).id == "pro"
        with pytest.raises(PlanNotFoundError):
            plan_service.require_plan("missing", active_only=False)

    def test_find_plan_for_tier_prefers_cheapest(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.PRO, 799, id="pro_plus"))
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro"))

        assert plan_service.find_plan_for_tier(PlanTier.PRO).id == "pro"
        assert plan_service.find_plan_for_tier(PlanTier.ENTERPRISE) is None

    def test_create_plan_requires_names(self, plan_service):
        with pytest.raises(ValueError):
            plan_service.create_plan(Plan(name="", display_name="Pro", tier=PlanTier.PRO, price=499))

    def test_update_plan(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro"))

        updated = plan_service.update_plan(
            "pro",
            {"price": 599, "limits": PlanLimits(max_cards=10, max_transactions=-1).to_firestore_dict()},
        )

        assert updated.price == 599
        assert updated.limits.max_cards == 10
        assert updated.updated_at >= updated.created_at

    def test_update_plan_validates(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.PRO, 499, id="pro"))

        with pytest.raises(ValueError):
            plan_service.update_plan("pro", {"price": -1})
        with pytest.raises(ValueError):
            plan_service.update_plan("pro", {"id": "other"})
        assert plan_service.get_plan("pro").price == 499

    def test_update_missing_plan(self, plan_service):
        with pytest.raises(PlanNotFoundError):
            plan_service.update_plan("missing", {"price": 1})


class TestDefaultPlans:
    def test_catalog_shape(self):
        by_tier = {p.tier: p for p in default_plans()}
        assert by_tier[PlanTier.FREE].limits == PlanLimits.defaults()
        assert by_tier[PlanTier.PRO].price == 499
        assert by_tier[PlanTier.PRO].limits.max_cards == 5
        assert PlanLimits.is_unlimited(by_tier[PlanTier.PRO].limits.max_transactions)
        assert PlanLimits.is_unlimited(by_tier[PlanTier.ENTERPRISE].limits.max_cards)

    def test_seeding_is_idempotent(self, db, plan_service):
        first = plan_service.ensure_default_plans_exist()
        second = plan_service.ensure_default_plans_exist()

        assert len(first) == 3
        assert second == []
        assert len(db.docs(PLANS_COLLECTION)) == 3
        assert plan_service.verify_plans() is True

    def test_verify_detects_missing_tier(self, plan_service):
        plan_service.create_plan(make_plan(PlanTier.FREE, 0, id="free"))
        assert plan_service.verify_plans() is False
