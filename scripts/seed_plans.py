#!/usr/bin/env python3
"""
Seed the default subscription plans in Firestore.

Creates any of the Essential / Professional / Enterprise plans that are
missing (matched by name and tier), then checks that every tier has an
active plan.

Usage:
    python scripts/seed_plans.py
"""

import sys
from pathlib import Path

# Add parent directory to path to import spendflow modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from spendflow.config import logger
from spendflow.core.subscriptions.constants import UNLIMITED
from spendflow.core.subscriptions.plans import PlanRepository, PlanService


def _fmt_limit(value: int) -> str:
    return "unlimited" if value == UNLIMITED else str(value)


def main():
    """Run plan seeding."""
    logger.info("Seeding subscription plans...")

    plan_service = PlanService(PlanRepository())

    try:
        created = plan_service.ensure_default_plans_exist()
        logger.info("Created %d default plan(s)", len(created))

        plans = plan_service.get_all_plans(include_inactive=True)
        logger.info("Found %d plans in Firestore:", len(plans))
        for plan in plans:
            logger.info(
                "  - %s (%s/%s): %s cards, %s transactions, %d %s/%s, active=%s",
                plan.id,
                plan.name,
                plan.tier.value,
                _fmt_limit(plan.limits.max_cards),
                _fmt_limit(plan.limits.max_transactions),
                plan.price,
                plan.currency,
                plan.interval.value,
                plan.is_active,
            )

        if not plan_service.verify_plans():
            logger.error("Plan catalog is incomplete")
            return 1

        logger.info("Plan seeding completed successfully")
        return 0

    except Exception as e:
        logger.error("Plan seeding failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
