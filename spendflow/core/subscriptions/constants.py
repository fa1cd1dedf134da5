"""
Subscription Constants

Collection names, tier ordering and the free-tier fallback limits.
"""

from typing import Dict

# Firestore collections
PLANS_COLLECTION = "subscriptionPlans"
SUBSCRIPTIONS_COLLECTION = "userSubscriptions"
PAYMENTS_COLLECTION = "subscriptionPayments"
CHANGES_COLLECTION = "subscriptionChanges"
NOTIFICATIONS_COLLECTION = "subscriptionNotifications"
USERS_COLLECTION = "users"
CARDS_COLLECTION = "cards"
TRANSACTIONS_COLLECTION = "transactions"

# Sentinel for "no ceiling" on numeric limits
UNLIMITED = -1

TIER_ORDER: Dict[str, int] = {
    "free": 0,
    "pro": 1,
    "enterprise": 2,
}

DEFAULT_PLAN_LIMITS = {
    "maxCards": 2,
    "maxTransactions": 10,
    "analytics": False,
    "export": False,
    "prioritySupport": False,
    "apiAccess": False,
    "teamManagement": False,
    "customIntegrations": False,
}

# Gated actions and the limit/collection pair each one is counted against
ACTION_ADD_CARD = "addCard"
ACTION_ADD_TRANSACTION = "addTransaction"

LIMITED_ACTIONS = {
    ACTION_ADD_CARD: ("max_cards", CARDS_COLLECTION),
    ACTION_ADD_TRANSACTION: ("max_transactions", TRANSACTIONS_COLLECTION),
}
