"""
Subscription record store.

Firestore access for ``userSubscriptions``, the denormalized projection on
``users/{uid}`` and usage counts over the user's cards and transactions.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from spendflow.core.firebase_client import get_firestore_client
from spendflow.core.subscriptions.constants import SUBSCRIPTIONS_COLLECTION, USERS_COLLECTION
from spendflow.core.subscriptions.models import Subscription, SubscriptionProjection

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription documents.

    The store may hold several documents per user; the current one is always
    the most recently created, resolved by ``get_current``.
    """

    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    @property
    def collection(self) -> firestore.CollectionReference:
        return self.db.collection(SUBSCRIPTIONS_COLLECTION)

    def _user_query(self, user_id: str) -> firestore.Query:
        return (
            self.collection
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )

    def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        if not subscription_id:
            return None
        snapshot = self.collection.document(subscription_id).get()
        if not snapshot.exists:
            return None
        return Subscription.from_snapshot(snapshot)

    def get_current(self, user_id: str) -> Optional[Subscription]:
        """Most recently created subscription for the user, if any."""
        for doc in self._user_query(user_id).limit(1).stream():
            return Subscription.from_snapshot(doc)
        return None

    def list_for_user(self, user_id: str) -> List[Subscription]:
        return [Subscription.from_snapshot(doc) for doc in self._user_query(user_id).stream()]

    def list_all(self) -> List[Subscription]:
        subscriptions: List[Subscription] = []
        for doc in self.collection.stream():
            try:
                subscriptions.append(Subscription.from_snapshot(doc))
            except ValueError as e:
                logger.error("Skipping malformed subscription %s: %s", doc.id, e)
        return subscriptions

    def create(self, subscription: Subscription) -> Subscription:
        """Insert with a generated id and return the stored model."""
        doc_ref = self.collection.document()
        doc_ref.set(subscription.to_firestore_dict())
        subscription.id = doc_ref.id
        logger.debug("Created subscription %s for user %s", doc_ref.id, subscription.user_id)
        return subscription

    def update(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        """
        Merge camelCase field updates and return the re-read document.

        Raises:
            google.api_core.exceptions.NotFound: If the document is missing
        """
        update_data = dict(updates)
        update_data["updatedAt"] = datetime.now(timezone.utc)
        doc_ref = self.collection.document(subscription_id)
        doc_ref.update(update_data)
        return Subscription.from_snapshot(doc_ref.get())

    def watch_current(self, user_id: str, callback: Callable[[Optional[Subscription]], None]):
        """
        Push the user's current subscription to ``callback`` on every change.

        Returns:
            Firestore watch handle; call ``unsubscribe()`` to stop
        """
        def on_snapshot(docs, changes, read_time):
            current = Subscription.from_snapshot(docs[0]) if docs else None
            callback(current)

        return self._user_query(user_id).limit(1).on_snapshot(on_snapshot)


class UserProfileRepository:
    """Writer for the subscription projection cached on the user profile."""

    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    def _user_ref(self, user_id: str) -> firestore.DocumentReference:
        return self.db.collection(USERS_COLLECTION).document(user_id)

    def write_projection(self, user_id: str, projection: SubscriptionProjection) -> None:
        payload = projection.to_firestore_dict()
        self._user_ref(user_id).set(
            {
                "subscriptionTier": payload["tier"],
                "subscription": payload,
                "features": payload["features"],
                "updatedAt": datetime.now(timezone.utc),
            },
            merge=True,
        )

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        snapshot = self._user_ref(user_id).get()
        if not snapshot.exists:
            return {}
        return snapshot.to_dict() or {}

    def is_admin(self, user_id: str) -> bool:
        """Admin flag is stored on the user document as ``isAdmin = true``."""
        return self.get_profile(user_id).get("isAdmin") is True


class UsageRepository:
    """Live counts of the user-owned documents that plan limits cap."""

    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    def count_owned(self, collection_name: str, user_id: str) -> int:
        query = self.db.collection(collection_name).where(filter=FieldFilter("userId", "==", user_id))
        return sum(1 for _ in query.stream())
