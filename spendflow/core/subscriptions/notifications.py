"""
Per-user subscription notifications.

Notifications are created by lifecycle side effects. The only mutation is
flipping the ``read`` flag.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from spendflow.core.firebase_client import get_firestore_client
from spendflow.core.subscriptions.constants import NOTIFICATIONS_COLLECTION
from spendflow.core.subscriptions.exceptions import NotificationNotFoundError, SubscriptionOwnershipError
from spendflow.core.subscriptions.models import NotificationType, SubscriptionNotification

logger = logging.getLogger(__name__)


class NotificationEmitter:
    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    @property
    def collection(self) -> firestore.CollectionReference:
        return self.db.collection(NOTIFICATIONS_COLLECTION)

    def _user_query(self, user_id: str) -> firestore.Query:
        return (
            self.collection
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )

    def emit(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> SubscriptionNotification:
        notification = SubscriptionNotification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
        )
        doc_ref = self.collection.document()
        doc_ref.set(notification.to_firestore_dict())
        notification.id = doc_ref.id
        logger.debug("Notification %s (%s) emitted for user %s", notification.id, notification_type.value, user_id)
        return notification

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[SubscriptionNotification]:
        notifications = [SubscriptionNotification.from_snapshot(doc) for doc in self._user_query(user_id).stream()]
        if unread_only:
            notifications = [n for n in notifications if not n.read]
        return notifications

    def mark_read(self, user_id: str, notification_id: str) -> SubscriptionNotification:
        """
        Flip the read flag on one of the user's notifications.

        Raises:
            NotificationNotFoundError: If the notification does not exist
            SubscriptionOwnershipError: If it belongs to another user
        """
        doc_ref = self.collection.document(notification_id)
        snapshot = doc_ref.get()
        if not snapshot.exists:
            raise NotificationNotFoundError(notification_id)

        notification = SubscriptionNotification.from_snapshot(snapshot)
        if notification.user_id != user_id:
            raise SubscriptionOwnershipError(user_id, notification_id)

        if not notification.read:
            doc_ref.update({"read": True})
            notification.read = True
        return notification

    def watch(self, user_id: str, callback: Callable[[List[SubscriptionNotification]], None]):
        """
        Push the user's notification list to ``callback`` on every change.

        Returns:
            Firestore watch handle; call ``unsubscribe()`` to stop
        """
        def on_snapshot(docs, changes, read_time):
            callback([SubscriptionNotification.from_snapshot(doc) for doc in docs])

        return self._user_query(user_id).on_snapshot(on_snapshot)
