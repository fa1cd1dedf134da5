"""
Append-only ledgers for subscription changes and payments.

Records are inserted once and never updated or deleted from here.
"""

import logging
from typing import List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from spendflow.core.firebase_client import get_firestore_client
from spendflow.core.subscriptions.constants import CHANGES_COLLECTION, PAYMENTS_COLLECTION
from spendflow.core.subscriptions.models import SubscriptionChange, SubscriptionPayment

logger = logging.getLogger(__name__)


class ChangeLedger:
    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    @property
    def collection(self) -> firestore.CollectionReference:
        return self.db.collection(CHANGES_COLLECTION)

    def append(self, change: SubscriptionChange) -> SubscriptionChange:
        doc_ref = self.collection.document()
        doc_ref.set(change.to_firestore_dict())
        change.id = doc_ref.id
        logger.debug(
            "Recorded %s change %s for user %s (%s -> %s)",
            change.change_type.value,
            change.id,
            change.user_id,
            change.from_plan_id,
            change.to_plan_id,
        )
        return change

    def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[SubscriptionChange]:
        query = (
            self.collection
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )
        if limit:
            query = query.limit(limit)
        return [SubscriptionChange.from_snapshot(doc) for doc in query.stream()]


class PaymentLedger:
    def __init__(self, db: Optional[firestore.Client] = None):
        self.db = db or get_firestore_client()

    @property
    def collection(self) -> firestore.CollectionReference:
        return self.db.collection(PAYMENTS_COLLECTION)

    def append(self, payment: SubscriptionPayment) -> SubscriptionPayment:
        doc_ref = self.collection.document()
        doc_ref.set(payment.to_firestore_dict())
        payment.id = doc_ref.id
        logger.debug(
            "Recorded %s payment %s of %d %s for user %s",
            payment.status.value,
            payment.id,
            payment.amount,
            payment.currency,
            payment.user_id,
        )
        return payment

    def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[SubscriptionPayment]:
        query = (
            self.collection
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )
        if limit:
            query = query.limit(limit)
        return [SubscriptionPayment.from_snapshot(doc) for doc in query.stream()]
