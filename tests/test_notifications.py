"""
Tests for notifications and the change/payment ledgers.

Run with: pytest tests/test_notifications.py -v
"""

import pytest

from spendflow.core.subscriptions.constants import NOTIFICATIONS_COLLECTION
from spendflow.core.subscriptions.exceptions import NotificationNotFoundError, SubscriptionOwnershipError
from spendflow.core.subscriptions.ledger import ChangeLedger
from spendflow.core.subscriptions.models import ChangeType, NotificationType, SubscriptionChange
from spendflow.core.subscriptions.notifications import NotificationEmitter


@pytest.fixture
def emitter(db):
    return NotificationEmitter(db)


class TestNotificationEmitter:
    def test_emit_and_list(self, db, emitter):
        emitted = emitter.emit("user-1", NotificationType.RENEWAL_REMINDER, "Renewal", "Renews soon", {"days": 3})

        stored = db.docs(NOTIFICATIONS_COLLECTION)[emitted.id]
        assert stored["type"] == "renewal_reminder"
        assert stored["read"] is False

        listed = emitter.list_for_user("user-1")
        assert [n.id for n in listed] == [emitted.id]
        assert listed[0].data == {"days": 3}
        assert emitter.list_for_user("user-2") == []

    def test_mark_read(self, emitter):
        emitted = emitter.emit("user-1", NotificationType.TRIAL_ENDING, "Trial", "Ends soon")

        marked = emitter.mark_read("user-1", emitted.id)

        assert marked.read is True
        assert emitter.list_for_user("user-1", unread_only=True) == []
        # Already read
        assert emitter.mark_read("user-1", emitted.id).read is True

    def test_mark_read_missing(self, emitter):
        with pytest.raises(NotificationNotFoundError):
            emitter.mark_read("user-1", "missing")

    def test_mark_read_other_user(self, emitter):
        emitted = emitter.emit("owner", NotificationType.TRIAL_ENDING, "Trial", "Ends soon")

        with pytest.raises(SubscriptionOwnershipError):
            emitter.mark_read("intruder", emitted.id)
        assert emitter.list_for_user("owner", unread_only=True)[0].id == emitted.id

    def test_watch(self, emitter):
        pushed = []
        handle = emitter.watch("user-1", pushed.append)
        emitter.emit("user-1", NotificationType.TRIAL_ENDING, "Trial", "Ends soon")

        assert pushed[0] == []
        assert len(pushed[-1]) == 1

        handle.unsubscribe()
        emitter.emit("user-1", NotificationType.TRIAL_ENDING, "Trial", "Ends soon")
        assert len(pushed[-1]) == 1


class TestChangeLedger:
    def test_append_and_limit(self, db):
        ledger = ChangeLedger(db)
        for _ in range(3):
            ledger.append(SubscriptionChange(user_id="user-1", to_plan_id="pro", change_type=ChangeType.UPGRADE))

        assert len(ledger.list_for_user("user-1")) == 3
        assert len(ledger.list_for_user("user-1", limit=2)) == 2

    def test_service_lists_lifecycle_notifications(self, service, plans):
        service.create_subscription("user-1", plans["pro"].id)
        service.cancel_subscription("user-1")

        notifications = service.list_notifications("user-1")
        assert {n.type for n in notifications} == {
            NotificationType.SUBSCRIPTION_CREATED,
            NotificationType.SUBSCRIPTION_CANCELED,
        }

        service.mark_notification_read("user-1", notifications[0].id)
        assert len(service.list_notifications("user-1", unread_only=True)) == 1
