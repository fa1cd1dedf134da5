"""
Subscription exceptions.

Callers catch the three base conditions (not found, conflict, unauthorized);
the concrete subclasses name what was missing or refused. Firestore errors
are never wrapped and reach the caller as raised by the client.
"""


class SubscriptionError(Exception):
    """Base exception for all subscription core errors."""
    pass


class NotFoundError(SubscriptionError):
    """Raised when a referenced document does not exist."""
    pass


class ConflictError(SubscriptionError):
    """Raised when the current state forbids the requested transition."""
    pass


class UnauthorizedError(SubscriptionError):
    """Raised when the caller does not own the targeted record."""
    pass


class PlanNotFoundError(NotFoundError):
    """Raised when a plan id does not resolve to a purchasable plan."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan '{plan_id}' not found")
        self.plan_id = plan_id


class SubscriptionNotFoundError(NotFoundError):
    """Raised when a subscription id (or a user's current subscription) is missing."""

    def __init__(self, subscription_id: str):
        super().__init__(f"Subscription '{subscription_id}' not found")
        self.subscription_id = subscription_id


class NotificationNotFoundError(NotFoundError):
    def __init__(self, notification_id: str):
        super().__init__(f"Notification '{notification_id}' not found")
        self.notification_id = notification_id


class ActiveSubscriptionExistsError(ConflictError):
    """Raised on create when the user already has an active or trialing subscription."""

    def __init__(self, user_id: str, subscription_id: str):
        super().__init__(f"User '{user_id}' already has an active subscription '{subscription_id}'")
        self.user_id = user_id
        self.subscription_id = subscription_id


class InvalidTransitionError(ConflictError):
    """Raised when a transition targets a subscription in the wrong state or a superseded one."""
    pass


class SubscriptionOwnershipError(UnauthorizedError):
    """Raised when the caller is not the owner of the subscription."""

    def __init__(self, user_id: str, record_id: str):
        super().__init__(f"User '{user_id}' does not own '{record_id}'")
        self.user_id = user_id
        self.record_id = record_id
