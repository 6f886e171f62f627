"""Exception taxonomy for the notification engine.

Scheduling calls raise DisabledError and PermissionDeniedError so the caller
can react. Tracking calls never raise; they log NotFoundError and StorageError
conditions and return.
"""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for notification engine errors."""


class DisabledError(NotificationError):
    """Notifications, or the category a notification belongs to, are turned off."""

    def __init__(self, category: str | None = None) -> None:
        self.category = category
        if category is None:
            msg = "Notifications are disabled"
        else:
            msg = f"Notification category {category} is disabled"
        super().__init__(msg)


class NotFoundError(NotificationError):
    """Unknown schedule or analytics id."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class StorageError(NotificationError):
    """Key-value store read or write failed."""


class PermissionDeniedError(NotificationError):
    """The platform refused notification permission."""
