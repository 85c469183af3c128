#Marks notifications as a package.
#Exposes the notification vocabulary and the notifiers.

from .notifier import (
    NotificationType,
    NotificationError,
    Notifier,
    NullNotifier,
    RecordingNotifier,
    WebhookNotifier,
    default_notifier,
    notify_safely,
)

__all__ = [
    "NotificationType",
    "NotificationError",
    "Notifier",
    "NullNotifier",
    "RecordingNotifier",
    "WebhookNotifier",
    "default_notifier",
    "notify_safely",
]
