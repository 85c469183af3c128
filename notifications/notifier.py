#Purpose: Fire-and-forget notification dispatch.
#Sole responsibility: hand a typed event to whoever delivers it (webhook, log, test recorder).
#Delivery failures are never fatal to dispatch or the ride lifecycle:
#callers go through notify_safely() which logs and moves on.
#It should not contain dispatch rules or decide who gets notified.

from dotenv import load_dotenv
import os
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import requests

# Read webhook URL from environment
# Example in .env:
# NOTIFY_WEBHOOK_URL=http://localhost:8000/notifications
load_dotenv()
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    DRIVER_ASSIGNED = "driver_assigned"          # to a student: a driver picked up your request
    STUDENTS_ASSIGNED = "students_assigned"      # to a driver: passengers were assigned to you
    RIDE_STARTING = "ride_starting"              # to a student: your driver is on the way / arriving
    RIDE_COMPLETED = "ride_completed"            # to a student: the round finished
    UNASSIGNED_STUDENTS = "unassigned_students"  # to a student: you are back in the pool


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""
    pass


class Notifier:
    """
    Base notifier. Subclasses implement notify(); it may raise NotificationError.
    """

    def notify(self, notification_type: NotificationType, recipient_id: str, payload: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    """Logs the event and delivers nothing. Default when no webhook is configured."""

    def notify(self, notification_type: NotificationType, recipient_id: str, payload: Optional[Dict[str, Any]] = None) -> None:
        logger.debug("Notification %s -> %s %s", notification_type.value, recipient_id, payload or {})


class RecordingNotifier(Notifier):
    """Keeps every event in memory. Used by the simulation script and tests."""

    def __init__(self):
        self.sent: List[Tuple[NotificationType, str, Dict[str, Any]]] = []

    def notify(self, notification_type: NotificationType, recipient_id: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.sent.append((notification_type, recipient_id, dict(payload or {})))

    def of_type(self, notification_type: NotificationType) -> List[Tuple[NotificationType, str, Dict[str, Any]]]:
        return [event for event in self.sent if event[0] == notification_type]


class WebhookNotifier(Notifier):
    """
    POSTs each event as JSON to a webhook:
    {"type": "driver_assigned", "recipient_id": "...", "payload": {...}}
    """

    def __init__(self, url: Optional[str] = None, timeout: int = 5):
        self.url = url or NOTIFY_WEBHOOK_URL
        self.timeout = timeout #seconds to wait before giving up on the webhook

        if not self.url:
            raise ValueError("Notification webhook URL not set. Please set NOTIFY_WEBHOOK_URL in the .env file.")

    def notify(self, notification_type: NotificationType, recipient_id: str, payload: Optional[Dict[str, Any]] = None) -> None:
        body = {
            "type": notification_type.value,
            "recipient_id": recipient_id,
            "payload": payload or {},
        }
        try:
            response = requests.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Webhook delivery of {notification_type.value} to {recipient_id} failed: {e}") from e


def default_notifier() -> Notifier:
    """Webhook if NOTIFY_WEBHOOK_URL is configured, otherwise log-only."""
    if NOTIFY_WEBHOOK_URL:
        return WebhookNotifier(NOTIFY_WEBHOOK_URL)
    return NullNotifier()


def notify_safely(
    notifier: Optional[Notifier],
    notification_type: NotificationType,
    recipient_id: str,
    payload: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Sends one notification; a failure is logged and reported as False, never raised.
    """
    if notifier is None:
        return False
    try:
        notifier.notify(notification_type, recipient_id, payload)
        return True
    except Exception as e:
        logger.warning(f"Notification {notification_type.value} to {recipient_id} failed: {e}")
        return False
