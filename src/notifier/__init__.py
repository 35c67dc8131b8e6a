"""Notification delivery: transports, backoff and the retrying notifier."""

from src.notifier.backoff import Backoff
from src.notifier.notifier import Notifier
from src.notifier.transports import (
    NotificationTransport,
    RoutingTransport,
    ShoutrrrTransport,
    WebhookTransport,
    redact_destination,
)

__all__ = [
    "Backoff",
    "NotificationTransport",
    "Notifier",
    "RoutingTransport",
    "ShoutrrrTransport",
    "WebhookTransport",
    "redact_destination",
]
