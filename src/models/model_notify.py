"""Data models for notification delivery."""

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from src.consts import (
    NOTIFY_MAX_ATTEMPTS,
    NOTIFY_RETRY_BACKOFF_FACTOR,
    NOTIFY_RETRY_BASE_DELAY,
    NOTIFY_RETRY_JITTER_FACTOR,
    NOTIFY_RETRY_MAX_DELAY,
)


class RetryPolicy(BaseModel):
    """Exponential backoff parameters applied per destination."""

    max_attempts: int = Field(default=NOTIFY_MAX_ATTEMPTS, ge=1)
    base_delay: float = Field(default=NOTIFY_RETRY_BASE_DELAY, ge=0.0)
    max_delay: float = Field(default=NOTIFY_RETRY_MAX_DELAY, ge=0.0)
    backoff_factor: float = Field(default=NOTIFY_RETRY_BACKOFF_FACTOR, ge=1.0)
    jitter_factor: float = Field(default=NOTIFY_RETRY_JITTER_FACTOR, ge=0.0, le=1.0)


class DeliveryStatus(str, Enum):
    """Overall result of delivering one message to a set of destinations."""

    DELIVERED = "delivered"  # Every destination accepted the message
    PARTIAL = "partial"  # At least one destination accepted, at least one failed
    FAILED = "failed"  # No destination accepted the message


@dataclass
class DeliveryOutcome:
    """Per-destination result of a notification."""

    delivered: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)  # destination → error
    attempts: dict[str, int] = field(default_factory=dict)  # destination → attempts used

    @property
    def status(self) -> DeliveryStatus:
        if not self.errors:
            return DeliveryStatus.DELIVERED
        if self.delivered:
            return DeliveryStatus.PARTIAL
        return DeliveryStatus.FAILED

    @property
    def any_delivered(self) -> bool:
        return bool(self.delivered)


@dataclass
class NotificationJob:
    """A rendered report waiting to be delivered."""

    target_id: str
    message: str
    destinations: frozenset[str]
    attempt_count: int = 0
