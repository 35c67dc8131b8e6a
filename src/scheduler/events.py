"""Cycle outcome events emitted by the scheduler."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class CycleStatus(str, Enum):
    """How a target's cycle ended."""

    NO_CHANGES = "no_changes"  # Scan succeeded, nothing new
    BELOW_THRESHOLD = "below_threshold"  # New findings, none at or above the threshold
    NOTIFIED = "notified"  # Every destination accepted the report
    PARTIALLY_NOTIFIED = "partially_notified"  # Some destinations accepted the report
    NOTIFY_FAILED = "notify_failed"  # No destination accepted the report
    SCAN_FAILED = "scan_failed"
    RENDER_FAILED = "render_failed"
    DROPPED = "dropped"  # Tick arrived while the previous cycle was still running
    CANCELLED = "cancelled"  # Interrupted by shutdown
    ERROR = "error"  # Unexpected exception inside the cycle


@dataclass
class CycleOutcome:
    """Result of one cycle (or one dropped tick) for a target."""

    target_id: str
    status: CycleStatus
    new_findings: int = 0
    committed: int = 0
    error_kind: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0
    delivery_errors: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status in (
            CycleStatus.SCAN_FAILED,
            CycleStatus.RENDER_FAILED,
            CycleStatus.NOTIFY_FAILED,
            CycleStatus.ERROR,
        )
