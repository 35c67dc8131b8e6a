"""Pydantic models and value types for the vulnerability scan scheduler."""

from src.models.model_config import SchedulerConfig, TargetConfig
from src.models.model_notify import (
    DeliveryOutcome,
    DeliveryStatus,
    NotificationJob,
    RetryPolicy,
)
from src.models.model_scanner import (
    Finding,
    FindingIdentity,
    ScanErrorType,
    ScanResult,
    SeverityCounts,
    finding_sort_key,
)
from src.models.model_target import SEVERITY_REPORT_ORDER, Severity, Target

__all__ = [
    # Target models
    "SEVERITY_REPORT_ORDER",
    "Severity",
    "Target",
    # Scanner models
    "Finding",
    "FindingIdentity",
    "ScanErrorType",
    "ScanResult",
    "SeverityCounts",
    "finding_sort_key",
    # Notification models
    "DeliveryOutcome",
    "DeliveryStatus",
    "NotificationJob",
    "RetryPolicy",
    # Configuration models
    "SchedulerConfig",
    "TargetConfig",
]
