"""Periodic scan scheduling."""

from src.scheduler.events import CycleOutcome, CycleStatus
from src.scheduler.scheduler import Scanner, ScanScheduler

__all__ = [
    "CycleOutcome",
    "CycleStatus",
    "ScanScheduler",
    "Scanner",
]
