"""Vulnerability scanning with Trivy and per-target finding deduplication."""

from src.scanner.deduplicator import FindingDeduplicator
from src.scanner.trivy_scanner import TrivyScanner

__all__ = [
    "FindingDeduplicator",
    "TrivyScanner",
]
