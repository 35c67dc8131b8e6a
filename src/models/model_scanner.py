"""Data models for security scanning operations."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.model_target import Severity

# (target id, vulnerability id, package name, installed version)
FindingIdentity = tuple[str, str, str, str]


class ScanErrorType(Enum):
    """Classification of scanner failures, carried in log lines for diagnosis."""

    NETWORK_TIMEOUT = "network_timeout"
    RATE_LIMIT = "rate_limit"
    CACHE_LOCK = "cache_lock"
    IMAGE_NOT_FOUND = "image_not_found"
    MANIFEST_UNKNOWN = "manifest_unknown"
    UNAUTHORIZED = "unauthorized"
    BINARY_MISSING = "binary_missing"
    PERMISSION_DENIED = "permission_denied"
    TRIVY_CRASH = "trivy_crash"
    UNKNOWN = "unknown"


class Finding(BaseModel):
    """One vulnerability detected in a package of a scanned image."""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(description="Vulnerability id, e.g. CVE-2023-0001")
    package: str = Field(description="Affected package name")
    installed_version: str = Field(default="", description="Version found in the image")
    fixed_version: str | None = Field(default=None, description="First fixed version, if any")
    severity: Severity = Field(default=Severity.UNKNOWN)
    title: str | None = Field(default=None, description="Short advisory title")

    def identity(self, target_id: str) -> FindingIdentity:
        """Identity of this finding within a target.

        The same tuple seen in a later scan is the same finding.
        """
        return (target_id, self.identifier, self.package, self.installed_version)

    def identity_key(self) -> str:
        """Target-independent identity as a single string (used for persistence)."""
        return "|".join((self.identifier, self.package, self.installed_version))


def finding_sort_key(finding: Finding) -> tuple[int, str, str, str]:
    """Severity descending, then identifier ascending."""
    return (-finding.severity.rank, finding.identifier, finding.package, finding.installed_version)


@dataclass(frozen=True)
class ScanResult:
    """Result of a single successful scan invocation."""

    target_id: str
    image_ref: str
    scanned_at: datetime
    findings: tuple[Finding, ...] = ()
    scan_duration_seconds: float = 0.0
    returncode: int = 0

    @property
    def vulnerable(self) -> bool:
        return bool(self.findings)


@dataclass
class SeverityCounts:
    """Finding counts by severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unknown: int = 0

    @classmethod
    def of(cls, findings: "list[Finding] | tuple[Finding, ...]") -> "SeverityCounts":
        counts = cls()
        for finding in findings:
            name = finding.severity.value.lower()
            setattr(counts, name, getattr(counts, name) + 1)
        return counts

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.unknown

    def as_dict(self) -> dict[str, int]:
        return {
            "CRITICAL": self.critical,
            "HIGH": self.high,
            "MEDIUM": self.medium,
            "LOW": self.low,
            "UNKNOWN": self.unknown,
        }

    def summary(self) -> str:
        """Compact form used in log lines, e.g. ``1C 2H 0M 4L``."""
        return f"{self.critical}C {self.high}H {self.medium}M {self.low}L"

