from enum import Enum

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    """Vulnerability severity levels as reported by Trivy."""

    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Position in the ordering UNKNOWN < LOW < MEDIUM < HIGH < CRITICAL."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> "Severity":
        """Parse a severity string case-insensitively, falling back to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    def meets(self, threshold: "Severity") -> bool:
        """Return True if this severity is at or above ``threshold``."""
        return self.rank >= threshold.rank


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

# Highest first, the order used in reports
SEVERITY_REPORT_ORDER = sorted(Severity, key=lambda s: s.rank, reverse=True)


def validate_schedule(value: str | None) -> str | None:
    """Normalize a five-field crontab expression, raising ValueError if invalid."""
    if value is None:
        return None
    value = " ".join(value.split())
    if not value:
        return None
    try:
        CronTrigger.from_crontab(value)
    except ValueError as e:
        raise ValueError(f"invalid cron schedule '{value}': {e}") from e
    return value


class Target(BaseModel):
    """A container image under periodic scan.

    Built from configuration at startup and never mutated afterwards; a
    configuration reload produces new Target values.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique, stable target identifier")
    image: str = Field(min_length=1, description="Image reference passed to the scanner")
    interval_seconds: float = Field(gt=0, description="Seconds between scan ticks")
    severity_threshold: Severity = Field(
        default=Severity.LOW,
        description="Minimum severity that makes a new finding worth notifying",
    )
    destinations: frozenset[str] = Field(
        default_factory=frozenset, description="Notification destination URLs"
    )
    template: str = Field(
        default="default.txt.j2", description="Name of the notification template"
    )
    schedule: str | None = Field(
        default=None,
        description="Crontab expression for scan ticks; overrides interval_seconds when set",
    )

    @field_validator("id", "image")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str | None) -> str | None:
        return validate_schedule(value)
