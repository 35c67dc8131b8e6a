"""Pydantic models for the scheduler configuration file."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from src.consts import (
    COMMIT_ON_FAILED_DELIVERY,
    COMMIT_ON_PARTIAL_DELIVERY,
    DEFAULT_SCAN_INTERVAL_SECONDS,
    DEFAULT_SEVERITY_THRESHOLD,
    DEFAULT_TEMPLATE_NAME,
    NOTIFY_DEFAULT_TIMEOUT,
    SCAN_ON_START,
    SHOUTRRR_DEFAULT_PATH,
    TRIVY_DEFAULT_PATH,
    TRIVY_DEFAULT_TIMEOUT,
    TRIVY_VULNERABLE_EXIT_CODE,
)
from src.models.model_notify import RetryPolicy
from src.models.model_target import Severity, validate_schedule


class TargetConfig(BaseModel):
    """One entry of the ``targets`` list. Unset fields take the global defaults."""

    id: str | None = Field(default=None, description="Defaults to the image reference")
    image: str = Field(min_length=1)
    interval_seconds: float | None = Field(default=None, gt=0)
    severity_threshold: Severity | None = None
    destinations: list[str] | None = None
    template: str | None = None
    schedule: str | None = Field(default=None, description="Crontab expression")

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str | None) -> str | None:
        return validate_schedule(value)

    @property
    def target_id(self) -> str:
        return (self.id or self.image).strip()


class SchedulerConfig(BaseModel):
    """Complete scheduler configuration."""

    targets: list[TargetConfig] = Field(default_factory=list)

    # Per-target defaults
    default_interval_seconds: float = Field(default=DEFAULT_SCAN_INTERVAL_SECONDS, gt=0)
    default_severity_threshold: Severity = Severity(DEFAULT_SEVERITY_THRESHOLD)
    default_destinations: list[str] = Field(default_factory=list)
    default_template: str = DEFAULT_TEMPLATE_NAME
    default_schedule: str | None = Field(
        default=None, description="Crontab expression used instead of the default interval"
    )

    # Scanner
    trivy_path: str = TRIVY_DEFAULT_PATH
    scan_timeout_seconds: float = Field(default=TRIVY_DEFAULT_TIMEOUT, gt=0)
    vulnerable_exit_code: int = Field(default=TRIVY_VULNERABLE_EXIT_CODE, ge=1, le=255)
    trivy_cache_dir: Path | None = None

    # Notifier
    shoutrrr_path: str = SHOUTRRR_DEFAULT_PATH
    notify_timeout_seconds: float = Field(default=NOTIFY_DEFAULT_TIMEOUT, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    commit_on_partial_delivery: bool = COMMIT_ON_PARTIAL_DELIVERY
    commit_on_failed_delivery: bool = Field(
        default=COMMIT_ON_FAILED_DELIVERY,
        description="Commit findings even when no destination accepted the report",
    )

    # Templates and state
    template_dir: Path | None = None
    state_dir: Path | None = Field(
        default=None, description="Directory for persisted dedup state (in-memory if unset)"
    )

    # Scheduling behaviour
    scan_on_start: bool = SCAN_ON_START
    discover_running: bool = Field(
        default=False, description="Also scan images of running containers"
    )

    @field_validator("default_schedule")
    @classmethod
    def _check_default_schedule(cls, value: str | None) -> str | None:
        return validate_schedule(value)

    @model_validator(mode="after")
    def _check_targets(self) -> "SchedulerConfig":
        if self.vulnerable_exit_code == 1:
            # Trivy itself exits 1 on failure
            raise ValueError("vulnerable_exit_code must not be 1")
        seen: set[str] = set()
        for target in self.targets:
            target_id = target.target_id
            if not target_id:
                raise ValueError("target id must not be blank")
            if target_id in seen:
                raise ValueError(f"duplicate target id: {target_id}")
            seen.add(target_id)
            if not (target.destinations or self.default_destinations):
                raise ValueError(f"target {target_id} has no notification destinations")
        if not self.targets and not self.discover_running:
            raise ValueError("no targets configured and discover_running is disabled")
        if self.discover_running and not self.default_destinations:
            raise ValueError("discover_running requires default_destinations")
        return self
