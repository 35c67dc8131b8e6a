"""Pytest configuration and fixtures."""

import asyncio
import json
from datetime import UTC, datetime

import pytest

from src.errors import NotifyPermanent, NotifyTransient
from src.models.model_notify import RetryPolicy
from src.models.model_scanner import Finding, ScanResult
from src.models.model_target import Severity, Target
from src.notifier.transports import NotificationTransport


class FakeScanner:
    """Scanner returning queued findings or raising queued errors.

    Each call to ``scan`` takes the next item from ``results``; once the
    queue has a single item left it is reused for every later call.
    """

    def __init__(self, *results: list[Finding] | Exception, delay: float = 0.0):
        self.results = list(results) or [[]]
        self.delay = delay
        self.calls: list[str] = []
        self.started = asyncio.Event()

    async def scan(self, target: Target, timeout: float | None = None) -> ScanResult:
        self.calls.append(target.id)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, Exception):
            raise item
        return ScanResult(
            target_id=target.id,
            image_ref=target.image,
            scanned_at=datetime(2024, 1, 15, 12, 0, tzinfo=UTC),
            findings=tuple(item),
        )


class FakeTransport(NotificationTransport):
    """Transport recording sends; ``failures`` maps destination to a list of errors.

    Errors for a destination are raised one per attempt, in order, until the
    list is empty; after that sends to that destination succeed.
    """

    name = "fake"

    def __init__(
        self,
        failures: dict[str, list[Exception]] | None = None,
        delay: float = 0.0,
    ):
        self.failures = {dest: list(errors) for dest, errors in (failures or {}).items()}
        self.delay = delay
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[str] = []
        self.closed = False

    async def send(self, message: str, destination: str) -> None:
        self.attempts.append(destination)
        if self.delay:
            await asyncio.sleep(self.delay)
        errors = self.failures.get(destination)
        if errors:
            raise errors.pop(0)
        self.sent.append((destination, message))

    async def close(self) -> None:
        self.closed = True


def make_finding(
    identifier: str,
    severity: Severity = Severity.HIGH,
    package: str = "openssl",
    installed_version: str = "1.1.1k",
    fixed_version: str | None = "1.1.1l",
    title: str | None = None,
) -> Finding:
    return Finding(
        identifier=identifier,
        package=package,
        installed_version=installed_version,
        fixed_version=fixed_version,
        severity=severity,
        title=title,
    )


def transient(destination: str) -> NotifyTransient:
    return NotifyTransient(destination, "connection refused")


def permanent(destination: str) -> NotifyPermanent:
    return NotifyPermanent(destination, "HTTP 401")


@pytest.fixture
def web_app_target() -> Target:
    """Target from the web-app scenario: hourly scans, HIGH threshold."""
    return Target(
        id="web-app",
        image="web-app:latest",
        interval_seconds=3600,
        severity_threshold=Severity.HIGH,
        destinations=frozenset({"slack://token@channel"}),
    )


@pytest.fixture
def web_app_findings() -> list[Finding]:
    """One CRITICAL and one LOW finding, in scanner order (LOW first)."""
    return [
        make_finding(
            "CVE-2023-0002",
            severity=Severity.LOW,
            package="zlib",
            installed_version="1.2.11",
            fixed_version=None,
        ),
        make_finding("CVE-2023-0001", severity=Severity.CRITICAL),
    ]


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without waiting between attempts."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter_factor=0.0)


@pytest.fixture
def trivy_report() -> bytes:
    """Trivy JSON report with two results and one duplicated record."""
    return json.dumps(
        {
            "SchemaVersion": 2,
            "ArtifactName": "web-app:latest",
            "Results": [
                {
                    "Target": "web-app:latest (debian 12.4)",
                    "Vulnerabilities": [
                        {
                            "VulnerabilityID": "CVE-2023-0002",
                            "PkgName": "zlib",
                            "InstalledVersion": "1.2.11",
                            "Severity": "LOW",
                            "Title": "zlib: heap overflow",
                        },
                        {
                            "VulnerabilityID": "CVE-2023-0001",
                            "PkgName": "openssl",
                            "InstalledVersion": "1.1.1k",
                            "FixedVersion": "1.1.1l",
                            "Severity": "CRITICAL",
                        },
                    ],
                },
                {
                    "Target": "usr/local/bin/app",
                    "Vulnerabilities": [
                        {
                            "VulnerabilityID": "CVE-2023-0001",
                            "PkgName": "openssl",
                            "InstalledVersion": "1.1.1k",
                            "FixedVersion": "1.1.1l",
                            "Severity": "CRITICAL",
                        },
                    ],
                },
                {"Target": "Python", "Vulnerabilities": None},
            ],
        }
    ).encode()
