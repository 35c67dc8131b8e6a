"""Trivy CLI wrapper for Docker image vulnerability scanning."""

import asyncio
import json
import logging
import os
import re
import shutil
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.consts import (
    EXIT_CODE_NOT_EXECUTABLE,
    EXIT_CODE_NOT_FOUND,
    TRIVY_DEFAULT_PATH,
    TRIVY_DEFAULT_TIMEOUT,
    TRIVY_ENV_PREFIX,
    TRIVY_ERROR_SNIPPET_CHARS,
    TRIVY_PASSTHROUGH_ENV,
    TRIVY_SEVERITIES,
    TRIVY_VULNERABLE_EXIT_CODE,
)
from src.errors import ScanInvocationFailed, ScanOutputInvalid, ScanTimeout
from src.models.model_scanner import Finding, ScanErrorType, ScanResult
from src.models.model_target import Severity, Target

logger = logging.getLogger(__name__)


class TrivyScanner:
    """Wraps Trivy CLI for scanning Docker images."""

    def __init__(
        self,
        trivy_path: str = TRIVY_DEFAULT_PATH,
        timeout: float = TRIVY_DEFAULT_TIMEOUT,
        vulnerable_exit_code: int = TRIVY_VULNERABLE_EXIT_CODE,
        cache_dir: Path | str | None = None,
    ):
        """Initialize TrivyScanner.

        Args:
            trivy_path: Path to trivy executable (default: "trivy")
            timeout: Default scan timeout in seconds (default: 300)
            vulnerable_exit_code: Exit code Trivy is told to use when it finds
                vulnerabilities. Must differ from 1, Trivy's own failure code.
            cache_dir: Custom cache directory for Trivy (default: None, uses Trivy's default)
        """
        self.trivy_path = trivy_path
        self.timeout = timeout
        self.vulnerable_exit_code = vulnerable_exit_code
        self.cache_dir = Path(cache_dir) if cache_dir else None

    def is_trivy_installed(self) -> bool:
        """Check if Trivy is installed and accessible.

        Returns:
            True if Trivy is installed, False otherwise
        """
        return shutil.which(self.trivy_path) is not None

    def _classify_error(self, error_msg: str, returncode: int) -> ScanErrorType:
        """Classify error type based on Trivy stderr output.

        Args:
            error_msg: Error message from stderr
            returncode: Process return code

        Returns:
            ScanErrorType classification
        """
        if returncode == EXIT_CODE_NOT_FOUND:
            return ScanErrorType.BINARY_MISSING
        if returncode == EXIT_CODE_NOT_EXECUTABLE:
            return ScanErrorType.PERMISSION_DENIED

        error_lower = error_msg.lower()

        # Cache lock errors
        if "cache" in error_lower and "lock" in error_lower:
            return ScanErrorType.CACHE_LOCK

        # Manifest/image not found errors
        if re.search(r"manifest.*(not found|unknown)", error_lower):
            return ScanErrorType.MANIFEST_UNKNOWN
        if "not found" in error_lower and ("image" in error_lower or "repository" in error_lower):
            return ScanErrorType.IMAGE_NOT_FOUND

        # Rate limiting
        if "rate limit" in error_lower or "too many requests" in error_lower:
            return ScanErrorType.RATE_LIMIT

        # Network errors
        if "timeout" in error_lower or "timed out" in error_lower:
            return ScanErrorType.NETWORK_TIMEOUT
        if "network" in error_lower or "connection" in error_lower:
            return ScanErrorType.NETWORK_TIMEOUT

        # Authorization errors
        if "unauthorized" in error_lower or "forbidden" in error_lower:
            return ScanErrorType.UNAUTHORIZED

        # Trivy crash (non-zero exit without clear error)
        if returncode != 0 and not error_msg.strip():
            return ScanErrorType.TRIVY_CRASH

        return ScanErrorType.UNKNOWN

    def _build_command(self, image_ref: str) -> list[str]:
        return [
            self.trivy_path,
            "image",
            "--format",
            "json",
            "--quiet",
            "--scanners",
            "vuln",
            "--severity",
            TRIVY_SEVERITIES,
            "--exit-code",
            str(self.vulnerable_exit_code),
            image_ref,
        ]

    def _build_env(self) -> dict[str, str]:
        """Environment for the Trivy process: TRIVY* variables plus a small passthrough set."""
        env = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(TRIVY_ENV_PREFIX) or key in TRIVY_PASSTHROUGH_ENV
        }
        if self.cache_dir:
            env["TRIVY_CACHE_DIR"] = str(self.cache_dir)
            logger.debug(f"Using custom cache dir: {self.cache_dir}")
        return env

    async def scan(self, target: Target, timeout: float | None = None) -> ScanResult:
        """Scan the target's image with Trivy.

        A zero exit status and ``vulnerable_exit_code`` both mean the scan
        succeeded; any other status is an invocation failure. Timeouts are not
        retried here.

        Args:
            target: Target whose image reference is scanned
            timeout: Override for the instance timeout, in seconds

        Returns:
            ScanResult with parsed findings

        Raises:
            ScanTimeout: If Trivy does not finish within the timeout
            ScanOutputInvalid: If Trivy's JSON output cannot be interpreted
            ScanInvocationFailed: If Trivy cannot be run or fails
        """
        image_ref = target.image
        scan_timeout = timeout if timeout is not None else self.timeout
        start_time = time.time()

        cmd = self._build_command(image_ref)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
            )
        except FileNotFoundError as e:
            raise ScanInvocationFailed(
                image_ref,
                f"scanner binary not found: {self.trivy_path}",
                returncode=EXIT_CODE_NOT_FOUND,
                reason=ScanErrorType.BINARY_MISSING.value,
            ) from e
        except PermissionError as e:
            raise ScanInvocationFailed(
                image_ref,
                f"permission denied running {self.trivy_path}",
                returncode=EXIT_CODE_NOT_EXECUTABLE,
                reason=ScanErrorType.PERMISSION_DENIED.value,
            ) from e
        except OSError as e:
            raise ScanInvocationFailed(image_ref, f"cannot start scanner: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=scan_timeout)
        except TimeoutError:
            await self._kill(process)
            raise ScanTimeout(image_ref, scan_timeout) from None
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        returncode = process.returncode
        if returncode not in (0, self.vulnerable_exit_code):
            error_msg = stderr.decode("utf-8", errors="replace")
            error_type = self._classify_error(error_msg, returncode)
            logger.debug(f"Scan of {image_ref} failed ({error_type.value}): {error_msg}")
            raise ScanInvocationFailed(
                image_ref,
                f"Trivy error (code {returncode}, {error_type.value}): "
                f"{error_msg.strip()[:TRIVY_ERROR_SNIPPET_CHARS]}",
                returncode=returncode,
                reason=error_type.value,
            )

        findings = self.parse_report(image_ref, stdout)
        duration = time.time() - start_time

        return ScanResult(
            target_id=target.id,
            image_ref=image_ref,
            scanned_at=datetime.now(UTC),
            findings=tuple(findings),
            scan_duration_seconds=duration,
            returncode=returncode,
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    def parse_report(self, image_ref: str, raw_output: bytes) -> list[Finding]:
        """Parse Trivy JSON output into findings.

        Trivy output structure: {"Results": [{"Vulnerabilities": [...]}]}.
        Records repeated across results (same id, package and version) are
        reported once.

        Args:
            image_ref: Image reference, for error messages
            raw_output: Raw stdout from Trivy

        Returns:
            Findings in the order Trivy reported them

        Raises:
            ScanOutputInvalid: If the output is not the expected JSON shape
        """
        size = len(raw_output)
        try:
            data = json.loads(raw_output.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as e:
            raise ScanOutputInvalid(image_ref, size, f"invalid JSON: {e.msg}") from None

        if not isinstance(data, dict):
            raise ScanOutputInvalid(image_ref, size, "top-level value is not an object")

        results = data.get("Results") or []
        if not isinstance(results, list):
            raise ScanOutputInvalid(image_ref, size, "'Results' is not a list")

        findings: list[Finding] = []
        seen: set[tuple[str, str, str]] = set()
        for result in results:
            if not isinstance(result, dict):
                raise ScanOutputInvalid(image_ref, size, "result entry is not an object")
            vulnerabilities = result.get("Vulnerabilities") or []
            if not isinstance(vulnerabilities, list):
                raise ScanOutputInvalid(image_ref, size, "'Vulnerabilities' is not a list")

            for vuln in vulnerabilities:
                finding = self._parse_vulnerability(image_ref, size, vuln)
                key = (finding.identifier, finding.package, finding.installed_version)
                if key in seen:
                    continue
                seen.add(key)
                findings.append(finding)

        return findings

    def _parse_vulnerability(self, image_ref: str, size: int, vuln: Any) -> Finding:
        if not isinstance(vuln, dict):
            raise ScanOutputInvalid(image_ref, size, "vulnerability entry is not an object")

        identifier = vuln.get("VulnerabilityID")
        package = vuln.get("PkgName")
        if not isinstance(identifier, str) or not identifier:
            raise ScanOutputInvalid(image_ref, size, "vulnerability without VulnerabilityID")
        if not isinstance(package, str) or not package:
            raise ScanOutputInvalid(image_ref, size, f"{identifier} has no PkgName")

        fixed_version = vuln.get("FixedVersion") or None
        title = vuln.get("Title") or None
        return Finding(
            identifier=identifier,
            package=package,
            installed_version=str(vuln.get("InstalledVersion") or ""),
            fixed_version=str(fixed_version) if fixed_version else None,
            severity=Severity.parse(vuln.get("Severity")),
            title=str(title) if title else None,
        )


async def main():
    """Example usage of TrivyScanner."""
    scanner = TrivyScanner()

    # Check if Trivy is installed
    if not scanner.is_trivy_installed():
        print("Error: Trivy is not installed")
        print(
            "Install from: https://aquasecurity.github.io/trivy/latest/getting-started/installation/"
        )
        return

    target = Target(id="alpine", image="alpine:latest", interval_seconds=3600)
    print(f"Scanning {target.image}...")

    result = await scanner.scan(target)

    print(f"  Duration: {result.scan_duration_seconds:.2f}s")
    print(f"  Findings: {len(result.findings)}")
    for finding in result.findings[:10]:
        print(f"    {finding.severity.value:<8} {finding.identifier} ({finding.package})")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
