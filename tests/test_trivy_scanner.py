"""Tests for TrivyScanner."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.errors import ScanInvocationFailed, ScanOutputInvalid, ScanTimeout
from src.models.model_scanner import ScanErrorType
from src.models.model_target import Severity, Target
from src.scanner.trivy_scanner import TrivyScanner

SUBPROCESS_EXEC = "src.scanner.trivy_scanner.asyncio.create_subprocess_exec"


def _mock_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.returncode = returncode
    process.wait = AsyncMock(return_value=returncode)
    return process


def _hanging_process() -> MagicMock:
    """Process whose communicate() never finishes."""
    process = MagicMock()
    process.returncode = None

    async def communicate():
        await asyncio.sleep(3600)

    process.communicate = communicate
    process.wait = AsyncMock(return_value=-9)
    return process


@pytest.fixture
def target() -> Target:
    return Target(id="web-app", image="web-app:latest", interval_seconds=3600)


class TestParseReport:
    """Tests for interpreting Trivy JSON output."""

    def test_parse_report(self, trivy_report: bytes) -> None:
        """Test parsing a multi-result report."""
        scanner = TrivyScanner()
        findings = scanner.parse_report("web-app:latest", trivy_report)

        assert [f.identifier for f in findings] == ["CVE-2023-0002", "CVE-2023-0001"]
        low, critical = findings
        assert low.package == "zlib"
        assert low.severity == Severity.LOW
        assert low.fixed_version is None
        assert low.title == "zlib: heap overflow"
        assert critical.severity == Severity.CRITICAL
        assert critical.fixed_version == "1.1.1l"

    def test_parse_report_deduplicates_repeated_records(self, trivy_report: bytes) -> None:
        """Test that the same vulnerability reported by two results appears once."""
        findings = TrivyScanner().parse_report("web-app:latest", trivy_report)
        identities = [f.identity("web-app") for f in findings]
        assert len(identities) == len(set(identities)) == 2

    def test_parse_report_empty(self) -> None:
        """Test a report without results or with null vulnerability lists."""
        scanner = TrivyScanner()
        assert scanner.parse_report("alpine", json.dumps({"Results": []}).encode()) == []
        assert scanner.parse_report("alpine", json.dumps({}).encode()) == []
        assert (
            scanner.parse_report(
                "alpine", json.dumps({"Results": [{"Vulnerabilities": None}]}).encode()
            )
            == []
        )

    def test_parse_report_unknown_severity(self) -> None:
        """Test that unrecognised severities map to UNKNOWN."""
        raw = json.dumps(
            {
                "Results": [
                    {
                        "Vulnerabilities": [
                            {"VulnerabilityID": "CVE-1", "PkgName": "a", "Severity": "weird"},
                            {"VulnerabilityID": "CVE-2", "PkgName": "b"},
                        ]
                    }
                ]
            }
        ).encode()
        findings = TrivyScanner().parse_report("alpine", raw)
        assert [f.severity for f in findings] == [Severity.UNKNOWN, Severity.UNKNOWN]

    def test_parse_report_invalid_json(self) -> None:
        """Test that invalid JSON raises ScanOutputInvalid carrying only the size."""
        raw = b"not valid json" * 10
        with pytest.raises(ScanOutputInvalid) as exc_info:
            TrivyScanner().parse_report("alpine", raw)

        assert exc_info.value.output_size == len(raw)
        assert "not valid json" not in str(exc_info.value)

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"Results": {"Vulnerabilities": []}},
            {"Results": ["oops"]},
            {"Results": [{"Vulnerabilities": "none"}]},
            {"Results": [{"Vulnerabilities": [{"PkgName": "openssl"}]}]},
            {"Results": [{"Vulnerabilities": [{"VulnerabilityID": "CVE-1"}]}]},
        ],
    )
    def test_parse_report_wrong_shape(self, payload: object) -> None:
        """Test that well-formed JSON of the wrong shape is rejected."""
        with pytest.raises(ScanOutputInvalid):
            TrivyScanner().parse_report("alpine", json.dumps(payload).encode())


class TestClassifyError:
    """Tests for Trivy failure classification."""

    @pytest.mark.parametrize(
        ("message", "returncode", "expected"),
        [
            ("", 127, ScanErrorType.BINARY_MISSING),
            ("", 126, ScanErrorType.PERMISSION_DENIED),
            ("cache may be in use by another process: timeout (lock)", 1, ScanErrorType.CACHE_LOCK),
            ("MANIFEST_UNKNOWN: manifest unknown", 1, ScanErrorType.MANIFEST_UNKNOWN),
            ("image not found in registry", 1, ScanErrorType.IMAGE_NOT_FOUND),
            ("TOOMANYREQUESTS: rate limit exceeded", 1, ScanErrorType.RATE_LIMIT),
            ("dial tcp: i/o timeout", 1, ScanErrorType.NETWORK_TIMEOUT),
            ("UNAUTHORIZED: authentication required", 1, ScanErrorType.UNAUTHORIZED),
            ("", 1, ScanErrorType.TRIVY_CRASH),
            ("something odd happened", 1, ScanErrorType.UNKNOWN),
        ],
    )
    def test_classify_error(self, message: str, returncode: int, expected: ScanErrorType) -> None:
        assert TrivyScanner()._classify_error(message, returncode) == expected


class TestScan:
    """Tests for running Trivy as a subprocess."""

    def test_build_command(self) -> None:
        """Test that Trivy is told to use the configured vulnerable exit code."""
        cmd = TrivyScanner(trivy_path="/opt/trivy", vulnerable_exit_code=7)._build_command(
            "alpine:3.19"
        )
        assert cmd[:2] == ["/opt/trivy", "image"]
        assert cmd[cmd.index("--format") + 1] == "json"
        assert cmd[cmd.index("--exit-code") + 1] == "7"
        assert cmd[-1] == "alpine:3.19"

    def test_build_env_cache_dir(self, tmp_path) -> None:
        env = TrivyScanner(cache_dir=tmp_path)._build_env()
        assert env["TRIVY_CACHE_DIR"] == str(tmp_path)

    def test_build_env_forwards_trivy_variables_only(self) -> None:
        """Test that unrelated secrets in the environment never reach Trivy."""
        environ = {
            "PATH": "/usr/bin",
            "DOCKER_HOST": "unix:///var/run/docker.sock",
            "TRIVY_USERNAME": "bot",
            "AWS_SECRET_ACCESS_KEY": "secret",
        }
        with patch.dict("os.environ", environ, clear=True):
            env = TrivyScanner()._build_env()

        assert env == {
            "PATH": "/usr/bin",
            "DOCKER_HOST": "unix:///var/run/docker.sock",
            "TRIVY_USERNAME": "bot",
        }

    @pytest.mark.asyncio
    async def test_scan_no_vulnerabilities(self, target: Target) -> None:
        """Test exit code 0 with an empty report."""
        process = _mock_process(stdout=json.dumps({"Results": []}).encode())
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            result = await TrivyScanner().scan(target)

        assert result.target_id == "web-app"
        assert result.image_ref == "web-app:latest"
        assert result.findings == ()
        assert result.vulnerable is False

    @pytest.mark.asyncio
    async def test_scan_vulnerable_exit_code_is_success(
        self, target: Target, trivy_report: bytes
    ) -> None:
        """Test that the "vulnerabilities found" exit code is not an error."""
        process = _mock_process(stdout=trivy_report, returncode=5)
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            result = await TrivyScanner(vulnerable_exit_code=5).scan(target)

        assert result.returncode == 5
        assert len(result.findings) == 2
        assert result.vulnerable is True

    @pytest.mark.asyncio
    async def test_scan_trivy_failure(self, target: Target) -> None:
        """Test that Trivy's own failure code raises ScanInvocationFailed."""
        process = _mock_process(stderr=b"FATAL: UNAUTHORIZED: authentication required", returncode=1)
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            with pytest.raises(ScanInvocationFailed) as exc_info:
                await TrivyScanner().scan(target)

        assert exc_info.value.returncode == 1
        assert exc_info.value.reason == ScanErrorType.UNAUTHORIZED.value

    @pytest.mark.asyncio
    async def test_scan_exit_127(self, target: Target) -> None:
        """Test that exit code 127 (binary not found) raises ScanInvocationFailed."""
        process = _mock_process(stderr=b"trivy: command not found", returncode=127)
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            with pytest.raises(ScanInvocationFailed) as exc_info:
                await TrivyScanner().scan(target)

        assert exc_info.value.returncode == 127
        assert exc_info.value.reason == ScanErrorType.BINARY_MISSING.value

    @pytest.mark.asyncio
    async def test_scan_binary_missing(self, target: Target) -> None:
        """Test that a missing executable raises ScanInvocationFailed with code 127."""
        with patch(SUBPROCESS_EXEC, AsyncMock(side_effect=FileNotFoundError("trivy"))):
            with pytest.raises(ScanInvocationFailed) as exc_info:
                await TrivyScanner(trivy_path="/nonexistent/trivy").scan(target)

        assert exc_info.value.returncode == 127
        assert exc_info.value.kind == "scan_invocation_failed"

    @pytest.mark.asyncio
    async def test_scan_permission_denied(self, target: Target) -> None:
        with patch(SUBPROCESS_EXEC, AsyncMock(side_effect=PermissionError("trivy"))):
            with pytest.raises(ScanInvocationFailed) as exc_info:
                await TrivyScanner().scan(target)

        assert exc_info.value.returncode == 126

    @pytest.mark.asyncio
    async def test_scan_timeout_kills_process(self, target: Target) -> None:
        """Test that exceeding the timeout kills Trivy and raises ScanTimeout."""
        process = _hanging_process()
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            with pytest.raises(ScanTimeout) as exc_info:
                await TrivyScanner(timeout=300).scan(target, timeout=0.01)

        assert exc_info.value.timeout == 0.01
        process.kill.assert_called_once()
        process.wait.assert_awaited()

    @pytest.mark.asyncio
    async def test_scan_cancelled_kills_process(self, target: Target) -> None:
        """Test that cancelling a scan kills Trivy and propagates CancelledError."""
        process = _hanging_process()
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            task = asyncio.create_task(TrivyScanner().scan(target))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_scan_invalid_output(self, target: Target) -> None:
        process = _mock_process(stdout=b"<html>proxy error</html>", returncode=0)
        with patch(SUBPROCESS_EXEC, AsyncMock(return_value=process)):
            with pytest.raises(ScanOutputInvalid) as exc_info:
                await TrivyScanner().scan(target)

        assert exc_info.value.output_size == len(b"<html>proxy error</html>")

    def test_is_trivy_installed(self) -> None:
        with patch("src.scanner.trivy_scanner.shutil.which", return_value=None):
            assert TrivyScanner().is_trivy_installed() is False
        with patch("src.scanner.trivy_scanner.shutil.which", return_value="/usr/bin/trivy"):
            assert TrivyScanner().is_trivy_installed() is True
