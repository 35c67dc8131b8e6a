"""Notification transports: deliver one message to one destination URL."""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from urllib.parse import urlsplit

import httpx

from src.consts import NOTIFY_DEFAULT_TIMEOUT, SHOUTRRR_DEFAULT_PATH
from src.errors import NotifyPermanent, NotifyTransient

logger = logging.getLogger(__name__)

# stderr fragments from shoutrrr that indicate a failure worth retrying
_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "no such host",
    "temporary",
    "temporarily",
    "eof",
    "too many requests",
    "rate limit",
    "status 429",
    "status 500",
    "status 502",
    "status 503",
    "status 504",
    "bad gateway",
    "service unavailable",
)


def redact_destination(destination: str) -> str:
    """Reduce a destination URL to ``scheme://host`` for log lines.

    Notification URLs routinely embed tokens in the user-info or path.
    """
    try:
        parts = urlsplit(destination)
    except ValueError:
        return "<invalid url>"
    host = parts.hostname or ""
    return f"{parts.scheme}://{host}" if parts.scheme else "<invalid url>"


class NotificationTransport(ABC):
    """Delivers a rendered message to a single destination."""

    name: str = "base"

    @abstractmethod
    async def send(self, message: str, destination: str) -> None:
        """Send ``message`` to ``destination``.

        Raises:
            NotifyTransient: On failures worth retrying
            NotifyPermanent: On failures retrying cannot fix
        """
        ...

    async def close(self) -> None:
        """Release resources held by the transport."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


class ShoutrrrTransport(NotificationTransport):
    """Runs ``shoutrrr send`` for each delivery."""

    name = "shoutrrr"

    def __init__(
        self,
        shoutrrr_path: str = SHOUTRRR_DEFAULT_PATH,
        timeout: float = NOTIFY_DEFAULT_TIMEOUT,
    ):
        """Initialize ShoutrrrTransport.

        Args:
            shoutrrr_path: Path to shoutrrr executable (default: "shoutrrr")
            timeout: Seconds allowed per delivery attempt
        """
        self.shoutrrr_path = shoutrrr_path
        self.timeout = timeout

    def is_installed(self) -> bool:
        return shutil.which(self.shoutrrr_path) is not None

    def _classify_error(self, destination: str, error_msg: str, returncode: int):
        error_lower = error_msg.lower()
        snippet = error_msg.strip()[:300]
        if any(marker in error_lower for marker in _TRANSIENT_MARKERS):
            return NotifyTransient(destination, f"shoutrrr exited {returncode}: {snippet}")
        return NotifyPermanent(destination, f"shoutrrr exited {returncode}: {snippet}")

    async def send(self, message: str, destination: str) -> None:
        cmd = [self.shoutrrr_path, "send", "--url", destination, "--message", message]
        logger.debug(f"Running: {self.shoutrrr_path} send --url {redact_destination(destination)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise NotifyPermanent(destination, f"cannot run {self.shoutrrr_path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise NotifyTransient(
                destination, f"shoutrrr timed out after {self.timeout}s"
            ) from None
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            # shoutrrr reports some failures on stdout
            error_msg = (stderr or stdout).decode("utf-8", errors="replace")
            raise self._classify_error(destination, error_msg, process.returncode)


class WebhookTransport(NotificationTransport):
    """POSTs ``{"text": message}`` to plain http(s) webhook URLs."""

    name = "webhook"

    def __init__(
        self,
        timeout: float = NOTIFY_DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def send(self, message: str, destination: str) -> None:
        client = await self._get_client()
        try:
            response = await client.post(destination, json={"text": message})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise NotifyTransient(destination, f"HTTP {status}") from e
            raise NotifyPermanent(destination, f"HTTP {status}") from e
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise NotifyPermanent(destination, f"{type(e).__name__}: {e}") from e
        except httpx.TransportError as e:
            # Timeouts, connection failures, protocol errors
            raise NotifyTransient(destination, f"{type(e).__name__}: {e}") from e
        except httpx.HTTPError as e:
            raise NotifyPermanent(destination, f"{type(e).__name__}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RoutingTransport(NotificationTransport):
    """Sends http(s) URLs through a webhook transport and everything else through shoutrrr."""

    name = "routing"

    def __init__(
        self,
        shoutrrr: NotificationTransport | None = None,
        webhook: NotificationTransport | None = None,
    ):
        self.shoutrrr = shoutrrr or ShoutrrrTransport()
        self.webhook = webhook or WebhookTransport()

    def transport_for(self, destination: str) -> NotificationTransport:
        scheme = urlsplit(destination).scheme.lower()
        if scheme in ("http", "https"):
            return self.webhook
        return self.shoutrrr

    async def send(self, message: str, destination: str) -> None:
        await self.transport_for(destination).send(message, destination)

    async def close(self) -> None:
        await self.shoutrrr.close()
        await self.webhook.close()
