"""Delivery of rendered reports to every destination of a target."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from src.errors import NotifyError, NotifyPermanent
from src.models.model_notify import DeliveryOutcome, NotificationJob, RetryPolicy
from src.notifier.backoff import Backoff
from src.notifier.transports import NotificationTransport, redact_destination

logger = logging.getLogger(__name__)


class Notifier:
    """Sends one message to several destinations with per-destination retries.

    Destinations are delivered concurrently and independently: a failure
    on one never delays or prevents delivery to another. Only transient
    errors are retried; permanent ones end that destination's attempts.
    """

    def __init__(
        self,
        transport: NotificationTransport,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize Notifier.

        Args:
            transport: Transport used for every delivery attempt
            retry_policy: Default retry policy (default: RetryPolicy())
            sleep: Coroutine used to wait between attempts
        """
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def notify(
        self,
        message: str,
        destinations: Iterable[str],
        retry_policy: RetryPolicy | None = None,
    ) -> DeliveryOutcome:
        """Deliver ``message`` to every destination.

        Cancellation propagates at the next suspension point (an attempt in
        progress or the wait between attempts).

        Args:
            message: Rendered message body
            destinations: Destination URLs
            retry_policy: Override for the default retry policy

        Returns:
            DeliveryOutcome listing delivered destinations and per-destination errors
        """
        policy = retry_policy or self.retry_policy
        targets = sorted(set(destinations))
        outcome = DeliveryOutcome()
        if not targets:
            return outcome

        results = await asyncio.gather(
            *[self._deliver(message, destination, policy) for destination in targets]
        )

        for destination, attempts, error in results:
            outcome.attempts[destination] = attempts
            if error is None:
                outcome.delivered.append(destination)
            else:
                outcome.errors[destination] = error
        return outcome

    async def notify_job(
        self, job: NotificationJob, retry_policy: RetryPolicy | None = None
    ) -> DeliveryOutcome:
        """Deliver a NotificationJob, recording the attempts it used."""
        outcome = await self.notify(job.message, job.destinations, retry_policy)
        job.attempt_count = sum(outcome.attempts.values())
        return outcome

    async def _deliver(
        self, message: str, destination: str, policy: RetryPolicy
    ) -> tuple[str, int, str | None]:
        """Deliver to one destination, retrying transient failures.

        Returns:
            Tuple of (destination, attempts used, error message or None)
        """
        backoff = Backoff(policy)
        shown = redact_destination(destination)
        last_error: NotifyError | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                await self.transport.send(message, destination)
                if attempt > 1:
                    logger.info(f"Delivered to {shown} on attempt {attempt}")
                else:
                    logger.debug(f"Delivered to {shown}")
                return destination, attempt, None
            except NotifyError as e:
                last_error = e
            except Exception as e:
                # A transport bug must not take down the other destinations
                logger.exception(f"Unexpected error delivering to {shown}")
                last_error = NotifyPermanent(destination, f"{type(e).__name__}: {e}")

            if not last_error.transient:
                logger.warning(
                    f"Permanent delivery failure for {shown} ({last_error.kind}): {last_error}"
                )
                return destination, attempt, f"{last_error.kind}: {last_error}"

            if attempt >= policy.max_attempts:
                break

            delay = backoff.delay(attempt)
            logger.info(
                f"Retry {attempt}/{policy.max_attempts - 1} for {shown} "
                f"after {delay:.1f}s ({last_error.kind}: {last_error})"
            )
            await self._sleep(delay)

        logger.warning(f"Max attempts ({policy.max_attempts}) reached for {shown}: {last_error}")
        return destination, policy.max_attempts, f"{last_error.kind}: {last_error}"
