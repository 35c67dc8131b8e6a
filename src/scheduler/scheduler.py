"""Periodic scan scheduling: timers, cycles, fan-out and failure isolation.

Each target has its own timer task, ticking on a fixed interval or on the
fire times of a cron expression. On every tick the scheduler launches one
cycle task for that target:

    scan -> dedup -> (render -> notify -> commit)?

A per-target busy flag prevents a target's cycles from overlapping: a tick
that arrives while the previous cycle is still running is dropped, never
queued. Targets share nothing but the deduplicator, whose partitions are
per target.
"""

import asyncio
import functools
import logging
import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from apscheduler.triggers.cron import CronTrigger

from src.errors import RenderError, ScanError
from src.models.model_notify import DeliveryStatus, NotificationJob, RetryPolicy
from src.models.model_scanner import ScanResult
from src.models.model_target import Target
from src.notifier.notifier import Notifier
from src.notifier.transports import redact_destination
from src.reporting.renderer import ReportRenderer
from src.scanner.deduplicator import FindingDeduplicator
from src.scheduler.events import CycleOutcome, CycleStatus
from src.targets.registry import TargetNotFound, TargetRegistry

logger = logging.getLogger(__name__)

CycleListener = Callable[[CycleOutcome], None]


def next_cron_fire(
    trigger: CronTrigger, now: datetime, previous: datetime | None = None
) -> datetime:
    """Return the next fire time of ``trigger`` at or after ``now``.

    ``previous`` is the last fire time; the result is always at least one
    second later, so a timer that wakes slightly early never fires twice.
    Missed fire times are skipped, not replayed.
    """
    if previous is not None:
        now = max(now, previous + timedelta(seconds=1))
    return trigger.get_next_fire_time(None, now)


def _cadence(target: Target) -> tuple[float, str | None]:
    return target.interval_seconds, target.schedule


class Scanner(Protocol):
    """Anything that can scan a target (TrivyScanner, or a fake in tests)."""

    async def scan(self, target: Target, timeout: float | None = None) -> ScanResult: ...


class ScanScheduler:
    """Runs scan cycles for every target on its own interval or cron schedule."""

    def __init__(
        self,
        registry: TargetRegistry,
        scanner: Scanner,
        deduplicator: FindingDeduplicator,
        renderer: ReportRenderer,
        notifier: Notifier,
        scan_timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        commit_on_partial_delivery: bool = True,
        commit_on_failed_delivery: bool = False,
        scan_on_start: bool = True,
    ):
        """Initialize ScanScheduler.

        Args:
            registry: Initial target snapshot
            scanner: Scanner adapter
            deduplicator: Per-target dedup state
            renderer: Report renderer
            notifier: Notifier adapter
            scan_timeout: Per-scan timeout in seconds (default: the scanner's own)
            retry_policy: Notification retry policy (default: the notifier's own)
            commit_on_partial_delivery: Commit findings when only some
                destinations accepted the report (default: True)
            commit_on_failed_delivery: Commit findings when no destination
                accepted the report (default: False)
            scan_on_start: Tick each target immediately when its timer starts
        """
        self._registry = registry
        self.scanner = scanner
        self.deduplicator = deduplicator
        self.renderer = renderer
        self.notifier = notifier
        self.scan_timeout = scan_timeout
        self.retry_policy = retry_policy
        self.commit_on_partial_delivery = commit_on_partial_delivery
        self.commit_on_failed_delivery = commit_on_failed_delivery
        self.scan_on_start = scan_on_start

        self._busy: set[str] = set()
        self._cycles: dict[str, asyncio.Task] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._timer_cadence: dict[str, tuple[float, str | None]] = {}
        self._listeners: list[CycleListener] = []
        self._running = False
        self.stats: Counter[CycleStatus] = Counter()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    def reload(self, registry: TargetRegistry) -> None:
        """Replace the target snapshot.

        In-flight cycles keep the Target they started with. When running,
        timers of removed targets stop, new targets get a timer, and targets
        whose interval or schedule changed get their timer restarted.
        """
        old_ids = set(self._registry.ids())
        self._registry = registry
        new_ids = set(registry.ids())
        logger.info(
            f"Reloaded targets: {len(new_ids)} total, "
            f"{len(new_ids - old_ids)} added, {len(old_ids - new_ids)} removed"
        )

        if not self._running:
            return

        for target_id in list(self._timers):
            if target_id not in new_ids:
                self._stop_timer(target_id)

        for target in registry.list():
            current = self._timer_cadence.get(target.id)
            if current is None:
                self._start_timer(target, immediate=self.scan_on_start)
            elif current != _cadence(target):
                self._stop_timer(target.id)
                self._start_timer(target, immediate=False)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: CycleListener) -> None:
        """Register a callback invoked with every CycleOutcome."""
        self._listeners.append(listener)

    def _emit(self, outcome: CycleOutcome) -> None:
        self.stats[outcome.status] += 1
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.exception(f"Cycle listener failed for {outcome.target_id}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start one timer task per target. Must be called inside a running loop."""
        if self._running:
            return
        self._running = True
        for target in self._registry.list():
            self._start_timer(target, immediate=self.scan_on_start)
        logger.info(f"Scheduler started with {len(self._timers)} targets")

    async def stop(self) -> None:
        """Cancel timers and in-flight cycles, and wait for them to finish.

        Interrupted cycles do not commit dedup state; their findings are
        reported again by the next successful cycle.
        """
        self._running = False
        tasks = list(self._timers.values()) + list(self._cycles.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._timer_cadence.clear()
        logger.info("Scheduler stopped")

    def _start_timer(self, target: Target, immediate: bool) -> None:
        if target.schedule:
            loop = self._cron_loop(target.id, target.schedule, immediate)
            cadence = f"cron '{target.schedule}'"
        else:
            loop = self._timer_loop(target.id, target.interval_seconds, immediate)
            cadence = f"every {target.interval_seconds}s"
        self._timers[target.id] = asyncio.create_task(loop, name=f"timer:{target.id}")
        self._timer_cadence[target.id] = _cadence(target)
        logger.debug(f"Timer started for {target.id} ({cadence})")

    def _stop_timer(self, target_id: str) -> None:
        task = self._timers.pop(target_id, None)
        self._timer_cadence.pop(target_id, None)
        if task is not None:
            task.cancel()
            logger.debug(f"Timer stopped for {target_id}")

    async def _timer_loop(self, target_id: str, interval: float, immediate: bool) -> None:
        if immediate:
            self.trigger(target_id)
        while True:
            await asyncio.sleep(interval)
            self.trigger(target_id)

    async def _cron_loop(self, target_id: str, schedule: str, immediate: bool) -> None:
        trigger = CronTrigger.from_crontab(schedule)
        if immediate:
            self.trigger(target_id)
        previous = None
        while True:
            now = datetime.now(trigger.timezone)
            fire_at = next_cron_fire(trigger, now, previous)
            logger.debug(f"{target_id}: next tick at {fire_at.isoformat()}")
            await asyncio.sleep(max((fire_at - now).total_seconds(), 0))
            previous = fire_at
            self.trigger(target_id)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def is_busy(self, target_id: str) -> bool:
        return target_id in self._busy

    def trigger(self, target_id: str) -> asyncio.Task | None:
        """Start a cycle for ``target_id`` unless one is already running.

        Used by the timers and for manual triggers.

        Returns:
            The cycle task, or None if the tick was dropped or the target is unknown
        """
        try:
            target = self._registry.get(target_id)
        except TargetNotFound:
            logger.warning(f"Ignoring tick for unknown target {target_id}")
            return None

        if target_id in self._busy:
            logger.warning(f"{target_id}: previous cycle still running, tick dropped")
            self._emit(CycleOutcome(target_id=target_id, status=CycleStatus.DROPPED))
            return None

        self._busy.add(target_id)
        task = asyncio.create_task(self._run_guarded(target), name=f"cycle:{target_id}")
        self._cycles[target_id] = task
        task.add_done_callback(
            functools.partial(self._cycle_done, target_id, datetime.now(UTC), time.monotonic())
        )
        return task

    def _cycle_done(
        self, target_id: str, started_at: datetime, start: float, task: asyncio.Task
    ) -> None:
        """Return the target to idle once its cycle task has finished.

        Runs for every cycle, including tasks cancelled before their first
        step, whose body never executes.
        """
        if self._cycles.get(target_id) is task:
            del self._cycles[target_id]
            self._busy.discard(target_id)
        if task.cancelled():
            logger.info(f"{target_id}: cycle cancelled, nothing committed")
            self._emit(
                CycleOutcome(
                    target_id=target_id,
                    status=CycleStatus.CANCELLED,
                    started_at=started_at,
                    duration_seconds=time.monotonic() - start,
                )
            )

    async def run_once(self) -> list[CycleOutcome]:
        """Run one cycle for every target concurrently and return the outcomes."""
        outcomes: list[CycleOutcome] = []
        tasks = []
        for target in self._registry.list():
            task = self.trigger(target.id)
            if task is None:
                outcomes.append(CycleOutcome(target_id=target.id, status=CycleStatus.DROPPED))
            else:
                tasks.append(task)
        outcomes.extend(await asyncio.gather(*tasks))
        return outcomes

    async def _run_guarded(self, target: Target) -> CycleOutcome:
        """Run a cycle, converting every failure except cancellation into an outcome."""
        started_at = datetime.now(UTC)
        start = time.monotonic()
        try:
            outcome = await self._run_cycle(target, started_at)
        except Exception as e:
            logger.exception(f"{target.id}: unexpected error in cycle")
            outcome = CycleOutcome(
                target_id=target.id,
                status=CycleStatus.ERROR,
                error_kind="unexpected",
                error=f"{type(e).__name__}: {e}",
                started_at=started_at,
            )

        outcome.duration_seconds = time.monotonic() - start
        self._emit(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self, target: Target, started_at: datetime) -> CycleOutcome:
        """Scan, dedup, render, notify and commit for one target."""
        # Scanning
        logger.info(f"{target.id}: scanning {target.image}")
        try:
            result = await self.scanner.scan(target, timeout=self.scan_timeout)
        except ScanError as e:
            logger.error(f"{target.id}: scan failed ({e.kind}): {e}")
            return CycleOutcome(
                target_id=target.id,
                status=CycleStatus.SCAN_FAILED,
                error_kind=e.kind,
                error=str(e),
                started_at=started_at,
            )

        delta = self.deduplicator.delta(target.id, result)
        if not delta:
            logger.info(f"{target.id}: no new findings ({len(result.findings)} known)")
            return CycleOutcome(
                target_id=target.id, status=CycleStatus.NO_CHANGES, started_at=started_at
            )

        if not any(f.severity.meets(target.severity_threshold) for f in delta):
            logger.info(
                f"{target.id}: {len(delta)} new findings, none at or above "
                f"{target.severity_threshold.value}; not notifying"
            )
            return CycleOutcome(
                target_id=target.id,
                status=CycleStatus.BELOW_THRESHOLD,
                new_findings=len(delta),
                started_at=started_at,
            )

        # Rendering
        try:
            message = self.renderer.render(target.template, target, delta, result.scanned_at)
        except RenderError as e:
            logger.error(f"{target.id}: render failed ({e.kind}): {e}")
            return CycleOutcome(
                target_id=target.id,
                status=CycleStatus.RENDER_FAILED,
                new_findings=len(delta),
                error_kind=e.kind,
                error=str(e),
                started_at=started_at,
            )

        # Notifying
        job = NotificationJob(
            target_id=target.id, message=message, destinations=target.destinations
        )
        logger.info(
            f"{target.id}: {len(delta)} new findings, "
            f"notifying {len(job.destinations)} destination(s)"
        )
        delivery = await self.notifier.notify_job(job, self.retry_policy)
        errors = {redact_destination(d): err for d, err in delivery.errors.items()}

        if delivery.status == DeliveryStatus.DELIVERED:
            status = CycleStatus.NOTIFIED
            should_commit = True
            logger.info(f"{target.id}: report delivered to all destinations")
        elif delivery.status == DeliveryStatus.PARTIAL:
            status = CycleStatus.PARTIALLY_NOTIFIED
            should_commit = self.commit_on_partial_delivery
            logger.warning(
                f"{target.id}: report delivered to {len(delivery.delivered)} of "
                f"{len(job.destinations)} destinations; failed: {errors}"
            )
        else:
            status = CycleStatus.NOTIFY_FAILED
            should_commit = self.commit_on_failed_delivery
            logger.error(f"{target.id}: report delivery failed for every destination: {errors}")

        committed = self.deduplicator.commit(target.id, delta) if should_commit else 0
        if not should_commit:
            logger.info(f"{target.id}: findings not committed, will be reported again")

        return CycleOutcome(
            target_id=target.id,
            status=status,
            new_findings=len(delta),
            committed=committed,
            error_kind="notify" if errors else None,
            error="; ".join(f"{d}: {err}" for d, err in errors.items()) or None,
            started_at=started_at,
            delivery_errors=errors,
        )
