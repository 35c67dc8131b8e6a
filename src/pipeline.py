"""Wiring of the scheduler from configuration.

This module coordinates startup and the service lifecycle:
1. Load configuration and build the target registry (plus discovered images)
2. Pre-load every target's template (a missing one is fatal at startup)
3. Build scanner, deduplicator, renderer, notifier and scheduler
4. Run either a single pass or until a shutdown signal
5. Reload targets on SIGHUP, all-or-nothing
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

from src.config import build_targets, load_config, target_for_image
from src.errors import ConfigInvalid, RenderError
from src.models.model_config import SchedulerConfig
from src.notifier.notifier import Notifier
from src.notifier.transports import (
    NotificationTransport,
    RoutingTransport,
    ShoutrrrTransport,
    WebhookTransport,
)
from src.reporting.renderer import ReportRenderer
from src.scanner.deduplicator import FindingDeduplicator
from src.scanner.trivy_scanner import TrivyScanner
from src.scheduler.events import CycleOutcome
from src.scheduler.scheduler import Scanner, ScanScheduler
from src.storage.cache.file_caching import FileCache
from src.storage.seen_findings import SeenFindingsStore
from src.targets.discovery import DockerImageDiscovery
from src.targets.registry import TargetRegistry

logger = logging.getLogger(__name__)


@dataclass
class SchedulerComponents:
    """Everything the service needs at runtime."""

    config: SchedulerConfig
    scheduler: ScanScheduler
    transport: NotificationTransport


async def build_registry(
    config: SchedulerConfig,
    discovery: DockerImageDiscovery | None = None,
) -> TargetRegistry:
    """Build the target registry from configuration, adding discovered images.

    Raises:
        ConfigInvalid: If the configured targets are invalid
    """
    registry = TargetRegistry(build_targets(config))
    if not config.discover_running:
        return registry

    discovery = discovery or DockerImageDiscovery()
    images = await discovery.discover()
    discovered = [target_for_image(image, config) for image in images]
    merged = registry.with_extra(discovered)
    logger.info(
        f"Targets: {len(registry)} configured, {len(merged) - len(registry)} discovered"
    )
    return merged


def check_templates(renderer: ReportRenderer, registry: TargetRegistry) -> None:
    """Pre-load every template referenced by the registry.

    Raises:
        ConfigInvalid: If a template is missing or does not compile
    """
    try:
        renderer.preload([target.template for target in registry.list()])
    except RenderError as e:
        raise ConfigInvalid(str(e)) from e


def build_scheduler(
    config: SchedulerConfig,
    registry: TargetRegistry,
    scanner: Scanner | None = None,
    transport: NotificationTransport | None = None,
) -> SchedulerComponents:
    """Build the scheduler and its collaborators from configuration.

    Args:
        config: Validated configuration
        registry: Initial target snapshot
        scanner: Scanner override (default: TrivyScanner from config)
        transport: Transport override (default: shoutrrr + webhook routing)

    Raises:
        ConfigInvalid: If a template referenced by a target is missing
    """
    renderer = ReportRenderer(config.template_dir)
    check_templates(renderer, registry)

    if scanner is None:
        scanner = TrivyScanner(
            trivy_path=config.trivy_path,
            timeout=config.scan_timeout_seconds,
            vulnerable_exit_code=config.vulnerable_exit_code,
            cache_dir=config.trivy_cache_dir,
        )

    if transport is None:
        transport = RoutingTransport(
            shoutrrr=ShoutrrrTransport(
                shoutrrr_path=config.shoutrrr_path,
                timeout=config.notify_timeout_seconds,
            ),
            webhook=WebhookTransport(timeout=config.notify_timeout_seconds),
        )

    store = None
    if config.state_dir is not None:
        store = SeenFindingsStore(FileCache(cache_dir=config.state_dir))
        logger.info(f"Persisting dedup state under {config.state_dir}")

    scheduler = ScanScheduler(
        registry=registry,
        scanner=scanner,
        deduplicator=FindingDeduplicator(store),
        renderer=renderer,
        notifier=Notifier(transport, config.retry),
        scan_timeout=config.scan_timeout_seconds,
        retry_policy=config.retry,
        commit_on_partial_delivery=config.commit_on_partial_delivery,
        commit_on_failed_delivery=config.commit_on_failed_delivery,
        scan_on_start=config.scan_on_start,
    )
    return SchedulerComponents(config=config, scheduler=scheduler, transport=transport)


async def reload_targets(scheduler: ScanScheduler, config_path: Path) -> bool:
    """Reload the target list from ``config_path``.

    All-or-nothing: if the file is invalid the current snapshot stays in
    place. Templates of new targets are not required to exist; a missing
    one fails that target's render step only. Global settings (timeouts,
    retry policy, paths) apply on restart.

    Returns:
        True if the new snapshot was installed
    """
    try:
        config = load_config(config_path)
        registry = await build_registry(config)
    except ConfigInvalid as e:
        logger.error(f"Reload rejected, keeping current targets: {e}")
        return False

    for target in registry.list():
        if not scheduler.renderer.has_template(target.template):
            logger.warning(f"{target.id}: template {target.template} not found")

    scheduler.reload(registry)
    return True


async def run_once(components: SchedulerComponents) -> list[CycleOutcome]:
    """Run one cycle for every target and return the outcomes."""
    try:
        return await components.scheduler.run_once()
    finally:
        await components.transport.close()


async def run_forever(
    components: SchedulerComponents,
    config_path: Path | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the scheduler until ``stop_event`` is set or SIGINT/SIGTERM arrives.

    SIGHUP reloads targets from ``config_path`` when one is given.
    """
    scheduler = components.scheduler
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    reloads: set[asyncio.Task] = set()

    def request_reload() -> None:
        if config_path is None:
            logger.warning("SIGHUP received but no config file to reload")
            return
        logger.info(f"SIGHUP received, reloading {config_path}")
        task = loop.create_task(reload_targets(scheduler, config_path))
        reloads.add(task)
        task.add_done_callback(reloads.discard)

    installed: list[signal.Signals] = []
    for sig, handler in (
        (signal.SIGINT, stop_event.set),
        (signal.SIGTERM, stop_event.set),
        (signal.SIGHUP, request_reload),
    ):
        try:
            loop.add_signal_handler(sig, handler)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError, AttributeError):
            logger.debug(f"Signal handler for {sig!r} not supported here")

    scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        for task in list(reloads):
            task.cancel()
        await scheduler.stop()
        await components.transport.close()
