"""CLI interface for the vulnerability scan scheduler."""

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from src.config import build_targets, config_from_options, load_config
from src.consts import LOG_FORMAT
from src.errors import ConfigInvalid, RenderError, ScanError
from src.models.model_config import SchedulerConfig
from src.models.model_scanner import finding_sort_key
from src.pipeline import build_registry, build_scheduler, check_templates, run_forever, run_once
from src.reporting.renderer import ReportRenderer
from src.scanner.deduplicator import FindingDeduplicator
from src.scanner.trivy_scanner import TrivyScanner
from src.scheduler.events import CycleOutcome, CycleStatus
from src.storage.cache.file_caching import FileCache
from src.storage.seen_findings import SeenFindingsStore
from src.targets.registry import TargetNotFound, TargetRegistry

app = typer.Typer(
    name="trivy-scheduler",
    help="Periodically scan container images with Trivy and report new vulnerabilities",
)

console = Console()

EXIT_CONFIG_INVALID = 2
EXIT_SCANNER_MISSING = 1

_STATUS_STYLES = {
    CycleStatus.NO_CHANGES: "green",
    CycleStatus.BELOW_THRESHOLD: "green",
    CycleStatus.NOTIFIED: "cyan",
    CycleStatus.PARTIALLY_NOTIFIED: "yellow",
    CycleStatus.DROPPED: "yellow",
    CycleStatus.CANCELLED: "yellow",
}


def _configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        console.print(f"[red]Error:[/red] Invalid log level '{log_level}'")
        raise typer.Exit(EXIT_CONFIG_INVALID)
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _truncate(text: str, max_len: int = 60) -> str:
    """Truncate text with ellipsis."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _config_error(error: ConfigInvalid) -> typer.Exit:
    console.print(f"[red]Invalid configuration:[/red] {error}")
    return typer.Exit(EXIT_CONFIG_INVALID)


def _resolve_config(
    config_path: Path | None,
    images: list[str] | None,
    notify_urls: list[str] | None,
    interval: float | None,
    threshold: str | None,
    template: str | None,
    template_dir: Path | None,
    discover: bool,
    schedule: str | None = None,
) -> SchedulerConfig:
    """Load the config file, or build one from command-line options.

    Raises:
        ConfigInvalid: If neither source is usable
    """
    if config_path is not None:
        if images:
            raise ConfigInvalid("--image cannot be combined with --config")
        if schedule:
            raise ConfigInvalid(
                "--schedule cannot be combined with --config; set schedule in the file"
            )
        config = load_config(config_path)
        if discover and not config.discover_running:
            config = config.model_copy(update={"discover_running": True})
        return config

    if not images and not discover:
        raise ConfigInvalid("either --config or at least one --image is required")
    return config_from_options(
        images=images or [],
        notify_urls=notify_urls or [],
        interval_seconds=interval,
        threshold=threshold,
        template=template,
        template_dir=template_dir,
        discover_running=discover,
        schedule=schedule,
    )


def _print_targets(registry: TargetRegistry) -> None:
    table = Table(title=f"Targets ({len(registry)})")
    table.add_column("ID", style="cyan")
    table.add_column("Image", style="white")
    table.add_column("Cadence", justify="right", style="magenta")
    table.add_column("Threshold", justify="center")
    table.add_column("Destinations", justify="right")
    table.add_column("Template", style="dim")

    for target in registry.list():
        table.add_row(
            _truncate(target.id, 40),
            _truncate(target.image, 50),
            f"cron {target.schedule}" if target.schedule else f"{target.interval_seconds:g}s",
            target.severity_threshold.value,
            str(len(target.destinations)),
            target.template,
        )

    console.print(table)


def _print_outcomes(outcomes: list[CycleOutcome]) -> None:
    table = Table(title="Scan Summary")
    table.add_column("Target", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("New", justify="right", style="magenta")
    table.add_column("Committed", justify="right")
    table.add_column("Duration", justify="right", style="dim")
    table.add_column("Error", style="dim")

    for outcome in sorted(outcomes, key=lambda o: o.target_id):
        style = _STATUS_STYLES.get(outcome.status, "red")
        table.add_row(
            _truncate(outcome.target_id, 40),
            f"[{style}]{outcome.status.value}[/{style}]",
            str(outcome.new_findings),
            str(outcome.committed),
            f"{outcome.duration_seconds:.1f}s",
            _truncate(outcome.error or "-", 60),
        )

    console.print(table)


def _print_trivy_missing(trivy_path: str) -> None:
    console.print(f"[red]Error: Trivy not found ({trivy_path})[/red]")
    console.print(
        "\nInstall Trivy from: "
        "https://aquasecurity.github.io/trivy/latest/getting-started/installation/"
    )
    console.print("\nQuick install:")
    console.print("  macOS:   brew install trivy")
    console.print(
        "  Linux:   curl -sfL https://raw.githubusercontent.com/aquasecurity/trivy/main/"
        "contrib/install.sh | sh -s -- -b /usr/local/bin"
    )


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="JSON configuration file"),
    images: list[str] = typer.Option(None, "--image", "-i", help="Image to scan (repeatable)"),
    notify_urls: list[str] = typer.Option(
        None, "--notify-url", "-n", help="Notification URL (repeatable)"
    ),
    interval: float = typer.Option(None, "--interval", help="Scan interval in seconds"),
    schedule: str = typer.Option(
        None, "--schedule", "-s", help="Crontab expression for scans (overrides --interval)"
    ),
    threshold: str = typer.Option(
        None, "--threshold", help="Minimum severity to notify (LOW, MEDIUM, HIGH, CRITICAL)"
    ),
    template: str = typer.Option(None, "--template", help="Notification template name"),
    template_dir: Path = typer.Option(None, "--template-dir", help="Extra template directory"),
    discover: bool = typer.Option(
        False, "--discover", help="Also scan images of running containers"
    ),
    once: bool = typer.Option(False, "--once", help="Run a single pass and exit"),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
) -> None:
    """Scan targets on their schedules and notify about new vulnerabilities."""
    _configure_logging(log_level)

    try:
        config = _resolve_config(
            config_path,
            images,
            notify_urls,
            interval,
            threshold,
            template,
            template_dir,
            discover,
            schedule,
        )
    except ConfigInvalid as e:
        raise _config_error(e)

    scanner = TrivyScanner(
        trivy_path=config.trivy_path,
        timeout=config.scan_timeout_seconds,
        vulnerable_exit_code=config.vulnerable_exit_code,
        cache_dir=config.trivy_cache_dir,
    )
    if not scanner.is_trivy_installed():
        _print_trivy_missing(config.trivy_path)
        raise typer.Exit(EXIT_SCANNER_MISSING)

    async def _main() -> list[CycleOutcome] | None:
        registry = await build_registry(config)
        components = build_scheduler(config, registry, scanner=scanner)
        if once:
            return await run_once(components)
        console.print(f"[bold]Scheduling {len(registry)} targets[/bold] (Ctrl+C to stop)")
        await run_forever(components, config_path=config_path)
        return None

    try:
        outcomes = asyncio.run(_main())
    except ConfigInvalid as e:
        raise _config_error(e)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return

    if outcomes is not None:
        _print_outcomes(outcomes)


@app.command()
def validate(
    config_path: Path = typer.Option(..., "--config", "-c", help="JSON configuration file"),
) -> None:
    """Validate a configuration file and its templates."""
    try:
        config = load_config(config_path)
        registry = TargetRegistry(build_targets(config))
        check_templates(ReportRenderer(config.template_dir), registry)
    except ConfigInvalid as e:
        raise _config_error(e)

    _print_targets(registry)
    if config.discover_running:
        console.print("[dim]Images of running containers are added at startup.[/dim]")
    console.print("[green]Configuration is valid[/green]")


@app.command()
def render(
    config_path: Path = typer.Option(..., "--config", "-c", help="JSON configuration file"),
    target_id: str = typer.Option(..., "--target", "-t", help="Target id"),
    findings_path: Path = typer.Option(
        ..., "--findings", "-f", help="Stored Trivy JSON report (trivy image --format json)"
    ),
) -> None:
    """Preview a target's notification for a stored Trivy report. Sends nothing."""
    try:
        config = load_config(config_path)
        registry = TargetRegistry(build_targets(config))
    except ConfigInvalid as e:
        raise _config_error(e)

    try:
        target = registry.get(target_id)
    except TargetNotFound:
        console.print(f"[red]Error:[/red] Unknown target '{target_id}'")
        raise typer.Exit(1)

    try:
        raw = findings_path.read_bytes()
    except OSError as e:
        console.print(f"[red]Error reading findings:[/red] {e}")
        raise typer.Exit(1)

    try:
        findings = TrivyScanner().parse_report(target.image, raw)
        message = ReportRenderer(config.template_dir).render(
            target.template,
            target,
            sorted(findings, key=finding_sort_key),
            datetime.now(UTC),
        )
    except (ScanError, RenderError) as e:
        console.print(f"[red]Error ({e.kind}):[/red] {e}")
        raise typer.Exit(1)

    console.print(message, markup=False, highlight=False, end="")


@app.command()
def state(
    config_path: Path = typer.Option(..., "--config", "-c", help="JSON configuration file"),
    reset: str = typer.Option(
        None, "--reset", help="Forget the notified findings of this target id"
    ),
    reset_all: bool = typer.Option(False, "--reset-all", help="Forget every target's findings"),
) -> None:
    """Show or reset the persisted record of already-notified findings."""
    try:
        config = load_config(config_path)
    except ConfigInvalid as e:
        raise _config_error(e)

    if config.state_dir is None:
        console.print("[yellow]No state_dir configured; dedup state is in memory only[/yellow]")
        raise typer.Exit(1)

    store = SeenFindingsStore(FileCache(cache_dir=config.state_dir))
    if reset or reset_all:
        target_id = None if reset_all else reset
        FindingDeduplicator(store).reset(target_id)
        console.print(f"[green]Reset dedup state for {target_id or 'all targets'}[/green]")
        return

    target_ids = store.target_ids()
    if not target_ids:
        console.print(f"[dim]No persisted state under {config.state_dir}[/dim]")
        return

    table = Table(title=f"Notified Findings ({len(target_ids)} targets)")
    table.add_column("Target", style="cyan")
    table.add_column("Findings", justify="right", style="magenta")
    for target_id in sorted(target_ids):
        table.add_row(_truncate(target_id, 60), str(len(store.load(target_id))))
    console.print(table)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
