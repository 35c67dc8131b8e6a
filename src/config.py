"""Configuration loading.

The configuration is a JSON document validated by ``SchedulerConfig``. Any
problem reading or validating it raises ``ConfigInvalid``; the CLI turns
that into a non-zero exit before scheduling starts.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from src.errors import ConfigInvalid
from src.models.model_config import SchedulerConfig, TargetConfig
from src.models.model_target import Target

logger = logging.getLogger(__name__)


def load_config(path: Path | str) -> SchedulerConfig:
    """Load and validate a JSON configuration file.

    Args:
        path: Path to the configuration file

    Returns:
        Validated SchedulerConfig

    Raises:
        ConfigInvalid: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigInvalid(f"cannot read config file {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigInvalid(f"config file {path} is not valid JSON: {e}") from e

    return parse_config(data, source=str(path))


def parse_config(data: object, source: str = "<config>") -> SchedulerConfig:
    """Validate an already-decoded configuration document."""
    if not isinstance(data, dict):
        raise ConfigInvalid(f"{source}: top-level value must be an object")
    try:
        config = SchedulerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigInvalid(f"{source}: {_format_validation_error(e)}") from e

    logger.debug(f"Loaded configuration from {source} ({len(config.targets)} targets)")
    return config


def config_from_options(
    images: list[str],
    notify_urls: list[str],
    interval_seconds: float | None = None,
    threshold: str | None = None,
    template: str | None = None,
    template_dir: Path | None = None,
    discover_running: bool = False,
    schedule: str | None = None,
) -> SchedulerConfig:
    """Build a configuration from command-line options instead of a file.

    Every image becomes a target whose id is the image reference; all
    targets share the given notification URLs.
    """
    data: dict = {
        "targets": [{"image": image} for image in images],
        "default_destinations": notify_urls,
        "discover_running": discover_running,
    }
    if interval_seconds is not None:
        data["default_interval_seconds"] = interval_seconds
    if threshold is not None:
        data["default_severity_threshold"] = threshold.upper()
    if template is not None:
        data["default_template"] = template
    if template_dir is not None:
        data["template_dir"] = str(template_dir)
    if schedule is not None:
        data["default_schedule"] = schedule
    return parse_config(data, source="command line")


def build_target(entry: TargetConfig, config: SchedulerConfig) -> Target:
    """Apply global defaults to one target entry.

    An entry's own ``schedule`` or ``interval_seconds`` wins over
    ``default_schedule``; the default schedule only applies to entries that
    set neither.
    """
    schedule = entry.schedule
    if schedule is None and entry.interval_seconds is None:
        schedule = config.default_schedule
    destinations = entry.destinations if entry.destinations else config.default_destinations
    return Target(
        id=entry.target_id,
        image=entry.image,
        interval_seconds=entry.interval_seconds or config.default_interval_seconds,
        severity_threshold=entry.severity_threshold or config.default_severity_threshold,
        destinations=frozenset(destinations),
        template=entry.template or config.default_template,
        schedule=schedule,
    )


def build_targets(config: SchedulerConfig) -> list[Target]:
    """Build immutable Target values for every configured target, in file order."""
    try:
        return [build_target(entry, config) for entry in config.targets]
    except ValidationError as e:
        raise ConfigInvalid(_format_validation_error(e)) from e


def target_for_image(image: str, config: SchedulerConfig) -> Target:
    """Build a Target for an image found by container discovery."""
    return Target(
        id=image,
        image=image,
        interval_seconds=config.default_interval_seconds,
        severity_threshold=config.default_severity_threshold,
        destinations=frozenset(config.default_destinations),
        template=config.default_template,
        schedule=config.default_schedule,
    )


def _format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)
