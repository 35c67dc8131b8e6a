"""Scan targets: the registry snapshot and container-based discovery."""

from src.targets.discovery import DockerImageDiscovery
from src.targets.registry import TargetNotFound, TargetRegistry

__all__ = [
    "DockerImageDiscovery",
    "TargetNotFound",
    "TargetRegistry",
]
