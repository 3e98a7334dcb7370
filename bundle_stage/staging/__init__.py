"""Staging pipeline package exposing the bundle assembly state machine."""

from .context import StagingContext
from .phases import Phase
from .pipeline import STALE_DEFAULT_APP_NAMES, StagingPipeline, package_app

__all__ = [
    "Phase",
    "STALE_DEFAULT_APP_NAMES",
    "StagingContext",
    "StagingPipeline",
    "package_app",
]
