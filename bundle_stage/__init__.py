"""Public interface for the bundle staging package."""

from .archive import Archiver, ZipArchiver
from .config import ArchiveOptions, PackagingConfig, load_config
from .errors import (
    ArchiveError,
    ArchiveFailed,
    CopyFailed,
    HookFailed,
    PhaseError,
    PruneError,
    PruneFailed,
    RelocateFailed,
    RenameFailed,
    StageError,
    StaleCleanupFailed,
    StagingMoveFailed,
)
from .filters import IgnoreFilter, ResourceFilter
from .hooks import Hook, HookInvocation, run_hooks
from .naming import BinaryNaming, naming_for
from .pruning import CommandPruner, DependencyPruner, ManifestPruner
from .staging import Phase, StagingContext, StagingPipeline, package_app

__all__ = [
    "ArchiveError",
    "ArchiveFailed",
    "ArchiveOptions",
    "Archiver",
    "BinaryNaming",
    "CommandPruner",
    "CopyFailed",
    "DependencyPruner",
    "Hook",
    "HookFailed",
    "HookInvocation",
    "IgnoreFilter",
    "ManifestPruner",
    "PackagingConfig",
    "Phase",
    "PhaseError",
    "PruneError",
    "PruneFailed",
    "RelocateFailed",
    "RenameFailed",
    "ResourceFilter",
    "StageError",
    "StagingContext",
    "StagingMoveFailed",
    "StagingPipeline",
    "StaleCleanupFailed",
    "ZipArchiver",
    "load_config",
    "naming_for",
    "package_app",
    "run_hooks",
]
