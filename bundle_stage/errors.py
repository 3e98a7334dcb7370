"""Error types shared across the bundle staging package."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from .staging.phases import Phase

__all__ = [
    "ArchiveError",
    "ArchiveFailed",
    "CopyFailed",
    "HookFailed",
    "PhaseError",
    "PruneError",
    "PruneFailed",
    "RelocateFailed",
    "RenameFailed",
    "StageError",
    "StaleCleanupFailed",
    "StagingMoveFailed",
]


class StageError(RuntimeError):
    """Raised when the staging pipeline cannot continue."""


class PhaseError(StageError):
    """Raised when a pipeline phase fails.

    Parameters
    ----------
    phase : Phase | None
        State the pipeline was entering when the failure happened. ``None``
        when the failing operation is not tied to a state transition.
    detail : str
        Human readable description of the failure.

    Notes
    -----
    The underlying exception is chained as ``__cause__`` so callers can
    inspect the original error.
    """

    def __init__(self, phase: Phase | None, detail: str) -> None:
        self.phase = phase
        self.detail = detail
        prefix = f"{phase.label}: " if phase is not None else ""
        super().__init__(f"{prefix}{detail}")


class StagingMoveFailed(PhaseError):
    """The runtime template could not be moved into the staging path."""


class CopyFailed(PhaseError):
    """The application tree or an extra resource could not be copied."""


class HookFailed(PhaseError):
    """A user-supplied hook raised while running."""

    def __init__(self, phase: Phase | None, detail: str, hook: object) -> None:
        self.hook = hook
        super().__init__(phase, detail)


class StaleCleanupFailed(PhaseError):
    """A stale ``default_app`` path existed but could not be removed."""


class PruneFailed(PhaseError):
    """The dependency pruner reported a failure."""


class ArchiveFailed(PhaseError):
    """The archiver reported a failure."""


class RelocateFailed(PhaseError):
    """The staging directory could not be moved to the final path."""


class RenameFailed(PhaseError):
    """The runtime binary could not be renamed."""


class PruneError(StageError):
    """Raised by dependency pruners when pruning cannot complete."""


class ArchiveError(StageError):
    """Raised by archivers when the archive cannot be written."""
