"""Ordered states of a staging run."""

from __future__ import annotations

import enum

__all__ = ["Phase"]


class Phase(enum.IntEnum):
    """States a :class:`~bundle_stage.staging.pipeline.StagingPipeline` moves through.

    Members are ordered; a run advances one member at a time and never
    revisits an earlier state.

    Examples
    --------
    >>> Phase.START.next() is Phase.TEMPLATE_MOVED
    True
    >>> Phase.PRE_HOOKS_DONE.label
    'PreHooksDone'
    """

    START = 0
    TEMPLATE_MOVED = 1
    APP_COPIED = 2
    PRE_HOOKS_DONE = 3
    STALE_DEFAULT_APP_REMOVED = 4
    PRUNED = 5
    POST_PRUNE_HOOKS_DONE = 6
    ARCHIVED = 7
    RELOCATED = 8
    DONE = 9

    @property
    def label(self) -> str:
        """Return the CamelCase state name used in messages."""
        return "".join(part.capitalize() for part in self.name.split("_"))

    def next(self) -> Phase:
        """Return the state following this one."""
        if self is Phase.DONE:
            message = "Phase.DONE has no successor"
            raise ValueError(message)
        return Phase(self.value + 1)
