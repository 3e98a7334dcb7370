"""Concurrent invocation of user-supplied hooks."""

from __future__ import annotations

import asyncio
import inspect
import logging
import typing as typ
from pathlib import Path

from .errors import HookFailed

if typ.TYPE_CHECKING:
    from .staging.phases import Phase

__all__ = ["Hook", "HookInvocation", "run_hooks"]

logger = logging.getLogger(__name__)

Hook = typ.Callable[[Path, str, str, str], object]


class HookInvocation(typ.NamedTuple):
    """Arguments passed to every hook, whatever the phase.

    Attributes
    ----------
    directory : Path
        Directory the hook acts upon (the copied application tree).
    runtime_version : str
        Version of the runtime template being packaged.
    platform : str
        Target platform identifier.
    arch : str
        Target architecture identifier.
    """

    directory: Path
    runtime_version: str
    platform: str
    arch: str


def _hook_name(hook: Hook) -> str:
    return getattr(hook, "__qualname__", None) or repr(hook)


async def _invoke(hook: Hook, invocation: HookInvocation) -> None:
    """Run ``hook`` to completion whether it is synchronous or asynchronous."""

    if inspect.iscoroutinefunction(hook):
        await hook(*invocation)
        return
    result = await asyncio.to_thread(hook, *invocation)
    if inspect.isawaitable(result):
        await result


async def run_hooks(
    hooks: typ.Sequence[Hook], invocation: HookInvocation, phase: Phase
) -> None:
    """Invoke ``hooks`` concurrently and wait for every one of them to settle.

    Parameters
    ----------
    hooks : Sequence[Hook]
        Hooks to run. Coroutine functions are awaited on the event loop; plain
        callables run in worker threads and may return an awaitable.
    invocation : HookInvocation
        Arguments passed to each hook.
    phase : Phase
        Pipeline state reported when a hook fails.

    Raises
    ------
    HookFailed
        Raised after all hooks finished when at least one of them raised. The
        first failing hook in declaration order is reported and its exception
        chained as ``__cause__``.
    """
    if not hooks:
        return

    logger.debug("Running %d hook(s) for %s", len(hooks), phase.label)
    results = await asyncio.gather(
        *(_invoke(hook, invocation) for hook in hooks), return_exceptions=True
    )
    for hook, result in zip(hooks, results, strict=True):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            message = f"Hook {_hook_name(hook)} failed: {result}"
            raise HookFailed(phase, message, hook) from result
