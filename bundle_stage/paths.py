"""Pure path planning for staging runs.

Nothing in this module touches the filesystem; every function derives its
result from a :class:`~bundle_stage.config.PackagingConfig` alone.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .config import PackagingConfig

__all__ = [
    "final_basename",
    "final_path",
    "staging_path",
    "temp_root",
]


def final_basename(config: PackagingConfig) -> str:
    """Return the bundle directory name (e.g. ``"demo-linux-x64"``)."""
    return f"{config.name}-{config.platform}-{config.arch}"


def final_path(config: PackagingConfig) -> Path:
    """Return the directory the finished bundle ends up in."""
    return config.out_dir / final_basename(config)


def temp_root(config: PackagingConfig) -> Path:
    """Return the root directory shared by temporary staging runs."""
    return config.temp_root


def staging_path(config: PackagingConfig) -> Path:
    """Return the directory the bundle is assembled in.

    Parameters
    ----------
    config : PackagingConfig
        Configuration of the packaging run.

    Returns
    -------
    Path
        :func:`final_path` when ``config.use_tmpdir`` is ``False``; otherwise
        ``<temp root>/<platform>-<arch>/<final basename>`` so that runs for
        different targets never share a staging directory.
    """
    if not config.use_tmpdir:
        return final_path(config)
    return (
        temp_root(config)
        / f"{config.platform}-{config.arch}"
        / final_basename(config)
    )
