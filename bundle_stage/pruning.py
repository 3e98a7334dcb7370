"""Dependency pruners removing development packages from a copied app tree."""

from __future__ import annotations

import asyncio
import collections
import json
import logging
import shutil
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands import CommandNotFound, ProcessExecutionError

from .errors import PruneError

__all__ = ["CommandPruner", "DependencyPruner", "ManifestPruner"]

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
MODULES_DIR = "node_modules"
PRODUCTION_SECTIONS = ("dependencies", "optionalDependencies")


class DependencyPruner(typ.Protocol):
    """Remove non-production dependencies from ``app_dir`` in place."""

    async def prune(self, app_dir: Path) -> None: ...


def _read_manifest(path: Path) -> dict[str, typ.Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        message = f"Cannot read package manifest {path}: {exc}"
        raise PruneError(message) from exc
    if not isinstance(data, dict):
        message = f"Package manifest {path} must contain a JSON object"
        raise PruneError(message)
    return data


def _production_names(manifest: dict[str, typ.Any]) -> list[str]:
    names: list[str] = []
    for section in PRODUCTION_SECTIONS:
        entries = manifest.get(section) or {}
        if isinstance(entries, dict):
            names.extend(entries)
    return names


class ManifestPruner:
    """Keep only packages reachable from the production dependency graph.

    The application's ``package.json`` lists the roots (``dependencies`` and
    ``optionalDependencies``). Each name is resolved the way Node does, from
    the requiring package's own ``node_modules`` upwards to the application
    root, and the resolved package's manifest is followed in turn. Every
    package directory under a ``node_modules`` tree that was never reached is
    deleted. Entries starting with ``.`` (``.bin``, ``.package-lock.json``)
    are left alone.

    Examples
    --------
    >>> import asyncio  # doctest: +SKIP
    >>> asyncio.run(ManifestPruner().prune(Path("build/resources/app")))  # doctest: +SKIP
    """

    async def prune(self, app_dir: Path) -> None:
        await asyncio.to_thread(self.prune_sync, Path(app_dir))

    def prune_sync(self, app_dir: Path) -> None:
        """Synchronous implementation of :meth:`prune`."""

        manifest_path = app_dir / MANIFEST_NAME
        if not manifest_path.is_file():
            logger.debug("No %s in %s; nothing to prune", MANIFEST_NAME, app_dir)
            return

        kept = self._walk_production(app_dir, _read_manifest(manifest_path))
        removed = self._remove_unreached(app_dir / MODULES_DIR, kept)
        logger.info(
            "Pruned %d package(s), kept %d in %s", removed, len(kept), app_dir
        )

    def _walk_production(
        self, app_dir: Path, manifest: dict[str, typ.Any]
    ) -> set[Path]:
        kept: set[Path] = set()
        pending = collections.deque(
            (app_dir, name) for name in _production_names(manifest)
        )
        while pending:
            requirer, name = pending.popleft()
            package_dir = self._resolve(app_dir, requirer, name)
            if package_dir is None:
                logger.debug("Dependency %s of %s is not installed", name, requirer)
                continue
            if package_dir in kept:
                continue
            kept.add(package_dir)
            nested_manifest = package_dir / MANIFEST_NAME
            if nested_manifest.is_file():
                nested = _read_manifest(nested_manifest)
                pending.extend(
                    (package_dir, dep) for dep in _production_names(nested)
                )
        return kept

    @staticmethod
    def _resolve(app_dir: Path, requirer: Path, name: str) -> Path | None:
        """Return the directory ``name`` resolves to when required from ``requirer``."""

        current = requirer
        while True:
            if current.name != MODULES_DIR:
                candidate = current / MODULES_DIR / name
                if candidate.is_dir():
                    return candidate
            if current == app_dir or current == current.parent:
                return None
            current = current.parent

    def _remove_unreached(self, modules_dir: Path, kept: set[Path]) -> int:
        if not modules_dir.is_dir():
            return 0
        removed = 0
        for entry in sorted(modules_dir.iterdir()):
            if entry.name.startswith("."):
                continue
            if entry.name.startswith("@") and entry.is_dir() and not entry.is_symlink():
                for scoped in sorted(entry.iterdir()):
                    removed += self._visit_package(scoped, kept)
                if not any(entry.iterdir()):
                    entry.rmdir()
                continue
            removed += self._visit_package(entry, kept)
        return removed

    def _visit_package(self, package_dir: Path, kept: set[Path]) -> int:
        if package_dir in kept:
            if package_dir.is_symlink():
                return 0
            return self._remove_unreached(package_dir / MODULES_DIR, kept)
        logger.debug("Removing non-production package %s", package_dir)
        if package_dir.is_symlink() or not package_dir.is_dir():
            package_dir.unlink()
        else:
            shutil.rmtree(package_dir)
        return 1


class CommandPruner:
    """Prune by running a package manager command inside the app directory.

    Parameters
    ----------
    command : str, default="npm"
        Executable looked up on ``PATH``.
    args : Sequence[str], default=("prune", "--omit=dev")
        Arguments passed to ``command``.
    """

    def __init__(
        self,
        command: str = "npm",
        args: typ.Sequence[str] = ("prune", "--omit=dev"),
    ) -> None:
        self.command = command
        self.args = tuple(args)

    async def prune(self, app_dir: Path) -> None:
        await asyncio.to_thread(self._run, Path(app_dir))

    def _run(self, app_dir: Path) -> None:
        invocation = " ".join((self.command, *self.args))
        logger.debug("Running '%s' in %s", invocation, app_dir)
        try:
            local[self.command][self.args].run(cwd=str(app_dir))
        except CommandNotFound as exc:
            message = f"Pruning command not found: {self.command}"
            raise PruneError(message) from exc
        except ProcessExecutionError as exc:
            message = (
                f"'{invocation}' exited with status {exc.retcode}: "
                f"{(exc.stderr or '').strip()}"
            )
            raise PruneError(message) from exc
