"""Staging pipeline assembling a runtime template and an app into a bundle."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import typing as typ
from pathlib import Path

from ..archive import ZipArchiver
from ..errors import (
    ArchiveFailed,
    CopyFailed,
    PruneFailed,
    RelocateFailed,
    RenameFailed,
    StageError,
    StaleCleanupFailed,
    StagingMoveFailed,
)
from ..filters import IgnoreFilter
from ..hooks import HookInvocation, run_hooks
from ..naming import naming_for
from ..pruning import ManifestPruner
from .context import StagingContext
from .phases import Phase

if typ.TYPE_CHECKING:
    from ..archive import Archiver
    from ..config import PackagingConfig
    from ..filters import ResourceFilter
    from ..naming import BinaryNaming
    from ..pruning import DependencyPruner

__all__ = ["STALE_DEFAULT_APP_NAMES", "StagingPipeline", "package_app"]

logger = logging.getLogger(__name__)

STALE_DEFAULT_APP_NAMES = ("default_app", "default_app.asar")

ResourceSpec = str | os.PathLike | typ.Iterable[str | os.PathLike]


def _remove_tree(path: Path) -> None:
    """Remove ``path`` whether it is a directory, file or symlink."""

    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _remove_if_present(path: Path) -> bool:
    """Remove ``path`` and report whether anything was deleted."""

    try:
        _remove_tree(path)
    except FileNotFoundError:
        return False
    return True


def _copy_resource(source: Path, destination: Path, *, symlinks: bool) -> None:
    if source.is_dir():
        shutil.copytree(source, destination, symlinks=symlinks, dirs_exist_ok=True)
    else:
        shutil.copy2(source, destination, follow_symlinks=not symlinks)


class StagingPipeline:
    """Assemble one bundle, one phase at a time.

    The pipeline walks the states of :class:`Phase` strictly in order. Each
    public coroutine performs exactly one transition and raises
    :class:`~bundle_stage.errors.StageError` when called out of order. A
    failing transition raises a :class:`~bundle_stage.errors.PhaseError`
    naming the state being entered; nothing that was already staged is
    rolled back.

    Parameters
    ----------
    config : PackagingConfig
        Configuration of the run.
    template_path : Path
        Runtime skeleton directory. It is moved, not copied.
    pruner : DependencyPruner, optional
        Defaults to :class:`~bundle_stage.pruning.ManifestPruner`.
    archiver : Archiver, optional
        Defaults to :class:`~bundle_stage.archive.ZipArchiver`.
    resource_filter : ResourceFilter, optional
        Predicate selecting copied files. Defaults to an
        :class:`~bundle_stage.filters.IgnoreFilter` built from ``config``.
    naming : BinaryNaming, optional
        Runtime binary names; defaults to :func:`~bundle_stage.naming.naming_for`
        when :meth:`rename_runtime_binary` is called.

    Examples
    --------
    >>> pipeline = StagingPipeline(config, Path("runtime"))  # doctest: +SKIP
    >>> asyncio.run(pipeline.run())  # doctest: +SKIP
    PosixPath('dist/demo-linux-x64')
    """

    def __init__(
        self,
        config: PackagingConfig,
        template_path: Path,
        *,
        pruner: DependencyPruner | None = None,
        archiver: Archiver | None = None,
        resource_filter: ResourceFilter | None = None,
        naming: BinaryNaming | None = None,
    ) -> None:
        self.config = config
        self.context = StagingContext.from_config(config, template_path)
        self.pruner = pruner if pruner is not None else ManifestPruner()
        self.archiver = archiver if archiver is not None else ZipArchiver()
        self.resource_filter = (
            resource_filter
            if resource_filter is not None
            else IgnoreFilter(
                config.source_dir,
                config.ignore,
                config.out_dir,
                excluded=(self.context.final_path, self.context.staging_path),
            )
        )
        self.naming = naming
        self.state = Phase.START

    def _require_next(self, target: Phase) -> None:
        if target is not self.state.next():
            message = (
                f"Cannot enter {target.label} from {self.state.label}; "
                "phases must run in order"
            )
            raise StageError(message)

    def _advance(self, target: Phase) -> None:
        self._require_next(target)
        self.state = target
        logger.info("Reached %s for %s", target.label, self.context.staging_path)

    def _invocation(self) -> HookInvocation:
        return HookInvocation(
            self.context.resources_app_dir,
            self.config.runtime_version,
            self.config.platform,
            self.config.arch,
        )

    async def move_template(self) -> None:
        """Move the runtime template into the staging path, replacing it."""

        phase = Phase.TEMPLATE_MOVED
        self._require_next(phase)
        source = self.context.template_path
        destination = self.context.staging_path
        logger.debug("Moving template %s to %s", source, destination)
        try:
            await asyncio.to_thread(self._replace_with_template, source, destination)
        except OSError as exc:
            message = f"Cannot move template {source} to {destination}: {exc}"
            raise StagingMoveFailed(phase, message) from exc
        self._advance(phase)

    @staticmethod
    def _replace_with_template(source: Path, destination: Path) -> None:
        if not source.is_dir():
            message = f"Template directory not found: {source}"
            raise FileNotFoundError(message)
        _remove_if_present(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(source, destination)

    async def copy_app(self) -> None:
        """Copy the application tree into ``resources/app`` through the filter."""

        phase = Phase.APP_COPIED
        self._require_next(phase)
        source = self.config.source_dir
        destination = self.context.resources_app_dir
        try:
            await asyncio.to_thread(self._copy_filtered, source, destination)
        except Exception as exc:
            message = f"Cannot copy app {source} to {destination}: {exc}"
            raise CopyFailed(phase, message) from exc
        self._advance(phase)

    def _copy_filtered(self, source: Path, destination: Path) -> None:
        keep = self.resource_filter
        # The bundle itself may live inside the source tree.
        produced = {
            self.context.staging_path.absolute(),
            self.context.final_path.absolute(),
        }

        def ignored(directory: str, names: list[str]) -> set[str]:
            base = Path(directory)
            return {
                name
                for name in names
                if (base / name).absolute() in produced or not keep(base / name)
            }

        shutil.copytree(
            source,
            destination,
            symlinks=not self.config.deref_symlinks,
            ignore=ignored,
            copy_function=shutil.copy2,
            dirs_exist_ok=True,
        )

    async def run_after_copy_hooks(self) -> None:
        """Run the ``after_copy`` hooks against the copied tree."""

        phase = Phase.PRE_HOOKS_DONE
        self._require_next(phase)
        await run_hooks(self.config.after_copy, self._invocation(), phase)
        self._advance(phase)

    async def remove_stale_default_app(self) -> None:
        """Delete ``default_app`` leftovers shipped by older runtime templates."""

        phase = Phase.STALE_DEFAULT_APP_REMOVED
        self._require_next(phase)
        for name in STALE_DEFAULT_APP_NAMES:
            path = self.context.resources_dir / name
            try:
                removed = await asyncio.to_thread(_remove_if_present, path)
            except OSError as exc:
                message = f"Cannot remove stale {path}: {exc}"
                raise StaleCleanupFailed(phase, message) from exc
            if removed:
                logger.debug("Removed stale %s", path)
        self._advance(phase)

    async def prune(self) -> None:
        """Prune dependencies and run ``after_prune`` hooks when enabled."""

        phase = Phase.PRUNED
        self._require_next(phase)
        if self.config.prune:
            app_dir = self.context.resources_app_dir
            try:
                await self.pruner.prune(app_dir)
            except Exception as exc:
                message = f"Cannot prune dependencies in {app_dir}: {exc}"
                raise PruneFailed(phase, message) from exc
        else:
            logger.debug("Pruning disabled; leaving dependencies untouched")
        self._advance(phase)

        phase = Phase.POST_PRUNE_HOOKS_DONE
        if self.config.prune:
            await run_hooks(self.config.after_prune, self._invocation(), phase)
        self._advance(phase)

    async def archive(self) -> None:
        """Replace ``resources/app`` with an archive when archiving is enabled."""

        phase = Phase.ARCHIVED
        self._require_next(phase)
        options = self.config.archive
        if options is None:
            logger.debug("Archiving disabled; keeping %s", self.context.resources_app_dir)
            self._advance(phase)
            return

        source = self.context.resources_app_dir
        destination = self.context.archive_path(options)
        logger.debug("Archiving %s to %s with %s", source, destination, options)
        try:
            await self.archiver.create(source, destination, options)
        except Exception as exc:
            message = f"Cannot archive {source} to {destination}: {exc}"
            raise ArchiveFailed(phase, message) from exc
        try:
            await asyncio.to_thread(shutil.rmtree, source)
        except OSError as exc:
            message = f"Cannot remove archived app directory {source}: {exc}"
            raise ArchiveFailed(phase, message) from exc
        self._advance(phase)

    async def initialize(self) -> None:
        """Run every phase up to and including :attr:`Phase.ARCHIVED`."""

        logger.info(
            "Initializing app in %s from %s template",
            self.context.staging_path,
            self.context.template_path,
        )
        await self.move_template()
        await self.copy_app()
        await self.run_after_copy_hooks()
        await self.remove_stale_default_app()
        await self.prune()
        await self.archive()

    async def relocate(self) -> Path:
        """Move the staging directory to the final path and return it."""

        phase = Phase.RELOCATED
        self._require_next(phase)
        final = self.context.final_path
        staging = self.context.staging_path
        if self.config.use_tmpdir:
            logger.debug("Moving %s to %s", staging, final)
            try:
                await asyncio.to_thread(self._move_to_final, staging, final)
            except OSError as exc:
                message = f"Cannot move {staging} to {final}: {exc}"
                raise RelocateFailed(phase, message) from exc
        self._advance(phase)
        self._advance(Phase.DONE)
        return final

    def _move_to_final(self, staging: Path, final: Path) -> None:
        if final.exists() or final.is_symlink():
            if not self.config.overwrite:
                message = f"Final path already exists: {final}"
                raise FileExistsError(message)
            logger.info("Overwriting existing bundle at %s", final)
            _remove_tree(final)
        final.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(staging, final)

    async def run(self) -> Path:
        """Run the whole pipeline and return the final bundle path."""
        await self.initialize()
        return await self.relocate()

    def _require_staging(self, operation: str) -> None:
        if not Phase.TEMPLATE_MOVED <= self.state < Phase.RELOCATED:
            message = (
                f"{operation} needs a staged template that has not been "
                f"relocated yet (current state {self.state.label})"
            )
            raise StageError(message)

    async def copy_extra_resources(self, resources: ResourceSpec | None) -> None:
        """Copy files or directories into the resources directory.

        Parameters
        ----------
        resources : str | PathLike | Iterable[str | PathLike] | None
            A single path or a collection of paths. Each is copied to
            ``resources/<basename>``. ``None`` and empty collections do
            nothing.

        Raises
        ------
        CopyFailed
            Raised once every copy settled if at least one of them failed,
            or before any copy starts when two resources share a basename.
        """
        if not resources:
            return
        if isinstance(resources, (str, os.PathLike)):
            resources = [resources]
        sources = [Path(resource) for resource in resources]
        if not sources:
            return
        self._require_staging("Copying extra resources")
        seen: dict[str, Path] = {}
        for source in sources:
            if source.name in seen:
                message = (
                    f"Extra resources {seen[source.name]} and {source} would both "
                    f"be copied to resources/{source.name}"
                )
                raise CopyFailed(self.state, message)
            seen[source.name] = source

        resources_dir = self.context.resources_dir
        symlinks = not self.config.deref_symlinks
        results = await asyncio.gather(
            *(
                asyncio.to_thread(
                    _copy_resource, source, resources_dir / source.name, symlinks=symlinks
                )
                for source in sources
            ),
            return_exceptions=True,
        )
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, Exception):
                message = f"Cannot copy extra resource {source}: {result}"
                raise CopyFailed(self.state, message) from result
            if isinstance(result, BaseException):
                raise result
        logger.debug("Copied %d extra resource(s) into %s", len(sources), resources_dir)

    async def rename_runtime_binary(self) -> Path:
        """Rename the runtime binary to its platform-specific bundle name."""

        self._require_staging("Renaming the runtime binary")
        naming = self.naming if self.naming is not None else naming_for(self.config)
        binary_dir = self.context.binary_dir
        source = binary_dir / naming.original_binary_name()
        destination = binary_dir / naming.new_binary_name()
        if source == destination:
            return destination
        try:
            await asyncio.to_thread(source.rename, destination)
        except OSError as exc:
            message = f"Cannot rename {source.name} to {destination.name}: {exc}"
            raise RenameFailed(self.state, message) from exc
        logger.debug("Renamed %s to %s", source, destination)
        return destination


async def package_app(
    config: PackagingConfig,
    template_path: Path,
    *,
    pruner: DependencyPruner | None = None,
    archiver: Archiver | None = None,
    resource_filter: ResourceFilter | None = None,
    naming: BinaryNaming | None = None,
) -> Path:
    """Stage a complete bundle for ``config`` and return its final path.

    Runs :meth:`StagingPipeline.initialize`, renames the runtime binary,
    copies ``config.extra_resources`` and relocates the bundle.

    Raises
    ------
    PhaseError
        Raised when any phase fails; the staging directory is left as-is.
    """
    pipeline = StagingPipeline(
        config,
        template_path,
        pruner=pruner,
        archiver=archiver,
        resource_filter=resource_filter,
        naming=naming,
    )
    await pipeline.initialize()
    await pipeline.rename_runtime_binary()
    await pipeline.copy_extra_resources(config.extra_resources)
    final = await pipeline.relocate()
    logger.info("Packaged %s into %s", config.name, final)
    return final
