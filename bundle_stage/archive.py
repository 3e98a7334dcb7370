"""Archivers compressing the copied application tree into one file."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import shutil
import typing as typ
import zipfile
from pathlib import Path

from .errors import ArchiveError

if typ.TYPE_CHECKING:
    from .config import ArchiveOptions

__all__ = ["Archiver", "ZipArchiver", "unpacked_dir"]

logger = logging.getLogger(__name__)


class Archiver(typ.Protocol):
    """Compress ``source`` into the single file ``destination``."""

    async def create(
        self, source: Path, destination: Path, options: ArchiveOptions
    ) -> None: ...


def unpacked_dir(destination: Path) -> Path:
    """Return the directory holding files kept outside ``destination``."""
    return destination.with_name(f"{destination.name}.unpacked")


def _iter_files(
    directory: Path, ancestors: frozenset[str] = frozenset()
) -> typ.Iterator[Path]:
    """Yield files below ``directory`` in a stable order, following symlinks.

    A directory link resolving to a directory already being walked would
    recurse forever; such links are skipped.
    """

    real = os.path.realpath(directory)
    if real in ancestors:
        logger.warning("Skipping symlink loop at %s", directory)
        return
    ancestors = ancestors | {real}
    entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    subdirs = [entry for entry in entries if entry.is_dir()]
    for entry in entries:
        if not entry.is_dir():
            yield entry
    for entry in subdirs:
        yield from _iter_files(entry, ancestors)


class ZipArchiver:
    """Write the application tree as a zip file.

    The archive is written to a temporary sibling of ``destination`` and
    renamed into place once complete, so ``destination`` only ever exists as
    a finished archive. Files whose relative POSIX path matches
    ``options.unpack`` are copied to :func:`unpacked_dir` instead.

    Examples
    --------
    >>> import asyncio  # doctest: +SKIP
    >>> asyncio.run(  # doctest: +SKIP
    ...     ZipArchiver().create(
    ...         Path("build/resources/app"),
    ...         Path("build/resources/app.asar"),
    ...         ArchiveOptions(),
    ...     )
    ... )
    """

    async def create(
        self, source: Path, destination: Path, options: ArchiveOptions
    ) -> None:
        await asyncio.to_thread(
            self.create_sync, Path(source), Path(destination), options
        )

    def create_sync(
        self, source: Path, destination: Path, options: ArchiveOptions
    ) -> None:
        """Synchronous implementation of :meth:`create`."""

        if not source.is_dir():
            message = f"Archive source is not a directory: {source}"
            raise ArchiveError(message)
        if destination.exists():
            message = f"Archive destination already exists: {destination}"
            raise ArchiveError(message)

        compression = zipfile.ZIP_DEFLATED if options.compress else zipfile.ZIP_STORED
        partial = destination.with_name(f".{destination.name}.partial")
        try:
            with zipfile.ZipFile(partial, "w", compression=compression) as archive:
                for path in _iter_files(source):
                    relative = path.relative_to(source).as_posix()
                    if options.unpack and fnmatch.fnmatch(relative, options.unpack):
                        self._unpack(path, unpacked_dir(destination) / relative)
                        continue
                    archive.write(path, relative)
            partial.replace(destination)
        except (OSError, zipfile.BadZipFile) as exc:
            partial.unlink(missing_ok=True)
            message = f"Failed to archive {source} into {destination}: {exc}"
            raise ArchiveError(message) from exc
        logger.debug("Wrote archive %s", destination)

    @staticmethod
    def _unpack(path: Path, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
