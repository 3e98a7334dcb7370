"""Locations a staging run reads from and writes to."""

from __future__ import annotations

import dataclasses
import typing as typ
from pathlib import Path

from .. import paths

if typ.TYPE_CHECKING:
    from ..config import ArchiveOptions, PackagingConfig

__all__ = ["StagingContext"]


@dataclasses.dataclass(frozen=True, slots=True)
class StagingContext:
    """Directories derived from a :class:`PackagingConfig` for one run.

    Attributes
    ----------
    template_path : Path
        Runtime skeleton moved into :attr:`staging_path`. It no longer exists
        at this location once the template has been moved.
    staging_path : Path
        Directory the bundle is assembled in.
    final_path : Path
        Directory the finished bundle is relocated to.

    Examples
    --------
    >>> ctx = StagingContext(Path("tpl"), Path("/tmp/s"), Path("dist/demo"))
    >>> ctx.resources_app_dir.as_posix()
    '/tmp/s/resources/app'
    """

    template_path: Path
    staging_path: Path
    final_path: Path

    @classmethod
    def from_config(
        cls, config: PackagingConfig, template_path: Path
    ) -> StagingContext:
        """Plan the run's directories for ``config``."""
        return cls(
            template_path=Path(template_path),
            staging_path=paths.staging_path(config),
            final_path=paths.final_path(config),
        )

    @property
    def resources_dir(self) -> Path:
        return self.staging_path / "resources"

    @property
    def resources_app_dir(self) -> Path:
        return self.resources_dir / "app"

    @property
    def binary_dir(self) -> Path:
        """Directory containing the runtime binary."""
        return self.staging_path

    def archive_path(self, options: ArchiveOptions) -> Path:
        """Return where the archive described by ``options`` is written."""
        return self.resources_dir / options.filename
