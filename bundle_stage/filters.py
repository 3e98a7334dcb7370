"""Predicates deciding which application files are copied into the bundle."""

from __future__ import annotations

import re
import typing as typ
from pathlib import Path

from .errors import StageError

__all__ = ["DEFAULT_IGNORES", "IgnoreFilter", "ResourceFilter", "include_all"]

ResourceFilter = typ.Callable[[Path], bool]

DEFAULT_IGNORES: tuple[str, ...] = (
    r"/node_modules/electron($|/)",
    r"/node_modules/electron-prebuilt(-compile)?($|/)",
    r"/node_modules/\.bin($|/)",
    r"/node_modules/\.cache($|/)",
    r"/\.git($|/)",
    r"\.o(bj)?$",
)


def include_all(_path: Path) -> bool:
    """Accept every path."""
    return True


class IgnoreFilter:
    """Exclude files whose source-relative path matches an ignore pattern.

    Paths are matched as POSIX strings relative to ``source_dir`` with a
    leading ``/`` (``/node_modules/.bin/foo``) using :func:`re.search`.

    Parameters
    ----------
    source_dir : Path
        Root of the application tree being copied.
    patterns : Iterable[str], optional
        Regular expressions added to :data:`DEFAULT_IGNORES`.
    out_dir : Path | None, optional
        Output directory; excluded when it lies strictly inside
        ``source_dir`` so a bundle never copies earlier bundles into itself.
    excluded : Iterable[Path], optional
        Further directories that are never copied, typically the bundle's own
        final and staging paths. They matter when ``out_dir`` is the source
        directory itself.

    Raises
    ------
    StageError
        Raised when a pattern is not a valid regular expression.

    Examples
    --------
    >>> keep = IgnoreFilter(Path("/src"), [r"\\.map$"])
    >>> keep(Path("/src/index.js"))
    True
    >>> keep(Path("/src/index.js.map"))
    False
    """

    def __init__(
        self,
        source_dir: Path,
        patterns: typ.Iterable[str] = (),
        out_dir: Path | None = None,
        excluded: typ.Iterable[Path] = (),
    ) -> None:
        self.source_dir = Path(source_dir).absolute()
        self.excluded = [Path(path).absolute() for path in excluded]
        nested = _nested_out_dir(self.source_dir, out_dir)
        if nested is not None:
            self.excluded.append(nested)
        self.patterns = [
            _compile(pattern) for pattern in (*DEFAULT_IGNORES, *patterns)
        ]

    def __call__(self, path: Path) -> bool:
        absolute = Path(path).absolute()
        if any(absolute.is_relative_to(skip) for skip in self.excluded):
            return False
        relative = "/" + absolute.relative_to(self.source_dir).as_posix()
        return not any(pattern.search(relative) for pattern in self.patterns)


def _nested_out_dir(source_dir: Path, out_dir: Path | None) -> Path | None:
    """Return ``out_dir`` when it lies strictly inside ``source_dir``."""

    if out_dir is None:
        return None
    candidate = Path(out_dir).absolute()
    if candidate != source_dir and candidate.is_relative_to(source_dir):
        return candidate
    return None


def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        message = f"Invalid ignore pattern {pattern!r}: {exc}"
        raise StageError(message) from exc
