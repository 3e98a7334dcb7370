"""Shared helpers for the staging test suites."""

from __future__ import annotations

import json
import shutil
import typing as typ
from pathlib import Path

if typ.TYPE_CHECKING:
    from bundle_stage import ArchiveOptions

__all__ = [
    "CopyingArchiver",
    "FailingArchiver",
    "RecordingPruner",
    "tree_snapshot",
    "write_app_inputs",
    "write_template",
]


def write_template(root: Path) -> Path:
    """Populate ``root`` with a minimal runtime template.

    Parameters
    ----------
    root : Path
        Directory to create. It holds the runtime binary and a resources
        directory carrying a stale ``default_app.asar``.

    Returns
    -------
    Path
        ``root`` for convenience.
    """
    (root / "resources").mkdir(parents=True)
    binary = root / "runtime-bin"
    binary.write_bytes(b"\x7fELF")
    binary.chmod(0o755)
    (root / "electron").write_bytes(b"\x7fELF")
    (root / "resources" / "default_app.asar").write_bytes(b"stale")
    return root


def write_app_inputs(root: Path) -> Path:
    """Populate ``root`` with an app using one production and one dev dependency."""
    (root / "node_modules" / "proddep").mkdir(parents=True)
    (root / "node_modules" / "devdep").mkdir(parents=True)
    (root / "index.js").write_text("console.log('hi')\n", encoding="utf-8")
    (root / "package.json").write_text(
        json.dumps(
            {
                "name": "demo",
                "dependencies": {"proddep": "^1.0.0"},
                "devDependencies": {"devdep": "^2.0.0"},
            }
        ),
        encoding="utf-8",
    )
    write_package(root / "node_modules" / "proddep", "proddep")
    write_package(root / "node_modules" / "devdep", "devdep")
    return root


def write_package(
    package_dir: Path, name: str, dependencies: dict[str, str] | None = None
) -> Path:
    """Write a package directory with an ``index.js`` and a manifest."""
    package_dir.mkdir(parents=True, exist_ok=True)
    manifest = {"name": name, "dependencies": dependencies or {}}
    (package_dir / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
    (package_dir / "index.js").write_text(f"// {name}\n", encoding="utf-8")
    return package_dir


def tree_snapshot(root: Path) -> dict[str, bytes]:
    """Return every file below ``root`` keyed by POSIX relative path."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


class RecordingPruner:
    """Pruner that deletes ``node_modules/devdep`` and records its calls."""

    def __init__(self) -> None:
        self.calls: list[Path] = []

    async def prune(self, app_dir: Path) -> None:
        self.calls.append(app_dir)
        shutil.rmtree(app_dir / "node_modules" / "devdep", ignore_errors=True)


class CopyingArchiver:
    """Archiver that records calls and writes a plain marker file."""

    def __init__(self) -> None:
        self.calls: list[tuple[Path, Path, ArchiveOptions]] = []

    async def create(
        self, source: Path, destination: Path, options: ArchiveOptions
    ) -> None:
        self.calls.append((source, destination, options))
        listing = "\n".join(sorted(tree_snapshot(source)))
        destination.write_text(listing, encoding="utf-8")


class FailingArchiver:
    """Archiver that always raises."""

    async def create(
        self, source: Path, destination: Path, options: ArchiveOptions
    ) -> None:
        message = f"cannot archive {source}"
        raise OSError(message)
