"""Configuration models and loader for bundle staging.

This module provides immutable dataclasses describing a single packaging run
and a loader that builds them from a TOML file with a ``[common]`` table and
per-target ``[targets.*]`` tables.

Usage
-----
Load the configuration for one target::

    from pathlib import Path
    from bundle_stage.config import load_config

    config = load_config(Path("bundle-stage.toml"), "linux-x64")
    print(f"Packaging {config.name} for {config.platform}-{config.arch}")
"""

from __future__ import annotations

import dataclasses
import importlib
import tempfile
import typing as typ
from pathlib import Path

import tomllib

from .errors import StageError

if typ.TYPE_CHECKING:
    from .hooks import Hook

__all__ = [
    "ArchiveOptions",
    "PackagingConfig",
    "load_config",
]

TEMP_DIR_NAME = "bundle-stage"


def default_temp_root() -> Path:
    """Return the temporary root used when none is configured."""
    return Path(tempfile.gettempdir()) / TEMP_DIR_NAME


@dataclasses.dataclass(frozen=True, slots=True)
class ArchiveOptions:
    """Options handed to the archiver.

    The staging pipeline only reads :attr:`filename`; everything else is
    interpreted by the archiver implementation.

    Parameters
    ----------
    filename : str, default="app.asar"
        Name of the archive written inside the resources directory.
    unpack : str | None, optional
        Glob matched against paths relative to the archived directory. Matching
        files are kept outside the archive in ``<filename>.unpacked``.
    compress : bool, default=True
        Whether archive members are compressed.
    """

    filename: str = "app.asar"
    unpack: str | None = None
    compress: bool = True


@dataclasses.dataclass(frozen=True, slots=True)
class PackagingConfig:
    """Immutable description of one packaging run.

    Parameters
    ----------
    name : str
        Application name used for the output basename and renamed binary.
    platform : str
        Target platform identifier (``"linux"``, ``"win32"``, ``"darwin"``).
    arch : str
        Target architecture identifier (``"x64"``, ``"arm64"`` ...).
    runtime_version : str
        Version of the runtime template, forwarded to hooks.
    source_dir : Path
        Application tree copied into the bundle.
    out_dir : Path
        Directory receiving the final bundle.
    use_tmpdir : bool, default=True
        Assemble the bundle beneath :attr:`temp_root` and move it into place
        at the end of the run. When ``False`` the final path is written to
        directly.
    temp_root : Path
        Root directory for staging when :attr:`use_tmpdir` is set.
    prune : bool, default=True
        Remove non-production dependencies from the copied tree.
    archive : ArchiveOptions | None, optional
        When set, the copied tree is replaced by a single archive file.
    deref_symlinks : bool, default=True
        Copy symlink targets instead of the links themselves.
    after_copy : tuple[Hook, ...]
        Hooks invoked once the application tree has been copied.
    after_prune : tuple[Hook, ...]
        Hooks invoked once dependencies have been pruned.
    ignore : tuple[str, ...]
        Extra regular expressions excluding files from the copy.
    extra_resources : tuple[Path, ...]
        Files or directories copied into the resources directory.
    executable_name : str | None, optional
        Override for the renamed runtime binary on Linux and Windows.
    overwrite : bool, default=False
        Replace an existing bundle at the final path during relocation.

    Examples
    --------
    >>> from pathlib import Path  # doctest: +SKIP
    >>> config = PackagingConfig(  # doctest: +SKIP
    ...     name="demo",
    ...     platform="linux",
    ...     arch="x64",
    ...     runtime_version="30.0.0",
    ...     source_dir=Path("app"),
    ...     out_dir=Path("dist"),
    ... )
    >>> config.prune  # doctest: +SKIP
    True
    """

    name: str
    platform: str
    arch: str
    runtime_version: str
    source_dir: Path
    out_dir: Path
    use_tmpdir: bool = True
    temp_root: Path = dataclasses.field(default_factory=default_temp_root)
    prune: bool = True
    archive: ArchiveOptions | None = None
    deref_symlinks: bool = True
    after_copy: tuple[Hook, ...] = ()
    after_prune: tuple[Hook, ...] = ()
    ignore: tuple[str, ...] = ()
    extra_resources: tuple[Path, ...] = ()
    executable_name: str | None = None
    overwrite: bool = False


def load_config(config_file: Path, target_key: str) -> PackagingConfig:
    """Load the packaging configuration for ``target_key`` from ``config_file``.

    Parameters
    ----------
    config_file : Path
        TOML file with a ``[common]`` table and ``[targets.<key>]`` tables.
    target_key : str
        Name of the target table whose values override ``[common]``.

    Returns
    -------
    PackagingConfig
        Configuration with relative paths resolved against the directory
        containing ``config_file``.

    Raises
    ------
    FileNotFoundError
        Raised when ``config_file`` does not exist.
    StageError
        Raised when required keys are missing or values have the wrong type.
    """
    config_file = Path(config_file)
    if not config_file.is_file():
        message = f"Configuration file not found at {config_file}"
        raise FileNotFoundError(message)

    data = _load_toml(config_file)
    common, target_cfg = _extract_sections(data, config_file, target_key)
    _require_keys(common, {"name", "runtime_version"}, "common", config_file)
    _require_keys(
        target_cfg, {"platform", "arch"}, f"targets.{target_key}", config_file
    )
    merged = _merge_sections(common, target_cfg)
    base_dir = config_file.resolve().parent

    optional: dict[str, typ.Any] = {}
    if "temp_root" in merged:
        optional["temp_root"] = _resolve_path(base_dir, merged["temp_root"])

    return PackagingConfig(
        name=merged["name"],
        platform=merged["platform"],
        arch=merged["arch"],
        runtime_version=str(merged["runtime_version"]),
        source_dir=_resolve_path(base_dir, merged.get("source_dir", ".")),
        out_dir=_resolve_path(base_dir, merged.get("out_dir", "dist")),
        use_tmpdir=_require_bool(merged, "tmpdir", default=True),
        prune=_require_bool(merged, "prune", default=True),
        archive=_make_archive_options(merged.get("archive"), config_file),
        deref_symlinks=_require_bool(merged, "deref_symlinks", default=True),
        after_copy=_resolve_hooks(merged.get("after_copy", []), "after_copy"),
        after_prune=_resolve_hooks(merged.get("after_prune", []), "after_prune"),
        ignore=tuple(_string_list(merged.get("ignore", []), "ignore")),
        extra_resources=tuple(
            _resolve_path(base_dir, item)
            for item in _string_list(
                merged.get("extra_resources", []), "extra_resources"
            )
        ),
        executable_name=merged.get("executable_name"),
        overwrite=_require_bool(merged, "overwrite", default=False),
        **optional,
    )


def _load_toml(path: Path) -> dict[str, typ.Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _extract_sections(
    data: dict[str, typ.Any], config_path: Path, target_key: str
) -> tuple[dict[str, typ.Any], dict[str, typ.Any]]:
    try:
        common = data["common"]
        target_cfg = data["targets"][target_key]
    except KeyError as exc:
        message = f"Missing configuration key in {config_path}: {exc}"
        raise StageError(message) from exc
    return common, target_cfg


def _merge_sections(
    common: dict[str, typ.Any], target_cfg: dict[str, typ.Any]
) -> dict[str, typ.Any]:
    """Overlay ``target_cfg`` onto ``common``, merging ``archive`` tables."""
    merged = common | target_cfg
    common_archive = common.get("archive")
    target_archive = target_cfg.get("archive")
    if isinstance(common_archive, dict) and isinstance(target_archive, dict):
        merged["archive"] = common_archive | target_archive
    return merged


def _require_keys(
    section: dict[str, typ.Any], keys: set[str], label: str, config_path: Path
) -> None:
    """Ensure ``section`` defines ``keys``.

    Examples
    --------
    >>> _require_keys(  # doctest: +SKIP
    ...     {'name': 'demo'},
    ...     {'name'},
    ...     'common',
    ...     Path('cfg'),
    ... )
    """
    if missing := sorted(key for key in keys if key not in section):
        joined = ", ".join(missing)
        message = (
            "Missing required key(s) "
            f"{joined} in [{label}] section of {config_path}"
        )
        raise StageError(message)


def _require_bool(section: dict[str, typ.Any], key: str, *, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        message = f"Configuration key '{key}' must be a boolean, got {value!r}"
        raise StageError(message)
    return value


def _resolve_path(base_dir: Path, value: object) -> Path:
    if not isinstance(value, str) or not value:
        message = f"Expected a non-empty path string, got {value!r}"
        raise StageError(message)
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _string_list(value: object, key: str) -> list[str]:
    """Return ``value`` as a list of strings, accepting a single string."""

    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, list) or not all(
        isinstance(item, str) for item in value
    ):
        message = f"Configuration key '{key}' must be a list of strings"
        raise StageError(message)
    return [item for item in value if item]


def _make_archive_options(
    value: object, config_path: Path
) -> ArchiveOptions | None:
    if value is None or value is False:
        return None
    if value is True:
        return ArchiveOptions()
    if not isinstance(value, dict):
        message = f"'archive' must be a boolean or a table in {config_path}"
        raise StageError(message)
    known = {field.name for field in dataclasses.fields(ArchiveOptions)}
    if unknown := sorted(set(value) - known):
        message = f"Unknown archive option(s) {', '.join(unknown)} in {config_path}"
        raise StageError(message)
    return ArchiveOptions(**value)


def _resolve_hooks(value: object, key: str) -> tuple[Hook, ...]:
    return tuple(resolve_hook(reference) for reference in _string_list(value, key))


def resolve_hook(reference: str) -> Hook:
    """Import the callable named by ``reference``.

    Parameters
    ----------
    reference : str
        ``"package.module:attribute"`` reference to a hook function.

    Raises
    ------
    StageError
        Raised when the reference is malformed, cannot be imported or does
        not name a callable.

    Examples
    --------
    >>> resolve_hook("os.path:join")  # doctest: +SKIP
    <function join at ...>
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        message = f"Hook reference must look like 'module:function': {reference!r}"
        raise StageError(message)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        message = f"Cannot import hook module '{module_name}': {exc}"
        raise StageError(message) from exc

    target: object = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            message = f"Hook '{reference}' not found: {exc}"
            raise StageError(message) from exc
    if not callable(target):
        message = f"Hook '{reference}' is not callable"
        raise StageError(message)
    return typ.cast("Hook", target)
