"""Platform-specific names of the runtime binary inside a bundle."""

from __future__ import annotations

import dataclasses
import typing as typ

from .errors import StageError

if typ.TYPE_CHECKING:
    from .config import PackagingConfig

__all__ = [
    "BinaryNaming",
    "DarwinNaming",
    "LinuxNaming",
    "WindowsNaming",
    "naming_for",
]


class BinaryNaming(typ.Protocol):
    """Name of the runtime binary in the template and in the finished bundle."""

    def original_binary_name(self) -> str: ...

    def new_binary_name(self) -> str: ...


@dataclasses.dataclass(frozen=True, slots=True)
class LinuxNaming:
    """Plain executable renamed to the application's executable name."""

    executable_name: str

    def original_binary_name(self) -> str:
        return "electron"

    def new_binary_name(self) -> str:
        return self.executable_name


@dataclasses.dataclass(frozen=True, slots=True)
class WindowsNaming:
    """``.exe`` executable renamed to the application's executable name."""

    executable_name: str

    def original_binary_name(self) -> str:
        return "electron.exe"

    def new_binary_name(self) -> str:
        return f"{self.executable_name}.exe"


@dataclasses.dataclass(frozen=True, slots=True)
class DarwinNaming:
    """Application bundle directory renamed after the application."""

    app_name: str

    def original_binary_name(self) -> str:
        return "Electron.app"

    def new_binary_name(self) -> str:
        return f"{self.app_name}.app"


def naming_for(config: PackagingConfig) -> BinaryNaming:
    """Return the naming variant matching ``config.platform``.

    Raises
    ------
    StageError
        Raised for platforms without a known binary layout.

    Examples
    --------
    >>> naming_for(config).new_binary_name()  # doctest: +SKIP
    'demo.exe'
    """
    executable = config.executable_name or config.name
    if config.platform == "linux":
        return LinuxNaming(executable)
    if config.platform == "win32":
        return WindowsNaming(executable)
    if config.platform in {"darwin", "mas"}:
        return DarwinNaming(config.name)
    message = f"Unsupported platform for binary naming: {config.platform}"
    raise StageError(message)
