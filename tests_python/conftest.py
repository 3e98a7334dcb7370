"""Shared fixtures for the bundle staging test suite."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import pytest

from bundle_stage import PackagingConfig
from stage_test_helpers import write_app_inputs, write_template


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create an isolated workspace directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def template_dir(workspace: Path) -> Path:
    """Return a freshly written runtime template."""
    return write_template(workspace / "template")


@pytest.fixture
def app_dir(workspace: Path) -> Path:
    """Return a freshly written application source tree."""
    return write_app_inputs(workspace / "app")


@pytest.fixture
def make_config(
    workspace: Path, app_dir: Path
) -> typ.Callable[..., PackagingConfig]:
    """Return a factory building configurations with test defaults."""

    def factory(**overrides: object) -> PackagingConfig:
        defaults: dict[str, object] = {
            "name": "demo",
            "platform": "linux",
            "arch": "x64",
            "runtime_version": "30.0.0",
            "source_dir": app_dir,
            "out_dir": workspace / "out",
            "temp_root": workspace / "tmp",
        }
        return PackagingConfig(**(defaults | overrides))

    return factory
