"""Command-line entry point for bundle staging.

Examples
--------
Package the ``linux-x64`` target described in ``bundle-stage.toml`` from an
extracted runtime template::

    bundle-stage bundle-stage.toml linux-x64 --template build/runtime
"""

from __future__ import annotations

import asyncio
import logging
import sys
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import Parameter

from .config import load_config
from .errors import StageError
from .pruning import CommandPruner, ManifestPruner
from .staging import package_app

app = cyclopts.App(help="Stage a packaged application bundle from a TOML configuration.")


@app.default
def main(
    config_file: Path,
    target: str,
    *,
    template: typ.Annotated[Path, Parameter(env_var="BUNDLE_STAGE_TEMPLATE")],
    npm_prune: bool = False,
    verbose: bool = False,
) -> None:
    """Package ``target`` from ``config_file`` using the runtime ``template``.

    Parameters
    ----------
    config_file:
        Path to the project TOML configuration file.
    target:
        Target key in the configuration file (for example ``"linux-x64"``).
    template:
        Extracted runtime template directory. It is moved into the bundle.
    npm_prune:
        Prune with ``npm prune --omit=dev`` instead of walking manifests.
    verbose:
        Log every phase transition and collaborator call.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(Path(config_file), target)
        pruner = CommandPruner() if npm_prune else ManifestPruner()
        final = asyncio.run(package_app(config, Path(template), pruner=pruner))
    except (FileNotFoundError, StageError) as exc:
        print(f"Packaging failure: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    print(final)


if __name__ == "__main__":
    app()
