"""Unit-level tests for the staging pipeline phases."""

from __future__ import annotations

import asyncio
import os
import typing as typ
from pathlib import Path

import pytest

from bundle_stage import (
    ArchiveFailed,
    ArchiveOptions,
    CopyFailed,
    HookFailed,
    PackagingConfig,
    Phase,
    PruneFailed,
    RelocateFailed,
    RenameFailed,
    StageError,
    StaleCleanupFailed,
    StagingMoveFailed,
    StagingPipeline,
)
from bundle_stage.filters import include_all
from stage_test_helpers import (
    CopyingArchiver,
    FailingArchiver,
    RecordingPruner,
    tree_snapshot,
    write_template,
)

ConfigFactory = typ.Callable[..., PackagingConfig]


def make_pipeline(
    config: PackagingConfig, template_dir: Path, **overrides: object
) -> StagingPipeline:
    """Return a pipeline wired with recording collaborators."""

    collaborators: dict[str, object] = {
        "pruner": RecordingPruner(),
        "archiver": CopyingArchiver(),
        "resource_filter": include_all,
    }
    return StagingPipeline(config, template_dir, **(collaborators | overrides))


def advance_to(pipeline: StagingPipeline, phase: Phase) -> None:
    """Run pipeline steps until ``phase`` has been reached."""

    steps = [
        (Phase.TEMPLATE_MOVED, pipeline.move_template),
        (Phase.APP_COPIED, pipeline.copy_app),
        (Phase.PRE_HOOKS_DONE, pipeline.run_after_copy_hooks),
        (Phase.STALE_DEFAULT_APP_REMOVED, pipeline.remove_stale_default_app),
        (Phase.POST_PRUNE_HOOKS_DONE, pipeline.prune),
        (Phase.ARCHIVED, pipeline.archive),
    ]
    for reached, step in steps:
        if pipeline.state >= phase:
            return
        asyncio.run(step())
        assert pipeline.state is reached, f"Expected to reach {reached.label}"


class TestTemplateMove:
    """Moving the runtime template into place."""

    def test_template_is_moved_not_copied(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """The template should vanish from its source location."""

        pipeline = make_pipeline(make_config(), template_dir)

        asyncio.run(pipeline.move_template())

        staging = pipeline.context.staging_path
        assert not template_dir.exists(), "Template source must be consumed"
        assert (staging / "runtime-bin").is_file(), "Runtime binary should be staged"
        assert pipeline.state is Phase.TEMPLATE_MOVED, "State should advance"

    def test_existing_staging_directory_is_replaced(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Leftovers from an earlier run should be clobbered."""

        config = make_config()
        pipeline = make_pipeline(config, template_dir)
        leftover = pipeline.context.staging_path / "leftover.txt"
        leftover.parent.mkdir(parents=True)
        leftover.write_text("old", encoding="utf-8")

        asyncio.run(pipeline.move_template())

        assert not leftover.exists(), "Pre-existing staging contents should be removed"

    def test_missing_template_fails(
        self, make_config: ConfigFactory, workspace: Path
    ) -> None:
        """A missing template should raise :class:`StagingMoveFailed`."""

        pipeline = make_pipeline(make_config(), workspace / "absent")

        with pytest.raises(StagingMoveFailed) as excinfo:
            asyncio.run(pipeline.move_template())

        assert excinfo.value.phase is Phase.TEMPLATE_MOVED, "Error should name the phase"
        assert pipeline.state is Phase.START, "State must not advance on failure"


class TestAppCopy:
    """Copying the application tree through the resource filter."""

    def test_filter_decides_copied_files(
        self, make_config: ConfigFactory, template_dir: Path, app_dir: Path
    ) -> None:
        """Only files accepted by the predicate should be copied."""

        def keep(path: Path) -> bool:
            return path.name != "devdep"

        pipeline = make_pipeline(make_config(), template_dir, resource_filter=keep)
        advance_to(pipeline, Phase.APP_COPIED)

        copied = tree_snapshot(pipeline.context.resources_app_dir)
        assert "index.js" in copied, "Accepted files should be copied"
        assert "node_modules/proddep/index.js" in copied, "Nested files should be copied"
        assert not any(name.startswith("node_modules/devdep") for name in copied), (
            "Rejected directories should be skipped entirely"
        )

    def test_file_modes_are_preserved(
        self, make_config: ConfigFactory, template_dir: Path, app_dir: Path
    ) -> None:
        """Executable bits should survive the copy."""

        script = app_dir / "run.sh"
        script.write_text("#!/bin/sh\n", encoding="utf-8")
        script.chmod(0o755)
        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.APP_COPIED)

        copied = pipeline.context.resources_app_dir / "run.sh"
        assert copied.stat().st_mode & 0o777 == 0o755, "Mode should be preserved"

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="requires symlinks")
    @pytest.mark.parametrize(("deref", "expect_link"), [(True, False), (False, True)])
    def test_symlink_handling_follows_flag(
        self,
        make_config: ConfigFactory,
        template_dir: Path,
        app_dir: Path,
        deref: bool,
        expect_link: bool,
    ) -> None:
        """Symlinks should be dereferenced only when requested."""

        (app_dir / "link.js").symlink_to("index.js")
        pipeline = make_pipeline(make_config(deref_symlinks=deref), template_dir)
        advance_to(pipeline, Phase.APP_COPIED)

        copied = pipeline.context.resources_app_dir / "link.js"
        assert copied.is_symlink() is expect_link, "Unexpected symlink handling"
        assert copied.read_text(encoding="utf-8") == "console.log('hi')\n", (
            "Link contents should resolve either way"
        )

    def test_filter_exception_becomes_copy_failed(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """A raising predicate should abort the copy phase."""

        def explode(path: Path) -> bool:
            message = f"cannot judge {path.name}"
            raise ValueError(message)

        pipeline = make_pipeline(make_config(), template_dir, resource_filter=explode)
        asyncio.run(pipeline.move_template())

        with pytest.raises(CopyFailed) as excinfo:
            asyncio.run(pipeline.copy_app())

        assert excinfo.value.phase is Phase.APP_COPIED, "Error should name the phase"
        assert isinstance(excinfo.value.__cause__, ValueError), "Cause should be chained"

    def test_earlier_bundle_in_source_is_not_copied(
        self, make_config: ConfigFactory, template_dir: Path, app_dir: Path
    ) -> None:
        """A bundle written into the source tree should not be copied into itself."""

        earlier = app_dir / "demo-linux-x64" / "resources" / "app"
        earlier.mkdir(parents=True)
        (earlier / "index.js").write_text("old", encoding="utf-8")
        config = make_config(out_dir=app_dir, overwrite=True)
        pipeline = make_pipeline(config, template_dir, resource_filter=None)

        final = asyncio.run(pipeline.run())

        assert final == app_dir / "demo-linux-x64", "Bundle should land in the source"
        assert (final / "resources" / "app" / "index.js").is_file(), (
            "Application files should still be copied"
        )
        assert not (final / "resources" / "app" / "demo-linux-x64").exists(), (
            "The earlier bundle must not be nested in the new one"
        )

    def test_direct_staging_inside_source_does_not_recurse(
        self, make_config: ConfigFactory, template_dir: Path, app_dir: Path
    ) -> None:
        """Staging in place under the source should skip the staging directory."""

        config = make_config(out_dir=app_dir, use_tmpdir=False)
        pipeline = make_pipeline(config, template_dir)
        advance_to(pipeline, Phase.APP_COPIED)

        copied = tree_snapshot(pipeline.context.resources_app_dir)
        assert "index.js" in copied, "Application files should be copied"
        assert not any(name.startswith("demo-linux-x64") for name in copied), (
            "The staging directory must not be copied into itself"
        )


class TestHooks:
    """Hook sequencing within the pipeline."""

    def test_after_copy_hooks_receive_app_dir(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """After-copy hooks should see the populated ``resources/app``."""

        seen: list[tuple[Path, str, str, str, bool]] = []

        def hook(directory: Path, version: str, platform: str, arch: str) -> None:
            seen.append((directory, version, platform, arch, (directory / "index.js").exists()))

        pipeline = make_pipeline(make_config(after_copy=(hook,)), template_dir)
        advance_to(pipeline, Phase.PRE_HOOKS_DONE)

        assert seen == [
            (pipeline.context.resources_app_dir, "30.0.0", "linux", "x64", True)
        ], "Hook should receive the invocation tuple after the copy"

    def test_failing_after_copy_hook_stops_before_pruning(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """A failing hook should abort the run in ``PreHooksDone``."""

        def failing(*_args: object) -> None:
            message = "hook exploded"
            raise RuntimeError(message)

        pruner = RecordingPruner()
        pipeline = make_pipeline(
            make_config(after_copy=(failing,)), template_dir, pruner=pruner
        )

        with pytest.raises(HookFailed) as excinfo:
            asyncio.run(pipeline.run())

        assert excinfo.value.phase is Phase.PRE_HOOKS_DONE, "Error should name PreHooksDone"
        assert pipeline.state is Phase.APP_COPIED, "Pipeline must stop before Pruned"
        assert pruner.calls == [], "Pruner must not run after a failed hook"
        assert pipeline.context.resources_app_dir.is_dir(), (
            "Partial staging contents should be left for inspection"
        )

    def test_after_prune_hooks_run_after_pruner(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """After-prune hooks should observe the pruned tree."""

        observed: list[bool] = []

        async def hook(directory: Path, *_rest: str) -> None:
            observed.append((directory / "node_modules" / "devdep").exists())

        pipeline = make_pipeline(make_config(after_prune=(hook,)), template_dir)
        advance_to(pipeline, Phase.POST_PRUNE_HOOKS_DONE)

        assert observed == [False], "Hook should run once, after pruning"


class TestStaleCleanup:
    """Removal of ``default_app`` leftovers."""

    def test_stale_paths_are_removed(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Both the directory and the archive form should be removed."""

        (template_dir / "resources" / "default_app").mkdir()
        (template_dir / "resources" / "default_app" / "main.js").write_text(
            "x", encoding="utf-8"
        )
        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.STALE_DEFAULT_APP_REMOVED)

        resources = pipeline.context.resources_dir
        assert not (resources / "default_app").exists(), "default_app should be removed"
        assert not (resources / "default_app.asar").exists(), (
            "default_app.asar should be removed"
        )

    def test_cleanup_is_idempotent(
        self, make_config: ConfigFactory, workspace: Path
    ) -> None:
        """Running cleanup on an already clean tree should succeed twice."""

        config = make_config()
        for attempt in range(2):
            template = write_template(workspace / f"clean-template-{attempt}")
            (template / "resources" / "default_app.asar").unlink()
            pipeline = make_pipeline(config, template)
            advance_to(pipeline, Phase.STALE_DEFAULT_APP_REMOVED)
            assert pipeline.state is Phase.STALE_DEFAULT_APP_REMOVED, (
                "Cleanup should succeed without stale paths"
            )

    @pytest.mark.skipif(
        not hasattr(os, "geteuid") or os.geteuid() == 0,
        reason="permission checks need a non-root POSIX user",
    )
    def test_unexpected_errors_are_fatal(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Errors other than "not found" should abort the phase."""

        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.PRE_HOOKS_DONE)
        resources = pipeline.context.resources_dir
        resources.chmod(0o555)
        try:
            with pytest.raises(StaleCleanupFailed) as excinfo:
                asyncio.run(pipeline.remove_stale_default_app())
        finally:
            resources.chmod(0o755)

        assert excinfo.value.phase is Phase.STALE_DEFAULT_APP_REMOVED, (
            "Error should name the cleanup phase"
        )


class TestPruning:
    """Pruning phase behaviour."""

    def test_disabled_pruning_leaves_tree_identical(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """With pruning disabled the copied tree should not change."""

        after_prune_calls: list[object] = []
        pruner = RecordingPruner()
        pipeline = make_pipeline(
            make_config(prune=False, after_prune=(after_prune_calls.append,)),
            template_dir,
            pruner=pruner,
        )
        advance_to(pipeline, Phase.APP_COPIED)
        before = tree_snapshot(pipeline.context.resources_app_dir)
        advance_to(pipeline, Phase.POST_PRUNE_HOOKS_DONE)

        assert tree_snapshot(pipeline.context.resources_app_dir) == before, (
            "Dependency tree should be byte-identical"
        )
        assert pruner.calls == [], "Pruner should not be invoked"
        assert after_prune_calls == [], "After-prune hooks should not run"

    def test_pruner_failure_becomes_prune_failed(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Pruner exceptions should be reported against ``Pruned``."""

        class BrokenPruner:
            async def prune(self, app_dir: Path) -> None:
                message = f"cannot prune {app_dir}"
                raise OSError(message)

        pipeline = make_pipeline(make_config(), template_dir, pruner=BrokenPruner())
        advance_to(pipeline, Phase.STALE_DEFAULT_APP_REMOVED)

        with pytest.raises(PruneFailed) as excinfo:
            asyncio.run(pipeline.prune())

        assert excinfo.value.phase is Phase.PRUNED, "Error should name Pruned"


class TestArchive:
    """Archiving phase behaviour."""

    def test_archive_replaces_app_directory(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """With archive options the app directory should become one file."""

        archiver = CopyingArchiver()
        options = ArchiveOptions()
        pipeline = make_pipeline(
            make_config(archive=options), template_dir, archiver=archiver
        )
        advance_to(pipeline, Phase.ARCHIVED)

        resources = pipeline.context.resources_dir
        assert not pipeline.context.resources_app_dir.exists(), "App dir should be removed"
        assert (resources / "app.asar").is_file(), "Archive should exist"
        assert archiver.calls == [
            (pipeline.context.resources_app_dir, resources / "app.asar", options)
        ], "Archiver should receive the app dir, destination and options"

    def test_no_archive_options_keep_app_directory(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Without archive options the app directory should be untouched."""

        archiver = CopyingArchiver()
        pipeline = make_pipeline(make_config(), template_dir, archiver=archiver)
        advance_to(pipeline, Phase.POST_PRUNE_HOOKS_DONE)
        before = tree_snapshot(pipeline.context.resources_app_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        assert tree_snapshot(pipeline.context.resources_app_dir) == before, (
            "App directory should be unchanged"
        )
        assert archiver.calls == [], "Archiver should not be invoked"

    def test_archiver_failure_keeps_app_directory(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """A failed archive should leave the source tree in place."""

        pipeline = make_pipeline(
            make_config(archive=ArchiveOptions()),
            template_dir,
            archiver=FailingArchiver(),
        )
        advance_to(pipeline, Phase.POST_PRUNE_HOOKS_DONE)

        with pytest.raises(ArchiveFailed) as excinfo:
            asyncio.run(pipeline.archive())

        assert excinfo.value.phase is Phase.ARCHIVED, "Error should name Archived"
        assert pipeline.context.resources_app_dir.is_dir(), "Source must be kept"


class TestRelocation:
    """Moving the staged bundle to its final path."""

    def test_tmpdir_staging_is_moved(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """The staging directory should be moved to the final path."""

        pipeline = make_pipeline(make_config(), template_dir)

        final = asyncio.run(pipeline.run())

        assert final == pipeline.context.final_path, "run() should return the final path"
        assert (final / "resources" / "app" / "index.js").is_file(), "Bundle incomplete"
        assert not pipeline.context.staging_path.exists(), "Staging dir should be gone"
        assert pipeline.state is Phase.DONE, "Pipeline should finish in Done"

    def test_direct_staging_writes_final_path(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Without tmpdir the bundle should be built in place."""

        config = make_config(use_tmpdir=False)
        pipeline = make_pipeline(config, template_dir)

        assert pipeline.context.staging_path == pipeline.context.final_path, (
            "Staging should happen at the final path"
        )
        final = asyncio.run(pipeline.run())
        assert (final / "runtime-bin").is_file(), "Bundle should exist at final path"

    def test_existing_final_path_is_not_clobbered(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Relocation should refuse to replace an earlier bundle by default."""

        pipeline = make_pipeline(make_config(), template_dir)
        pipeline.context.final_path.mkdir(parents=True)

        with pytest.raises(RelocateFailed) as excinfo:
            asyncio.run(pipeline.run())

        assert excinfo.value.phase is Phase.RELOCATED, "Error should name Relocated"
        assert pipeline.context.staging_path.is_dir(), "Staging dir should be left"

    def test_overwrite_replaces_final_path(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """``overwrite`` should replace an existing bundle."""

        pipeline = make_pipeline(make_config(overwrite=True), template_dir)
        stale = pipeline.context.final_path / "stale.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("old", encoding="utf-8")

        final = asyncio.run(pipeline.run())

        assert not (final / "stale.txt").exists(), "Old bundle should be replaced"


class TestOrdering:
    """State machine ordering guarantees."""

    def test_phases_cannot_be_skipped(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Calling a later phase first should raise :class:`StageError`."""

        pipeline = make_pipeline(make_config(), template_dir)

        with pytest.raises(StageError, match="phases must run in order"):
            asyncio.run(pipeline.copy_app())

    def test_phases_cannot_be_repeated(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Re-entering a completed phase should raise :class:`StageError`."""

        pipeline = make_pipeline(make_config(), template_dir)
        asyncio.run(pipeline.move_template())

        with pytest.raises(StageError, match="Cannot enter TemplateMoved"):
            asyncio.run(pipeline.move_template())


class TestPlatformOperations:
    """Extra resources and binary renaming."""

    def test_single_resource_matches_one_element_collection(
        self, make_config: ConfigFactory, workspace: Path
    ) -> None:
        """A bare path should behave like a one-element list."""

        licence = workspace / "LICENSE"
        licence.write_text("MIT", encoding="utf-8")
        snapshots = []
        for index, resources in enumerate((licence, [licence])):
            template = workspace / f"template-{index}"
            (template / "resources").mkdir(parents=True)
            config = make_config(name=f"demo{index}")
            pipeline = make_pipeline(config, template)
            advance_to(pipeline, Phase.ARCHIVED)
            asyncio.run(pipeline.copy_extra_resources(resources))
            snapshots.append(tree_snapshot(pipeline.context.resources_dir))

        assert snapshots[0] == snapshots[1], "Single and list forms should match"
        assert snapshots[0]["LICENSE"] == b"MIT", "Resource should be keyed by basename"

    def test_extra_resource_directories_and_empty_lists(
        self, make_config: ConfigFactory, template_dir: Path, workspace: Path
    ) -> None:
        """Directories should be copied recursively and empty input ignored."""

        assets = workspace / "assets"
        (assets / "icons").mkdir(parents=True)
        (assets / "icons" / "app.png").write_bytes(b"png")
        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        asyncio.run(pipeline.copy_extra_resources(None))
        asyncio.run(pipeline.copy_extra_resources([]))
        asyncio.run(pipeline.copy_extra_resources([str(assets)]))

        copied = pipeline.context.resources_dir / "assets" / "icons" / "app.png"
        assert copied.read_bytes() == b"png", "Directory resources should be copied"

    def test_missing_extra_resource_fails(
        self, make_config: ConfigFactory, template_dir: Path, workspace: Path
    ) -> None:
        """A missing resource should raise :class:`CopyFailed`."""

        good = workspace / "README"
        good.write_text("read me", encoding="utf-8")
        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        with pytest.raises(CopyFailed, match="absent"):
            asyncio.run(
                pipeline.copy_extra_resources([good, workspace / "absent"])
            )

        assert (pipeline.context.resources_dir / "README").is_file(), (
            "Sibling copies should still complete"
        )

    def test_duplicate_resource_basenames_are_rejected(
        self, make_config: ConfigFactory, template_dir: Path, workspace: Path
    ) -> None:
        """Resources sharing a basename should fail before anything is copied."""

        first = workspace / "one" / "LICENSE"
        second = workspace / "two" / "LICENSE"
        for path, text in ((first, "MIT"), (second, "GPL")):
            path.parent.mkdir()
            path.write_text(text, encoding="utf-8")
        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        with pytest.raises(CopyFailed, match="resources/LICENSE") as excinfo:
            asyncio.run(pipeline.copy_extra_resources([first, second]))

        assert excinfo.value.phase is Phase.ARCHIVED, "Error should name the state"
        assert not (pipeline.context.resources_dir / "LICENSE").exists(), (
            "No resource should be copied when names collide"
        )

    def test_rename_runtime_binary(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """The template binary should be renamed after the app."""

        pipeline = make_pipeline(make_config(), template_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        renamed = asyncio.run(pipeline.rename_runtime_binary())

        assert renamed == pipeline.context.staging_path / "demo", "Unexpected name"
        assert renamed.is_file(), "Renamed binary should exist"
        assert not (pipeline.context.staging_path / "electron").exists(), (
            "Original binary name should be gone"
        )

    def test_rename_missing_binary_fails(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """A template without the expected binary should raise :class:`RenameFailed`."""

        pipeline = make_pipeline(make_config(platform="win32"), template_dir)
        advance_to(pipeline, Phase.ARCHIVED)

        with pytest.raises(RenameFailed, match="electron.exe"):
            asyncio.run(pipeline.rename_runtime_binary())

    def test_operations_require_staged_template(
        self, make_config: ConfigFactory, template_dir: Path
    ) -> None:
        """Platform operations before the template move should be rejected."""

        pipeline = make_pipeline(make_config(), template_dir)

        with pytest.raises(StageError, match="needs a staged template"):
            asyncio.run(pipeline.rename_runtime_binary())
