from __future__ import annotations

from pathlib import Path

import pytest

from conftest import TEN_LINES, UpstreamTree
from temu.tools.applicator import ApplyStatus, PatchApplicator
from temu.tools.diffgen import DiffGenerator, GeneratedPatch, NoChanges, is_excluded
from temu.tools.overlay import OverlayManager
from temu.tools.patch import FileMode
from temu.tools.validate import validate_patch_file

EXCLUDES = ("libxatu.so", "libxatu.h", "test-xatu.sh", "plugins/xatu", "*.rej", "*.orig")


@pytest.fixture()
def overlay(tmp_path: Path) -> OverlayManager:
    source = tmp_path / "project" / "plugins" / "xatu"
    (source / "src").mkdir(parents=True)
    (source / "src" / "Plugin.java").write_text("class Plugin {}\n", encoding="utf-8")
    (source / "build.gradle").write_text("plugins {}\n", encoding="utf-8")
    return OverlayManager(source_root=source, destination=Path("plugins/xatu"), include=("build.gradle", "src"))


def test_untracked_file_becomes_single_new_file_hunk(upstream: UpstreamTree, tmp_path: Path) -> None:
    upstream.write("foo.txt", "one\ntwo\nthree\n")
    output = tmp_path / "out" / "main.patch"

    result = DiffGenerator(upstream.repo).generate(output)

    assert isinstance(result, GeneratedPatch)
    assert output.exists()
    assert len(result.patch.diffs) == 1
    diff = result.patch.diffs[0]
    assert diff.path == Path("foo.txt")
    assert diff.mode is FileMode.NEW
    assert len(diff.hunks) == 1
    assert (diff.hunks[0].header.old_count, diff.hunks[0].header.new_count) == (0, 3)
    assert result.stats.files == 1
    assert result.stats.added == 3
    assert result.stats.bytes == len(output.read_bytes())
    assert validate_patch_file(output).ok


def test_clean_tree_yields_no_changes(upstream: UpstreamTree, tmp_path: Path) -> None:
    output = tmp_path / "out" / "main.patch"

    result = DiffGenerator(upstream.repo).generate(output)

    assert isinstance(result, NoChanges)
    assert not output.exists()


def test_script_managed_state_is_excluded_and_restored(
    upstream: UpstreamTree, overlay: OverlayManager, tmp_path: Path
) -> None:
    upstream.write(".gitignore", "build/\n")
    upstream.write(".github/workflows/ci.yml", "on: push\n")
    upstream.commit("gitignore and workflows")

    # state left behind by an apply run
    overlay.materialize(upstream.root)
    upstream.write(".gitignore", "build/\n\n# Xatu build artifacts\n/libxatu.so\n")
    workflow = upstream.root / ".github" / "workflows" / "ci.yml"
    workflow.rename(workflow.with_name("ci.yml.disabled"))
    upstream.write("libxatu.so", "\x7fELF")
    upstream.write("test-xatu.sh", "#!/bin/sh\n")
    upstream.write("app.txt.rej", "@@ -1 +1 @@\n")
    # the developer's edit
    upstream.write("app.txt", TEN_LINES.replace("line 3\n", "line three\n"))

    generator = DiffGenerator(
        upstream.repo,
        overlay=overlay,
        exclude=EXCLUDES,
        restore_paths=(".gitignore",),
        native_artifacts=("libxatu.so", "libxatu.h"),
        workflows_dir=Path(".github/workflows"),
    )
    result = generator.generate(tmp_path / "out.patch")

    assert isinstance(result, GeneratedPatch)
    assert result.patch.paths == (Path("app.txt"),)
    assert upstream.read(".gitignore") == "build/\n"
    assert workflow.exists()
    assert not (upstream.root / "libxatu.so").exists()
    assert not (upstream.root / "app.txt.rej").exists()
    assert (upstream.root / "plugins" / "xatu" / "build.gradle").exists()


def test_overlay_rematerialized_when_nothing_changed(
    upstream: UpstreamTree, overlay: OverlayManager, tmp_path: Path
) -> None:
    overlay.materialize(upstream.root)

    result = DiffGenerator(upstream.repo, overlay=overlay, exclude=EXCLUDES).generate(tmp_path / "out.patch")

    assert isinstance(result, NoChanges)
    assert (upstream.root / "plugins" / "xatu" / "src" / "Plugin.java").exists()


def test_generated_patch_round_trips_through_applicator(upstream: UpstreamTree, tmp_path: Path) -> None:
    upstream.write("app.txt", TEN_LINES.replace("line 5\n", "line five\n") + "line 11\n")
    upstream.write("docs/new.md", "hello\nworld")
    (upstream.root / "README.md").unlink()
    expected_app = upstream.read("app.txt")
    output = tmp_path / "round.patch"

    result = DiffGenerator(upstream.repo).generate(output)
    assert isinstance(result, GeneratedPatch)
    assert {path.as_posix() for path in result.patch.paths} == {"app.txt", "README.md", "docs/new.md"}

    upstream.repo.reset_hard()
    upstream.repo.clean_untracked()
    outcome = PatchApplicator(upstream.repo).apply(output)

    assert outcome.status is ApplyStatus.APPLIED
    assert upstream.read("app.txt") == expected_app
    assert upstream.read("docs/new.md") == "hello\nworld"
    assert not (upstream.root / "README.md").exists()
    assert PatchApplicator(upstream.repo).apply(output).status is ApplyStatus.ALREADY_APPLIED


def test_staged_rename_keeps_both_sides(upstream: UpstreamTree, tmp_path: Path) -> None:
    upstream.repo.git("mv", "README.md", "DOCS.md")
    output = tmp_path / "rename.patch"

    result = DiffGenerator(upstream.repo).generate(output)

    assert isinstance(result, GeneratedPatch)
    assert set(result.patch.paths) == {Path("README.md"), Path("DOCS.md")}
    assert result.entries[0].origin == Path("README.md")

    upstream.repo.reset_hard()
    upstream.repo.clean_untracked()
    assert (upstream.root / "README.md").exists()
    outcome = PatchApplicator(upstream.repo).apply(output)

    assert outcome.status is ApplyStatus.APPLIED
    assert not (upstream.root / "README.md").exists()
    assert upstream.read("DOCS.md") == "# upstream\n"


def test_binary_untracked_files_are_skipped(upstream: UpstreamTree, tmp_path: Path) -> None:
    (upstream.root / "image.bin").write_bytes(b"\x00\x01\x02")
    upstream.write("notes.txt", "note\n")

    result = DiffGenerator(upstream.repo).generate(tmp_path / "out.patch")

    assert isinstance(result, GeneratedPatch)
    assert result.skipped == (Path("image.bin"),)
    assert result.patch.paths == (Path("notes.txt"),)


def test_only_binary_changes_yield_no_changes(upstream: UpstreamTree, tmp_path: Path) -> None:
    (upstream.root / "image.bin").write_bytes(b"\x00\x01\x02")

    result = DiffGenerator(upstream.repo).generate(tmp_path / "out.patch")

    assert isinstance(result, NoChanges)
    assert not (tmp_path / "out.patch").exists()


def test_is_excluded() -> None:
    assert is_excluded(Path("plugins/xatu/build.gradle"), ["plugins/xatu"])
    assert is_excluded(Path("src/Main.java.rej"), ["*.rej"])
    assert is_excluded(Path("libxatu.so"), ["libxatu.so"])
    assert not is_excluded(Path("plugins/other/build.gradle"), ["plugins/xatu"])
    assert not is_excluded(Path("src/libxatu.so.txt"), ["libxatu.so"])
