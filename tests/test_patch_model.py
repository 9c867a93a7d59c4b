from __future__ import annotations

from pathlib import Path

import pytest

from temu.tools.patch import (
    FileMode,
    HunkHeader,
    PatchError,
    PatchSource,
    parse_patch,
    read_patch,
    render_new_file_diff,
)
from temu.tools.validate import validate_patch


def test_hunk_header_parse_and_render() -> None:
    header = HunkHeader.parse("@@ -12,7 +12,8 @@ public class Foo {")

    assert header == HunkHeader(12, 7, 12, 8, "public class Foo {")
    assert header.render() == "@@ -12,7 +12,8 @@ public class Foo {"
    assert HunkHeader.parse("@@ -1 +1 @@") == HunkHeader(1, 1, 1, 1)
    assert HunkHeader.parse("@@ broken @@") is None


def test_render_new_file_diff_spans_whole_file() -> None:
    text = render_new_file_diff("foo.txt", "a\nb\nc\n", blob="abcdef1234")

    patch = parse_patch(text)

    assert len(patch.diffs) == 1
    diff = patch.diffs[0]
    assert diff.path == Path("foo.txt")
    assert diff.mode is FileMode.NEW
    assert len(diff.hunks) == 1
    header = diff.hunks[0].header
    assert (header.old_start, header.old_count, header.new_start, header.new_count) == (0, 0, 1, 3)
    assert "index 0000000..abcdef1\n" in text
    assert validate_patch(text).ok


def test_render_new_file_diff_without_trailing_newline() -> None:
    text = render_new_file_diff("script.sh", "#!/bin/sh\necho hi", executable=True)

    assert "new file mode 100755" in text
    assert "@@ -0,0 +1,2 @@" in text
    assert text.endswith("+echo hi\n\\ No newline at end of file\n")
    assert validate_patch(text).ok


def test_render_new_file_diff_for_empty_file_has_no_hunk() -> None:
    text = render_new_file_diff("empty.txt", "")

    patch = parse_patch(text)

    assert patch.diffs[0].hunks == ()
    assert "@@" not in text


def test_parse_patch_counts_lines() -> None:
    text = (
        "diff --git a/a.txt b/a.txt\n"
        "--- a/a.txt\n"
        "+++ b/a.txt\n"
        "@@ -1,2 +1,2 @@\n"
        " same\n"
        "-old\n"
        "+new\n"
        "diff --git a/gone.txt b/gone.txt\n"
        "deleted file mode 100644\n"
        "--- a/gone.txt\n"
        "+++ /dev/null\n"
        "@@ -1 +0,0 @@\n"
        "-bye\n"
    )

    patch = parse_patch(text)

    assert patch.paths == (Path("a.txt"), Path("gone.txt"))
    assert patch.diffs[1].mode is FileMode.DELETE
    assert patch.added_lines == 1
    assert patch.removed_lines == 2
    assert patch.line_count == 13
    assert patch.has_trailing_newline


def test_parse_patch_records_rename_source() -> None:
    text = (
        "diff --git a/README.md b/DOCS.md\n"
        "similarity index 100%\n"
        "rename from README.md\n"
        "rename to DOCS.md\n"
    )

    patch = parse_patch(text)

    assert patch.diffs[0].mode is FileMode.RENAME
    assert patch.diffs[0].origin == Path("README.md")
    assert patch.diffs[0].hunks == ()
    assert patch.paths == (Path("README.md"), Path("DOCS.md"))


def test_patch_source_paths() -> None:
    source = PatchSource.from_slug("consensys/teku", "master")

    assert source.slug == "consensys/teku"
    assert source.relative_path == Path("consensys/teku/master.patch")


@pytest.mark.parametrize("slug", ["teku", "a/b/c", "/teku", ""])
def test_patch_source_rejects_bad_slug(slug: str) -> None:
    with pytest.raises(PatchError):
        PatchSource.from_slug(slug, "master")


def test_read_patch_missing(tmp_path: Path) -> None:
    with pytest.raises(PatchError, match="Patch not found"):
        read_patch(tmp_path / "nope.patch")
