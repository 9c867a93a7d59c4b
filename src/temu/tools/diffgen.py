"""Capture working-tree edits of the upstream checkout as one clean patch.

The generator is the inverse of the apply pipeline: it first strips everything
the pipeline itself put into the tree (overlay, gitignore edits, disabled
workflows, native binaries, reject artifacts) so only developer edits remain,
then diffs tracked files, synthesizes ``new file`` diffs for untracked ones and
re-validates the result before writing it.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Sequence, Tuple

from .hygiene import reset_script_managed
from .overlay import OverlayManager
from .patch import PatchError, PatchFile, PatchSource, emit_patch_event, parse_patch, render_new_file_diff
from .validate import validate_patch
from .vcs import GitRepository, StatusEntry
from .workflows import restore_disabled_workflows

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NoChanges:
    """Nothing left to capture once excluded and script-managed paths are gone."""

    reason: str = "No changes detected in the repository"


@dataclass(frozen=True, slots=True)
class PatchStatistics:
    files: int
    lines: int
    bytes: int
    added: int
    removed: int


@dataclass(slots=True)
class GeneratedPatch:
    """A patch file written by :class:`DiffGenerator`."""

    path: Path
    patch: PatchFile
    stats: PatchStatistics
    entries: Tuple[StatusEntry, ...] = ()
    skipped: Tuple[Path, ...] = ()


def is_excluded(path: Path, patterns: Sequence[str]) -> bool:
    """Return ``True`` when ``path`` matches a glob or sits under an excluded directory."""
    posix = path.as_posix()
    for pattern in patterns:
        if fnmatch(posix, pattern) or fnmatch(path.name, pattern):
            return True
        prefix = pattern.rstrip("/")
        if prefix and not any(char in prefix for char in "*?[") and posix.startswith(prefix + "/"):
            return True
    return False


def _is_binary(data: bytes) -> bool:
    if b"\0" in data:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


@dataclass(slots=True)
class DiffGenerator:
    """Build a patch from the pending changes of ``repo``."""

    repo: GitRepository
    overlay: OverlayManager | None = None
    exclude: Tuple[str, ...] = ()
    restore_paths: Tuple[str, ...] = ()
    native_artifacts: Tuple[str, ...] = ()
    workflows_dir: Path | None = None
    source: PatchSource | None = None
    _skipped: List[Path] = field(default_factory=list, init=False, repr=False)

    def generate(self, output_path: Path | str) -> GeneratedPatch | NoChanges:
        output = Path(output_path)
        root = self.repo.root
        try:
            self._strip_managed_state()
            entries = tuple(
                entry for entry in self.repo.status_entries() if not is_excluded(entry.path, self.exclude)
            )
            if not entries:
                emit_patch_event("patch_no_changes", repo_root=root)
                return NoChanges()

            self._skipped = []
            text = self._render(entries)
            if not text:
                emit_patch_event("patch_no_changes", repo_root=root, skipped=self._skipped)
                return NoChanges(reason="Only binary untracked files changed")

            report = validate_patch(text, path=output)
            if not report.ok:
                raise PatchError(
                    "Generated patch failed validation",
                    details={"errors": report.messages()},
                )

            encoded = text.encode("utf-8")
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(encoded)

            patch = parse_patch(text, source=self.source, path=output)
            stats = PatchStatistics(
                files=len(patch.diffs),
                lines=patch.line_count,
                bytes=len(encoded),
                added=patch.added_lines,
                removed=patch.removed_lines,
            )
            emit_patch_event(
                "patch_generated",
                patch_path=output,
                repo_root=root,
                files=stats.files,
                lines=stats.lines,
                bytes=stats.bytes,
                skipped=self._skipped,
            )
            return GeneratedPatch(
                path=output,
                patch=patch,
                stats=stats,
                entries=entries,
                skipped=tuple(self._skipped),
            )
        finally:
            if self.overlay is not None:
                self.overlay.materialize(root)

    # --------------------------------------------------------------- helpers
    def _strip_managed_state(self) -> None:
        root = self.repo.root
        if self.overlay is not None:
            self.overlay.retract(root)
        result = reset_script_managed(
            self.repo,
            restore_paths=self.restore_paths,
            native_artifacts=self.native_artifacts,
        )
        if result.changed:
            LOGGER.info(
                "Reset script-managed state: restored %s, removed %s",
                ", ".join(result.restored) or "nothing",
                ", ".join(path.as_posix() for path in result.removed) or "nothing",
            )
        if self.workflows_dir is not None:
            restore_disabled_workflows(root / self.workflows_dir)

    def _render(self, entries: Sequence[StatusEntry]) -> str:
        tracked: List[str] = []
        for entry in entries:
            if entry.untracked:
                continue
            # staged renames diff against both sides
            if entry.origin is not None and entry.code.startswith("R"):
                tracked.append(entry.origin.as_posix())
            tracked.append(entry.path.as_posix())
        untracked = sorted((entry.path for entry in entries if entry.untracked), key=lambda item: item.as_posix())

        chunks: List[str] = []
        if tracked:
            diff_text = self.repo.diff(*tracked, base="HEAD")
            if diff_text:
                chunks.append(diff_text if diff_text.endswith("\n") else diff_text + "\n")
        for relative in untracked:
            rendered = self._render_untracked(relative)
            if rendered is not None:
                chunks.append(rendered)
        return "".join(chunks)

    def _render_untracked(self, relative: Path) -> str | None:
        absolute = self.repo.root / relative
        if absolute.is_symlink() or not absolute.is_file():
            LOGGER.warning("Skipping untracked non-regular file %s", relative.as_posix())
            self._skipped.append(relative)
            return None
        data = absolute.read_bytes()
        if _is_binary(data):
            LOGGER.warning("Skipping binary untracked file %s", relative.as_posix())
            self._skipped.append(relative)
            return None
        mode = absolute.stat().st_mode
        return render_new_file_diff(
            relative,
            data.decode("utf-8"),
            blob=self.repo.hash_object(relative),
            executable=bool(mode & stat.S_IXUSR) and os.name != "nt",
        )


__all__ = ["DiffGenerator", "GeneratedPatch", "NoChanges", "PatchStatistics", "is_excluded"]
