"""Workspace hygiene helpers to keep the upstream tree patch-friendly."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

from .vcs import GitRepository

ARTIFACT_SUFFIXES: tuple[str, ...] = (".rej", ".orig")


@dataclass(slots=True)
class HygieneResult:
    """Report emitted after enforcing workspace hygiene rules."""

    removed: tuple[Path, ...] = ()
    restored: tuple[str, ...] = ()
    added: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.restored or self.added)


def find_artifacts(root: Path, suffixes: Sequence[str] = ARTIFACT_SUFFIXES) -> List[Path]:
    """Return files under ``root`` (outside ``.git``) ending in one of ``suffixes``."""
    matches: List[Path] = []
    for directory, subdirs, files in os.walk(root):
        subdirs[:] = sorted(name for name in subdirs if name != ".git")
        for name in files:
            if name.endswith(tuple(suffixes)):
                matches.append(Path(directory) / name)
    return sorted(matches, key=lambda item: item.as_posix())


def remove_artifacts(root: Path, suffixes: Sequence[str] = ARTIFACT_SUFFIXES) -> List[Path]:
    """Delete stray ``.rej``/``.orig`` files and return their repository-relative paths."""
    removed: List[Path] = []
    for path in find_artifacts(root, suffixes):
        path.unlink(missing_ok=True)
        removed.append(path.relative_to(root))
    return removed


def remove_named_files(root: Path, names: Iterable[str]) -> List[Path]:
    """Delete top-level files such as downloaded native libraries."""
    removed: List[Path] = []
    for name in names:
        candidate = root / name
        if candidate.is_file() or candidate.is_symlink():
            candidate.unlink()
            removed.append(Path(name))
    return removed


def ensure_gitignore_entries(root: Path, entries: Sequence[str], *, comment: str | None = None) -> HygieneResult:
    """Append ``entries`` to ``.gitignore`` once, under an optional comment line.

    The first entry acts as the sentinel: when it is already listed nothing is
    written, which keeps repeated runs from stacking duplicate blocks.
    """

    if not entries:
        return HygieneResult()
    gitignore = root / ".gitignore"
    try:
        existing = gitignore.read_text(encoding="utf-8")
    except FileNotFoundError:
        existing = ""
    if entries[0] in existing.splitlines():
        return HygieneResult()

    block: list[str] = [""]
    if comment:
        block.append(comment)
    block.extend(entries)
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with gitignore.open("a", encoding="utf-8") as handle:
        handle.write(prefix + "\n".join(block) + "\n")
    return HygieneResult(added=tuple(entries))


def reset_script_managed(
    repo: GitRepository,
    *,
    restore_paths: Sequence[str] = (),
    native_artifacts: Sequence[str] = (),
) -> HygieneResult:
    """Undo every tree change the apply pipeline makes outside the patch itself."""

    restored = repo.restore_from_head(*restore_paths)
    removed = remove_named_files(repo.root, native_artifacts)
    removed.extend(remove_artifacts(repo.root))
    return HygieneResult(removed=tuple(removed), restored=tuple(restored))


__all__ = [
    "ARTIFACT_SUFFIXES",
    "HygieneResult",
    "ensure_gitignore_entries",
    "find_artifacts",
    "remove_artifacts",
    "remove_named_files",
    "reset_script_managed",
]
