"""Multi-strategy patch application against a live git working tree.

Strategies run strictly in order and stop at the first that resolves:

1. direct ``git apply --check`` followed by the real apply;
2. the overlay fast path (the caller's probe says the patch is already in);
3. ``git apply --check --reverse`` meaning the tree already matches;
4. a three-way merge, rehearsed in a disposable worktree first;
5. ``git apply --reject`` to collect diagnostics for every failing hunk.

Only the last strategy is allowed to leave the tree partially patched, and the
outcome says so.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Tuple

from .hygiene import find_artifacts, remove_artifacts
from .patch import PatchError, emit_patch_event, parse_hunks, read_patch
from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

# Snippets centre on the hunk's new-side start line.
SNIPPET_RADIUS = 5
REJECT_SUFFIX = ".rej"
_PATCH_FAILED_RE = re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")
_PATCH_DOES_NOT_APPLY_RE = re.compile(r"error: (?P<path>.+?): patch does not apply")
_ALREADY_EXISTS_RE = re.compile(r"error: (?P<path>.+?): already exists in working directory")
_MISSING_FILE_RE = re.compile(r"error: (?P<path>.+?): No such file or directory")


class ApplyStatus(str, Enum):
    """Resolution reached by :class:`PatchApplicator`."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already-applied"
    APPLIED_WITH_MERGE = "applied-with-merge"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class RejectedHunk:
    """A hunk git could not place, with the surrounding lines of the current file."""

    path: Path
    header: str
    text: str
    target_line: int
    snippet: Mapping[int, str] = field(default_factory=dict)

    def render_snippet(self) -> str:
        if not self.snippet:
            return ""
        width = len(str(max(self.snippet)))
        return "\n".join(
            f"{number:>{width}} {'>' if number == self.target_line else '|'} {text}"
            for number, text in sorted(self.snippet.items())
        )


@dataclass(slots=True)
class ApplyOutcome:
    """Result of one applicator run."""

    status: ApplyStatus
    strategy: str
    patch_path: Path
    rejected: Tuple[RejectedHunk, ...] = ()
    failures: Tuple[Mapping[str, Any], ...] = ()
    stdout: str = ""
    stderr: str = ""
    branch: str | None = None
    latest_commit: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not ApplyStatus.CONFLICT

    @property
    def partial(self) -> bool:
        """``True`` when the tree may hold a mix of applied and rejected hunks."""
        return self.status is ApplyStatus.CONFLICT

    @property
    def changed_tree(self) -> bool:
        return self.status in {ApplyStatus.APPLIED, ApplyStatus.APPLIED_WITH_MERGE}


def _parse_git_apply_failures(output: str) -> Tuple[Mapping[str, Any], ...]:
    """Parse git apply stderr for failing file metadata."""
    if not output:
        return ()
    entries: list[dict[str, Any]] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _PATCH_FAILED_RE.match(line)
        if match:
            line_text = match.group("line")
            entries.append(
                {
                    "path": match.group("path"),
                    "line": int(line_text) if line_text is not None else None,
                    "reason": "patch_failed",
                }
            )
            continue
        match = _PATCH_DOES_NOT_APPLY_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "does_not_apply"})
            continue
        match = _ALREADY_EXISTS_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "already_exists"})
            continue
        match = _MISSING_FILE_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "missing"})
    return tuple(entries)


def read_snippet(path: Path, line_number: int, *, radius: int = SNIPPET_RADIUS) -> dict[int, str]:
    """Return ``{line_number: text}`` for the lines of ``path`` within ``radius`` of ``line_number``."""
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return {}
    if not lines:
        return {}
    centre = max(line_number, 1)
    first = max(centre - radius, 1)
    last = min(centre + radius, len(lines))
    return {number: lines[number - 1] for number in range(first, last + 1)}


class PatchApplicator:
    """Bring a working tree into the state described by a validated patch."""

    def __init__(
        self,
        repo: GitRepository,
        *,
        already_applied_probe: Callable[[], bool] | None = None,
        snippet_radius: int = SNIPPET_RADIUS,
    ) -> None:
        self.repo = repo
        self.already_applied_probe = already_applied_probe
        self.snippet_radius = snippet_radius

    def apply(self, patch_path: Path | str) -> ApplyOutcome:
        path = Path(patch_path).resolve()
        patch = read_patch(path)

        direct = self.repo.apply(path, check_only=True)
        if direct.returncode == 0:
            result = self.repo.apply(path)
            if result.returncode != 0:
                message = result.stderr.strip() or result.stdout.strip() or "unknown error"
                raise PatchError(f"Patch failed to apply after a passing check: {message}")
            return self._resolved(ApplyStatus.APPLIED, "direct", path, result.stdout, result.stderr)

        failures = _parse_git_apply_failures(direct.stderr)
        LOGGER.info("Direct apply check failed: %s", direct.stderr.strip() or "no output")

        if self.already_applied_probe is not None and self.already_applied_probe():
            return self._resolved(ApplyStatus.ALREADY_APPLIED, "overlay-marker", path, failures=failures)

        reverse = self.repo.apply(path, check_only=True, reverse=True)
        if reverse.returncode == 0:
            return self._resolved(ApplyStatus.ALREADY_APPLIED, "reverse-check", path, failures=failures)

        merged = self._three_way(path, [entry.as_posix() for entry in patch.paths])
        if merged is not None:
            merged.failures = failures
            return merged

        return self._reject_diagnostics(path, failures)

    # --------------------------------------------------------------- helpers
    def _resolved(
        self,
        status: ApplyStatus,
        strategy: str,
        path: Path,
        stdout: str = "",
        stderr: str = "",
        *,
        failures: Tuple[Mapping[str, Any], ...] = (),
    ) -> ApplyOutcome:
        outcome = ApplyOutcome(
            status=status,
            strategy=strategy,
            patch_path=path,
            failures=failures,
            stdout=stdout,
            stderr=stderr,
            branch=self.repo.current_branch(),
            latest_commit=self.repo.latest_commit_summary(),
        )
        emit_patch_event(
            f"patch_{status.value.replace('-', '_')}",
            strategy=strategy,
            patch_path=path,
            repo_root=self.repo.root,
        )
        return outcome

    def _three_way(self, path: Path, touched: list[str]) -> ApplyOutcome | None:
        """Rehearse ``git apply --3way`` in a disposable worktree, then run it for real."""

        try:
            with self.repo.temporary_worktree() as rehearsal:
                trial = rehearsal.apply(path, three_way=True)
        except GitError as error:
            LOGGER.warning("Three-way merge rehearsal unavailable: %s", error)
            return None
        if trial.returncode != 0:
            LOGGER.info("Three-way merge rehearsal failed: %s", trial.stderr.strip() or "no output")
            return None

        result = self.repo.apply(path, three_way=True)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown error"
            raise PatchError(
                f"Three-way merge failed after a passing rehearsal: {message}",
                details={"patch_path": path.as_posix()},
            )
        # --3way stages what it touches; leave the index as a plain apply would
        self.repo.unstage(*touched)
        return self._resolved(ApplyStatus.APPLIED_WITH_MERGE, "three-way", path, result.stdout, result.stderr)

    def _reject_diagnostics(self, path: Path, failures: Tuple[Mapping[str, Any], ...]) -> ApplyOutcome:
        root = self.repo.root
        result = self.repo.apply(path, reject=True)

        rejected: list[RejectedHunk] = []
        for reject_path in find_artifacts(root, (REJECT_SUFFIX,)):
            relative = reject_path.relative_to(root)
            target = relative.with_name(relative.name[: -len(REJECT_SUFFIX)])
            text = reject_path.read_text(encoding="utf-8", errors="replace")
            try:
                hunks = parse_hunks(text.splitlines())
            except PatchError as error:
                LOGGER.warning("Unreadable reject file %s: %s", relative.as_posix(), error)
                continue
            for hunk in hunks:
                target_line = hunk.header.new_start
                rejected.append(
                    RejectedHunk(
                        path=target,
                        header=hunk.raw_header,
                        text=hunk.render(),
                        target_line=target_line,
                        snippet=read_snippet(root / target, target_line, radius=self.snippet_radius),
                    )
                )

        failures = failures or _parse_git_apply_failures(result.stderr)
        rejected.extend(self._missing_targets(path, failures, result.stderr))

        # Report everything before the artifacts disappear.
        for hunk in rejected:
            LOGGER.error("Conflict in %s at line %d\n%s", hunk.path.as_posix(), hunk.target_line, hunk.text.rstrip())
            if hunk.snippet:
                LOGGER.error("Current content of %s:\n%s", hunk.path.as_posix(), hunk.render_snippet())
        removed = remove_artifacts(root)

        outcome = ApplyOutcome(
            status=ApplyStatus.CONFLICT,
            strategy="reject",
            patch_path=path,
            rejected=tuple(rejected),
            failures=failures,
            stdout=result.stdout,
            stderr=result.stderr,
            branch=self.repo.current_branch(),
            latest_commit=self.repo.latest_commit_summary(),
        )
        emit_patch_event(
            "patch_conflict",
            patch_path=path,
            repo_root=root,
            rejected=[{"path": hunk.path, "header": hunk.header} for hunk in rejected],
            failures=list(outcome.failures),
            removed_artifacts=removed,
        )
        return outcome

    def _missing_targets(
        self, path: Path, failures: Tuple[Mapping[str, Any], ...], stderr: str
    ) -> list[RejectedHunk]:
        """Report every hunk aimed at a file that is gone; git writes no reject file for those."""

        missing = {
            entry["path"]
            for entry in (*failures, *_parse_git_apply_failures(stderr))
            if entry.get("reason") == "missing"
        }
        if not missing:
            return []
        rejected: list[RejectedHunk] = []
        for diff in read_patch(path).diffs:
            target = diff.origin or diff.path
            if target.as_posix() not in missing:
                continue
            for hunk in diff.hunks:
                rejected.append(
                    RejectedHunk(
                        path=target,
                        header=hunk.raw_header,
                        text=hunk.render(),
                        target_line=hunk.header.new_start,
                    )
                )
        return rejected


__all__ = [
    "ApplyOutcome",
    "ApplyStatus",
    "PatchApplicator",
    "RejectedHunk",
    "SNIPPET_RADIUS",
    "read_snippet",
]
