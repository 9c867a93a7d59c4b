"""Minimal git helpers.

The helpers below expose the handful of git primitives the patch workflow
needs: checked, reversed, three-way and rejecting applies, porcelain status,
disposable worktrees, and the clone/fetch/reset plumbing used to keep the
upstream checkout fresh.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence

import shutil
import subprocess
import tempfile


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def _run(args: Sequence[str], *, cwd: Path, check: bool = True) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    process = subprocess.run(
        command,
        cwd=cwd,
        capture_output=True,
        text=False,
        check=False,
    )
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """One porcelain status record."""

    code: str
    path: Path
    origin: Path | None = None

    @property
    def untracked(self) -> bool:
        return self.code == "??"

    @property
    def kind(self) -> str:
        return "untracked" if self.untracked else "modified"


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def clone(
        cls,
        url: str,
        destination: Path | str,
        *,
        branch: str | None = None,
        depth: int | None = None,
    ) -> "GitRepository":
        """Clone ``url`` into ``destination`` and wrap the result."""

        target = Path(destination).resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        args: List[str] = ["clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        if branch:
            args.extend(["--branch", branch])
        args.extend([url, str(target)])
        _run(args, cwd=target.parent)
        return cls(target)

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(list(args), cwd=self.root, check=check)

    # ---------------------------------------------------------------- apply
    def apply(
        self,
        patch_path: Path | str,
        *,
        check_only: bool = False,
        reverse: bool = False,
        three_way: bool = False,
        reject: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``git apply`` with the requested mode; never raises on failure."""

        args: List[str] = ["apply"]
        if check_only:
            args.append("--check")
        if reverse:
            args.append("--reverse")
        if three_way:
            args.append("--3way")
        if reject:
            args.append("--reject")
        args.append(str(Path(patch_path).resolve()))
        return self.git(*args, check=False)

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[StatusEntry]:
        """Return porcelain status entries, listing every untracked file individually."""

        result = self.git("status", "--porcelain", "-z", "--untracked-files=all")
        entries: List[StatusEntry] = []
        records = iter(result.stdout.split("\0"))
        for record in records:
            if not record:
                continue
            code = record[:2]
            raw_path = record[3:]
            origin: Path | None = None
            if code[0] in {"R", "C"}:
                # -z emits the rename source as a separate record
                source = next(records, None)
                origin = Path(source) if source else None
            entries.append(StatusEntry(code=code.strip() or code, path=Path(raw_path), origin=origin))
        return entries

    def untracked_files(self) -> List[Path]:
        """Return the list of untracked files."""

        return [entry.path for entry in self.status_entries() if entry.untracked]

    def is_clean(self) -> bool:
        """Return ``True`` when the working tree has no pending changes."""

        return not self.status_entries()

    # ----------------------------------------------------------- diff helpers
    def diff(self, *paths: str, base: str | None = None) -> str:
        """Return the unified diff for ``paths`` (defaults to the whole repo).

        With ``base`` the diff compares that commit with the working tree, so
        staged and unstaged edits are both included.
        """

        args: List[str] = ["diff", "--no-color", "--no-ext-diff"]
        if base:
            args.append(base)
        if paths:
            args.extend(["--", *paths])
        return self.git(*args).stdout

    def hash_object(self, path: Path | str) -> str:
        """Return the blob id git would assign to ``path``."""

        return self.git("hash-object", "--", str(path)).stdout.strip()

    def restore_from_head(self, *paths: str) -> List[str]:
        """Check ``paths`` out of ``HEAD``; untracked or missing paths are skipped."""

        restored: List[str] = []
        for path in paths:
            result = self.git("checkout", "HEAD", "--", path, check=False)
            if result.returncode == 0:
                restored.append(path)
        return restored

    def unstage(self, *paths: str) -> None:
        """Drop index entries for ``paths`` without touching the working tree."""

        if paths:
            self.git("reset", "-q", "HEAD", "--", *paths, check=False)

    # ---------------------------------------------------------------- state
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self.git("rev-parse", "--abbrev-ref", "HEAD", check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def current_head(self) -> str | None:
        result = self.git("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            return None
        head = result.stdout.strip()
        return head or None

    def latest_commit_summary(self) -> str:
        result = self.git("log", "-1", "--oneline", check=False)
        return result.stdout.strip()

    def remote_url(self, remote: str = "origin") -> str | None:
        result = self.git("config", "--get", f"remote.{remote}.url", check=False)
        url = result.stdout.strip()
        return url or None

    def rev_parse(self, ref: str) -> str | None:
        result = self.git("rev-parse", "--verify", "--quiet", ref, check=False)
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    # ------------------------------------------------------------- cleaning
    def reset_hard(self) -> None:
        self.git("reset", "--hard")

    def clean_untracked(self) -> None:
        self.git("clean", "-fd")

    # ------------------------------------------------------------ worktrees
    @contextmanager
    def temporary_worktree(self) -> Iterator["GitRepository"]:
        """Create a disposable worktree at ``HEAD`` carrying the tracked modifications."""

        base_dir = tempfile.TemporaryDirectory(prefix="temu-probe-")
        try:
            worktree_root = Path(base_dir.name) / "worktree"
            self.git("worktree", "add", "--detach", str(worktree_root), "HEAD")
            try:
                worktree = GitRepository(worktree_root)
                self._mirror_into(worktree)
                yield worktree
            finally:
                self.git("worktree", "remove", "--force", str(worktree_root), check=False)
                self.git("worktree", "prune", check=False)
        finally:
            base_dir.cleanup()

    def _mirror_into(self, worktree: "GitRepository") -> None:
        """Replay tracked working-tree changes from this repository into ``worktree``."""

        diff_text = self.git("diff", "--binary", "HEAD", check=False).stdout
        if not diff_text.strip():
            return
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".patch", delete=False) as handle:
            handle.write(diff_text)
            temp_path = Path(handle.name)
        try:
            result = worktree.apply(temp_path)
            if result.returncode != 0:
                message = result.stderr.strip() or result.stdout.strip() or "unable to mirror worktree state"
                raise GitError(f"Failed to mirror worktree state: {message}")
        finally:
            temp_path.unlink(missing_ok=True)
        worktree.git("add", "--all")
        worktree.git(
            "-c",
            "user.name=temu",
            "-c",
            "user.email=temu@localhost",
            "commit",
            "--no-verify",
            "-q",
            "-m",
            "temu: mirror working tree",
        )


def remove_tree(path: Path) -> None:
    """Delete ``path`` whether it is a directory, file or dangling symlink."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


__all__ = ["GitError", "GitRepository", "StatusEntry", "remove_tree"]
