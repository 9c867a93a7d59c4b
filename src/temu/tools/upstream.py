"""Clone or refresh the upstream checkout the patch is applied to."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .vcs import GitError, GitRepository, remove_tree

LOGGER = logging.getLogger(__name__)

DEFAULT_REMOTE_BASE = "https://github.com"


class UpstreamError(RuntimeError):
    """Raised when the upstream checkout cannot be brought to the requested ref."""


class CheckoutAction(str, Enum):
    CLONED = "cloned"
    RECLONED = "recloned"
    SWITCHED = "switched"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class UpstreamCheckout:
    path: Path
    url: str
    branch: str
    commit: str | None
    head: str | None
    action: CheckoutAction
    cleaned: bool = False


def upstream_url(org: str, repo: str, remote_base: str = DEFAULT_REMOTE_BASE) -> str:
    if not org or not repo:
        raise UpstreamError(f"Invalid upstream repository '{org}/{repo}'")
    return f"{remote_base.rstrip('/')}/{org}/{repo}.git"


def _same_remote(left: str | None, right: str) -> bool:
    def normalise(url: str) -> str:
        value = url.strip().rstrip("/")
        return value[: -len(".git")] if value.endswith(".git") else value

    return left is not None and normalise(left) == normalise(right)


def _clone(url: str, target: Path, branch: str, commit: str | None) -> GitRepository:
    LOGGER.info("Cloning %s (%s) into %s", url, commit or branch, target)
    if commit:
        repo = GitRepository.clone(url, target, branch=branch)
        _checkout_commit(repo, commit)
        return repo
    return GitRepository.clone(url, target, branch=branch, depth=1)


def _fetch_branch(repo: GitRepository, branch: str, *, check: bool = True) -> bool:
    result = repo.git("fetch", "origin", f"+refs/heads/{branch}:refs/remotes/origin/{branch}", check=check)
    return result.returncode == 0


def _checkout_commit(repo: GitRepository, commit: str) -> None:
    if repo.rev_parse(f"{commit}^{{commit}}") is None:
        if (repo.root / ".git" / "shallow").exists():
            repo.git("fetch", "--unshallow", "origin")
        else:
            repo.git("fetch", "origin")
    result = repo.git("checkout", "-q", commit, check=False)
    if result.returncode != 0:
        message = result.stderr.strip() or "unknown error"
        raise UpstreamError(f"Unable to check out commit {commit}: {message}")


def _ensure_clean(repo: GitRepository, force_clean: bool) -> bool:
    """Return ``True`` when local changes were discarded."""
    if repo.is_clean():
        return False
    if not force_clean:
        raise UpstreamError(
            f"Upstream checkout {repo.root} has local changes; rerun with force_clean to discard them"
        )
    LOGGER.warning("Discarding local changes in %s", repo.root)
    repo.reset_hard()
    repo.clean_untracked()
    return True


def prepare_upstream(
    org: str,
    repo: str,
    branch: str,
    target: Path | str,
    *,
    commit: str | None = None,
    force_clean: bool = False,
    remote_base: str = DEFAULT_REMOTE_BASE,
) -> UpstreamCheckout:
    """Leave ``target`` as a clean checkout of ``org/repo`` at ``branch`` (or the pinned ``commit``).

    A missing target is cloned. A directory that is not a git repository, or one
    whose ``origin`` points elsewhere, is removed and cloned again. Switching
    branches and discarding local edits only happen when the tree is clean or
    ``force_clean`` is set; otherwise :class:`UpstreamError` is raised.
    """

    url = upstream_url(org, repo, remote_base)
    path = Path(target).resolve()
    cleaned = False

    try:
        if not path.exists():
            checkout = _clone(url, path, branch, commit)
            action = CheckoutAction.CLONED
        else:
            try:
                checkout = GitRepository(path)
            except GitError:
                checkout = None
            if checkout is None or not _same_remote(checkout.remote_url(), url):
                LOGGER.warning("%s is not a checkout of %s, cloning again", path, url)
                remove_tree(path)
                checkout = _clone(url, path, branch, commit)
                action = CheckoutAction.RECLONED
            else:
                action = CheckoutAction.UNCHANGED
                if checkout.current_branch() != branch and commit is None:
                    cleaned = _ensure_clean(checkout, force_clean)
                    LOGGER.info("Switching %s to branch %s", path, branch)
                    _fetch_branch(checkout, branch)
                    checkout.git("checkout", "-q", "-B", branch, f"origin/{branch}")
                    action = CheckoutAction.SWITCHED
                elif commit is not None:
                    if checkout.current_head() != checkout.rev_parse(f"{commit}^{{commit}}"):
                        cleaned = _ensure_clean(checkout, force_clean)
                        _checkout_commit(checkout, commit)
                        action = CheckoutAction.SWITCHED
                else:
                    cleaned = _ensure_clean(checkout, force_clean)
                    if not _fetch_branch(checkout, branch, check=False):
                        LOGGER.warning(
                            "Could not fetch %s from origin; keeping the existing checkout of %s", branch, path
                        )
                    else:
                        behind = checkout.git("rev-list", "--count", f"HEAD..origin/{branch}").stdout.strip()
                        if behind and int(behind) > 0:
                            LOGGER.info("Fast-forwarding %s by %s commit(s)", path, behind)
                            checkout.git("merge", "-q", "--ff-only", f"origin/{branch}")
                            action = CheckoutAction.UPDATED
        cleaned = _ensure_clean(checkout, force_clean) or cleaned
    except GitError as error:
        raise UpstreamError(str(error)) from error

    return UpstreamCheckout(
        path=path,
        url=url,
        branch=branch,
        commit=commit,
        head=checkout.current_head(),
        action=action,
        cleaned=cleaned,
    )


__all__ = [
    "CheckoutAction",
    "DEFAULT_REMOTE_BASE",
    "UpstreamCheckout",
    "UpstreamError",
    "prepare_upstream",
    "upstream_url",
]
