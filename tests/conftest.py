from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from temu.tools.vcs import GitRepository  # noqa: E402

TEN_LINES = "".join(f"line {number}\n" for number in range(1, 11))


def init_repo(root: Path) -> GitRepository:
    """Initialise a git repository on ``main`` with a committer identity."""

    root.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q"], cwd=root, check=True, capture_output=True)
    repo = GitRepository(root)
    repo.git("symbolic-ref", "HEAD", "refs/heads/main")
    repo.git("config", "user.email", "agent@example.com")
    repo.git("config", "user.name", "Temu Tester")
    repo.git("config", "commit.gpgsign", "false")
    return repo


@dataclass(slots=True)
class UpstreamTree:
    """Throwaway upstream checkout used by the patch tests."""

    repo: GitRepository

    @property
    def root(self) -> Path:
        return self.repo.root

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def commit(self, message: str = "update") -> None:
        self.repo.git("add", "--all")
        self.repo.git("commit", "-q", "-m", message)

    def diff_to_patch(self, destination: Path) -> Path:
        """Write the current working-tree diff to ``destination`` and reset the tree."""

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(self.repo.diff(), encoding="utf-8")
        self.repo.git("checkout", "--", ".")
        return destination


@pytest.fixture()
def upstream(tmp_path: Path) -> UpstreamTree:
    """A repository with ``app.txt`` (ten lines) and a README committed on ``main``."""

    tree = UpstreamTree(repo=init_repo(tmp_path / "teku"))
    tree.write("app.txt", TEN_LINES)
    tree.write("README.md", "# upstream\n")
    tree.write("settings.gradle", "include 'core'\n")
    tree.commit("initial upstream state")
    return tree


@pytest.fixture()
def line_five_patch(upstream: UpstreamTree, tmp_path: Path) -> Path:
    """A git-generated patch replacing line 5 of ``app.txt``; the tree is left pristine."""

    upstream.write("app.txt", TEN_LINES.replace("line 5\n", "line five\n"))
    return upstream.diff_to_patch(tmp_path / "patches" / "line-five.patch")
