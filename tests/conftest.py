"""Pytest configuration and fixtures for wt tests."""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from wt.errors import ExternalToolError
from wt.git.worktree import WorktreeInfo
from wt.registry import Registry


class FakeBackend:
    """In-memory worktree backend that materializes directories on disk."""

    def __init__(self, repo_name: str = "repo") -> None:
        self.repo_name = repo_name
        self.branches: set[str] = set()
        self.worktrees: dict[Path, str] = {}
        self.calls: list[str] = []
        self.fail_create = False
        self.fail_remove = False
        self.fail_delete_branch = False

    def repository_name(self, repo_path: Path) -> str:
        self.calls.append("repository_name")
        return self.repo_name

    def create(self, repo_path: Path, target_path: Path, branch: str) -> None:
        self.calls.append("create")
        if self.fail_create:
            raise ExternalToolError(f"failed to create worktree {target_path}")
        if branch in self.branches:
            raise ExternalToolError(f"a branch named {branch!r} already exists")
        target_path.mkdir(parents=True)
        self.branches.add(branch)
        self.worktrees[target_path] = branch

    def create_from_existing_branch(self, repo_path: Path, target_path: Path, branch: str) -> None:
        self.calls.append("create_from_existing_branch")
        target_path.mkdir(parents=True)
        self.worktrees[target_path] = branch

    def remove(self, repo_path: Path, target_path: Path) -> None:
        self.calls.append("remove")
        if self.fail_remove:
            raise ExternalToolError(f"failed to remove worktree {target_path}")
        shutil.rmtree(target_path)
        self.worktrees.pop(target_path, None)

    def branch_exists(self, repo_path: Path, branch: str) -> bool:
        self.calls.append("branch_exists")
        return branch in self.branches

    def delete_branch(self, repo_path: Path, branch: str) -> None:
        self.calls.append("delete_branch")
        if self.fail_delete_branch:
            raise ExternalToolError(f"failed to delete branch {branch!r}")
        self.branches.discard(branch)

    def prune(self, repo_path: Path) -> None:
        self.calls.append("prune")

    def list(self, repo_path: Path) -> list[WorktreeInfo]:
        return [WorktreeInfo(path=str(path), branch=branch) for path, branch in self.worktrees.items()]


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def registry(tmp_path: Path) -> Registry:
    return Registry(
        path=tmp_path / "home" / ".wt" / "config.yaml",
        worktrees_base=str(tmp_path / "worktrees"),
    )


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "commit.gpgsign", "false")

    (repo / "README.md").write_text("# test\n", encoding="utf-8")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-m", "initial")
    _git(repo, "branch", "-M", "main")
    return repo.resolve()
