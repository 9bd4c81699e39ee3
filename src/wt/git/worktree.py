"""Worktree capability wrapper over the git CLI."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from wt.errors import ExternalToolError, ValidationError
from wt.git.exec import ExecError, run_git

FALLBACK_DEFAULT_BRANCH = "main"


@dataclass(frozen=True)
class WorktreeInfo:
    """One record of ``git worktree list --porcelain``."""

    path: str
    head: str = ""
    branch: str = ""
    bare: bool = False
    detached: bool = False


class WorktreeBackend(Protocol):
    """Capabilities the lifecycle coordinator needs from the VCS."""

    def repository_name(self, repo_path: Path) -> str: ...

    def create(self, repo_path: Path, target_path: Path, branch: str) -> None: ...

    def create_from_existing_branch(self, repo_path: Path, target_path: Path, branch: str) -> None: ...

    def remove(self, repo_path: Path, target_path: Path) -> None: ...

    def branch_exists(self, repo_path: Path, branch: str) -> bool: ...

    def delete_branch(self, repo_path: Path, branch: str) -> None: ...

    def prune(self, repo_path: Path) -> None: ...

    def list(self, repo_path: Path) -> list[WorktreeInfo]: ...


def parse_worktree_list(listing: str) -> list[WorktreeInfo]:
    """Parse porcelain worktree listing into records.

    Records are separated by blank lines; unknown tags are ignored.
    """
    records: list[WorktreeInfo] = []
    fields: dict[str, str | bool] = {}

    def flush() -> None:
        if fields.get("path"):
            records.append(WorktreeInfo(**fields))  # type: ignore[arg-type]
        fields.clear()

    for raw_line in listing.splitlines():
        line = raw_line.strip()
        if not line:
            flush()
            continue
        if line.startswith("worktree "):
            fields["path"] = line.split(" ", 1)[1]
        elif line.startswith("HEAD "):
            fields["head"] = line.split(" ", 1)[1]
        elif line.startswith("branch "):
            fields["branch"] = line.split(" ", 1)[1].removeprefix("refs/heads/")
        elif line == "bare":
            fields["bare"] = True
        elif line == "detached":
            fields["detached"] = True
    flush()
    return records


def resolve_repo_root(start: Path | None = None) -> Path:
    """Resolve git repo root from cwd or explicit path."""
    probe = (start or Path.cwd()).resolve()
    result = run_git(["rev-parse", "--show-toplevel"], repo_root=probe, check=False)
    root = result.stdout.strip()
    if result.returncode != 0 or not root:
        raise ValidationError(f"not inside a git repository (searched from {probe})")
    return Path(root).resolve()


class GitWorktreeBackend:
    """Blocking ``git`` subprocess implementation of :class:`WorktreeBackend`."""

    def _git(self, repo_path: Path, args: list[str], action: str) -> str:
        try:
            return run_git(args, repo_root=repo_path).stdout
        except ExecError as exc:
            raise ExternalToolError(f"failed to {action}", exc.result) from exc

    def repository_name(self, repo_path: Path) -> str:
        try:
            out = run_git(["rev-parse", "--show-toplevel"], repo_root=repo_path).stdout.strip()
        except ExecError as exc:
            raise ExternalToolError(f"not a git repository: {repo_path}", exc.result) from exc
        return Path(out).name

    def create(self, repo_path: Path, target_path: Path, branch: str) -> None:
        self._git(
            repo_path,
            ["worktree", "add", "-b", branch, str(target_path)],
            f"create worktree {target_path} on new branch {branch}",
        )

    def create_from_existing_branch(self, repo_path: Path, target_path: Path, branch: str) -> None:
        self._git(
            repo_path,
            ["worktree", "add", str(target_path), branch],
            f"create worktree {target_path} from branch {branch}",
        )

    def remove(self, repo_path: Path, target_path: Path) -> None:
        self._git(
            repo_path,
            ["worktree", "remove", str(target_path), "--force"],
            f"remove worktree {target_path}",
        )

    def branch_exists(self, repo_path: Path, branch: str) -> bool:
        result = run_git(
            ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
            repo_root=repo_path,
            check=False,
        )
        return result.returncode == 0

    def delete_branch(self, repo_path: Path, branch: str) -> None:
        self._git(repo_path, ["branch", "-D", branch], f"delete branch {branch!r}")

    def prune(self, repo_path: Path) -> None:
        self._git(repo_path, ["worktree", "prune"], "prune worktrees")

    def list(self, repo_path: Path) -> list[WorktreeInfo]:
        return parse_worktree_list(
            self._git(repo_path, ["worktree", "list", "--porcelain"], "list worktrees")
        )

    def default_branch(self, repo_path: Path) -> str:
        result = run_git(["symbolic-ref", "refs/remotes/origin/HEAD"], repo_root=repo_path, check=False)
        ref = result.stdout.strip()
        if result.returncode != 0 or not ref:
            return FALLBACK_DEFAULT_BRANCH
        return ref.rsplit("/", 1)[-1]
