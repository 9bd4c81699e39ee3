"""Git operations for wt tasks."""

from wt.git.exec import ExecError, ExecResult, run_git
from wt.git.worktree import (
    GitWorktreeBackend,
    WorktreeBackend,
    WorktreeInfo,
    parse_worktree_list,
    resolve_repo_root,
)

__all__ = [
    "ExecError",
    "ExecResult",
    "GitWorktreeBackend",
    "WorktreeBackend",
    "WorktreeInfo",
    "parse_worktree_list",
    "resolve_repo_root",
    "run_git",
]
