"""Error taxonomy for wt task lifecycle operations."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wt.git.exec import ExecResult
    from wt.lifecycle import TaskStage
    from wt.registry import Task


class WtError(RuntimeError):
    """Base class for every error the CLI reports as a single message."""

    stage: TaskStage | None = None


class ValidationError(WtError):
    """Bad or missing input (empty description, unknown config key, ...)."""


class CollisionError(WtError):
    """A branch or worktree path is already in use."""

    def __init__(self, name: str, message: str | None = None):
        super().__init__(message or f"already in use: {name}")
        self.name = name


class ExternalToolError(WtError):
    """git exited non-zero."""

    def __init__(self, message: str, result: ExecResult | None = None):
        if result is not None:
            detail = result.output
            if detail:
                message = f"{message}\n{detail}"
        super().__init__(message)
        self.result = result


class NotFoundError(WtError):
    """Unknown task id, no task for a directory, or unknown connector."""


class NonFatalCleanupError(WtError):
    """Branch deletion failed during finish; reported, never raised."""


class OrphanedResourceError(WtError):
    """Worktree exists on disk but the registry write failed."""

    def __init__(self, task: Task, cause: BaseException):
        super().__init__(
            f"task created on disk but NOT tracked: registry write failed ({cause}).\n"
            f"  worktree: {task.worktree_path}\n"
            f"  branch:   {task.branch}\n"
            "Fix the registry file and retry, or clean up manually with:\n"
            f"  git -C {task.repo_path} worktree remove --force {task.worktree_path}\n"
            f"  git -C {task.repo_path} branch -D {task.branch}"
        )
        self.task = task


class CorruptStateError(WtError):
    """Registry file exists but cannot be parsed or fails validation."""

    def __init__(self, path: Path, detail: str):
        super().__init__(f"registry file {path} is corrupt: {detail}")
        self.path = path


class ConnectorError(WtError):
    """Ticket provider request failed."""
