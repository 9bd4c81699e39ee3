"""Task lifecycle coordination across git, the filesystem, and the registry.

Start order: name, branch pre-flight, directory, ``git worktree add``, then the
registry record. Teardown order: worktree first, branch (best effort), registry
record last, so a record never disappears while its worktree is still alive.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from wt.connectors import ConnectorRegistry, Ticket
from wt.errors import (
    CollisionError,
    ExternalToolError,
    NonFatalCleanupError,
    OrphanedResourceError,
    ValidationError,
    WtError,
)
from wt.git.worktree import WorktreeBackend
from wt.naming import branch_from_description, branch_from_ticket, worktree_dir_name
from wt.registry import Registry, Task

logger = logging.getLogger(__name__)

TASK_ID_PREFIX = "wt-"


class TaskStage(str, Enum):
    """Progress of a start request; errors carry the last stage reached."""

    REQUESTED = "requested"
    NAMED = "named"
    BRANCH_RESERVED = "branch_reserved"
    WORKTREE_CREATED = "worktree_created"
    REGISTERED = "registered"


@dataclass(frozen=True)
class StartRequest:
    """Input for :meth:`LifecycleCoordinator.start`."""

    repo_path: Path
    description: str = ""
    connector: str | None = None
    ticket_key: str | None = None
    ticket_title: str | None = None


@dataclass(frozen=True)
class TeardownResult:
    """Outcome of finish/remove."""

    task: Task
    branch_deleted: bool
    warnings: tuple[WtError, ...] = ()


def generate_task_id() -> str:
    return f"{TASK_ID_PREFIX}{secrets.token_hex(4)}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleCoordinator:
    """Start, finish and remove tasks against a registry and a worktree backend."""

    def __init__(
        self,
        registry: Registry,
        backend: WorktreeBackend,
        connectors: ConnectorRegistry | None = None,
        *,
        id_factory: Callable[[], str] = generate_task_id,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.connectors = connectors
        self._id_factory = id_factory
        self._clock = clock

    def resolve_ticket(self, connector_name: str, ticket_key: str) -> Ticket:
        """Fetch a ticket through the named connector."""
        if self.connectors is None:
            raise ValidationError("no ticket connectors are configured")
        return self.connectors.get(connector_name).fetch(ticket_key)

    def start_from_ticket(self, connector_name: str, ticket_key: str, repo_path: Path) -> Task:
        """Start a task whose description and branch derive from a ticket."""
        ticket = self.resolve_ticket(connector_name, ticket_key)
        return self.start(
            StartRequest(
                repo_path=repo_path,
                description=ticket.summary,
                connector=connector_name,
                ticket_key=ticket.key,
                ticket_title=ticket.summary,
            )
        )

    def start(self, request: StartRequest) -> Task:
        stage = TaskStage.REQUESTED
        try:
            description = request.description.strip()
            if request.ticket_key:
                if not request.connector:
                    raise ValidationError("ticket key given without a connector name")
                title = request.ticket_title or description
                leaf = branch_from_ticket("", request.ticket_key, title)
            else:
                if not description:
                    raise ValidationError("please provide a task description or a ticket key")
                leaf = worktree_dir_name(description)
            if not leaf:
                raise ValidationError(f"description {description!r} yields an empty branch name")

            repo_path = request.repo_path.resolve()
            repo_name = self.backend.repository_name(repo_path)
            prefix = self.registry.branch_prefix
            if request.ticket_key:
                branch = branch_from_ticket(prefix, request.ticket_key, title)
            else:
                branch = branch_from_description(prefix, description)
            stage = TaskStage.NAMED

            if self.backend.branch_exists(repo_path, branch):
                raise CollisionError(
                    branch,
                    f"branch {branch!r} already exists; use a different description "
                    "or remove the existing branch",
                )
            stage = TaskStage.BRANCH_RESERVED

            worktree_path = (Path(self.registry.worktrees_base).expanduser() / repo_name / leaf).resolve()
            if worktree_path.exists():
                raise CollisionError(str(worktree_path), f"worktree path already exists: {worktree_path}")
            # a stale record may still hold the path or branch
            self.registry.check_available(worktree_path, repo_path, branch)
            try:
                worktree_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise WtError(f"failed to create worktree directory {worktree_path.parent}: {exc}") from exc

            self.backend.create(repo_path, worktree_path, branch)
            stage = TaskStage.WORKTREE_CREATED
            logger.info("created worktree %s on branch %s", worktree_path, branch)

            task = Task(
                id=self._id_factory(),
                description=description or request.ticket_key or "",
                worktree_path=worktree_path,
                branch=branch,
                repo_path=repo_path,
                created_at=self._clock(),
                connector=request.connector if request.ticket_key else None,
                ticket_key=request.ticket_key or None,
            )
            try:
                self.registry.add(task)
            except WtError as exc:
                raise OrphanedResourceError(task, exc) from exc
            stage = TaskStage.REGISTERED
            logger.info("registered task %s", task.id)
            return task
        except WtError as exc:
            if exc.stage is None:
                exc.stage = stage
            raise

    def finish(self, task_id: str) -> TeardownResult:
        """Remove worktree, delete branch (best effort), drop the record."""
        return self._teardown(task_id, delete_branch=True)

    def remove(self, task_id: str) -> TeardownResult:
        """Remove worktree and drop the record; the branch is kept."""
        return self._teardown(task_id, delete_branch=False)

    def prune(self, repo_path: Path) -> list[Task]:
        """Prune git's stale worktree records; return this repo's stale tasks."""
        resolved = repo_path.resolve()
        self.backend.prune(resolved)
        return [task for task in self.registry.inconsistencies() if task.repo_path == resolved]

    def _teardown(self, task_id: str, *, delete_branch: bool) -> TeardownResult:
        task = self.registry.find(task_id)
        warnings: list[WtError] = []

        if task.worktree_path.exists():
            self.backend.remove(task.repo_path, task.worktree_path)
        else:
            stale = WtError(f"worktree {task.worktree_path} was already missing; pruned git records")
            logger.warning("task %s: %s", task.id, stale)
            warnings.append(stale)
            self.backend.prune(task.repo_path)

        branch_deleted = False
        if delete_branch:
            try:
                self.backend.delete_branch(task.repo_path, task.branch)
                branch_deleted = True
            except ExternalToolError as exc:
                cleanup = NonFatalCleanupError(f"could not delete branch {task.branch!r}: {exc}")
                logger.warning("task %s: %s", task.id, cleanup)
                warnings.append(cleanup)

        self.registry.remove(task.id)
        return TeardownResult(task=task, branch_deleted=branch_deleted, warnings=tuple(warnings))
