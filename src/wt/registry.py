"""Durable task registry and tool configuration.

The registry is a single YAML document holding scalar configuration
(``worktrees_base``, ``default_branch``, ``branch_prefix``, ``default_agent``),
agent aliases, connector credentials and the list of active tasks.

Every mutating call holds the registry lock, mutates, and persists before
returning. A failed write rolls the in-memory mutation back, so a successful
return always means memory and disk agree. Writes go through a temp file and
``os.replace`` so the previous file survives a failed save untouched.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from importlib.resources import files
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jsonschema.validators import Draft202012Validator

from wt.errors import CollisionError, CorruptStateError, NotFoundError, ValidationError, WtError

logger = logging.getLogger(__name__)

CONFIG_ENV = "WT_CONFIG"
CONFIG_DIRNAME = ".wt"
CONFIG_FILENAME = "config.yaml"

CONFIG_KEYS: tuple[str, ...] = ("worktrees_base", "default_branch", "branch_prefix", "default_agent")

DEFAULT_BRANCH = "main"
DEFAULT_BRANCH_PREFIX = "feature"


def default_registry_path() -> Path:
    """Return ``$WT_CONFIG`` or ``~/.wt/config.yaml``."""
    override = os.getenv(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def default_worktrees_base() -> str:
    return str(Path.home() / "worktrees")


def _registry_schema() -> dict[str, Any]:
    text = files("wt").joinpath("schemas/registry.schema.json").read_text(encoding="utf-8")
    return json.loads(text)


@dataclass(frozen=True)
class Task:
    """An active worktree task."""

    id: str
    description: str
    worktree_path: Path
    branch: str
    repo_path: Path
    created_at: datetime
    connector: str | None = None
    ticket_key: str | None = None

    def __post_init__(self) -> None:
        if bool(self.connector) != bool(self.ticket_key):
            raise ValidationError(
                f"task {self.id}: connector and ticket_key must be set together "
                f"(connector={self.connector!r}, ticket_key={self.ticket_key!r})"
            )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "worktree": str(self.worktree_path),
            "branch": self.branch,
            "repo_path": str(self.repo_path),
        }
        if self.connector:
            payload["connector"] = self.connector
            payload["ticket_key"] = self.ticket_key
        payload["created"] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        created = data["created"]
        if not isinstance(created, datetime):
            created = datetime.fromisoformat(str(created))
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            worktree_path=Path(data["worktree"]),
            branch=data["branch"],
            repo_path=Path(data["repo_path"]),
            created_at=created,
            connector=data.get("connector") or None,
            ticket_key=data.get("ticket_key") or None,
        )


@dataclass(frozen=True)
class ConnectorConfig:
    """Stored settings for a ticket connector."""

    url: str = ""
    email: str = ""
    api_token: str = ""
    project: str = ""

    def to_dict(self) -> dict[str, str]:
        return {key: value for key, value in self.__dict__.items() if value}


@dataclass
class Registry:
    """In-memory view of the registry file; owns the mutation lock."""

    path: Path
    worktrees_base: str = field(default_factory=default_worktrees_base)
    default_branch: str = DEFAULT_BRANCH
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    default_agent: str = ""
    agent_aliases: dict[str, str] = field(default_factory=dict)
    connectors: dict[str, ConnectorConfig] = field(default_factory=dict)
    _tasks: list[Task] = field(default_factory=list, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def tasks(self) -> tuple[Task, ...]:
        with self._lock:
            return tuple(self._tasks)

    def find(self, task_id: str) -> Task:
        with self._lock:
            for task in self._tasks:
                if task.id == task_id:
                    return task
        raise NotFoundError(f"task {task_id!r} not found")

    def find_by_path(self, directory: Path) -> Task:
        """Return the task whose worktree is ``directory`` or contains it."""
        target = Path(directory).resolve()
        with self._lock:
            for task in self._tasks:
                root = task.worktree_path.resolve()
                if target == root or target.is_relative_to(root):
                    return task
        raise NotFoundError(f"no task found for worktree {str(directory)!r}")

    def inconsistencies(self) -> list[Task]:
        """Tasks whose worktree directory no longer exists on disk."""
        return [task for task in self.tasks if not task.worktree_path.is_dir()]

    def check_available(
        self,
        worktree_path: Path,
        repo_path: Path,
        branch: str,
        task_id: str | None = None,
    ) -> None:
        """Raise CollisionError if an active task already holds any of these."""
        with self._lock:
            for existing in self._tasks:
                if task_id is not None and existing.id == task_id:
                    raise CollisionError(task_id, f"task id already registered: {task_id}")
                if existing.worktree_path == worktree_path:
                    raise CollisionError(
                        str(worktree_path),
                        f"worktree path already used by task {existing.id}: {worktree_path}",
                    )
                if existing.repo_path == repo_path and existing.branch == branch:
                    raise CollisionError(
                        branch,
                        f"branch {branch!r} already used by task {existing.id}",
                    )

    def add(self, task: Task) -> None:
        with self._lock:
            self.check_available(task.worktree_path, task.repo_path, task.branch, task.id)
            self._tasks.append(task)
            self._commit(lambda: self._tasks.remove(task))

    def remove(self, task_id: str) -> Task:
        with self._lock:
            task = self.find(task_id)
            index = self._tasks.index(task)
            del self._tasks[index]
            self._commit(lambda: self._tasks.insert(index, task))
            return task

    def get_value(self, key: str) -> str:
        if key not in CONFIG_KEYS:
            raise ValidationError(f"unknown config key: {key} (expected one of {', '.join(CONFIG_KEYS)})")
        return str(getattr(self, key))

    def set_value(self, key: str, value: str) -> None:
        previous = self.get_value(key)
        if key in ("worktrees_base", "default_branch") and not value.strip():
            raise ValidationError(f"config key {key} cannot be empty")
        with self._lock:
            setattr(self, key, value)
            self._commit(lambda: setattr(self, key, previous))

    def set_connector(self, name: str, config: ConnectorConfig) -> None:
        with self._lock:
            previous = self.connectors.get(name)

            def undo() -> None:
                if previous is None:
                    self.connectors.pop(name, None)
                else:
                    self.connectors[name] = previous

            self.connectors[name] = config
            self._commit(undo)

    def to_document(self) -> dict[str, Any]:
        with self._lock:
            document: dict[str, Any] = {
                "worktrees_base": self.worktrees_base,
                "default_branch": self.default_branch,
                "branch_prefix": self.branch_prefix,
            }
            if self.default_agent:
                document["default_agent"] = self.default_agent
            if self.agent_aliases:
                document["agent_aliases"] = dict(sorted(self.agent_aliases.items()))
            if self.connectors:
                document["connectors"] = {
                    name: self.connectors[name].to_dict() for name in sorted(self.connectors)
                }
            document["tasks"] = [task.to_dict() for task in self._tasks]
            return document

    def save(self) -> None:
        """Write the registry atomically; prior file is untouched on failure."""
        with self._lock:
            rendered = yaml.safe_dump(self.to_document(), sort_keys=False, allow_unicode=True)
            try:
                _atomic_write(self.path, rendered)
            except OSError as exc:
                raise WtError(f"failed to write registry {self.path}: {exc}") from exc
            logger.debug("saved registry %s (%d tasks)", self.path, len(self._tasks))

    def _commit(self, undo: Callable[[], None]) -> None:
        try:
            self.save()
        except Exception:
            undo()
            raise


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.wt.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def _normalize_timestamps(raw: dict[str, Any]) -> None:
    # Hand-edited files may hold unquoted timestamps that YAML loads as datetimes.
    tasks = raw.get("tasks")
    if not isinstance(tasks, list):
        return
    for entry in tasks:
        if isinstance(entry, dict) and isinstance(entry.get("created"), datetime):
            entry["created"] = entry["created"].isoformat()


def load_registry(path: Path | None = None) -> Registry:
    """Load the registry file, returning defaults when it does not exist."""
    resolved = path or default_registry_path()
    if not resolved.exists():
        logger.debug("registry %s missing; using defaults", resolved)
        return Registry(path=resolved)

    try:
        raw = yaml.safe_load(resolved.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise CorruptStateError(resolved, f"YAML parse error: {exc}") from exc
    except OSError as exc:
        raise CorruptStateError(resolved, f"unreadable: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise CorruptStateError(resolved, "expected mapping at top level")

    _normalize_timestamps(raw)
    errors = sorted(Draft202012Validator(_registry_schema()).iter_errors(raw), key=lambda e: list(e.path))
    if errors:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message for e in errors
        )
        raise CorruptStateError(resolved, detail)

    try:
        tasks = [Task.from_dict(entry) for entry in raw.get("tasks") or []]
    except (ValueError, WtError) as exc:
        raise CorruptStateError(resolved, str(exc)) from exc

    seen_ids: set[str] = set()
    seen_paths: set[Path] = set()
    for task in tasks:
        if task.id in seen_ids:
            raise CorruptStateError(resolved, f"duplicate task id {task.id}")
        if task.worktree_path in seen_paths:
            raise CorruptStateError(resolved, f"duplicate worktree path {task.worktree_path}")
        seen_ids.add(task.id)
        seen_paths.add(task.worktree_path)

    connectors = {
        name: ConnectorConfig(**settings) for name, settings in (raw.get("connectors") or {}).items()
    }
    return Registry(
        path=resolved,
        worktrees_base=raw.get("worktrees_base") or default_worktrees_base(),
        default_branch=raw.get("default_branch") or DEFAULT_BRANCH,
        branch_prefix=raw.get("branch_prefix", DEFAULT_BRANCH_PREFIX),
        default_agent=raw.get("default_agent", ""),
        agent_aliases=dict(raw.get("agent_aliases") or {}),
        connectors=connectors,
        _tasks=tasks,
    )
