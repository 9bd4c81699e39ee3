"""Launch a coding agent inside a task worktree."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import NoReturn

from wt.errors import ValidationError, WtError

logger = logging.getLogger(__name__)

AGENT_ENV = "WT_AGENT"


def select_agent(flag: str | None, configured: str = "") -> str:
    """Pick the agent: explicit flag, then ``$WT_AGENT``, then config."""
    return flag or os.getenv(AGENT_ENV, "") or configured


def resolve_agent(name: str, aliases: Mapping[str, str] | None = None) -> str:
    """Resolve an agent name to an executable path, aliases first."""
    if not name:
        raise ValidationError("no agent specified; use --agent, set WT_AGENT, or configure default_agent")
    aliases = aliases or {}
    if name in aliases:
        target = aliases[name]
        path = shutil.which(target)
        if path is None:
            raise ValidationError(f"agent alias {name!r} points to {target!r} which is not found")
        return path
    path = shutil.which(name)
    if path is None:
        raise ValidationError(f"agent {name!r} not found in PATH")
    return path


def parse_agent_args(text: str | None) -> list[str]:
    """Split ``--agent-args`` with shell quoting rules."""
    if not text:
        return []
    try:
        return shlex.split(text)
    except ValueError as exc:
        raise ValidationError(f"cannot parse agent args {text!r}: {exc}") from exc


def agent_environment(
    base: Mapping[str, str],
    *,
    task_id: str,
    ticket_key: str | None = None,
    ticket_summary: str | None = None,
) -> dict[str, str]:
    env = dict(base)
    env["WT_TASK_ID"] = task_id
    if ticket_key:
        env["WT_TICKET_KEY"] = ticket_key
    if ticket_summary:
        env["WT_TICKET_SUMMARY"] = ticket_summary
    return env


def launch_agent(
    agent: str,
    *,
    workdir: Path,
    task_id: str,
    args: list[str] | None = None,
    ticket_key: str | None = None,
    ticket_summary: str | None = None,
    aliases: Mapping[str, str] | None = None,
) -> NoReturn:
    """Replace the current process with the agent, running in ``workdir``."""
    executable = resolve_agent(agent, aliases)
    env = agent_environment(os.environ, task_id=task_id, ticket_key=ticket_key, ticket_summary=ticket_summary)
    try:
        os.chdir(workdir)
    except OSError as exc:
        raise WtError(f"failed to change directory to {workdir}: {exc}") from exc
    logger.debug("exec agent %s %s in %s", executable, args or [], workdir)
    try:
        os.execvpe(executable, [executable, *(args or [])], env)
    except OSError as exc:
        raise WtError(f"failed to exec {executable}: {exc}") from exc
