"""Deterministic naming helpers for task branches and worktree directories."""

from __future__ import annotations

import re

MAX_SLUG_LENGTH = 60

_SLUG_NON_ALLOWED = re.compile(r"[^a-z0-9]+")


def _cap(value: str) -> str:
    if len(value) > MAX_SLUG_LENGTH:
        value = value[:MAX_SLUG_LENGTH].rstrip("-")
    return value


def sanitize(text: str) -> str:
    """Normalize free-form text to a lowercase dash slug of at most 60 chars.

    Empty input yields an empty slug; callers decide whether that is an error.
    """
    slug = _SLUG_NON_ALLOWED.sub("-", text.strip().lower()).strip("-")
    return _cap(slug)


def _with_prefix(prefix: str, name: str) -> str:
    if not prefix:
        return name
    return f"{prefix}/{name}"


def branch_from_description(prefix: str, description: str) -> str:
    """Build branch name ``<prefix>/<slug>`` from a free-text description."""
    return _with_prefix(prefix, sanitize(description))


def branch_from_ticket(prefix: str, ticket_key: str, summary: str) -> str:
    """Build branch name ``<prefix>/<key>-<slug>``.

    The 60 char cap applies to the combined key and summary, not the summary alone.
    """
    combined = "-".join(part for part in (sanitize(ticket_key), sanitize(summary)) if part)
    return _with_prefix(prefix, _cap(combined))


def worktree_dir_name(description: str) -> str:
    """Directory leaf used under ``<worktrees_base>/<repo-name>/``."""
    return sanitize(description)
