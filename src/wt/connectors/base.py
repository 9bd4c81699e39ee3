"""Connector contract shared by every ticket provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Ticket:
    """A task or issue fetched from an external system."""

    key: str
    summary: str
    description: str = ""
    status: str = ""
    assignee: str = ""
    url: str = ""
    labels: tuple[str, ...] = field(default_factory=tuple)


class Connector(ABC):
    """Uniform fetch/list/transition/validate surface of a ticket provider.

    Implementations raise :class:`wt.errors.ConnectorError` on failure.
    """

    name: str

    @abstractmethod
    def fetch(self, key: str) -> Ticket:
        """Fetch a single ticket by key."""

    @abstractmethod
    def list_assigned(self) -> list[Ticket]:
        """Tickets assigned to the authenticated user."""

    @abstractmethod
    def transition(self, key: str, status: str) -> None:
        """Move ticket ``key`` to ``status``."""

    @abstractmethod
    def validate(self) -> None:
        """Check that credentials and endpoint work."""

    def close(self) -> None:
        """Release held resources; a no-op unless the connector keeps a client."""
