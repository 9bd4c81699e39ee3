"""Connectors for providers that are registered but not implemented yet."""

from __future__ import annotations

from typing import NoReturn

from wt.connectors.base import Connector, Ticket
from wt.errors import ConnectorError

PLACEHOLDER_NAMES: tuple[str, ...] = ("monday", "clickup")


class UnsupportedConnector(Connector):
    """Connector variant whose every operation fails with "not yet implemented"."""

    def __init__(self, name: str):
        self.name = name

    def _unsupported(self) -> NoReturn:
        raise ConnectorError(f"{self.name} connector is not yet implemented")

    def fetch(self, key: str) -> Ticket:
        self._unsupported()

    def list_assigned(self) -> list[Ticket]:
        self._unsupported()

    def transition(self, key: str, status: str) -> None:
        self._unsupported()

    def validate(self) -> None:
        self._unsupported()
