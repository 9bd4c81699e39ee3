"""Ticket connectors for creating tasks from external issue trackers.

Discovery uses the ``wt.connectors`` entry-point group so that third-party
packages can register connectors automatically.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from wt.connectors.base import Connector, Ticket
from wt.connectors.jira import JiraConnector
from wt.connectors.placeholder import PLACEHOLDER_NAMES, UnsupportedConnector
from wt.errors import ConnectorError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from wt.registry import Registry

ENTRY_POINT_GROUP = "wt.connectors"

logger = logging.getLogger(__name__)

__all__ = [
    "Connector",
    "ConnectorRegistry",
    "JiraConnector",
    "Ticket",
    "UnsupportedConnector",
    "build_registry",
    "discover_connectors",
]


class ConnectorRegistry:
    """Name-keyed lookup of ticket connectors."""

    def __init__(self) -> None:
        self._connectors: dict[str, Connector] = {}

    def register(self, connector: Connector) -> None:
        self._connectors[connector.name] = connector

    def get(self, name: str) -> Connector:
        try:
            return self._connectors[name]
        except KeyError:
            raise NotFoundError(
                f"connector {name!r} not found; available: {', '.join(self.names()) or '(none)'}"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._connectors)

    def close(self) -> None:
        """Release resources held by every registered connector."""
        for connector in self._connectors.values():
            connector.close()

    def __enter__(self) -> ConnectorRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def discover_connectors() -> Iterator[Connector]:
    """Yield connectors registered under the ``wt.connectors`` entry-point group."""
    from importlib.metadata import entry_points

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            connector_cls = ep.load()
            instance = connector_cls() if callable(connector_cls) else None
        except Exception as exc:
            raise ConnectorError(f"failed to load connector plugin {ep.name!r} ({ep.value}): {exc}") from exc
        if isinstance(instance, Connector):
            yield instance
        else:
            logger.warning("entry point %s did not produce a Connector; ignored", ep.name)


def build_registry(registry: Registry) -> ConnectorRegistry:
    """Register configured Jira, the placeholder providers, and plugins."""
    connectors = ConnectorRegistry()
    for name in PLACEHOLDER_NAMES:
        connectors.register(UnsupportedConnector(name))
    for connector in discover_connectors():
        connectors.register(connector)
    jira = registry.connectors.get("jira")
    if jira is not None:
        connectors.register(JiraConnector(jira.url, jira.email, jira.api_token))
    return connectors
