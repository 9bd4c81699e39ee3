"""Jira Cloud connector over the REST v3 API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from wt.connectors.base import Connector, Ticket
from wt.errors import ConnectorError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
ASSIGNED_JQL = "assignee=currentUser() AND statusCategory != Done ORDER BY updated DESC"
ASSIGNED_MAX_RESULTS = 50


def issue_to_ticket(issue: dict[str, Any], base_url: str) -> Ticket:
    """Map a Jira issue payload to a :class:`Ticket`."""
    fields = issue.get("fields") or {}
    assignee = fields.get("assignee") or {}
    status = fields.get("status") or {}
    description = fields.get("description")
    return Ticket(
        key=issue["key"],
        summary=fields.get("summary") or "",
        # v3 returns rich-text documents; only plain strings are kept
        description=description if isinstance(description, str) else "",
        status=status.get("name", ""),
        assignee=assignee.get("displayName", ""),
        url=f"{base_url}/browse/{issue['key']}",
        labels=tuple(fields.get("labels") or ()),
    )


class JiraConnector(Connector):
    """Basic-auth Jira client."""

    name = "jira"

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=(email, api_token),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ConnectorError(f"jira request failed: {method} {path}: {exc}") from exc
        logger.debug("jira %s %s -> %s", method, path, response.status_code)
        return response

    def _json(self, response: httpx.Response) -> Any:
        if response.status_code != httpx.codes.OK:
            raise ConnectorError(f"jira returned {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectorError(f"failed to decode jira response: {exc}") from exc

    def fetch(self, key: str) -> Ticket:
        payload = self._json(self._request("GET", f"/rest/api/3/issue/{key}"))
        return issue_to_ticket(payload, self.base_url)

    def list_assigned(self) -> list[Ticket]:
        payload = self._json(
            self._request(
                "GET",
                "/rest/api/3/search",
                params={"jql": ASSIGNED_JQL, "maxResults": ASSIGNED_MAX_RESULTS},
            )
        )
        return [issue_to_ticket(issue, self.base_url) for issue in payload.get("issues", [])]

    def transition(self, key: str, status: str) -> None:
        path = f"/rest/api/3/issue/{key}/transitions"
        transitions = self._json(self._request("GET", path)).get("transitions", [])

        wanted = status.lower()
        transition_id = next(
            (
                item["id"]
                for item in transitions
                if item.get("name", "").lower() == wanted
                or (item.get("to") or {}).get("name", "").lower() == wanted
            ),
            None,
        )
        if transition_id is None:
            available = ", ".join((item.get("to") or {}).get("name", "") for item in transitions)
            raise ConnectorError(f"no transition to {status!r} found (available: {available})")

        response = self._request("POST", path, json={"transition": {"id": transition_id}})
        if response.status_code not in (httpx.codes.OK, httpx.codes.NO_CONTENT):
            raise ConnectorError(f"jira transition failed with {response.status_code}: {response.text}")

    def validate(self) -> None:
        response = self._request("GET", "/rest/api/3/myself")
        if response.status_code != httpx.codes.OK:
            raise ConnectorError(f"jira authentication failed (status {response.status_code})")
