"""Tests for the wt CLI commands."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from wt import __version__
from wt.cli import cli
from wt.connectors import Connector, Ticket
from wt.errors import ConnectorError
from wt.registry import ConnectorConfig, Registry, load_registry

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_backend) -> Path:
    """Point wt at a temp registry, a fake backend and a fake repo root."""
    config = tmp_path / "home" / ".wt" / "config.yaml"
    Registry(path=config, worktrees_base=str(tmp_path / "worktrees")).save()
    repo = tmp_path / "repo"
    repo.mkdir()

    monkeypatch.setenv("WT_CONFIG", str(config))
    monkeypatch.delenv("WT_AGENT", raising=False)
    monkeypatch.setattr("wt.cli.resolve_repo_root", lambda *args, **kwargs: repo.resolve())
    monkeypatch.setattr("wt.cli.GitWorktreeBackend", lambda: fake_backend)
    monkeypatch.setattr("wt.connectors.discover_connectors", lambda: iter(()))
    return config


def _start(description: str) -> str:
    result = runner.invoke(cli, ["start", *description.split()])
    assert result.exit_code == 0, result.output
    return load_registry().tasks[-1].id


class _FakeJira(Connector):
    name = "jira"
    closed: list[str] = []

    def __init__(self, *args, **kwargs) -> None:
        pass

    def fetch(self, key: str) -> Ticket:
        return Ticket(key=key, summary="Implement OAuth Flow", status="To Do")

    def list_assigned(self) -> list[Ticket]:
        return [Ticket(key="PROJ-1", summary="First", status="To Do"), Ticket(key="PROJ-2", summary="Second")]

    def transition(self, key: str, status: str) -> None:
        return None

    def validate(self) -> None:
        return None

    def close(self) -> None:
        _FakeJira.closed.append(self.name)


def _configure_jira(config: Path) -> None:
    registry = load_registry(config)
    registry.set_connector("jira", ConnectorConfig(url="https://acme.atlassian.net", email="a@b.c", api_token="t"))


def test_version() -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_start_prints_task_and_cd_hint(env: Path, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["start", "Add", "User", "Auth!"])

    assert result.exit_code == 0, result.output
    task = load_registry().tasks[0]
    assert f"Task started: {task.id}" in result.output
    assert "feature/add-user-auth" in result.output
    assert "cd " in result.output
    assert task.worktree_path.name == "add-user-auth"
    assert task.worktree_path.is_dir()


def test_start_without_description_fails(env: Path) -> None:
    result = runner.invoke(cli, ["start"])
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "description" in result.output


def test_start_duplicate_branch_fails(env: Path) -> None:
    _start("add login")
    result = runner.invoke(cli, ["start", "add", "login"])
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert len(load_registry().tasks) == 1


def test_start_with_jira_requires_configuration(env: Path) -> None:
    result = runner.invoke(cli, ["start", "--jira", "PROJ-123"])
    assert result.exit_code == 1
    assert "wt connect jira" in result.output


def test_start_with_jira_ticket(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_jira(env)
    monkeypatch.setattr("wt.connectors.JiraConnector", _FakeJira)

    result = runner.invoke(cli, ["start", "--jira", "PROJ-123"])

    assert result.exit_code == 0, result.output
    assert "PROJ-123 - Implement OAuth Flow" in result.output
    task = load_registry().tasks[0]
    assert task.branch == "feature/proj-123-implement-oauth-flow"
    assert task.connector == "jira"
    assert task.ticket_key == "PROJ-123"


def test_start_with_placeholder_connector_fails(env: Path) -> None:
    result = runner.invoke(cli, ["start", "--ticket", "M-1", "--connector", "monday"])
    assert result.exit_code == 1
    assert "monday connector is not yet implemented" in result.output
    assert load_registry().tasks == ()


def test_start_launches_requested_agent(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    launched: list[dict] = []
    monkeypatch.setattr("wt.cli.resolve_agent", lambda name, aliases=None: f"/usr/bin/{name}")
    monkeypatch.setattr("wt.cli.launch_agent", lambda agent, **kwargs: launched.append({"agent": agent, **kwargs}))

    result = runner.invoke(cli, ["start", "fix", "parser", "--agent", "aider", "--agent-args=--yes -m 'go now'"])

    assert result.exit_code == 0, result.output
    task = load_registry().tasks[0]
    assert launched[0]["agent"] == "aider"
    assert launched[0]["workdir"] == task.worktree_path
    assert launched[0]["task_id"] == task.id
    assert launched[0]["args"] == ["--yes", "-m", "go now"]


def test_start_with_missing_agent_keeps_task(env: Path) -> None:
    result = runner.invoke(cli, ["start", "fix", "parser", "--agent", "definitely-not-an-agent-binary"])
    assert result.exit_code == 0, result.output
    assert "not found" in result.output
    assert len(load_registry().tasks) == 1


def test_list_empty_and_populated(env: Path) -> None:
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No active tasks." in result.output

    first = _start("add login")
    second = _start("fix parser")
    for command in ("list", "ls"):
        result = runner.invoke(cli, [command])
        assert result.exit_code == 0
        assert first in result.output
        assert second in result.output


def test_switch_prints_bare_path(env: Path) -> None:
    task_id = _start("add login")
    result = runner.invoke(cli, ["switch", task_id])
    assert result.exit_code == 0
    assert result.output == str(load_registry().find(task_id).worktree_path)


def test_unknown_task_id_fails(env: Path) -> None:
    for command in ("switch", "finish", "remove", "agent"):
        result = runner.invoke(cli, [command, "wt-missing"])
        assert result.exit_code == 1, command
        assert "not found" in result.output


def test_status_inside_and_outside_worktree(env: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    task_id = _start("add login")
    worktree = load_registry().find(task_id).worktree_path

    monkeypatch.chdir(worktree)
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert task_id in result.output
    assert "feature/add-login" in result.output

    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "Not inside a wt-managed worktree." in result.output


def test_finish_deletes_branch(env: Path, fake_backend) -> None:
    task_id = _start("add login")
    result = runner.invoke(cli, ["finish", task_id])
    assert result.exit_code == 0, result.output
    assert "Branch deleted" in result.output
    assert load_registry().tasks == ()
    assert "feature/add-login" not in fake_backend.branches


def test_finish_reports_branch_warning(env: Path, fake_backend) -> None:
    task_id = _start("add login")
    fake_backend.fail_delete_branch = True
    result = runner.invoke(cli, ["finish", task_id])
    assert result.exit_code == 0, result.output
    assert "warning:" in result.output
    assert "Branch kept" in result.output
    assert load_registry().tasks == ()


@pytest.mark.parametrize("command", ["remove", "rm"])
def test_remove_keeps_branch(env: Path, fake_backend, command: str) -> None:
    task_id = _start("add login")
    result = runner.invoke(cli, [command, task_id])
    assert result.exit_code == 0, result.output
    assert "Branch kept" in result.output
    assert "feature/add-login" in fake_backend.branches
    assert load_registry().tasks == ()


def test_config_show_set_and_unknown_key(env: Path) -> None:
    result = runner.invoke(cli, ["config"])
    assert result.exit_code == 0
    assert "default_branch:" in result.output
    assert "connectors:" in result.output

    result = runner.invoke(cli, ["config", "branch_prefix", "fix"])
    assert result.exit_code == 0
    assert "Set branch_prefix = fix" in result.output

    result = runner.invoke(cli, ["config", "branch_prefix"])
    assert result.output.strip() == "fix"

    result = runner.invoke(cli, ["config", "colour", "blue"])
    assert result.exit_code == 1
    assert "unknown config key" in result.output


def test_corrupt_registry_is_reported(env: Path) -> None:
    env.write_text("tasks: [oops\n", encoding="utf-8")
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 1
    assert "is corrupt" in result.output


def test_connect_jira_stores_credentials(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("wt.cli.JiraConnector", _FakeJira)
    result = runner.invoke(
        cli,
        ["connect", "jira", "--url", "https://acme.atlassian.net", "--email", "a@b.c", "--token", "tok"],
    )
    assert result.exit_code == 0, result.output
    assert "Jira connector configured" in result.output
    assert load_registry().connectors["jira"].api_token == "tok"


def test_connect_jira_invalid_credentials(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class _Rejecting(_FakeJira):
        def validate(self) -> None:
            raise ConnectorError("jira authentication failed (status 401)")

    monkeypatch.setattr("wt.cli.JiraConnector", _Rejecting)
    result = runner.invoke(
        cli,
        ["connect", "jira", "--url", "https://acme.atlassian.net", "--email", "a@b.c", "--token", "bad"],
    )
    assert result.exit_code == 1
    assert "status 401" in result.output
    assert "jira" not in load_registry().connectors


def test_sync_lists_assigned_tickets(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_jira(env)
    monkeypatch.setattr("wt.connectors.JiraConnector", _FakeJira)
    result = runner.invoke(cli, ["sync"])
    assert result.exit_code == 0, result.output
    assert "PROJ-1" in result.output
    assert "PROJ-2" in result.output


def test_sync_unknown_connector(env: Path) -> None:
    result = runner.invoke(cli, ["sync", "--connector", "linear"])
    assert result.exit_code == 1
    assert "connector 'linear' not found" in result.output


def test_prune_warns_about_stale_tasks(env: Path, fake_backend) -> None:
    task_id = _start("add login")
    load_registry().find(task_id).worktree_path.rmdir()
    result = runner.invoke(cli, ["prune"])
    assert result.exit_code == 0, result.output
    assert "Pruned" in result.output
    assert task_id in result.output
    assert "prune" in fake_backend.calls


def test_doctor_consistent_and_missing(env: Path) -> None:
    task_id = _start("add login")
    result = runner.invoke(cli, ["doctor"])
    assert result.exit_code == 0, result.output
    assert "1 task(s) consistent" in result.output

    load_registry().find(task_id).worktree_path.rmdir()
    result = runner.invoke(cli, ["doctor"])
    assert result.exit_code == 2
    assert "worktree directory missing" in result.output


@pytest.mark.parametrize("args", [["sync"], ["start", "--jira", "PROJ-123"]], ids=["sync", "start"])
def test_jira_client_is_closed_after_command(env: Path, monkeypatch: pytest.MonkeyPatch, args: list[str]) -> None:
    _configure_jira(env)
    monkeypatch.setattr("wt.connectors.JiraConnector", _FakeJira)
    monkeypatch.setattr(_FakeJira, "closed", [])

    result = runner.invoke(cli, args)

    assert result.exit_code == 0, result.output
    assert _FakeJira.closed == ["jira"]
