"""wt CLI - git worktree manager driven by tasks."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from wt import __version__
from wt.agent import launch_agent, parse_agent_args, resolve_agent, select_agent
from wt.connectors import JiraConnector, build_registry
from wt.errors import ValidationError, WtError
from wt.git.worktree import GitWorktreeBackend, resolve_repo_root
from wt.lifecycle import LifecycleCoordinator, StartRequest
from wt.registry import CONFIG_KEYS, ConnectorConfig, Registry, load_registry

cli = typer.Typer(
    name="wt",
    help="Git worktree manager driven by tasks",
    no_args_is_help=True,
)
connect_app = typer.Typer(help="Configure a task management connector", no_args_is_help=True)
cli.add_typer(connect_app, name="connect")

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _fail(exc: Exception) -> typer.Exit:
    err_console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    return typer.Exit(1)


def _coordinator(registry: Registry) -> LifecycleCoordinator:
    return LifecycleCoordinator(registry, GitWorktreeBackend(), build_registry(registry))


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging on stderr."),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show wt version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Create, track and clean up one git worktree per task."""
    _ = version
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _launch_or_hint(
    registry: Registry,
    *,
    agent_flag: str | None,
    agent_args: str | None,
    task_id: str,
    workdir: Path,
    ticket_key: str | None,
    ticket_summary: str | None,
) -> None:
    agent_name = select_agent(agent_flag, registry.default_agent)
    if not agent_name:
        console.print(f"\n   cd {workdir}")
        return
    try:
        resolve_agent(agent_name, registry.agent_aliases)
    except ValidationError as exc:
        err_console.print(f"[yellow]Agent {agent_name!r} not found: {escape(str(exc))}[/yellow]")
        console.print(f"\n   cd {workdir}")
        return
    console.print(f"\n[cyan]Launching agent:[/cyan] {agent_name}")
    launch_agent(
        agent_name,
        workdir=workdir,
        task_id=task_id,
        args=parse_agent_args(agent_args),
        ticket_key=ticket_key,
        ticket_summary=ticket_summary,
        aliases=registry.agent_aliases,
    )


@cli.command("start")
def start_cmd(
    description: list[str] | None = typer.Argument(None, help="Free-text task description."),
    jira: str | None = typer.Option(None, "--jira", help="Create the task from a Jira issue key (e.g. PROJ-123)."),
    ticket: str | None = typer.Option(None, "--ticket", "-t", help="Create the task from a ticket key."),
    connector: str = typer.Option("jira", "--connector", "-c", help="Connector used with --ticket."),
    agent: str | None = typer.Option(None, "--agent", help="Agent to launch in the new worktree."),
    agent_args: str | None = typer.Option(None, "--agent-args", help="Arguments passed to the agent."),
) -> None:
    """Create a new worktree for a task."""
    coordinator: LifecycleCoordinator | None = None
    try:
        registry = load_registry()
        coordinator = _coordinator(registry)
        request = StartRequest(repo_path=resolve_repo_root(), description=" ".join(description or []))

        ticket_key = jira or ticket
        connector_name = "jira" if jira else connector
        ticket_summary: str | None = None
        if ticket_key:
            if connector_name == "jira" and "jira" not in registry.connectors:
                raise ValidationError("jira is not configured; run 'wt connect jira' first")
            found = coordinator.resolve_ticket(connector_name, ticket_key)
            console.print(f"{connector_name}: {escape(found.key)} - {escape(found.summary)}")
            ticket_summary = found.summary
            request = StartRequest(
                repo_path=request.repo_path,
                description=found.summary,
                connector=connector_name,
                ticket_key=found.key,
                ticket_title=found.summary,
            )
        task = coordinator.start(request)
    except WtError as exc:
        raise _fail(exc) from exc
    finally:
        if coordinator is not None and coordinator.connectors is not None:
            coordinator.connectors.close()

    console.print(f"[green]✓ Task started:[/green] {task.id}")
    console.print(f"[cyan]Branch:[/cyan]   {escape(task.branch)}")
    console.print(f"[cyan]Worktree:[/cyan] {task.worktree_path}")

    try:
        _launch_or_hint(
            registry,
            agent_flag=agent,
            agent_args=agent_args,
            task_id=task.id,
            workdir=task.worktree_path,
            ticket_key=task.ticket_key,
            ticket_summary=ticket_summary,
        )
    except WtError as exc:
        raise _fail(exc) from exc


@cli.command("agent")
def agent_cmd(
    task_id: str = typer.Argument(..., metavar="TASK_ID"),
    agent: str | None = typer.Option(None, "--agent", help="Agent to launch (default: $WT_AGENT or default_agent)."),
    agent_args: str | None = typer.Option(None, "--agent-args", help="Arguments passed to the agent."),
) -> None:
    """Launch an agent on an existing task worktree."""
    try:
        registry = load_registry()
        task = registry.find(task_id)
        if not task.worktree_path.is_dir():
            raise WtError(f"worktree {task.worktree_path} no longer exists")
        agent_name = select_agent(agent, registry.default_agent)
        resolve_agent(agent_name, registry.agent_aliases)
        console.print(f"[cyan]Launching agent {agent_name!r} on task {task.id}[/cyan]")
        console.print(f"[cyan]Worktree:[/cyan] {task.worktree_path}")
        launch_agent(
            agent_name,
            workdir=task.worktree_path,
            task_id=task.id,
            args=parse_agent_args(agent_args),
            ticket_key=task.ticket_key,
            ticket_summary=task.description or task.ticket_key,
            aliases=registry.agent_aliases,
        )
    except WtError as exc:
        raise _fail(exc) from exc


@cli.command("list")
def list_cmd() -> None:
    """Show all active tasks and worktrees."""
    try:
        registry = load_registry()
    except WtError as exc:
        raise _fail(exc) from exc

    if not registry.tasks:
        console.print("No active tasks.")
        return
    table = Table(box=None, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("DESCRIPTION")
    table.add_column("BRANCH")
    table.add_column("WORKTREE")
    table.add_column("TICKET", no_wrap=True)
    for task in registry.tasks:
        table.add_row(
            task.id,
            escape(_truncate(task.description, 40)),
            escape(task.branch),
            str(task.worktree_path),
            escape(task.ticket_key or "-"),
        )
    console.print(table)


cli.command("ls", hidden=True)(list_cmd)


@cli.command("finish")
def finish_cmd(task_id: str = typer.Argument(..., metavar="TASK_ID")) -> None:
    """Complete a task: remove worktree, delete branch, stop tracking."""
    try:
        result = _coordinator(load_registry()).finish(task_id)
    except WtError as exc:
        raise _fail(exc) from exc

    for warning in result.warnings:
        err_console.print(f"[yellow]warning: {escape(str(warning))}[/yellow]")
    console.print(f"[green]✓ Task finished:[/green] {escape(result.task.description)}")
    console.print(f"[cyan]Worktree removed:[/cyan] {result.task.worktree_path}")
    if result.branch_deleted:
        console.print(f"[cyan]Branch deleted:[/cyan] {escape(result.task.branch)}")
    else:
        console.print(f"[cyan]Branch kept:[/cyan] {escape(result.task.branch)}")


@cli.command("remove")
def remove_cmd(task_id: str = typer.Argument(..., metavar="TASK_ID")) -> None:
    """Remove a task worktree but keep its branch."""
    try:
        result = _coordinator(load_registry()).remove(task_id)
    except WtError as exc:
        raise _fail(exc) from exc

    for warning in result.warnings:
        err_console.print(f"[yellow]warning: {escape(str(warning))}[/yellow]")
    console.print(f"[green]✓ Worktree removed:[/green] {result.task.worktree_path}")
    console.print(f"[cyan]Branch kept:[/cyan] {escape(result.task.branch)}")


cli.command("rm", hidden=True)(remove_cmd)


@cli.command("switch")
def switch_cmd(task_id: str = typer.Argument(..., metavar="TASK_ID")) -> None:
    """Print the path to a task's worktree: cd $(wt switch <id>)."""
    try:
        task = load_registry().find(task_id)
    except WtError as exc:
        raise _fail(exc) from exc
    typer.echo(str(task.worktree_path), nl=False)


@cli.command("status")
def status_cmd() -> None:
    """Show the task bound to the current directory."""
    try:
        registry = load_registry()
    except WtError as exc:
        raise _fail(exc) from exc
    try:
        task = registry.find_by_path(Path.cwd())
    except WtError:
        console.print("Not inside a wt-managed worktree.")
        return

    console.print(f"Task:      {task.id}")
    console.print(f"Desc:      {escape(task.description)}")
    console.print(f"Branch:    {escape(task.branch)}")
    console.print(f"Worktree:  {task.worktree_path}")
    console.print(f"Created:   {task.created_at.astimezone():%Y-%m-%d %H:%M}")
    if task.ticket_key:
        console.print(f"Ticket:    {escape(task.ticket_key)} ({task.connector})")
    if not task.worktree_path.is_dir():
        err_console.print("[yellow]warning: worktree directory is missing; run 'wt doctor'[/yellow]")


@connect_app.command("jira")
def connect_jira_cmd(
    url: str = typer.Option(..., "--url", help="Jira base URL (e.g. https://yourco.atlassian.net)."),
    email: str = typer.Option(..., "--email", help="Your Jira email address."),
    token: str = typer.Option(..., "--token", help="Jira API token."),
    project: str = typer.Option("", "--project", help="Default Jira project key."),
) -> None:
    """Validate and store Jira credentials."""
    try:
        registry = load_registry()
        console.print("Validating Jira credentials...")
        client = JiraConnector(url, email, token)
        try:
            client.validate()
        finally:
            client.close()
        registry.set_connector("jira", ConnectorConfig(url=url, email=email, api_token=token, project=project))
    except WtError as exc:
        raise _fail(exc) from exc
    console.print("[green]✓ Jira connector configured.[/green]")


@cli.command("sync")
def sync_cmd(
    connector: str = typer.Option("jira", "--connector", "-c", help="Connector to sync from."),
) -> None:
    """List tickets assigned to you in a connected system."""
    try:
        with build_registry(load_registry()) as connectors:
            console.print(f"Syncing from {connector}...")
            tickets = connectors.get(connector).list_assigned()
    except WtError as exc:
        raise _fail(exc) from exc

    if not tickets:
        console.print("No assigned tickets found.")
        return
    table = Table(box=None, header_style="bold")
    table.add_column("KEY", no_wrap=True)
    table.add_column("SUMMARY")
    table.add_column("STATUS")
    for item in tickets:
        table.add_row(escape(item.key), escape(_truncate(item.summary, 50)), escape(item.status))
    console.print(table)


@cli.command("config")
def config_cmd(
    key: str | None = typer.Argument(None, help=f"One of: {', '.join(CONFIG_KEYS)}."),
    value: str | None = typer.Argument(None, help="New value to store."),
) -> None:
    """View or set configuration values."""
    try:
        registry = load_registry()
        if key is None:
            for name in CONFIG_KEYS:
                current = registry.get_value(name)
                if name == "default_agent" and not current:
                    continue
                typer.echo(f"{name + ':':<16}{current}")
            if registry.agent_aliases:
                typer.echo("agent_aliases:")
                for alias, target in sorted(registry.agent_aliases.items()):
                    typer.echo(f"  {alias}: {target}")
            typer.echo(f"{'connectors:':<16}{', '.join(sorted(registry.connectors)) or '(none)'}")
            return
        if value is None:
            typer.echo(registry.get_value(key))
            return
        registry.set_value(key, value)
    except WtError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Set {key} = {value}")


@cli.command("prune")
def prune_cmd() -> None:
    """Clean up stale worktree references in the current repository."""
    try:
        registry = load_registry()
        stale = _coordinator(registry).prune(resolve_repo_root())
    except WtError as exc:
        raise _fail(exc) from exc
    console.print("[green]✓ Pruned stale worktree references.[/green]")
    for task in stale:
        err_console.print(
            f"[yellow]warning: task {task.id} points at missing worktree {task.worktree_path}; "
            f"run 'wt remove {task.id}' to stop tracking it[/yellow]"
        )


@cli.command("doctor")
def doctor_cmd() -> None:
    """Report tasks whose worktree is missing on disk or unknown to git.

    Exit codes:
      0 - registry and worktrees agree
      2 - one or more inconsistencies found
      1 - tooling error
    """
    try:
        registry = load_registry()
        backend = GitWorktreeBackend()
        problems: list[str] = []
        for task in registry.inconsistencies():
            problems.append(f"{task.id}: worktree directory missing: {task.worktree_path}")
        for repo_path in sorted({task.repo_path for task in registry.tasks}):
            if not repo_path.is_dir():
                problems.append(f"repository missing: {repo_path}")
                continue
            known = {os.path.realpath(info.path) for info in backend.list(repo_path)}
            for task in registry.tasks:
                if task.repo_path == repo_path and task.worktree_path.is_dir():
                    if os.path.realpath(task.worktree_path) not in known:
                        problems.append(f"{task.id}: {task.worktree_path} is not a git worktree of {repo_path}")
    except WtError as exc:
        raise _fail(exc) from exc

    if not problems:
        console.print(f"[green]✓ {len(registry.tasks)} task(s) consistent.[/green]")
        return
    for problem in problems:
        err_console.print(f"[yellow]{escape(problem)}[/yellow]")
    raise typer.Exit(2)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
