"""agentpad CLI - task trees, scratchpads and subagent runs."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from agentpad import __version__

app = typer.Typer(
    name="agentpad",
    help="Hierarchical task lists with scratchpads and delegated AI subagents",
    no_args_is_help=True,
)

console = Console()

tasks_app = typer.Typer(help="Task tree inspection", no_args_is_help=True)
scratchpad_app = typer.Typer(help="Scratchpad inspection", no_args_is_help=True)
runs_app = typer.Typer(help="Subagent runs", no_args_is_help=True)
app.add_typer(tasks_app, name="tasks")
app.add_typer(scratchpad_app, name="scratchpad")
app.add_typer(runs_app, name="runs")

_STATUS_STYLES = {
    "pending": "white",
    "in_progress": "yellow",
    "completed": "green",
    "archived": "dim",
    "success": "green",
    "failure": "red",
}


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _preview(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


async def _get_services() -> dict[str, Any]:
    """Get initialized database and services."""
    from agentpad.application import ProviderRegistry, SubagentOrchestrator
    from agentpad.infrastructure import ConfigManager, Database
    from agentpad.infrastructure.logger import setup_logging
    from agentpad.services import ScratchpadService, TaskHierarchyService

    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    database = Database(config_manager.get_database_path())
    await database.initialize()

    scratchpads = ScratchpadService(
        database,
        max_tasks=config.scratchpad.max_tasks,
        id_generation_attempts=config.scratchpad.id_generation_attempts,
    )
    return {
        "config": config,
        "config_manager": config_manager,
        "database": database,
        "tasks": TaskHierarchyService(database, config.tasks.max_traversal_depth),
        "scratchpads": scratchpads,
        "orchestrator": SubagentOrchestrator(
            database,
            scratchpads,
            ProviderRegistry(
                mcp_skip_servers=config.ai.mcp_skip_servers,
                project_root=config_manager.project_root,
            ),
            config.ai,
            api_key_provider=config_manager.get_api_key,
        ),
    }


# ===== Version =====
@app.command()
def version() -> None:
    """Show agentpad version."""
    console.print(f"[bold]agentpad[/bold] version [cyan]{__version__}[/cyan]")


# ===== Init =====
@app.command()
def init(
    db_path: Path | None = typer.Option(  # noqa: B008
        None, help="Custom database path (default: .agentpad/agentpad.db)"
    ),
) -> None:
    """Create the .agentpad directory and initialize the database."""

    async def _init() -> None:
        from agentpad.infrastructure import ConfigManager, Database

        config_manager = ConfigManager()
        database_path = db_path or config_manager.get_database_path()
        database_path.parent.mkdir(parents=True, exist_ok=True)

        database = Database(database_path)
        await database.initialize()
        await database.close()
        console.print(f"[green]✓[/green] Database initialized at {database_path}")

        config_file = config_manager.project_root / ".agentpad" / "config.yaml"
        if not config_file.exists():
            config_file.parent.mkdir(parents=True, exist_ok=True)
            config_file.write_text(
                "log_level: INFO\n"
                "ai:\n"
                "  enabled: true\n"
                "  api_type: anthropic\n"
                "  timeout_seconds: 120\n"
                "  soft_deadline_seconds: 25\n"
            )
            console.print(f"[green]✓[/green] Wrote default config to {config_file}")

    asyncio.run(_init())


# ===== Serve =====
@app.command()
def serve(
    db_path: Path | None = typer.Option(None, help="Path to SQLite database"),  # noqa: B008
) -> None:
    """Run the agentpad MCP server over stdio."""
    from agentpad.infrastructure import ConfigManager
    from agentpad.infrastructure.logger import setup_logging
    from agentpad.mcp.agentpad_server import AgentpadServer

    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    server = AgentpadServer(
        db_path or config_manager.get_database_path(),
        config=config,
        config_manager=config_manager,
    )
    asyncio.run(server.run())


# ===== API key =====
@app.command("set-key")
def set_key(
    api_key: str = typer.Option(..., prompt=True, hide_input=True, help="Provider API key"),
    env_file: bool = typer.Option(False, help="Store in .env instead of the system keychain"),
) -> None:
    """Store the inference provider API key."""
    from agentpad.infrastructure import ConfigManager

    ConfigManager().set_api_key(api_key.strip(), use_keychain=not env_file)
    location = ".env" if env_file else "system keychain"
    console.print(f"[green]✓[/green] API key stored in {location}")


# ===== Tasks =====
@tasks_app.command("list")
def list_tasks(
    project_id: str = typer.Argument(..., help="Project id"),
    only: list[str] | None = typer.Option(  # noqa: B008
        None, "--only", help="Only show tasks in this status (repeatable)"
    ),
) -> None:
    """List a project's tasks."""

    async def _list() -> None:
        services = await _get_services()
        try:
            tasks = await services["tasks"].list_tasks(project_id, only or None)
        finally:
            await services["database"].close()

        if not tasks:
            console.print("[dim]No tasks[/dim]")
            return

        table = Table(title=f"Tasks ({project_id})")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Info", style="magenta")
        table.add_column("Parent", style="blue")
        table.add_column("Status")
        table.add_column("Updated", style="dim")
        for task in tasks:
            table.add_row(
                task.task_id,
                _preview(task.task_info),
                task.parent_id or "-",
                _styled(task.status.value),
                task.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    asyncio.run(_list())


# ===== Scratchpads =====
@scratchpad_app.command("show")
def show_scratchpad(
    project_id: str = typer.Argument(..., help="Project id"),
    scratchpad_id: str = typer.Argument(..., help="Scratchpad id"),
) -> None:
    """Show a scratchpad's tasks and common memory."""

    async def _show() -> None:
        from agentpad.services import ScratchpadNotFoundError

        services = await _get_services()
        try:
            scratchpad = await services["scratchpads"].get_scratchpad(project_id, scratchpad_id)
        except ScratchpadNotFoundError:
            console.print(f"[red]Error:[/red] Scratchpad {scratchpad_id} not found")
            raise typer.Exit(1) from None
        finally:
            await services["database"].close()

        table = Table(title=f"Scratchpad {scratchpad.scratchpad_id}")
        table.add_column("Task", style="cyan", no_wrap=True)
        table.add_column("Status", style="yellow")
        table.add_column("Info", style="magenta")
        table.add_column("Scratchpad")
        for entry in scratchpad.tasks:
            table.add_row(
                entry.task_id,
                entry.status.value,
                _preview(entry.task_info, 40),
                _preview(entry.scratchpad, 40) or "-",
            )
        console.print(table)
        if scratchpad.common_memory:
            console.print("\n[bold]Common memory[/bold]")
            console.print(scratchpad.common_memory)

    asyncio.run(_show())


# ===== Runs =====
@runs_app.command("start")
def start_run(
    project_id: str = typer.Argument(..., help="Project id"),
    scratchpad_id: str = typer.Argument(..., help="Scratchpad id"),
    task_id: str = typer.Argument(..., help="Scratchpad task id"),
    prompt: str = typer.Argument(..., help="Instruction for the subagent"),
    tool: list[str] | None = typer.Option(  # noqa: B008
        None, "--tool", help="Capability or MCP server name (repeatable)"
    ),
    file_path: Path | None = typer.Option(None, help="File to attach"),  # noqa: B008
) -> None:
    """Run a subagent on one scratchpad task and wait for it to finish."""

    async def _start() -> None:
        from agentpad.domain.models import RunStatus

        services = await _get_services()
        orchestrator = services["orchestrator"]
        try:
            result = await orchestrator.run_scratchpad_subagent(
                None,
                {
                    "project_id": project_id,
                    "scratchpad_id": scratchpad_id,
                    "task_id": task_id,
                    "prompt": prompt,
                    "tool": tool or None,
                    "file_path": str(file_path) if file_path else None,
                },
            )
            if result.status == RunStatus.IN_PROGRESS and result.run_id:
                console.print(f"[dim]Run {result.run_id} still in progress, waiting...[/dim]")
                await orchestrator.wait_for_background()
                result = await orchestrator.get_run_status(project_id, result.run_id)
        finally:
            await services["database"].close()

        console.print(f"Run [cyan]{result.run_id or '-'}[/cyan]: {_styled(result.status.value)}")
        if result.error:
            console.print(f"[red]Error:[/red] {result.error}")
            raise typer.Exit(1)

    asyncio.run(_start())


@runs_app.command("status")
def run_status(
    project_id: str = typer.Argument(..., help="Project id"),
    run_id: str = typer.Argument(..., help="Run id (run-xxxxxxxxxx)"),
) -> None:
    """Show the status of a subagent run."""

    async def _status() -> None:
        services = await _get_services()
        try:
            result = await services["orchestrator"].get_run_status(project_id, run_id)
        finally:
            await services["database"].close()

        console.print(f"Run [cyan]{run_id}[/cyan]: {_styled(result.status.value)}")
        if result.error:
            console.print(f"[red]Error:[/red] {result.error}")

    asyncio.run(_status())


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
