"""Command-line entry point for the terminal agent."""

import asyncio
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config.settings import configure_project_root, settings
from termai import __version__
from termai.agent.events import EventType, SessionEvent
from termai.agent.session import TerminalSession
from termai.agent.state import LoopPhase, TaskSummary
from termai.llm.client import ProviderSelector, check_ollama_availability

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="termai",
    help="Terminal agent with a supervised LLM auto-run loop",
)
console = Console()


@app.callback()
def _configure_project(
    project_root: Path | None = typer.Option(
        None,
        "--project-root",
        "-p",
        help="Project root for file tools and the shell cwd (defaults to cwd if not set).",
    ),
) -> None:
    """Configure logging and the project root for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    root = project_root
    if root is None:
        if os.getenv("PROJECT_ROOT"):
            root = settings.project_root
        else:
            root = Path.cwd()
    configure_project_root(root)


def _print_summary(summary: dict) -> None:
    table = Table(title=summary["final_message"])
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Steps", str(summary["total_steps"]))
    table.add_row("Successful", f"[green]{summary['successful_steps']}[/green]")
    table.add_row("Failed", f"[red]{summary['failed_steps']}[/red]")
    table.add_row("Duration", f"{summary['end_time'] - summary['start_time']:.1f}s")
    table.add_row("App status", summary["app_status"])
    if summary.get("app_port"):
        table.add_row("Port", str(summary["app_port"]))
    console.print()
    console.print(table)
    if summary.get("narrative"):
        console.print(Panel(Markdown(summary["narrative"]), title="Mission Report"))


def _render_event(event: SessionEvent) -> None:
    """Print a session event to the console."""
    payload = event.payload
    if event.type == EventType.MESSAGE and payload.get("role") == "ai":
        console.print(Panel(Markdown(payload["content"]), title="AI", border_style="cyan"))
    elif event.type == EventType.MESSAGE:
        console.print(f"[dim]{escape(payload['content'])}[/dim]")
    elif event.type == EventType.COMMAND_DISPATCH_REQUEST:
        console.print(f"[bold green]$[/bold green] {escape(payload['command'])}", highlight=False)
    elif event.type == EventType.COMMAND_OUTPUT:
        console.print(payload["chunk"], end="", markup=False, highlight=False)
    elif event.type == EventType.COMMAND_FINISHED:
        color = "green" if payload["exit_code"] == 0 else "red"
        console.print(f"[{color}](exit {payload['exit_code']})[/{color}]")
    elif event.type == EventType.TOOL_EXECUTED:
        mark = "[green]OK[/green]" if payload["success"] else "[red]FAILED[/red]"
        console.print(f"[dim]Tool {payload['verb']} {escape(payload['argument'])}:[/dim] {mark}")
    elif event.type == EventType.AI_THINKING and payload.get("thinking"):
        console.print("[dim]Thinking...[/dim]")
    elif event.type == EventType.STUCK_DETECTED:
        console.print(f"[yellow]Stuck:[/yellow] {escape(payload['reason'])}")
    elif event.type == EventType.BUDGET_EXCEEDED:
        console.print(f"[yellow]Step limit reached ({payload['limit']})[/yellow]")
    elif event.type == EventType.PROVIDER_FAILURE:
        console.print(f"[red]LLM error:[/red] {escape(payload['error'])}")
    elif event.type == EventType.STALL_SUSPECTED:
        console.print(f"[yellow]Watchdog: {payload['target']} looks stalled[/yellow]")
    elif event.type == EventType.INTERVENTION_PERFORMED:
        console.print("[yellow]Watchdog intervened on stalled work[/yellow]")
    elif event.type == EventType.TASK_COMPLETE:
        _print_summary(payload["summary"])


async def _run_task(task: str, assume_yes: bool) -> TaskSummary | None:
    session = TerminalSession("cli", ProviderSelector())
    session.channel.subscribe(_render_event)
    session.start()
    controller = session.controller

    try:
        await controller.set_auto_run(True)
        await controller.send_user_message(task)

        while True:
            await session.wait_idle()
            phase = controller.state.phase

            if phase == LoopPhase.WAITING_FOR_SAFETY and controller.pending_safety:
                pending = controller.pending_safety
                console.print(f"[bold red]Confirmation required:[/bold red] {escape(pending.impact)}")
                approved = assume_yes or await asyncio.to_thread(
                    Confirm.ask, f"Run [bold]{escape(pending.command)}[/bold]?", default=False
                )
                await controller.resolve_safety(pending.id, approved)
                continue

            if phase in (LoopPhase.WAITING_FOR_USER, LoopPhase.STUCK):
                reply = await asyncio.to_thread(
                    Prompt.ask, "[bold cyan]Your reply[/bold cyan] (empty to stop)", default=""
                )
                if not reply.strip():
                    break
                await controller.send_user_message(reply)
                continue

            break
    finally:
        await controller.set_auto_run(False)
        await session.close()

    return controller.last_summary


@app.command()
def run(
    task: str = typer.Argument(..., help="Task for the agent to carry out"),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Approve commands flagged by the safety check"
    ),
) -> None:
    """Carry out a task in auto-run mode in the current terminal."""
    console.print(f"[dim]termai {__version__} - working in {settings.project_root}[/dim]")
    try:
        asyncio.run(_run_task(task, yes))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, "--host", "-h"),
    port: int = typer.Option(settings.api_port, "--port", "-p"),
    reload: bool = typer.Option(False, "--reload", "-r"),
) -> None:
    """Start the REST API server."""
    import uvicorn

    console.print(f"Starting API server at [cyan]http://{host}:{port}[/cyan]")
    console.print("API docs available at [cyan]/docs[/cyan]")

    uvicorn.run(
        "termai.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command()
def check() -> None:
    """Check LLM provider availability and settings."""
    console.print("[bold]System Status Check[/bold]\n")

    ollama_ok = asyncio.run(check_ollama_availability(settings.llm_model))
    status = "[green]OK[/green]" if ollama_ok else "[red]NOT AVAILABLE[/red]"
    console.print(f"Ollama ({settings.ollama_base_url}): {status}")

    selector = ProviderSelector()
    available = set(asyncio.run(selector.list_available_providers()))

    table = Table(title="Provider chain")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    table.add_column("Status")
    for provider in selector.list_providers():
        ok = provider.name in available
        table.add_row(
            provider.name,
            provider.model,
            "[green]available[/green]" if ok else "[red]unavailable[/red]",
        )
    console.print(table)

    console.print(f"\nProvider config: {settings.provider_config_path}")
    console.print(f"Fallback enabled: {settings.fallback_enabled}")
    console.print(f"Shell: {settings.shell_executable} (timeout {settings.shell_timeout}s)")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
