"""Command line front-end for bi-agents.

    bi-agents ask "How do we grow margin?" --agents zbg crm --file q3.csv
    bi-agents health
    bi-agents agents

Ctrl-C during ``ask`` stops the run; agents that already finished are
still shown.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import logfire
from rich.console import Console
from rich.table import Table

from bi_agents import __version__
from bi_agents.agents import AGENTS, get_agents_by_ids
from bi_agents.config import Settings, get_settings
from bi_agents.conversation import ConversationService, InMemoryConversationStore
from bi_agents.core.errors import BIAgentsError
from bi_agents.core.orchestrator import AgentOrchestrator
from bi_agents.core.registry import ServiceRegistry
from bi_agents.models import AgentCallResult, AgentStatus, FileSummary

logger = logging.getLogger(__name__)

console = Console()

SUMMARY_CHARS = 500
PREVIEW_CHARS = 400
STATUS_STYLES = {"healthy": "green", "degraded": "yellow", "down": "red"}


def configure_logging(settings: Settings) -> None:
    """Set up stdlib logging and logfire.

    Without a LOGFIRE_TOKEN logfire stays local-only.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    token = settings.api.logfire_token
    try:
        logfire.configure(
            service_name="bi-agents",
            service_version=__version__,
            send_to_logfire="if-token-present",
            token=token.get_secret_value() if token else None,
            inspect_arguments=False,
            console=False,
        )
        logfire.instrument_httpx()
    except Exception as e:
        logger.debug(f"Logfire setup skipped: {e}")


def load_file(path: str) -> FileSummary:
    """Read a local text file into a FileSummary."""
    file_path = Path(path)
    content = file_path.read_text(encoding="utf-8", errors="replace")
    return FileSummary(
        name=file_path.name,
        summary=" ".join(content.split())[:SUMMARY_CHARS],
        content=content,
    )


def render_results(results: Sequence[AgentCallResult]) -> Table:
    table = Table(title="Agent results", show_lines=True)
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Cached")
    table.add_column("Response")
    for result in results:
        style = "green" if result.status == AgentStatus.COMPLETE else "red"
        content = result.content
        if len(content) > PREVIEW_CHARS:
            content = content[:PREVIEW_CHARS] + "..."
        table.add_row(
            result.agent_id,
            f"[{style}]{result.status.value}[/{style}]",
            "yes" if result.cached else "",
            content,
        )
    return table


def render_health(registry: ServiceRegistry) -> Table:
    table = Table(title="Service health")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    table.add_column("Error rate", justify="right")
    table.add_column("Last latency", justify="right")
    table.add_column("Circuit")
    table.add_column("Window", justify="right")
    for name, status in registry.get_status().items():
        health = status["health"]
        style = STATUS_STYLES.get(health["status"], "white")
        limiter = status["rate_limit"]
        table.add_row(
            name,
            f"[{style}]{health['status']}[/{style}]",
            f"{health['error_rate_pct']:.1f}%",
            f"{health['last_latency_ms']:.0f} ms",
            status["circuit"]["state"],
            f"{limiter['current_requests']}/{limiter['max_requests']}",
        )
    return table


def render_agents() -> Table:
    table = Table(title="Available agents")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Service")
    table.add_column("Description")
    for agent in AGENTS:
        table.add_row(agent.id, agent.display_name, agent.service, agent.description)
    return table


async def run_ask(args: argparse.Namespace, settings: Settings) -> int:
    agent_ids = args.agents or [agent.id for agent in AGENTS]
    agents = get_agents_by_ids(agent_ids)
    unknown = sorted(set(agent_ids) - {agent.id for agent in agents})
    if unknown:
        console.print(f"[red]Unknown agent(s): {', '.join(unknown)}[/red]")
        return 2

    try:
        files = [load_file(path) for path in args.file or []]
    except OSError as e:
        console.print(f"[red]Could not read file: {e}[/red]")
        return 2

    registry = ServiceRegistry(settings)
    orchestrator = AgentOrchestrator(registry)
    service = ConversationService(
        InMemoryConversationStore(), orchestrator, user_id=args.user
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform; Ctrl-C falls back to KeyboardInterrupt
        pass

    try:
        with console.status(f"Running {len(agents)} agent(s)..."):
            turn = await service.submit_message(
                args.prompt, agents, files, parallel=args.parallel
            )
    except BIAgentsError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        await registry.aclose()

    console.print(render_results(turn.results))
    console.print(render_health(registry))
    if turn.cancelled:
        console.print("[yellow]Run stopped by user[/yellow]")
        return 130
    return 0 if all(r.ok for r in turn.results) else 1


async def run_health(args: argparse.Namespace, settings: Settings) -> int:
    registry = ServiceRegistry(settings)
    try:
        for name, check in registry.health_checks().items():
            await registry.health.probe(name, check)
    finally:
        await registry.aclose()
    console.print(render_health(registry))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bi-agents",
        description="Run business-intelligence agents against LLM providers",
    )
    parser.add_argument("--version", "-v", action="version", version=__version__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Ask one or more agents a question")
    ask.add_argument("prompt", help="The question or request")
    ask.add_argument(
        "--agents", "-a", nargs="+", metavar="ID",
        help="Agent ids to run (default: all)",
    )
    ask.add_argument(
        "--file", "-f", action="append", metavar="PATH",
        help="Attach a text file (repeatable)",
    )
    ask.add_argument(
        "--parallel", action="store_true",
        help="Run agents in concurrent batches instead of one at a time",
    )
    ask.add_argument("--user", default="cli", help="User id recorded with the chat")

    subparsers.add_parser("health", help="Probe every configured service")
    subparsers.add_parser("agents", help="List available agents")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the installed CLI tool."""
    args = build_parser().parse_args(argv)

    if args.command == "agents":
        console.print(render_agents())
        return 0

    settings = get_settings()
    configure_logging(settings)
    handler = run_ask if args.command == "ask" else run_health
    try:
        return asyncio.run(handler(args, settings))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
