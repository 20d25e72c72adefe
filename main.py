#!/usr/bin/env python3
"""main.py

Entry point for AI-Worker: an interactive Rich CLI over the orchestration
core.  Tool servers flagged for auto-connect are connected on startup.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import sys

# Third-Party Libraries
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

# Local Modules
from aiworker.config import WorkerSettings
from aiworker.errors import WorkerError
from aiworker.history import ConversationHistory
from aiworker.models import ConnectionState, FinalAnswer
from aiworker.runtime import WorkerRuntime, build_runtime

# Load environment variables from .env file
load_dotenv()

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "user": "bold blue",
        "assistant": "green",
        "tool": "magenta",
    }
)
console = Console(theme=custom_theme)

_STATE_STYLES = {
    ConnectionState.CONNECTED: "success",
    ConnectionState.CONNECTING: "warning",
    ConnectionState.ERROR: "error",
    ConnectionState.DISCONNECTED: "info",
}


def display_help() -> None:
    """Display available commands and usage information."""
    help_text = """
**Available Commands:**

- `/help` - Show this help message
- `/clear` - Clear conversation history
- `/stats` - Show context statistics
- `/providers` - Probe the LLM backends
- `/servers` - List tool servers and their state
- `/connect <id>` - Connect a tool server
- `/disconnect <id>` - Disconnect a tool server
- `/quit` or `/exit` - Exit
- Any other text - Chat with the assistant
    """
    console.print(Panel(Markdown(help_text), title="Help", border_style="cyan"))


def display_stats(runtime: WorkerRuntime, history: ConversationHistory) -> None:
    catalog = runtime.tool_servers.build_catalog()
    stats_text = f"""
**Context Statistics:**

- Messages in context: {history.message_count()}/{history.max_messages}
- Provider preference: `{runtime.orchestrator.preference}`
- Tools available: {len(catalog)} from {len(catalog.servers)} servers
- Iteration budget: {runtime.orchestrator.max_iterations} per turn
    """
    console.print(Panel(Markdown(stats_text), title="Statistics", border_style="cyan"))


async def display_providers(runtime: WorkerRuntime) -> None:
    probes = await runtime.selector.probe_all(runtime.orchestrator.model_hints)
    table = Table(title="LLM Providers")
    table.add_column("Backend")
    table.add_column("Available")
    table.add_column("Model")
    table.add_column("Details")
    for backend_id, probe in probes.items():
        table.add_row(
            backend_id,
            "[success]yes[/success]" if probe.available else "[error]no[/error]",
            probe.selected_model or "-",
            probe.diagnostic or "",
        )
    console.print(table)


def display_servers(runtime: WorkerRuntime) -> None:
    table = Table(title="Tool Servers")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("State")
    table.add_column("Tools", justify="right")
    for descriptor in runtime.tool_servers.list_descriptors():
        conn = runtime.tool_servers.connection(descriptor.id)
        style = _STATE_STYLES[conn.state]
        table.add_row(
            descriptor.id,
            descriptor.name,
            f"[{style}]{conn.state.value}[/{style}]",
            str(len(conn.capability_list)),
        )
    console.print(table)


def display_answer(answer: FinalAnswer) -> None:
    for entry in answer.tool_call_trace:
        marker = "✗" if entry.result.is_error else "✓"
        console.print(f"  {marker} {entry.request.name}", style="tool")

    if answer.is_error:
        console.print(Panel(Markdown(answer.content), title="[bold red]Error[/bold red]", border_style="red"))
        return

    subtitle = f"{answer.provider} · {answer.model}" if answer.provider else None
    if answer.incomplete:
        console.print("⚠️  Stopped after reaching the tool-call limit for one turn.", style="warning")
    console.print(
        Panel(
            Markdown(answer.content or "_(empty reply)_"),
            title="[bold green]AI-Worker[/bold green]",
            subtitle=subtitle,
            border_style="green",
        )
    )


async def _server_command(runtime: WorkerRuntime, command: str, descriptor_id: str) -> None:
    if not descriptor_id:
        console.print(f"Usage: {command} <id>  (see /servers)", style="warning")
        return
    try:
        if command == "/connect":
            with console.status(f"[bold green]Connecting {descriptor_id}...", spinner="dots"):
                conn = await runtime.tool_servers.connect(descriptor_id)
            console.print(f"✅ Connected with {len(conn.capability_list)} tools.\n", style="success")
        else:
            await runtime.tool_servers.disconnect(descriptor_id)
            console.print("Disconnected.\n", style="success")
    except WorkerError as exc:
        console.print(Panel(Markdown(str(exc)), title="Tool server", border_style="red"))


async def chat_loop(runtime: WorkerRuntime) -> None:
    history = ConversationHistory()

    with console.status("[bold green]Connecting tool servers...", spinner="dots"):
        await runtime.start()
    display_servers(runtime)
    console.print("Type [bold]/help[/bold] for commands, or start chatting!\n", style="info")

    while True:
        user_input = (await asyncio.to_thread(Prompt.ask, "[bold blue]You[/bold blue]")).strip()
        if not user_input:
            continue

        command, _, argument = user_input.partition(" ")
        command = command.lower()
        if command in ("/quit", "/exit"):
            console.print("\n👋 Goodbye!\n", style="success")
            return
        if command == "/help":
            display_help()
            continue
        if command == "/clear":
            history.clear()
            console.print("🗑️  Conversation history cleared.\n", style="success")
            continue
        if command == "/stats":
            display_stats(runtime, history)
            continue
        if command == "/providers":
            await display_providers(runtime)
            continue
        if command == "/servers":
            display_servers(runtime)
            continue
        if command in ("/connect", "/disconnect"):
            await _server_command(runtime, command, argument.strip())
            continue

        console.print()
        with console.status("[bold green]Thinking...", spinner="dots"):
            answer = await runtime.orchestrator.submit_turn(history.messages(), user_input)
        history.record_turn(user_input, answer)
        display_answer(answer)
        console.print()


async def _run(settings: WorkerSettings) -> None:
    runtime = build_runtime(settings)
    try:
        await chat_loop(runtime)
    finally:
        await runtime.aclose()


def main() -> None:
    """Main entry point for the AI-Worker CLI."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        settings = WorkerSettings()
    except ValueError as exc:
        console.print(f"❌ Invalid configuration: {exc}", style="error")
        sys.exit(1)

    console.print("⚙️  Initializing AI-Worker...", style="info")
    console.print(f"🤖 Provider preference: {settings.preferred_provider}", style="info")
    console.print(f"🧰 Tool servers file: {settings.tool_servers_file}\n", style="info")

    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        console.print("\n\n👋 Interrupted. Goodbye!\n", style="warning")


if __name__ == "__main__":
    main()
