"""tests/fakes.py

Test doubles shared across suites: a scripted provider and small in-memory
FastMCP servers.
"""

from __future__ import annotations

# Standard Library
import asyncio
from typing import Any

# Third-Party Libraries
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

# Local Modules
from aiworker.models import Completion, NativeToolCall, ProviderProbeResult
from aiworker.providers.base import ProviderClient


class ScriptedProvider(ProviderClient):
    """Provider double that replays a script of replies or exceptions.

    Each ``complete`` call pops the next script item; an exception instance is
    raised instead of returned.  ``delay`` makes every call sleep first.
    """

    def __init__(
        self,
        backend_id: str = "ollama",
        script: list[Completion | Exception] | None = None,
        *,
        available: bool = True,
        native_tools: bool = True,
        delay: float = 0.0,
        model: str = "test-model",
    ) -> None:
        self.backend_id = backend_id
        self.script = list(script or [])
        self.available = available
        self.native_tools = native_tools
        self.delay = delay
        self.model = model
        self.calls: list[dict[str, Any]] = []
        self.probe_count = 0

    async def probe(self, preferred_model: str | None = None) -> ProviderProbeResult:
        self.probe_count += 1
        return ProviderProbeResult(
            backend_id=self.backend_id,
            available=self.available,
            selected_model=self.model if self.available else None,
            diagnostic=None if self.available else "offline",
        )

    async def complete(self, messages, tool_catalog=None, *, model=None) -> Completion:
        self.calls.append({"messages": list(messages), "tool_catalog": tool_catalog, "model": model})
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.script:
            return Completion(content="done", provider=self.backend_id, model=self.model)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def supports_native_tools(self, model: str | None = None) -> bool:
        return self.native_tools


def text_reply(content: str, backend_id: str = "ollama") -> Completion:
    return Completion(content=content, provider=backend_id, model="test-model")


def tool_reply(*calls: tuple[str, dict[str, Any]], backend_id: str = "ollama") -> Completion:
    return Completion(
        content="",
        native_tool_calls=[NativeToolCall(name=name, arguments=args) for name, args in calls],
        provider=backend_id,
        model="test-model",
    )


def build_files_server() -> FastMCP:
    server: FastMCP = FastMCP("files")

    @server.tool()
    def list_files(path: str = ".") -> str:
        """List files in a directory."""
        return "a.txt\nb.txt"

    @server.tool()
    def broken() -> str:
        """Always fails."""
        raise ToolError("disk on fire")

    return server


def build_clock_server() -> FastMCP:
    server: FastMCP = FastMCP("clock")

    @server.tool()
    def get_current_time() -> str:
        """Get the current time."""
        return "2026-01-01T00:00:00"

    return server
