"""tests/conftest.py

Pytest configuration and shared fixtures for the AI-Worker test suite.
"""

from __future__ import annotations

# Third-Party Libraries
import pytest
from fastmcp import FastMCP

# Local Modules
from aiworker.models import Message, ToolServerDescriptor, TransportKind
from aiworker.tool_servers.manager import ToolServerManager
from fakes import build_clock_server, build_files_server


@pytest.fixture
def sample_history() -> list[Message]:
    """Create a short prior conversation."""
    return [
        Message(role="user", content="Hello!"),
        Message(role="assistant", content="Hi there! How can I help you?"),
    ]


@pytest.fixture
def files_descriptor() -> ToolServerDescriptor:
    return ToolServerDescriptor(
        id="files",
        name="Files",
        description="File tools",
        transport_kind=TransportKind.PROCESS,
        command="python",
        args=["files_server.py"],
    )


@pytest.fixture
def clock_descriptor() -> ToolServerDescriptor:
    return ToolServerDescriptor(
        id="clock",
        name="Clock",
        transport_kind=TransportKind.STREAM,
        url="http://localhost:9000/mcp",
    )


@pytest.fixture
def in_memory_servers() -> dict[str, FastMCP]:
    """FastMCP servers keyed by the descriptor id that should reach them."""
    return {"files": build_files_server(), "clock": build_clock_server()}


@pytest.fixture
def tool_manager(
    files_descriptor: ToolServerDescriptor,
    clock_descriptor: ToolServerDescriptor,
    in_memory_servers: dict[str, FastMCP],
) -> ToolServerManager:
    """Manager whose descriptors connect to in-memory FastMCP servers."""
    return ToolServerManager(
        [files_descriptor, clock_descriptor],
        transport_factory=lambda descriptor: in_memory_servers[descriptor.id],
        connect_timeout=10.0,
    )
