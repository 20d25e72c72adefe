"""MCP tool server lifecycle, transports, persistence and failure diagnostics."""

from aiworker.tool_servers.diagnostics import classify
from aiworker.tool_servers.manager import ToolServerManager, redact_arguments
from aiworker.tool_servers.store import DescriptorStore, default_descriptors
from aiworker.tool_servers.transports import build_transport, resolve_command

__all__ = [
    "DescriptorStore",
    "ToolServerManager",
    "build_transport",
    "classify",
    "default_descriptors",
    "redact_arguments",
    "resolve_command",
]
