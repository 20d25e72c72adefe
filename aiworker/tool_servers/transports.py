"""aiworker/tool_servers/transports.py

Builds FastMCP client transports from tool server descriptors.
"""

from __future__ import annotations

# Standard Library
import logging
import os
import shutil
import sys
from collections.abc import Iterable
from urllib.parse import urlparse

# Third-Party Libraries
from fastmcp.client.transports import ClientTransport, SSETransport, StdioTransport, StreamableHttpTransport

# Local Modules
from aiworker.models import ToolServerDescriptor, TransportKind

logger = logging.getLogger(__name__)


def resolve_command(command: str, embedded_aliases: Iterable[str] = ()) -> str:
    """Resolve a launch command to an executable path.

    Generic interpreter names listed in ``embedded_aliases`` resolve to the
    interpreter running this process, so users need no separate install.

    Raises:
        FileNotFoundError: The command is neither a path nor on ``PATH``.
    """
    cmd = command.strip()
    if cmd in set(embedded_aliases):
        logger.info("[tool-server] using embedded runtime %s for %r", sys.executable, cmd)
        return sys.executable

    if os.path.isabs(cmd) or os.path.sep in cmd:
        if not os.path.exists(cmd):
            raise FileNotFoundError(f"Command not found: {cmd}")
        return cmd

    resolved = shutil.which(cmd)
    if not resolved:
        raise FileNotFoundError(f"Command '{cmd}' not found in PATH (ENOENT)")
    return resolved


def build_transport(
    descriptor: ToolServerDescriptor,
    embedded_aliases: Iterable[str] = (),
) -> ClientTransport:
    """Create the transport for ``descriptor``.

    Process servers are spawned over stdio with the parent environment plus
    the descriptor's ``env``.  Stream servers use SSE when the URL path ends
    in ``/sse`` and streamable HTTP otherwise.
    """
    if descriptor.transport_kind is TransportKind.PROCESS:
        command = resolve_command(descriptor.command or "", embedded_aliases)
        env = {**os.environ, **(descriptor.env or {})}
        logger.info("[tool-server] stdio transport: %s %s", command, " ".join(descriptor.args))
        return StdioTransport(command=command, args=list(descriptor.args), env=env)

    url = descriptor.url or ""
    if urlparse(url).path.rstrip("/").endswith("/sse"):
        logger.info("[tool-server] SSE transport: %s", url)
        return SSETransport(url)
    logger.info("[tool-server] streamable HTTP transport: %s", url)
    return StreamableHttpTransport(url)
