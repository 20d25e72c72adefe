"""aiworker/tool_servers/manager.py

Registry of configured MCP tool servers and their live connections.

Each descriptor moves through ``disconnected → connecting → connected`` (or
``connecting → error``).  Connect, disconnect and invoke on one descriptor
are serialized by a per-descriptor lock, so a disconnect can never tear down
a transport that an invoke is still using.
"""

from __future__ import annotations

# Standard Library
import asyncio
import dataclasses
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

# Third-Party Libraries
from fastmcp import Client

# Local Modules
from aiworker.errors import NotConnected, ToolInvocationFailed, ToolServerConnectError, ToolServerNotFound
from aiworker.models import (
    ConnectionState,
    ServerSummary,
    ToolCallResult,
    ToolCatalog,
    ToolCatalogEntry,
    ToolServerConnection,
    ToolServerDescriptor,
)
from aiworker.tool_servers.diagnostics import classify
from aiworker.tool_servers.transports import build_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ToolServerDescriptor], Any]

_CLOSED_MARKERS: tuple[str, ...] = (
    "-32000",
    "connection closed",
    "econnreset",
    "epipe",
    "broken pipe",
    "closedresourceerror",
    "brokenresourceerror",
)
_SENSITIVE_KEYS: tuple[str, ...] = ("password", "apikey", "api_key", "token", "secret", "key", "auth")
_CLOSE_TIMEOUT = 5.0


def _is_connection_closed(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionError, EOFError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _CLOSED_MARKERS)


def redact_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
    """Mask credential-looking values before tool arguments are logged."""
    redacted: dict[str, Any] = {}
    for key, value in arguments.items():
        if any(marker in key.lower() for marker in _SENSITIVE_KEYS):
            redacted[key] = "***REDACTED***"
        elif isinstance(value, dict):
            redacted[key] = redact_arguments(value)
        else:
            redacted[key] = value
    return redacted


def render_tool_content(result: Any) -> str:
    """Flatten an MCP ``CallToolResult`` into plain text for the model."""
    parts: list[str] = []
    for item in getattr(result, "content", None) or []:
        if getattr(item, "type", None) == "text":
            parts.append(item.text)
        elif hasattr(item, "model_dump"):
            parts.append(json.dumps(item.model_dump(mode="json", exclude_none=True), ensure_ascii=False))
        else:
            parts.append(str(item))
    if not parts:
        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            parts.append(json.dumps(structured, ensure_ascii=False))
    return "\n".join(parts)


@dataclasses.dataclass(slots=True)
class _LiveSession:
    client: Client
    stack: AsyncExitStack


class ToolServerManager:
    """Owns tool server descriptors, connection state and discovered tools.

    Args:
        descriptors: Initial descriptors, in display order.
        transport_factory: Builds what ``fastmcp.Client`` connects to for a
            descriptor.  Defaults to ``build_transport``.
        connect_timeout: Seconds allowed for transport open + handshake.
        embedded_aliases: Commands that resolve to the host interpreter.
    """

    def __init__(
        self,
        descriptors: Iterable[ToolServerDescriptor] = (),
        *,
        transport_factory: TransportFactory | None = None,
        connect_timeout: float = 30.0,
        embedded_aliases: Iterable[str] = (),
    ) -> None:
        aliases = tuple(embedded_aliases)
        self._transport_factory: TransportFactory = transport_factory or (
            lambda descriptor: build_transport(descriptor, aliases)
        )
        self.connect_timeout = connect_timeout
        self._descriptors: dict[str, ToolServerDescriptor] = {}
        self._connections: dict[str, ToolServerConnection] = {}
        self._sessions: dict[str, _LiveSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        for descriptor in descriptors:
            self.add(descriptor)

    # ------------------------------------------------------------------
    # Descriptor CRUD
    # ------------------------------------------------------------------

    def list_descriptors(self) -> list[ToolServerDescriptor]:
        return list(self._descriptors.values())

    def get(self, descriptor_id: str) -> ToolServerDescriptor:
        try:
            return self._descriptors[descriptor_id]
        except KeyError:
            raise ToolServerNotFound(descriptor_id) from None

    def add(self, descriptor: ToolServerDescriptor) -> ToolServerDescriptor:
        if descriptor.id in self._descriptors:
            raise ValueError(f"Duplicate tool server id: {descriptor.id}")
        self._descriptors[descriptor.id] = descriptor
        self._connections[descriptor.id] = ToolServerConnection(descriptor_id=descriptor.id)
        self._locks[descriptor.id] = asyncio.Lock()
        logger.info("[tool-server] registered %s (%s)", descriptor.name, descriptor.id)
        return descriptor

    async def update(self, descriptor_id: str, **changes: Any) -> ToolServerDescriptor:
        """Apply ``changes`` to a descriptor.

        A live connection is closed first since it was opened with the old
        configuration.  The id cannot change.
        """
        current = self.get(descriptor_id)
        changes.pop("id", None)
        updated = ToolServerDescriptor.model_validate({**current.model_dump(), **changes, "id": descriptor_id})
        async with self._locked(descriptor_id):
            await self._teardown(descriptor_id)
            self._descriptors[descriptor_id] = updated
        return updated

    async def remove(self, descriptor_id: str) -> None:
        self.get(descriptor_id)
        async with self._locked(descriptor_id):
            await self._teardown(descriptor_id)
            del self._descriptors[descriptor_id]
            del self._connections[descriptor_id]
            del self._locks[descriptor_id]
        logger.info("[tool-server] removed %s", descriptor_id)

    @asynccontextmanager
    async def _locked(self, descriptor_id: str) -> AsyncIterator[ToolServerDescriptor]:
        """Hold the descriptor's lock and yield its current descriptor.

        Raises:
            ToolServerNotFound: The descriptor is unknown, or was removed
                while waiting for the lock.
        """
        lock = self._locks.get(descriptor_id)
        if lock is None:
            raise ToolServerNotFound(descriptor_id)
        async with lock:
            if self._locks.get(descriptor_id) is not lock:
                raise ToolServerNotFound(descriptor_id)
            yield self._descriptors[descriptor_id]

    def connection(self, descriptor_id: str) -> ToolServerConnection:
        """Return a snapshot of the descriptor's connection state."""
        self.get(descriptor_id)
        conn = self._connections[descriptor_id]
        return dataclasses.replace(conn, capability_list=list(conn.capability_list))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, descriptor_id: str) -> ToolServerConnection:
        """Open the transport, handshake and discover tools.

        Idempotent: an already-connected descriptor with a live transport
        returns immediately without opening a second connection.  A session
        whose transport has died is torn down and reopened.

        Raises:
            ToolServerNotFound: Unknown descriptor id.
            ToolServerConnectError: The transport or handshake failed.  The
                descriptor is left in ``error`` with ``last_error`` set.
        """
        self.get(descriptor_id)
        async with self._locked(descriptor_id) as descriptor:
            conn = self._connections[descriptor_id]
            session = self._sessions.get(descriptor_id)
            if session is not None:
                if conn.state is ConnectionState.CONNECTED and session.client.is_connected():
                    logger.info("[tool-server] %s already connected", descriptor.name)
                    return self.connection(descriptor_id)
                logger.warning("[tool-server] %s transport is gone, reconnecting", descriptor.name)
                await self._teardown(descriptor_id, last_error="Connection closed unexpectedly")

            conn.state = ConnectionState.CONNECTING
            conn.last_error = None
            started = time.monotonic()
            stack = AsyncExitStack()
            try:
                client = Client(self._transport_factory(descriptor))
                await asyncio.wait_for(stack.enter_async_context(client), timeout=self.connect_timeout)
                tools = await self._discover_tools(descriptor, client)
            except asyncio.CancelledError:
                await self._close_stack(stack, descriptor)
                conn.state = ConnectionState.DISCONNECTED
                raise
            except Exception as exc:
                await self._close_stack(stack, descriptor)
                source: BaseException | str = exc
                if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
                    source = f"Timed out after {self.connect_timeout:g}s waiting for {descriptor.name} to start"
                raw = str(source) or type(exc).__name__
                diagnostic = classify(descriptor, source)
                conn.state = ConnectionState.ERROR
                conn.capability_list = []
                conn.last_error = diagnostic
                logger.error("[tool-server] %s failed to connect: %s", descriptor.name, raw)
                raise ToolServerConnectError(descriptor_id, raw, diagnostic) from exc

            self._sessions[descriptor_id] = _LiveSession(client=client, stack=stack)
            conn.state = ConnectionState.CONNECTED
            conn.capability_list = tools
            logger.info(
                "[tool-server] %s connected with %d tools in %.2fs: %s",
                descriptor.name,
                len(tools),
                time.monotonic() - started,
                [t.name for t in tools],
            )
            return self.connection(descriptor_id)

    async def _discover_tools(self, descriptor: ToolServerDescriptor, client: Client) -> list[ToolCatalogEntry]:
        try:
            tools = await asyncio.wait_for(client.list_tools(), timeout=self.connect_timeout)
        except Exception as exc:
            if _is_connection_closed(exc):
                raise ConnectionError("Connection closed unexpectedly") from exc
            # Servers that expose prompts or resources only may not implement
            # tools/list; they stay connected with an empty capability list.
            logger.warning("[tool-server] %s connected but listing tools failed: %s", descriptor.name, exc)
            return []
        return [
            ToolCatalogEntry(
                name=tool.name,
                description=tool.description or "",
                parameter_schema=dict(tool.inputSchema or {"type": "object", "properties": {}}),
                server_id=descriptor.id,
            )
            for tool in tools
        ]

    async def _close_stack(self, stack: AsyncExitStack, descriptor: ToolServerDescriptor) -> None:
        try:
            await asyncio.wait_for(stack.aclose(), timeout=_CLOSE_TIMEOUT)
        except Exception as exc:
            logger.warning("[tool-server] error while closing %s: %s", descriptor.name, exc)

    async def _teardown(self, descriptor_id: str, last_error: str | None = None) -> None:
        """Close any live session and reset state.  Caller holds the lock."""
        session = self._sessions.pop(descriptor_id, None)
        conn = self._connections[descriptor_id]
        conn.state = ConnectionState.DISCONNECTED
        conn.capability_list = []
        conn.last_error = last_error
        if session is not None:
            await self._close_stack(session.stack, self._descriptors[descriptor_id])
            logger.info("[tool-server] %s disconnected", self._descriptors[descriptor_id].name)

    async def disconnect(self, descriptor_id: str) -> ToolServerConnection:
        """Close the transport and clear discovered tools.  Safe when already disconnected."""
        self.get(descriptor_id)
        async with self._locked(descriptor_id):
            await self._teardown(descriptor_id)
        return self.connection(descriptor_id)

    async def auto_connect_all(self) -> dict[str, ToolServerConnection]:
        """Connect, one at a time, every descriptor flagged ``auto_connect``.

        Failures are recorded on the descriptor and logged; they do not stop
        the remaining servers from connecting.
        """
        results: dict[str, ToolServerConnection] = {}
        for descriptor in self.list_descriptors():
            if not descriptor.auto_connect:
                continue
            try:
                results[descriptor.id] = await self.connect(descriptor.id)
            except ToolServerConnectError as exc:
                logger.warning("[tool-server] auto-connect failed for %s: %s", descriptor.name, exc.raw_error)
                results[descriptor.id] = self.connection(descriptor.id)
        connected = sum(1 for c in results.values() if c.state is ConnectionState.CONNECTED)
        logger.info("[tool-server] auto-connect finished: %d/%d connected", connected, len(results))
        return results

    async def close_all(self) -> None:
        for descriptor_id in list(self._descriptors):
            await self.disconnect(descriptor_id)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def list_tools(self, descriptor_id: str) -> list[ToolCatalogEntry]:
        """Return the cached tool list.

        Raises:
            NotConnected: The descriptor is not connected.
        """
        conn = self.connection(descriptor_id)
        if conn.state is not ConnectionState.CONNECTED:
            raise NotConnected(descriptor_id)
        return conn.capability_list

    def build_catalog(self) -> ToolCatalog:
        """Collect the tools of every connected server into one catalog.

        Tool names must be unique within a turn: when two servers expose the
        same name, the server listed first keeps it.  A server whose
        transport has died is marked ``disconnected`` and left out; its
        session is closed by the next ``connect`` or ``disconnect``.
        """
        catalog = ToolCatalog()
        for descriptor in self._descriptors.values():
            conn = self._connections[descriptor.id]
            if conn.state is not ConnectionState.CONNECTED:
                continue
            session = self._sessions.get(descriptor.id)
            if session is None or not session.client.is_connected():
                logger.warning("[catalog] %s transport is gone, dropping its tools", descriptor.name)
                conn.state = ConnectionState.DISCONNECTED
                conn.capability_list = []
                conn.last_error = "Connection closed unexpectedly"
                continue
            count = 0
            for entry in conn.capability_list:
                owner = catalog.owners.get(entry.name)
                if owner is not None:
                    logger.warning(
                        "[catalog] tool %s from %s shadowed by server %s",
                        entry.name,
                        descriptor.name,
                        self._descriptors[owner].name,
                    )
                    continue
                catalog.entries.append(entry)
                catalog.owners[entry.name] = descriptor.id
                count += 1
            catalog.servers.append(ServerSummary(descriptor.name, descriptor.description, count))
        return catalog

    async def invoke(
        self,
        descriptor_id: str,
        name: str,
        arguments: dict[str, Any],
        *,
        call_id: str = "",
    ) -> ToolCallResult:
        """Run a tool on a connected server.

        Never opens a connection: a disconnected server fails immediately.

        Raises:
            ToolServerNotFound: Unknown descriptor id, or removed while waiting.
            NotConnected: The server is not connected (or its transport died).
            ToolInvocationFailed: The transport failed while running the call.
        """
        descriptor = self.get(descriptor_id)
        logger.info("[tool-call] %s.%s args=%s", descriptor.name, name, redact_arguments(arguments))
        async with self._locked(descriptor_id):
            session = self._sessions.get(descriptor_id)
            if session is None or self._connections[descriptor_id].state is not ConnectionState.CONNECTED:
                raise NotConnected(descriptor_id)
            if not session.client.is_connected():
                await self._teardown(descriptor_id, last_error="Connection closed unexpectedly")
                raise NotConnected(descriptor_id)

            started = time.monotonic()
            try:
                result = await session.client.call_tool_mcp(name, arguments)
            except Exception as exc:
                if _is_connection_closed(exc):
                    logger.warning("[tool-call] %s closed during %s: %s", descriptor.name, name, exc)
                    await self._teardown(descriptor_id, last_error="Connection closed unexpectedly")
                else:
                    logger.error("[tool-call] %s.%s failed: %s", descriptor.name, name, exc)
                raise ToolInvocationFailed(name, str(exc) or type(exc).__name__) from exc

        output = render_tool_content(result)
        is_error = bool(getattr(result, "isError", False))
        logger.info(
            "[tool-call] %s.%s -> %s %d chars in %.2fs",
            descriptor.name,
            name,
            "error" if is_error else "ok",
            len(output),
            time.monotonic() - started,
        )
        return ToolCallResult(id=call_id, name=name, output_text=output, is_error=is_error)
