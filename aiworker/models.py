"""aiworker/models.py

Data model shared by providers, the tool server manager and the orchestrator.

Runtime records are plain slotted dataclasses.  ``ToolServerDescriptor`` is a
pydantic model because it is the one type that crosses the persistence and
HTTP boundaries and needs validation.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import uuid
from enum import Enum
from typing import Any, Literal

# Third-Party Libraries
from pydantic import BaseModel, Field, model_validator

Role = Literal["system", "user", "assistant", "tool"]
BackendId = Literal["ondevice", "ollama", "openai"]


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@dataclasses.dataclass(slots=True)
class ToolCallRef:
    """A raw tool-call request attached to an assistant message."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclasses.dataclass(slots=True)
class Message:
    """One entry in the ordered conversation context.

    Attributes:
        role: ``system``, ``user``, ``assistant`` or ``tool``.
        content: Message text.
        tool_calls: Requests issued by an assistant message, if any.
        tool_call_id: For ``tool`` messages, the id of the request answered.
        name: For ``tool`` messages, the tool that produced the content.
    """

    role: Role
    content: str
    tool_calls: list[ToolCallRef] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [dataclasses.asdict(ref) for ref in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        refs = data.get("tool_calls")
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=[ToolCallRef(**ref) for ref in refs] if refs else None,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@dataclasses.dataclass(slots=True)
class ToolCatalogEntry:
    """A callable capability advertised by a connected tool server."""

    name: str
    description: str
    parameter_schema: dict[str, Any]
    server_id: str = ""


@dataclasses.dataclass(slots=True)
class ServerSummary:
    name: str
    description: str
    tool_count: int


@dataclasses.dataclass(slots=True)
class ToolCatalog:
    """Tools offered to the backend for one turn.

    Attributes:
        entries: Tool definitions, names unique.
        owners: Tool name to owning descriptor id.
        servers: One summary per connected server, for prompt composition.
    """

    entries: list[ToolCatalogEntry] = dataclasses.field(default_factory=list)
    owners: dict[str, str] = dataclasses.field(default_factory=dict)
    servers: list[ServerSummary] = dataclasses.field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


@dataclasses.dataclass(slots=True)
class ToolCallRequest:
    """A structured request to run one tool.

    ``arguments_error`` is set when the model's argument payload could not be
    decoded into an object; such a request is answered with an error result
    and never dispatched.
    """

    id: str
    name: str
    arguments: dict[str, Any]
    arguments_error: str | None = None

    def to_ref(self) -> ToolCallRef:
        return ToolCallRef(id=self.id, name=self.name, arguments=dict(self.arguments))


@dataclasses.dataclass(slots=True)
class ToolCallResult:
    id: str
    name: str
    output_text: str
    is_error: bool = False


# ---------------------------------------------------------------------------
# Tool servers
# ---------------------------------------------------------------------------


class TransportKind(str, Enum):
    PROCESS = "process"
    STREAM = "stream"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def new_descriptor_id() -> str:
    """Return a fresh, immutable descriptor id."""
    return f"mcp_{uuid.uuid4().hex[:12]}"


class ToolServerDescriptor(BaseModel):
    """Persisted configuration describing how to reach a tool server.

    ``transport_kind`` decides which fields are required: ``command`` for
    process servers, ``url`` for stream servers.
    """

    id: str = Field(default_factory=new_descriptor_id, description="Immutable identity.")
    name: str = Field(..., min_length=1)
    description: str = ""
    transport_kind: TransportKind = TransportKind.PROCESS
    command: str | None = Field(None, description="Executable for process transport.")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = Field(None, description="Extra environment variables.")
    url: str | None = Field(None, description="Endpoint for stream transport.")
    auto_connect: bool = Field(True, description="Connect automatically on startup.")

    @model_validator(mode="after")
    def _check_transport_fields(self) -> ToolServerDescriptor:
        if self.transport_kind is TransportKind.PROCESS and not (self.command or "").strip():
            raise ValueError("process transport requires a command")
        if self.transport_kind is TransportKind.STREAM and not (self.url or "").strip():
            raise ValueError("stream transport requires a url")
        return self


@dataclasses.dataclass(slots=True)
class ToolServerConnection:
    """Runtime state attached 1:1 to a descriptor."""

    descriptor_id: str
    state: ConnectionState = ConnectionState.DISCONNECTED
    capability_list: list[ToolCatalogEntry] = dataclasses.field(default_factory=list)
    last_error: str | None = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@dataclasses.dataclass(slots=True)
class ProviderProbeResult:
    """Live availability of one backend.  Never cached beyond the debounce window."""

    backend_id: str
    available: bool
    selected_model: str | None = None
    diagnostic: str | None = None
    models: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(slots=True)
class NativeToolCall:
    """A tool call as reported by a backend's structured field.

    ``arguments`` may still be an undecoded JSON string; the extractor owns
    decoding.
    """

    name: str
    arguments: dict[str, Any] | str | None
    id: str | None = None


@dataclasses.dataclass(slots=True)
class Completion:
    content: str
    native_tool_calls: list[NativeToolCall] | None = None
    provider: str = ""
    model: str = ""


# ---------------------------------------------------------------------------
# Turn result
# ---------------------------------------------------------------------------


@dataclasses.dataclass(slots=True)
class TraceEntry:
    request: ToolCallRequest
    result: ToolCallResult


@dataclasses.dataclass(slots=True)
class FinalAnswer:
    """Displayable outcome of one turn.

    Attributes:
        content: Text to show the user.  Holds the error description when
            ``is_error`` is set.
        tool_call_trace: Every tool call executed during the turn, in order.
        provider: Backend that produced the last reply.
        model: Model that produced the last reply.
        incomplete: The iteration budget ran out before a tool-call-free reply.
        is_error: The turn was aborted.
    """

    content: str
    tool_call_trace: list[TraceEntry] = dataclasses.field(default_factory=list)
    provider: str = ""
    model: str = ""
    incomplete: bool = False
    is_error: bool = False
