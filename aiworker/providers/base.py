"""aiworker/providers/base.py

Uniform interface implemented by every model backend, plus the wire helpers
the concrete clients share.
"""

from __future__ import annotations

# Standard Library
import abc
import json
from typing import Any

# Local Modules
from aiworker.extractor import format_fallback_calls
from aiworker.models import (
    Completion,
    Message,
    ProviderProbeResult,
    ToolCallRequest,
    ToolCatalog,
)


class ProviderClient(abc.ABC):
    """A language-model backend.

    Subclasses translate the uniform message / tool schema into their wire
    format.  ``complete`` raises ``BackendUnavailable``, ``BackendProtocolError``
    (or its ``ToolsUnsupported`` subclass); deadlines are enforced by the
    caller.
    """

    backend_id: str = ""

    @abc.abstractmethod
    async def probe(self, preferred_model: str | None = None) -> ProviderProbeResult:
        """Check availability live and pick the model to use."""

    @abc.abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tool_catalog: ToolCatalog | None = None,
        *,
        model: str | None = None,
    ) -> Completion:
        """Complete a chat.

        Args:
            messages: Ordered conversation context, system message first.
            tool_catalog: Tools to offer natively.  ``None`` means the model
                sees tools only through the system prompt (fallback mode or
                no tools at all).
            model: Model chosen by the last probe; the client default is used
                when omitted.
        """

    async def supports_native_tools(self, model: str | None = None) -> bool:
        """Whether the backend accepts a structured tool list for ``model``."""
        return True

    async def aclose(self) -> None:
        """Release network resources."""


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------


def tool_definitions(catalog: ToolCatalog) -> list[dict[str, Any]]:
    """Render a catalog in OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": entry.name,
                "description": entry.description,
                "parameters": entry.parameter_schema or {"type": "object", "properties": {}},
            },
        }
        for entry in catalog.entries
    ]


def flatten_tool_messages(messages: list[Message]) -> list[Message]:
    """Rewrite tool traffic as plain text for backends that see no tool schema.

    Assistant tool requests are replayed in the fallback JSON shape and tool
    results become user-role messages, so the history stays valid for chat
    templates that reject ``tool`` roles.
    """
    flat: list[Message] = []
    for message in messages:
        if message.role == "tool":
            label = message.name or "tool"
            flat.append(
                Message(
                    role="user",
                    content=f"[Tool result: {label} ({message.tool_call_id})]\n{message.content}",
                )
            )
        elif message.role == "assistant" and message.tool_calls:
            content = message.content.strip() or format_fallback_calls(
                [ToolCallRequest(id=ref.id, name=ref.name, arguments=ref.arguments) for ref in message.tool_calls]
            )
            flat.append(Message(role="assistant", content=content))
        else:
            flat.append(Message(role=message.role, content=message.content))
    return flat


def openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Render messages in OpenAI chat-completions format, tool calls included."""
    wire: list[dict[str, Any]] = []
    for message in messages:
        entry: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "assistant" and message.tool_calls:
            entry["tool_calls"] = [
                {
                    "id": ref.id,
                    "type": "function",
                    "function": {"name": ref.name, "arguments": json.dumps(ref.arguments)},
                }
                for ref in message.tool_calls
            ]
        if message.role == "tool":
            entry["tool_call_id"] = message.tool_call_id
        wire.append(entry)
    return wire
