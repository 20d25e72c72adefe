"""aiworker/providers/ollama_client.py

Backend client for a local Ollama model server.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any

# Third-Party Libraries
import httpx
from ollama import AsyncClient, ResponseError

# Local Modules
from aiworker.errors import BackendProtocolError, BackendUnavailable, ToolsUnsupported
from aiworker.models import Completion, Message, NativeToolCall, ProviderProbeResult, ToolCatalog
from aiworker.providers.base import ProviderClient, flatten_tool_messages, tool_definitions

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from an Ollama pydantic model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _ollama_messages(messages: list[Message]) -> list[dict[str, Any]]:
    wire: list[dict[str, Any]] = []
    for message in messages:
        entry: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "assistant" and message.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": ref.name, "arguments": ref.arguments}}
                for ref in message.tool_calls
            ]
        wire.append(entry)
    return wire


class OllamaProvider(ProviderClient):
    """Talks to ``/api/chat`` and ``/api/tags`` through the ``ollama`` client."""

    backend_id = "ollama"

    def __init__(self, base_url: str, model: str, client: AsyncClient | None = None) -> None:
        self.base_url = base_url
        self.model = model
        self.client = client or AsyncClient(host=base_url)

    async def probe(self, preferred_model: str | None = None) -> ProviderProbeResult:
        preferred = preferred_model or self.model
        try:
            listing = await self.client.list()
        except (ResponseError, ConnectionError, httpx.HTTPError) as exc:
            logger.debug("[ollama] probe failed at %s: %s", self.base_url, exc)
            return ProviderProbeResult(
                backend_id=self.backend_id,
                available=False,
                diagnostic=str(exc) or "Ollama not running",
            )

        models = [
            name
            for name in (
                _field(entry, "model") or _field(entry, "name") for entry in _field(listing, "models", []) or []
            )
            if name
        ]
        selected = next((m for m in models if m.startswith(preferred)), None) or (models[0] if models else preferred)
        return ProviderProbeResult(
            backend_id=self.backend_id,
            available=True,
            selected_model=selected,
            models=models,
        )

    async def complete(
        self,
        messages: list[Message],
        tool_catalog: ToolCatalog | None = None,
        *,
        model: str | None = None,
    ) -> Completion:
        model_name = model or self.model
        if tool_catalog:
            wire = _ollama_messages(messages)
            tools = tool_definitions(tool_catalog)
        else:
            wire = _ollama_messages(flatten_tool_messages(messages))
            tools = None

        logger.debug("[ollama] chat model=%s messages=%d tools=%d", model_name, len(wire), len(tools or []))
        try:
            response = await self.client.chat(model=model_name, messages=wire, tools=tools, stream=False)
        except ResponseError as exc:
            detail = str(_field(exc, "error", "") or exc)
            if tools and "does not support tools" in detail.lower():
                raise ToolsUnsupported(detail) from exc
            if exc.status_code in (404, 502, 503):
                raise BackendUnavailable(f"Ollama error: {detail}") from exc
            raise BackendProtocolError(f"Ollama error: {detail}") from exc
        except (ConnectionError, httpx.TransportError) as exc:
            raise BackendUnavailable(f"Ollama is not reachable at {self.base_url}: {exc}") from exc

        message = _field(response, "message")
        if message is None:
            raise BackendProtocolError("Ollama response carried no message")

        native: list[NativeToolCall] = []
        for call in _field(message, "tool_calls") or []:
            function = _field(call, "function")
            arguments = _field(function, "arguments")
            if arguments is not None and not isinstance(arguments, (dict, str)):
                arguments = dict(arguments)
            native.append(NativeToolCall(name=_field(function, "name", ""), arguments=arguments))
        return Completion(
            content=_field(message, "content", "") or "",
            native_tool_calls=native or None,
            provider=self.backend_id,
            model=model_name,
        )
