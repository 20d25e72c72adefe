"""aiworker/providers/openai_client.py

Backend client for OpenAI-compatible chat-completions APIs.
"""

from __future__ import annotations

# Standard Library
import logging
from typing import Any

# Third-Party Libraries
import httpx

# Local Modules
from aiworker.errors import BackendProtocolError, BackendUnavailable, ToolsUnsupported
from aiworker.models import Completion, Message, NativeToolCall, ProviderProbeResult, ToolCatalog
from aiworker.providers.base import ProviderClient, flatten_tool_messages, openai_messages, tool_definitions

logger = logging.getLogger(__name__)

_CHAT_MODEL_MARKERS: tuple[str, ...] = ("gpt", "chat", "claude", "llama", "perplexity")
_TOOLS_REJECTED_MARKERS: tuple[str, ...] = ("tool calling", "tool_call", "tools")


def filter_chat_models(model_ids: list[str]) -> list[str]:
    """Keep ids that look like chat-completion models, sorted."""
    return sorted(mid for mid in model_ids if any(marker in mid.lower() for marker in _CHAT_MODEL_MARKERS))


def pick_model(models: list[str], preferred: str) -> str:
    """Choose the preferred model, then the best-known family, then anything."""
    if preferred in models:
        return preferred
    for family in ("gpt-4o", "gpt-4"):
        match = next((m for m in models if family in m), None)
        if match:
            return match
    return models[0] if models else preferred


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"OpenAI error: HTTP {response.status_code} {response.reason_phrase}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return f"OpenAI error: HTTP {response.status_code} {response.reason_phrase}"


class OpenAIProvider(ProviderClient):
    """Calls ``/chat/completions`` and ``/models`` with a bearer key."""

    backend_id = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def list_models(self) -> list[str]:
        resp = await self.client.get(f"{self.base_url}/models", headers=self._headers)
        resp.raise_for_status()
        data = resp.json()
        return filter_chat_models([m["id"] for m in data.get("data", []) if m.get("id")])

    async def probe(self, preferred_model: str | None = None) -> ProviderProbeResult:
        preferred = preferred_model or self.model
        if not self.api_key:
            return ProviderProbeResult(
                backend_id=self.backend_id,
                available=False,
                diagnostic="No API key configured",
            )

        # A key is configured, so the backend counts as available even when the
        # models listing fails; the configured model is used as-is.
        try:
            models = await self.list_models()
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.info("[openai] models endpoint unavailable at %s: %s", self.base_url, exc)
            return ProviderProbeResult(
                backend_id=self.backend_id,
                available=True,
                selected_model=preferred,
                models=[preferred],
                diagnostic=f"Could not fetch models list: {exc}",
            )

        return ProviderProbeResult(
            backend_id=self.backend_id,
            available=True,
            selected_model=pick_model(models, preferred),
            models=models or [preferred],
        )

    async def complete(
        self,
        messages: list[Message],
        tool_catalog: ToolCatalog | None = None,
        *,
        model: str | None = None,
    ) -> Completion:
        if not self.api_key:
            raise BackendUnavailable("OpenAI API key not configured")

        model_name = model or self.model
        payload: dict[str, Any] = {"model": model_name}
        if tool_catalog:
            payload["messages"] = openai_messages(messages)
            payload["tools"] = tool_definitions(tool_catalog)
        else:
            payload["messages"] = openai_messages(flatten_tool_messages(messages))

        try:
            resp = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers,
            )
        except httpx.TransportError as exc:
            raise BackendUnavailable(f"Could not reach {self.base_url}: {exc}") from exc

        if resp.status_code >= 400:
            message = _error_message(resp)
            if (
                resp.status_code == 400
                and tool_catalog
                and any(marker in message.lower() for marker in _TOOLS_REJECTED_MARKERS)
            ):
                logger.info("[openai] model %s rejected native tools: %s", model_name, message)
                raise ToolsUnsupported(message)
            if resp.status_code in (401, 403, 429) or resp.status_code >= 500:
                raise BackendUnavailable(message)
            raise BackendProtocolError(message)

        try:
            data = resp.json()
            choice = data["choices"][0]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise BackendProtocolError(f"Unexpected chat completion payload: {exc}") from exc

        message = choice.get("message") or {}
        native = [
            NativeToolCall(
                id=call.get("id"),
                name=(call.get("function") or {}).get("name", ""),
                arguments=(call.get("function") or {}).get("arguments"),
            )
            for call in message.get("tool_calls") or []
        ]
        return Completion(
            content=message.get("content") or "",
            native_tool_calls=native or None,
            provider=self.backend_id,
            model=data.get("model") or model_name,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
