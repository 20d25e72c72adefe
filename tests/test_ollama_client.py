"""tests/test_ollama_client.py

Unit tests for the Ollama backend client with a mocked ``ollama.AsyncClient``.
"""

from __future__ import annotations

# Standard Library
from unittest.mock import AsyncMock, Mock

# Third-Party Libraries
import httpx
import pytest
from ollama import ResponseError

# Local Modules
from aiworker.errors import BackendProtocolError, BackendUnavailable, ToolsUnsupported
from aiworker.models import Message, ToolCallRef, ToolCatalog, ToolCatalogEntry
from aiworker.providers.ollama_client import OllamaProvider


@pytest.fixture
def mock_ollama_client() -> Mock:
    """Create a mock Ollama client with one pulled model and a plain reply."""
    client = Mock()
    client.list = AsyncMock(return_value={"models": [{"model": "llama3.1:8b"}, {"model": "qwen2.5:3b-instruct"}]})
    client.chat = AsyncMock(
        return_value={"message": {"role": "assistant", "content": "This is a test response from the mock LLM."}}
    )
    return client


@pytest.fixture
def catalog() -> ToolCatalog:
    entry = ToolCatalogEntry(
        name="list_files",
        description="List files",
        parameter_schema={"type": "object", "properties": {"path": {"type": "string"}}},
        server_id="files",
    )
    return ToolCatalog(entries=[entry], owners={"list_files": "files"})


class TestProbe:
    """Test suite for Ollama availability probing."""

    @pytest.mark.asyncio
    async def test_prefix_match_selects_model(self, mock_ollama_client: Mock) -> None:
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)

        probe = await provider.probe()

        assert probe.available is True
        assert probe.selected_model == "qwen2.5:3b-instruct"
        assert probe.models == ["llama3.1:8b", "qwen2.5:3b-instruct"]

    @pytest.mark.asyncio
    async def test_no_match_uses_first_model(self, mock_ollama_client: Mock) -> None:
        provider = OllamaProvider("http://localhost:11434", "mistral", client=mock_ollama_client)
        assert (await provider.probe()).selected_model == "llama3.1:8b"

    @pytest.mark.asyncio
    async def test_hint_overrides_configured_model(self, mock_ollama_client: Mock) -> None:
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)
        assert (await provider.probe("llama3.1")).selected_model == "llama3.1:8b"

    @pytest.mark.asyncio
    async def test_server_down_is_unavailable(self, mock_ollama_client: Mock) -> None:
        mock_ollama_client.list.side_effect = httpx.ConnectError("Connection refused")
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)

        probe = await provider.probe()

        assert probe.available is False
        assert "Connection refused" in probe.diagnostic


class TestComplete:
    """Test suite for chat completions."""

    @pytest.mark.asyncio
    async def test_plain_reply(self, mock_ollama_client: Mock) -> None:
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)

        reply = await provider.complete([Message(role="user", content="Hello")])

        assert reply.content == "This is a test response from the mock LLM."
        assert reply.native_tool_calls is None
        assert reply.provider == "ollama"
        kwargs = mock_ollama_client.chat.call_args.kwargs
        assert kwargs["model"] == "qwen2.5:3b"
        assert kwargs["tools"] is None
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_native_tool_calls(self, mock_ollama_client: Mock, catalog: ToolCatalog) -> None:
        mock_ollama_client.chat.return_value = {
            "message": {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "list_files", "arguments": {"path": "."}}}],
            }
        }
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)

        reply = await provider.complete([Message(role="user", content="ls")], catalog, model="llama3.1:8b")

        assert reply.model == "llama3.1:8b"
        assert reply.native_tool_calls[0].name == "list_files"
        assert reply.native_tool_calls[0].arguments == {"path": "."}
        tools = mock_ollama_client.chat.call_args.kwargs["tools"]
        assert tools[0]["function"]["name"] == "list_files"

    @pytest.mark.asyncio
    async def test_tool_history_is_flattened_without_tools(self, mock_ollama_client: Mock) -> None:
        provider = OllamaProvider("http://localhost:11434", "qwen2.5:3b", client=mock_ollama_client)
        history = [
            Message(role="user", content="ls"),
            Message(role="assistant", content="", tool_calls=[ToolCallRef("c1", "list_files", {})]),
            Message(role="tool", content="a.txt", tool_call_id="c1", name="list_files"),
        ]

        await provider.complete(history)

        sent = mock_ollama_client.chat.call_args.kwargs["messages"]
        assert [m["role"] for m in sent] == ["user", "assistant", "user"]
        assert '"tool_calls"' in sent[1]["content"]
        assert sent[2]["content"].startswith("[Tool result: list_files (c1)]")

    @pytest.mark.asyncio
    async def test_tools_rejected(self, mock_ollama_client: Mock, catalog: ToolCatalog) -> None:
        mock_ollama_client.chat.side_effect = ResponseError("gemma:2b does not support tools", 400)
        provider = OllamaProvider("http://localhost:11434", "gemma:2b", client=mock_ollama_client)

        with pytest.raises(ToolsUnsupported):
            await provider.complete([Message(role="user", content="hi")], catalog)

    @pytest.mark.asyncio
    async def test_missing_model_is_unavailable(self, mock_ollama_client: Mock) -> None:
        mock_ollama_client.chat.side_effect = ResponseError("model 'x' not found", 404)
        provider = OllamaProvider("http://localhost:11434", "x", client=mock_ollama_client)

        with pytest.raises(BackendUnavailable):
            await provider.complete([Message(role="user", content="hi")])

    @pytest.mark.asyncio
    async def test_other_response_errors_are_protocol_errors(self, mock_ollama_client: Mock) -> None:
        mock_ollama_client.chat.side_effect = ResponseError("invalid request", 400)
        provider = OllamaProvider("http://localhost:11434", "x", client=mock_ollama_client)

        with pytest.raises(BackendProtocolError):
            await provider.complete([Message(role="user", content="hi")])

    @pytest.mark.asyncio
    async def test_connection_refused_is_unavailable(self, mock_ollama_client: Mock) -> None:
        mock_ollama_client.chat.side_effect = httpx.ConnectError("Connection refused")
        provider = OllamaProvider("http://localhost:11434", "x", client=mock_ollama_client)

        with pytest.raises(BackendUnavailable):
            await provider.complete([Message(role="user", content="hi")])
