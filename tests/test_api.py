"""tests/test_api.py

HTTP API tests driven through ``httpx.ASGITransport``.
"""

from __future__ import annotations

# Standard Library
from pathlib import Path

# Third-Party Libraries
import pytest
from httpx import ASGITransport, AsyncClient

# Local Modules
from aiworker.api import create_app
from aiworker.config import WorkerSettings
from aiworker.models import ToolServerDescriptor
from aiworker.orchestrator import ConversationOrchestrator
from aiworker.providers.ondevice import OnDeviceProvider
from aiworker.providers.selector import ProviderSelector
from aiworker.runtime import WorkerRuntime
from aiworker.tool_servers.manager import ToolServerManager
from aiworker.tool_servers.store import DescriptorStore
from fakes import ScriptedProvider, build_clock_server, build_files_server, text_reply, tool_reply


class _Engine:
    def create_chat_completion(self, **kwargs):
        return {"choices": [{"message": {"content": "local"}}]}


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider("ollama")


@pytest.fixture
def runtime(tmp_path: Path, provider: ScriptedProvider) -> WorkerRuntime:
    settings = WorkerSettings(tool_servers_file=str(tmp_path / "servers.json"))
    store = DescriptorStore(settings.tool_servers_file)
    servers = {"files": build_files_server(), "clock": build_clock_server()}

    def factory(descriptor: ToolServerDescriptor):
        if descriptor.id not in servers:
            raise FileNotFoundError(f"Command '{descriptor.command}' not found in PATH (ENOENT)")
        return servers[descriptor.id]

    tool_servers = ToolServerManager(
        [
            ToolServerDescriptor(id="files", name="Files", command="python", args=["files.py"]),
            ToolServerDescriptor(id="clock", name="Clock", command="python", args=["clock.py"]),
        ],
        transport_factory=factory,
    )
    ondevice = OnDeviceProvider(
        "Qwen2.5-1.5B-Instruct-Q4_K_M",
        enabled=False,
        loader=lambda model, report: _Engine(),
        runtime_check=lambda: None,
    )
    selector = ProviderSelector({"ondevice": ondevice, "ollama": provider}, debounce=0)
    orchestrator = ConversationOrchestrator(selector, tool_servers)
    return WorkerRuntime(
        settings=settings,
        store=store,
        tool_servers=tool_servers,
        ondevice=ondevice,
        selector=selector,
        orchestrator=orchestrator,
    )


@pytest.fixture
def client(runtime: WorkerRuntime) -> AsyncClient:
    app = create_app(runtime, autostart=False)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestMeta:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_providers(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.get("/providers")
        body = resp.json()
        assert body["preference"] == "auto"
        assert body["providers"]["ollama"]["available"] is True
        assert body["providers"]["ondevice"]["available"] is False


class TestServers:
    """Tool server management endpoints."""

    @pytest.mark.asyncio
    async def test_list_servers(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.get("/servers")
        assert [s["descriptor"]["id"] for s in resp.json()] == ["files", "clock"]
        assert {s["state"] for s in resp.json()} == {"disconnected"}

    @pytest.mark.asyncio
    async def test_connect_list_tools_disconnect(self, client: AsyncClient, runtime: WorkerRuntime) -> None:
        async with client:
            resp = await client.post("/servers/files/connect")
            assert resp.status_code == 200
            assert resp.json()["state"] == "connected"
            assert resp.json()["tool_count"] == 2

            tools = await client.get("/servers/files/tools")
            assert {t["name"] for t in tools.json()} == {"list_files", "broken"}

            resp = await client.post("/servers/files/disconnect")
            assert resp.json()["state"] == "disconnected"

            resp = await client.get("/servers/files/tools")
            assert resp.status_code == 409
        await runtime.tool_servers.close_all()

    @pytest.mark.asyncio
    async def test_unknown_server_is_404(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.post("/servers/nope/connect")
        assert resp.status_code == 404
        assert resp.json()["error"] == "ToolServerNotFound"

    @pytest.mark.asyncio
    async def test_add_connect_failure_is_502_with_diagnostic(self, client: AsyncClient, runtime: WorkerRuntime) -> None:
        async with client:
            resp = await client.post(
                "/servers",
                json={"id": "web", "name": "Web", "transport_kind": "process", "command": "npx", "args": ["-y", "@x/server"]},
            )
            assert resp.status_code == 201

            resp = await client.post("/servers/web/connect")
            assert resp.status_code == 502
            assert "Environment Setup Needed" in resp.json()["detail"]
            assert "ENOENT" in resp.json()["raw_error"]

            listing = await client.get("/servers")
            web = next(s for s in listing.json() if s["descriptor"]["id"] == "web")
            assert web["state"] == "error"

        saved = runtime.store.load()
        assert [d.id for d in saved] == ["files", "clock", "web"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, client: AsyncClient, runtime: WorkerRuntime) -> None:
        async with client:
            resp = await client.put("/servers/clock", json={"name": "Wall clock", "auto_connect": False})
            assert resp.status_code == 200
            assert resp.json()["descriptor"]["name"] == "Wall clock"
            assert resp.json()["descriptor"]["auto_connect"] is False

            resp = await client.put("/servers/clock", json={"transport_kind": "stream"})
            assert resp.status_code == 400

            resp = await client.delete("/servers/clock")
            assert resp.status_code == 204

        assert [d.id for d in runtime.tool_servers.list_descriptors()] == ["files"]

    @pytest.mark.asyncio
    async def test_invalid_descriptor_is_422(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.post("/servers", json={"name": "x", "transport_kind": "stream"})
        assert resp.status_code == 422


class TestTurn:
    """Conversation endpoint."""

    @pytest.mark.asyncio
    async def test_turn_with_tool_call(self, client: AsyncClient, runtime: WorkerRuntime, provider: ScriptedProvider) -> None:
        await runtime.tool_servers.connect("files")
        provider.script = [tool_reply(("list_files", {})), text_reply("a.txt and b.txt")]

        async with client:
            resp = await client.post(
                "/turn",
                json={"message": "list files", "history": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]},
            )

        body = resp.json()
        assert resp.status_code == 200
        assert body["content"] == "a.txt and b.txt"
        assert body["provider"] == "ollama"
        assert body["tool_calls"][0]["name"] == "list_files"
        assert body["tool_calls"][0]["output"] == "a.txt\nb.txt"
        assert len(provider.calls[0]["messages"]) == 4
        await runtime.tool_servers.close_all()

    @pytest.mark.asyncio
    async def test_turn_errors_are_reported_in_body(self, client: AsyncClient, provider: ScriptedProvider) -> None:
        provider.available = False

        async with client:
            resp = await client.post("/turn", json={"message": "hello"})

        assert resp.status_code == 200
        assert resp.json()["is_error"] is True

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.post("/turn", json={"message": ""})
        assert resp.status_code == 422


class TestOnDevice:
    """On-device model endpoints."""

    @pytest.mark.asyncio
    async def test_load_status_unload(self, client: AsyncClient) -> None:
        async with client:
            status = await client.get("/ondevice/status")
            assert status.json()["stage"] == "idle"

            loaded = await client.post("/ondevice/load", json={})
            assert loaded.json()["stage"] == "ready"
            assert loaded.json()["model_id"] == "Qwen2.5-1.5B-Instruct-Q4_K_M"

            unloaded = await client.post("/ondevice/unload")
            assert unloaded.json()["stage"] == "idle"

    @pytest.mark.asyncio
    async def test_unknown_model_is_400(self, client: AsyncClient) -> None:
        async with client:
            resp = await client.post("/ondevice/load", json={"model_id": "nope"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "ModelLoadError"
