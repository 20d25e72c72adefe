"""aiworker/api.py

FastAPI HTTP interface for the orchestration core.

Endpoints:
  GET    /health                       liveness probe
  GET    /providers                    live probe of every backend
  GET    /servers                      tool servers with connection state
  POST   /servers                      add a tool server
  PUT    /servers/{id}                 edit a tool server (disconnects it)
  DELETE /servers/{id}                 remove a tool server
  POST   /servers/{id}/connect         connect and discover tools
  POST   /servers/{id}/disconnect      close the connection
  GET    /servers/{id}/tools           tools of a connected server
  POST   /turn                         run one conversation turn
  GET    /ondevice/status              on-device model load status
  POST   /ondevice/load | /unload      manage the on-device model
"""

from __future__ import annotations

# Standard Library
import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import AsyncIterator
from typing import Any

# Third-Party Libraries
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Local Modules
from aiworker.errors import NotConnected, ToolServerConnectError, ToolServerNotFound, WorkerError
from aiworker.models import (
    ConnectionState,
    Message,
    ToolServerDescriptor,
    TransportKind,
)
from aiworker.runtime import WorkerRuntime, build_runtime

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ServerView(BaseModel):
    descriptor: ToolServerDescriptor
    state: ConnectionState
    last_error: str | None = None
    tool_count: int = 0


class ServerUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    transport_kind: TransportKind | None = None
    command: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    url: str | None = None
    auto_connect: bool | None = None


class ToolView(BaseModel):
    name: str
    description: str
    parameter_schema: dict[str, Any]


class HistoryMessage(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1, description="The user's message.")
    history: list[HistoryMessage] = Field(default_factory=list, description="Prior exchanges, oldest first.")
    preference: str | None = Field(None, description="Backend override: auto, ondevice, ollama or openai.")


class ToolCallView(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any]
    output: str
    is_error: bool


class TurnResponse(BaseModel):
    content: str
    provider: str
    model: str
    incomplete: bool
    is_error: bool
    tool_calls: list[ToolCallView]


class LoadRequest(BaseModel):
    model_id: str | None = None


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def _server_view(runtime: WorkerRuntime, descriptor: ToolServerDescriptor) -> ServerView:
    conn = runtime.tool_servers.connection(descriptor.id)
    return ServerView(
        descriptor=descriptor,
        state=conn.state,
        last_error=conn.last_error,
        tool_count=len(conn.capability_list),
    )


def _error(status: int, exc: Exception, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc), **extra})


def create_app(runtime: WorkerRuntime | None = None, *, autostart: bool = True) -> FastAPI:
    """Build the FastAPI application.

    Args:
        runtime: Pre-built runtime; built from the environment when omitted.
        autostart: Auto-connect tool servers in the background on startup.
    """
    runtime = runtime or build_runtime()

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        starter = asyncio.create_task(runtime.start()) if autostart else None
        try:
            yield
        finally:
            if starter is not None and not starter.done():
                starter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await starter
            await runtime.aclose()

    app = FastAPI(
        title="AI-Worker",
        version="0.1.0",
        description="Chat orchestration over local and cloud LLM backends with MCP tool servers.",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ToolServerNotFound)
    async def _not_found(_: Request, exc: ToolServerNotFound) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(NotConnected)
    async def _not_connected(_: Request, exc: NotConnected) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(ToolServerConnectError)
    async def _connect_failed(_: Request, exc: ToolServerConnectError) -> JSONResponse:
        return _error(502, exc, raw_error=exc.raw_error)

    @app.exception_handler(WorkerError)
    async def _worker_error(_: Request, exc: WorkerError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(ValueError)
    async def _invalid(_: Request, exc: ValueError) -> JSONResponse:
        return _error(400, exc)

    # -- meta -------------------------------------------------------------

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok", "server": "aiworker"}

    @app.get("/providers", tags=["providers"])
    async def providers() -> dict[str, Any]:
        """Probe every backend now and report availability."""
        probes = await runtime.selector.probe_all(runtime.orchestrator.model_hints)
        return {
            "preference": runtime.orchestrator.preference,
            "providers": {bid: dataclasses.asdict(probe) for bid, probe in probes.items()},
        }

    # -- tool servers -----------------------------------------------------

    @app.get("/servers", response_model=list[ServerView], tags=["servers"])
    async def list_servers() -> list[ServerView]:
        return [_server_view(runtime, d) for d in runtime.tool_servers.list_descriptors()]

    @app.post("/servers", response_model=ServerView, status_code=201, tags=["servers"])
    async def add_server(descriptor: ToolServerDescriptor) -> ServerView:
        runtime.tool_servers.add(descriptor)
        runtime.save_descriptors()
        return _server_view(runtime, descriptor)

    @app.put("/servers/{descriptor_id}", response_model=ServerView, tags=["servers"])
    async def update_server(descriptor_id: str, body: ServerUpdate) -> ServerView:
        updated = await runtime.tool_servers.update(descriptor_id, **body.model_dump(exclude_unset=True))
        runtime.save_descriptors()
        return _server_view(runtime, updated)

    @app.delete("/servers/{descriptor_id}", status_code=204, tags=["servers"])
    async def remove_server(descriptor_id: str) -> None:
        await runtime.tool_servers.remove(descriptor_id)
        runtime.save_descriptors()

    @app.post("/servers/{descriptor_id}/connect", response_model=ServerView, tags=["servers"])
    async def connect_server(descriptor_id: str) -> ServerView:
        await runtime.tool_servers.connect(descriptor_id)
        return _server_view(runtime, runtime.tool_servers.get(descriptor_id))

    @app.post("/servers/{descriptor_id}/disconnect", response_model=ServerView, tags=["servers"])
    async def disconnect_server(descriptor_id: str) -> ServerView:
        await runtime.tool_servers.disconnect(descriptor_id)
        return _server_view(runtime, runtime.tool_servers.get(descriptor_id))

    @app.get("/servers/{descriptor_id}/tools", response_model=list[ToolView], tags=["servers"])
    async def server_tools(descriptor_id: str) -> list[ToolView]:
        return [
            ToolView(name=t.name, description=t.description, parameter_schema=t.parameter_schema)
            for t in runtime.tool_servers.list_tools(descriptor_id)
        ]

    # -- conversation -----------------------------------------------------

    @app.post("/turn", response_model=TurnResponse, tags=["conversation"])
    async def turn(body: TurnRequest) -> TurnResponse:
        """Run one turn.  Backend and tool failures come back with ``is_error`` set."""
        history = [Message(role=m.role, content=m.content) for m in body.history]  # type: ignore[arg-type]
        answer = await runtime.orchestrator.submit_turn(history, body.message, preference=body.preference)
        return TurnResponse(
            content=answer.content,
            provider=answer.provider,
            model=answer.model,
            incomplete=answer.incomplete,
            is_error=answer.is_error,
            tool_calls=[
                ToolCallView(
                    id=entry.request.id,
                    name=entry.request.name,
                    arguments=entry.request.arguments,
                    output=entry.result.output_text,
                    is_error=entry.result.is_error,
                )
                for entry in answer.tool_call_trace
            ],
        )

    # -- on-device engine -------------------------------------------------

    @app.get("/ondevice/status", tags=["ondevice"])
    async def ondevice_status() -> dict[str, Any]:
        return dataclasses.asdict(runtime.ondevice.status())

    @app.post("/ondevice/load", tags=["ondevice"])
    async def ondevice_load(body: LoadRequest) -> dict[str, Any]:
        return dataclasses.asdict(await runtime.ondevice.load(body.model_id))

    @app.post("/ondevice/unload", tags=["ondevice"])
    async def ondevice_unload() -> dict[str, Any]:
        await runtime.ondevice.unload()
        return dataclasses.asdict(runtime.ondevice.status())

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the API server via uvicorn."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    runtime = build_runtime()
    host, port = runtime.settings.api_host, runtime.settings.api_port
    logger.info("Starting AI-Worker API on %s:%d", host, port)
    uvicorn.run(create_app(runtime), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_api()
