"""aiworker/runtime.py

Wires settings, providers, tool servers and the orchestrator together.

Both entry points (``main.py`` and ``aiworker.api``) build one
``WorkerRuntime`` and share nothing else.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging

# Local Modules
from aiworker.config import WorkerSettings
from aiworker.orchestrator import ConversationOrchestrator
from aiworker.providers.ollama_client import OllamaProvider
from aiworker.providers.ondevice import OnDeviceProvider, llama_cpp_loader
from aiworker.providers.openai_client import OpenAIProvider
from aiworker.providers.selector import ProviderSelector
from aiworker.tool_servers.manager import ToolServerManager
from aiworker.tool_servers.store import DescriptorStore

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class WorkerRuntime:
    settings: WorkerSettings
    store: DescriptorStore
    tool_servers: ToolServerManager
    ondevice: OnDeviceProvider
    selector: ProviderSelector
    orchestrator: ConversationOrchestrator

    def save_descriptors(self) -> None:
        self.store.save(self.tool_servers.list_descriptors())

    async def start(self) -> None:
        """Connect the tool servers flagged for auto-connect."""
        await self.tool_servers.auto_connect_all()

    async def aclose(self) -> None:
        await self.tool_servers.close_all()
        await self.selector.aclose()
        logger.info("[runtime] shut down")


def build_runtime(settings: WorkerSettings | None = None) -> WorkerRuntime:
    """Create every collaborator from ``settings`` (environment when omitted)."""
    settings = settings or WorkerSettings()

    store = DescriptorStore(settings.tool_servers_file)
    tool_servers = ToolServerManager(
        store.load(),
        connect_timeout=settings.connect_timeout,
        embedded_aliases=settings.embedded_runtime_aliases,
    )

    ondevice = OnDeviceProvider(
        settings.ondevice_model,
        enabled=settings.ondevice_enabled,
        loader=llama_cpp_loader(settings.ondevice_gpu_layers, settings.ondevice_context_size),
        max_tokens=settings.ondevice_max_tokens,
    )
    selector = ProviderSelector(
        {
            "ondevice": ondevice,
            "ollama": OllamaProvider(settings.ollama_base_url, settings.ollama_model),
            "openai": OpenAIProvider(settings.openai_api_key, settings.openai_base_url, settings.openai_model),
        },
        debounce=settings.probe_debounce,
    )

    orchestrator = ConversationOrchestrator(
        selector,
        tool_servers,
        preference=settings.preferred_provider,
        max_iterations=settings.max_iterations,
        completion_timeout=settings.completion_timeout,
        max_backend_retries=settings.max_backend_retries,
        model_hints={
            "ondevice": settings.ondevice_model,
            "ollama": settings.ollama_model,
            "openai": settings.openai_model,
        },
    )

    logger.info(
        "[runtime] preference=%s, %d tool servers configured, on-device %s",
        settings.preferred_provider,
        len(tool_servers.list_descriptors()),
        "enabled" if settings.ondevice_enabled else "disabled",
    )
    return WorkerRuntime(
        settings=settings,
        store=store,
        tool_servers=tool_servers,
        ondevice=ondevice,
        selector=selector,
        orchestrator=orchestrator,
    )
