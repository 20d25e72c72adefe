"""aiworker/config.py

Runtime configuration loaded from environment variables / .env file.

Configure via environment variables, e.g.:
  PREFERRED_PROVIDER  : auto | ondevice | ollama | openai
  OLLAMA_BASE_URL     : Ollama REST endpoint
  OPENAI_API_KEY      : enables the OpenAI-compatible cloud backend
  ONDEVICE_ENABLED    : enables the in-process llama.cpp backend
  TOOL_SERVERS_FILE   : JSON file holding tool server descriptors
"""

from __future__ import annotations

# Standard Library
from typing import Literal

# Third-Party Libraries
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderPreference = Literal["auto", "ondevice", "ollama", "openai"]


class WorkerSettings(BaseSettings):
    """Settings for providers, tool servers and the turn loop."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    preferred_provider: ProviderPreference = Field(
        "auto",
        description="Backend to use, or 'auto' for ondevice → ollama → openai.",
    )

    # Ollama
    ollama_base_url: str = Field(
        "http://localhost:11434",
        description="Ollama REST endpoint.",
    )
    ollama_model: str = Field(
        "qwen2.5:3b",
        description="Preferred Ollama model tag (prefix match against pulled models).",
    )

    # OpenAI-compatible cloud API
    openai_api_key: str = Field("", description="Bearer token; empty disables the backend.")
    openai_base_url: str = Field("https://api.openai.com/v1")
    openai_model: str = Field("gpt-4o-mini")

    # In-process llama.cpp engine
    ondevice_enabled: bool = Field(
        False,
        description="Offer the in-process llama.cpp backend.  Loading a model downloads GGUF weights.",
    )
    ondevice_model: str = Field(
        "Qwen2.5-1.5B-Instruct-Q4_K_M",
        description="Catalog id of the on-device model to load on demand.",
    )
    ondevice_gpu_layers: int = Field(-1, description="Layers to offload to the accelerator (-1 = all).")
    ondevice_context_size: int = Field(4096)
    ondevice_max_tokens: int = Field(2048)

    # Turn loop
    max_iterations: int = Field(10, ge=1, description="Backend calls allowed per turn.")
    completion_timeout: float = Field(60.0, gt=0, description="Seconds allowed per backend call.")
    max_backend_retries: int = Field(
        1,
        ge=0,
        description="Extra attempts after BackendUnavailable / BackendProtocolError.",
    )
    probe_debounce: float = Field(
        1.0,
        ge=0,
        description="Seconds during which concurrent provider probes share one result.",
    )

    # Tool servers
    connect_timeout: float = Field(30.0, gt=0, description="Seconds allowed for an MCP handshake.")
    embedded_runtime_aliases: list[str] = Field(
        default_factory=lambda: ["python", "python3", "python.exe"],
        description="Commands that resolve to the interpreter running this process.",
    )
    tool_servers_file: str = Field(
        "tool_servers.json",
        description="JSON file holding the ordered list of tool server descriptors.",
    )

    # HTTP API
    api_host: str = Field("127.0.0.1")
    api_port: int = Field(8300)
