"""Model backends and the policy that picks one per turn."""

from aiworker.providers.base import ProviderClient
from aiworker.providers.ollama_client import OllamaProvider
from aiworker.providers.ondevice import ONDEVICE_MODELS, LoadStage, LoadStatus, OnDeviceProvider
from aiworker.providers.openai_client import OpenAIProvider
from aiworker.providers.selector import PRIORITY, ProviderSelector, select

__all__ = [
    "ONDEVICE_MODELS",
    "PRIORITY",
    "LoadStage",
    "LoadStatus",
    "OllamaProvider",
    "OnDeviceProvider",
    "OpenAIProvider",
    "ProviderClient",
    "ProviderSelector",
    "select",
]
