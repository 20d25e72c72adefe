"""aiworker/providers/ondevice.py

In-process, accelerator-backed backend built on ``llama-cpp-python``.

GGUF weights are fetched from the Hugging Face hub on first load and cached
locally.  Loading and inference are blocking, so both run in a worker
thread.  Load progress is exposed as a pollable ``LoadStatus`` snapshot.
"""

from __future__ import annotations

# Standard Library
import asyncio
import dataclasses
import importlib.util
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

# Local Modules
from aiworker.errors import BackendProtocolError, BackendUnavailable, ModelLoadError
from aiworker.models import Completion, Message, NativeToolCall, ProviderProbeResult, ToolCatalog
from aiworker.providers.base import ProviderClient, flatten_tool_messages, openai_messages, tool_definitions

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class OnDeviceModel:
    """A GGUF model the on-device engine knows how to fetch and run.

    Attributes:
        id: Catalog id used in settings and the API.
        repo_id: Hugging Face repository holding the weights.
        filename: GGUF file inside ``repo_id``.
        supports_tools: The model's chat format handles structured tool calls.
        chat_format: llama.cpp chat handler name, or ``None`` to use the
            template embedded in the GGUF file.
        merge_system_prompt: The template rejects a custom system prompt when
            tools are passed, so it is folded into the first user message.
        required_ram_gb: Rough memory requirement, informational.
    """

    id: str
    repo_id: str
    filename: str
    supports_tools: bool
    chat_format: str | None = None
    merge_system_prompt: bool = False
    required_ram_gb: float = 4.0


ONDEVICE_MODELS: tuple[OnDeviceModel, ...] = (
    OnDeviceModel(
        id="Hermes-2-Pro-Llama-3-8B-Q4_K_M",
        repo_id="NousResearch/Hermes-2-Pro-Llama-3-8B-GGUF",
        filename="Hermes-2-Pro-Llama-3-8B-Q4_K_M.gguf",
        supports_tools=True,
        chat_format="chatml-function-calling",
        merge_system_prompt=True,
        required_ram_gb=8,
    ),
    OnDeviceModel(
        id="Qwen2.5-1.5B-Instruct-Q4_K_M",
        repo_id="Qwen/Qwen2.5-1.5B-Instruct-GGUF",
        filename="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        supports_tools=False,
    ),
    OnDeviceModel(
        id="Llama-3.2-1B-Instruct-Q4_K_M",
        repo_id="bartowski/Llama-3.2-1B-Instruct-GGUF",
        filename="Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        supports_tools=False,
    ),
    OnDeviceModel(
        id="Phi-3.5-mini-instruct-Q4_K_M",
        repo_id="bartowski/Phi-3.5-mini-instruct-GGUF",
        filename="Phi-3.5-mini-instruct-Q4_K_M.gguf",
        supports_tools=False,
    ),
)


def find_model(model_id: str) -> OnDeviceModel | None:
    return next((m for m in ONDEVICE_MODELS if m.id == model_id), None)


class LoadStage(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclasses.dataclass(frozen=True, slots=True)
class LoadStatus:
    """Immutable snapshot of the engine's load state."""

    stage: LoadStage = LoadStage.IDLE
    model_id: str | None = None
    progress: float = 0.0
    detail: str = ""
    error: str | None = None


# ---------------------------------------------------------------------------
# llama.cpp glue
# ---------------------------------------------------------------------------

ProgressCallback = Callable[[float, str], None]
Loader = Callable[[OnDeviceModel, ProgressCallback], Any]

# Share of the progress bar spent downloading; the rest covers opening the weights.
_DOWNLOAD_SHARE = 0.9


def llama_cpp_runtime_problem() -> str | None:
    """Return why the llama.cpp runtime cannot be used, or ``None``."""
    if importlib.util.find_spec("llama_cpp") is None:
        return "llama-cpp-python is not installed (pip install 'aiworker[ondevice]')"
    return None


def _progress_bar(report: ProgressCallback, label: str) -> type:
    """Build a tqdm class that forwards byte counts to ``report``."""
    from tqdm.auto import tqdm

    class _ReportingBar(tqdm):
        def update(self, n: float | None = 1) -> bool | None:
            displayed = super().update(n)
            if self.total:
                report(min(self.n / self.total, 1.0), label)
            return displayed

    return _ReportingBar


def llama_cpp_loader(n_gpu_layers: int = -1, n_ctx: int = 4096) -> Loader:
    """Build a loader that downloads (if needed) and opens a GGUF model.

    The GGUF file is fetched into the Hugging Face cache first so download
    progress can be reported; cached files return immediately.
    """

    def _load(model: OnDeviceModel, report: ProgressCallback) -> Any:
        from huggingface_hub import hf_hub_download
        from llama_cpp import Llama

        label = f"Downloading {model.filename}"
        report(0.0, label)
        model_path = hf_hub_download(
            repo_id=model.repo_id,
            filename=model.filename,
            tqdm_class=_progress_bar(report, label),
        )
        report(1.0, f"Opening {model.filename}")

        kwargs: dict[str, Any] = {"n_gpu_layers": n_gpu_layers, "n_ctx": n_ctx, "verbose": False}
        if model.chat_format:
            kwargs["chat_format"] = model.chat_format
        return Llama(model_path=model_path, **kwargs)

    return _load


def _retrieve_outcome(task: asyncio.Future[Any]) -> None:
    # Abandoned inference may still fail after its caller has gone.
    if not task.cancelled():
        task.exception()


def _merge_system_into_user(wire: list[dict[str, Any]]) -> list[dict[str, Any]]:
    system_idx = next((i for i, m in enumerate(wire) if m["role"] == "system"), None)
    if system_idx is None:
        return wire
    merged = [dict(m) for m in wire]
    system_content = merged.pop(system_idx)["content"]
    user_idx = next((i for i, m in enumerate(merged) if m["role"] == "user"), None)
    if user_idx is None:
        merged.insert(0, {"role": "user", "content": system_content})
    else:
        merged[user_idx]["content"] = (
            f"[SYSTEM INSTRUCTIONS]\n{system_content}\n[END SYSTEM INSTRUCTIONS]\n\n"
            f"{merged[user_idx]['content']}"
        )
    return merged


class OnDeviceProvider(ProviderClient):
    """Runs GGUF models in-process through llama.cpp.

    ``load`` / ``unload`` manage the single resident model; ``complete``
    loads the configured model implicitly when nothing is resident.

    llama.cpp engines are not thread-safe.  One lock covers loading,
    unloading and inference, and the inference thread is tracked separately:
    a caller that gives up (for example on timeout) releases the lock but
    the thread keeps running, so later calls fail fast with
    ``BackendUnavailable`` and ``load``/``unload`` wait for it before
    closing the engine.
    """

    backend_id = "ondevice"

    def __init__(
        self,
        default_model: str,
        *,
        enabled: bool = True,
        loader: Loader | None = None,
        runtime_check: Callable[[], str | None] | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> None:
        self.default_model = default_model
        self.enabled = enabled
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._loader = loader or llama_cpp_loader()
        self._runtime_check = runtime_check or llama_cpp_runtime_problem
        self._engine: Any = None
        self._loaded: OnDeviceModel | None = None
        self._status = LoadStatus()
        self._lock = asyncio.Lock()
        self._inference: asyncio.Future[Any] | None = None

    # -- status -------------------------------------------------------------

    def status(self) -> LoadStatus:
        return self._status

    @property
    def loaded_model(self) -> str | None:
        return self._loaded.id if self._loaded else None

    def _set_status(self, **changes: Any) -> None:
        self._status = dataclasses.replace(self._status, **changes)

    def _report_progress(self, fraction: float, detail: str) -> None:
        # Called from the loader thread; each status is an immutable snapshot.
        self._set_status(progress=round(fraction * _DOWNLOAD_SHARE, 3), detail=detail)

    @property
    def busy(self) -> bool:
        """Whether an inference thread is still running."""
        return self._inference is not None and not self._inference.done()

    async def _wait_idle(self) -> None:
        """Wait for a running inference thread.  Caller holds the lock."""
        if self.busy:
            logger.info("[ondevice] waiting for running inference to finish")
            await asyncio.wait({self._inference})

    # -- lifecycle ----------------------------------------------------------

    async def load(self, model_id: str | None = None) -> LoadStatus:
        """Make ``model_id`` the resident model, downloading it if needed.

        Raises:
            ModelLoadError: Unknown model, missing runtime, or load failure.
        """
        async with self._lock:
            return await self._load_locked(model_id)

    async def _load_locked(self, model_id: str | None) -> LoadStatus:
        target_id = model_id or self.default_model
        model = find_model(target_id)
        if model is None:
            raise ModelLoadError(f"Unknown on-device model: {target_id}")
        if self._loaded and self._loaded.id == target_id:
            return self._status

        problem = self._runtime_check()
        if problem:
            self._set_status(stage=LoadStage.ERROR, error=problem)
            raise ModelLoadError(problem)

        await self._wait_idle()
        if self._loaded is not None:
            self._release()

        logger.info("[ondevice] loading %s from %s", model.id, model.repo_id)
        self._set_status(
            stage=LoadStage.LOADING, model_id=model.id, progress=0.0,
            detail=f"Fetching {model.filename}", error=None,
        )
        try:
            engine = await asyncio.to_thread(self._loader, model, self._report_progress)
        except Exception as exc:
            logger.error("[ondevice] failed to load %s: %s", model.id, exc, exc_info=True)
            self._set_status(stage=LoadStage.ERROR, progress=0.0, detail="", error=str(exc))
            raise ModelLoadError(f"Failed to load {model.id}: {exc}") from exc

        self._engine = engine
        self._loaded = model
        self._set_status(stage=LoadStage.READY, progress=1.0, detail="Ready")
        logger.info("[ondevice] %s ready", model.id)
        return self._status

    async def download(self, model_id: str) -> LoadStatus:
        """Fetch ``model_id`` into the local cache without keeping it resident.

        The currently loaded model, if any, is restored afterwards.
        """
        previous = self.loaded_model
        await self.load(model_id)
        if previous and previous != model_id:
            await self.load(previous)
        elif previous is None:
            await self.unload()
        return self._status

    def _release(self) -> None:
        engine, self._engine, self._loaded = self._engine, None, None
        close = getattr(engine, "close", None)
        if callable(close):
            close()

    async def unload(self) -> None:
        async with self._lock:
            await self._wait_idle()
            if self._loaded is not None:
                logger.info("[ondevice] unloading %s", self._loaded.id)
            self._release()
            self._status = LoadStatus()

    # -- provider interface -------------------------------------------------

    async def probe(self, preferred_model: str | None = None) -> ProviderProbeResult:
        if not self.enabled:
            return ProviderProbeResult(self.backend_id, available=False, diagnostic="On-device backend disabled")
        problem = self._runtime_check()
        if problem:
            return ProviderProbeResult(self.backend_id, available=False, diagnostic=problem)
        selected = self.loaded_model or preferred_model or self.default_model
        return ProviderProbeResult(
            backend_id=self.backend_id,
            available=True,
            selected_model=selected,
            models=[m.id for m in ONDEVICE_MODELS],
        )

    async def supports_native_tools(self, model: str | None = None) -> bool:
        info = self._loaded if model is None and self._loaded else find_model(model or self.default_model)
        return bool(info and info.supports_tools)

    async def complete(
        self,
        messages: list[Message],
        tool_catalog: ToolCatalog | None = None,
        *,
        model: str | None = None,
    ) -> Completion:
        if not self.enabled:
            raise BackendUnavailable("On-device backend disabled")

        async with self._lock:
            if self.busy:
                raise BackendUnavailable("On-device engine busy with an earlier request")
            if self._loaded is None or (model and self._loaded.id != model):
                try:
                    await self._load_locked(model)
                except ModelLoadError as exc:
                    raise BackendUnavailable(str(exc)) from exc

            loaded, engine = self._loaded, self._engine
            native_tools = bool(tool_catalog) and loaded.supports_tools
            if native_tools:
                wire = openai_messages(messages)
                if loaded.merge_system_prompt:
                    wire = _merge_system_into_user(wire)
            else:
                wire = openai_messages(flatten_tool_messages(messages))

            kwargs: dict[str, Any] = {
                "messages": wire,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            }
            if native_tools:
                kwargs["tools"] = tool_definitions(tool_catalog)

            # Tracked apart from the caller: a cancelled caller leaves the thread running.
            self._inference = asyncio.ensure_future(asyncio.to_thread(engine.create_chat_completion, **kwargs))
            self._inference.add_done_callback(_retrieve_outcome)
            try:
                response = await asyncio.shield(self._inference)
                message = response["choices"][0]["message"]
            except (KeyError, IndexError, TypeError) as exc:
                raise BackendProtocolError(f"Unexpected on-device completion payload: {exc}") from exc
            except (RuntimeError, ValueError) as exc:
                raise BackendProtocolError(f"On-device inference failed: {exc}") from exc

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
            model=loaded.id,
        )
