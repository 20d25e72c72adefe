"""aiworker/providers/selector.py

Backend selection policy and debounced availability probing.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import time
from collections.abc import Mapping

# Local Modules
from aiworker.errors import NoProviderAvailable
from aiworker.models import ProviderProbeResult
from aiworker.providers.base import ProviderClient

logger = logging.getLogger(__name__)

# Auto-selection order: on-device accelerator → local model server → cloud API.
PRIORITY: tuple[str, ...] = ("ondevice", "ollama", "openai")


def select(preference: str, probes: Mapping[str, ProviderProbeResult]) -> str:
    """Pick exactly one backend for a turn.

    Args:
        preference: ``"auto"`` or a backend id.
        probes: Live probe results keyed by backend id.

    Returns:
        The chosen backend id.

    Raises:
        NoProviderAvailable: Nothing satisfies the preference.
    """
    if preference and preference != "auto":
        probe = probes.get(preference)
        if probe is not None and probe.available:
            return preference
        reason = probe.diagnostic if probe is not None and probe.diagnostic else "not available"
        raise NoProviderAvailable(
            preference,
            f"The preferred provider '{preference}' is unavailable: {reason}",
        )

    for backend_id in PRIORITY:
        probe = probes.get(backend_id)
        if probe is not None and probe.available:
            return backend_id
    raise NoProviderAvailable(preference or "auto")


class ProviderSelector:
    """Owns the provider clients and shares in-flight probe results.

    A probe request made while another is running, or within ``debounce``
    seconds of the last one finishing, returns that same result instead of
    issuing new network calls.
    """

    def __init__(self, clients: Mapping[str, ProviderClient], debounce: float = 1.0) -> None:
        self.clients: dict[str, ProviderClient] = dict(clients)
        self.debounce = debounce
        self._inflight: asyncio.Task[dict[str, ProviderProbeResult]] | None = None
        self._inflight_hints: dict[str, str] = {}
        self._finished_at: float | None = None

    def client(self, backend_id: str) -> ProviderClient:
        return self.clients[backend_id]

    async def probe_all(self, hints: Mapping[str, str] | None = None) -> dict[str, ProviderProbeResult]:
        """Probe every backend.

        Args:
            hints: Optional preferred model per backend id.

        Returns:
            Probe results keyed by backend id.
        """
        wanted = dict(hints or {})
        task = self._inflight
        if task is not None and wanted == self._inflight_hints:
            fresh = self._finished_at is not None and time.monotonic() - self._finished_at < self.debounce
            if not task.done() or fresh:
                return await asyncio.shield(task)

        task = asyncio.ensure_future(self._probe_uncached(wanted))
        self._inflight = task
        self._inflight_hints = wanted
        self._finished_at = None
        task.add_done_callback(self._mark_finished)
        return await asyncio.shield(task)

    def _mark_finished(self, task: asyncio.Task[dict[str, ProviderProbeResult]]) -> None:
        if task is self._inflight:
            self._finished_at = time.monotonic()

    async def _probe_uncached(self, hints: dict[str, str]) -> dict[str, ProviderProbeResult]:
        ids = list(self.clients)
        results = await asyncio.gather(
            *(self.clients[bid].probe(hints.get(bid)) for bid in ids),
            return_exceptions=True,
        )
        probes: dict[str, ProviderProbeResult] = {}
        for backend_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("[probe] %s probe raised: %s", backend_id, result)
                probes[backend_id] = ProviderProbeResult(backend_id, available=False, diagnostic=str(result))
            else:
                probes[backend_id] = result
        logger.debug(
            "[probe] %s",
            ", ".join(f"{bid}={'up' if p.available else 'down'}" for bid, p in probes.items()),
        )
        return probes

    async def choose(
        self, preference: str, hints: Mapping[str, str] | None = None
    ) -> tuple[ProviderClient, ProviderProbeResult]:
        """Probe, select, and return the client plus its probe result."""
        probes = await self.probe_all(hints)
        backend_id = select(preference, probes)
        return self.clients[backend_id], probes[backend_id]

    async def aclose(self) -> None:
        for client in self.clients.values():
            await client.aclose()
