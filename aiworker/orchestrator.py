"""aiworker/orchestrator.py

Bounded tool-calling loop for one conversation turn.

The orchestrator asks the selected backend for a completion, runs any tool
calls the reply contains against the tool server manager, feeds the results
back and repeats until the model answers in plain text or the iteration
budget runs out.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import time
from collections.abc import Mapping

# Local Modules
from aiworker.errors import (
    BackendProtocolError,
    BackendTimeout,
    BackendUnavailable,
    MalformedToolCallJson,
    NotConnected,
    ToolInvocationFailed,
    ToolServerNotFound,
    ToolsUnsupported,
    WorkerError,
)
from aiworker.extractor import ToolCallExtractor
from aiworker.models import (
    Completion,
    FinalAnswer,
    Message,
    ToolCallRequest,
    ToolCallResult,
    ToolCatalog,
    TraceEntry,
)
from aiworker.prompts import build_system_prompt, with_system_prompt
from aiworker.providers.base import ProviderClient
from aiworker.providers.selector import ProviderSelector
from aiworker.tool_servers.manager import ToolServerManager

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10
COMPLETION_TIMEOUT = 60.0


def _discard_outcome(task: asyncio.Future[Completion]) -> None:
    # An abandoned call may still fail later; retrieve the error so asyncio
    # does not report it as never retrieved.
    if not task.cancelled():
        task.exception()


def _error_result(request: ToolCallRequest, message: str) -> ToolCallResult:
    return ToolCallResult(id=request.id, name=request.name, output_text=f"Error: {message}", is_error=True)


class ConversationOrchestrator:
    """Runs conversation turns against the selected backend and tool servers.

    Args:
        selector: Probes backends and picks one per call.
        tool_servers: Source of the tool catalog and executor of tool calls.
        preference: ``"auto"`` or a backend id.
        max_iterations: Backend calls allowed per turn.
        completion_timeout: Seconds allowed per backend call.
        max_backend_retries: Extra attempts after a transient backend failure.
        model_hints: Preferred model per backend id, passed to probes.
    """

    def __init__(
        self,
        selector: ProviderSelector,
        tool_servers: ToolServerManager,
        *,
        preference: str = "auto",
        max_iterations: int = MAX_ITERATIONS,
        completion_timeout: float = COMPLETION_TIMEOUT,
        max_backend_retries: int = 1,
        model_hints: Mapping[str, str] | None = None,
    ) -> None:
        self.selector = selector
        self.tool_servers = tool_servers
        self.preference = preference
        self.max_iterations = max_iterations
        self.completion_timeout = completion_timeout
        self.max_backend_retries = max_backend_retries
        self.model_hints: dict[str, str] = dict(model_hints or {})

    async def submit_turn(
        self,
        history: list[Message],
        user_text: str,
        *,
        preference: str | None = None,
    ) -> FinalAnswer:
        """Process one user message.

        Never raises for backend or tool failures: they are reported through
        ``FinalAnswer.content`` with ``is_error`` set.  ``history`` is not
        modified.

        Args:
            history: Prior conversation, oldest first.
            user_text: The new user message.
            preference: Overrides the configured backend preference.

        Returns:
            The final answer plus the trace of executed tool calls.
        """
        started = time.monotonic()
        trace: list[TraceEntry] = []
        try:
            answer = await self._run_turn(history, user_text, preference or self.preference, trace)
        except WorkerError as exc:
            logger.error("[turn] aborted: %s", exc)
            answer = FinalAnswer(content=str(exc), tool_call_trace=trace, is_error=True)
        except Exception as exc:
            logger.error("[turn] unexpected error: %s", exc, exc_info=True)
            answer = FinalAnswer(content=f"Unexpected error: {exc}", tool_call_trace=trace, is_error=True)
        logger.info(
            "[turn] finished in %.2fs with %d tool calls%s",
            time.monotonic() - started,
            len(trace),
            " (incomplete)" if answer.incomplete else "",
        )
        return answer

    async def _run_turn(
        self,
        history: list[Message],
        user_text: str,
        preference: str,
        trace: list[TraceEntry],
    ) -> FinalAnswer:
        working = [*history, Message(role="user", content=user_text)]
        catalog = self.tool_servers.build_catalog()
        # Routing is fixed for the whole turn, even if servers reconnect.
        owners = dict(catalog.owners)
        extractor = ToolCallExtractor()

        use_fallback = False
        switched_to_fallback = False
        last_reply: Completion | None = None
        iteration = 0

        while iteration < self.max_iterations:
            client, probe = await self.selector.choose(preference, self.model_hints)
            model = probe.selected_model
            if catalog and not use_fallback and not await client.supports_native_tools(model):
                logger.info("[turn] %s/%s has no native tool support, using JSON fallback", client.backend_id, model)
                use_fallback = switched_to_fallback = True

            messages = with_system_prompt(working, build_system_prompt(catalog, use_fallback))
            native_catalog = catalog if catalog and not use_fallback else None
            logger.info(
                "[turn] iteration %d/%d via %s (%s), %d messages",
                iteration + 1,
                self.max_iterations,
                client.backend_id,
                model,
                len(messages),
            )

            try:
                reply = await self._complete_with_retries(client, messages, native_catalog, model)
            except ToolsUnsupported:
                if native_catalog is None or switched_to_fallback:
                    raise
                logger.warning("[turn] %s rejected tool definitions, retrying with JSON fallback", client.backend_id)
                use_fallback = switched_to_fallback = True
                continue

            iteration += 1
            last_reply = reply
            requests = extractor.extract(reply, use_fallback)
            if not requests:
                return FinalAnswer(
                    content=reply.content,
                    tool_call_trace=trace,
                    provider=reply.provider or client.backend_id,
                    model=reply.model or model or "",
                )

            working.append(
                Message(role="assistant", content=reply.content, tool_calls=[req.to_ref() for req in requests])
            )
            for request in requests:
                result = await self._dispatch(request, owners)
                trace.append(TraceEntry(request=request, result=result))
                working.append(
                    Message(role="tool", content=result.output_text, tool_call_id=request.id, name=request.name)
                )

        logger.warning("[turn] iteration budget of %d exhausted", self.max_iterations)
        if last_reply is None:
            return FinalAnswer(content="No backend call was allowed for this turn.", is_error=True, incomplete=True)
        return FinalAnswer(
            content=last_reply.content,
            tool_call_trace=trace,
            provider=last_reply.provider,
            model=last_reply.model,
            incomplete=True,
        )

    async def _complete_with_retries(
        self,
        client: ProviderClient,
        messages: list[Message],
        catalog: ToolCatalog | None,
        model: str | None,
    ) -> Completion:
        attempt = 0
        while True:
            try:
                return await self._complete_once(client, messages, catalog, model)
            except ToolsUnsupported:
                raise
            except (BackendUnavailable, BackendProtocolError) as exc:
                if attempt >= self.max_backend_retries:
                    raise
                attempt += 1
                logger.warning(
                    "[turn] %s call failed (%s), retry %d/%d",
                    client.backend_id,
                    exc,
                    attempt,
                    self.max_backend_retries,
                )

    async def _complete_once(
        self,
        client: ProviderClient,
        messages: list[Message],
        catalog: ToolCatalog | None,
        model: str | None,
    ) -> Completion:
        """Race one completion against the deadline.

        On expiry the call is abandoned: it is cancelled but not awaited, so a
        backend that ignores cancellation cannot stall the turn.
        """
        task = asyncio.ensure_future(client.complete(messages, catalog, model=model))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.completion_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            task.cancel()
            task.add_done_callback(_discard_outcome)
            logger.error("[turn] %s timed out after %.1fs", client.backend_id, self.completion_timeout)
            raise BackendTimeout(client.backend_id, self.completion_timeout)
        return task.result()

    async def _dispatch(self, request: ToolCallRequest, owners: Mapping[str, str]) -> ToolCallResult:
        """Run one request; every failure becomes an error result."""
        if request.arguments_error is not None:
            return _error_result(request, str(MalformedToolCallJson(request.name, request.arguments_error)))

        owner = owners.get(request.name)
        if owner is None:
            logger.warning("[turn] model requested unknown tool %s", request.name)
            return _error_result(request, f"Unknown tool: {request.name}")

        try:
            return await self.tool_servers.invoke(owner, request.name, request.arguments, call_id=request.id)
        except (NotConnected, ToolServerNotFound, ToolInvocationFailed) as exc:
            logger.warning("[turn] tool %s failed: %s", request.name, exc)
            return _error_result(request, str(exc))
