"""aiworker/errors.py

Exception taxonomy shared by the provider, tool-server and orchestration layers.

Per-call failures (``ToolInvocationFailed``, ``MalformedToolCallJson``) are
recovered inside a turn; turn-level failures (``NoProviderAvailable``,
``BackendTimeout``) end up as final-answer content; lifecycle failures are
raised to whoever called ``connect`` / ``invoke``.
"""

from __future__ import annotations


class WorkerError(Exception):
    """Base class for every error raised by the orchestration core."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class NoProviderAvailable(WorkerError):
    """No backend satisfies the user's provider preference."""

    def __init__(self, preference: str, message: str | None = None) -> None:
        self.preference = preference
        super().__init__(
            message
            or (
                "No LLM provider available. Please start Ollama, add an "
                "OpenAI-compatible API key, or enable the on-device model."
            )
        )


class BackendUnavailable(WorkerError):
    """The backend could not be reached or refused the connection."""


class BackendTimeout(WorkerError):
    """A completion call exceeded the per-call deadline."""

    def __init__(self, backend_id: str, timeout: float) -> None:
        self.backend_id = backend_id
        self.timeout = timeout
        super().__init__(
            f"The {backend_id} backend did not respond within {timeout:g} seconds."
        )


class BackendProtocolError(WorkerError):
    """The backend answered with something that is not a valid completion."""


class ToolsUnsupported(BackendProtocolError):
    """The backend model rejected structured tool calls.

    Raised instead of a plain ``BackendProtocolError`` so the orchestrator can
    retry the same turn using the JSON fallback encoding.
    """


class ModelLoadError(WorkerError):
    """The on-device engine failed to download or load a model."""


# ---------------------------------------------------------------------------
# Tool server errors
# ---------------------------------------------------------------------------


class ToolServerNotFound(WorkerError, KeyError):
    """No descriptor is registered under the given id."""

    def __init__(self, descriptor_id: str) -> None:
        self.descriptor_id = descriptor_id
        super().__init__(f"Tool server not found: {descriptor_id}")

    def __str__(self) -> str:
        return self.args[0]


class NotConnected(WorkerError):
    """The target tool server has no live connection."""

    def __init__(self, descriptor_id: str) -> None:
        self.descriptor_id = descriptor_id
        super().__init__(f"Tool server {descriptor_id} is not connected")


class ToolServerConnectError(WorkerError):
    """Opening the transport or the MCP handshake failed.

    Attributes:
        descriptor_id: Id of the descriptor that failed to connect.
        raw_error: The low-level error message.
        diagnostic: Human-actionable remediation text built from ``raw_error``.
    """

    def __init__(self, descriptor_id: str, raw_error: str, diagnostic: str) -> None:
        self.descriptor_id = descriptor_id
        self.raw_error = raw_error
        self.diagnostic = diagnostic
        super().__init__(diagnostic)


class ToolInvocationFailed(WorkerError):
    """A tool call could not be completed by the server transport."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message)


class MalformedToolCallJson(WorkerError):
    """The model produced tool-call arguments that are not a JSON object."""

    def __init__(self, tool_name: str, detail: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Malformed arguments for tool {tool_name}: {detail}")
