"""aiworker/extractor.py

Turns a backend reply into structured tool-call requests.

Two encodings are supported:

* native: the backend returned a structured ``tool_calls`` field;
* fallback: the model was instructed (see ``aiworker.prompts``) to answer
  with a bare ``{"tool_calls": [{"name": ..., "arguments": {...}}]}`` object
  embedded in its text.

Fallback parsing only runs when the orchestrator actually sent those
instructions, so ordinary prose that happens to contain JSON is never
mistaken for a tool call.
"""

from __future__ import annotations

# Standard Library
import json
import logging
import re
from typing import Any

# Local Modules
from aiworker.models import Completion, NativeToolCall, ToolCallRequest

logger = logging.getLogger(__name__)

_FENCE_PATTERN: re.Pattern[str] = re.compile(r"```(?:json|JSON)?[ \t]*\n?")
_OBJECT_PATTERN: re.Pattern[str] = re.compile(r"\{[\s\S]*\}")


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers, keeping the fenced content."""
    return _FENCE_PATTERN.sub("", text).strip()


def format_fallback_calls(requests: list[ToolCallRequest]) -> str:
    """Serialize requests in the exact JSON shape the fallback prompt asks for.

    Used to replay an assistant's tool requests to backends that only see
    plain text, and as the inverse of ``ToolCallExtractor.extract``.
    """
    payload = {
        "tool_calls": [
            {"id": req.id, "name": req.name, "arguments": req.arguments}
            for req in requests
        ]
    }
    return json.dumps(payload, ensure_ascii=False)


def _decode_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    """Decode a tool-call argument payload.

    Returns:
        ``(arguments, error)``; ``error`` is ``None`` when decoding succeeded.
    """
    if raw is None:
        return {}, None
    if isinstance(raw, str):
        if not raw.strip():
            return {}, None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {}, f"invalid JSON ({exc.msg} at position {exc.pos})"
    if isinstance(raw, dict):
        return dict(raw), None
    return {}, f"expected a JSON object, got {type(raw).__name__}"


class ToolCallExtractor:
    """Produces ``ToolCallRequest`` lists with ids unique for one turn.

    Create one extractor per turn; it remembers every id it has handed out.
    """

    def __init__(self) -> None:
        self._seen_ids: set[str] = set()
        self._counter = 0

    def _claim_id(self, proposed: Any, prefix: str) -> str:
        if isinstance(proposed, str) and proposed and proposed not in self._seen_ids:
            self._seen_ids.add(proposed)
            return proposed
        while True:
            self._counter += 1
            candidate = f"{prefix}_{self._counter}"
            if candidate not in self._seen_ids:
                self._seen_ids.add(candidate)
                return candidate

    def extract(self, reply: Completion, using_fallback: bool) -> list[ToolCallRequest]:
        """Return the tool calls requested by ``reply``.

        Args:
            reply: Completion returned by a provider client.
            using_fallback: Whether the JSON calling instructions were sent
                to the model this turn.

        Returns:
            Requests in the order the model issued them.  Empty for a plain
            text answer.
        """
        if reply.native_tool_calls:
            return [self._from_native(call) for call in reply.native_tool_calls]
        if not using_fallback:
            return []
        return self.parse_fallback(reply.content)

    def _from_native(self, call: NativeToolCall) -> ToolCallRequest:
        arguments, error = _decode_arguments(call.arguments)
        if error:
            logger.warning("[extract] native call %s has malformed arguments: %s", call.name, error)
        return ToolCallRequest(
            id=self._claim_id(call.id, "call"),
            name=call.name,
            arguments=arguments,
            arguments_error=error,
        )

    def parse_fallback(self, content: str) -> list[ToolCallRequest]:
        """Parse the fallback ``{"tool_calls": [...]}`` object out of reply text.

        Missing or unparseable JSON means the reply is a plain answer, so this
        returns an empty list rather than raising.
        """
        if not content or "tool_calls" not in content:
            return []

        match = _OBJECT_PATTERN.search(strip_code_fences(content))
        if not match:
            return []
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.debug("[extract] reply mentions tool_calls but holds no valid JSON object")
            return []

        if not isinstance(parsed, dict) or not isinstance(parsed.get("tool_calls"), list):
            return []

        requests: list[ToolCallRequest] = []
        for element in parsed["tool_calls"]:
            if not isinstance(element, dict):
                continue
            name = element.get("name")
            if not isinstance(name, str) or not name:
                logger.debug("[extract] skipping fallback element without a name: %r", element)
                continue
            if "arguments" not in element:
                arguments, error = {}, "missing 'arguments'"
            else:
                arguments, error = _decode_arguments(element["arguments"])
            requests.append(
                ToolCallRequest(
                    id=self._claim_id(element.get("id"), "json_call"),
                    name=name,
                    arguments=arguments,
                    arguments_error=error,
                )
            )
        return requests
