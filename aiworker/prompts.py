"""aiworker/prompts.py

System prompt composition.  The prompt is rebuilt every turn from the live
tool catalog, and in fallback mode carries the JSON calling contract that
``aiworker.extractor`` parses.
"""

from __future__ import annotations

# Local Modules
from aiworker.models import Message, ToolCatalog, ToolCatalogEntry

APP_NAME = "AI-Worker"

_NO_TOOLS_PROMPT: str = (
    f"You are {APP_NAME}, a helpful assistant. When tools become available, "
    "use them to perform actions instead of giving manual instructions. "
    "Keep answers concise."
)

FALLBACK_INSTRUCTIONS: str = (
    "## Tool calling format\n"
    "This model does not support native tool calling. When you need a tool, "
    "reply with ONLY a JSON object, with no markdown and no text before or after it:\n"
    '{"tool_calls": [{"name": "tool_name", "arguments": {"param": "value"}}]}\n'
    "- Return only the JSON object when you call tools.\n"
    "- Reply with normal text when no tool is needed.\n"
    "- The JSON must be valid; use the exact tool names listed under Available Tools."
)

_BROWSER_MARKERS: tuple[str, ...] = ("browser", "navigate", "screenshot", "playwright", "goto", "url")

_RULES: str = """# Rules
1. Use tools, don't explain. When the user asks you to do something a tool can do, call the tool immediately instead of describing the steps.
2. Act autonomously, except for destructive or irreversible actions, which need the user's confirmation.
3. You may call tools in sequence. Each result comes back to you before your next step, so later calls can use earlier results.
4. After tool calls, confirm with concrete details from the results: paths, ids, links, status.
5. If a tool fails, state the error plainly and offer to retry with corrections.
6. Keep responses short and conversational."""


def _param_hint(tool: ToolCatalogEntry) -> str:
    properties = tool.parameter_schema.get("properties") or {}
    if not isinstance(properties, dict) or not properties:
        return ""
    names = list(properties)
    shown = ", ".join(names[:3])
    more = "..." if len(names) > 3 else ""
    return f" (params: {shown}{more})"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def build_system_prompt(catalog: ToolCatalog | None, use_fallback: bool = False) -> str:
    """Build the system prompt describing the turn's tool catalog.

    Args:
        catalog: Tools from all connected servers, or ``None``.
        use_fallback: Append the JSON tool-calling contract.

    Returns:
        The complete system prompt.
    """
    if not catalog:
        return _NO_TOOLS_PROMPT

    tool_lines = "\n\n".join(
        f"{idx}. **{tool.name}**{_param_hint(tool)}\n   {tool.description}"
        for idx, tool in enumerate(catalog.entries, start=1)
    )

    sections = [
        f"You are {APP_NAME}, an assistant with access to "
        f"{_plural(len(catalog.entries), 'tool')} from "
        f"{_plural(len(catalog.servers), 'connected server')}. "
        "When users ask you to perform actions, use the appropriate tools "
        "instead of giving manual instructions.",
    ]
    if use_fallback:
        sections.append(FALLBACK_INSTRUCTIONS)
    sections.append(f"# Available Tools\n{tool_lines}")

    if catalog.servers:
        server_list = ", ".join(
            f"{s.name} ({_plural(s.tool_count, 'tool')})" for s in catalog.servers
        )
        sections.append(
            "## Connected MCP Servers\n"
            f"The tools above are provided by these Model Context Protocol servers: {server_list}."
        )

    names = " ".join(tool.name.lower() for tool in catalog.entries)
    if any(marker in names for marker in _BROWSER_MARKERS):
        sections.append(
            "You have browser control tools. You CAN open websites, navigate to "
            "URLs and take screenshots; do not claim otherwise."
        )

    sections.append(_RULES)
    return "\n\n".join(sections)


def with_system_prompt(messages: list[Message], prompt: str) -> list[Message]:
    """Return a copy of ``messages`` whose leading system message is ``prompt``.

    An existing system message is replaced in place; otherwise one is
    prepended.
    """
    result = list(messages)
    for idx, message in enumerate(result):
        if message.role == "system":
            result[idx] = Message(role="system", content=prompt)
            return result
    result.insert(0, Message(role="system", content=prompt))
    return result
