"""tests/test_prompts.py

Unit tests for system prompt composition.
"""

from __future__ import annotations

# Local Modules
from aiworker.models import Message, ServerSummary, ToolCatalog, ToolCatalogEntry
from aiworker.prompts import FALLBACK_INSTRUCTIONS, build_system_prompt, with_system_prompt


def _catalog(*names: str) -> ToolCatalog:
    entries = [
        ToolCatalogEntry(
            name=name,
            description=f"Does {name}.",
            parameter_schema={"type": "object", "properties": {"a": {}, "b": {}, "c": {}, "d": {}}},
        )
        for name in names
    ]
    return ToolCatalog(
        entries=entries,
        owners={name: "srv" for name in names},
        servers=[ServerSummary("Files", "File tools", len(names))],
    )


class TestBuildSystemPrompt:
    """Test suite for build_system_prompt."""

    def test_without_tools(self) -> None:
        prompt = build_system_prompt(None)

        assert "AI-Worker" in prompt
        assert "Available Tools" not in prompt
        assert build_system_prompt(ToolCatalog()) == prompt

    def test_lists_tools_and_servers(self) -> None:
        prompt = build_system_prompt(_catalog("list_files", "read_file"))

        assert "2 tools from 1 connected server" in prompt
        assert "1. **list_files** (params: a, b, c...)" in prompt
        assert "Does read_file." in prompt
        assert "Files (2 tools)" in prompt
        assert FALLBACK_INSTRUCTIONS not in prompt

    def test_fallback_mode_adds_json_contract(self) -> None:
        prompt = build_system_prompt(_catalog("list_files"), use_fallback=True)

        assert FALLBACK_INSTRUCTIONS in prompt
        assert '{"tool_calls": [' in prompt

    def test_browser_tools_get_a_reminder(self) -> None:
        assert "browser control tools" in build_system_prompt(_catalog("browser_navigate"))
        assert "browser control tools" not in build_system_prompt(_catalog("list_files"))


class TestWithSystemPrompt:
    """Test suite for with_system_prompt."""

    def test_prepends_when_missing(self) -> None:
        messages = [Message(role="user", content="hi")]

        result = with_system_prompt(messages, "sys")

        assert result[0] == Message(role="system", content="sys")
        assert result[1:] == messages
        assert len(messages) == 1

    def test_replaces_existing(self) -> None:
        messages = [Message(role="system", content="old"), Message(role="user", content="hi")]

        result = with_system_prompt(messages, "new")

        assert [m.content for m in result] == ["new", "hi"]
        assert messages[0].content == "old"
