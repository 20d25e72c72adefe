"""tests/test_extractor.py

Unit tests for tool-call extraction from native and JSON fallback replies.
"""

from __future__ import annotations

# Local Modules
from aiworker.extractor import ToolCallExtractor, format_fallback_calls, strip_code_fences
from aiworker.models import Completion, NativeToolCall, ToolCallRequest


class TestNativeExtraction:
    """Test suite for structured tool_calls fields."""

    def test_plain_reply_has_no_calls(self) -> None:
        reply = Completion(content="The answer is 42.")
        assert ToolCallExtractor().extract(reply, using_fallback=False) == []

    def test_native_calls_preserve_order_and_ids(self) -> None:
        reply = Completion(
            content="",
            native_tool_calls=[
                NativeToolCall(name="first", arguments={"a": 1}, id="call_abc"),
                NativeToolCall(name="second", arguments='{"b": 2}', id="call_def"),
            ],
        )

        requests = ToolCallExtractor().extract(reply, using_fallback=False)

        assert [r.name for r in requests] == ["first", "second"]
        assert [r.id for r in requests] == ["call_abc", "call_def"]
        assert requests[1].arguments == {"b": 2}

    def test_missing_and_duplicate_ids_are_made_unique(self) -> None:
        extractor = ToolCallExtractor()
        reply = Completion(
            content="",
            native_tool_calls=[
                NativeToolCall(name="a", arguments={}),
                NativeToolCall(name="b", arguments={}, id="dup"),
                NativeToolCall(name="c", arguments={}, id="dup"),
            ],
        )

        first = extractor.extract(reply, using_fallback=False)
        second = extractor.extract(reply, using_fallback=False)

        ids = [r.id for r in first + second]
        assert len(ids) == len(set(ids))

    def test_undecodable_arguments_flag_the_request(self) -> None:
        reply = Completion(content="", native_tool_calls=[NativeToolCall(name="x", arguments="{not json")])

        (request,) = ToolCallExtractor().extract(reply, using_fallback=False)

        assert request.arguments == {}
        assert request.arguments_error is not None
        assert "invalid JSON" in request.arguments_error

    def test_non_object_arguments_flag_the_request(self) -> None:
        reply = Completion(content="", native_tool_calls=[NativeToolCall(name="x", arguments="[1, 2]")])

        (request,) = ToolCallExtractor().extract(reply, using_fallback=False)

        assert request.arguments_error == "expected a JSON object, got list"

    def test_native_calls_win_over_fallback_text(self) -> None:
        reply = Completion(
            content='{"tool_calls": [{"name": "ignored", "arguments": {}}]}',
            native_tool_calls=[NativeToolCall(name="used", arguments={})],
        )

        requests = ToolCallExtractor().extract(reply, using_fallback=True)

        assert [r.name for r in requests] == ["used"]


class TestFallbackExtraction:
    """Test suite for the JSON fallback encoding."""

    def test_list_files_request(self) -> None:
        reply = Completion(content='{"tool_calls":[{"name":"list_files","arguments":{}}]}')

        requests = ToolCallExtractor().extract(reply, using_fallback=True)

        assert len(requests) == 1
        assert requests[0].name == "list_files"
        assert requests[0].arguments == {}
        assert requests[0].arguments_error is None

    def test_fallback_json_is_ignored_when_not_in_fallback_mode(self) -> None:
        reply = Completion(content='{"tool_calls":[{"name":"list_files","arguments":{}}]}')
        assert ToolCallExtractor().extract(reply, using_fallback=False) == []

    def test_code_fenced_json_with_surrounding_text(self) -> None:
        content = (
            "Sure, let me check.\n"
            "```json\n"
            '{"tool_calls": [{"name": "read_file", "arguments": {"path": "notes.md"}}]}\n'
            "```"
        )

        (request,) = ToolCallExtractor().parse_fallback(content)

        assert request.name == "read_file"
        assert request.arguments == {"path": "notes.md"}

    def test_prose_without_marker_is_a_plain_answer(self) -> None:
        content = 'Here is an example object: {"name": "x"}'
        assert ToolCallExtractor().parse_fallback(content) == []

    def test_invalid_json_is_a_plain_answer(self) -> None:
        content = "I would call tool_calls {name: list_files} but I won't."
        assert ToolCallExtractor().parse_fallback(content) == []

    def test_elements_without_name_are_skipped(self) -> None:
        content = '{"tool_calls": [{"arguments": {}}, {"name": "ok", "arguments": {}}]}'

        requests = ToolCallExtractor().parse_fallback(content)

        assert [r.name for r in requests] == ["ok"]

    def test_missing_arguments_is_malformed(self) -> None:
        (request,) = ToolCallExtractor().parse_fallback('{"tool_calls": [{"name": "ok"}]}')
        assert request.arguments_error == "missing 'arguments'"

    def test_string_encoded_arguments_are_decoded(self) -> None:
        content = '{"tool_calls": [{"name": "ok", "arguments": "{\\"q\\": \\"x\\"}"}]}'

        (request,) = ToolCallExtractor().parse_fallback(content)

        assert request.arguments == {"q": "x"}

    def test_generated_ids_are_unique_and_prefixed(self) -> None:
        content = '{"tool_calls": [{"name": "a", "arguments": {}}, {"name": "b", "arguments": {}}]}'

        requests = ToolCallExtractor().parse_fallback(content)

        assert [r.id for r in requests] == ["json_call_1", "json_call_2"]


class TestFallbackFormat:
    """The fallback encoder and parser agree on the wire shape."""

    def test_formatted_calls_parse_back_to_equal_requests(self) -> None:
        original = [
            ToolCallRequest(id="call_1", name="search", arguments={"query": "mcp", "limit": 3}),
            ToolCallRequest(id="call_2", name="get_current_time", arguments={}),
        ]

        parsed = ToolCallExtractor().parse_fallback(format_fallback_calls(original))

        assert parsed == original

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
