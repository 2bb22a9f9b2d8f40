"""Tests for recovering tool calls from free-form model output"""

import pytest

from mcp_chat_gateway.models.tool import ToolCallSource, ToolCallStatus
from mcp_chat_gateway.services.response_parser import (
    CODE_BLOCK_TOOL,
    HEURISTIC_RESULT,
    JSON_FAILURE_RESULT,
    ResponseParser,
)


@pytest.fixture
def parser():
    return ResponseParser()


def pending(parsed):
    return [c for c in parsed.tool_calls if c.status is ToolCallStatus.PENDING]


class TestCallBlocks:
    """Canonical ``Tool call: ... Arguments: ... Result: ...`` blocks"""

    def test_round_trip(self, parser):
        text = (
            "Let me work that out.\n"
            'Tool call: calculate Arguments: {"a": 25, "b": 4, "operation": "multiply"} '
            'Result: {"success": true, "value": 100}\n'
            "The answer is 100."
        )
        parsed = parser.extract(text)

        assert len(parsed.tool_calls) == 1
        call = parsed.tool_calls[0]
        assert call.name == "calculate"
        assert call.arguments == {"a": 25, "b": 4, "operation": "multiply"}
        assert call.status is ToolCallStatus.SUCCESS
        assert call.result == {"success": True, "value": 100}
        assert call.source is ToolCallSource.CALL_BLOCK
        assert parsed.cleaned_text == "Let me work that out.\n\nThe answer is 100."
        assert pending(parsed) == []

    def test_trailing_comma_is_repaired(self, parser):
        parsed = parser.extract('Tool call: add Arguments: {"a": 1, "b": 2,} Result: {"success": true}')
        assert parsed.tool_calls[0].arguments == {"a": 1, "b": 2}
        assert parsed.tool_calls[0].status is ToolCallStatus.SUCCESS

    def test_failed_result_gives_error_status(self, parser):
        parsed = parser.extract(
            'Tool call: divide Arguments: {"a": 1, "b": 0} Result: {"success": false, "error": "Division by zero"}'
        )
        call = parsed.tool_calls[0]
        assert call.status is ToolCallStatus.ERROR
        assert call.error == "Division by zero"

    def test_unrepairable_arguments(self, parser):
        parsed = parser.extract('Tool call: add Arguments: {"a": } Result: {"success": true}')
        call = parsed.tool_calls[0]
        assert call.name == "add"
        assert call.arguments == {}
        assert call.status is ToolCallStatus.ERROR
        assert call.result == JSON_FAILURE_RESULT

    def test_multiple_blocks_in_text_order(self, parser):
        text = (
            'Tool call: first Arguments: {"n": 1} Result: {"success": true}\n'
            'Tool call: second Arguments: {"n": 2} Result: {"success": true}'
        )
        parsed = parser.extract(text)
        assert [c.name for c in parsed.tool_calls] == ["first", "second"]
        assert parsed.cleaned_text == ""

    def test_nested_braces_in_result(self, parser):
        parsed = parser.extract(
            'Tool call: lookup Arguments: {"q": "x"} Result: {"data": {"items": [{"id": 1}]}} done'
        )
        assert parsed.tool_calls[0].result == {"data": {"items": [{"id": 1}]}}
        assert parsed.cleaned_text == "done"


class TestShorthand:
    """Bracketed ``[Calling tool X with args {...}]`` requests"""

    def test_shorthand_is_pending(self, parser):
        parsed = parser.extract(
            'I will compute it. [Calling tool calculate with args {"a": 25, "b": 4, "operation": "multiply"}]'
        )
        call = parsed.tool_calls[0]
        assert call.name == "calculate"
        assert call.status is ToolCallStatus.PENDING
        assert call.source is ToolCallSource.SHORTHAND
        assert pending(parsed) == [call]
        assert parsed.cleaned_text == "I will compute it. [Tool call: calculate]"

    def test_shorthand_single_quotes(self, parser):
        parsed = parser.extract("[Calling tool weather with args {'city': 'Paris'}]")
        assert parsed.tool_calls[0].arguments == {"city": "Paris"}

    def test_bad_shorthand_json(self, parser):
        parsed = parser.extract('[Calling tool weather with args {"city": }]')
        call = parsed.tool_calls[0]
        assert call.status is ToolCallStatus.ERROR
        assert call.result == JSON_FAILURE_RESULT
        assert pending(parsed) == []

    def test_shorthand_inside_call_block_is_not_double_counted(self, parser):
        text = (
            'Tool call: calc Arguments: {"note": "[Calling tool calc with args {}]"} '
            'Result: {"success": true}'
        )
        parsed = parser.extract(text)
        assert len(parsed.tool_calls) == 1
        assert parsed.tool_calls[0].source is ToolCallSource.CALL_BLOCK


class TestNarrative:
    """Heuristic narrative mentions"""

    def test_mention_is_recorded(self, parser):
        parsed = parser.extract("I'll use the weather tool to check.")
        call = parsed.tool_calls[0]
        assert call.name == "weather"
        assert call.status is ToolCallStatus.SUCCESS
        assert call.result == HEURISTIC_RESULT
        assert call.source is ToolCallSource.NARRATIVE
        assert parsed.cleaned_text == "[Tool mention: weather] to check."

    def test_mentions_can_be_disabled(self):
        text = "Let me use the search tool."
        parsed = ResponseParser(narrative_mentions=False).extract(text)
        assert parsed.tool_calls == []
        assert parsed.cleaned_text == text

    def test_known_tools_only(self):
        parser = ResponseParser(narrative_known_tools_only=True)
        parsed = parser.extract("I will use the magic tool, then I will use the search tool.", ["search"])
        assert [c.name for c in parsed.tool_calls] == ["search"]

    def test_mention_and_shorthand_both_recorded(self, parser):
        text = "I'll use the weather tool [Calling tool weather with args {\"city\": \"Oslo\"}]"
        parsed = parser.extract(text)
        assert [c.source for c in parsed.tool_calls] == [ToolCallSource.NARRATIVE, ToolCallSource.SHORTHAND]
        assert len(pending(parsed)) == 1

    @pytest.mark.parametrize(
        "text",
        [
            "I'll use the tool to answer that.",
            "Let me use a tool for this.",
            "I will use the right tool here.",
        ],
    )
    def test_article_is_not_a_tool_name(self, parser, text):
        parsed = parser.extract(text)
        assert parsed.tool_calls == []
        assert parsed.cleaned_text == text

    def test_quoted_name_after_article(self, parser):
        parsed = parser.extract("Let me use the `get_forecast` tool.")
        assert [c.name for c in parsed.tool_calls] == ["get_forecast"]


class TestCodeBlocks:
    def test_code_block_is_replaced(self, parser):
        text = "Here is the script:\n```python\nprint('hi')\n```\nRun it."
        parsed = parser.extract(text)
        call = parsed.tool_calls[0]
        assert call.name == CODE_BLOCK_TOOL
        assert call.arguments == {"language": "python"}
        assert call.result["codeBlock"] == {"language": "python", "content": "print('hi')"}
        assert parsed.cleaned_text == "Here is the script:\n[Code block 1]\nRun it."

    def test_untagged_block_is_text(self, parser):
        parsed = parser.extract("```\nplain\n```")
        assert parsed.tool_calls[0].arguments == {"language": "text"}
        assert parsed.cleaned_text == "[Code block 1]"

    def test_blocks_are_numbered(self, parser):
        parsed = parser.extract("```js\na\n```\n\n```sh\nb\n```")
        assert parsed.cleaned_text == "[Code block 1]\n\n[Code block 2]"


class TestPlainText:
    def test_no_matches_returns_text_unchanged(self, parser):
        text = "  Just a friendly answer.\n\n\n\nNothing else.  "
        parsed = parser.extract(text)
        assert parsed.tool_calls == []
        assert parsed.cleaned_text == text

    def test_empty_text(self, parser):
        parsed = parser.extract("")
        assert parsed.cleaned_text == ""
        assert parsed.tool_calls == []

    def test_excess_blank_lines_are_collapsed(self, parser):
        parsed = parser.extract("Before\n\n\n```\ncode\n```\n\n\n\nAfter")
        assert parsed.cleaned_text == "Before\n\n[Code block 1]\n\nAfter"
