"""Unit tests for the tool_use tag grammar."""

import pytest

from aether_agents.agent_toolkit.agents import tool_use
from aether_agents.agent_toolkit.agents.tool_use import (
    ToolUseSyntaxError,
    find_tool_uses,
    format_tool_result,
    has_tool_use_tag,
    parse_arguments,
)

SINGLE = """I will list the files.
<tool_use>
  <name>list_files</name>
  <arguments>{"path": "."}</arguments>
</tool_use>"""


def test_find_single_tool_use() -> None:
    uses = find_tool_uses(SINGLE)

    assert len(uses) == 1
    assert uses[0].name == "list_files"
    assert parse_arguments(uses[0].raw_arguments) == {"path": "."}
    assert SINGLE[uses[0].start : uses[0].end].startswith("<tool_use>")
    assert uses[0].end == len(SINGLE)


def test_find_multiple_tool_uses_in_order() -> None:
    text = (
        "<tool_use><name>a</name><arguments>{}</arguments></tool_use> then "
        "<tool_use><name> b </name><arguments></arguments></tool_use>"
    )

    uses = find_tool_uses(text)

    assert [use.name for use in uses] == ["a", "b"]
    assert uses[1].raw_arguments == ""


def test_block_missing_arguments_stays_inside_its_own_tags() -> None:
    text = (
        "<tool_use><name>delete_all</name></tool_use>\n"
        "<tool_use><name>read_file</name>"
        '<arguments>{"path": "a.txt"}</arguments></tool_use>'
    )

    first, second = find_tool_uses(text)

    assert first.name == "delete_all"
    assert first.raw_arguments == ""
    assert first.malformed
    assert first.error == "Malformed <tool_use> block: missing <arguments>"
    assert text[first.start : first.end] == "<tool_use><name>delete_all</name></tool_use>"
    assert second.name == "read_file"
    assert parse_arguments(second.raw_arguments) == {"path": "a.txt"}
    assert not second.malformed


def test_block_missing_name_is_malformed() -> None:
    (use,) = find_tool_uses("<tool_use><arguments>{}</arguments></tool_use>")

    assert use.name == ""
    assert use.error == "Malformed <tool_use> block: missing <name>"


def test_incomplete_block_is_not_a_tool_use() -> None:
    text = "<tool_use>\n  <name>read_file</name>\n  <arguments>{\"path\""

    assert find_tool_uses(text) == []
    assert has_tool_use_tag(text) is True
    assert has_tool_use_tag("plain answer") is False


def test_parse_arguments_empty_is_no_arguments() -> None:
    assert parse_arguments("   ") == {}


@pytest.mark.parametrize("raw", ['{"path": ', "[1, 2]", '"text"'])
def test_parse_arguments_rejects_invalid(raw: str) -> None:
    with pytest.raises(ToolUseSyntaxError):
        parse_arguments(raw)


def test_format_tool_result() -> None:
    assert format_tool_result("list_files", "a.txt") == (
        "<tool_use_result>\n"
        "  <name>list_files</name>\n"
        "  <result>a.txt</result>\n"
        "</tool_use_result>"
    )


def test_exported_names() -> None:
    assert sorted(tool_use.__all__) == [
        "COMPLETION_TOOL",
        "ParsedToolUse",
        "TOOL_USE_RESULT_STOP",
        "ToolUseSyntaxError",
        "find_tool_uses",
        "format_tool_result",
        "has_tool_use_tag",
        "parse_arguments",
    ]
    assert all(hasattr(tool_use, name) for name in tool_use.__all__)
