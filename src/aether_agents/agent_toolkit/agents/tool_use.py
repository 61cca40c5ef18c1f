"""
Parser and formatter for the XML tag tool invocation grammar.

The model asks for a tool with::

    <tool_use>
      <name>TOOL_NAME</name>
      <arguments>{"key": "value"}</arguments>
    </tool_use>

and receives the outcome as::

    <tool_use_result>
      <name>TOOL_NAME</name>
      <result>RESULT_TEXT_OR_JSON</result>
    </tool_use_result>
"""

import json
import re
from typing import Any

from hopeit.dataobjects import dataclass, dataobject

__all__ = [
    "COMPLETION_TOOL",
    "TOOL_USE_RESULT_STOP",
    "ParsedToolUse",
    "ToolUseSyntaxError",
    "find_tool_uses",
    "format_tool_result",
    "has_tool_use_tag",
    "parse_arguments",
]

COMPLETION_TOOL = "attempt_completion"
TOOL_USE_RESULT_STOP = "<tool_use_result"

_BLOCK_RE = re.compile(r"<tool_use>([\s\S]*?)</tool_use>")
_NAME_RE = re.compile(r"<name>([\s\S]*?)</name>")
_ARGUMENTS_RE = re.compile(r"<arguments>([\s\S]*?)</arguments>")
_OPEN_TAG = "<tool_use>"


class ToolUseSyntaxError(ValueError):
    """The model produced a tool invocation that cannot be parsed."""


@dataobject
@dataclass
class ParsedToolUse:
    """
    One closed ``<tool_use>`` block found in model output.

    ``error`` is set when the block lacks ``<name>`` or ``<arguments>``.
    """

    name: str
    raw_arguments: str
    start: int
    end: int
    error: str | None = None

    @property
    def malformed(self) -> bool:
        return self.error is not None


def find_tool_uses(text: str) -> list[ParsedToolUse]:
    """Return every closed ``<tool_use>`` block in order of appearance."""
    return [_parse_block(match) for match in _BLOCK_RE.finditer(text)]


def _parse_block(match: re.Match[str]) -> ParsedToolUse:
    body = match.group(1)
    name = _NAME_RE.search(body)
    arguments = _ARGUMENTS_RE.search(body)
    missing = [tag for tag, found in (("<name>", name), ("<arguments>", arguments)) if not found]
    return ParsedToolUse(
        name=name.group(1).strip() if name else "",
        raw_arguments=arguments.group(1).strip() if arguments else "",
        start=match.start(),
        end=match.end(),
        error=(
            f"Malformed <tool_use> block: missing {' and '.join(missing)}" if missing else None
        ),
    )


def has_tool_use_tag(text: str) -> bool:
    """True when the text opens a ``<tool_use>`` tag, complete or not."""
    return _OPEN_TAG in text


def parse_arguments(raw: str) -> dict[str, Any]:
    """Decode the JSON object inside ``<arguments>``. Empty means no arguments."""
    raw = raw.strip()
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolUseSyntaxError(f"Invalid JSON in tool arguments: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise ToolUseSyntaxError(
            f"Tool arguments must be a JSON object, got {type(value).__name__}"
        )
    return value


def format_tool_result(name: str, result: str) -> str:
    return (
        "<tool_use_result>\n"
        f"  <name>{name}</name>\n"
        f"  <result>{result}</result>\n"
        "</tool_use_result>"
    )
