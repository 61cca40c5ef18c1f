"""Compact prompt profile built from short objective and rules sections."""

from collections.abc import Sequence

from hopeit.dataobjects import dataclass, dataobject

from aether_agents.agent_toolkit.agents.prompts import DEFAULT_LIMITS, AgentLimits, available_tools
from aether_agents.mcp_client.catalog import has_file_editor_tools
from aether_agents.mcp_client.models import ToolDescriptor

__all__ = ["RulesConfig", "compile_compact_prompt", "objective_section", "rules_section"]


@dataobject
@dataclass
class RulesConfig:
    """Inputs of the rules section."""

    cwd: str = "."
    os_type: str = "linux"
    has_file_editor_tools: bool = False


_GRAMMAR = """\
====

TOOL USE

Use one tool per message with this exact format and wait for the result:

<tool_use>
  <name>TOOL_NAME</name>
  <arguments>{"key": "value"}</arguments>
</tool_use>

Results arrive as:

<tool_use_result>
  <name>TOOL_NAME</name>
  <result>RESULT</result>
</tool_use_result>"""


def objective_section(limits: AgentLimits = DEFAULT_LIMITS) -> str:
    return f"""\
====

OBJECTIVE

Break down tasks into clear steps and work through them methodically using tools.

## Process
1. Analyze task → Set goals in logical order
2. Execute sequentially → One tool at a time, wait for confirmation
3. Complete → Call `attempt_completion` to present result

## CRITICAL: Task Completion
- **MUST call `attempt_completion`** to end task - without it, task is FAILED
- Call it ONLY after all steps succeed and changes are verified
- Do NOT call if: tool just failed, mid-task, or need more info

## Limits
- Max {limits.max_iterations} tool calls, max {limits.max_consecutive_errors} consecutive errors"""


def rules_section(config: RulesConfig) -> str:
    editing_rules = ""
    if config.has_file_editor_tools:
        editing_rules = """
## File Editing Rules
- **Workspace First**: Call `list_workspaces` before file operations
- **Tool Priority**: `apply_diff` > `replace_in_file` > `insert_content` > `write_to_file`
- **write_to_file**: MUST provide `line_count`, include COMPLETE content (no placeholders)
- **apply_diff**: Read file first, use SEARCH/REPLACE format with enough context"""

    return f"""\
====

RULES

## General
- Working directory: {config.cwd} (all paths relative to this)
- Operating system: {config.os_type}
- Wait for tool confirmation before proceeding
- Use tools instead of asking questions when possible
- Goal-oriented: accomplish task, avoid back-and-forth

## Communication
- Be direct and technical, no conversational phrases
- FORBIDDEN openers: "Great", "Certainly", "Okay", "Sure"
- attempt_completion result must be final (no questions)
{editing_rules}"""


def compile_compact_prompt(
    user_prompt: str,
    tools: Sequence[ToolDescriptor],
    *,
    agentic: bool | None = None,
    limits: AgentLimits = DEFAULT_LIMITS,
    cwd: str = ".",
    os_type: str = "linux",
) -> str:
    """
    Shorter alternative to ``compile_system_prompt``.

    Passes the user prompt through when there are no tools. The objective
    section, which carries the completion protocol and limits, is only
    included in agentic runs.
    """
    if not tools:
        return user_prompt

    editor_tools = has_file_editor_tools(tools)
    if agentic is None:
        agentic = editor_tools

    parts = [_GRAMMAR, available_tools(tools)]
    if agentic:
        parts.append(objective_section(limits))
    parts.append(
        rules_section(RulesConfig(cwd=cwd, os_type=os_type, has_file_editor_tools=editor_tools))
    )
    parts.append(f"# User Instructions\n{user_prompt}")
    return "\n\n".join(part.rstrip() for part in parts[:-1]) + "\n\n" + parts[-1]
