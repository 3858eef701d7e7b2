"""System prompt construction for the agent loop."""

import json
from typing import Sequence

from praxis.core.schema import (
    AgentMode,
    AgentToolDescriptor,
)

SYSTEM_PROMPT = """\
You are Praxis, an autonomous assistant that can THINK and ACT.
You are running in {mode} mode. {mode_hint}

At every step respond with exactly one JSON object and no extra text.
Recognized fields:
  "thought":      your reasoning for this step (optional)
  "tool_call":    {{"toolName": "<name>", "arguments": {{ ... }}}} to run a tool (optional)
  "final_answer": your final reply to the user; ends the session (optional)

Examples:
{{"thought": "I should look at the file first", "tool_call": {{"toolName": "read_file", "arguments": {{"path": "app.py"}}}}}}
{{"thought": "I have everything I need", "final_answer": "..."}}

Use only one of "tool_call" or "final_answer" per step. Always answer with valid JSON.
"""

_MODE_HINTS = {
    AgentMode.PLAN_ACT: (
        "First outline a short plan in your thoughts, then carry it out one tool call at a time."
    ),
    AgentMode.REACT: (
        "Alternate between a thought and an action, using each observation to decide the next step."
    ),
}


def _describe_tool(tool: AgentToolDescriptor) -> str:
    schema = json.dumps(tool.input_schema, sort_keys=True)
    return f"- {tool.name}: {tool.description}\n  input schema: {schema}"


def build_agent_system_prompt(mode: AgentMode | str, tools: Sequence[AgentToolDescriptor]) -> str:
    """
    Build the instruction block sent as the system message of every model call.

    The result depends only on *mode* and *tools*.
    """
    mode = AgentMode(mode)
    prompt = SYSTEM_PROMPT.format(mode=mode.value, mode_hint=_MODE_HINTS[mode])

    if tools:
        prompt += "\nAvailable tools:\n" + "\n".join(_describe_tool(tool) for tool in tools)
    else:
        prompt += "\nNo tools are available; reason step by step and give a final_answer."

    return prompt
