"""Terminal rendering helpers shared by the CLI."""

import json
from enum import Enum
from typing import Any

from praxis.core.schema import (
    AgentStep,
    FinalStep,
    ObservationStep,
    ThoughtStep,
    ToolCallStep,
)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def format_step(step: AgentStep) -> tuple[str, AnsiColors]:
    """Return a one-line (or short multi-line) rendering of *step* and its color."""
    prefix = f"[{step.step_index}]"
    if isinstance(step, ThoughtStep):
        return f"{prefix} 💭 {step.thought}", AnsiColors.GREY
    if isinstance(step, ToolCallStep):
        args = json.dumps(step.tool_call.arguments)
        line = f"{prefix} 🔧 {step.tool_call.tool_name}({args})"
        if step.thought:
            line = f"{prefix} 💭 {step.thought}\n{line}"
        return line, AnsiColors.BLUE
    if isinstance(step, ObservationStep):
        if step.error is not None:
            return f"{prefix} ⚠️ {step.tool_name}: {step.error}", AnsiColors.RED
        result = json.dumps(step.result, default=str)
        return f"{prefix} 👀 {step.tool_name}: {result}", AnsiColors.GREEN
    if isinstance(step, FinalStep) and step.error:
        return f"{prefix} ⛔ {step.error}", AnsiColors.RED
    return f"{prefix} ✅ {step.final_answer}", AnsiColors.YELLOW


def print_step(step: AgentStep) -> None:
    text, color = format_step(step)
    colored_print(text, color)
