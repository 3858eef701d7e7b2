"""
Turns raw model text into a typed :data:`~praxis.core.schema.AgentStep`.

The model is asked for a single JSON object of the form::

    {"thought": "...",
     "tool_call": {"toolName": "<name>", "arguments": {...}},
     "final_answer": "..."}

Anything else still yields a step: unparseable text becomes a thought annotated with an error so
the loop can continue and ask again.
"""

import json
import logging
import re
from typing import (
    Any,
    Dict,
)

from praxis.core.schema import (
    FinalStep,
    ThoughtStep,
    ToolCall,
    ToolCallStep,
)

logger = logging.getLogger(__name__)

PARSE_ERROR_PREFIX = "Failed to parse response"

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


class ResponseParseError(ValueError):
    """Raised internally when the text is not a single JSON object."""


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text


def _load_object(text: str) -> Dict[str, Any]:
    try:
        value = json.loads(_strip_code_fence(text))
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ResponseParseError(str(exc)) from exc
    if not isinstance(value, dict):
        raise ResponseParseError(f"expected a JSON object, got {type(value).__name__}")
    return value


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _optional_text(value: Any) -> str | None:
    return None if value is None else _as_text(value)


def _tool_call(payload: Any) -> ToolCall | None:
    """Return a ToolCall if *payload* has the ``{toolName, arguments}`` shape."""
    if not isinstance(payload, dict):
        return None
    name = payload.get("toolName")
    if not isinstance(name, str) or not name:
        return None
    arguments = payload.get("arguments")
    return ToolCall(tool_name=name, arguments=arguments if isinstance(arguments, dict) else {})


def parse_model_response(text: str, step_index: int) -> ThoughtStep | ToolCallStep | FinalStep:
    """
    Parse *text* into a step.  Never raises.

    Parameters
    ----------
    text:
        Raw model output for this step.
    step_index:
        Index copied onto the resulting step.

    Returns
    -------
    FinalStep
        If the object carries ``final_answer``.
    ToolCallStep
        If the object carries a well-formed ``tool_call``.
    ThoughtStep
        Otherwise.  For unparseable text the whole text becomes the thought and ``error`` is set.
    """
    try:
        data = _load_object(text)
    except ResponseParseError as exc:
        logger.debug("Step %d: model output is not a JSON object: %s", step_index, exc)
        return ThoughtStep(
            step_index=step_index,
            thought=text,
            error=f"{PARSE_ERROR_PREFIX}: {exc}",
            raw_model_output=text,
        )

    thought = _optional_text(data.get("thought"))

    if data.get("final_answer") is not None:
        return FinalStep(
            step_index=step_index,
            final_answer=_as_text(data["final_answer"]),
            thought=thought,
        )

    call = _tool_call(data.get("tool_call"))
    if call is not None:
        return ToolCallStep(step_index=step_index, tool_call=call, thought=thought)

    return ThoughtStep(step_index=step_index, thought=thought or "", raw_model_output=text)
