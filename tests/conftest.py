"""Shared fixtures: a scripted model caller and a fresh tool registry per test."""

import asyncio
import json
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Sequence,
    Union,
)

import pytest

from praxis.agent.model_caller import ModelResponse
from praxis.agent.tool_registry import ToolRegistry
from praxis.core.schema import TokenUsage
from praxis.tools import register_default_tools

Scripted = Union[str, dict, BaseException, Callable[[], Awaitable[Any]]]


def as_json(**fields: Any) -> str:
    return json.dumps(fields)


class ScriptedModelCaller:
    """Replays canned responses, one per call, and records the messages it was sent."""

    def __init__(self, responses: Sequence[Scripted], usage: TokenUsage | None = None) -> None:
        self.responses: List[Scripted] = list(responses)
        self.usage = usage or TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        self.calls: List[List[dict]] = []

    async def __call__(
        self,
        messages: Sequence[dict],
        *,
        temperature: float,
        max_tokens: int,
        cancel_event: asyncio.Event,
    ) -> ModelResponse:
        self.calls.append([dict(m) for m in messages])
        if not self.responses:
            raise AssertionError("ScriptedModelCaller ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = await item()
        if isinstance(item, dict):
            item = json.dumps(item)
        return ModelResponse(text=item, usage=self.usage)


@pytest.fixture
def registry() -> ToolRegistry:
    return register_default_tools(ToolRegistry())
