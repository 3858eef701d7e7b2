"""Tests for the provider factory and shared caller plumbing (no network)."""

import asyncio

import pytest

from praxis.agent import model_caller as mc
from praxis.agent.orchestrator import AgentOrchestrator
from praxis.config import settings
from praxis.core.schema import (
    AgentConfig,
    AgentSessionInput,
    RunStatus,
)


def test_load_known_providers() -> None:
    assert isinstance(mc.load_model_caller("openai"), mc.OpenAIModelCaller)
    assert isinstance(mc.load_model_caller("Anthropic"), mc.AnthropicModelCaller)
    assert mc.load_model_caller("tgi", model="custom").model == "custom"


def test_load_unknown_provider() -> None:
    with pytest.raises(ValueError, match="not registered"):
        mc.load_model_caller("nope")


def test_split_system_joins_system_messages() -> None:
    system, turns = mc._split_system(
        [
            {"role": "system", "content": "a"},
            {"role": "user", "content": "hi"},
            {"role": "system", "content": "b"},
        ]
    )
    assert system == "a\n\nb"
    assert turns == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_collect_text_joins_fragments() -> None:
    async def fragments():
        yield "ab"
        yield "cd"

    assert await mc.collect_text("plain") == "plain"
    assert await mc.collect_text(fragments()) == "abcd"


@pytest.mark.asyncio
async def test_missing_api_key_is_a_model_call_error(monkeypatch) -> None:
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    caller = mc.load_model_caller("openai")

    with pytest.raises(mc.ModelCallError, match="OPENAI_API_KEY"):
        await caller(
            [{"role": "user", "content": "hi"}],
            temperature=0.0,
            max_tokens=10,
            cancel_event=asyncio.Event(),
        )


@pytest.mark.asyncio
async def test_provider_exceptions_are_wrapped() -> None:
    class Broken(mc.BaseModelCaller):
        async def _complete(self, messages, temperature, max_tokens):
            raise OSError("socket closed")

    with pytest.raises(mc.ModelCallError, match="socket closed"):
        await Broken()([], temperature=0.0, max_tokens=10, cancel_event=asyncio.Event())


@pytest.mark.asyncio
async def test_unknown_session_provider_fails_the_run(registry) -> None:
    orchestrator = AgentOrchestrator(registry)
    session_input = AgentSessionInput(
        messages=[{"role": "user", "content": "hi"}], config=AgentConfig(), provider="nope"
    )

    with pytest.raises(mc.ModelCallError, match="not registered"):
        await orchestrator.run_until_complete(session_input)

    assert orchestrator.get_run_state().status is RunStatus.FAILED
