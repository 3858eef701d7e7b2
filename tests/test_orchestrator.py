"""Tests for the agent loop, driven by a scripted model caller."""

import asyncio
import json
from contextlib import aclosing

import pytest

from conftest import (
    ScriptedModelCaller,
    as_json,
)
from praxis.agent.model_caller import (
    ModelCallError,
    ModelResponse,
)
from praxis.agent.orchestrator import (
    AgentBusyError,
    AgentOrchestrator,
    TimeoutExceededError,
)
from praxis.core.schema import (
    AgentConfig,
    AgentSessionInput,
    FinalStep,
    ObservationStep,
    RunStatus,
    ThoughtStep,
    ToolCallStep,
)

USER = [{"role": "user", "content": "Test"}]


def session(**config) -> AgentSessionInput:
    return AgentSessionInput(messages=USER, config=AgentConfig(**config))


async def collect(stream) -> list:
    steps = []
    async with aclosing(stream):
        async for step in stream:
            steps.append(step)
    return steps


def tool_call(name: str, **arguments) -> str:
    return as_json(thought=f"calling {name}", tool_call={"toolName": name, "arguments": arguments})


# ---------------------------------------------------------------------------
# Step limit
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_zero_max_steps_yields_single_limit_step(registry) -> None:
    caller = ScriptedModelCaller([])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    steps = await collect(orchestrator.run(session(max_steps=0)))

    assert len(steps) == 1
    assert steps[0].kind == "final"
    assert "Step limit exceeded" in steps[0].error
    assert caller.calls == []
    state = orchestrator.get_run_state()
    assert state.status is RunStatus.FAILED
    assert state.finished_at is not None


@pytest.mark.asyncio
async def test_step_limit_after_thoughts(registry) -> None:
    caller = ScriptedModelCaller([as_json(thought="one"), as_json(thought="two")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    steps = await collect(orchestrator.run(session(max_steps=2)))

    assert [s.kind for s in steps] == ["thought", "thought", "final"]
    assert [s.step_index for s in steps] == [0, 1, 2]
    assert "Step limit exceeded" in steps[-1].error
    assert orchestrator.get_run_state().status is RunStatus.FAILED


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_thought_tool_call_and_final_answer(registry) -> None:
    caller = ScriptedModelCaller(
        [
            as_json(thought="Let me echo"),
            tool_call("echo", text="hello"),
            as_json(thought="Done", final_answer="hello back"),
        ]
    )
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    steps = await collect(orchestrator.run(session(max_steps=5)))

    assert [s.kind for s in steps] == ["thought", "tool_call", "observation", "final"]
    call, observation = steps[1], steps[2]
    assert isinstance(call, ToolCallStep) and isinstance(observation, ObservationStep)
    assert observation.tool_call_id == call.tool_call_id
    assert observation.step_index == call.step_index == 1
    assert observation.result == "hello"
    assert observation.error is None
    assert steps[-1].final_answer == "hello back"

    state = orchestrator.get_run_state()
    assert state.status is RunStatus.COMPLETED
    assert state.finished_at is not None
    assert len(state.steps) == 4
    assert state.usage.total_tokens == 45
    assert state.usage.prompt_tokens == 30


@pytest.mark.asyncio
async def test_history_carries_system_prompt_and_observations(registry) -> None:
    caller = ScriptedModelCaller([tool_call("echo", text="ping"), as_json(final_answer="ok")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    config = AgentConfig(tools=registry.get_tool_descriptors(), max_steps=5)

    await collect(orchestrator.run(AgentSessionInput(messages=USER, config=config)))

    first, second = caller.calls
    assert first[0]["role"] == "system"
    assert "echo" in first[0]["content"]
    assert first[1:] == USER
    assert second[-2]["role"] == "assistant"
    assert second[-1]["role"] == "user"
    assert "Observation from echo" in second[-1]["content"]
    assert '"ping"' in second[-1]["content"]


@pytest.mark.asyncio
async def test_streamed_fragments_are_joined(registry) -> None:
    async def fragments():
        for part in ['{"final_', 'answer": ', '"streamed"}']:
            yield part

    async def stream_response(messages, *, temperature, max_tokens, cancel_event):
        return ModelResponse(text=fragments())

    orchestrator = AgentOrchestrator(registry, model_caller=stream_response)

    steps = await collect(orchestrator.run(session()))

    assert steps[-1].final_answer == "streamed"
    assert orchestrator.get_run_state().usage.total_tokens == 0


# ---------------------------------------------------------------------------
# Recoverable errors
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_tool_failures_become_observation_errors(registry) -> None:
    caller = ScriptedModelCaller(
        [
            tool_call("read_file", path="x"),
            tool_call("nonexistent"),
            as_json(final_answer="gave up on tools"),
        ]
    )
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    steps = await collect(orchestrator.run(session(max_steps=5)))

    assert [s.kind for s in steps] == [
        "tool_call",
        "observation",
        "tool_call",
        "observation",
        "final",
    ]
    assert "execution not implemented" in steps[1].error
    assert "not found" in steps[3].error
    assert "failed" in caller.calls[2][-1]["content"]
    assert orchestrator.get_run_state().status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_parse_error_is_annotated_and_loop_continues(registry) -> None:
    caller = ScriptedModelCaller(["not json at all", as_json(final_answer="recovered")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    steps = await collect(orchestrator.run(session()))

    assert isinstance(steps[0], ThoughtStep)
    assert steps[0].thought == "not json at all"
    assert "Failed to parse response" in steps[0].error
    assert isinstance(steps[1], FinalStep)
    assert "single JSON object" in caller.calls[1][-1]["content"]


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_model_call_error_fails_the_run(registry) -> None:
    caller = ScriptedModelCaller(
        [as_json(thought="first"), ModelCallError("OPENAI_API_KEY is not configured")]
    )
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    received = []

    with pytest.raises(ModelCallError, match="OPENAI_API_KEY"):
        async with aclosing(orchestrator.run(session())) as steps:
            async for step in steps:
                received.append(step)

    assert [s.kind for s in received] == ["thought"]
    state = orchestrator.get_run_state()
    assert state.status is RunStatus.FAILED
    assert state.finished_at is not None
    assert "OPENAI_API_KEY" in state.error
    assert len(state.steps) == 1


@pytest.mark.asyncio
async def test_unexpected_caller_exception_is_wrapped(registry) -> None:
    orchestrator = AgentOrchestrator(
        registry, model_caller=ScriptedModelCaller([ConnectionError("reset by peer")])
    )

    with pytest.raises(ModelCallError, match="reset by peer"):
        await orchestrator.run_until_complete(session())

    assert orchestrator.get_run_state().status is RunStatus.FAILED


@pytest.mark.asyncio
async def test_timeout_fails_with_distinct_error(registry) -> None:
    async def never():
        await asyncio.sleep(5)
        return as_json(final_answer="too late")

    orchestrator = AgentOrchestrator(registry, model_caller=ScriptedModelCaller([never]))

    with pytest.raises(TimeoutExceededError):
        await orchestrator.run_until_complete(session(timeout_ms=50))

    state = orchestrator.get_run_state()
    assert state.status is RunStatus.FAILED
    assert "timeout" in state.error


# ---------------------------------------------------------------------------
# Cancellation and run state
# ---------------------------------------------------------------------------
def test_cancel_without_run_does_not_raise(registry) -> None:
    orchestrator = AgentOrchestrator(registry, model_caller=ScriptedModelCaller([]))

    orchestrator.cancel()
    orchestrator.cancel()

    assert orchestrator.get_run_state() is None


@pytest.mark.asyncio
async def test_cancel_between_steps(registry) -> None:
    caller = ScriptedModelCaller([as_json(thought="step one"), as_json(thought="unused")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    received = []

    async with aclosing(orchestrator.run(session())) as steps:
        async for step in steps:
            received.append(step)
            orchestrator.cancel()

    assert len(received) == 1
    assert len(caller.calls) == 1
    state = orchestrator.get_run_state()
    assert state.status is RunStatus.CANCELLED
    assert state.finished_at is not None
    assert state.error is None


@pytest.mark.asyncio
async def test_cancel_during_model_call(registry) -> None:
    async def hang():
        await asyncio.sleep(5)
        return as_json(final_answer="discarded")

    orchestrator = AgentOrchestrator(registry, model_caller=ScriptedModelCaller([hang]))
    asyncio.get_running_loop().call_later(0.05, orchestrator.cancel)

    state = await orchestrator.run_until_complete(session())

    assert state.status is RunStatus.CANCELLED
    assert state.finished_at is not None
    assert state.steps == []


@pytest.mark.asyncio
async def test_cancel_before_tool_call_skips_tool(registry) -> None:
    calls = []
    registry.wire_executor("read_file", lambda args, ctx: calls.append(args) or "data")
    caller = ScriptedModelCaller([tool_call("read_file", path="a")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    received = []

    async with aclosing(orchestrator.run(session())) as steps:
        async for step in steps:
            received.append(step)
            orchestrator.cancel()

    assert [s.kind for s in received] == ["tool_call"]
    assert calls == []
    assert orchestrator.get_run_state().status is RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_steps_are_not_prefetched(registry) -> None:
    caller = ScriptedModelCaller([as_json(thought="a"), as_json(final_answer="b")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    stream = orchestrator.run(session())

    first = await stream.__anext__()
    await asyncio.sleep(0.05)

    assert first.kind == "thought"
    assert len(caller.calls) == 1
    assert len(orchestrator.get_run_state().steps) == 1

    rest = await collect(stream)
    assert [s.kind for s in rest] == ["final"]


@pytest.mark.asyncio
async def test_second_run_while_active_is_rejected(registry) -> None:
    caller = ScriptedModelCaller([as_json(thought="a"), as_json(final_answer="b")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    stream = orchestrator.run(session())
    await stream.__anext__()

    with pytest.raises(AgentBusyError):
        orchestrator.run(session())

    await stream.aclose()
    assert orchestrator.get_run_state().status is RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_new_run_supersedes_finished_run(registry) -> None:
    caller = ScriptedModelCaller([as_json(final_answer="first"), as_json(final_answer="second")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    first = await orchestrator.run_until_complete(session())
    second = await orchestrator.run_until_complete(session())

    assert first.id != second.id
    assert second.steps[-1].final_answer == "second"
    assert orchestrator.get_run_state().id == second.id


@pytest.mark.asyncio
async def test_run_state_snapshot_is_detached(registry) -> None:
    orchestrator = AgentOrchestrator(
        registry, model_caller=ScriptedModelCaller([as_json(final_answer="x")])
    )
    await orchestrator.run_until_complete(session())

    snapshot = orchestrator.get_run_state()
    snapshot.steps.clear()

    assert len(orchestrator.get_run_state().steps) == 1


@pytest.mark.asyncio
async def test_closing_unread_stream_cancels_the_run(registry) -> None:
    caller = ScriptedModelCaller([as_json(final_answer="second run")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    async with aclosing(orchestrator.run(session())):
        pass

    state = orchestrator.get_run_state()
    assert state.status is RunStatus.CANCELLED
    assert state.finished_at is not None
    assert caller.calls == []

    second = await orchestrator.run_until_complete(session())
    assert second.status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_second_stream_for_active_run_is_rejected(registry) -> None:
    orchestrator = AgentOrchestrator(
        registry, model_caller=ScriptedModelCaller([as_json(final_answer="only")])
    )
    first = session()
    stream = orchestrator.run(first)

    with pytest.raises(AgentBusyError):
        orchestrator.execute_loop(first, first.messages)

    steps = await collect(stream)
    assert [s.kind for s in steps] == ["final"]


@pytest.mark.asyncio
async def test_timeout_counts_from_run_start(registry) -> None:
    caller = ScriptedModelCaller([as_json(final_answer="late")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    stream = orchestrator.run(session(timeout_ms=50))

    await asyncio.sleep(0.1)

    with pytest.raises(TimeoutExceededError):
        await collect(stream)
    assert caller.calls == []
    assert orchestrator.get_run_state().status is RunStatus.FAILED


# ---------------------------------------------------------------------------
# Slow tools
# ---------------------------------------------------------------------------
def wire_slow_read_file(registry, started: list) -> None:
    async def slow_read(arguments, context):
        started.append(arguments)
        await asyncio.sleep(5)
        return "file contents"

    registry.wire_executor("read_file", slow_read)


@pytest.mark.asyncio
async def test_cancel_during_tool_call(registry) -> None:
    started = []
    wire_slow_read_file(registry, started)
    caller = ScriptedModelCaller([tool_call("read_file", path="big.log")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)
    asyncio.get_running_loop().call_later(0.05, orchestrator.cancel)

    steps = await collect(orchestrator.run(session()))

    assert [s.kind for s in steps] == ["tool_call"]
    assert started == [{"path": "big.log"}]
    assert len(caller.calls) == 1
    state = orchestrator.get_run_state()
    assert state.status is RunStatus.CANCELLED
    assert state.finished_at is not None


@pytest.mark.asyncio
async def test_timeout_during_tool_call(registry) -> None:
    started = []
    wire_slow_read_file(registry, started)
    orchestrator = AgentOrchestrator(
        registry, model_caller=ScriptedModelCaller([tool_call("read_file", path="big.log")])
    )
    received = []

    with pytest.raises(TimeoutExceededError):
        async with aclosing(orchestrator.run(session(timeout_ms=100))) as steps:
            async for step in steps:
                received.append(step)

    assert [s.kind for s in received] == ["tool_call"]
    assert started == [{"path": "big.log"}]
    state = orchestrator.get_run_state()
    assert state.status is RunStatus.FAILED
    assert "timeout" in state.error
    assert len(state.steps) == 1


@pytest.mark.asyncio
async def test_unserializable_tool_result_still_dumps(registry) -> None:
    class Handle:
        def __str__(self) -> str:
            return "<handle 7>"

    registry.wire_executor("read_file", lambda arguments, context: {"handle": Handle()})
    caller = ScriptedModelCaller([tool_call("read_file", path="x"), as_json(final_answer="ok")])
    orchestrator = AgentOrchestrator(registry, model_caller=caller)

    state = await orchestrator.run_until_complete(session())

    dumped = json.loads(state.model_dump_json(by_alias=True))
    assert dumped["steps"][1]["result"] == {"handle": "<handle 7>"}
