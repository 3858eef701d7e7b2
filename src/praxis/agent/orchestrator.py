"""
Main orchestration loop for Praxis.

An :class:`AgentOrchestrator` drives one bounded, cancellable run at a time::

    registry = ToolRegistry()
    orchestrator = AgentOrchestrator(registry, model_caller=load_model_caller("openai"))

    async with aclosing(orchestrator.run(session_input)) as steps:
        async for step in steps:
            render(step)

Each iteration builds the prompt, awaits the model, parses its JSON decision and, for tool calls,
awaits the registry.  Steps are handed to the consumer one at a time through a
:class:`StepStream`; the producer does not start the next model call until the consumer has asked
for the next step.
"""

import asyncio
import json
import logging
import time
from contextlib import aclosing
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
    TypeVar,
)

from praxis.agent.model_caller import (
    ModelCallError,
    ModelCaller,
    collect_text,
    load_model_caller,
)
from praxis.agent.prompt import build_agent_system_prompt
from praxis.agent.response_parser import parse_model_response
from praxis.agent.tool_registry import (
    ToolContext,
    ToolRegistry,
)
from praxis.core.schema import (
    AgentConfig,
    AgentRunState,
    AgentSessionInput,
    AgentStep,
    FinalStep,
    ObservationStep,
    RunStatus,
    TokenUsage,
    ToolCallStep,
)

logger = logging.getLogger(__name__)

STEP_LIMIT_MESSAGE = "Step limit exceeded"

_JSON_REMINDER = (
    "Your previous reply could not be parsed. Respond with a single JSON object using the "
    '"thought", "tool_call" or "final_answer" fields.'
)

T = TypeVar("T")


class AgentBusyError(RuntimeError):
    """Raised when a run is started while another one is still active."""


class TimeoutExceededError(RuntimeError):
    """Raised when a run exceeds its configured ``timeout_ms``."""


class _RunCancelled(Exception):
    """Internal signal: the cancellation token fired while waiting."""


# ---------------------------------------------------------------------------
# Step stream
# ---------------------------------------------------------------------------
_END = object()


class _Failure:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


Emit = Callable[[AgentStep], Awaitable[None]]


class StepStream:
    """
    Async iterator over the steps of one run.

    The producer coroutine runs as its own task and pushes steps into a one-slot queue.  After
    each push it waits until the consumer requests the following step, so delivery is strictly
    in order and nothing is computed ahead of the consumer.  A fatal error raised by the producer
    is re-raised from ``__anext__`` once the steps before it have been delivered.
    """

    def __init__(
        self,
        producer: Callable[[Emit], Awaitable[None]],
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._producer = producer
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task | None = None
        self._pending_ack = False
        self._exhausted = False

    def __aiter__(self) -> "StepStream":
        return self

    async def __anext__(self) -> AgentStep:
        if self._exhausted:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._run_producer())
        if self._pending_ack:
            self._pending_ack = False
            self._queue.task_done()

        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._exhausted = True
            raise item.exc
        self._pending_ack = True
        return item

    async def aclose(self) -> None:
        """Stop the producer if the consumer leaves early, even before the first step."""
        self._exhausted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._on_close is not None:
            self._on_close()

    async def _emit(self, step: AgentStep) -> None:
        await self._queue.put(step)
        await self._queue.join()

    async def _run_producer(self) -> None:
        try:
            await self._producer(self._emit)
        except Exception as exc:  # pylint: disable=broad-except
            await self._queue.put(_Failure(exc))
        else:
            await self._queue.put(_END)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class AgentOrchestrator:
    """Owns one agent run at a time and streams its steps."""

    def __init__(self, registry: ToolRegistry, model_caller: ModelCaller | None = None) -> None:
        self._registry = registry
        self._model_caller = model_caller
        self._run_state: AgentRunState | None = None
        self._cancel_event: asyncio.Event | None = None
        self._deadline = 0.0
        self._stream_open = False

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def get_run_state(self) -> AgentRunState | None:
        """
        Snapshot of the current run, or ``None`` if no run has been started yet.

        The snapshot has its own ``steps`` list; step objects are shared with the live state.
        """
        state = self._run_state
        if state is None:
            return None
        update: Dict[str, Any] = {"steps": list(state.steps)}
        if state.usage is not None:
            update["usage"] = state.usage.model_copy()
        return state.model_copy(update=update)

    def cancel(self) -> None:
        """Request cancellation of the active run.  Safe to call at any time."""
        state = self._run_state
        if state is None or not state.is_active:
            logger.debug("cancel() called with no active run")
            return
        if self._cancel_event is not None:
            self._cancel_event.set()
        state.finish(RunStatus.CANCELLED)
        logger.info("Run %s cancelled after %d steps", state.id, len(state.steps))

    def run(self, session_input: AgentSessionInput) -> StepStream:
        """
        Start a new run and return its step stream.

        Raises
        ------
        AgentBusyError
            If the previous run is still active.
        """
        self._start(session_input.config)
        return self.execute_loop(session_input, session_input.messages)

    async def run_until_complete(self, session_input: AgentSessionInput) -> AgentRunState:
        """Drive a run to its end and return the final state."""
        async with aclosing(self.run(session_input)) as steps:
            async for _ in steps:
                pass
        state = self.get_run_state()
        assert state is not None
        return state

    def execute_loop(
        self, session_input: AgentSessionInput, message_history: Sequence[Mapping[str, Any]]
    ) -> StepStream:
        """
        Return the step stream for *session_input*, continuing *message_history*.

        Uses the active run state if there is one, otherwise starts a new run.

        Raises
        ------
        AgentBusyError
            If the active run already has a stream.
        """
        if self._run_state is None or not self._run_state.is_active:
            self._start(session_input.config)
        elif self._stream_open:
            raise AgentBusyError(f"Run {self._run_state.id} already has a step stream")
        self._stream_open = True
        state = self._run_state
        cancel_event = self._cancel_event
        deadline = self._deadline
        assert state is not None and cancel_event is not None
        history: List[Dict[str, Any]] = [dict(message) for message in message_history]

        async def producer(emit: Emit) -> None:
            try:
                await self._loop(session_input, state, cancel_event, deadline, history, emit)
            except asyncio.CancelledError:
                # consumer closed the stream early
                state.finish(RunStatus.CANCELLED)
                raise

        def on_close() -> None:
            if state.is_active:
                state.finish(RunStatus.CANCELLED)
                logger.info("Run %s cancelled: stream closed", state.id)

        return StepStream(producer, on_close=on_close)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _start(self, config: AgentConfig) -> None:
        if self._run_state is not None and self._run_state.is_active:
            raise AgentBusyError(f"Run {self._run_state.id} is still active")
        self._cancel_event = asyncio.Event()
        self._deadline = time.monotonic() + config.timeout_ms / 1000
        self._stream_open = False
        self._run_state = AgentRunState(config=config, usage=TokenUsage())
        logger.info(
            "Starting run %s [mode=%s, max_steps=%d]",
            self._run_state.id,
            config.mode.value,
            config.max_steps,
        )

    async def _loop(
        self,
        session_input: AgentSessionInput,
        state: AgentRunState,
        cancel_event: asyncio.Event,
        deadline: float,
        history: List[Dict[str, Any]],
        emit: Emit,
    ) -> None:
        config = state.config
        system_prompt = build_agent_system_prompt(config.mode, config.tools)

        async def wait(awaitable: Awaitable[T]) -> T:
            return await self._interruptible(awaitable, cancel_event, deadline, config)

        step_index = 0
        while True:
            if cancel_event.is_set() or not state.is_active:
                state.finish(RunStatus.CANCELLED)
                logger.info("Run %s stopped at step %d (cancelled)", state.id, step_index)
                return

            if step_index >= config.max_steps:
                message = f"{STEP_LIMIT_MESSAGE} ({config.max_steps} steps)"
                logger.warning("Run %s: %s", state.id, message)
                final = FinalStep(step_index=step_index, error=message)
                state.steps.append(final)
                state.finish(RunStatus.FAILED, message)
                await emit(final)
                return

            if time.monotonic() >= deadline:
                self._fail_timeout(state, config)

            messages = [{"role": "system", "content": system_prompt}, *history]
            try:
                text, usage = await wait(self._call_model(session_input, messages, cancel_event))
            except _RunCancelled:
                state.finish(RunStatus.CANCELLED)
                logger.info("Run %s cancelled during model call", state.id)
                return
            except TimeoutExceededError as exc:
                state.finish(RunStatus.FAILED, str(exc))
                raise
            except Exception as exc:
                logger.exception("Run %s: model call failed", state.id)
                error = exc if isinstance(exc, ModelCallError) else ModelCallError(str(exc))
                state.finish(RunStatus.FAILED, str(error))
                if error is exc:
                    raise
                raise error from exc

            if state.usage is not None:
                state.usage.add(usage)

            step = parse_model_response(text, step_index)
            history.append({"role": "assistant", "content": text})
            logger.debug("Run %s step %d: %s", state.id, step_index, step.kind)

            if isinstance(step, FinalStep):
                state.steps.append(step)
                state.finish(RunStatus.COMPLETED)
                await emit(step)
                logger.info("Run %s completed in %d steps", state.id, step_index + 1)
                return

            state.steps.append(step)
            await emit(step)

            if isinstance(step, ToolCallStep):
                if cancel_event.is_set():
                    continue
                try:
                    observation = await self._observe(step, history, wait)
                except _RunCancelled:
                    continue
                except TimeoutExceededError as exc:
                    state.finish(RunStatus.FAILED, str(exc))
                    raise
                state.steps.append(observation)
                history.append({"role": "user", "content": _observation_message(observation)})
                await emit(observation)
            elif step.error:
                history.append({"role": "user", "content": _JSON_REMINDER})

            step_index += 1

    async def _call_model(
        self,
        session_input: AgentSessionInput,
        messages: List[Dict[str, Any]],
        cancel_event: asyncio.Event,
    ) -> tuple[str, TokenUsage | None]:
        caller = self._model_caller
        if caller is None:
            try:
                caller = load_model_caller(session_input.provider, session_input.model)
            except ValueError as exc:
                raise ModelCallError(str(exc)) from exc
        config = session_input.config
        response = await caller(
            messages,
            temperature=config.temperature,
            max_tokens=config.max_tokens_per_step,
            cancel_event=cancel_event,
        )
        return await collect_text(response.text), response.usage

    async def _observe(
        self,
        step: ToolCallStep,
        history: List[Dict[str, Any]],
        wait: Callable[[Awaitable[Any]], Awaitable[Any]],
    ) -> ObservationStep:
        """Run the requested tool and wrap its outcome, success or failure, in an observation."""
        call = step.tool_call
        context = ToolContext(messages=list(history), tool_call_id=step.tool_call_id)
        observation = ObservationStep(
            step_index=step.step_index,
            tool_call_id=step.tool_call_id,
            tool_name=call.tool_name,
        )
        try:
            observation.result = await wait(
                self._registry.execute_tool(call.tool_name, call.arguments, context)
            )
        except (_RunCancelled, TimeoutExceededError):
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Tool '%s' failed: %s", call.tool_name, exc)
            observation.error = str(exc)
        return observation

    @staticmethod
    def _fail_timeout(state: AgentRunState, config: AgentConfig) -> None:
        message = f"Run exceeded timeout of {config.timeout_ms} ms"
        state.finish(RunStatus.FAILED, message)
        logger.error("Run %s: %s", state.id, message)
        raise TimeoutExceededError(message)

    @staticmethod
    async def _interruptible(
        awaitable: Awaitable[T],
        cancel_event: asyncio.Event,
        deadline: float,
        config: AgentConfig,
    ) -> T:
        """
        Await *awaitable* unless the cancellation token fires or the deadline passes first.

        Whatever finishes second is abandoned; a result that arrives together with a
        cancellation is discarded.
        """
        task = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancelled},
                timeout=max(deadline - time.monotonic(), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            cancelled.cancel()

        if cancel_event.is_set():
            _discard(task)
            raise _RunCancelled()
        if task not in done:
            _discard(task)
            message = f"Run exceeded timeout of {config.timeout_ms} ms"
            logger.error(message)
            raise TimeoutExceededError(message)
        if task.cancelled():
            raise _RunCancelled()
        return task.result()


def _discard(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        task.exception()  # mark retrieved


def _observation_message(observation: ObservationStep) -> str:
    header = f"Observation from {observation.tool_name} ({observation.tool_call_id})"
    if observation.error is not None:
        return f"{header} failed: {observation.error}"
    return f"{header}: {json.dumps(observation.result, default=str)}"
