"""
Core API backend for Praxis.

It exposes the following endpoints:
- **GET /health**        - liveness probe for health checks.
- **GET /tools**         - descriptors of every registered tool.
- **POST /agent/runs**   - start a run; streams NDJSON annotations or returns the final state.
- **POST /agent/cancel** - cancel the active run.
- **GET /agent/state**   - state of the current (or last) run.

The process hosts one orchestrator, so at most one run is active at a time.
"""

import logging
from contextlib import aclosing
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
)

from fastapi import (
    BackgroundTasks,
    FastAPI,
    HTTPException,
)
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from praxis.agent.model_caller import ModelCallError
from praxis.agent.orchestrator import (
    AgentBusyError,
    AgentOrchestrator,
    StepStream,
    TimeoutExceededError,
)
from praxis.agent.tool_registry import ToolRegistry
from praxis.api.models import (
    AgentCompleteAnnotation,
    AgentErrorAnnotation,
    AgentStepAnnotation,
    RunRequest,
)
from praxis.config import settings
from praxis.core.schema import (
    AgentConfig,
    AgentSessionInput,
    AgentToolDescriptor,
    FinalStep,
    RunStatus,
)
from praxis.tools import register_default_tools

logger = logging.getLogger(__name__)

registry = register_default_tools(ToolRegistry())
orchestrator = AgentOrchestrator(registry)

app = FastAPI(title="Praxis API", version="0.1.0", description="Praxis agent orchestrator API")


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def _line(model: BaseModel) -> str:
    return model.model_dump_json(by_alias=True) + "\n"


def _select_tools(names: List[str] | None) -> List[AgentToolDescriptor]:
    descriptors = registry.get_tool_descriptors()
    if names is None:
        return descriptors
    by_name = {tool.name: tool for tool in descriptors}
    unknown = [name for name in names if name not in by_name]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown tools: {', '.join(unknown)}")
    return [by_name[name] for name in names]


async def _annotations(steps: StepStream, max_steps: int) -> AsyncIterator[str]:
    """Translate the step stream into NDJSON annotations for the UI."""
    try:
        async for step in steps:
            yield _line(
                AgentStepAnnotation(step=step, step_index=step.step_index, total_steps=max_steps)
            )
    except (ModelCallError, TimeoutExceededError) as exc:
        yield _line(AgentErrorAnnotation(error=str(exc)))
        return
    finally:
        await steps.aclose()

    state = orchestrator.get_run_state()
    if state is None:  # pragma: no cover - a run was just started
        return
    last = state.steps[-1] if state.steps else None
    if state.status is RunStatus.COMPLETED and isinstance(last, FinalStep):
        yield _line(
            AgentCompleteAnnotation(
                final_answer=last.final_answer, total_steps=len(state.steps), usage=state.usage
            )
        )
    else:
        error = state.error or f"Run {state.status.value}"
        yield _line(
            AgentErrorAnnotation(error=error, step_index=last.step_index if last else None)
        )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/tools", summary="List registered tools")
async def list_tools() -> List[Dict[str, Any]]:
    return [_dump(tool) for tool in registry.get_tool_descriptors()]


@app.post("/agent/runs", summary="Start an agent run")
async def start_run(req: RunRequest) -> Any:
    """Start a run; stream annotations when ``stream_steps`` is on, else return the final state."""
    config = AgentConfig.from_settings(tools=_select_tools(req.tools), **req.config_overrides())
    session_input = AgentSessionInput(
        messages=req.conversation(), config=config, provider=req.provider, model=req.model
    )

    try:
        steps = orchestrator.run(session_input)
    except AgentBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    if config.stream_steps:
        # runs even if the client disconnects before the body is iterated
        cleanup = BackgroundTasks()
        cleanup.add_task(steps.aclose)
        return StreamingResponse(
            _annotations(steps, config.max_steps),
            media_type="application/x-ndjson",
            background=cleanup,
        )

    try:
        async with aclosing(steps):
            async for _ in steps:
                pass
    except (ModelCallError, TimeoutExceededError) as exc:
        logger.warning("Run failed: %s", exc)

    state = orchestrator.get_run_state()
    assert state is not None
    return _dump(state)


@app.post("/agent/cancel", summary="Cancel the active run")
async def cancel_run() -> Dict[str, Any]:
    orchestrator.cancel()
    state = orchestrator.get_run_state()
    if state is None:
        raise HTTPException(status_code=404, detail="No run has been started")
    return _dump(state)


@app.get("/agent/state", summary="Current run state")
async def run_state() -> Dict[str, Any]:
    state = orchestrator.get_run_state()
    if state is None:
        raise HTTPException(status_code=404, detail="No run has been started")
    return _dump(state)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Praxis API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    uvicorn.run("praxis.api.app:app", host=host, port=port, reload=reload, log_level=log_level)


if __name__ == "__main__":
    run_api(reload=True)
