"""
Schema definitions for model <-> orchestrator <-> tool messages.

These data models serve as the contract between the model, the orchestration loop, and the
consumers of the step stream.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.

Field names are snake_case in Python and camelCase on the wire (``stepIndex``,
``toolName``, ...), so the serialized shapes match what UI consumers expect.
"""

import uuid
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
)
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from praxis.config import settings


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
class AgentMode(str, Enum):
    """Reasoning strategy label embedded in the system prompt."""

    PLAN_ACT = "plan_act"
    REACT = "react"


class AgentToolDescriptor(CamelModel):
    """A tool the model may request; identity is ``name``."""

    name: str = Field(..., description="Unique tool name")
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class AgentConfig(CamelModel):
    """Per-run configuration.  Frozen for the life of a run."""

    model_config = ConfigDict(frozen=True)

    mode: AgentMode = AgentMode.PLAN_ACT
    max_steps: int = Field(10, ge=0)
    max_tokens_per_step: int = Field(2000, gt=0)
    temperature: float = 0.7
    tools: List[AgentToolDescriptor] = Field(default_factory=list)
    timeout_ms: int = Field(300_000, gt=0)
    stream_steps: bool = True

    @classmethod
    def from_settings(
        cls, tools: Sequence[AgentToolDescriptor] = (), **overrides: Any
    ) -> "AgentConfig":
        """Build a config from the process settings, with keyword overrides."""
        values: Dict[str, Any] = {
            "mode": settings.AGENT_MODE,
            "max_steps": settings.AGENT_MAX_STEPS,
            "max_tokens_per_step": settings.AGENT_MAX_TOKENS_PER_STEP,
            "temperature": settings.AGENT_TEMPERATURE,
            "timeout_ms": settings.AGENT_TIMEOUT_MS,
            "stream_steps": settings.AGENT_STREAM_STEPS,
            "tools": list(tools),
        }
        values.update(overrides)
        return cls(**values)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------
class ToolCall(CamelModel):
    """A call that the model wants the orchestrator to execute."""

    tool_name: str = Field(..., description="Registered tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")


class _BaseStep(CamelModel):
    step_index: int = Field(..., ge=0)
    timestamp: str = Field(default_factory=utc_now)
    error: Optional[str] = None
    raw_model_output: Optional[str] = None


class ThoughtStep(_BaseStep):
    """Free-text reasoning; the loop simply continues."""

    kind: Literal["thought"] = "thought"
    thought: str = ""


class ToolCallStep(_BaseStep):
    """The model asked for a tool to be run."""

    kind: Literal["tool_call"] = "tool_call"
    tool_call: ToolCall
    thought: Optional[str] = None
    tool_call_id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


class ObservationStep(_BaseStep):
    """Outcome of a tool call, correlated by ``tool_call_id``."""

    kind: Literal["observation"] = "observation"
    tool_call_id: str
    tool_name: str
    result: Any = None

    @field_serializer("result", when_used="json")
    def _serialize_result(self, value: Any) -> Any:
        # tool results are arbitrary; anything without a JSON form falls back to str()
        return to_jsonable_python(value, fallback=str)


class FinalStep(_BaseStep):
    """Terminal step carrying the final answer."""

    kind: Literal["final"] = "final"
    final_answer: str = ""
    thought: Optional[str] = None


AgentStep = Annotated[
    Union[ThoughtStep, ToolCallStep, ObservationStep, FinalStep],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------
class RunStatus(str, Enum):
    """Lifecycle of a single run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TokenUsage(CamelModel):
    """Cumulative token counters for a run."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage | None") -> None:
        """Accumulate *other* into this counter in place."""
        if other is None:
            return
        self.prompt_tokens += max(other.prompt_tokens, 0)
        self.completion_tokens += max(other.completion_tokens, 0)
        self.total_tokens += max(other.total_tokens, 0)


class AgentRunState(CamelModel):
    """Mutable state of one run, owned by a single orchestrator."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    config: AgentConfig
    steps: List[AgentStep] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    started_at: str = Field(default_factory=utc_now)
    finished_at: Optional[str] = None
    usage: Optional[TokenUsage] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """True while the run has not reached a terminal status."""
        return self.status is RunStatus.RUNNING

    def finish(self, status: RunStatus, error: str | None = None) -> None:
        """Move the run to a terminal *status*; later calls are ignored."""
        if not self.is_active:
            return
        self.status = status
        self.finished_at = utc_now()
        if error is not None:
            self.error = error


class AgentSessionInput(CamelModel):
    """Everything a caller supplies to start a run."""

    messages: List[Mapping[str, Any]] = Field(default_factory=list)
    config: AgentConfig = Field(default_factory=AgentConfig)
    provider: Optional[str] = None
    model: Optional[str] = None
