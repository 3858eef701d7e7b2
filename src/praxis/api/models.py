"""
Pydantic models for Praxis API requests and streamed annotations.

Streaming runs emit one JSON annotation per line.  The ``type`` field tells the UI how to render
it: ``agentStep`` for every step, then exactly one of ``agentComplete`` or ``agentError``.
``agentPlan`` and ``agentTodoUpdate`` are produced by planning layers that track an
:class:`~praxis.core.plan.AgentPlan` next to the run.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    Field,
    model_validator,
)

from praxis.core.plan import (
    AgentPlan,
    TodoStatus,
)
from praxis.core.schema import (
    AgentMode,
    AgentStep,
    CamelModel,
    TokenUsage,
)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class RunRequest(CamelModel):
    """Start a run from a single message or a full conversation."""

    message: Optional[str] = Field(None, description="User message for Praxis")
    messages: List[Dict[str, Any]] = Field(default_factory=list, description="Prior conversation")
    mode: Optional[AgentMode] = None
    max_steps: Optional[int] = Field(None, ge=0)
    temperature: Optional[float] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    stream_steps: Optional[bool] = None
    tools: Optional[List[str]] = Field(None, description="Tool names to expose; default all")
    provider: Optional[str] = None
    model: Optional[str] = None

    @model_validator(mode="after")
    def _require_input(self) -> "RunRequest":
        if not self.message and not self.messages:
            raise ValueError("either 'message' or 'messages' is required")
        return self

    def conversation(self) -> List[Dict[str, Any]]:
        history = list(self.messages)
        if self.message:
            history.append({"role": "user", "content": self.message})
        return history

    def config_overrides(self) -> Dict[str, Any]:
        fields = ("mode", "max_steps", "temperature", "timeout_ms", "stream_steps")
        return {name: getattr(self, name) for name in fields if getattr(self, name) is not None}


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------
class AgentStepAnnotation(CamelModel):
    type: Literal["agentStep"] = "agentStep"
    step: AgentStep
    step_index: int
    total_steps: int


class AgentCompleteAnnotation(CamelModel):
    type: Literal["agentComplete"] = "agentComplete"
    final_answer: str
    total_steps: int
    usage: Optional[TokenUsage] = None


class AgentErrorAnnotation(CamelModel):
    type: Literal["agentError"] = "agentError"
    error: str
    step_index: Optional[int] = None


class AgentPlanAnnotation(CamelModel):
    type: Literal["agentPlan"] = "agentPlan"
    plan: AgentPlan


class AgentTodoUpdateAnnotation(CamelModel):
    """Status change for one todo; apply with :meth:`AgentPlan.update_todo`."""

    type: Literal["agentTodoUpdate"] = "agentTodoUpdate"
    todo_id: str
    status: TodoStatus
    results: Any = None
    error: Optional[str] = None
    retry_count: Optional[int] = None

    def apply(self, plan: AgentPlan) -> None:
        plan.update_todo(
            self.todo_id,
            self.status,
            results=self.results,
            error=self.error,
            retry_count=self.retry_count,
        )
