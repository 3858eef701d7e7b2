"""
Plan and todo models maintained by consumers of the step stream.

The orchestrator never touches a plan; a UI or planning layer creates one up front and applies
status updates as tool results land.  Todos form a forest through ``parent_id``.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    Field,
    model_validator,
)

from praxis.core.schema import (
    CamelModel,
    utc_now,
)


class TodoStatus(str, Enum):
    """Status of an individual todo item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TodoPriority(str, Enum):
    """Priority level for todo items."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_TERMINAL = {TodoStatus.COMPLETED, TodoStatus.FAILED}


class AgentTodo(CamelModel):
    """A single todo item in a plan."""

    id: str
    title: str
    description: Optional[str] = None
    status: TodoStatus = TodoStatus.PENDING
    priority: TodoPriority = TodoPriority.MEDIUM
    parent_id: Optional[str] = None
    results: Any = None
    retry_count: Optional[int] = Field(None, ge=0)
    created_at: str = Field(default_factory=utc_now)
    completed_at: Optional[str] = None
    error: Optional[str] = None


class AgentPlan(CamelModel):
    """Overall plan containing all todos."""

    todos: List[AgentTodo] = Field(default_factory=list)
    estimated_steps: int = Field(0, ge=0)
    strategy: str = ""
    created_at: str = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_forest(self) -> "AgentPlan":
        ids = [todo.id for todo in self.todos]
        if len(ids) != len(set(ids)):
            raise ValueError("todo ids must be unique within a plan")
        known = set(ids)
        for todo in self.todos:
            if todo.parent_id is not None and todo.parent_id not in known:
                raise ValueError(f"todo '{todo.id}' references unknown parent '{todo.parent_id}'")
        return self

    # ------------------------------------------------------------------ #
    # Forest view
    # ------------------------------------------------------------------ #
    def root_todos(self) -> List[AgentTodo]:
        """Todos without a parent, in plan order."""
        return [todo for todo in self.todos if todo.parent_id is None]

    def children_of(self, todo_id: str) -> List[AgentTodo]:
        """Direct children of *todo_id*, in plan order."""
        return [todo for todo in self.todos if todo.parent_id == todo_id]

    def get_todo(self, todo_id: str) -> AgentTodo:
        for todo in self.todos:
            if todo.id == todo_id:
                return todo
        raise KeyError(todo_id)

    # ------------------------------------------------------------------ #
    # Progress
    # ------------------------------------------------------------------ #
    @property
    def completed_count(self) -> int:
        return sum(1 for todo in self.todos if todo.status is TodoStatus.COMPLETED)

    @property
    def progress_percent(self) -> int:
        """Share of completed todos, rounded to a whole percent (0 for an empty plan)."""
        total = len(self.todos)
        if total == 0:
            return 0
        # round half up
        return int(self.completed_count * 100 / total + 0.5)

    def update_todo(
        self,
        todo_id: str,
        status: TodoStatus | str,
        results: Any = None,
        error: str | None = None,
        retry_count: int | None = None,
    ) -> AgentTodo:
        """
        Apply a status update to a todo and return it.

        Terminal statuses (``completed``/``failed``) stamp ``completed_at``.

        Raises
        ------
        KeyError
            If *todo_id* is not part of this plan.
        """
        todo = self.get_todo(todo_id)
        todo.status = TodoStatus(status)
        if results is not None:
            todo.results = results
        if error is not None:
            todo.error = error
        if retry_count is not None:
            todo.retry_count = retry_count
        if todo.status in _TERMINAL:
            todo.completed_at = utc_now()
        return todo

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
