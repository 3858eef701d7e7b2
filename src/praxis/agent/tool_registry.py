"""
Tool registry for Praxis.

A :class:`ToolRegistry` maps tool names to a descriptor (what the model sees) and, optionally, a
handler (what actually runs).  One registry is built at process start and handed to every
orchestrator, so it is shared mutable state and guards itself with a lock.

Three kinds of entries exist:

* **handled tools** - registered together with a callable ``handler(arguments, context)``;
* **workspace built-ins** (``read_file``, ``list_files``) - descriptor-only placeholders until an
  executor is wired with :meth:`ToolRegistry.wire_executor`;
* **MCP tools** - names starting with ``mcp_``, dispatched to an external hook.
"""

import inspect
import logging
import threading
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    get_type_hints,
)

from praxis.core.schema import AgentToolDescriptor

logger = logging.getLogger(__name__)

MCP_PREFIX = "mcp_"

BUILTIN_WORKSPACE_TOOLS: tuple[AgentToolDescriptor, ...] = (
    AgentToolDescriptor(
        name="read_file",
        description="Read the contents of a file in the workspace.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Workspace-relative file path"},
                "maxLines": {"type": "integer", "description": "Optional line limit"},
            },
            "required": ["path"],
        },
    ),
    AgentToolDescriptor(
        name="list_files",
        description="List files and directories under a workspace path.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to list", "default": "."},
                "recursive": {"type": "boolean", "default": False},
            },
        },
    ),
)

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run."""


class ToolNotFoundError(ToolExecutionError):
    """No tool is registered under the requested name."""


class ToolNotImplementedError(ToolExecutionError):
    """The tool is known but has no executor wired to it."""


@dataclass(frozen=True)
class ToolContext:
    """Call-site information handed to every handler."""

    messages: List[Mapping[str, Any]] = field(default_factory=list)
    tool_call_id: str = ""


ToolHandler = Callable[[Dict[str, Any], ToolContext], Any]
McpExecutor = Callable[[str, Dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class _ToolEntry:
    descriptor: AgentToolDescriptor
    handler: Optional[ToolHandler] = None


def schema_from_signature(fn: Callable) -> Dict[str, Any]:
    """
    Derive a JSON-schema object from *fn*'s keyword parameters.

    The first two positional parameters are the ``(arguments, context)`` pair of a handler and
    are skipped when present; the remaining keyword-only parameters describe the arguments.
    """
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind is not inspect.Parameter.KEYWORD_ONLY:
            continue
        param_type = type_hints.get(param_name)
        properties[param_name] = {"type": _JSON_TYPES.get(param_type, "string")}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class ToolRegistry:
    """Process-wide, name-keyed catalogue of invocable tools."""

    def __init__(self, include_builtins: bool = True) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[str, _ToolEntry] = {}
        self._mcp_executor: Optional[McpExecutor] = None
        if include_builtins:
            for descriptor in BUILTIN_WORKSPACE_TOOLS:
                self.register_tool(descriptor)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def register_tool(
        self, descriptor: AgentToolDescriptor, handler: ToolHandler | None = None
    ) -> bool:
        """
        Register *descriptor* (and optional *handler*) under ``descriptor.name``.

        Registration is idempotent: if the name is already taken the call is a no-op.

        Returns
        -------
        bool
            ``True`` if the tool was added, ``False`` if the name already existed.
        """
        with self._lock:
            if descriptor.name in self._entries:
                logger.debug("Tool '%s' already registered; ignoring", descriptor.name)
                return False
            self._entries[descriptor.name] = _ToolEntry(descriptor=descriptor, handler=handler)
        logger.debug("Registered tool '%s'", descriptor.name)
        return True

    def tool(
        self,
        name: str,
        description: str | None = None,
        input_schema: Dict[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Register a handler with the given name, decorator style::

            @registry.tool("add")
            def add(arguments, context, *, a: int, b: int) -> int:
                "Add two integers."
                return a + b

        The description defaults to the docstring and the input schema is derived from the
        keyword-only parameters.  Handlers declaring keyword-only parameters receive the
        arguments unpacked as well.
        """

        def wrapper(fn: ToolHandler) -> ToolHandler:
            descriptor = AgentToolDescriptor(
                name=name,
                description=description or inspect.getdoc(fn) or "",
                input_schema=input_schema or schema_from_signature(fn),
            )
            self.register_tool(descriptor, _bind_keyword_arguments(fn))
            return fn

        return wrapper

    def wire_executor(self, name: str, handler: ToolHandler) -> None:
        """Attach *handler* to an already registered tool, e.g. a workspace built-in."""
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                raise ToolNotFoundError(f'Tool "{name}" not found')
            self._entries[name] = _ToolEntry(descriptor=entry.descriptor, handler=handler)
        logger.info("Wired executor for tool '%s'", name)

    def set_mcp_executor(self, executor: McpExecutor | None) -> None:
        """Set the hook that runs ``mcp_`` tools (``None`` to unset)."""
        with self._lock:
            self._mcp_executor = executor

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #
    def get_tool_descriptors(self) -> List[AgentToolDescriptor]:
        """Snapshot of all registered descriptors in insertion order."""
        with self._lock:
            return [entry.descriptor for entry in self._entries.values()]

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    async def execute_tool(
        self, name: str, arguments: Dict[str, Any] | None, context: ToolContext
    ) -> Any:
        """
        Resolve *name* and run it with *arguments*.

        Raises
        ------
        ToolNotFoundError
            If no tool is registered under *name*.
        ToolNotImplementedError
            If the tool is a descriptor-only placeholder.

        Exceptions raised by a handler propagate unchanged.
        """
        if arguments is None:
            arguments = {}

        with self._lock:
            entry = self._entries.get(name)
            mcp_executor = self._mcp_executor

        if entry is None:
            raise ToolNotFoundError(f'Tool "{name}" not found')

        if name.startswith(MCP_PREFIX):
            if mcp_executor is None:
                logger.warning("No MCP backend configured; '%s' returns an empty result", name)
                return {"content": [], "isError": False}
            logger.debug("Dispatching MCP tool '%s' with args=%s", name, arguments)
            return await mcp_executor(name, arguments, context)

        if entry.handler is None:
            raise ToolNotImplementedError(f'Tool "{name}" execution not implemented')

        logger.debug("Executing tool '%s' with args=%s", name, arguments)
        result = entry.handler(arguments, context)
        if inspect.isawaitable(result):
            result = await result
        return result


def _bind_keyword_arguments(fn: Callable) -> ToolHandler:
    """Adapt a decorated handler so keyword-only parameters receive the arguments unpacked."""
    sig = inspect.signature(fn)
    if not any(p.kind is inspect.Parameter.KEYWORD_ONLY for p in sig.parameters.values()):
        return fn

    def handler(arguments: Dict[str, Any], context: ToolContext) -> Any:
        # only a failed bind is an argument error; the handler's own TypeErrors propagate
        try:
            bound = sig.bind(arguments, context, **arguments)
        except TypeError as exc:
            raise ToolExecutionError(f"Invalid arguments for tool '{fn.__name__}': {exc}") from exc
        return fn(*bound.args, **bound.kwargs)

    return handler
