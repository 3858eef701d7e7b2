"""
Default tools shipped with Praxis.

Tools are registered on an explicit :class:`~praxis.agent.tool_registry.ToolRegistry` rather than a
global table, so every process decides what its agents may call.  Workspace built-ins such as
``read_file`` are registered by the registry itself as descriptor-only placeholders.
"""

from datetime import (
    datetime,
    timezone,
)
from typing import Any

from praxis.agent.tool_registry import (
    ToolContext,
    ToolRegistry,
)


def register_default_tools(registry: ToolRegistry) -> ToolRegistry:
    """Register the small set of side-effect-free tools on *registry* and return it."""

    @registry.tool("echo")
    def echo_tool(arguments: dict, context: ToolContext, *, text: str) -> str:
        """Echo the input text back to the caller."""
        return text

    @registry.tool("current_time")
    def current_time_tool(arguments: dict, context: ToolContext) -> dict[str, Any]:
        """Return the current UTC date and time in ISO-8601 format."""
        return {"utc": datetime.now(timezone.utc).isoformat()}

    return registry
