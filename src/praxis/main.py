"""
Praxis entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API or interactive CLI).
"""

import argparse
import asyncio
import logging
import sys
from contextlib import aclosing
from typing import (
    Any,
    Dict,
    List,
    Tuple,
)

from praxis.agent.model_caller import (
    ModelCallError,
    load_model_caller,
)
from praxis.agent.orchestrator import (
    AgentOrchestrator,
    TimeoutExceededError,
)
from praxis.agent.tool_registry import ToolRegistry
from praxis.common import (
    AnsiColors,
    colored_print,
    print_step,
)
from praxis.config import settings
from praxis.core.schema import (
    AgentConfig,
    AgentSessionInput,
    FinalStep,
)
from praxis.tools import register_default_tools

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        return input().strip(), True
    except (EOFError, KeyboardInterrupt):
        return "", False


async def _run_turn(
    orchestrator: AgentOrchestrator, session_input: AgentSessionInput
) -> str | None:
    """Stream one run to the terminal and return its final answer, if any."""
    answer = None
    async with aclosing(orchestrator.run(session_input)) as steps:
        async for step in steps:
            print_step(step)
            if isinstance(step, FinalStep) and not step.error:
                answer = step.final_answer
    return answer


def run_cli(max_steps: int, provider: str | None) -> None:
    """Interactive shell: each message starts a new run over the running conversation."""
    registry = register_default_tools(ToolRegistry())
    orchestrator = AgentOrchestrator(registry, model_caller=load_model_caller(provider))
    history: List[Dict[str, Any]] = []

    colored_print("🔮  Praxis shell - type 'exit' to quit, Ctrl+C to stop a run.", AnsiColors.YELLOW)
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        history.append({"role": "user", "content": user_msg})
        config = AgentConfig.from_settings(
            tools=registry.get_tool_descriptors(), max_steps=max_steps
        )
        try:
            answer = asyncio.run(
                _run_turn(orchestrator, AgentSessionInput(messages=history, config=config))
            )
        except KeyboardInterrupt:
            orchestrator.cancel()
            colored_print("⏹  Run cancelled.", AnsiColors.RED)
            continue
        except (ModelCallError, TimeoutExceededError) as exc:
            colored_print(f"⚠️ {exc}", AnsiColors.RED)
            continue

        if answer is not None:
            history.append({"role": "assistant", "content": answer})


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Praxis application.

    Sets up the command-line interface, initializes logging, and starts either the API server or
    the interactive shell.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the Praxis agent orchestrator")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API or an interactive shell (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=settings.AGENT_MAX_STEPS,
        help="Step limit per run in CLI mode (default: %(default)s)",
    )
    parser.add_argument(
        "--provider",
        choices=["openai", "anthropic", "tgi"],
        default=None,
        help="Model provider (default from env: MODEL_PROVIDER)",
    )
    args = parser.parse_args(argv)

    settings.LOG_LEVEL = args.log_level
    if args.provider:
        settings.MODEL_PROVIDER = args.provider
    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Praxis [%s mode]", args.mode)
    secrets = {"OPENAI_API_KEY", "ANTHROPIC_API_KEY"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    if args.mode == "api":
        # Lazy import to avoid web dependencies if not needed
        from praxis.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
    else:
        run_cli(max_steps=args.max_steps, provider=args.provider)


if __name__ == "__main__":
    main()
