"""
Model callers for Praxis.

This module is the only place that *directly* calls an LLM.  The orchestrator only sees the
:class:`ModelCaller` protocol: given a message list and sampling options, return the raw text of
one step plus optional token usage.

We support three back-ends out of the box:

1. **OpenAI** and **Anthropic** via their async SDKs (require API keys).
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.

Additional providers can be added by implementing :class:`ModelCaller` and registering via
:func:`register_model_caller`.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Dict,
    List,
    Mapping,
    Protocol,
    Sequence,
    Type,
    Union,
)

import httpx

from praxis.config import settings
from praxis.core.schema import TokenUsage

logger = logging.getLogger(__name__)

Message = Mapping[str, Any]


class ModelCallError(RuntimeError):
    """Raised when the model cannot be called (credentials, transport, provider errors)."""


@dataclass
class ModelResponse:
    """Raw output of one model call.

    ``text`` is either the full response or an async iterable of fragments.
    """

    text: Union[str, AsyncIterable[str]]
    usage: TokenUsage | None = None


class ModelCaller(Protocol):
    """Anything the orchestrator can await for one step of model output."""

    async def __call__(
        self,
        messages: Sequence[Message],
        *,
        temperature: float,
        max_tokens: int,
        cancel_event: asyncio.Event,
    ) -> ModelResponse: ...


async def collect_text(text: Union[str, AsyncIterable[str]]) -> str:
    """Join a streamed response into a single string."""
    if isinstance(text, str):
        return text
    parts: List[str] = []
    async for fragment in text:
        parts.append(fragment)
    return "".join(parts)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CALLER_REGISTRY: dict[str, Type["BaseModelCaller"]] = {}


def register_model_caller(name: str) -> Callable:
    """Decorator to register a model caller class under *name*."""

    def wrapper(cls: Type["BaseModelCaller"]) -> Type["BaseModelCaller"]:
        _CALLER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model_caller(name: str | None = None, model: str | None = None) -> "BaseModelCaller":
    """
    Factory that returns an instantiated model caller.

    Fallback order:
    1. *name* arg
    2. ``settings.MODEL_PROVIDER`` env option
    """
    target = (name or settings.MODEL_PROVIDER).lower()
    cls = _CALLER_REGISTRY.get(target)
    if cls is None:
        raise ValueError(f"Model provider '{target}' is not registered.")
    return cls(model=model)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseModelCaller:
    """Shared plumbing for the built-in providers."""

    default_model: str = ""

    def __init__(self, model: str | None = None) -> None:
        self.model = model or self.default_model

    async def __call__(
        self,
        messages: Sequence[Message],
        *,
        temperature: float,
        max_tokens: int,
        cancel_event: asyncio.Event,
    ) -> ModelResponse:
        if cancel_event.is_set():
            raise asyncio.CancelledError()
        try:
            return await self._complete(list(messages), temperature, max_tokens)
        except ModelCallError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("%s call failed: %s", type(self).__name__, exc)
            raise ModelCallError(f"Error calling {type(self).__name__}: {exc}") from exc

    async def _complete(
        self, messages: List[Message], temperature: float, max_tokens: int
    ) -> ModelResponse:
        raise NotImplementedError


def _split_system(messages: List[Message]) -> tuple[str, List[Dict[str, Any]]]:
    """Separate system messages (joined) from the conversation turns."""
    system = "\n\n".join(str(m["content"]) for m in messages if m.get("role") == "system")
    turns = [
        {"role": m["role"], "content": m["content"]} for m in messages if m.get("role") != "system"
    ]
    return system, turns


# ---------------------------------------------------------------------------
# Concrete callers
# ---------------------------------------------------------------------------
@register_model_caller("openai")
class OpenAIModelCaller(BaseModelCaller):
    """OpenAI chat completions in JSON mode."""

    default_model = settings.OPENAI_MODEL

    async def _complete(
        self, messages: List[Message], temperature: float, max_tokens: int
    ) -> ModelResponse:
        if not settings.OPENAI_API_KEY:
            raise ModelCallError("OPENAI_API_KEY is not configured")

        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        resp = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": m["role"], "content": m["content"]} for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )

        content = resp.choices[0].message.content or ""
        logger.debug("OpenAI response: %s", content)
        usage = None
        if resp.usage is not None:
            usage = TokenUsage(
                prompt_tokens=resp.usage.prompt_tokens,
                completion_tokens=resp.usage.completion_tokens,
                total_tokens=resp.usage.total_tokens,
            )
        return ModelResponse(text=content, usage=usage)


@register_model_caller("anthropic")
class AnthropicModelCaller(BaseModelCaller):
    """Anthropic Claude messages API."""

    default_model = settings.ANTHROPIC_MODEL

    async def _complete(
        self, messages: List[Message], temperature: float, max_tokens: int
    ) -> ModelResponse:
        if not settings.ANTHROPIC_API_KEY:
            raise ModelCallError("ANTHROPIC_API_KEY is not configured")

        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        system, turns = _split_system(messages)
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=turns,
            temperature=temperature,
        )

        # Only text blocks carry the JSON step
        content = "".join(block.text for block in response.content if block.type == "text")
        logger.debug("Anthropic response: %s", content)
        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        return ModelResponse(text=content, usage=usage)


@register_model_caller("tgi")
class TGIModelCaller(BaseModelCaller):
    """TGI endpoint over httpx; the conversation is flattened into one prompt."""

    async def _complete(
        self, messages: List[Message], temperature: float, max_tokens: int
    ) -> ModelResponse:
        system, turns = _split_system(messages)
        transcript = "\n\n".join(f"{m['role'].capitalize()}: {m['content']}" for m in turns)
        payload = {
            "inputs": f"{system}\n\n{transcript}\n\nAssistant:",
            "parameters": {
                "max_new_tokens": max_tokens,
                "temperature": max(temperature, 0.01),  # TGI rejects 0
                "stop": ["User:", "</s>"],
            },
        }

        async with httpx.AsyncClient(timeout=60.0) as client:
            resp = await client.post(settings.TGI_ENDPOINT, json=payload)
            resp.raise_for_status()
            content = resp.json()["generated_text"]

        logger.debug("TGI response: %s", content)
        return ModelResponse(text=content)
