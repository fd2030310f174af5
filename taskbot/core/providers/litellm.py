"""LiteLLM provider — model calls for the agent loop and executor replay."""

from __future__ import annotations

import json
import os
from typing import Any

import litellm
from langchain_core.messages import AIMessage
from loguru import logger

from taskbot.core.config.schema import Config, ProvidersConfig

litellm.suppress_debug_info = True


def setup_provider(config: Config) -> None:
    """Export configured API keys (``<PROVIDER>_API_KEY``); existing env wins."""
    for name in ProvidersConfig.model_fields:
        key = getattr(config.providers, name).api_key
        if key:
            os.environ.setdefault(f"{name.upper()}_API_KEY", key)


async def achat(
    messages: list[dict[str, Any]],
    model: str,
    tools: list[dict[str, Any]] | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    api_base: str | None = None,
) -> AIMessage:
    """Chat completion as a LangChain AIMessage.

    Never raises: a provider failure comes back as an AIMessage with
    ``finish_reason == "error"`` (see ``is_error``) and the error text as
    content.
    """
    extra: dict[str, Any] = {}
    if tools:
        extra.update(tools=tools, tool_choice="auto")
    if api_base:
        extra["api_base"] = api_base

    try:
        response = await litellm.acompletion(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **extra,
        )
    except Exception as e:
        logger.error(f"LLM call to {model} failed: {e}")
        return AIMessage(
            content=f"Error calling LLM: {e}",
            response_metadata={"finish_reason": "error", "usage": {}},
        )

    choice = response.choices[0]
    return AIMessage(
        content=choice.message.content or "",
        tool_calls=[_tool_call(tc) for tc in (getattr(choice.message, "tool_calls", None) or [])],
        response_metadata={
            "finish_reason": choice.finish_reason or "stop",
            "usage": _usage(response),
        },
    )


async def acomplete(
    prompt: str,
    model: str,
    max_tokens: int = 500,
    temperature: float = 0.0,
) -> tuple[str, dict[str, int]]:
    """Single-prompt completion used by executor replay.

    Returns (text, usage). Raises on provider failure.
    """
    response = await litellm.acompletion(
        model=model,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return response.choices[0].message.content or "", _usage(response)


def is_error(message: AIMessage) -> bool:
    return message.response_metadata.get("finish_reason") == "error"


def _tool_call(tc: Any) -> dict[str, Any]:
    args = tc.function.arguments
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            args = {"raw": args}
    return {"id": tc.id, "name": tc.function.name, "args": args}


def _usage(response: Any) -> dict[str, int]:
    usage = getattr(response, "usage", None)
    return {
        field: getattr(usage, field, 0) or 0
        for field in ("prompt_tokens", "completion_tokens", "total_tokens")
    }
