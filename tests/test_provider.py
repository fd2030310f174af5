"""Tests for the litellm provider wrapper."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from taskbot.core.providers import litellm as llm_provider

ACOMPLETION = "taskbot.core.providers.litellm.litellm.acompletion"


def _response(content="hello", tool_calls=None, finish_reason="stop"):
    msg = SimpleNamespace(content=content, tool_calls=tool_calls)
    choice = SimpleNamespace(finish_reason=finish_reason, message=msg)
    usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15)
    return SimpleNamespace(choices=[choice], usage=usage)


def _tool_call(args):
    return SimpleNamespace(id="c1", function=SimpleNamespace(name="web_fetch", arguments=args))


@pytest.mark.asyncio
async def test_achat_basic():
    with patch(ACOMPLETION, new_callable=AsyncMock, return_value=_response()) as acompletion:
        msg = await llm_provider.achat([{"role": "user", "content": "hi"}], model="openai/gpt-4o")

    assert msg.content == "hello"
    assert msg.tool_calls == []
    assert msg.response_metadata["usage"]["prompt_tokens"] == 10
    assert not llm_provider.is_error(msg)
    assert "tools" not in acompletion.await_args.kwargs


@pytest.mark.asyncio
async def test_achat_tool_calls():
    response = _response(content=None, tool_calls=[_tool_call('{"url": "https://x.com"}')],
                         finish_reason="tool_calls")
    tools = [{"type": "function", "function": {"name": "web_fetch", "parameters": {}}}]
    with patch(ACOMPLETION, new_callable=AsyncMock, return_value=response) as acompletion:
        msg = await llm_provider.achat([], model="m", tools=tools, api_base="http://local")

    assert msg.content == ""
    assert msg.tool_calls[0]["name"] == "web_fetch"
    assert msg.tool_calls[0]["args"] == {"url": "https://x.com"}
    assert acompletion.await_args.kwargs["tool_choice"] == "auto"
    assert acompletion.await_args.kwargs["api_base"] == "http://local"


@pytest.mark.asyncio
async def test_achat_bad_tool_arguments_kept_raw():
    response = _response(tool_calls=[_tool_call("{not json")])
    with patch(ACOMPLETION, new_callable=AsyncMock, return_value=response):
        msg = await llm_provider.achat([], model="m")
    assert msg.tool_calls[0]["args"] == {"raw": "{not json"}


@pytest.mark.asyncio
async def test_achat_error_is_flagged():
    with patch(ACOMPLETION, new_callable=AsyncMock, side_effect=RuntimeError("rate limit")):
        msg = await llm_provider.achat([], model="m")
    assert llm_provider.is_error(msg)
    assert "rate limit" in msg.content


@pytest.mark.asyncio
async def test_acomplete_returns_text_and_usage():
    with patch(ACOMPLETION, new_callable=AsyncMock, return_value=_response("summary")) as acompletion:
        text, usage = await llm_provider.acomplete("Summarize", "cheap", max_tokens=100)
    assert text == "summary"
    assert usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
    assert acompletion.await_args.kwargs["max_tokens"] == 100


@pytest.mark.asyncio
async def test_acomplete_raises_on_failure():
    with patch(ACOMPLETION, new_callable=AsyncMock, side_effect=RuntimeError("down")):
        with pytest.raises(RuntimeError):
            await llm_provider.acomplete("x", "cheap")


def test_setup_provider_sets_missing_keys(monkeypatch):
    from taskbot.core.config import Config

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
    cfg = Config(providers={"openai": {"api_key": "sk-openai"}, "anthropic": {"api_key": "sk-cfg"}})
    llm_provider.setup_provider(cfg)

    import os

    assert os.environ["OPENAI_API_KEY"] == "sk-openai"
    assert os.environ["ANTHROPIC_API_KEY"] == "from-env"
