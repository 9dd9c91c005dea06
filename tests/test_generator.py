"""Tests for the LLM text generator and its key failover."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import LLMConfig
from core.generator import CollaboratorError, LLMTextGenerator


def generator_with(keys, outcomes):
    gen = LLMTextGenerator(LLMConfig(api_keys=keys))
    gen._get_client = lambda index: f"client-{index}"
    gen._call_llm = AsyncMock(side_effect=outcomes)
    return gen


@pytest.mark.asyncio
async def test_no_keys_is_unavailable():
    gen = LLMTextGenerator(LLMConfig(api_keys=[]))
    assert not gen.available
    with pytest.raises(CollaboratorError):
        await gen.generate("hi")


@pytest.mark.asyncio
async def test_first_key_used():
    gen = generator_with(["k1", "k2"], ["  Happy birthday! 🎂 "])
    assert await gen.generate("prompt") == "Happy birthday! 🎂"
    assert gen._call_llm.await_args.args == ("client-0", "prompt")


@pytest.mark.asyncio
async def test_fails_over_to_next_key_and_sticks():
    gen = generator_with(["k1", "k2"], [RuntimeError("quota exceeded"), "from k2", "again k2"])

    assert await gen.generate("p") == "from k2"
    assert await gen.generate("p") == "again k2"
    assert [c.args[0] for c in gen._call_llm.await_args_list] == ["client-0", "client-1", "client-1"]


@pytest.mark.asyncio
async def test_all_keys_failing_raises():
    gen = generator_with(["k1", "k2"], [RuntimeError("a"), RuntimeError("b")])
    with pytest.raises(CollaboratorError, match="All 2 LLM key"):
        await gen.generate("p")


@pytest.mark.asyncio
async def test_empty_completion_counts_as_failure():
    gen = generator_with(["k1"], ["   "])
    with pytest.raises(CollaboratorError):
        await gen.generate("p")


@pytest.mark.asyncio
async def test_anthropic_call_shape():
    gen = LLMTextGenerator(LLMConfig(provider="anthropic", model="m", max_tokens=50, api_keys=["k"]))
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[SimpleNamespace(text="hello")]))

    assert await gen._call_llm(client, "p") == "hello"
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "m"
    assert kwargs["messages"] == [{"role": "user", "content": "p"}]


@pytest.mark.asyncio
async def test_openai_call_shape():
    gen = LLMTextGenerator(LLMConfig(provider="openai", model="gpt", api_keys=["k"]))
    client = MagicMock()
    reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="hey"))])
    client.chat.completions.create = AsyncMock(return_value=reply)

    assert await gen._call_llm(client, "p") == "hey"
    assert client.chat.completions.create.await_args.kwargs["model"] == "gpt"
