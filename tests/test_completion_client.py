"""Tests for the provider-dispatching completion client."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from clients.completion_client import CompletionConfig, LLMCompletionProvider
from utils.exceptions import UpstreamError, ValidationError

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hi"},
]


@pytest.fixture
def llm(settings) -> LLMCompletionProvider:
    return LLMCompletionProvider(settings)


class TestComplete:
    @pytest.mark.asyncio
    async def test_transient_error_is_retried_once(self, llm):
        llm._call_model = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        result = await llm.complete(MESSAGES, CompletionConfig(model="gpt-4o-mini"))

        assert result == "ok"
        assert llm._call_model.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, llm):
        llm._call_model = AsyncMock(side_effect=ConnectionError("reset"))

        with pytest.raises(UpstreamError) as exc_info:
            await llm.complete(MESSAGES, CompletionConfig(model="gpt-4o-mini"))

        assert exc_info.value.error_code == "UPSTREAM_FAILED"
        assert exc_info.value.status_code == 502
        assert llm._call_model.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, llm):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return "late"

        llm._call_model = AsyncMock(side_effect=slow)

        with pytest.raises(UpstreamError) as exc_info:
            await llm.complete(MESSAGES, CompletionConfig(model="gpt-4o-mini", timeout=0.05))

        assert exc_info.value.error_code == "UPSTREAM_TIMEOUT"
        assert exc_info.value.status_code == 504
        assert llm._call_model.await_count == 1

    @pytest.mark.asyncio
    async def test_other_errors_are_wrapped_immediately(self, llm):
        llm._call_model = AsyncMock(side_effect=ValueError("bad payload"))

        with pytest.raises(UpstreamError) as exc_info:
            await llm.complete(MESSAGES, CompletionConfig(model="gpt-4o-mini"))

        assert "bad payload" in exc_info.value.message
        assert llm._call_model.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_model_is_a_validation_error(self, llm):
        with pytest.raises(ValidationError) as exc_info:
            await llm.complete(MESSAGES, CompletionConfig(model="no-such-model"))
        assert exc_info.value.error_code == "INVALID_MODEL"


class TestStream:
    @pytest.mark.asyncio
    async def test_tokens_are_forwarded(self, llm):
        async def fake_stream(name, messages, model_config, config):
            assert name == "openai"
            for token in ["Hel", "lo"]:
                yield token

        llm._stream_openai_compatible = fake_stream

        tokens = [t async for t in llm.complete_stream(MESSAGES, CompletionConfig(model="gpt-4o"))]
        assert tokens == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_stream_errors_are_wrapped(self, llm):
        async def broken_stream(messages, model_config, config):
            yield "partial"
            raise RuntimeError("socket closed")

        llm._stream_claude = broken_stream

        received = []
        with pytest.raises(UpstreamError):
            async for token in llm.complete_stream(MESSAGES, CompletionConfig(model="claude-haiku-4-5")):
                received.append(token)
        assert received == ["partial"]


class TestHelpers:
    def test_split_system_for_anthropic(self):
        system, chat = LLMCompletionProvider._split_system(MESSAGES, json_mode=True)

        assert system.startswith("Be brief.")
        assert "JSON" in system
        assert chat == [{"role": "user", "content": "Hi"}]
