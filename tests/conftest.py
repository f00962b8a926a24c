"""Pytest fixtures and configuration."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest

from clients import redis_client
from clients.completion_client import CompletionConfig, CompletionProvider
from models.study_models import Source, SourceStatus, SourceType, generate_id
from services.job_tracker import JobTracker
from services.session_store import SessionStore
from services.study_service import StudyService
from utils.config import Settings

Scripted = Union[str, Exception, Callable[[List[Dict[str, str]], CompletionConfig], str]]


class FakeCompletionProvider(CompletionProvider):
    """
    Scripted provider.

    `responses` are consumed in call order; each is a string, an exception to
    raise, or a callable taking (messages, config). `responder` answers every
    call once the script is empty. `stream_tokens` feeds complete_stream.
    """

    def __init__(
        self,
        responses: Optional[List[Scripted]] = None,
        responder: Optional[Callable[[List[Dict[str, str]], CompletionConfig], str]] = None,
        stream_tokens: Optional[List[Union[str, Exception]]] = None,
        delay: float = 0.0,
    ):
        self.responses = list(responses or [])
        self.responder = responder
        self.stream_tokens = list(stream_tokens or [])
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []
        self.stream_closed = False

    async def complete(self, messages, config: CompletionConfig) -> str:
        self.calls.append({"messages": messages, "config": config})
        if self.responses:
            item = self.responses.pop(0)
        elif self.responder is not None:
            item = self.responder
        else:
            raise AssertionError("Unexpected provider call")

        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(messages, config)
        return item

    async def complete_stream(self, messages, config: CompletionConfig) -> AsyncIterator[str]:
        self.stream_calls.append({"messages": messages, "config": config})
        try:
            for token in self.stream_tokens:
                if isinstance(token, Exception):
                    raise token
                yield token
        finally:
            self.stream_closed = True


@pytest.fixture
def settings() -> Settings:
    """Isolated settings: no env file, no backoff, short timeouts."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        retry_backoff_seconds=0.0,
        stream_chunk_timeout_seconds=1.0,
        job_timeout_seconds=5.0,
        redis_url=None,
    )


@pytest.fixture
def provider() -> FakeCompletionProvider:
    return FakeCompletionProvider()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def jobs() -> JobTracker:
    return JobTracker()


@pytest.fixture
def service(store, jobs, provider, settings) -> StudyService:
    return StudyService(store=store, jobs=jobs, provider=provider, settings=settings)


@pytest.fixture(autouse=True)
def no_redis(monkeypatch) -> Dict[str, AsyncMock]:
    """Chat history cache is always disabled in tests."""
    mocks = {
        "get_chat_history": AsyncMock(return_value=None),
        "push_messages": AsyncMock(return_value=False),
        "clear_chat": AsyncMock(return_value=False),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(redis_client, name, mock)
    return mocks


def make_source(
    text: Optional[str] = "Cells are the basic unit of life. Every organism is made of cells.",
    source_type: SourceType = SourceType.TEXT,
    status: SourceStatus = SourceStatus.READY,
    name: str = "biology.txt",
) -> Source:
    return Source(
        id=generate_id(),
        name=name,
        type=source_type,
        status=status,
        extracted_text=text,
        word_count=len(text.split()) if text else None,
    )


def study_text(paragraphs: int = 12) -> str:
    """Long, well-formed study text with no low-value lines."""
    topics = [
        "Mitochondria produce most of the chemical energy needed by the cell.",
        "Photosynthesis converts light energy into chemical energy in plants.",
        "Enzymes are proteins that speed up chemical reactions in living things.",
        "The Nucleus stores genetic information and controls cell activities.",
        "Ribosomes assemble proteins by reading messenger molecules from genes.",
        "Osmosis moves water across membranes from low to high concentration.",
    ]
    lines = []
    for i in range(paragraphs):
        sentence = topics[i % len(topics)]
        lines.append(f"{sentence} Paragraph {i + 1} explains this idea with several supporting details for students.")
    return "\n\n".join(lines)
