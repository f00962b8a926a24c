"""Tests for the in-memory session store."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_source
from models.study_models import OptimizationStats, Output, OutputType, SourceStatus
from services.session_store import SessionStore
from utils.exceptions import NotFoundError


class TestSessions:
    def test_create_and_get(self, store: SessionStore):
        session_id = store.create_session()
        session = store.get_session(session_id)

        assert session.id == session_id
        assert session.sources == []
        assert session.outputs == []

    def test_unknown_session_raises(self, store: SessionStore):
        with pytest.raises(NotFoundError) as exc_info:
            store.get_session("missing")

        assert exc_info.value.error_code == "SESSION_NOT_FOUND"
        assert exc_info.value.status_code == 404

    def test_stores_are_isolated(self):
        first = SessionStore()
        second = SessionStore()
        session_id = first.create_session()

        with pytest.raises(NotFoundError):
            second.get_session(session_id)

    def test_list_sessions(self, store: SessionStore):
        store.create_session()
        store.create_session()

        listing = store.list_sessions()
        assert len(listing) == 2
        assert {"session_id", "source_count", "output_count", "created_at"} <= set(listing[0])


class TestSourcesAndOutputs:
    @pytest.mark.asyncio
    async def test_add_and_get_source(self, store: SessionStore):
        session_id = store.create_session()
        source = make_source()
        await store.add_sources(session_id, [source])

        assert store.get_source(session_id, source.id) is source

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self, store: SessionStore):
        session_id = store.create_session()

        with pytest.raises(NotFoundError) as exc_info:
            store.get_source(session_id, "missing")
        assert exc_info.value.error_code == "SOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self, store: SessionStore):
        session_id = store.create_session()
        outputs = [
            Output(type=OutputType.SUMMARY, title=f"Summary {i}", source_id="src")
            for i in range(50)
        ]

        await asyncio.gather(*(store.append_output(session_id, o) for o in outputs))

        stored = store.get_session(session_id).outputs
        assert [o.id for o in stored] == [o.id for o in outputs]

    @pytest.mark.asyncio
    async def test_get_output(self, store: SessionStore):
        session_id = store.create_session()
        output = await store.append_output(
            session_id, Output(type=OutputType.NOTES, title="Notes", source_id="src")
        )

        assert store.get_output(session_id, output.id) is output
        with pytest.raises(NotFoundError):
            store.get_output(session_id, "output-missing")


class TestExtraction:
    @pytest.mark.asyncio
    async def test_text_makes_source_ready_and_clears_optimization(self, store: SessionStore):
        session_id = store.create_session()
        source = make_source(text=None, status=SourceStatus.PROCESSING, name="paper.pdf")
        source.optimized_text = "stale"
        source.optimization_stats = OptimizationStats(
            original_length=10, optimized_length=5, compression_ratio=0.5, processing_cost=0.0, chunk_count=1
        )
        await store.add_sources(session_id, [source])

        updated = await store.set_extracted_text(session_id, source.id, text="three short words")

        assert updated.status == SourceStatus.READY
        assert updated.word_count == 3
        assert updated.optimized_text is None
        assert updated.optimization_stats is None

    @pytest.mark.asyncio
    async def test_error_marks_source_failed(self, store: SessionStore):
        session_id = store.create_session()
        source = make_source(text=None, status=SourceStatus.PROCESSING, name="scan.pdf")
        await store.add_sources(session_id, [source])

        updated = await store.set_extracted_text(session_id, source.id, error="OCR failed")

        assert updated.status == SourceStatus.ERROR
        assert updated.processing_error == "OCR failed"

    @pytest.mark.asyncio
    async def test_blank_text_is_an_error(self, store: SessionStore):
        session_id = store.create_session()
        source = make_source(text=None, status=SourceStatus.PROCESSING, name="blank.pdf")
        await store.add_sources(session_id, [source])

        updated = await store.set_extracted_text(session_id, source.id, text="   ")

        assert updated.status == SourceStatus.ERROR
        assert updated.processing_error
