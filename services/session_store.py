"""
In-memory session registry.

Each session owns its sources and outputs. The store is an explicit object
(one per app, or one per test) rather than module state, and every mutation
of a session runs under that session's asyncio.Lock so interleaved
generator completions cannot drop appends.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from models.study_models import OptimizationStats, Output, Session, Source, SourceStatus
from utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class SessionStore:
    """Process-lifetime session registry. A restart loses everything."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def create_session(self) -> str:
        session = Session()
        self._sessions[session.id] = session
        self._locks[session.id] = asyncio.Lock()
        logger.info(f"Created session {session.id}")
        return session.id

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(
                "Session not found",
                error_code="SESSION_NOT_FOUND",
                context={"session_id": session_id},
            )
        return session

    def get_source(self, session_id: str, source_id: str) -> Source:
        session = self.get_session(session_id)
        for source in session.sources:
            if source.id == source_id:
                return source
        raise NotFoundError(
            "Source not found",
            error_code="SOURCE_NOT_FOUND",
            context={"session_id": session_id, "source_id": source_id},
        )

    def get_output(self, session_id: str, output_id: str) -> Output:
        session = self.get_session(session_id)
        for output in session.outputs:
            if output.id == output_id:
                return output
        raise NotFoundError(
            "Output not found",
            error_code="OUTPUT_NOT_FOUND",
            context={"session_id": session_id, "output_id": output_id},
        )

    async def add_sources(self, session_id: str, sources: List[Source]) -> List[Source]:
        session = self.get_session(session_id)
        async with self._locks[session_id]:
            session.sources.extend(sources)
        logger.info(f"Session {session_id}: added {len(sources)} source(s), total {len(session.sources)}")
        return sources

    async def append_output(self, session_id: str, output: Output) -> Output:
        session = self.get_session(session_id)
        async with self._locks[session_id]:
            session.outputs.append(output)
        logger.info(f"Session {session_id}: appended {output.type.value} output {output.id} ({len(session.outputs)} total)")
        return output

    async def set_extracted_text(
        self,
        session_id: str,
        source_id: str,
        text: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Source:
        """Record the extraction collaborator's result for a source."""
        source = self.get_source(session_id, source_id)
        async with self._locks[session_id]:
            if error or not (text and text.strip()):
                source.status = SourceStatus.ERROR
                source.processing_error = error or "No text could be extracted"
            else:
                source.extracted_text = text
                source.word_count = len(text.split())
                source.status = SourceStatus.READY
                source.processing_error = None
                # Any previous optimization described different text
                source.optimized_text = None
                source.optimization_stats = None
        return source

    async def set_optimization(
        self,
        session_id: str,
        source_id: str,
        optimized_text: str,
        stats: OptimizationStats,
    ) -> Source:
        source = self.get_source(session_id, source_id)
        async with self._locks[session_id]:
            source.optimized_text = optimized_text
            source.optimization_stats = stats
        return source

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Debug summary of every live session."""
        return [
            {
                "session_id": session.id,
                "source_count": len(session.sources),
                "output_count": len(session.outputs),
                "created_at": session.created_at,
            }
            for session in self._sessions.values()
        ]
