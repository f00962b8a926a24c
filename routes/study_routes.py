"""
FastAPI routes for Quick Study sessions.
Sessions, sources, optimization, generation, jobs and SSE streams.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from models.study_models import (
    ChatMessage,
    EditOperation,
    GenerationSettings,
    NotesSettings,
    OpenQuestion,
    OutputType,
    SourceUpload,
    default_settings_for,
)
from services.study_service import StudyService
from services.streaming import error_event
from utils.model_config import ModelConfig

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["quick-study"])


@lru_cache
def get_study_service() -> StudyService:
    """Process-wide service instance; tests override this dependency."""
    return StudyService()


def _sse_event(data: Dict[str, Any]) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data, default=str)}\n\n"


def _sse_response(events) -> StreamingResponse:
    """Wrap service events as SSE. A client disconnect closes the event source."""
    async def event_generator():
        try:
            async for event in events:
                yield _sse_event(event)
        except Exception as e:
            logger.error(f"SSE stream error: {e}", exc_info=True)
            yield _sse_event(error_event(e))
        finally:
            await events.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream")


# ─── Request bodies ───────────────────────────────────────────────────────────

class AddContentRequest(BaseModel):
    type: str
    content: str
    title: Optional[str] = None


class ExtractedTextRequest(BaseModel):
    text: Optional[str] = None
    error: Optional[str] = None


class OptimizeRequest(BaseModel):
    source_id: str
    force_reoptimize: bool = False


class GenerateRequest(BaseModel):
    source_id: str
    settings: Optional[GenerationSettings] = None


class DocumentNotesRequest(BaseModel):
    source_id: str
    settings: Optional[NotesSettings] = None


class ChatRequest(BaseModel):
    source_id: str
    message: str
    history: Optional[List[ChatMessage]] = None


class SectionEditRequest(BaseModel):
    operation: EditOperation
    content: str
    context: Optional[str] = None


class MergeRequest(BaseModel):
    output_id: str
    selected_text: str
    surrounding_context: str = ""


class CheckAnswersRequest(BaseModel):
    questions: List[OpenQuestion] = Field(..., min_length=1)
    answers: List[str]


# ─── Sessions and sources ─────────────────────────────────────────────────────

@router.post("/sessions", status_code=201)
async def create_session(service: StudyService = Depends(get_study_service)):
    session_id = service.create_session()
    return {"session_id": session_id, "message": "Session created"}


@router.get("/sessions")
async def list_sessions(service: StudyService = Depends(get_study_service)):
    """Debug listing of live sessions."""
    sessions = service.list_sessions()
    return {"sessions": sessions, "count": len(sessions)}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, service: StudyService = Depends(get_study_service)):
    session = service.get_session(session_id)
    return {
        "session_id": session.id,
        "sources": session.sources,
        "outputs": session.outputs,
        "created_at": session.created_at,
    }


@router.post("/sessions/{session_id}/sources", status_code=201)
async def add_sources(
    session_id: str,
    files: List[UploadFile] = File(...),
    service: StudyService = Depends(get_study_service),
):
    """
    Upload one or more files into a session.

    Text and Markdown become ready immediately. PDFs stay "processing" until
    the extraction service posts their text. Empty files are skipped.
    """
    uploads = []
    for upload in files:
        content = await upload.read()
        uploads.append(SourceUpload(
            name=upload.filename or "untitled",
            mime_type=upload.content_type,
            size=len(content),
            content=content,
        ))

    sources = await service.add_sources(session_id, uploads)
    return {"sources": sources, "count": len(sources)}


@router.post("/sessions/{session_id}/content", status_code=201)
async def add_content(
    session_id: str,
    body: AddContentRequest,
    service: StudyService = Depends(get_study_service),
):
    """Add pasted text ("text") or a link ("url") as a source without uploading a file."""
    source = await service.add_content(session_id, body.type, body.content, body.title)
    return {"source": source}


@router.post("/sessions/{session_id}/sources/{source_id}/extracted-text")
async def set_extracted_text(
    session_id: str,
    source_id: str,
    body: ExtractedTextRequest,
    service: StudyService = Depends(get_study_service),
):
    """Callback for the extraction service: post text or an error."""
    source = await service.set_extracted_text(session_id, source_id, text=body.text, error=body.error)
    return {"source": source}


# ─── Optimization ─────────────────────────────────────────────────────────────

@router.post("/sessions/{session_id}/optimize")
async def optimize_source(
    session_id: str,
    body: OptimizeRequest,
    service: StudyService = Depends(get_study_service),
):
    return await service.optimize_source(session_id, body.source_id, force_reoptimize=body.force_reoptimize)


@router.get("/sessions/{session_id}/optimization")
async def optimization_status(session_id: str, service: StudyService = Depends(get_study_service)):
    return service.optimization_status(session_id)


# ─── Generation ───────────────────────────────────────────────────────────────

@router.post("/sessions/{session_id}/generate/{kind}", status_code=201)
async def generate(
    session_id: str,
    kind: OutputType,
    body: GenerateRequest,
    service: StudyService = Depends(get_study_service),
):
    """
    Generate one study artifact from a ready source.

    Settings are a tagged union on "kind"; omitting them uses the defaults
    for the requested kind.
    """
    settings = body.settings or default_settings_for(kind)
    output = await service.generate(session_id, body.source_id, kind, settings)
    return {"output": output}


@router.post("/sessions/{session_id}/notes/jobs", status_code=202)
async def start_document_notes(
    session_id: str,
    body: DocumentNotesRequest,
    service: StudyService = Depends(get_study_service),
):
    job = service.start_document_notes(session_id, body.source_id, body.settings)
    return {"job_id": job.id, "status": job.status}


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str, service: StudyService = Depends(get_study_service)):
    job = service.get_job_status(job_id)
    return {
        "job_id": job.id,
        "status": job.status,
        "percentage": job.percentage,
        "current_step": job.current_step,
        "note_id": job.note_id,
        "error": job.error,
    }


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, service: StudyService = Depends(get_study_service)):
    job = service.cancel_job(job_id)
    return {"job_id": job.id, "status": job.status, "cancel_requested": service.jobs.is_cancel_requested(job_id)}


# ─── Streaming ────────────────────────────────────────────────────────────────

@router.post("/sessions/{session_id}/chat/stream")
async def chat_stream(
    session_id: str,
    body: ChatRequest,
    service: StudyService = Depends(get_study_service),
):
    """
    Stream an answer about one source as SSE.

    Events: chunk (content), then exactly one of complete (full_content) or
    error. Validation errors are returned before the stream opens.
    """
    service.prepare_chat(session_id, body.source_id, body.message)
    events = service.chat_stream(session_id, body.source_id, body.message, body.history)
    return _sse_response(events)


@router.delete("/sessions/{session_id}/chat/{source_id}")
async def clear_chat(session_id: str, source_id: str, service: StudyService = Depends(get_study_service)):
    cleared = await service.clear_chat(session_id, source_id)
    return {"cleared": cleared}


@router.post("/sessions/{session_id}/notes/edit/stream")
async def edit_section_stream(
    session_id: str,
    body: SectionEditRequest,
    service: StudyService = Depends(get_study_service),
):
    """Stream an expanded, improved or simplified version of a note section."""
    service.prepare_section_edit(session_id, body.content)
    events = service.edit_section_stream(session_id, body.operation, body.content, body.context)
    return _sse_response(events)


# ─── Merge proposal and grading ───────────────────────────────────────────────

@router.post("/sessions/{session_id}/notes/merge")
async def propose_merge(
    session_id: str,
    body: MergeRequest,
    service: StudyService = Depends(get_study_service),
):
    """Propose where highlighted text belongs in a note. Nothing is applied."""
    proposal = await service.propose_merge(
        session_id,
        body.output_id,
        body.selected_text,
        body.surrounding_context,
    )
    return {"proposal": proposal}


@router.post("/tests/check-answers")
async def check_answers(body: CheckAnswersRequest, service: StudyService = Depends(get_study_service)):
    return await service.grade_answers(body.questions, body.answers)


@router.get("/models")
async def list_models():
    models = []
    for key in ModelConfig.get_available_models():
        config = ModelConfig.get_config(key)
        models.append({
            "key": key,
            "provider": config["provider"].value,
            "model": config["model"],
            "max_tokens": config["max_tokens"],
            "cost_per_1k_input": config["cost_per_1k_input"],
            "cost_per_1k_output": config["cost_per_1k_output"],
        })
    return {"models": models}
