"""
Pydantic models for Quick Study sessions.
Sessions own sources and outputs; jobs track long-running generation.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


# Enums for type safety and validation
class SourceType(str, Enum):
    PDF = "pdf"
    TEXT = "text"
    DOCX = "docx"
    IMAGE = "image"
    AUDIO = "audio"
    YOUTUBE = "youtube"
    URL = "url"


class SourceStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class OutputType(str, Enum):
    NOTES = "notes"
    FLASHCARDS = "flashcards"
    QUIZ = "quiz"
    SUMMARY = "summary"
    TIMELINE = "timeline"
    KNOWLEDGE_MAP = "knowledge-map"


class OutputStatus(str, Enum):
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OptimizationStrategy(str, Enum):
    RAW = "raw"
    FULL = "full"
    SAMPLED = "sampled"


class NoteType(str, Enum):
    GENERAL = "general"
    KEY_POINTS = "key-points"
    STRUCTURED = "structured"
    SUMMARY_TABLE = "summary-table"


class SummaryLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    DETAILED = "detailed"


class SummaryFocus(str, Enum):
    KEY_POINTS = "key_points"
    COMPREHENSIVE = "comprehensive"
    CONCLUSIONS = "conclusions"


class EditOperation(str, Enum):
    EXPAND = "expand"
    IMPROVE = "improve"
    SIMPLIFY = "simplify"


class Grade(str, Enum):
    CORRECT = "correct"
    PARTIAL = "partial"
    INCORRECT = "incorrect"


class MergeAction(str, Enum):
    ADD_TO_EXISTING = "add_to_existing"
    CREATE_NEW = "create_new"
    IGNORE = "ignore"


# Session aggregate
class OptimizationStats(BaseModel):
    """Derived statistics for one optimization run"""
    original_length: int = Field(..., ge=0)
    optimized_length: int = Field(..., ge=0)
    compression_ratio: float = Field(..., ge=0.0, le=1.0)
    processing_cost: float = Field(..., ge=0.0)
    chunk_count: int = Field(..., ge=1)
    key_topics: List[str] = []
    strategy: OptimizationStrategy = OptimizationStrategy.RAW
    processed_chunks: int = 0
    fallback_chunks: int = 0


class Source(BaseModel):
    """Uploaded unit of material belonging to one session"""
    id: str
    name: str
    type: SourceType
    subtype: Optional[str] = None
    status: SourceStatus = SourceStatus.PROCESSING
    extracted_text: Optional[str] = None
    optimized_text: Optional[str] = None
    optimization_stats: Optional[OptimizationStats] = None
    word_count: Optional[int] = None
    size: Optional[int] = None
    processing_error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class Output(BaseModel):
    """Generated study artifact"""
    id: str = Field(default_factory=lambda: f"output-{uuid.uuid4().hex[:12]}")
    type: OutputType
    title: str
    preview: str = Field("", max_length=103)
    status: OutputStatus = OutputStatus.READY
    source_id: str
    created_at: datetime = Field(default_factory=_now)
    count: Optional[int] = None
    content: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    placeholder: bool = False


class Session(BaseModel):
    """Ephemeral container for one study task"""
    id: str = Field(default_factory=generate_id)
    sources: List[Source] = []
    outputs: List[Output] = []
    created_at: datetime = Field(default_factory=_now)


class GenerationJob(BaseModel):
    """Polling-visible progress for a long-running generation"""
    id: str = Field(default_factory=generate_id)
    status: JobStatus = JobStatus.QUEUED
    percentage: int = Field(0, ge=0, le=100)
    current_step: str = "queued"
    note_id: Optional[str] = None
    error: Optional[str] = None
    session_id: Optional[str] = None
    source_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


# Generation settings, one variant per kind
class NotesSettings(BaseModel):
    kind: Literal["notes"] = "notes"
    note_type: NoteType = NoteType.GENERAL


class FlashcardsSettings(BaseModel):
    kind: Literal["flashcards"] = "flashcards"
    card_count: int = Field(20, ge=1, le=100)
    difficulty: Literal["easy", "medium", "hard", "mixed"] = "mixed"
    include_categories: bool = True


class QuizSettings(BaseModel):
    kind: Literal["quiz"] = "quiz"
    question_count: int = Field(10, ge=1, le=50)
    difficulty: int = Field(2, ge=1, le=3)
    options_count: int = Field(4, ge=2, le=6)
    time_limit: Optional[int] = Field(None, ge=1, le=240)


class SummarySettings(BaseModel):
    kind: Literal["summary"] = "summary"
    length: SummaryLength = SummaryLength.MEDIUM
    focus: SummaryFocus = SummaryFocus.COMPREHENSIVE
    include_quotes: bool = True


class TimelineSettings(BaseModel):
    kind: Literal["timeline"] = "timeline"
    max_events: int = Field(8, ge=1, le=30)


class KnowledgeMapSettings(BaseModel):
    kind: Literal["knowledge-map"] = "knowledge-map"
    complexity: Literal["simple", "medium", "detailed"] = "medium"
    include_connections: bool = True
    max_nodes: int = Field(20, ge=3, le=50)


GenerationSettings = Annotated[
    Union[
        NotesSettings,
        FlashcardsSettings,
        QuizSettings,
        SummarySettings,
        TimelineSettings,
        KnowledgeMapSettings,
    ],
    Field(discriminator="kind"),
]

SETTINGS_BY_KIND = {
    OutputType.NOTES: NotesSettings,
    OutputType.FLASHCARDS: FlashcardsSettings,
    OutputType.QUIZ: QuizSettings,
    OutputType.SUMMARY: SummarySettings,
    OutputType.TIMELINE: TimelineSettings,
    OutputType.KNOWLEDGE_MAP: KnowledgeMapSettings,
}


def default_settings_for(kind: OutputType) -> BaseModel:
    return SETTINGS_BY_KIND[kind]()


# Uploads and collaborator payloads
class SourceUpload(BaseModel):
    """One file handed to add_sources"""
    name: str
    mime_type: Optional[str] = None
    size: int = 0
    content: bytes = b""


class ContentType(str, Enum):
    TEXT = "text"
    URL = "url"


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


# Grading
class OpenQuestion(BaseModel):
    question: str
    correct_answer: str
    context: Optional[str] = None


class FeedbackItem(BaseModel):
    grade: Grade
    feedback: str
    correct_answer: Optional[str] = None


class GradingStats(BaseModel):
    correct: int = 0
    partial: int = 0
    incorrect: int = 0
    total: int = 0


class GradingResult(BaseModel):
    feedback: List[FeedbackItem]
    stats: GradingStats
    score: int = Field(..., ge=0, le=100)


# Merge proposal
class MergeProposal(BaseModel):
    """Model decision on where highlighted text belongs; never applied automatically"""
    action: MergeAction
    reason: str
    output_id: str
    target_section: Optional[str] = None
    new_section_title: Optional[str] = None
    enhanced_content: Optional[str] = None
