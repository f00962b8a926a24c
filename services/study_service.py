"""
Quick Study orchestration.

StudyService wires the session store, job tracker, completion provider,
optimizer, generators and grader into the operations the HTTP layer
exposes. It holds no module-level state: the app builds one instance and
tests build their own.
"""

import asyncio
import logging
import re
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel

from clients import redis_client
from clients.completion_client import CompletionConfig, CompletionProvider, LLMCompletionProvider
from models.study_models import (
    ChatMessage,
    ContentType,
    EditOperation,
    GenerationJob,
    GradingResult,
    MergeAction,
    MergeProposal,
    NotesSettings,
    OpenQuestion,
    Output,
    OutputType,
    Source,
    SourceStatus,
    SourceType,
    SourceUpload,
    default_settings_for,
    generate_id,
)
from prompts.study_prompts import (
    build_chat_system_prompt,
    build_merge_prompt,
    build_notes_outline_prompt,
    build_notes_section_prompt,
    build_section_edit_prompt,
)
from services.generators import (
    HEADING,
    PLACEHOLDER_TYPES,
    NotesGenerator,
    build_preview,
    clean_name,
    get_generator,
    select_text,
)
from services.grading import OpenEndedGrader
from services.job_tracker import TERMINAL_STATES, JobTracker
from services.session_store import SessionStore
from services.streaming import error_event, relay_stream
from services.text_optimizer import TextOptimizer, preprocess_text
from utils.config import Settings, get_settings
from utils.exceptions import GenerationError, QuickStudyError, SchemaError, ValidationError
from utils.json_parsing import expect_object, list_field, parse_model_json, text_field
from utils.model_config import estimate_savings

logger = logging.getLogger(__name__)

EXTENSION_TYPES = {
    "pdf": SourceType.PDF,
    "txt": SourceType.TEXT,
    "md": SourceType.TEXT,
    "markdown": SourceType.TEXT,
    "doc": SourceType.DOCX,
    "docx": SourceType.DOCX,
    "jpg": SourceType.IMAGE,
    "jpeg": SourceType.IMAGE,
    "png": SourceType.IMAGE,
    "gif": SourceType.IMAGE,
    "webp": SourceType.IMAGE,
    "mp3": SourceType.AUDIO,
    "wav": SourceType.AUDIO,
    "m4a": SourceType.AUDIO,
}

URL_TYPES = [
    (("youtube.com", "youtu.be"), "youtube"),
    (("twitter.com", "x.com"), "twitter"),
    (("linkedin.com",), "linkedin"),
    (("github.com",), "github"),
]

MAX_OUTLINE_SECTIONS = 6
SECTION_HEADING = re.compile(r'^#{1,3}\s+(.+?)\s*$', re.MULTILINE)


def infer_source_type(name: str, mime_type: Optional[str] = None) -> SourceType:
    """Infer the source type from the file name, then the MIME type."""
    lowered = name.strip().lower()
    if "youtube.com" in lowered or "youtu.be" in lowered:
        return SourceType.YOUTUBE
    if lowered.startswith(("http://", "https://")):
        return SourceType.URL

    extension = lowered.rsplit(".", 1)[-1] if "." in lowered else ""
    if extension in EXTENSION_TYPES:
        return EXTENSION_TYPES[extension]

    mime = (mime_type or "").lower()
    if mime == "application/pdf":
        return SourceType.PDF
    if "wordprocessingml" in mime or mime == "application/msword":
        return SourceType.DOCX
    if mime.startswith("image/"):
        return SourceType.IMAGE
    if mime.startswith("audio/"):
        return SourceType.AUDIO
    return SourceType.TEXT


def detect_url_type(host: str) -> str:
    host = host.lower()
    for domains, url_type in URL_TYPES:
        if any(host == d or host.endswith("." + d) for d in domains):
            return url_type
    return "website"


def derive_url_title(url: str, url_type: str) -> str:
    parsed = urlparse(url)
    if url_type == "youtube":
        video_id = parse_qs(parsed.query).get("v", [None])[0]
        if not video_id and parsed.netloc.lower().endswith("youtu.be"):
            video_id = parsed.path.strip("/") or None
        return f"YouTube: {video_id or 'Video'}"
    domain = parsed.netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return f"{domain[:1].upper()}{domain[1:]} Content"


def derive_text_title(text: str) -> str:
    """First line when it reads like a title, otherwise the first 8 words."""
    first_line = text.split("\n", 1)[0].strip()
    if 5 < len(first_line) <= 100:
        return first_line
    words = text.split()[:8]
    return " ".join(words) + ("..." if len(words) == 8 else "")


def split_note_sections(content: str) -> List[Dict[str, str]]:
    """Split Markdown notes into {title, preview} per heading."""
    matches = list(SECTION_HEADING.finditer(content or ""))
    sections = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        body = content[match.end():end].strip()
        sections.append({"title": match.group(1).strip(), "preview": body[:200]})
    return sections


class StudyService:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        jobs: Optional[JobTracker] = None,
        provider: Optional[CompletionProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or SessionStore()
        self.jobs = jobs or JobTracker()
        self.provider = provider or LLMCompletionProvider(self.settings)
        self.optimizer = TextOptimizer(self.provider, self.settings)
        self.grader = OpenEndedGrader(self.provider, self.settings)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    # ================================================================
    # Sessions and sources
    # ================================================================

    def create_session(self) -> str:
        return self.store.create_session()

    def get_session(self, session_id: str):
        return self.store.get_session(session_id)

    def list_sessions(self) -> List[Dict[str, Any]]:
        return self.store.list_sessions()

    async def add_sources(self, session_id: str, uploads: List[SourceUpload]) -> List[Source]:
        self.store.get_session(session_id)

        sources = []
        for upload in uploads:
            size = upload.size or len(upload.content)
            if size == 0:
                logger.info(f"Skipping empty file '{upload.name}'")
                continue

            source = Source(
                id=generate_id(),
                name=upload.name,
                type=infer_source_type(upload.name, upload.mime_type),
                size=size,
            )

            if size > self.settings.max_upload_bytes:
                source.status = SourceStatus.ERROR
                source.processing_error = f"File exceeds the upload limit of {self.settings.max_upload_bytes:,} bytes"
            elif source.type == SourceType.TEXT:
                text = upload.content.decode("utf-8", errors="replace")
                if text.strip():
                    source.extracted_text = text
                    source.word_count = len(text.split())
                    source.status = SourceStatus.READY
                else:
                    source.status = SourceStatus.ERROR
                    source.processing_error = "File contains no text"
            elif source.type in PLACEHOLDER_TYPES:
                # Generators return a labeled placeholder for these
                source.status = SourceStatus.READY
            # PDFs wait for the extraction callback

            sources.append(source)

        if sources:
            await self.store.add_sources(session_id, sources)
        return sources

    async def add_content(
        self,
        session_id: str,
        content_type: str,
        content: str,
        title: Optional[str] = None,
    ) -> Source:
        """
        Add a source without a file upload.

        Args:
            content_type: "text" for pasted text, "url" for a web or YouTube link
            content: the pasted text or the URL
            title: display name; derived from the content when omitted
        """
        self.store.get_session(session_id)
        try:
            kind = ContentType(str(content_type or "").strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid content type: {content_type!r}",
                error_code="INVALID_CONTENT_TYPE",
                context={"allowed": [c.value for c in ContentType]},
            )
        if not content or not content.strip():
            raise ValidationError("Content cannot be empty", error_code="EMPTY_CONTENT")

        if kind == ContentType.TEXT:
            source = self._pasted_text_source(content, title)
        else:
            source = self._url_source(content.strip(), title)

        await self.store.add_sources(session_id, [source])
        logger.info(f"Added {source.type.value} content '{source.name}' to session {session_id}")
        return source

    def _pasted_text_source(self, text: str, title: Optional[str]) -> Source:
        text = text.strip()
        if len(text) < self.settings.min_pasted_chars:
            raise ValidationError(
                f"Text is too short (minimum {self.settings.min_pasted_chars} characters)",
                error_code="TEXT_TOO_SHORT",
                context={"length": len(text)},
            )
        size = len(text.encode("utf-8"))
        if len(text) > self.settings.max_pasted_chars:
            logger.warning(f"Pasted text of {len(text):,} chars truncated to {self.settings.max_pasted_chars:,}")
            text = text[:self.settings.max_pasted_chars] + "\n\n[Content truncated]"

        cleaned = preprocess_text(text)
        return Source(
            id=generate_id(),
            name=(title or "").strip() or derive_text_title(cleaned),
            type=SourceType.TEXT,
            subtype="pasted",
            status=SourceStatus.READY,
            extracted_text=cleaned,
            word_count=len(cleaned.split()),
            size=size,
        )

    def _url_source(self, url: str, title: Optional[str]) -> Source:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid URL format", error_code="INVALID_URL", context={"url": url})

        subtype = detect_url_type(parsed.netloc)
        # No fetching: URL sources take the placeholder path in every generator
        return Source(
            id=generate_id(),
            name=(title or "").strip() or derive_url_title(url, subtype),
            type=SourceType.YOUTUBE if subtype == "youtube" else SourceType.URL,
            subtype=subtype,
            status=SourceStatus.READY,
        )

    async def set_extracted_text(
        self,
        session_id: str,
        source_id: str,
        text: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Source:
        source = await self.store.set_extracted_text(session_id, source_id, text=text, error=error)
        logger.info(f"Source {source_id} extraction finished: {source.status.value}")
        return source

    # ================================================================
    # Optimization
    # ================================================================

    def _require_text(self, source: Source) -> None:
        if source.status != SourceStatus.READY:
            raise ValidationError(
                "Source is not ready for processing",
                error_code="SOURCE_NOT_READY",
                context={"source_id": source.id, "status": source.status.value},
            )
        if not source.extracted_text or not source.extracted_text.strip():
            raise ValidationError(
                "No text content available for this source",
                error_code="NO_TEXT_CONTENT",
                context={"source_id": source.id},
            )

    async def optimize_source(
        self,
        session_id: str,
        source_id: str,
        force_reoptimize: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        source = self.store.get_source(session_id, source_id)
        self._require_text(source)

        if source.optimization_stats is not None and not force_reoptimize:
            logger.info(f"Source {source_id} already optimized, returning cached stats")
            stats = source.optimization_stats
            already_optimized = True
        else:
            result = await self.optimizer.optimize(source.extracted_text, source.name, cancel_event=cancel_event)
            await self.store.set_optimization(session_id, source_id, result.optimized_text, result.stats)
            stats = result.stats
            already_optimized = False

        return {
            "source_id": source_id,
            "already_optimized": already_optimized,
            "stats": stats,
            "savings": estimate_savings(stats.original_length, stats.optimized_length, self.settings.default_model),
        }

    def optimization_status(self, session_id: str) -> Dict[str, Any]:
        session = self.store.get_session(session_id)

        sources = []
        total_original = 0
        total_optimized = 0
        total_cost = 0.0
        for source in session.sources:
            stats = source.optimization_stats
            entry = {
                "source_id": source.id,
                "name": source.name,
                "status": source.status,
                "optimized": stats is not None,
                "original_length": len(source.extracted_text or ""),
                "optimized_length": None,
                "compression_ratio": None,
                "processing_cost": None,
                "key_topics": [],
            }
            if stats is not None:
                entry.update({
                    "original_length": stats.original_length,
                    "optimized_length": stats.optimized_length,
                    "compression_ratio": stats.compression_ratio,
                    "processing_cost": stats.processing_cost,
                    "key_topics": stats.key_topics,
                })
                total_original += stats.original_length
                total_optimized += stats.optimized_length
                total_cost += stats.processing_cost
            sources.append(entry)

        return {
            "session_id": session_id,
            "sources": sources,
            "totals": {
                "optimized_sources": sum(1 for s in sources if s["optimized"]),
                "original_length": total_original,
                "optimized_length": total_optimized,
                "compression_ratio": round(total_optimized / total_original, 4) if total_original else None,
                "processing_cost": round(total_cost, 6),
            },
        }

    # ================================================================
    # Generation
    # ================================================================

    async def generate(
        self,
        session_id: str,
        source_id: str,
        kind: OutputType,
        settings: Optional[BaseModel] = None,
    ) -> Output:
        source = self.store.get_source(session_id, source_id)
        settings = settings or default_settings_for(kind)
        if settings.kind != kind.value:
            raise ValidationError(
                f"Settings for '{settings.kind}' cannot be used to generate '{kind.value}'",
                error_code="SETTINGS_KIND_MISMATCH",
            )

        generator = get_generator(kind, self.provider, self.settings)
        output = await generator.generate(source, settings)
        return await self.store.append_output(session_id, output)

    # ================================================================
    # Document-notes job
    # ================================================================

    def get_job_status(self, job_id: str) -> GenerationJob:
        return self.jobs.get_job(job_id)

    def start_document_notes(
        self,
        session_id: str,
        source_id: str,
        settings: Optional[NotesSettings] = None,
    ) -> GenerationJob:
        source = self.store.get_source(session_id, source_id)
        if source.status != SourceStatus.READY:
            raise ValidationError(
                "Source is not ready for processing",
                error_code="SOURCE_NOT_READY",
                context={"source_id": source_id, "status": source.status.value},
            )

        job = self.jobs.create_job(session_id, source_id)
        cancel_event = asyncio.Event()
        self._cancel_events[job.id] = cancel_event
        task = asyncio.create_task(
            self._run_document_notes(job.id, session_id, source_id, settings or NotesSettings(), cancel_event)
        )
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    def cancel_job(self, job_id: str) -> GenerationJob:
        job = self.jobs.request_cancel(job_id)
        event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()
        return job

    async def wait_for_job(self, job_id: str) -> GenerationJob:
        """Await the background task behind a job, if it is still running."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return self.jobs.get_job(job_id)

    def _fail_job(self, job_id: str, reason: str) -> None:
        if self.jobs.get_job(job_id).status not in TERMINAL_STATES:
            self.jobs.fail(job_id, reason)

    async def _run_document_notes(
        self,
        job_id: str,
        session_id: str,
        source_id: str,
        settings: NotesSettings,
        cancel_event: asyncio.Event,
    ) -> None:
        try:
            await asyncio.wait_for(
                self._document_notes_pipeline(job_id, session_id, source_id, settings, cancel_event),
                timeout=self.settings.job_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._fail_job(job_id, f"Notes generation timed out after {self.settings.job_timeout_seconds:g}s")
        except QuickStudyError as e:
            self._fail_job(job_id, e.message)
        except Exception as e:
            logger.error(f"Document notes job {job_id} crashed: {e}", exc_info=True)
            self._fail_job(job_id, f"Unexpected error: {e}")
        finally:
            self._cancel_events.pop(job_id, None)

    async def _document_notes_pipeline(
        self,
        job_id: str,
        session_id: str,
        source_id: str,
        settings: NotesSettings,
        cancel_event: asyncio.Event,
    ) -> None:
        def checkpoint() -> None:
            if cancel_event.is_set():
                raise GenerationError("Notes generation was cancelled", error_code="JOB_CANCELLED")

        self.jobs.start(job_id, "extracting", 5)
        source = self.store.get_source(session_id, source_id)

        if source.type in PLACEHOLDER_TYPES:
            output = NotesGenerator(self.provider, self.settings).placeholder(source, settings)
            await self.store.append_output(session_id, output)
            self.jobs.complete(job_id, note_id=output.id)
            return

        self._require_text(source)
        text, _ = select_text(source, self.settings.max_source_chars)
        checkpoint()

        self.jobs.update_progress(job_id, 15, "analyzing")
        title, sections = await self._build_outline(text, source.name)
        checkpoint()

        self.jobs.update_progress(job_id, 30, "generating sections")
        section_titles = [s["title"] for s in sections]
        finished = 0

        async def write_section(section: Dict[str, str]) -> str:
            nonlocal finished
            system, user = build_notes_section_prompt(
                text, title, section["title"], section["description"], section_titles
            )
            try:
                return await self.provider.complete(
                    [{"role": "system", "content": system}, {"role": "user", "content": user}],
                    CompletionConfig(model=self.settings.default_model, timeout=self.settings.timeout_for("notes")),
                )
            finally:
                finished += 1
                if not cancel_event.is_set():
                    self.jobs.update_progress(
                        job_id,
                        30 + int(60 * finished / len(sections)),
                        f"generating sections ({finished}/{len(sections)})",
                    )

        results = await asyncio.gather(*(write_section(s) for s in sections), return_exceptions=True)
        checkpoint()

        parts = [f"# {title}"]
        failed = 0
        for section, result in zip(sections, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception) or not str(result).strip():
                failed += 1
                reason = result.message if isinstance(result, QuickStudyError) else str(result) or "empty response"
                logger.warning(f"Job {job_id}: section '{section['title']}' failed: {reason}")
                body = f"> This section could not be generated ({reason}). Try regenerating the notes."
            else:
                body = str(result).strip()
            parts.append(f"## {section['title']}\n\n{body}")

        if failed == len(sections):
            raise GenerationError("Every note section failed to generate")

        self.jobs.update_progress(job_id, 95, "saving")
        content = "\n\n".join(parts)
        output = Output(
            type=OutputType.NOTES,
            title=title,
            preview=build_preview(title),
            source_id=source_id,
            count=len(HEADING.findall(content)),
            content=content,
            settings=settings.model_dump(mode="json"),
        )
        await self.store.append_output(session_id, output)
        self.jobs.complete(job_id, note_id=output.id)

    async def _build_outline(self, text: str, source_name: str) -> Tuple[str, List[Dict[str, str]]]:
        """Plan the note sections. An unusable plan becomes a single section."""
        fallback_title = clean_name(source_name)
        system, user = build_notes_outline_prompt(text, source_name, MAX_OUTLINE_SECTIONS)
        raw = await self.provider.complete(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            CompletionConfig(
                model=self.settings.default_model,
                json_mode=True,
                timeout=self.settings.timeout_for("notes"),
            ),
        )

        parsed = expect_object(parse_model_json(raw))
        sections: List[Dict[str, str]] = []
        title = fallback_title
        if parsed.ok:
            title = text_field(parsed.data.get("title"), fallback_title)
            for item in list_field(parsed.data, "sections"):
                if isinstance(item, dict) and text_field(item.get("title")):
                    sections.append({
                        "title": text_field(item.get("title")),
                        "description": text_field(item.get("description")),
                    })

        if not sections:
            logger.warning(f"Unusable notes outline for '{source_name}', using a single section")
            return title, [{"title": "Overview", "description": "Complete study notes covering the whole material"}]
        return title, sections[:MAX_OUTLINE_SECTIONS]

    # ================================================================
    # Streaming
    # ================================================================

    def prepare_chat(self, session_id: str, source_id: str, message: str) -> Source:
        """Validate a chat request before any stream is opened."""
        source = self.store.get_source(session_id, source_id)
        self._require_text(source)
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty", error_code="EMPTY_MESSAGE")
        return source

    async def chat_stream(
        self,
        session_id: str,
        source_id: str,
        message: str,
        history: Optional[List[ChatMessage]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        try:
            source = self.prepare_chat(session_id, source_id, message)
        except QuickStudyError as e:
            yield error_event(e)
            return

        if history is None:
            cached = await redis_client.get_chat_history(session_id, source_id)
            history = [ChatMessage.model_validate(m) for m in cached or []]

        text, material_context = select_text(source, self.settings.max_source_chars)
        system = build_chat_system_prompt(source.name, source.type.value, source.word_count, material_context)
        messages = [{"role": "system", "content": f"{system}\n\nSOURCE TEXT:\n{text}"}]
        messages.extend(
            {"role": m.role, "content": m.content}
            for m in history[-self.settings.max_cached_messages:]
        )
        messages.append({"role": "user", "content": message})

        tokens = self.provider.complete_stream(
            messages,
            CompletionConfig(model=self.settings.default_model, timeout=self.settings.stream_chunk_timeout_seconds),
        )

        full_content = None
        async with aclosing(relay_stream(tokens, self.settings.stream_chunk_timeout_seconds, cancel_event)) as events:
            async for event in events:
                if event["type"] == "complete":
                    full_content = event["full_content"]
                yield event

        if full_content is not None:
            await redis_client.push_messages(session_id, source_id, [
                {"role": "user", "content": message},
                {"role": "assistant", "content": full_content},
            ])

    async def clear_chat(self, session_id: str, source_id: str) -> bool:
        self.store.get_source(session_id, source_id)
        return await redis_client.clear_chat(session_id, source_id)

    def prepare_section_edit(self, session_id: str, content: str) -> None:
        self.store.get_session(session_id)
        if not content or not content.strip():
            raise ValidationError("Content to edit cannot be empty", error_code="EMPTY_CONTENT")

    async def edit_section_stream(
        self,
        session_id: str,
        operation: EditOperation,
        content: str,
        context: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        try:
            self.prepare_section_edit(session_id, content)
        except QuickStudyError as e:
            yield error_event(e, operation=operation.value)
            return

        system, user = build_section_edit_prompt(operation.value, content, context)
        tokens = self.provider.complete_stream(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            CompletionConfig(
                model=self.settings.default_model,
                temperature=0.7,
                max_tokens=2000,
                timeout=self.settings.stream_chunk_timeout_seconds,
            ),
        )
        relay = relay_stream(
            tokens,
            self.settings.stream_chunk_timeout_seconds,
            cancel_event,
            operation=operation.value,
        )
        async with aclosing(relay) as events:
            async for event in events:
                yield event

    # ================================================================
    # Merge proposal and grading
    # ================================================================

    async def propose_merge(
        self,
        session_id: str,
        output_id: str,
        selected_text: str,
        surrounding_context: str = "",
    ) -> MergeProposal:
        """Ask the model where highlighted text belongs. The output is never modified."""
        output = self.store.get_output(session_id, output_id)
        if output.type != OutputType.NOTES:
            raise ValidationError(
                "Text can only be merged into notes",
                error_code="NOT_A_NOTE",
                context={"output_id": output_id, "type": output.type.value},
            )
        if not selected_text or not selected_text.strip():
            raise ValidationError("Selected text cannot be empty", error_code="EMPTY_SELECTION")

        sections = split_note_sections(output.content or "")
        system, user = build_merge_prompt(selected_text.strip(), surrounding_context or "", sections)
        raw = await self.provider.complete(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            CompletionConfig(
                model=self.settings.default_model,
                temperature=0.3,
                json_mode=True,
                timeout=self.settings.default_timeout_seconds,
            ),
        )
        data = expect_object(parse_model_json(raw)).unwrap(context={"phase": "merge"})

        try:
            action = MergeAction(text_field(data.get("action")))
        except ValueError:
            raise SchemaError(
                f"Unknown merge action: {data.get('action')!r}",
                context={"phase": "merge"},
            )

        reason = text_field(data.get("reason"), "No reason given")
        enhanced = text_field(data.get("enhanced_content")) or None
        target = None
        new_title = None

        if action == MergeAction.ADD_TO_EXISTING:
            wanted = text_field(data.get("target_section")).lower()
            target = next((s["title"] for s in sections if s["title"].lower() == wanted), None)
            if target is None:
                logger.info(f"Merge target '{wanted}' not found in note {output_id}, proposing a new section")
                action = MergeAction.CREATE_NEW
                new_title = text_field(data.get("target_section"), "Additional Notes")
        elif action == MergeAction.CREATE_NEW:
            new_title = text_field(data.get("new_section_title"), "Additional Notes")
        else:
            enhanced = None

        return MergeProposal(
            action=action,
            reason=reason,
            output_id=output_id,
            target_section=target,
            new_section_title=new_title,
            enhanced_content=enhanced,
        )

    async def grade_answers(self, questions: List[OpenQuestion], answers: List[str]) -> GradingResult:
        return await self.grader.grade(questions, answers)
