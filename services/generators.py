"""
Artifact generators: one class per output kind.

Every generator follows the same contract: reject sources that are not
ready, return a labeled placeholder for types without text support, pick
and bound the text, call the provider with a per-kind timeout, then parse
and normalize the response into an Output.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from clients.completion_client import CompletionConfig, CompletionProvider
from models.study_models import (
    FlashcardsSettings,
    KnowledgeMapSettings,
    NotesSettings,
    NoteType,
    Output,
    OutputType,
    QuizSettings,
    Source,
    SourceStatus,
    SourceType,
    SummarySettings,
    TimelineSettings,
)
from prompts.study_prompts import (
    build_flashcards_prompt,
    build_knowledge_map_prompt,
    build_material_context,
    build_notes_prompt,
    build_quiz_prompt,
    build_summary_prompt,
    build_timeline_prompt,
)
from utils.config import Settings, get_settings
from utils.exceptions import SchemaError, ValidationError
from utils.json_parsing import expect_object, list_field, parse_model_json, text_field

logger = logging.getLogger(__name__)

PLACEHOLDER_TYPES = {
    SourceType.DOCX: "DOCX documents are unsupported for now",
    SourceType.IMAGE: "Images are unsupported for now (text recognition is not available)",
    SourceType.AUDIO: "Audio files are unsupported for now (transcription is not available)",
    SourceType.YOUTUBE: "YouTube videos are unsupported for now",
    SourceType.URL: "Web pages are unsupported for now",
}

PREVIEW_LENGTH = 100
OPTION_PREFIX = re.compile(r'^\s*[A-Fa-f][).]\s*')
HEADING = re.compile(r'^#{1,3}\s', re.MULTILINE)
IMPORTANCE_LEVELS = ("low", "medium", "high")


def build_preview(text: str) -> str:
    text = (text or "").strip()
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text


def clean_name(name: str) -> str:
    """Source name without its file extension."""
    return re.sub(r'\.[A-Za-z0-9]{1,5}$', '', name)


def select_text(source: Source, max_chars: int) -> Tuple[str, str]:
    """
    Pick the text to send to the model.

    Returns:
        (text, material_context) where the context tells the model whether
        it sees optimized or truncated material.
    """
    if source.optimized_text:
        text, origin = source.optimized_text, "optimized"
    else:
        text, origin = source.extracted_text or "", "full"

    original_length = len(source.extracted_text or text)
    if len(text) > max_chars:
        text = text[:max_chars]
        if origin == "full":
            origin = "truncated"

    key_topics = source.optimization_stats.key_topics if source.optimization_stats else None
    return text, build_material_context(origin, original_length, len(text), key_topics)


class ArtifactGenerator:
    """Base generator. Subclasses build the prompt and normalize the reply."""

    kind: OutputType
    label: str
    json_mode: bool = False

    def __init__(self, provider: CompletionProvider, settings: Optional[Settings] = None):
        self.provider = provider
        self.settings = settings or get_settings()

    async def generate(self, source: Source, settings: BaseModel) -> Output:
        if source.status != SourceStatus.READY:
            raise ValidationError(
                "Source is not ready for processing",
                error_code="SOURCE_NOT_READY",
                context={"source_id": source.id, "status": source.status.value},
            )

        if source.type in PLACEHOLDER_TYPES:
            return self.placeholder(source, settings)

        if not source.extracted_text or not source.extracted_text.strip():
            raise ValidationError(
                "No text content available for this source",
                error_code="NO_TEXT_CONTENT",
                context={"source_id": source.id},
            )

        text, material_context = select_text(source, self.settings.max_source_chars)
        system, user = self.build_prompt(source, text, settings, material_context)

        logger.info(f"Generating {self.kind.value} for '{source.name}' ({len(text)} chars)")
        raw = await self.provider.complete(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            CompletionConfig(
                model=self.settings.default_model,
                json_mode=self.json_mode,
                timeout=self.settings.timeout_for(self.kind.value),
            ),
        )

        output = self.build_output(source, raw, settings)
        output.settings = settings.model_dump(mode="json")
        logger.info(f"Generated {self.kind.value} '{output.title}' (count={output.count})")
        return output

    def placeholder(self, source: Source, settings: BaseModel) -> Output:
        message = PLACEHOLDER_TYPES[source.type]
        content = f"{message}: {self.label.lower()} cannot be generated from \"{source.name}\" yet."
        return Output(
            type=self.kind,
            title=f"{clean_name(source.name)} - {self.label}",
            preview=build_preview(content),
            source_id=source.id,
            content=content,
            settings=settings.model_dump(mode="json"),
            placeholder=True,
        )

    def build_prompt(self, source: Source, text: str, settings: Any, material_context: str) -> Tuple[str, str]:
        raise NotImplementedError

    def build_output(self, source: Source, raw: str, settings: Any) -> Output:
        raise NotImplementedError

    def parse_object(self, raw: str) -> Dict[str, Any]:
        return expect_object(parse_model_json(raw)).unwrap(context={"kind": self.kind.value})


class NotesGenerator(ArtifactGenerator):
    kind = OutputType.NOTES
    label = "Notes"

    TITLES = {
        NoteType.GENERAL: "Notes",
        NoteType.KEY_POINTS: "Key Points",
        NoteType.STRUCTURED: "Structured Notes",
        NoteType.SUMMARY_TABLE: "Summary Tables",
    }

    def build_prompt(self, source: Source, text: str, settings: NotesSettings, material_context: str):
        return build_notes_prompt(
            text,
            source.name,
            source.type.value,
            settings.note_type.value,
            source.word_count,
            material_context,
        )

    def build_output(self, source: Source, raw: str, settings: NotesSettings) -> Output:
        content = (raw or "").strip()
        if not content:
            raise SchemaError("Model returned empty notes", context={"kind": self.kind.value})
        first_line = content.split("\n", 1)[0].lstrip("#").strip()
        return Output(
            type=self.kind,
            title=f"{self.TITLES[settings.note_type]} - {clean_name(source.name)}",
            preview=build_preview(first_line),
            source_id=source.id,
            count=len(HEADING.findall(content)),
            content=content,
        )


class SummaryGenerator(ArtifactGenerator):
    kind = OutputType.SUMMARY
    label = "Summary"

    def build_prompt(self, source: Source, text: str, settings: SummarySettings, material_context: str):
        return build_summary_prompt(
            text,
            source.name,
            source.type.value,
            settings.length.value,
            settings.focus.value,
            settings.include_quotes,
            source.word_count,
            material_context,
        )

    def build_output(self, source: Source, raw: str, settings: SummarySettings) -> Output:
        content = (raw or "").strip()
        if not content:
            raise SchemaError("Model returned an empty summary", context={"kind": self.kind.value})
        return Output(
            type=self.kind,
            title=f"Summary - {clean_name(source.name)}",
            preview=build_preview(content.split("\n", 1)[0]),
            source_id=source.id,
            content=content,
        )


class FlashcardsGenerator(ArtifactGenerator):
    kind = OutputType.FLASHCARDS
    label = "Flashcards"
    json_mode = True

    def build_prompt(self, source: Source, text: str, settings: FlashcardsSettings, material_context: str):
        return build_flashcards_prompt(
            text,
            source.name,
            source.type.value,
            settings.card_count,
            settings.difficulty,
            settings.include_categories,
            source.word_count,
            material_context,
        )

    def build_output(self, source: Source, raw: str, settings: FlashcardsSettings) -> Output:
        data = self.parse_object(raw)

        cards = []
        for card in list_field(data, "cards"):
            if not isinstance(card, dict):
                continue
            front = text_field(card.get("front"))
            back = text_field(card.get("back"))
            if not front or not back:
                continue
            normalized = {
                "id": f"card{len(cards) + 1}",
                "front": front,
                "back": back,
                "difficulty": text_field(card.get("difficulty"), "medium"),
                "tags": [text_field(t) for t in list_field(card, "tags") if text_field(t)],
            }
            if settings.include_categories:
                normalized["category"] = text_field(card.get("category"), "General")
            cards.append(normalized)

        if not cards:
            raise SchemaError("Model returned no usable flashcards", context={"kind": self.kind.value})

        categories = sorted({c["category"] for c in cards if c.get("category")})
        content = {
            "title": text_field(data.get("title"), f"Flashcards - {clean_name(source.name)}"),
            "description": text_field(data.get("description")),
            "cards": cards,
            "total_cards": len(cards),
            "categories": categories,
        }
        return Output(
            type=self.kind,
            title=f"Flashcards - {clean_name(source.name)}",
            preview=build_preview(f"{len(cards)} flashcards for active recall"),
            source_id=source.id,
            count=len(cards),
            content=json.dumps(content, ensure_ascii=False),
        )


class QuizGenerator(ArtifactGenerator):
    kind = OutputType.QUIZ
    label = "Quiz"
    json_mode = True

    def build_prompt(self, source: Source, text: str, settings: QuizSettings, material_context: str):
        return build_quiz_prompt(
            text,
            source.name,
            source.type.value,
            settings.question_count,
            settings.difficulty,
            settings.options_count,
            settings.time_limit,
            source.word_count,
            material_context,
        )

    @staticmethod
    def match_correct_answer(answer: str, options: List[str]) -> str:
        """Exact match, then case-insensitive, then the first option."""
        if answer in options:
            return answer
        lowered = answer.strip().lower()
        for option in options:
            if option.lower() == lowered:
                return option
        return options[0]

    def build_output(self, source: Source, raw: str, settings: QuizSettings) -> Output:
        data = self.parse_object(raw)

        questions = []
        for item in list_field(data, "questions"):
            if not isinstance(item, dict):
                continue
            question = text_field(item.get("question"))
            if not question:
                continue
            options = [OPTION_PREFIX.sub("", text_field(option)).strip() for option in list_field(item, "options")]
            options = [o for o in options if o][:settings.options_count]
            if len(options) < 2:
                logger.warning(f"Dropping quiz question with {len(options)} option(s)")
                continue

            answer = OPTION_PREFIX.sub("", text_field(item.get("correct_answer"))).strip()
            correct = self.match_correct_answer(answer, options)
            if correct != answer:
                logger.warning(f"Quiz answer '{answer}' not among options, using '{correct}'")

            explanation = text_field(item.get("explanation"))
            if not explanation:
                logger.warning(f"Quiz question {len(questions) + 1} has no explanation, keeping it without one")

            questions.append({
                "id": f"q{len(questions) + 1}",
                "question": question,
                "options": options,
                "correct_answer": correct,
                "explanation": explanation,
                "difficulty": text_field(item.get("difficulty"), "medium"),
            })

        if not questions:
            raise SchemaError("Model returned no valid quiz questions", context={"kind": self.kind.value})

        content = {
            "title": text_field(data.get("title"), f"Quiz - {clean_name(source.name)}"),
            "description": text_field(data.get("description")),
            "questions": questions,
            "time_limit": settings.time_limit,
            "passing_score": 70,
            "total_questions": len(questions),
        }
        return Output(
            type=self.kind,
            title=f"Quiz - {clean_name(source.name)}",
            preview=build_preview(f"{len(questions)} interactive questions with explanations"),
            source_id=source.id,
            count=len(questions),
            content=json.dumps(content, ensure_ascii=False),
        )


class TimelineGenerator(ArtifactGenerator):
    kind = OutputType.TIMELINE
    label = "Timeline"
    json_mode = True

    def build_prompt(self, source: Source, text: str, settings: TimelineSettings, material_context: str):
        return build_timeline_prompt(text, source.name, settings.max_events, material_context)

    @staticmethod
    def _sequence(event: Dict[str, Any], fallback: int) -> float:
        try:
            return float(event.get("sequence"))
        except (TypeError, ValueError):
            return float(fallback)

    def build_output(self, source: Source, raw: str, settings: TimelineSettings) -> Output:
        data = self.parse_object(raw)

        events: List[Dict[str, Any]] = []
        if data.get("has_sequence", True) is not False:
            raw_events = [
                (i, e) for i, e in enumerate(list_field(data, "events"))
                if isinstance(e, dict) and text_field(e.get("title"))
            ]
            raw_events.sort(key=lambda pair: (self._sequence(pair[1], pair[0] + 1), pair[0]))
            for position, (_, event) in enumerate(raw_events[:settings.max_events], start=1):
                importance = text_field(event.get("importance"), "medium")
                events.append({
                    "id": f"event{position}",
                    "title": text_field(event.get("title")),
                    "description": text_field(event.get("description")),
                    "sequence": position,
                    "category": text_field(event.get("category"), "General"),
                    "importance": importance if importance in IMPORTANCE_LEVELS else "medium",
                })

        if events:
            preview = f"Timeline of {len(events)} stages"
        else:
            preview = "No sequential structure found in this material"

        content = {
            "title": text_field(data.get("title"), f"Timeline - {clean_name(source.name)}"),
            "description": text_field(data.get("description")),
            "events": events,
            "total_events": len(events),
            "categories": sorted({e["category"] for e in events}),
        }
        return Output(
            type=self.kind,
            title=f"Timeline - {clean_name(source.name)}",
            preview=build_preview(preview),
            source_id=source.id,
            count=len(events),
            content=json.dumps(content, ensure_ascii=False),
        )


class KnowledgeMapGenerator(ArtifactGenerator):
    kind = OutputType.KNOWLEDGE_MAP
    label = "Knowledge Map"
    json_mode = True

    EDGE_TYPES = ("hierarchy", "relation")

    def build_prompt(self, source: Source, text: str, settings: KnowledgeMapSettings, material_context: str):
        return build_knowledge_map_prompt(
            text,
            source.name,
            source.type.value,
            settings.complexity,
            settings.include_connections,
            settings.max_nodes,
            source.word_count,
            material_context,
        )

    @staticmethod
    def _level(value: Any) -> int:
        """0 = main topic, 1 = category, 2 = concept."""
        try:
            return max(0, min(2, int(value)))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _coordinate(value: Any) -> float:
        if isinstance(value, bool):
            return 0.0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def build_output(self, source: Source, raw: str, settings: KnowledgeMapSettings) -> Output:
        data = self.parse_object(raw)

        nodes: List[Dict[str, Any]] = []
        seen = set()
        for index, node in enumerate(list_field(data, "nodes")):
            if not isinstance(node, dict):
                continue
            node_id = text_field(node.get("id"), f"node{index + 1}")
            if node_id in seen:
                node_id = f"node{index + 1}"
            seen.add(node_id)
            importance = text_field(node.get("importance"), "medium")
            nodes.append({
                "id": node_id,
                "title": text_field(node.get("title"), f"Concept {index + 1}"),
                "level": self._level(node.get("level")),
                "category": text_field(node.get("category"), "General"),
                "importance": importance if importance in IMPORTANCE_LEVELS else "medium",
                "connections": [text_field(c) for c in list_field(node, "connections") if text_field(c)],
                "x": self._coordinate(node.get("x")),
                "y": self._coordinate(node.get("y")),
            })
            if len(nodes) == settings.max_nodes:
                break

        if not nodes:
            raise SchemaError("Model returned no knowledge map nodes", context={"kind": self.kind.value})

        node_ids = {n["id"] for n in nodes}
        for node in nodes:
            node["connections"] = [c for c in node["connections"] if c in node_ids and c != node["id"]]

        edges = []
        dropped = 0
        for edge in list_field(data, "edges"):
            if not isinstance(edge, dict):
                dropped += 1
                continue
            start, end = text_field(edge.get("from")), text_field(edge.get("to"))
            if start not in node_ids or end not in node_ids:
                dropped += 1
                continue
            edge_type = text_field(edge.get("type"), "hierarchy")
            edges.append({
                "from": start,
                "to": end,
                "type": edge_type if edge_type in self.EDGE_TYPES else "hierarchy",
            })
        if dropped:
            logger.warning(f"Dropped {dropped} knowledge map edge(s) pointing at unknown nodes")

        content = {
            "title": text_field(data.get("title"), f"Knowledge Map - {clean_name(source.name)}"),
            "description": text_field(data.get("description")),
            "nodes": nodes,
            "edges": edges,
            "total_concepts": len(nodes),
            "categories": list(dict.fromkeys(n["category"] for n in nodes)),
        }
        return Output(
            type=self.kind,
            title=f"Knowledge Map - {clean_name(source.name)}",
            preview=build_preview(f"{len(nodes)} interactive concepts with connections"),
            source_id=source.id,
            count=len(nodes),
            content=json.dumps(content, ensure_ascii=False),
        )


GENERATORS = {
    OutputType.NOTES: NotesGenerator,
    OutputType.FLASHCARDS: FlashcardsGenerator,
    OutputType.QUIZ: QuizGenerator,
    OutputType.SUMMARY: SummaryGenerator,
    OutputType.TIMELINE: TimelineGenerator,
    OutputType.KNOWLEDGE_MAP: KnowledgeMapGenerator,
}


def get_generator(kind: OutputType, provider: CompletionProvider, settings: Optional[Settings] = None) -> ArtifactGenerator:
    return GENERATORS[kind](provider, settings)
