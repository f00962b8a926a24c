"""Tests for the artifact generators."""

from __future__ import annotations

import json
import logging

import pytest

from conftest import FakeCompletionProvider, make_source
from models.study_models import (
    FlashcardsSettings,
    KnowledgeMapSettings,
    NotesSettings,
    NoteType,
    OutputStatus,
    OutputType,
    QuizSettings,
    SourceStatus,
    SourceType,
    SummarySettings,
    TimelineSettings,
)
from services.generators import (
    FlashcardsGenerator,
    KnowledgeMapGenerator,
    NotesGenerator,
    QuizGenerator,
    SummaryGenerator,
    TimelineGenerator,
    build_preview,
    get_generator,
)
from utils.exceptions import SchemaError, UpstreamError, ValidationError


class TestCommonContract:
    @pytest.mark.asyncio
    async def test_source_not_ready_is_rejected_before_any_call(self, provider, settings):
        source = make_source(text=None, source_type=SourceType.PDF, status=SourceStatus.PROCESSING)

        with pytest.raises(ValidationError) as exc_info:
            await QuizGenerator(provider, settings).generate(source, QuizSettings())

        assert exc_info.value.error_code == "SOURCE_NOT_READY"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_placeholder_types_return_labeled_output(self, provider, settings):
        source = make_source(text=None, source_type=SourceType.DOCX, name="lecture.docx")

        output = await SummaryGenerator(provider, settings).generate(source, SummarySettings())

        assert output.placeholder
        assert output.status == OutputStatus.READY
        assert "DOCX" in output.content
        assert output.title == "lecture - Summary"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_text_is_rejected(self, provider, settings):
        source = make_source(text=None)

        with pytest.raises(ValidationError) as exc_info:
            await NotesGenerator(provider, settings).generate(source, NotesSettings())
        assert exc_info.value.error_code == "NO_TEXT_CONTENT"

    @pytest.mark.asyncio
    async def test_upstream_errors_propagate(self, settings):
        provider = FakeCompletionProvider(responses=[UpstreamError("provider down")])

        with pytest.raises(UpstreamError):
            await SummaryGenerator(provider, settings).generate(make_source(), SummarySettings())

    @pytest.mark.asyncio
    async def test_optimized_text_is_preferred(self, settings):
        provider = FakeCompletionProvider(responses=["## Summary\nShort."])
        source = make_source(text="Original extracted text that is long enough.")
        source.optimized_text = "Condensed version of the material."

        await SummaryGenerator(provider, settings).generate(source, SummarySettings())

        messages = provider.calls[0]["messages"]
        assert "Condensed version of the material." in messages[1]["content"]
        assert "Original extracted text" not in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_long_text_is_truncated_and_flagged(self, settings):
        provider = FakeCompletionProvider(responses=["# Notes\n## Part"])
        source = make_source(text="word " * 5000)

        await NotesGenerator(provider, settings).generate(source, NotesSettings())

        system, user = (m["content"] for m in provider.calls[0]["messages"])
        assert "opening fragment" in system
        assert user.count("word") <= settings.max_source_chars // 5

    @pytest.mark.asyncio
    async def test_call_uses_kind_timeout_and_json_mode(self, settings):
        provider = FakeCompletionProvider(responses=[json.dumps({
            "questions": [{"question": "Q?", "options": ["a", "b"], "correct_answer": "a"}],
        })])

        await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())

        config = provider.calls[0]["config"]
        assert config.json_mode
        assert config.timeout == settings.quiz_timeout_seconds

    def test_preview_is_bounded(self):
        assert build_preview("short") == "short"
        preview = build_preview("x" * 250)
        assert preview == "x" * 100 + "..."

    def test_registry_covers_every_kind(self, provider, settings):
        for kind in OutputType:
            assert get_generator(kind, provider, settings).kind == kind


class TestQuiz:
    @pytest.mark.asyncio
    async def test_normalizes_questions(self, settings):
        raw = json.dumps({
            "title": "Cell quiz",
            "questions": [
                {
                    "question": "Capital of France?",
                    "options": ["A) Paris", "B) London", "C) Rome"],
                    "correct_answer": "paris",
                    "explanation": "Paris is the capital.",
                },
                {"question": "Only one option?", "options": ["Yes"], "correct_answer": "Yes"},
                {
                    "question": "Largest organelle?",
                    "options": ["Nucleus", "Ribosome"],
                    "correct_answer": "Golgi",
                },
            ],
        })
        provider = FakeCompletionProvider(responses=[raw])
        source = make_source()

        output = await QuizGenerator(provider, settings).generate(source, QuizSettings(options_count=2))
        content = json.loads(output.content)

        assert output.type == OutputType.QUIZ
        assert output.count == 2
        assert output.preview == "2 interactive questions with explanations"
        assert output.title == "Quiz - biology"
        assert output.source_id == source.id
        assert output.settings["options_count"] == 2
        assert content["total_questions"] == 2
        assert content["passing_score"] == 70

        first, second = content["questions"]
        assert first["id"] == "q1"
        assert first["options"] == ["Paris", "London"]
        assert first["correct_answer"] == "Paris"
        assert second["id"] == "q2"
        assert second["correct_answer"] == "Nucleus"

    @pytest.mark.asyncio
    async def test_no_valid_questions_is_a_schema_error(self, settings):
        raw = json.dumps({"questions": [{"question": "Q?", "options": ["only"]}]})
        provider = FakeCompletionProvider(responses=[raw])

        with pytest.raises(SchemaError):
            await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())

    @pytest.mark.asyncio
    async def test_fenced_json_is_repaired(self, settings):
        raw = "```json\n" + json.dumps({
            "questions": [{"question": "Q?", "options": ["a", "b"], "correct_answer": "b"}],
        }) + "\n```"
        provider = FakeCompletionProvider(responses=[raw])

        output = await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())
        assert output.count == 1

    @pytest.mark.asyncio
    async def test_unparsable_reply_is_a_schema_error(self, settings):
        provider = FakeCompletionProvider(responses=["Sorry, I can't do that."])

        with pytest.raises(SchemaError):
            await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())


class TestFlashcards:
    @pytest.mark.asyncio
    async def test_normalizes_cards(self, settings):
        raw = json.dumps({
            "title": "Cells",
            "cards": [
                {"id": "x", "front": "Cell", "back": "Basic unit of life", "category": "Biology"},
                {"front": "", "back": "Missing front"},
                {"front": "ATP", "back": "Energy currency", "category": "Energy"},
            ],
            "total_cards": 99,
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await FlashcardsGenerator(provider, settings).generate(make_source(), FlashcardsSettings())
        content = json.loads(output.content)

        assert output.count == 2
        assert [c["id"] for c in content["cards"]] == ["card1", "card2"]
        assert content["total_cards"] == 2
        assert content["categories"] == ["Biology", "Energy"]

    @pytest.mark.asyncio
    async def test_no_usable_cards_is_a_schema_error(self, settings):
        provider = FakeCompletionProvider(responses=[json.dumps({"cards": [{"front": "only front"}]})])

        with pytest.raises(SchemaError):
            await FlashcardsGenerator(provider, settings).generate(make_source(), FlashcardsSettings())


class TestTimeline:
    @pytest.mark.asyncio
    async def test_sorts_renumbers_and_caps_events(self, settings):
        raw = json.dumps({
            "has_sequence": True,
            "events": [
                {"title": "Third", "sequence": 3, "category": "Late"},
                {"title": "First", "sequence": 1, "category": "Early"},
                {"title": "Second", "sequence": 2, "category": "Early"},
                {"title": "Fourth", "sequence": 4},
            ],
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await TimelineGenerator(provider, settings).generate(make_source(), TimelineSettings(max_events=3))
        content = json.loads(output.content)

        assert [e["title"] for e in content["events"]] == ["First", "Second", "Third"]
        assert [e["sequence"] for e in content["events"]] == [1, 2, 3]
        assert [e["id"] for e in content["events"]] == ["event1", "event2", "event3"]
        assert content["total_events"] == 3
        assert content["categories"] == ["Early", "Late"]
        assert output.count == 3

    @pytest.mark.asyncio
    async def test_no_sequence_yields_zero_events(self, settings):
        raw = json.dumps({
            "has_sequence": False,
            "events": [{"title": "Invented", "sequence": 1}],
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await TimelineGenerator(provider, settings).generate(make_source(), TimelineSettings())
        content = json.loads(output.content)

        assert output.count == 0
        assert content["events"] == []
        assert content["total_events"] == 0
        assert "No sequential structure" in output.preview


class TestMarkdownKinds:
    @pytest.mark.asyncio
    async def test_notes_count_headings_and_title_by_type(self, settings):
        markdown = "# Cell Biology\n\nIntro\n\n## Structure\n\n### Membrane\n\n#### Too deep\n\nText"
        provider = FakeCompletionProvider(responses=[markdown])

        output = await NotesGenerator(provider, settings).generate(
            make_source(), NotesSettings(note_type=NoteType.KEY_POINTS)
        )

        assert output.count == 3
        assert output.title == "Key Points - biology"
        assert output.preview == "Cell Biology"
        assert output.content == markdown
        assert provider.calls[0]["config"].json_mode is False

    @pytest.mark.asyncio
    async def test_summary_preview_is_first_line(self, settings):
        provider = FakeCompletionProvider(responses=["**Introduction**: cells are small.\n\nMore detail here."])

        output = await SummaryGenerator(provider, settings).generate(make_source(), SummarySettings())

        assert output.preview == "**Introduction**: cells are small."
        assert output.count is None

    @pytest.mark.asyncio
    async def test_empty_markdown_is_a_schema_error(self, settings):
        provider = FakeCompletionProvider(responses=["   "])

        with pytest.raises(SchemaError):
            await SummaryGenerator(provider, settings).generate(make_source(), SummarySettings())


class TestWrongShapeReplies:
    @pytest.mark.asyncio
    async def test_quiz_questions_not_a_list_is_a_schema_error(self, settings):
        provider = FakeCompletionProvider(responses=['{"questions": 5}'])

        with pytest.raises(SchemaError):
            await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())

    @pytest.mark.asyncio
    async def test_flashcard_cards_as_string_is_a_schema_error(self, settings):
        provider = FakeCompletionProvider(responses=['{"cards": "x"}'])

        with pytest.raises(SchemaError):
            await FlashcardsGenerator(provider, settings).generate(make_source(), FlashcardsSettings())

    @pytest.mark.asyncio
    async def test_timeline_events_not_a_list_yields_zero_events(self, settings):
        provider = FakeCompletionProvider(responses=['{"has_sequence": true, "events": 7}'])

        output = await TimelineGenerator(provider, settings).generate(make_source(), TimelineSettings())

        assert output.count == 0
        assert json.loads(output.content)["events"] == []

    @pytest.mark.asyncio
    async def test_quiz_scalar_fields_are_coerced(self, settings):
        raw = json.dumps({
            "title": ["not", "a", "title"],
            "questions": [
                {"question": "Options as a number?", "options": 4, "correct_answer": "a"},
                {"question": {"text": "nested"}, "options": ["a", "b"], "correct_answer": "a"},
                {"question": 12, "options": [1, 2, 3], "correct_answer": 2, "explanation": ["x"]},
            ],
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await QuizGenerator(provider, settings).generate(make_source(), QuizSettings(options_count=3))
        content = json.loads(output.content)

        assert output.count == 1
        assert content["title"] == "Quiz - biology"
        question = content["questions"][0]
        assert question["question"] == "12"
        assert question["options"] == ["1", "2", "3"]
        assert question["correct_answer"] == "2"
        assert question["explanation"] == ""

    @pytest.mark.asyncio
    async def test_quiz_missing_explanation_is_logged(self, settings, caplog):
        raw = json.dumps({"questions": [{"question": "Q?", "options": ["a", "b"], "correct_answer": "a"}]})
        provider = FakeCompletionProvider(responses=[raw])

        with caplog.at_level(logging.WARNING, logger="services.generators"):
            await QuizGenerator(provider, settings).generate(make_source(), QuizSettings())

        assert any("no explanation" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_flashcard_scalar_fields_are_coerced(self, settings):
        raw = json.dumps({
            "cards": [
                {"front": 42, "back": "The answer", "tags": "biology", "category": None},
                {"front": ["list"], "back": "Dropped"},
            ],
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await FlashcardsGenerator(provider, settings).generate(make_source(), FlashcardsSettings())
        card = json.loads(output.content)["cards"][0]

        assert output.count == 1
        assert card["front"] == "42"
        assert card["tags"] == []
        assert card["category"] == "General"


class TestKnowledgeMap:
    @pytest.mark.asyncio
    async def test_normalizes_nodes_and_filters_edges(self, settings):
        raw = json.dumps({
            "title": "Cell map",
            "nodes": [
                {"id": "cell", "title": "Cell", "level": 0, "category": "Biology", "importance": "high",
                 "connections": ["organelles", "ghost", "cell"]},
                {"id": "organelles", "title": "Organelles", "level": 7, "category": "Structure"},
                {"title": "Mitochondria", "level": "2", "category": "Structure", "importance": "vital"},
                "not a node",
            ],
            "edges": [
                {"from": "cell", "to": "organelles", "type": "hierarchy"},
                {"from": "organelles", "to": "node3", "type": "odd"},
                {"from": "cell", "to": "ghost"},
                "broken",
            ],
            "total_concepts": 99,
            "categories": ["Invented"],
        })
        provider = FakeCompletionProvider(responses=[raw])

        output = await KnowledgeMapGenerator(provider, settings).generate(make_source(), KnowledgeMapSettings())
        content = json.loads(output.content)

        assert output.type == OutputType.KNOWLEDGE_MAP
        assert output.title == "Knowledge Map - biology"
        assert output.count == 3
        assert output.preview == "3 interactive concepts with connections"
        assert [n["id"] for n in content["nodes"]] == ["cell", "organelles", "node3"]
        assert [n["level"] for n in content["nodes"]] == [0, 2, 2]
        assert content["nodes"][0]["connections"] == ["organelles"]
        assert content["nodes"][2]["importance"] == "medium"
        assert content["edges"] == [
            {"from": "cell", "to": "organelles", "type": "hierarchy"},
            {"from": "organelles", "to": "node3", "type": "hierarchy"},
        ]
        assert content["total_concepts"] == 3
        assert content["categories"] == ["Biology", "Structure"]

    @pytest.mark.asyncio
    async def test_nodes_are_capped(self, settings):
        nodes = [{"id": f"n{i}", "title": f"Concept {i}"} for i in range(10)]
        provider = FakeCompletionProvider(responses=[json.dumps({"nodes": nodes, "edges": []})])

        output = await KnowledgeMapGenerator(provider, settings).generate(
            make_source(), KnowledgeMapSettings(max_nodes=4),
        )

        assert output.count == 4
        assert json.loads(output.content)["total_concepts"] == 4

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_renamed(self, settings):
        raw = json.dumps({"nodes": [{"id": "a", "title": "A"}, {"id": "a", "title": "Also A"}]})
        provider = FakeCompletionProvider(responses=[raw])

        output = await KnowledgeMapGenerator(provider, settings).generate(make_source(), KnowledgeMapSettings())

        assert [n["id"] for n in json.loads(output.content)["nodes"]] == ["a", "node2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ['{"nodes": []}', '{"nodes": "cell"}', '{"edges": []}'])
    async def test_no_nodes_is_a_schema_error(self, settings, raw):
        provider = FakeCompletionProvider(responses=[raw])

        with pytest.raises(SchemaError):
            await KnowledgeMapGenerator(provider, settings).generate(make_source(), KnowledgeMapSettings())

    @pytest.mark.asyncio
    async def test_uses_json_mode_and_kind_timeout(self, settings):
        raw = json.dumps({"nodes": [{"id": "a", "title": "A"}]})
        provider = FakeCompletionProvider(responses=[raw])

        await KnowledgeMapGenerator(provider, settings).generate(make_source(), KnowledgeMapSettings())

        config = provider.calls[0]["config"]
        assert config.json_mode is True
        assert config.timeout == settings.knowledge_map_timeout_seconds
