"""
Open-ended answer grading.

One batched provider call grades every non-empty answer. Empty answers are
graded locally, and any answer the model could not grade degrades to
"incorrect" with an explanatory message instead of failing the request.
"""

import logging
from typing import Any, Dict, List, Optional

from clients.completion_client import CompletionConfig, CompletionProvider
from models.study_models import FeedbackItem, Grade, GradingResult, GradingStats, OpenQuestion
from prompts.study_prompts import build_open_answer_grading_prompt
from utils.config import Settings, get_settings
from utils.exceptions import QuickStudyError, ValidationError
from utils.json_parsing import list_field, parse_model_json, text_field

logger = logging.getLogger(__name__)

NO_ANSWER_FEEDBACK = "No answer was provided."
TECHNICAL_ERROR_FEEDBACK = "Could not grade this answer due to a technical error. Please try again."


def compute_score(stats: GradingStats) -> int:
    if stats.total == 0:
        return 0
    return round((stats.correct + 0.5 * stats.partial) / stats.total * 100)


def _fallback(question: OpenQuestion, feedback: str) -> FeedbackItem:
    return FeedbackItem(grade=Grade.INCORRECT, feedback=feedback, correct_answer=question.correct_answer)


def _to_feedback(item: Any, question: OpenQuestion) -> FeedbackItem:
    if not isinstance(item, dict):
        return _fallback(question, TECHNICAL_ERROR_FEEDBACK)
    try:
        grade = Grade(text_field(item.get("grade")).lower())
    except ValueError:
        grade = Grade.INCORRECT
    feedback = text_field(item.get("feedback"), "No feedback available.")
    correct_answer = None
    if grade != Grade.CORRECT:
        correct_answer = text_field(item.get("correct_answer"), question.correct_answer)
    return FeedbackItem(grade=grade, feedback=feedback, correct_answer=correct_answer)


class OpenEndedGrader:
    def __init__(self, provider: CompletionProvider, settings: Optional[Settings] = None):
        self.provider = provider
        self.settings = settings or get_settings()

    async def grade(self, questions: List[OpenQuestion], answers: List[str]) -> GradingResult:
        if not questions:
            raise ValidationError("At least one question is required", error_code="NO_QUESTIONS")
        if len(questions) != len(answers):
            raise ValidationError(
                "Each question needs exactly one answer",
                error_code="ANSWER_COUNT_MISMATCH",
                context={"questions": len(questions), "answers": len(answers)},
            )

        feedback: List[Optional[FeedbackItem]] = [None] * len(questions)
        pending: List[int] = []
        for i, answer in enumerate(answers):
            if answer and answer.strip():
                pending.append(i)
            else:
                feedback[i] = _fallback(questions[i], NO_ANSWER_FEEDBACK)

        if pending:
            graded = await self._grade_batch([questions[i] for i in pending], [answers[i] for i in pending])
            for i, item in zip(pending, graded):
                feedback[i] = item

        items = [f if f is not None else _fallback(questions[i], TECHNICAL_ERROR_FEEDBACK) for i, f in enumerate(feedback)]
        stats = GradingStats(
            correct=sum(1 for f in items if f.grade == Grade.CORRECT),
            partial=sum(1 for f in items if f.grade == Grade.PARTIAL),
            incorrect=sum(1 for f in items if f.grade == Grade.INCORRECT),
            total=len(items),
        )
        return GradingResult(feedback=items, stats=stats, score=compute_score(stats))

    async def _grade_batch(self, questions: List[OpenQuestion], answers: List[str]) -> List[FeedbackItem]:
        payload: List[Dict[str, Any]] = [
            {
                "question": q.question,
                "correct_answer": q.correct_answer,
                "context": q.context or "",
                "student_answer": a.strip(),
            }
            for q, a in zip(questions, answers)
        ]
        system, user = build_open_answer_grading_prompt(payload)

        try:
            raw = await self.provider.complete(
                [{"role": "system", "content": system}, {"role": "user", "content": user}],
                CompletionConfig(
                    model=self.settings.default_model,
                    temperature=0.3,
                    json_mode=True,
                    timeout=self.settings.timeout_for("grading"),
                ),
            )
        except QuickStudyError as e:
            logger.error(f"Grading call failed, marking {len(questions)} answer(s) ungraded: {e.message}")
            return [_fallback(q, TECHNICAL_ERROR_FEEDBACK) for q in questions]

        parsed = parse_model_json(raw)
        results: List[Any] = []
        if parsed.ok and isinstance(parsed.data, list):
            results = parsed.data
        elif parsed.ok and isinstance(parsed.data, dict):
            results = list_field(parsed.data, "results")
        else:
            logger.error(f"Unparsable grading response: {parsed.error}")

        if len(results) < len(questions):
            logger.warning(f"Grading returned {len(results)} result(s) for {len(questions)} answer(s)")

        return [
            _to_feedback(results[i], q) if i < len(results) else _fallback(q, TECHNICAL_ERROR_FEEDBACK)
            for i, q in enumerate(questions)
        ]
