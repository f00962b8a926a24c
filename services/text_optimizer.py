"""
Text optimization: lossy compression of extracted text before generation.

Small inputs are only cleaned (strategy "raw"). Larger inputs are chunked and
each chunk is either reduced by rules (short or low-alphabetic chunks) or
abstracted by the completion provider into concepts, facts and examples.
A failed provider call or a malformed reply degrades that chunk to the
rule-based reduction.
"""

import asyncio
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from clients.completion_client import CompletionConfig, CompletionProvider
from models.study_models import OptimizationStats, OptimizationStrategy
from prompts.study_prompts import build_chunk_abstraction_prompt
from utils.config import Settings, get_settings
from utils.exceptions import QuickStudyError, SchemaError, ValidationError
from utils.json_parsing import expect_object, list_field, parse_model_json, text_field
from utils.model_config import ModelConfig, estimate_tokens

logger = logging.getLogger(__name__)

LOW_VALUE_LINE_PATTERNS = [
    re.compile(r'^(page \d+|chapter \d+|\d+\s*$)', re.IGNORECASE),
    re.compile(r'^(table of contents|index|bibliography)', re.IGNORECASE),
]

CONTENT_PATTERNS = {
    "equations": re.compile(r'[=≈≠≤≥]\s*[\w(]|\$[^$]+\$|\\frac|\w\^\d'),
    "numerical_data": re.compile(r'\b\d+(?:[.,]\d+)?\s*(?:%|kg|km|cm|mm|m|s|°[CF]?)(?:\W|$)|\b(1[5-9]|20)\d{2}\b'),
    "lists": re.compile(r'^\s*(?:[-*•]|\d+[.)])\s+', re.MULTILINE),
    "quotes": re.compile(r'"[^"]{20,}"|“[^”]{20,}”'),
    "tabular": re.compile(r'\|[^|\n]+\|[^|\n]+\||\t[^\t\n]+\t'),
    "definitions": re.compile(r'\b(is defined as|refers to|is called|is known as|definition)\b', re.IGNORECASE),
    "sequences": re.compile(r'\b(first|second|third|then|next|finally|step \d+|stage|phase)\b', re.IGNORECASE),
    "comparisons": re.compile(r'\b(versus|vs\.?|compared to|whereas|unlike|in contrast|similarly)\b', re.IGNORECASE),
}

CAPITALIZED_TERM = re.compile(r"\b[A-Z][a-zA-Z]{2,}(?:\s+[A-Z][a-zA-Z]{2,}){0,2}\b")
SENTENCE_SPLIT = re.compile(r'[.!?]+')

TOPIC_STOPWORDS = {
    "The", "This", "That", "These", "Those", "There", "Then", "When", "What", "Which",
    "While", "With", "For", "And", "But", "However", "Also", "Its", "Their", "They",
    "Each", "Some", "Many", "Most", "Other", "From", "After", "Before", "During", "Finally",
    "First", "Second", "Third", "Next", "Lorem", "Ipsum",
}


@dataclass
class ChunkKnowledge:
    concepts: List[Dict[str, str]] = field(default_factory=list)
    facts: List[str] = field(default_factory=list)
    examples: List[Dict[str, str]] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    from_model: bool = False
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class OptimizationResult:
    optimized_text: str
    stats: OptimizationStats


# ================================================================
# Rule-based helpers
# ================================================================

def preprocess_text(text: str) -> str:
    """Normalize whitespace and collapse character runs. Never lengthens text."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r'[ \t\f\v]+', ' ', text)
    text = re.sub(r' ?\n ?', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = re.sub(r'(\S)\1{4,}', r'\1\1\1', text)
    return text.strip()


def is_low_value_line(line: str) -> bool:
    if len(line) < 20:
        return True
    if any(pattern.match(line) for pattern in LOW_VALUE_LINE_PATTERNS):
        return True
    return len(line.split()) < 5


def filter_valuable_content(text: str) -> str:
    """Drop page markers, headers and fragment lines, keeping paragraph breaks."""
    kept = []
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            kept.append("")
        elif not is_low_value_line(stripped):
            kept.append(stripped)
    return re.sub(r'\n{3,}', '\n\n', "\n".join(kept)).strip()


def alpha_ratio(text: str) -> float:
    visible = [c for c in text if not c.isspace()]
    if not visible:
        return 0.0
    return sum(1 for c in visible if c.isalpha()) / len(visible)


def analyze_content_patterns(text: str) -> Dict[str, bool]:
    return {name: bool(pattern.search(text)) for name, pattern in CONTENT_PATTERNS.items()}


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(text) if len(s.strip()) > 10]


def extract_capitalized_terms(text: str, limit: int = 10) -> List[str]:
    """Most frequent capitalized terms, ties broken by first appearance."""
    counts: Counter = Counter()
    first_seen: Dict[str, int] = {}
    for i, match in enumerate(CAPITALIZED_TERM.finditer(text)):
        words = match.group(0).split()
        while words and words[0] in TOPIC_STOPWORDS:
            words.pop(0)
        if not words:
            continue
        term = " ".join(words)
        counts[term] += 1
        first_seen.setdefault(term, i)
    ranked = sorted(counts, key=lambda t: (-counts[t], first_seen[t]))
    return ranked[:limit]


def rule_based_reduction(chunk: str) -> ChunkKnowledge:
    """Keep the leading sentences and the chunk's capitalized terms."""
    sentences = split_sentences(chunk)
    facts = [s[:160] for s in sentences[:3]]
    if not facts and chunk.strip():
        facts = [chunk.strip()[:100]]
    return ChunkKnowledge(facts=facts, topics=extract_capitalized_terms(chunk, limit=5))


def normalize_chunk_reply(data: Dict[str, Any]) -> Tuple[List[Dict[str, str]], List[str], List[Dict[str, str]]]:
    """Concepts, facts and examples from a chunk reply. Entries of the wrong shape are dropped."""
    concepts = [
        {"term": text_field(c.get("term")), "definition": text_field(c.get("definition"))}
        for c in list_field(data, "concepts")
        if isinstance(c, dict) and text_field(c.get("term"))
    ]
    facts = [text_field(f) for f in list_field(data, "facts") if text_field(f)]
    examples = [
        {"concept": text_field(e.get("concept")), "example": text_field(e.get("example"))}
        for e in list_field(data, "examples")
        if isinstance(e, dict) and text_field(e.get("example"))
    ]
    return concepts, facts, examples


def assess_content_quality(chunk: str) -> float:
    """Heuristic 0..1 score used to rank chunks for sampling."""
    words = chunk.split()
    if not words:
        return 0.0
    lexical = len({w.lower() for w in words}) / len(words)
    pattern_hits = sum(analyze_content_patterns(chunk).values())
    return round(0.4 * lexical + 0.3 * alpha_ratio(chunk) + 0.3 * min(1.0, pattern_hits / 5), 4)


def _fact_key(fact: str) -> str:
    return re.sub(r'[^a-z0-9]+', ' ', fact.lower()).strip()[:50]


def _dedupe_topics(topics: List[str], limit: int) -> List[str]:
    seen = set()
    result = []
    for topic in topics:
        topic = topic.strip()
        key = topic.lower()
        if not topic or key in seen:
            continue
        seen.add(key)
        result.append(topic)
        if len(result) >= limit:
            break
    return result


def render_knowledge(knowledge: List[ChunkKnowledge]) -> str:
    """Concatenate chunk reductions in order, de-duplicating across chunks."""
    concepts: Dict[str, Dict[str, str]] = {}
    fact_keys = set()
    example_keys = set()
    blocks: List[List[Tuple[str, Any]]] = []

    for item in knowledge:
        block: List[Tuple[str, Any]] = []
        for concept in item.concepts:
            key = concept["term"].lower().strip()
            existing = concepts.get(key)
            if existing is not None:
                # Keep the richer definition at its first position
                if len(concept["definition"]) > len(existing["definition"]):
                    existing["definition"] = concept["definition"]
                continue
            concepts[key] = dict(concept)
            block.append(("concept", concepts[key]))
        for fact in item.facts:
            key = _fact_key(fact)
            if not key or key in fact_keys:
                continue
            fact_keys.add(key)
            block.append(("fact", fact))
        for example in item.examples:
            key = (example["concept"].lower().strip(), example["example"][:30].lower())
            if key in example_keys:
                continue
            example_keys.add(key)
            block.append(("example", example))
        if block:
            blocks.append(block)

    rendered_blocks = []
    for block in blocks:
        lines = []
        for kind, value in block:
            if kind == "concept":
                lines.append(f"{value['term']}: {value['definition']}")
            elif kind == "fact":
                lines.append(f"- {value}")
            else:
                lines.append(f"Example ({value['concept']}): {value['example']}")
        rendered_blocks.append("\n".join(lines))
    return "\n\n".join(rendered_blocks)


# ================================================================
# Optimizer
# ================================================================

class TextOptimizer:
    """Compresses extracted text for cheaper downstream generation calls."""

    def __init__(self, provider: CompletionProvider, settings: Optional[Settings] = None):
        self.provider = provider
        self.settings = settings or get_settings()
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.settings.max_tokens_per_chunk * 4,
            chunk_overlap=self.settings.chunk_overlap_chars,
            separators=["\n\n", "\n", ". ", " ", ""],
        )

    def choose_strategy(self, length: int) -> OptimizationStrategy:
        if length <= self.settings.raw_strategy_max_chars:
            return OptimizationStrategy.RAW
        if length <= self.settings.full_strategy_max_chars:
            return OptimizationStrategy.FULL
        return OptimizationStrategy.SAMPLED

    def should_skip_processing(self, chunk: str) -> bool:
        """Chunks too small or too symbolic take the rule-based path."""
        return (
            estimate_tokens(chunk) < self.settings.min_chunk_tokens
            or alpha_ratio(chunk) < self.settings.min_alpha_ratio
        )

    def sample_chunks(self, chunks: List[str]) -> List[str]:
        """Keep the highest-quality share of chunks, in original order."""
        keep = max(1, round(len(chunks) * self.settings.sampling_ratio))
        ranked = sorted(range(len(chunks)), key=lambda i: assess_content_quality(chunks[i]), reverse=True)
        selected = sorted(ranked[:keep])
        return [chunks[i] for i in selected]

    async def optimize(
        self,
        raw_text: str,
        source_name: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OptimizationResult:
        if not raw_text or not raw_text.strip():
            raise ValidationError("Source has no extracted text to optimize", error_code="NO_TEXT_CONTENT")

        original_length = len(raw_text)
        cleaned = preprocess_text(raw_text)
        filtered = filter_valuable_content(cleaned) or cleaned
        strategy = self.choose_strategy(len(filtered))
        logger.info(
            f"Optimizing '{source_name}': {original_length} chars "
            f"({len(filtered)} after filtering), strategy={strategy.value}"
        )

        if strategy == OptimizationStrategy.RAW:
            return self._build_result(
                optimized_text=filtered,
                fallback_text=filtered,
                original_length=original_length,
                strategy=strategy,
                chunk_count=1,
                knowledge=[ChunkKnowledge(topics=extract_capitalized_terms(filtered, self.settings.max_key_topics))],
            )

        chunks = self.splitter.split_text(filtered)
        if strategy == OptimizationStrategy.SAMPLED:
            total = len(chunks)
            chunks = self.sample_chunks(chunks)
            logger.info(f"Sampled {len(chunks)}/{total} chunks for '{source_name}'")

        semaphore = asyncio.Semaphore(self.settings.max_concurrent_calls)

        async def process_chunk(idx: int, chunk: str) -> ChunkKnowledge:
            if self.should_skip_processing(chunk):
                return rule_based_reduction(chunk)
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return rule_based_reduction(chunk)
                try:
                    return await self._abstract_chunk(chunk, source_name)
                except QuickStudyError as e:
                    logger.warning(f"Chunk {idx + 1}/{len(chunks)} of '{source_name}' fell back to rules: {e.message}")
                    return rule_based_reduction(chunk)

        knowledge = await asyncio.gather(*(process_chunk(i, c) for i, c in enumerate(chunks)))

        return self._build_result(
            optimized_text=render_knowledge(knowledge),
            fallback_text=filtered,
            original_length=original_length,
            strategy=strategy,
            chunk_count=len(chunks),
            knowledge=knowledge,
        )

    async def _abstract_chunk(self, chunk: str, source_name: str) -> ChunkKnowledge:
        system, user = build_chunk_abstraction_prompt(chunk, analyze_content_patterns(chunk), source_name)
        raw = await self.provider.complete(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            CompletionConfig(
                model=self.settings.optimizer_model,
                temperature=0.1,
                max_tokens=1500,
                json_mode=True,
                timeout=self.settings.optimizer_timeout_seconds,
            ),
        )
        data = expect_object(parse_model_json(raw)).unwrap(context={"phase": "optimize"})

        try:
            concepts, facts, examples = normalize_chunk_reply(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise SchemaError(f"Malformed chunk knowledge: {e}", context={"phase": "optimize"})
        if not (concepts or facts or examples):
            raise SchemaError("Model returned no knowledge for chunk", context={"phase": "optimize"})

        topics = [c["term"] for c in concepts if len(c["term"]) < 50]
        topics.extend(extract_capitalized_terms(" ".join(facts), limit=5))
        return ChunkKnowledge(
            concepts=concepts,
            facts=facts,
            examples=examples,
            topics=topics,
            from_model=True,
            input_tokens=estimate_tokens(system) + estimate_tokens(user),
            output_tokens=estimate_tokens(raw),
        )

    def _build_result(
        self,
        optimized_text: str,
        fallback_text: str,
        original_length: int,
        strategy: OptimizationStrategy,
        chunk_count: int,
        knowledge: List[ChunkKnowledge],
    ) -> OptimizationResult:
        if not optimized_text.strip() or len(optimized_text) > original_length:
            optimized_text = fallback_text
        if len(optimized_text) > original_length:
            optimized_text = optimized_text[:original_length]

        processing_cost = sum(
            ModelConfig.estimate_cost(self.settings.optimizer_model, k.input_tokens, k.output_tokens)
            for k in knowledge
            if k.from_model
        )
        ratio = len(optimized_text) / original_length if original_length else 1.0
        model_chunks = sum(1 for k in knowledge if k.from_model)

        stats = OptimizationStats(
            original_length=original_length,
            optimized_length=len(optimized_text),
            compression_ratio=round(min(1.0, max(0.0, ratio)), 4),
            processing_cost=round(processing_cost, 6),
            chunk_count=max(1, chunk_count),
            key_topics=_dedupe_topics(
                [topic for k in knowledge for topic in k.topics],
                self.settings.max_key_topics,
            ),
            strategy=strategy,
            processed_chunks=model_chunks,
            fallback_chunks=max(0, len(knowledge) - model_chunks) if strategy != OptimizationStrategy.RAW else 0,
        )
        logger.info(
            f"Optimization done: {stats.original_length} -> {stats.optimized_length} chars "
            f"({stats.compression_ratio * 100:.1f}%), cost ${stats.processing_cost:.4f}, "
            f"{len(stats.key_topics)} topics"
        )
        return OptimizationResult(optimized_text=optimized_text, stats=stats)
