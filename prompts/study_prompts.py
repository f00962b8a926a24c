"""
Prompt templates for Quick Study generation.
Each builder returns the system and user strings for one call.
"""

import json
from typing import Any, Dict, List, Optional, Tuple


def _source_header(name: str, source_type: str, word_count: Optional[int] = None) -> str:
    header = f'SOURCE MATERIAL: "{name}" ({source_type})'
    if word_count:
        header += f"\nWord count: {word_count:,}"
    return header


def build_material_context(
    text_origin: str,
    original_length: int,
    processed_length: int,
    key_topics: Optional[List[str]] = None,
) -> str:
    """Tell the model whether it sees optimized, truncated or full material."""
    if text_origin == "optimized":
        topics = ", ".join((key_topics or [])[:8]) or "not identified"
        return f"""

MATERIAL NOTE:
- The material was condensed to its key information ({processed_length:,} of {original_length:,} characters)
- Key topics: {topics}
- Trust that it contains the core concepts of the original document."""
    if text_origin == "truncated":
        return f"""

MATERIAL NOTE:
- This is the opening fragment of a longer document ({processed_length:,} of {original_length:,} characters)
- The material may be incomplete; work only with what is available."""
    return ""


# ── Text optimization ──

def build_chunk_abstraction_prompt(chunk: str, patterns: Dict[str, bool], source_name: str) -> Tuple[str, str]:
    """Extract concepts, facts and examples from one chunk, adapted to its content."""
    focus = []
    if patterns.get("equations"):
        focus.append("- Preserve every formula and equation exactly")
    if patterns.get("numerical_data"):
        focus.append("- Keep all numbers, dates and measurements with their units")
    if patterns.get("definitions"):
        focus.append("- Capture each definition as a concept with its full meaning")
    if patterns.get("sequences"):
        focus.append("- Keep the order of steps and stages")
    if patterns.get("comparisons"):
        focus.append("- Keep both sides of each comparison")
    if patterns.get("lists"):
        focus.append("- Keep list items that carry distinct information")
    focus_section = "\n".join(focus) or "- Focus on the most important ideas"

    system = (
        "You compress study material into its essential knowledge. "
        "You MUST respond with ONLY a valid JSON object."
    )
    user = f"""Extract the essential knowledge from this fragment of "{source_name}".

PRIORITIES:
{focus_section}

OUTPUT FORMAT (JSON):
{{
  "concepts": [{{"term": "Term", "definition": "Concise definition"}}],
  "facts": ["Self-contained factual statement"],
  "examples": [{{"concept": "Related concept", "example": "Short example"}}]
}}

RULES:
- Be far shorter than the fragment; never copy whole paragraphs
- Only use information present in the fragment

FRAGMENT:
{chunk}"""
    return system, user


# ── Artifact generators ──

NOTE_TYPE_GUIDANCE = {
    "key-points": """Create a list of key points that:
1. Identifies the most important concepts, terms and definitions
2. Presents them in a clear hierarchy
3. Uses ## for categories, **bold** for key terms and - for points
4. Keeps each point short, followed by a brief explanation""",
    "structured": """Create structured notes that:
1. Are split into numbered ### sections
2. Use Markdown tables for comparisons: | Column 1 | Column 2 |
3. Use nested lists for hierarchy and > for important definitions
4. End each section with **Summary:**""",
    "summary-table": """Create notes made mainly of tables that:
1. Organize concepts and definitions, processes, comparisons and examples as Markdown tables
2. Add a short introduction before each table
3. Use **bold** for key elements inside tables""",
    "general": """Create complete student notes that:
1. Are split into logical ## sections with ### subsections
2. Contain key definitions, concepts and facts
3. Use **bold** for important terms and > blocks for definitions
4. Include everything important for studying""",
}


def build_notes_prompt(
    text: str,
    name: str,
    source_type: str,
    note_type: str,
    word_count: Optional[int] = None,
    material_context: str = "",
) -> Tuple[str, str]:
    guidance = NOTE_TYPE_GUIDANCE.get(note_type, NOTE_TYPE_GUIDANCE["general"])
    system = f"""You are an expert at writing student notes in Markdown.

{_source_header(name, source_type, word_count)}

IMPORTANT:
- Base the notes ONLY on the provided source material
- Format math in LaTeX: $inline$ and $$block$$

{guidance}{material_context}"""
    user = f"""Write {note_type} notes from the following material.

{text}"""
    return system, user


def build_flashcards_prompt(
    text: str,
    name: str,
    source_type: str,
    card_count: int,
    difficulty: str,
    include_categories: bool,
    word_count: Optional[int] = None,
    material_context: str = "",
) -> Tuple[str, str]:
    category_field = '\n      "category": "Topic category",' if include_categories else ""
    system = f"""You are an expert at creating study flashcards. Create a set that:
1. Covers key concepts, definitions and facts
2. Has a front (question or term) and a back (answer or explanation)
3. Mixes difficulty levels
4. {"Groups cards by topic" if include_categories else "Focuses on the most important concepts"}

OUTPUT FORMAT (JSON):
{{
  "title": "Flashcard set title",
  "description": "Short description",
  "cards": [
    {{
      "id": "card1",
      "front": "Question or term",
      "back": "Definition or answer",
      "difficulty": "easy|medium|hard",{category_field}
      "tags": ["tag1", "tag2"]
    }}
  ]
}}

RULES:
- Front: short and unambiguous
- Back: complete but concise
- One concept per card

{_source_header(name, source_type, word_count)}

IMPORTANT: Use ONLY information from the source material.{material_context}"""
    user = f"""Create {card_count} flashcards from the material below.
Difficulty: {difficulty}

{text}"""
    return system, user


QUIZ_DIFFICULTY = {1: "easy", 2: "medium", 3: "hard"}


def build_quiz_prompt(
    text: str,
    name: str,
    source_type: str,
    question_count: int,
    difficulty: int,
    options_count: int,
    time_limit: Optional[int],
    word_count: Optional[int] = None,
    material_context: str = "",
) -> Tuple[str, str]:
    level = QUIZ_DIFFICULTY.get(difficulty, "medium")
    system = f"""You are an expert at creating interactive educational quizzes. Every question:
1. Tests a key concept or fact from the material
2. Is multiple choice with exactly {options_count} options
3. Has a detailed explanation

CRITICAL: correct_answer MUST be identical to one of the options.

OUTPUT FORMAT (JSON):
{{
  "title": "Quiz title",
  "description": "Short description of scope",
  "questions": [
    {{
      "id": "q1",
      "question": "Question text without numbering",
      "options": ["First option", "Second option"],
      "correct_answer": "Second option",
      "explanation": "Why this answer is correct",
      "difficulty": "easy|medium|hard"
    }}
  ],
  "time_limit": {json.dumps(time_limit)},
  "passing_score": 70
}}

RULES:
- Options have no "A)" or "B)" prefixes
- No trick questions; all options plausible
- Difficulty: {level}

{_source_header(name, source_type, word_count)}

IMPORTANT: Use ONLY information from the source material.{material_context}"""
    user = f"""Create a quiz with {question_count} questions from the material below.

{text}"""
    return system, user


SUMMARY_LENGTH_GUIDANCE = {
    "short": "2-3 paragraphs covering the most important points",
    "medium": "4-6 paragraphs with balanced coverage",
    "detailed": "6-10 paragraphs with detailed analysis",
}

SUMMARY_FOCUS_GUIDANCE = {
    "key_points": "key points and main arguments",
    "comprehensive": "a comprehensive overview of all main topics",
    "conclusions": "conclusions, implications and takeaways",
}


def build_summary_prompt(
    text: str,
    name: str,
    source_type: str,
    length: str,
    focus: str,
    include_quotes: bool,
    word_count: Optional[int] = None,
    material_context: str = "",
) -> Tuple[str, str]:
    quotes_line = "- **Key quotes**: important passages from the material\n" if include_quotes else ""
    system = f"""You are an expert at writing educational summaries. Write {SUMMARY_LENGTH_GUIDANCE.get(length, SUMMARY_LENGTH_GUIDANCE["medium"])}, focused on {SUMMARY_FOCUS_GUIDANCE.get(focus, SUMMARY_FOCUS_GUIDANCE["comprehensive"])}.

STRUCTURE (Markdown):
- **Introduction**: main topic and scope
- **Key points**: the most important concepts
- **Details**: important facts, data, examples
{quotes_line}- **Conclusions**: takeaways and implications

{_source_header(name, source_type, word_count)}

IMPORTANT: Use ONLY information from the source material.{material_context}"""
    user = f"""Summarize the following material.

{text}"""
    return system, user


def build_timeline_prompt(
    text: str,
    name: str,
    max_events: int,
    material_context: str = "",
) -> Tuple[str, str]:
    system = f"""You are an expert at building interactive timelines. Look ONLY for content with a natural order:
- steps of a process
- chronological events
- phases of development or stages of a life cycle
- step-by-step procedures

If the material has NO sequential structure, do not invent one: return "has_sequence": false and an empty events list.

OUTPUT FORMAT (JSON):
{{
  "title": "Descriptive timeline title",
  "description": "What the timeline shows",
  "has_sequence": true,
  "events": [
    {{
      "id": "event1",
      "title": "Short event or stage title",
      "description": "What happens at this stage",
      "sequence": 1,
      "category": "Topic category",
      "importance": "low|medium|high"
    }}
  ]
}}

RULES:
- At most {max_events} events
- Every event must have a logical place in the sequence
- importance: high = key stages, medium = important details, low = extra information{material_context}"""
    user = f"""Analyze the material from "{name}" and build a timeline ONLY if it contains sequential elements.

{text}"""
    return system, user


def build_knowledge_map_prompt(
    text: str,
    name: str,
    source_type: str,
    complexity: str,
    include_connections: bool,
    max_nodes: int,
    word_count: Optional[int] = None,
    material_context: str = "",
) -> Tuple[str, str]:
    """Structural concept map: titles and relations only, no descriptions."""
    if include_connections:
        connection_rule = "Connections: at most 3 per node, linking related concepts"
        focus = "Detailed connections between concepts"
    else:
        connection_rule = "Keep connections minimal and focus on the hierarchy"
        focus = "Focus on the concept hierarchy"

    system = f"""You are an expert at building interactive knowledge maps. Build a structural map of concepts that:

1. Identifies the main topics and their hierarchy (at most 3 levels)
2. Links related concepts logically
3. Focuses on STRUCTURE, not detailed descriptions
4. Gives every concept an importance
5. Groups related concepts into categories

This is a STRUCTURAL map: return titles and relations only, no descriptions.

OUTPUT FORMAT (JSON):
{{
  "title": "Main topic of the document",
  "description": "One sentence describing the whole map",
  "nodes": [
    {{
      "id": "unique_id",
      "title": "Short, specific concept name",
      "level": 0,
      "category": "Topic category",
      "importance": "high|medium|low",
      "connections": ["id1", "id2"]
    }}
  ],
  "edges": [
    {{"from": "parent_id", "to": "child_id", "type": "hierarchy|relation"}}
  ]
}}

RULES:
- At most {max_nodes} nodes
- Level 0: one main topic. Level 1: 3-5 main categories. Level 2: detailed concepts
- importance: high = key concepts, medium = important details, low = extra information
- {connection_rule}
- Edges: "hierarchy" for parent-child links, "relation" for thematic links
- Titles are short, unambiguous and student-friendly
- Use ONLY concepts and relations present in the source material

{_source_header(name, source_type, word_count)}{material_context}"""
    user = f"""Analyze the material below and build a knowledge map of its key concepts and their relations.

{text}

REQUIREMENTS:
- Complexity: {complexity}
- Maximum nodes: {max_nodes}
- {focus}"""
    return system, user


# ── Streaming helpers ──

def build_chat_system_prompt(name: str, source_type: str, word_count: Optional[int] = None, material_context: str = "") -> str:
    return f"""You are a study assistant. Answer the learner's questions using the provided source material.

RULES:
1. Answer ONLY from the source material
2. If a question goes beyond the material, say so politely
3. Use clear language and concrete examples from the material
4. If you are not sure, say so directly
5. Format answers for readability with paragraphs and lists

{_source_header(name, source_type, word_count)}{material_context}"""


EDIT_INSTRUCTIONS = {
    "expand": """Expand the text below with more detail, examples and explanation. Keep the original tone.

INSTRUCTIONS:
- Add concrete examples and details
- Explain key concepts in more depth
- Stay consistent with the original""",
    "improve": """Improve the clarity, precision and flow of the text below.

INSTRUCTIONS:
- Tighten wording and remove redundancy
- Strengthen the key points
- Keep the original meaning and intent""",
    "simplify": """Simplify the text below so it is easier to understand.

INSTRUCTIONS:
- Use simpler language and shorter sentences
- Explain difficult terms
- Keep all key information""",
}

EDIT_SYSTEM_PROMPT = """You are an expert editor of educational content.
Perform the requested operation precisely and format the result in Markdown:
**bold** for key terms, ## and ### for structure, lists where useful, > for definitions."""


def build_section_edit_prompt(operation: str, content: str, context: Optional[str] = None) -> Tuple[str, str]:
    context_section = f"\n\nCONTEXT:\n{context}" if context else ""
    user = f"""{EDIT_INSTRUCTIONS[operation]}

ORIGINAL TEXT:
{content}{context_section}"""
    return EDIT_SYSTEM_PROMPT, user


# ── Document notes job ──

def build_notes_outline_prompt(text: str, name: str, max_sections: int = 6) -> Tuple[str, str]:
    system = "You plan study notes. You MUST respond with ONLY a valid JSON object."
    user = f"""Plan study notes for "{name}".

OUTPUT FORMAT (JSON):
{{
  "title": "Notes title",
  "sections": [{{"title": "Section title", "description": "What this section covers"}}]
}}

RULES:
- Between 2 and {max_sections} sections in a logical learning order
- Cover the whole material without overlap

MATERIAL:
{text}"""
    return system, user


def build_notes_section_prompt(
    text: str,
    notes_title: str,
    section_title: str,
    section_description: str,
    all_sections: List[str],
) -> Tuple[str, str]:
    outline = "\n".join(f"- {title}" for title in all_sections)
    system = """You are an expert at writing student notes in Markdown.
Write ONLY the requested section body. Do not repeat the section title as a heading.
Use ### for subsections, **bold** for key terms and lists for key facts."""
    user = f"""Notes: "{notes_title}"
Full outline:
{outline}

Write the section "{section_title}": {section_description}
Do not cover topics that belong to other sections.

MATERIAL:
{text}"""
    return system, user


# ── Merge proposal ──

def build_merge_prompt(selected_text: str, surrounding_context: str, sections: List[Dict[str, str]]) -> Tuple[str, str]:
    sections_context = "\n\n".join(
        f"Section: {s['title']}\nPreview: {s['preview']}..." for s in sections
    ) or "(no sections yet)"
    system = """You help fit a highlighted text fragment into existing study notes.

Your task:
1. Decide whether the fragment carries information worth adding
2. If so, match it to an existing section OR propose a new section
3. Provide enhanced content that works the fragment into the notes

Respond in JSON:
{
  "action": "add_to_existing" | "create_new" | "ignore",
  "reason": "Short explanation of the decision",
  "target_section": null | "existing section title",
  "new_section_title": null | "title",
  "enhanced_content": "New or extended Markdown content"
}"""
    user = f"""Highlighted fragment: "{selected_text}"

Surrounding context:
"{surrounding_context}"

Existing note sections:
{sections_context}

Decide what to do with this fragment."""
    return system, user


# ── Grading ──

def build_open_answer_grading_prompt(items: List[Dict[str, Any]]) -> Tuple[str, str]:
    system = "Grade accurately but encouragingly. Be concise. Your answer must be json."
    user = f"""Respond in json with this structure:
{{
  "results": [
    {{
      "grade": "correct" | "partial" | "incorrect",
      "feedback": "short constructive feedback",
      "correct_answer": "only when grade is not correct"
    }}
  ]
}}

Grade the students' answers to open questions, one result per item, in order.

### Criteria
* correct   - key ideas present, no factual errors
* partial   - missing at least one important aspect OR a minor inaccuracy
* incorrect - factual error or no understanding

### Questions and answers
{json.dumps(items, indent=2, ensure_ascii=False)}
"""
    return system, user
