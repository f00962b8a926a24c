# Prompts module initialization

# Quick Study Prompts
from .study_prompts import (
    build_chunk_abstraction_prompt,
    build_notes_prompt,
    build_flashcards_prompt,
    build_quiz_prompt,
    build_summary_prompt,
    build_timeline_prompt,
    build_knowledge_map_prompt,
    build_chat_system_prompt,
    build_section_edit_prompt,
    build_merge_prompt,
    build_open_answer_grading_prompt
)

__all__ = [
    'build_chunk_abstraction_prompt',
    'build_notes_prompt',
    'build_flashcards_prompt',
    'build_quiz_prompt',
    'build_summary_prompt',
    'build_timeline_prompt',
    'build_knowledge_map_prompt',
    'build_chat_system_prompt',
    'build_section_edit_prompt',
    'build_merge_prompt',
    'build_open_answer_grading_prompt'
]
