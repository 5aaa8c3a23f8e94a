"""Generate level-appropriate reading lessons with Gemini."""
from __future__ import annotations

from typing import Dict, Optional

from flask import current_app

from .gemini_client import GeminiClient, get_gemini_client

LANGUAGE_NAMES = {
    'english': 'English',
    'french': 'French',
}

DEFAULT_LEVEL = 'beginner'

LESSON_SYSTEM_PROMPT = (
    "You are an expert language teacher who creates educational reading texts tailored to "
    "specific proficiency levels. Always follow the level requirements precisely and return "
    "strict JSON."
)

LEVEL_REQUIREMENTS = {
    'beginner': (
        "for absolute beginners.\n\n"
        "REQUIREMENTS:\n"
        "- Use only basic, common vocabulary (most frequent 500-1000 words)\n"
        "- Write short, simple sentences (5-10 words each)\n"
        "- Use present tense primarily, avoid complex verb forms\n"
        "- Repeat key vocabulary\n"
        "- Text length: 80-120 words\n"
        "- Avoid idioms, slang, or cultural references"
    ),
    'intermediate': (
        "for intermediate learners.\n\n"
        "REQUIREMENTS:\n"
        "- Use expanded vocabulary (2000-3000 most common words)\n"
        "- Mix simple and compound sentences (8-15 words each)\n"
        "- Include past and future tenses and conditional forms\n"
        "- Use connecting words (because, although, however)\n"
        "- Text length: 120-180 words\n"
        "- Include some cultural context when relevant"
    ),
    'advanced': (
        "for advanced learners.\n\n"
        "REQUIREMENTS:\n"
        "- Use rich, varied vocabulary including less common words\n"
        "- Write complex sentences with multiple clauses (12-20 words each)\n"
        "- Include all verb tenses, subjunctive mood and passive voice\n"
        "- Use sophisticated connectors (nevertheless, consequently, furthermore)\n"
        "- Text length: 180-250 words\n"
        "- Include idiomatic expressions and abstract concepts"
    ),
}

LEVEL_FOCUS = {
    'beginner': "Focus on: greetings, family, daily activities, basic needs.",
    'intermediate': "Include: opinions, experiences, comparisons, explanations.",
    'advanced': "Include: abstract ideas, cultural analysis, sophisticated argumentation.",
}


class LessonGenerationError(RuntimeError):
    """Raised when a lesson text cannot be produced."""


def normalize_level(level: Optional[str]) -> str:
    """Unknown or missing levels fall back to beginner."""
    return level if level in LEVEL_REQUIREMENTS else DEFAULT_LEVEL


def build_level_prompt(language: str, topic: Optional[str], level: str) -> str:
    """Build the generation prompt for a language, optional topic and level."""
    target_language = LANGUAGE_NAMES.get(language, language.title())
    level = normalize_level(level)
    about = f'about "{topic}"' if topic else 'for everyday communication'
    focus = f'Stay on the topic "{topic}".' if topic else LEVEL_FOCUS[level]

    return (
        f"Generate a text in {target_language} {about} {LEVEL_REQUIREMENTS[level]}\n\n"
        f"{focus}\n\n"
        "The text should be natural, engaging and suitable for language learning, "
        "strictly adhering to the vocabulary and grammar level specified.\n\n"
        'Return a JSON object with a single key "text" holding the lesson text.'
    )


def generate_lesson_text(
    language: str,
    topic: Optional[str] = None,
    level: Optional[str] = None,
    client: Optional[GeminiClient] = None,
) -> Dict[str, Optional[str]]:
    """Generate a lesson text.

    Returns a dict with keys text, language, topic and level. Raises
    LessonGenerationError when Gemini is unavailable or answers badly.
    """
    client = client or get_gemini_client()
    if not client or not client.is_configured:
        raise LessonGenerationError('Gemini API key is required. Please provide your own API key.')

    level = normalize_level(level)
    prompt = build_level_prompt(language, topic, level)
    payload = client.generate_json(
        prompt,
        temperature=0.7,
        system_instruction=LESSON_SYSTEM_PROMPT,
        max_output_tokens=1024,
    )

    text = payload.get('text') if isinstance(payload, dict) else None
    if not isinstance(text, str) or not text.strip():
        current_app.logger.error("Lesson generation returned no text (language=%s, level=%s)", language, level)
        raise LessonGenerationError('Failed to generate text with AI')

    current_app.logger.info("Generated %s lesson text (%s, topic=%s)", language, level, topic)
    return {
        'text': text.strip(),
        'language': language,
        'topic': topic,
        'level': level,
    }
