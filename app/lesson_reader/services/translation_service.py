"""Translate saved words and sentences into the learner's native language."""
from __future__ import annotations

from typing import Dict, Optional

from flask import current_app

from .gemini_client import GeminiClient, get_gemini_client
from .lesson_generator import LANGUAGE_NAMES

TRANSLATION_SYSTEM_PROMPT = (
    "You are a professional translator. Your translations are accurate, natural and "
    "appropriate to context. Return strict JSON only."
)


class TranslationError(RuntimeError):
    """Raised when a translation cannot be produced."""


def build_translation_prompt(text: str, source_language: str, target_language: str) -> str:
    source = LANGUAGE_NAMES.get(source_language, source_language.title())
    target = target_language.title()
    return (
        f"Translate the following text from {source} to {target}.\n\n"
        "INSTRUCTIONS:\n"
        "- Give a natural and accurate translation that keeps the original tone\n"
        "- For a single word, give its most common and useful translation\n"
        "- For a phrase or sentence, keep an appropriate grammatical structure\n"
        "- Do not add explanations\n\n"
        f'Text: "{text}"\n\n'
        'Return a JSON object: {"translation": "..."}'
    )


def translate_text(
    text: str,
    source_language: str,
    target_language: str = 'portuguese',
    client: Optional[GeminiClient] = None,
) -> Dict[str, str]:
    """Translate ``text`` and return the translation with its metadata.

    Raises TranslationError on empty input, an unsupported source language, an
    unconfigured client or an unusable answer.
    """
    text = (text or '').strip()
    if not text:
        raise TranslationError('Text to translate cannot be empty')
    if source_language not in LANGUAGE_NAMES:
        raise TranslationError('Source language must be english or french')

    client = client or get_gemini_client()
    if not client or not client.is_configured:
        raise TranslationError('Gemini API key is required for translation.')

    payload = client.generate_json(
        build_translation_prompt(text, source_language, target_language),
        temperature=0.3,
        system_instruction=TRANSLATION_SYSTEM_PROMPT,
        max_output_tokens=256,
    )
    translated = payload.get('translation') if isinstance(payload, dict) else None
    if not isinstance(translated, str) or not translated.strip():
        current_app.logger.error("No translation received for %r (%s)", text[:80], source_language)
        raise TranslationError('No translation received')

    return {
        'translatedText': translated.strip(),
        'sourceText': text,
        'sourceLanguage': source_language,
        'targetLanguage': target_language,
    }
