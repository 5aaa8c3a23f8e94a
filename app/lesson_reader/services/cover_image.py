"""Generate a cover illustration for a lesson."""
from __future__ import annotations

from typing import Optional

from flask import current_app

from .gemini_client import GeminiClient, get_gemini_client
from .lesson_generator import LANGUAGE_NAMES
from .media_storage import COVER_DIR, save_bytes

EXCERPT_CHARS = 300


def build_cover_prompt(title: str, language: str, content: str = '', topic: Optional[str] = None) -> str:
    subject = topic or title
    excerpt = ' '.join((content or '').split())[:EXCERPT_CHARS]
    prompt = (
        f"A warm, friendly flat illustration for a {LANGUAGE_NAMES.get(language, language)} "
        f"reading lesson titled \"{title}\" about {subject}. "
        "No text, letters or words in the image."
    )
    if excerpt:
        prompt += f" Scene inspired by: {excerpt}"
    return prompt


def generate_lesson_cover(
    title: str,
    language: str,
    user_id: int,
    content: str = '',
    topic: Optional[str] = None,
    client: Optional[GeminiClient] = None,
) -> Optional[str]:
    """Generate and store a cover image; returns its relative media name.

    Returns None when covers are disabled or generation fails. Failures never
    propagate: a lesson is still created without a cover.
    """
    if not current_app.config.get('COVER_IMAGES_ENABLED', True):
        return None

    client = client or get_gemini_client()
    if not client.is_configured:
        current_app.logger.warning("Skipping cover image for %r: Gemini not configured", title)
        return None

    try:
        image = client.generate_image(build_cover_prompt(title, language, content, topic))
    except Exception as exc:
        current_app.logger.error("Cover image generation failed for %r (%s): %s", title, language, exc)
        return None
    if not image:
        return None

    relative = save_bytes(image, COVER_DIR, user_id, 'png', prefix='cover')
    current_app.logger.info("Stored cover image %s for lesson %r", relative, title)
    return relative
