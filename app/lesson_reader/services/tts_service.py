"""
Text-to-speech for lesson audio, with estimated word timings.

gTTS produces the MP3; it reports no word timestamps, so timings are spread
evenly over an estimated speaking duration. The timings are stored as the
lesson's audio sync data and can be replaced later through the sync endpoint.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from flask import current_app
from gtts import gTTS

from .media_storage import AUDIO_DIR, allocate_path

GTTS_LANGUAGE_CODES = {
    'english': 'en',
    'french': 'fr',
}

# ~140 words per minute
WORDS_PER_SECOND = 2.33


class TTSError(RuntimeError):
    """Raised when audio could not be produced."""


class TTSResult:
    """Result object for TTS generation."""

    def __init__(
        self,
        relative_path: str,
        duration_seconds: float,
        sync_data: List[Dict],
        provider: str
    ):
        self.relative_path = relative_path
        self.duration_seconds = duration_seconds
        self.sync_data = sync_data  # [{word, start_time, end_time, word_index}, ...]
        self.provider = provider


class TTSService:
    """Generate lesson audio files."""

    provider = 'gtts'

    def generate_audio(self, text: str, language: str, user_id: int,
                       filename_prefix: str = "lesson") -> TTSResult:
        """
        Synthesize ``text`` and store it as an MP3.

        Args:
            text: The text to convert to speech
            language: Lesson language ('english' or 'french')
            user_id: Owner of the file (files are grouped per user)
            filename_prefix: Prefix for the audio filename

        Returns:
            TTSResult with the stored file, duration and estimated word timings
        """
        text = (text or '').strip()
        if not text:
            raise TTSError('Text is required for speech synthesis')

        lang = GTTS_LANGUAGE_CODES.get(language, 'en')
        file_path, relative = allocate_path(AUDIO_DIR, user_id, 'mp3', prefix=filename_prefix)

        try:
            tts = gTTS(text=text, lang=lang, slow=False)
            tts.save(str(file_path))
        except Exception as exc:  # gTTS raises assorted network/runtime errors
            current_app.logger.error("gTTS generation failed: %s", exc)
            raise TTSError('Failed to generate audio with AI') from exc

        words = text.split()
        duration = round(len(words) / WORDS_PER_SECOND, 3)
        current_app.logger.info("Generated %s audio (%s words, ~%.1fs)", language, len(words), duration)
        return TTSResult(
            relative_path=relative,
            duration_seconds=duration,
            sync_data=estimate_sync_data(words, duration),
            provider=self.provider,
        )


def estimate_sync_data(words: List[str], total_duration: float) -> List[Dict]:
    """
    Spread word timings uniformly over ``total_duration``.

    Fallback for providers without real timestamps.
    """
    if not words:
        return []

    time_per_word = total_duration / len(words)
    return [
        {
            'word': word,
            'start_time': round(i * time_per_word, 3),
            'end_time': round((i + 1) * time_per_word, 3),
            'word_index': i,
        }
        for i, word in enumerate(words)
    ]


def get_tts_service() -> TTSService:
    return TTSService()
