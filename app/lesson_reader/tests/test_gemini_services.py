import base64
from unittest import mock

import pytest
import requests
from flask import Flask

from app.lesson_reader.services import cover_image, lesson_generator, translation_service, tts_service
from app.lesson_reader.services.gemini_client import GeminiClient
from app.lesson_reader.services.lesson_generator import LessonGenerationError, build_level_prompt, normalize_level
from app.lesson_reader.services.translation_service import TranslationError


class _Resp:
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self):
        if 400 <= self.status_code:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        return self._payload


def _text_response(text, finish_reason="STOP"):
    return _Resp(200, {
        "candidates": [
            {
                "finishReason": finish_reason,
                "content": {"parts": [{"text": text}]},
            }
        ]
    })


class _StubClient:
    """Stands in for GeminiClient.generate_json."""

    model = "stub-model"

    def __init__(self, payload, configured=True):
        self.payload = payload
        self.is_configured = configured
        self.prompts = []

    def generate_json(self, prompt, **kwargs):
        self.prompts.append((prompt, kwargs))
        return self.payload


@pytest.fixture(autouse=True)
def app_context(tmp_path):
    app = Flask(__name__)
    app.config.update(MEDIA_ROOT=str(tmp_path), COVER_IMAGES_ENABLED=True)
    app.add_url_rule("/media/<path:filename>", "media_file", lambda filename: filename)
    with app.test_request_context():
        yield app


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("app.lesson_reader.services.gemini_client.time.sleep", lambda *_: None)


def test_max_tokens_empty_text_falls_back(monkeypatch):
    monkeypatch.setenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
    monkeypatch.setenv("GEMINI_FALLBACK_MODEL", "gemini-2.5-flash")
    client = GeminiClient(api_key="test-key")

    first = _text_response("", finish_reason="MAX_TOKENS")
    second = _text_response("{\"ok\": true}")
    calls = []

    def fake_post(url, json=None, timeout=None):  # noqa: A002 - shadowing builtin allowed in tests
        calls.append(url)
        return first if len(calls) == 1 else second

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post", side_effect=fake_post):
        result = client.generate_json("prompt")

    assert result == {"ok": True}
    assert "/gemini-2.5-flash-lite:generateContent" in calls[0]
    assert "/gemini-2.5-flash:generateContent" in calls[1]
    assert calls[0].endswith("?key=test-key")


def test_retries_transient_errors_then_succeeds():
    client = GeminiClient(api_key="test-key")
    responses = [_Resp(503, {}), _Resp(429, {}), _text_response("{\"text\": \"Bonjour\"}")]

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post", side_effect=responses) as post:
        result = client.generate_json("prompt", system_instruction="be brief", max_output_tokens=64)

    assert result == {"text": "Bonjour"}
    assert post.call_count == 3
    payload = post.call_args.kwargs["json"]
    assert payload["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert payload["generationConfig"]["maxOutputTokens"] == 64


def test_client_errors_are_not_retried():
    client = GeminiClient(api_key="test-key")

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post", return_value=_Resp(400, {})) as post:
        with pytest.raises(requests.exceptions.HTTPError):
            client.generate_json("prompt")

    assert post.call_count == 1


def test_unconfigured_client_skips_network(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    client = GeminiClient()

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post") as post:
        assert client.generate_json("prompt") is None
        assert client.generate_image("a cat") is None

    assert not client.is_configured
    post.assert_not_called()


def test_blocked_prompt_returns_none():
    client = GeminiClient(api_key="test-key")
    blocked = _Resp(200, {"promptFeedback": {"blockReason": "SAFETY"}})

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post", return_value=blocked):
        assert client.generate_json("prompt") is None


def test_robust_json_substring_extraction():
    text = "Some preface. Here is JSON: ```json\n{\n  \"a\": 1\n}\n``` and some trailer."
    parsed = GeminiClient._robust_parse_json(text)
    assert isinstance(parsed, dict)
    assert parsed.get("a") == 1


def test_fenced_json_is_parsed():
    assert GeminiClient._parse_json_response("```json\n{\"translation\": \"gato\"}\n```") == {"translation": "gato"}
    assert GeminiClient._robust_parse_json("no json here") is None


def test_generate_image_decodes_bytes():
    client = GeminiClient(api_key="test-key")
    encoded = base64.b64encode(b"\x89PNG").decode()
    response = _Resp(200, {"predictions": [{"bytesBase64Encoded": encoded}]})

    with mock.patch("app.lesson_reader.services.gemini_client.requests.post", return_value=response) as post:
        assert client.generate_image("a cat") == b"\x89PNG"

    assert ":predict" in post.call_args.args[0]


# ----------------------------------------------------------------------------
# Lesson generation and translation
# ----------------------------------------------------------------------------

@pytest.mark.parametrize("level, expected", [
    ("advanced", "advanced"),
    ("expert", "beginner"),
    (None, "beginner"),
])
def test_normalize_level(level, expected):
    assert normalize_level(level) == expected


def test_level_prompt_mentions_language_and_topic():
    prompt = build_level_prompt("french", "la cuisine", "intermediate")

    assert "French" in prompt
    assert 'Stay on the topic "la cuisine"' in prompt
    assert "120-180 words" in prompt


def test_generate_lesson_text():
    client = _StubClient({"text": "  Bonjour le monde.  "})

    result = lesson_generator.generate_lesson_text("french", topic="Paris", level="wizard", client=client)

    assert result == {"text": "Bonjour le monde.", "language": "french", "topic": "Paris", "level": "beginner"}
    assert "80-120 words" in client.prompts[0][0]


@pytest.mark.parametrize("client", [
    _StubClient({"text": "x"}, configured=False),
    _StubClient(None),
    _StubClient({"text": "   "}),
    _StubClient(["not", "a", "dict"]),
])
def test_generate_lesson_text_failures(client):
    with pytest.raises(LessonGenerationError):
        lesson_generator.generate_lesson_text("english", client=client)


def test_translate_text():
    client = _StubClient({"translation": " gato "})

    result = translation_service.translate_text("chat", "french", client=client)

    assert result == {
        "translatedText": "gato",
        "sourceText": "chat",
        "sourceLanguage": "french",
        "targetLanguage": "portuguese",
    }
    assert "from French to Portuguese" in client.prompts[0][0]


@pytest.mark.parametrize("text, language, client", [
    ("  ", "french", _StubClient({"translation": "x"})),
    ("chat", "german", _StubClient({"translation": "x"})),
    ("chat", "french", _StubClient({"translation": "x"}, configured=False)),
    ("chat", "french", _StubClient({})),
])
def test_translate_text_failures(text, language, client):
    with pytest.raises(TranslationError):
        translation_service.translate_text(text, language, client=client)


# ----------------------------------------------------------------------------
# Audio and cover images
# ----------------------------------------------------------------------------

def test_estimate_sync_data():
    sync = tts_service.estimate_sync_data(["Bonjour", "le", "monde"], 3.0)

    assert [entry["word_index"] for entry in sync] == [0, 1, 2]
    assert sync[1] == {"word": "le", "start_time": 1.0, "end_time": 2.0, "word_index": 1}
    assert tts_service.estimate_sync_data([], 3.0) == []


def test_generate_audio_with_gtts(app_context, tmp_path, monkeypatch):
    created = []

    class _FakeGTTS:
        def __init__(self, text, lang, slow):
            created.append((text, lang, slow))

        def save(self, path):
            with open(path, "wb") as handle:
                handle.write(b"mp3")

    monkeypatch.setattr(tts_service, "gTTS", _FakeGTTS)

    result = tts_service.get_tts_service().generate_audio("Bonjour le monde", "french", 7, filename_prefix="ai-generated")

    assert created == [("Bonjour le monde", "fr", False)]
    assert result.relative_path.startswith("audio/7/ai-generated-")
    assert (tmp_path / result.relative_path).read_bytes() == b"mp3"
    assert len(result.sync_data) == 3
    assert result.provider == "gtts"


def test_generate_audio_errors(monkeypatch):
    class _BrokenGTTS:
        def __init__(self, *args, **kwargs):
            pass

        def save(self, path):
            raise OSError("network unreachable")

    monkeypatch.setattr(tts_service, "gTTS", _BrokenGTTS)
    service = tts_service.TTSService()

    with pytest.raises(tts_service.TTSError):
        service.generate_audio("Bonjour", "french", 1)
    with pytest.raises(tts_service.TTSError):
        service.generate_audio("   ", "french", 1)


def test_cover_image_is_stored(tmp_path):
    client = mock.Mock(is_configured=True)
    client.generate_image.return_value = b"\x89PNG"

    relative = cover_image.generate_lesson_cover("Au café", "french", 3, content="Un café, s'il vous plaît.", client=client)

    assert relative.startswith("covers/3/cover-")
    assert (tmp_path / relative).read_bytes() == b"\x89PNG"
    assert "French" in client.generate_image.call_args.args[0]


def test_cover_image_failures_are_swallowed(app_context):
    client = mock.Mock(is_configured=True)
    client.generate_image.side_effect = requests.exceptions.ConnectionError("down")
    assert cover_image.generate_lesson_cover("Au café", "french", 3, client=client) is None

    assert cover_image.generate_lesson_cover("Au café", "french", 3, client=mock.Mock(is_configured=False)) is None

    app_context.config["COVER_IMAGES_ENABLED"] = False
    client.generate_image.reset_mock()
    assert cover_image.generate_lesson_cover("Au café", "french", 3, client=client) is None
    client.generate_image.assert_not_called()
