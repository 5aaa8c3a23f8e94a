"""Client wrapper around the Google Gemini Generative Language API."""
from __future__ import annotations

import base64
import json
import os
import time
from typing import Any, Dict, Optional

import requests
from flask import current_app

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiClient:
    """Lightweight client for JSON text generation and image generation via Gemini."""

    DEFAULT_MODEL = "gemini-2.5-flash-lite"
    DEFAULT_IMAGE_MODEL = "imagen-3.0-generate-002"
    DEFAULT_TIMEOUT = 40
    MAX_RETRIES = 4
    RETRY_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}
    BACKOFF_INITIAL_SECONDS = 1.5
    BACKOFF_MAX_SECONDS = 30

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model = os.getenv("GEMINI_MODEL", self.DEFAULT_MODEL)
        self.image_model = os.getenv("GEMINI_IMAGE_MODEL", self.DEFAULT_IMAGE_MODEL)
        try:
            self.timeout = int(os.getenv("GEMINI_TIMEOUT_SECONDS", str(self.DEFAULT_TIMEOUT)))
        except ValueError:
            self.timeout = self.DEFAULT_TIMEOUT
        self.fallback_model = os.getenv("GEMINI_FALLBACK_MODEL", "gemini-2.5-flash")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _endpoint(self, model: str, method: str) -> str:
        return f"{API_BASE}/{model}:{method}"

    def _post(self, url: str, payload: Dict[str, Any], max_attempts: Optional[int] = None) -> Dict[str, Any]:
        """POST with exponential backoff on transient failures.

        Returns the decoded body ({} if it is not JSON). Raises the last
        ``requests`` exception once attempts are exhausted.
        """
        attempts = max_attempts or self.MAX_RETRIES
        backoff = self.BACKOFF_INITIAL_SECONDS

        for attempt in range(attempts):
            try:
                response = requests.post(f"{url}?key={self.api_key}", json=payload, timeout=self.timeout)
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as exc:
                    current_app.logger.error("Failed to parse Gemini response as JSON: %s", exc)
                    return {}
            except requests.exceptions.HTTPError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in self.RETRY_STATUS_CODES or attempt == attempts - 1:
                    current_app.logger.error("Gemini HTTP error: %s - %s", status_code, exc)
                    raise
                reason = f"HTTP {status_code}"
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                if attempt == attempts - 1:
                    current_app.logger.error("Gemini request failed after retries: %s", exc)
                    raise
                reason = str(exc)

            wait = min(backoff, self.BACKOFF_MAX_SECONDS)
            current_app.logger.warning(
                "Gemini request failed (%s). Retrying in %.1fs (attempt %s/%s).",
                reason,
                wait,
                attempt + 1,
                attempts,
            )
            time.sleep(wait)
            backoff *= 2

        return {}

    def generate_json(
        self,
        prompt: str,
        temperature: float = 0.7,
        system_instruction: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        model_override: Optional[str] = None,
    ) -> Optional[Any]:
        """Send a prompt and parse the JSON object Gemini answers with.

        Returns None when the client is not configured or the answer holds no
        usable JSON.
        """
        if not self.is_configured:
            current_app.logger.error("Gemini API not configured - API key missing")
            return None

        payload: Dict[str, Any] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }
        if max_output_tokens is not None:
            payload["generationConfig"]["maxOutputTokens"] = max_output_tokens
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        model = model_override or self.model
        data = self._post(self._endpoint(model, "generateContent"), payload)
        text, finish_reason = self._extract_text_and_finish_reason(data)

        # An empty MAX_TOKENS answer gets one more try on the larger model
        if not text and finish_reason == "MAX_TOKENS" and self.fallback_model and self.fallback_model != model:
            current_app.logger.warning(
                "Gemini returned MAX_TOKENS with empty content on model=%s; retrying with %s",
                model,
                self.fallback_model,
            )
            data = self._post(self._endpoint(self.fallback_model, "generateContent"), payload)
            text, finish_reason = self._extract_text_and_finish_reason(data)

        if not text:
            current_app.logger.error(
                "Gemini response contained empty text. Finish reason: %s, response: %s",
                finish_reason,
                str(data)[:500],
            )
            return None

        parsed = self._robust_parse_json(text)
        if parsed is None:
            current_app.logger.error("Gemini JSON parsing failed. First 500 chars: %s", text[:500])
        return parsed

    def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> Optional[bytes]:
        """Generate one image and return its raw bytes, or None."""
        if not self.is_configured:
            current_app.logger.error("Gemini API not configured - cannot generate image")
            return None

        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {"sampleCount": 1, "aspectRatio": aspect_ratio},
        }
        data = self._post(self._endpoint(self.image_model, "predict"), payload, max_attempts=2)
        predictions = data.get("predictions") or []
        encoded = predictions[0].get("bytesBase64Encoded") if predictions else None
        if not encoded:
            current_app.logger.error("Gemini image response had no image data: %s", str(data)[:300])
            return None
        try:
            return base64.b64decode(encoded)
        except (ValueError, TypeError) as exc:
            current_app.logger.error("Could not decode Gemini image payload: %s", exc)
            return None

    @staticmethod
    def _parse_json_response(text: str) -> Optional[Any]:
        """Parse a JSON payload even if wrapped in markdown fences."""
        if not text:
            return None

        text = text.strip()
        if text.startswith("```"):
            parts = text.split("```")
            text = parts[1] if len(parts) > 1 else text
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _robust_parse_json(text: str) -> Optional[Any]:
        """Parse JSON, falling back to the outermost object found in stray prose."""
        parsed = GeminiClient._parse_json_response(text)
        if parsed is not None:
            return parsed

        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _extract_text_and_finish_reason(data: Dict[str, Any]) -> tuple[str, Optional[str]]:
        """Return the first non-empty candidate text with its finish reason."""
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                current_app.logger.error("Gemini blocked request. Reason: %s", block_reason)
            else:
                current_app.logger.warning("Gemini response missing candidates: %s", str(data)[:300])
            return "", None

        first_finish: Optional[str] = None
        for cand in candidates:
            finish_reason = cand.get("finishReason")
            first_finish = first_finish or finish_reason
            parts = (cand.get("content") or {}).get("parts", [])
            collected = [
                part["text"] for part in parts
                if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip()
            ]
            if collected:
                return "".join(collected), finish_reason

        return "", first_finish


def get_gemini_client(api_key: Optional[str] = None) -> GeminiClient:
    """Factory helper; ``api_key`` overrides the server key (user-supplied keys)."""
    return GeminiClient(api_key=api_key)
