"""Gemini generation provider over the REST generateContent endpoint."""

import json
import logging
import urllib.error
import urllib.request

from mneme.protocols import GenerationRateLimited, GenerationUnavailable

logger = logging.getLogger(__name__)

_UNAVAILABLE_CODES = {500, 502, 503, 504, 529}


class GeminiGenerator:
    """
    GenerationBackend backed by Google's Gemini API.

    Uses plain urllib, no SDK. 429 maps to GenerationRateLimited; 5xx,
    timeouts and connection failures map to GenerationUnavailable. Other
    HTTP errors propagate and are not retried.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _raw_generate(self, prompt: str) -> dict:
        """POST generateContent and return the decoded JSON body."""
        payload = json.dumps({
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }).encode()
        req = urllib.request.Request(
            f"{self.base_url}/models/{self.model}:generateContent",
            data=payload,
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as exc:
            if exc.code == 429:
                raise GenerationRateLimited(f"Gemini rate limited: {exc.reason}") from exc
            if exc.code in _UNAVAILABLE_CODES:
                raise GenerationUnavailable(f"Gemini unavailable ({exc.code}): {exc.reason}") from exc
            raise
        except (urllib.error.URLError, TimeoutError) as exc:
            raise GenerationUnavailable(f"Gemini unreachable: {exc}") from exc

    def complete(self, prompt: str) -> str:
        data = self._raw_generate(prompt)
        candidates = data.get("candidates") or []
        if not candidates:
            logger.debug("Gemini returned no candidates: %s", data.get("promptFeedback"))
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return ""
        return (parts[0].get("text") or "").strip()
