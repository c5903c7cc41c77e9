"""Tests for generation providers: error taxonomy mapping and the factory."""

import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from mneme.protocols import GenerationError, GenerationRateLimited, GenerationUnavailable
from mneme.providers.gemini import GeminiGenerator
from mneme.server.providers import create_generator


def _response(body: dict) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(body).encode()
    cm = MagicMock()
    cm.__enter__.return_value = resp
    return cm


def _http_error(code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://example.invalid", code, "status", {}, None)


# ============================================================================
# GeminiGenerator
# ============================================================================

class TestGemini:
    def test_extracts_text(self):
        body = {"candidates": [{"content": {"parts": [{"text": "  Values have one owner.\n"}]}}]}
        with patch("urllib.request.urlopen", return_value=_response(body)) as urlopen:
            text = GeminiGenerator("k", model="gemini-test").complete("prompt")

        assert text == "Values have one owner."
        req = urlopen.call_args[0][0]
        assert req.full_url.endswith("/models/gemini-test:generateContent")
        assert req.get_header("X-goog-api-key") == "k"
        assert json.loads(req.data)["contents"][0]["parts"][0]["text"] == "prompt"

    @pytest.mark.parametrize("body", [{}, {"candidates": []}, {"candidates": [{"content": {}}]}])
    def test_missing_content_is_empty(self, body):
        with patch("urllib.request.urlopen", return_value=_response(body)):
            assert GeminiGenerator("k").complete("prompt") == ""

    def test_rate_limited(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(429)):
            with pytest.raises(GenerationRateLimited):
                GeminiGenerator("k").complete("prompt")

    @pytest.mark.parametrize("code", [500, 503, 529])
    def test_overloaded(self, code):
        with patch("urllib.request.urlopen", side_effect=_http_error(code)):
            with pytest.raises(GenerationUnavailable):
                GeminiGenerator("k").complete("prompt")

    def test_unreachable(self):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(GenerationUnavailable):
                GeminiGenerator("k").complete("prompt")

    def test_client_error_not_retryable(self):
        with patch("urllib.request.urlopen", side_effect=_http_error(400)):
            with pytest.raises(urllib.error.HTTPError) as info:
                GeminiGenerator("k").complete("prompt")
        assert not isinstance(info.value, GenerationError)


# ============================================================================
# create_generator
# ============================================================================

class TestCreateGenerator:
    def test_no_key_means_no_generator(self):
        assert create_generator("anthropic", "") is None

    def test_gemini(self):
        gen = create_generator("gemini", "k", model="gemini-test", max_tokens=256)
        assert isinstance(gen, GeminiGenerator)
        assert gen.model == "gemini-test"
        assert gen.max_tokens == 256

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_generator("mystery", "k")
