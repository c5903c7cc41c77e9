"""Generation provider implementations for mneme-server."""

import logging
from typing import Optional

from mneme.protocols import GenerationBackend, GenerationRateLimited, GenerationUnavailable

logger = logging.getLogger(__name__)

# HTTP statuses vendors use for "overloaded, come back later"
_OVERLOADED_STATUSES = {500, 502, 503, 504, 529}


class AnthropicGenerator:
    """GenerationBackend using Anthropic's API."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 1024,
    ):
        import anthropic
        self._client = anthropic.Anthropic(api_key=api_key)
        self._default_model = default_model
        self._max_tokens = max_tokens

    def complete(self, prompt: str) -> str:
        import anthropic

        try:
            response = self._client.messages.create(
                model=self._default_model,
                max_tokens=self._max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            raise GenerationRateLimited(str(exc)) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code in _OVERLOADED_STATUSES:
                raise GenerationUnavailable(str(exc)) from exc
            raise
        except anthropic.APIConnectionError as exc:
            raise GenerationUnavailable(str(exc)) from exc

        if not response.content:
            return ""
        return getattr(response.content[0], "text", "") or ""


class OpenAIGenerator:
    """GenerationBackend using OpenAI's API."""

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", max_tokens: int = 1024):
        from openai import OpenAI
        self._client = OpenAI(api_key=api_key)
        self._default_model = default_model
        self._max_tokens = max_tokens

    def complete(self, prompt: str) -> str:
        import openai

        try:
            response = self._client.chat.completions.create(
                model=self._default_model,
                max_tokens=self._max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except openai.RateLimitError as exc:
            raise GenerationRateLimited(str(exc)) from exc
        except openai.APIStatusError as exc:
            if exc.status_code in _OVERLOADED_STATUSES:
                raise GenerationUnavailable(str(exc)) from exc
            raise
        except openai.APIConnectionError as exc:
            raise GenerationUnavailable(str(exc)) from exc

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


def create_generator(
    provider: str,
    api_key: str,
    model: str = "",
    max_tokens: int = 1024,
) -> Optional[GenerationBackend]:
    """Factory for generation providers. Returns None when no API key is set."""
    if not api_key:
        logger.warning("No generation API key configured; answers will report the service as unavailable")
        return None

    kwargs: dict = {"max_tokens": max_tokens}
    if provider == "anthropic":
        if model:
            kwargs["default_model"] = model
        return AnthropicGenerator(api_key=api_key, **kwargs)
    elif provider == "openai":
        if model:
            kwargs["default_model"] = model
        return OpenAIGenerator(api_key=api_key, **kwargs)
    elif provider == "gemini":
        from mneme.providers.gemini import GeminiGenerator
        if model:
            kwargs["model"] = model
        return GeminiGenerator(api_key=api_key, **kwargs)
    else:
        raise ValueError(
            f"Unknown generation provider: {provider}. Use 'anthropic', 'openai', or 'gemini'."
        )
