"""
Content generator client.

The generator is an external, slow (seconds) and network-fallible service
behind an OpenAI-compatible chat completions endpoint. This client performs
exactly one attempt per call; retry policy belongs to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from adaptive_review.config import Settings, get_settings
from adaptive_review.errors import GenerationError
from adaptive_review.models import TokenUsage


@dataclass(frozen=True)
class GenerationResult:
    """Generated text with optional accounting."""

    text: str
    usage: TokenUsage | None = None
    latency_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], latency_ms: int | None = None) -> GenerationResult:
        """Parse a chat completions response body."""
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"Malformed generator response: {e}") from e
        if not isinstance(text, str):
            raise GenerationError("Generator returned no text content")
        return cls(
            text=text,
            usage=TokenUsage.from_dict(data.get("usage")),
            latency_ms=latency_ms,
        )


class ContentGenerator(Protocol):
    """Anything that turns a prompt into text."""

    async def generate(self, prompt: str, model: str, temperature: float) -> GenerationResult:
        ...


class ChatCompletionsGenerator:
    """HTTP client for OpenAI-compatible /v1/chat/completions endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 45.0,
        max_tokens: int = 4000,
        system_prompt: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the generator client.

        Args:
            base_url: Base URL of the API (trailing slashes are stripped)
            api_key: Bearer token
            timeout_seconds: Per-request timeout
            max_tokens: Completion token cap
            system_prompt: Optional system message sent before the prompt
            client: Pre-built httpx client (mainly for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
        )

        if not api_key:
            logger.warning("Content generator API key is not configured")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ChatCompletionsGenerator:
        settings = settings or get_settings()
        return cls(
            base_url=settings.generator_base_url,
            api_key=settings.generator_api_key,
            timeout_seconds=settings.generator_timeout_seconds,
            max_tokens=settings.generator_max_tokens,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def _payload(self, prompt: str, model: str, temperature: float) -> dict[str, Any]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.max_tokens,
        }

    async def generate(self, prompt: str, model: str, temperature: float) -> GenerationResult:
        """
        Generate text for a prompt.

        Raises:
            GenerationError: On timeout, transport failure, non-2xx status or a
                malformed response body
        """
        started = time.perf_counter()
        try:
            response = await self.client.post(
                f"{self.base_url}/v1/chat/completions",
                json=self._payload(prompt, model, temperature),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Generator timed out for model {model}")
            raise GenerationError(f"Generator timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"Generator returned HTTP {status} for model {model}")
            raise GenerationError(f"Generator returned HTTP {status}", status_code=status) from e
        except httpx.RequestError as e:
            logger.warning(f"Generator request failed: {e}")
            raise GenerationError(f"Generator request failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Generator returned invalid JSON: {e}") from e

        latency_ms = int((time.perf_counter() - started) * 1000)
        return GenerationResult.from_dict(data, latency_ms=latency_ms)
