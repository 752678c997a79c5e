"""
LLM gateway: one request/response shape over a generative backend.

``generate_content`` never raises.  It returns a ``GenerationResult`` whose
``success`` flag tells the caller whether ``data`` is usable.

Error handling:

- transient transport errors (rate limit, quota, timeout, connection reset,
  HTTP 429/503, "overloaded") are retried with exponential backoff,
  ``min(1000 * 2**(n-1), 10000)`` ms before retry *n*;
- any other backend error fails immediately;
- a response that cannot be parsed as JSON fails immediately.  Retrying a
  malformed answer is left to the caller (e.g. a per-chapter retry).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from lecturenotes.clients.groq_client import AVAILABLE_MODELS, GroqClient
from lecturenotes.config import Settings
from lecturenotes.errors import UnsupportedProviderError

logger = logging.getLogger(__name__)

RETRYABLE_PATTERNS = (
    "rate limit",
    "ratelimit",
    "quota",
    "timeout",
    "timed out",
    "network",
    "connection error",
    "connection reset",
    "econnreset",
    "etimedout",
    "429",
    "503",
    "overloaded",
)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

SUPPORTED_PROVIDERS = {"groq": AVAILABLE_MODELS}


@dataclass
class GenerationResult:
    success: bool
    data: Any = None
    raw_text: str | None = None
    error: str | None = None
    retry_count: int = 0  # retries performed after the first attempt


def backoff_ms(retry: int) -> int:
    """Delay before retry number *retry* (1-based)."""
    return min(1000 * 2 ** (retry - 1), 10000)


def parse_json_response(raw_text: str) -> Any:
    """Strip Markdown fences and surrounding prose, then parse.

    Raises ``ValueError`` (``json.JSONDecodeError``) when nothing parseable
    remains.
    """
    text = _FENCE_RE.sub("", raw_text).strip()
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        text = text[first:last + 1]
    return json.loads(text)


class LLMGateway:
    """Base gateway.  Subclasses implement ``_generate`` for one backend."""

    provider = "base"

    def __init__(
        self,
        model: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 8192,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self._sleep = sleep

    async def _generate(
        self,
        prompt: str,
        schema: dict | None,
        system_prompt: str | None,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the backend's raw text for one attempt.  May raise."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def generate_content(
        self,
        prompt: str,
        schema: dict | None = None,
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationResult:
        temperature = self.temperature if temperature is None else temperature
        max_tokens = self.max_tokens if max_tokens is None else max_tokens
        retries = 0

        while True:
            try:
                raw_text = await self._generate(
                    prompt, schema, system_prompt, temperature, max_tokens
                )
                if not raw_text or not raw_text.strip():
                    raise RuntimeError(f"Empty response from {self.provider} backend")
            except Exception as exc:  # noqa: BLE001 - classified below
                message = f"{type(exc).__name__}: {exc}"
                if retries >= self.max_retries or not self.is_retryable_error(exc):
                    logger.error("%s call failed after %d retries: %s", self.provider, retries, message)
                    return GenerationResult(success=False, error=message, retry_count=retries)
                retries += 1
                delay = backoff_ms(retries)
                logger.warning(
                    "%s transient error (%s); retry %d/%d in %dms",
                    self.provider, message, retries, self.max_retries, delay,
                )
                await self._sleep(delay / 1000)
                continue

            if schema is None:
                return GenerationResult(
                    success=True, data=raw_text, raw_text=raw_text, retry_count=retries
                )

            try:
                data = parse_json_response(raw_text)
            except ValueError as exc:
                logger.warning(
                    "Failed to parse JSON response: %s (preview: %r)", exc, raw_text[:200]
                )
                return GenerationResult(
                    success=False,
                    raw_text=raw_text,
                    error=f"Failed to parse JSON response: {exc}",
                    retry_count=retries,
                )

            problems = self.validate_response(data, schema)
            if problems:
                logger.warning("Response validation warnings: %s", "; ".join(problems))
            return GenerationResult(
                success=True, data=data, raw_text=raw_text, retry_count=retries
            )

    async def generate_structured(self, prompt: str, schema: dict, **options) -> GenerationResult:
        return await self.generate_content(prompt, schema, **options)

    async def generate_text(self, prompt: str, **options) -> GenerationResult:
        return await self.generate_content(prompt, None, **options)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def is_retryable_error(exc: BaseException) -> bool:
        message = f"{type(exc).__name__}: {exc}".lower()
        return any(p in message for p in RETRYABLE_PATTERNS)

    @staticmethod
    def validate_response(data: Any, schema: dict | None) -> list[str]:
        """Advisory check of the schema's required top-level fields."""
        if data is None:
            return ["Response is empty"]
        if not schema:
            return []
        if not isinstance(data, dict):
            return [f"Expected a JSON object, got {type(data).__name__}"]
        return [
            f"Missing required field: {name}"
            for name in schema.get("required", [])
            if name not in data
        ]

    def info(self) -> dict:
        return {"provider": self.provider, "model": self.model}


class GroqGateway(LLMGateway):
    """Gateway over ``GroqClient``.

    The schema is sent as part of the system message and the request uses
    JSON object mode; the answer is still parsed defensively.
    """

    provider = "groq"

    def __init__(self, client: GroqClient, **kwargs) -> None:
        super().__init__(client.default_model, **kwargs)
        self.client = client

    async def _generate(self, prompt, schema, system_prompt, temperature, max_tokens) -> str:
        system_parts = [system_prompt] if system_prompt else []
        if schema is not None:
            system_parts.append(
                "Respond only with a JSON object that conforms to this JSON Schema:\n"
                + json.dumps(schema, ensure_ascii=False)
            )
        messages = []
        if system_parts:
            messages.append({"role": "system", "content": "\n\n".join(system_parts)})
        messages.append({"role": "user", "content": prompt})

        return await self.client.chat(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=schema is not None,
        )


def validate_provider_config(
    provider: str,
    api_key: str | None,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> list[str]:
    """Return a list of configuration problems (empty when valid)."""
    errors = []
    if not provider:
        errors.append("Provider is required")
    elif provider not in SUPPORTED_PROVIDERS:
        errors.append(f"Unknown provider: {provider}")
    elif model and model not in SUPPORTED_PROVIDERS[provider]:
        errors.append(f"Unknown model for {provider}: {model}")
    if not api_key:
        errors.append("API key is required")
    if temperature is not None and not 0 <= temperature <= 1:
        errors.append("Temperature must be between 0 and 1")
    if max_tokens is not None and max_tokens < 1:
        errors.append("Max tokens must be at least 1")
    return errors


def create_gateway(settings: Settings) -> LLMGateway:
    """Build the gateway named by ``settings.llm_provider``."""
    if settings.llm_provider == "groq":
        for problem in validate_provider_config(
            settings.llm_provider,
            settings.groq_api_key,
            settings.default_model,
            settings.llm_temperature,
            settings.llm_max_tokens,
        ):
            logger.warning("Gateway configuration: %s", problem)
        client = GroqClient(settings.default_model, settings.groq_api_key)
        return GroqGateway(
            client,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            max_retries=settings.llm_max_retries,
        )
    raise UnsupportedProviderError(f"Unsupported AI provider: {settings.llm_provider}")
