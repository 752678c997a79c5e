"""Tests for the LLM gateway: parsing, retry policy, provider factory."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from lecturenotes.clients import GroqGateway, create_gateway
from lecturenotes.clients.gateway import (
    LLMGateway,
    backoff_ms,
    parse_json_response,
    validate_provider_config,
)
from lecturenotes.config import Settings
from lecturenotes.errors import UnsupportedProviderError

SCHEMA = {"type": "object", "required": ["answer"]}


def scripted(*replies):
    """Handler returning *replies* one after another."""
    queue = list(replies)
    return lambda prompt, schema: queue.pop(0)


# --- parse_json_response ---

class TestParseJsonResponse:
    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_strips_fences_and_prose(self):
        raw = 'Sure! Here you go:\n```json\n{"a": {"b": [1, 2]}}\n```\nAnything else?'
        assert parse_json_response(raw) == {"a": {"b": [1, 2]}}

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_json_response("no json here")


class TestBackoff:
    def test_exponential_and_capped(self):
        assert [backoff_ms(n) for n in (1, 2, 3, 4, 5, 6)] == [1000, 2000, 4000, 8000, 10000, 10000]


class TestIsRetryable:
    @pytest.mark.parametrize(
        "exc",
        [
            RuntimeError("Rate limit exceeded"),
            RuntimeError("HTTP 429 Too Many Requests"),
            RuntimeError("503 Service Unavailable"),
            RuntimeError("model is overloaded"),
            RuntimeError("quota exhausted"),
            ConnectionError("Connection reset by peer"),
            TimeoutError(),
        ],
    )
    def test_transient(self, exc):
        assert LLMGateway.is_retryable_error(exc)

    @pytest.mark.parametrize("exc", [ValueError("invalid api key"), KeyError("choices")])
    def test_permanent(self, exc):
        assert not LLMGateway.is_retryable_error(exc)


# --- generate_content ---

class TestGenerateContent:
    def test_structured_success(self, make_gateway):
        gateway = make_gateway(scripted('```json\n{"answer": 42}\n```'))
        result = asyncio.run(gateway.generate_content("q", SCHEMA))
        assert result.success
        assert result.data == {"answer": 42}
        assert result.retry_count == 0

    def test_text_mode_returns_raw_text(self, make_gateway):
        gateway = make_gateway(scripted("just words"))
        result = asyncio.run(gateway.generate_text("q"))
        assert result.success
        assert result.data == "just words"

    def test_retries_transient_errors_with_backoff(self, make_gateway):
        sleeps = []

        async def record(seconds):
            sleeps.append(seconds)

        gateway = make_gateway(
            scripted(RuntimeError("429 rate limit"), RuntimeError("503"), {"answer": 1}),
            sleep=record,
        )
        result = asyncio.run(gateway.generate_content("q", SCHEMA))

        assert result.success
        assert result.retry_count == 2
        assert sleeps == [1.0, 2.0]
        assert len(gateway.calls) == 3

    def test_exhausted_retries_return_failure(self, make_gateway):
        gateway = make_gateway(lambda p, s: RuntimeError("overloaded"), max_retries=3)
        result = asyncio.run(gateway.generate_content("q", SCHEMA))

        assert not result.success
        assert result.retry_count == 3
        assert "overloaded" in result.error
        assert len(gateway.calls) == 4

    def test_permanent_error_fails_immediately(self, make_gateway):
        gateway = make_gateway(lambda p, s: ValueError("invalid api key"))
        result = asyncio.run(gateway.generate_content("q", SCHEMA))

        assert not result.success
        assert result.retry_count == 0
        assert len(gateway.calls) == 1

    def test_parse_failure_is_not_retried(self, make_gateway):
        gateway = make_gateway(lambda p, s: "I cannot answer in JSON, sorry.")
        result = asyncio.run(gateway.generate_content("q", SCHEMA))

        assert not result.success
        assert "parse" in result.error.lower()
        assert result.raw_text == "I cannot answer in JSON, sorry."
        assert len(gateway.calls) == 1

    def test_empty_response_fails(self, make_gateway):
        gateway = make_gateway(lambda p, s: "   ")
        result = asyncio.run(gateway.generate_content("q", SCHEMA))
        assert not result.success
        assert len(gateway.calls) == 1

    def test_missing_required_field_is_advisory(self, make_gateway):
        gateway = make_gateway(scripted({"other": True}))
        result = asyncio.run(gateway.generate_content("q", SCHEMA))
        assert result.success
        assert result.data == {"other": True}

    def test_generate_structured_passes_schema(self, make_gateway):
        gateway = make_gateway(scripted({"answer": 3}))
        result = asyncio.run(gateway.generate_structured("q", SCHEMA, temperature=0.2))
        assert result.data == {"answer": 3}
        assert gateway.calls[0]["schema"] is SCHEMA
        assert gateway.calls[0]["temperature"] == 0.2

    def test_options_override_defaults(self, make_gateway):
        gateway = make_gateway(scripted({"answer": 1}), temperature=0.7)
        asyncio.run(gateway.generate_content("q", SCHEMA, system_prompt="sys", temperature=0.1))
        assert gateway.calls[0]["temperature"] == 0.1
        assert gateway.calls[0]["system_prompt"] == "sys"


class TestValidateResponse:
    def test_reports_missing_fields(self):
        assert LLMGateway.validate_response({"a": 1}, {"required": ["a", "b"]}) == [
            "Missing required field: b"
        ]

    def test_none_and_non_object(self):
        assert LLMGateway.validate_response(None, SCHEMA) == ["Response is empty"]
        assert LLMGateway.validate_response([1], SCHEMA)
        assert LLMGateway.validate_response("text", None) == []


# --- Groq backend ---

class TestGroqGateway:
    def test_schema_goes_to_system_message_in_json_mode(self):
        client = MagicMock()
        client.default_model = "llama-3.3-70b-versatile"
        client.chat = AsyncMock(return_value='{"answer": "yes"}')
        gateway = GroqGateway(client, max_tokens=100)

        result = asyncio.run(gateway.generate_content("question?", SCHEMA, system_prompt="Be brief."))

        assert result.data == {"answer": "yes"}
        messages = client.chat.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert messages[0]["content"].startswith("Be brief.")
        assert "JSON Schema" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "question?"}
        assert client.chat.call_args.kwargs["json_mode"] is True
        assert client.chat.call_args.kwargs["max_tokens"] == 100

    def test_text_mode_has_no_system_message(self):
        client = MagicMock()
        client.default_model = "m"
        client.chat = AsyncMock(return_value="plain")
        asyncio.run(GroqGateway(client).generate_text("hi"))

        assert client.chat.call_args.args[0] == [{"role": "user", "content": "hi"}]
        assert client.chat.call_args.kwargs["json_mode"] is False


class TestFactory:
    def test_groq(self):
        settings = Settings(_env_file=None, groq_api_key="test-key", llm_max_retries=5)
        gateway = create_gateway(settings)
        assert isinstance(gateway, GroqGateway)
        assert gateway.max_retries == 5
        assert gateway.info() == {"provider": "groq", "model": settings.default_model}

    def test_config_problems_are_logged(self, caplog):
        settings = Settings(_env_file=None, groq_api_key="", default_model="no-such-model")
        with caplog.at_level(logging.WARNING, logger="lecturenotes.clients.gateway"):
            create_gateway(settings)
        assert "Unknown model for groq: no-such-model" in caplog.text

    def test_unknown_provider(self):
        settings = Settings(_env_file=None, llm_provider="nope")
        with pytest.raises(UnsupportedProviderError):
            create_gateway(settings)
        with pytest.raises(ValueError):
            create_gateway(settings)


class TestValidateProviderConfig:
    def test_valid(self):
        assert validate_provider_config("groq", "key", "llama-3.3-70b-versatile", 0.5, 100) == []

    def test_problems(self):
        errors = validate_provider_config("groq", "", "no-such-model", 1.5, 0)
        assert errors == [
            "Unknown model for groq: no-such-model",
            "API key is required",
            "Temperature must be between 0 and 1",
            "Max tokens must be at least 1",
        ]

    def test_unknown_provider(self):
        assert validate_provider_config("other", "key") == ["Unknown provider: other"]
