"""Comprehensive unit tests for pocket_agent.llm.language_service.

Covers the hashed embedding and cosine helpers, the on-device rules,
the Messages API client with mocked httpx (success, retries, client
errors, malformed bodies), the fallback arrangement, and the factory.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import numpy as np
import pytest
from numpy.typing import NDArray

from pocket_agent.config.settings import Settings
from pocket_agent.core.intent_parser import build_classification_prompt
from pocket_agent.llm.language_service import (
    EMBEDDING_DIM,
    GENERIC_REPLY,
    AnthropicLanguageService,
    FallbackLanguageService,
    LanguageService,
    LanguageServiceError,
    RuleBasedLanguageService,
    cosine_similarity,
    create_language_service,
    hash_embedding,
    is_confident_local_reply,
)

# ------------------------------------------------------------------
# Mock collaborators
# ------------------------------------------------------------------


class ScriptedService(LanguageService):
    """Returns a fixed reply, raises, or stalls."""

    def __init__(
        self,
        reply: str = "scripted",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def generate(self, prompt: str, max_tokens: int = 512) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    async def embed(self, text: str) -> NDArray[np.float32]:
        return hash_embedding(text)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _make_settings(**overrides: Any) -> Settings:
    """Settings with no back-off so retry tests run instantly."""
    overrides.setdefault("api_backoff_base_seconds", 0.0)
    return Settings.from_dict(overrides)


def _mock_httpx_response(
    status_code: int = 200,
    json_body: dict | None = None,
    text: str = "",
) -> MagicMock:
    """Create a mock that quacks like an httpx.Response."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.text = text or json.dumps(json_body or {})
    resp.json.return_value = json_body or {}
    return resp


def _text_body(*texts: str) -> dict:
    return {"content": [{"type": "text", "text": t} for t in texts]}


def _async_client(post: AsyncMock) -> MagicMock:
    """An httpx.AsyncClient stand-in usable with ``async with``."""
    client = MagicMock(spec=httpx.AsyncClient)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.post = post
    return client


# ==================================================================
# Vector helpers
# ==================================================================


class TestHashEmbedding:
    """Tests for hash_embedding() and cosine_similarity()."""

    def test_shape_and_norm(self) -> None:
        vector = hash_embedding("open the camera")
        assert vector.shape == (EMBEDDING_DIM,)
        assert float(np.linalg.norm(vector)) == pytest.approx(1.0)

    def test_deterministic(self) -> None:
        assert np.array_equal(hash_embedding("call mom"), hash_embedding("call mom"))

    def test_case_and_punctuation_ignored(self) -> None:
        assert np.array_equal(hash_embedding("Call Mom!"), hash_embedding("call mom"))

    def test_empty_is_zero(self) -> None:
        assert not hash_embedding("  ").any()

    def test_cosine_identical(self) -> None:
        v = hash_embedding("set an alarm")
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_cosine_zero_vector(self) -> None:
        v = hash_embedding("set an alarm")
        assert cosine_similarity(v, np.zeros_like(v)) == 0.0

    def test_cosine_shape_mismatch(self) -> None:
        with pytest.raises(ValueError, match="dimensions"):
            cosine_similarity(np.ones(3, dtype=np.float32), np.ones(4, dtype=np.float32))


# ==================================================================
# On-device rules
# ==================================================================


class TestRuleBasedService:
    """Tests for RuleBasedLanguageService."""

    @pytest.mark.parametrize(
        ("request_text", "prefix"),
        [
            ("remind me to call mom", "ACTIONABLE - Set a reminder"),
            ("send a text to bob", "ACTIONABLE - Send a message"),
            ("open spotify", "ACTIONABLE - Open an app"),
            ("search for tacos", "ACTIONABLE - Perform a search"),
            ("what is a black hole", "INFORMATIONAL - Definition query"),
            ("how do magnets work", "INFORMATIONAL - How-to query"),
            ("is it sunny?", "INFORMATIONAL - General question"),
            ("banana", "UNCLEAR"),
        ],
    )
    def test_classify(self, request_text: str, prefix: str) -> None:
        assert RuleBasedLanguageService.classify(request_text).startswith(prefix)

    def test_classification_prompt_uses_quoted_request(self) -> None:
        """Only the quoted request is classified, not the instructions."""
        prompt = (
            "Classify this request as ACTIONABLE, INFORMATIONAL or UNCLEAR.\n"
            'User request: "banana"'
        )
        reply = asyncio.run(RuleBasedLanguageService().generate(prompt))
        assert reply.startswith("UNCLEAR")

    def test_reply_prompt_uses_user_line(self) -> None:
        prompt = "You are a phone assistant.\nUser: what can you do\nAssistant:"
        reply = asyncio.run(RuleBasedLanguageService().generate(prompt))
        assert "Send messages to contacts" in reply

    def test_reply_time(self) -> None:
        now = datetime(2024, 5, 17, 9, 5)
        assert RuleBasedLanguageService.reply("what time is it", now) == (
            "The current time is 9:05 AM."
        )

    def test_reply_date(self) -> None:
        now = datetime(2024, 5, 17, 9, 5)
        assert RuleBasedLanguageService.reply("what's the date", now) == (
            "Today is Friday, May 17, 2024."
        )

    def test_reply_default(self) -> None:
        assert "more specific" in RuleBasedLanguageService.reply("hmm")

    def test_embed(self) -> None:
        vector = asyncio.run(RuleBasedLanguageService().embed("hello"))
        assert vector.shape == (EMBEDDING_DIM,)


# ==================================================================
# Remote API
# ==================================================================


class TestAnthropicNoApiKey:
    """Behaviour when no API key is configured."""

    def test_generate_raises(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            service = AnthropicLanguageService(_make_settings(), api_key="")
        assert service.has_api_key is False
        with pytest.raises(LanguageServiceError, match="API key"):
            asyncio.run(service.generate("hi"))

    def test_key_from_environment(self) -> None:
        with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-env"}, clear=True):
            service = AnthropicLanguageService(_make_settings())
        assert service.has_api_key is True


class TestAnthropicGenerate:
    """Tests for AnthropicLanguageService.generate with mocked httpx."""

    def test_success_joins_text_blocks(self) -> None:
        post = AsyncMock(return_value=_mock_httpx_response(200, _text_body("Hello", " there ")))
        service = AnthropicLanguageService(_make_settings(), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            reply = asyncio.run(service.generate("hi", max_tokens=64))

        assert reply == "Hello there"
        _, kwargs = post.call_args
        assert kwargs["json"]["max_tokens"] == 64
        assert kwargs["json"]["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["headers"]["x-api-key"] == "sk-test"

    def test_http_400_does_not_retry(self) -> None:
        """A 4xx error is not retried (only 5xx triggers retries)."""
        post = AsyncMock(return_value=_mock_httpx_response(400, text="Bad request"))
        service = AnthropicLanguageService(_make_settings(api_max_retries=3), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            with pytest.raises(LanguageServiceError, match="400"):
                asyncio.run(service.generate("hi"))
        assert post.call_count == 1

    def test_http_500_retries(self) -> None:
        """A 500 error is retried up to api_max_retries times."""
        post = AsyncMock(return_value=_mock_httpx_response(500, text="Internal Server Error"))
        service = AnthropicLanguageService(_make_settings(api_max_retries=3), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            with pytest.raises(LanguageServiceError, match="500"):
                asyncio.run(service.generate("hi"))
        assert post.call_count == 3

    def test_recovers_after_transient_error(self) -> None:
        """A 503 followed by a 200 returns the reply."""
        post = AsyncMock(
            side_effect=[
                _mock_httpx_response(503, text="busy"),
                _mock_httpx_response(200, _text_body("ok")),
            ]
        )
        service = AnthropicLanguageService(_make_settings(api_max_retries=3), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            assert asyncio.run(service.generate("hi")) == "ok"
        assert post.call_count == 2

    def test_network_error_retries(self) -> None:
        """An httpx.ConnectError triggers retries."""
        post = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))
        service = AnthropicLanguageService(_make_settings(api_max_retries=2), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            with pytest.raises(LanguageServiceError, match="ConnectError"):
                asyncio.run(service.generate("hi"))
        assert post.call_count == 2

    def test_backoff_doubles(self) -> None:
        """Back-off waits base, then twice base, between attempts."""
        post = AsyncMock(return_value=_mock_httpx_response(500, text="down"))
        settings = _make_settings(api_max_retries=3, api_backoff_base_seconds=0.5)
        service = AnthropicLanguageService(settings, api_key="sk-test")
        sleep = AsyncMock()
        with patch("httpx.AsyncClient", return_value=_async_client(post)), patch(
            "pocket_agent.llm.language_service.asyncio.sleep", sleep
        ):
            with pytest.raises(LanguageServiceError):
                asyncio.run(service.generate("hi"))
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_no_text_blocks(self) -> None:
        body = {"content": [{"type": "tool_use", "id": "x"}]}
        post = AsyncMock(return_value=_mock_httpx_response(200, body))
        service = AnthropicLanguageService(_make_settings(), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            with pytest.raises(LanguageServiceError, match="no text"):
                asyncio.run(service.generate("hi"))

    def test_invalid_json(self) -> None:
        resp = _mock_httpx_response(200, text="<html>")
        resp.json.side_effect = ValueError("Expecting value")
        post = AsyncMock(return_value=resp)
        service = AnthropicLanguageService(_make_settings(), api_key="sk-test")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            with pytest.raises(LanguageServiceError, match="invalid JSON"):
                asyncio.run(service.generate("hi"))


# ==================================================================
# Fallback arrangement and factory
# ==================================================================


class TestFallbackService:
    """Tests for FallbackLanguageService."""

    def test_primary_answers(self) -> None:
        primary, secondary = ScriptedService("primary"), ScriptedService("secondary")
        service = FallbackLanguageService(primary, secondary, timeout_seconds=1.0)
        assert asyncio.run(service.generate("x")) == "primary"
        assert secondary.prompts == []

    def test_falls_back_on_error(self) -> None:
        primary = ScriptedService(error=LanguageServiceError("down"))
        service = FallbackLanguageService(primary, ScriptedService("secondary"), 1.0)
        assert asyncio.run(service.generate("x")) == "secondary"

    def test_falls_back_on_timeout(self) -> None:
        primary = ScriptedService("late", delay=1.0)
        service = FallbackLanguageService(primary, ScriptedService("secondary"), 0.01)
        assert asyncio.run(service.generate("x")) == "secondary"

    def test_secondary_error_propagates(self) -> None:
        primary = ScriptedService(error=LanguageServiceError("down"))
        secondary = ScriptedService(error=LanguageServiceError("also down"))
        service = FallbackLanguageService(primary, secondary, 1.0)
        with pytest.raises(LanguageServiceError, match="also down"):
            asyncio.run(service.generate("x"))

    def test_unexpected_error_is_not_swallowed(self) -> None:
        """Only service errors and timeouts trigger the fallback."""
        primary = ScriptedService(error=KeyError("bug"))
        service = FallbackLanguageService(primary, ScriptedService("secondary"), 1.0)
        with pytest.raises(KeyError):
            asyncio.run(service.generate("x"))

    def test_rejected_reply_goes_to_secondary(self) -> None:
        """A reply the accept check rejects is re-asked of the secondary."""
        primary = ScriptedService("UNCLEAR - Request needs clarification")
        secondary = ScriptedService("INFORMATIONAL - General question")
        service = FallbackLanguageService(
            primary, secondary, 1.0, accept=is_confident_local_reply
        )
        assert asyncio.run(service.generate("x")) == "INFORMATIONAL - General question"
        assert secondary.prompts == ["x"]

    def test_accepted_reply_skips_secondary(self) -> None:
        primary = ScriptedService("ACTIONABLE - Open an app")
        secondary = ScriptedService("secondary")
        service = FallbackLanguageService(
            primary, secondary, 1.0, accept=is_confident_local_reply
        )
        assert asyncio.run(service.generate("x")) == "ACTIONABLE - Open an app"
        assert secondary.prompts == []

    def test_rejected_reply_kept_when_secondary_fails(self) -> None:
        """The primary's reply still answers if the secondary is down."""
        primary = ScriptedService(GENERIC_REPLY)
        secondary = ScriptedService(error=LanguageServiceError("offline"))
        service = FallbackLanguageService(
            primary, secondary, 1.0, accept=is_confident_local_reply
        )
        assert asyncio.run(service.generate("x")) == GENERIC_REPLY

    @pytest.mark.parametrize(
        ("reply", "confident"),
        [
            ("ACTIONABLE - Set a reminder", True),
            ("INFORMATIONAL - Weather query", True),
            ("UNCLEAR - Request needs clarification", False),
            ("  unclear", False),
            (GENERIC_REPLY, False),
            ("The current time is 9:05 AM.", True),
        ],
    )
    def test_is_confident_local_reply(self, reply: str, confident: bool) -> None:
        assert is_confident_local_reply(reply) is confident


class TestCreateLanguageService:
    """Tests for create_language_service()."""

    def test_local_only(self) -> None:
        service = create_language_service(_make_settings(operating_mode="local_only"), "sk")
        assert isinstance(service, RuleBasedLanguageService)

    def test_no_key_degrades_to_local(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            service = create_language_service(_make_settings(operating_mode="local_enhanced"))
        assert isinstance(service, RuleBasedLanguageService)

    def test_enhanced_puts_remote_first(self) -> None:
        service = create_language_service(
            _make_settings(operating_mode="local_enhanced"), api_key="sk-test"
        )
        assert isinstance(service, FallbackLanguageService)
        assert isinstance(service._primary, AnthropicLanguageService)

    def test_api_fallback_puts_local_first(self) -> None:
        service = create_language_service(
            _make_settings(operating_mode="api_fallback"), api_key="sk-test"
        )
        assert isinstance(service, FallbackLanguageService)
        assert isinstance(service._primary, RuleBasedLanguageService)

    def test_unknown_mode_is_local(self) -> None:
        service = create_language_service(_make_settings(operating_mode="warp"), "sk")
        assert isinstance(service, RuleBasedLanguageService)

    def test_api_fallback_asks_remote_for_unclear_requests(self) -> None:
        """An unclear on-device classification is sent to the remote API."""
        service = create_language_service(
            _make_settings(operating_mode="api_fallback"), api_key="sk-test"
        )
        post = AsyncMock(
            return_value=_mock_httpx_response(
                json_body=_text_body("INFORMATIONAL - General question")
            )
        )
        prompt = build_classification_prompt("blorp the frobnicator")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            reply = asyncio.run(service.generate(prompt, max_tokens=50))
        assert reply == "INFORMATIONAL - General question"
        assert post.await_count == 1

    def test_api_fallback_keeps_confident_local_answers(self) -> None:
        """A confident on-device classification never reaches the network."""
        service = create_language_service(
            _make_settings(operating_mode="api_fallback"), api_key="sk-test"
        )
        post = AsyncMock()
        prompt = build_classification_prompt("open spotify")
        with patch("httpx.AsyncClient", return_value=_async_client(post)):
            reply = asyncio.run(service.generate(prompt, max_tokens=50))
        assert reply.startswith("ACTIONABLE")
        post.assert_not_awaited()
