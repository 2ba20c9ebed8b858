"""Language understanding services used for classification and replies.

The pipeline only ever talks to the ``LanguageService`` contract:
``generate(prompt, max_tokens)`` returns text and ``embed(text)``
returns a fixed-length vector.  Three implementations are provided:

* ``RuleBasedLanguageService`` runs on the device with no network.  It
  classifies requests by keyword, answers a handful of common questions,
  and embeds text with a hashed bag of words.
* ``AnthropicLanguageService`` sends prompts to the Claude Messages API
  over ``httpx`` with retry and exponential back-off.
* ``FallbackLanguageService`` asks a primary service under a time budget
  and falls back to a secondary one.

``create_language_service`` picks the arrangement from
``Settings.operating_mode``.

Typical usage::

    from pocket_agent.config.settings import get_default_settings
    from pocket_agent.llm.language_service import create_language_service

    service = create_language_service(get_default_settings())
    text = await service.generate("User: what can you do?", max_tokens=256)
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import zlib
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

import httpx
import numpy as np
from numpy.typing import NDArray

from pocket_agent.config.settings import OperatingMode, Settings

logger = logging.getLogger(__name__)

# Anthropic Messages API endpoint.
_API_URL: str = "https://api.anthropic.com/v1/messages"
_API_VERSION: str = "2023-06-01"

EMBEDDING_DIM: int = 64

# Prompt shapes produced by the intent parser and the task planner.  The
# rule-based service looks only at the user's words, never at the
# instructions around them.
_CLASSIFY_REQUEST = re.compile(r'User request:\s*"(.*)"', re.DOTALL)
_REPLY_REQUEST = re.compile(r"^User:\s*(.*)$", re.MULTILINE)

_HELP_TEXT: str = (
    "I can help you with various tasks on your phone:\n"
    "\n"
    "- Set reminders and alarms\n"
    "- Send messages to contacts\n"
    "- Open and install apps\n"
    "- Make phone calls\n"
    "- Search the web\n"
    "- Add calendar events\n"
    "\n"
    "Just tell me what you'd like to do!"
)

GENERIC_REPLY: str = (
    "I understand you want help with something. Could you be more "
    "specific about what you'd like me to do?"
)


class LanguageServiceError(Exception):
    """A language service could not produce a reply."""


# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------


def hash_embedding(text: str, dim: int = EMBEDDING_DIM) -> NDArray[np.float32]:
    """Deterministic bag-of-words embedding.

    Each word is hashed into one of *dim* buckets and weighted by
    ``1 / (position + 1)`` so earlier words count more.  The result is
    L2-normalised; text without words yields the zero vector.
    """
    vector = np.zeros(dim, dtype=np.float32)
    normalized = re.sub(r"[^a-z0-9\s]", "", text.lower())
    for index, word in enumerate(normalized.split()):
        bucket = zlib.crc32(word.encode("utf-8")) % dim
        vector[bucket] += 1.0 / (index + 1)

    magnitude = float(np.linalg.norm(vector))
    if magnitude > 0:
        vector /= magnitude
    return vector


def cosine_similarity(a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
    """Cosine of the angle between two vectors; 0.0 for zero vectors.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if a.shape != b.shape:
        raise ValueError(
            f"Embedding dimensions must match, got {a.shape} and {b.shape}"
        )
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b) / denominator)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class LanguageService(ABC):
    """Black-box text generation and embedding."""

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int = 512) -> str:
        """Return a completion for *prompt*.

        Raises:
            LanguageServiceError: When no reply can be produced.
        """

    @abstractmethod
    async def embed(self, text: str) -> NDArray[np.float32]:
        """Return a fixed-length embedding of *text*."""


# ---------------------------------------------------------------------------
# On-device rules
# ---------------------------------------------------------------------------


class RuleBasedLanguageService(LanguageService):
    """Keyword classifier and canned replies that never touch the network.

    Classification prompts (those containing ``classify``) are answered
    with ``ACTIONABLE``, ``INFORMATIONAL`` or ``UNCLEAR`` followed by a
    short description.  Other prompts get a helpful canned reply.
    """

    async def generate(self, prompt: str, max_tokens: int = 512) -> str:
        if "classify" in prompt.lower():
            match = _CLASSIFY_REQUEST.search(prompt)
            request = match.group(1) if match else prompt
            return self.classify(request)

        match = _REPLY_REQUEST.search(prompt)
        request = match.group(1) if match else prompt
        return self.reply(request)

    async def embed(self, text: str) -> NDArray[np.float32]:
        return hash_embedding(text)

    @staticmethod
    def classify(request: str) -> str:
        """Keyword classification of a bare user request."""
        text = request.lower()

        if "remind" in text:
            return "ACTIONABLE - Set a reminder"
        if "send" in text and ("message" in text or "text" in text):
            return "ACTIONABLE - Send a message"
        if "call" in text:
            return "ACTIONABLE - Make a call"
        if "open" in text:
            return "ACTIONABLE - Open an app"
        if "search" in text:
            return "ACTIONABLE - Perform a search"
        if "set" in text and "alarm" in text:
            return "ACTIONABLE - Set an alarm"
        if "navigate" in text or "directions" in text:
            return "ACTIONABLE - Navigation request"

        if "what is" in text:
            return "INFORMATIONAL - Definition query"
        if "how" in text:
            return "INFORMATIONAL - How-to query"
        if "why" in text:
            return "INFORMATIONAL - Explanation query"
        if "when" in text:
            return "INFORMATIONAL - Time-related query"
        if "who" in text:
            return "INFORMATIONAL - Person query"
        if "weather" in text:
            return "INFORMATIONAL - Weather query"
        if "?" in text:
            return "INFORMATIONAL - General question"

        return "UNCLEAR - Request needs clarification"

    @staticmethod
    def reply(request: str, now: datetime | None = None) -> str:
        """Canned reply to an informational request."""
        text = request.lower()
        now = now or datetime.now()

        if "weather" in text:
            return (
                "I don't have access to weather data yet. You can check "
                "the Weather app for current conditions."
            )
        if "time" in text:
            return f"The current time is {now.strftime('%I:%M %p').lstrip('0')}."
        if "date" in text or "what day" in text:
            return f"Today is {now.strftime('%A, %B')} {now.day}, {now.year}."
        if "help" in text or "what can you do" in text:
            return _HELP_TEXT
        return GENERIC_REPLY


# ---------------------------------------------------------------------------
# Remote API
# ---------------------------------------------------------------------------


class AnthropicLanguageService(LanguageService):
    """Generates text through the Claude Messages API.

    Retries transient failures (5xx responses and transport errors) with
    exponential back-off per the settings.  Client errors (4xx) are not
    retried.  ``embed`` uses ``hash_embedding`` because the Messages API
    has no embedding endpoint.

    Args:
        settings: Application settings controlling the model, timeouts,
            retry counts, and back-off parameters.
        api_key: Anthropic API key.  If empty, the value of the
            ``ANTHROPIC_API_KEY`` environment variable is used.  A
            missing key is not an error at construction time, but
            ``generate`` will raise.
    """

    def __init__(self, settings: Settings, api_key: str = "") -> None:
        self._settings = settings
        self._api_key: str = api_key or os.environ.get("ANTHROPIC_API_KEY", "")

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    async def generate(self, prompt: str, max_tokens: int = 512) -> str:
        if not self._api_key:
            raise LanguageServiceError("No API key configured.")

        payload = {
            "model": self._settings.api_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        timeout = httpx.Timeout(self._settings.api_timeout_text_seconds, connect=10.0)

        last_error = ""
        retries = max(1, self._settings.api_max_retries)

        for attempt in range(retries):
            start_ns = time.monotonic_ns()
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    http_resp = await client.post(
                        _API_URL,
                        headers=self._build_headers(),
                        json=payload,
                    )
                elapsed_ms = (time.monotonic_ns() - start_ns) / 1_000_000

                if http_resp.status_code == 200:
                    logger.debug("LLM reply in %.0f ms", elapsed_ms)
                    return self._extract_text(http_resp)

                last_error = f"HTTP {http_resp.status_code}: {http_resp.text[:200]}"
                logger.warning(
                    "LLM: attempt %d/%d failed: %s",
                    attempt + 1,
                    retries,
                    last_error,
                )

                # Only retry on transient server errors.
                if http_resp.status_code < 500:
                    break

            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "LLM: attempt %d/%d error: %s",
                    attempt + 1,
                    retries,
                    last_error,
                )

            if attempt < retries - 1:
                delay = self._settings.api_backoff_base_seconds * (2**attempt)
                await asyncio.sleep(delay)

        raise LanguageServiceError(last_error or "request failed")

    async def embed(self, text: str) -> NDArray[np.float32]:
        return hash_embedding(text)

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

    @staticmethod
    def _extract_text(http_resp: httpx.Response) -> str:
        """Concatenate the text blocks of a Messages API response."""
        try:
            body = http_resp.json()
        except ValueError as exc:
            raise LanguageServiceError(f"invalid JSON in response: {exc}") from exc

        parts = [
            block.get("text", "")
            for block in body.get("content", [])
            if block.get("type") == "text"
        ]
        if not parts:
            raise LanguageServiceError("response contained no text")
        return "".join(parts).strip()


# ---------------------------------------------------------------------------
# Fallback arrangement
# ---------------------------------------------------------------------------


def is_confident_local_reply(reply: str) -> bool:
    """Whether an on-device reply settles the request.

    Classifications marked ``UNCLEAR`` and the generic "be more specific"
    answer are not confident; everything else is.
    """
    stripped = reply.strip()
    return not stripped.upper().startswith("UNCLEAR") and stripped != GENERIC_REPLY


class FallbackLanguageService(LanguageService):
    """Ask *primary* within a time budget, then *secondary*.

    The secondary service is used when the primary raises or runs out of
    time.  It is also used when *accept* rejects the primary's reply;
    if the secondary then fails, that rejected reply is still returned.

    Args:
        primary: Service tried first.
        secondary: Service used when the primary cannot settle the prompt.
        timeout_seconds: Time budget for the primary service.
        accept: Optional check on the primary's reply; ``None`` accepts
            every reply.
    """

    def __init__(
        self,
        primary: LanguageService,
        secondary: LanguageService,
        timeout_seconds: float,
        accept: Callable[[str], bool] | None = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._timeout = timeout_seconds
        self._accept = accept

    async def generate(self, prompt: str, max_tokens: int = 512) -> str:
        rejected: str | None = None
        try:
            reply = await asyncio.wait_for(
                self._primary.generate(prompt, max_tokens),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Primary language service timed out after %.1fs, falling back",
                self._timeout,
            )
        except LanguageServiceError as exc:
            logger.warning("Primary language service failed (%s), falling back", exc)
        else:
            if self._accept is None or self._accept(reply):
                return reply
            logger.info("Primary reply not accepted, asking secondary service")
            rejected = reply

        if rejected is None:
            return await self._secondary.generate(prompt, max_tokens)
        try:
            return await self._secondary.generate(prompt, max_tokens)
        except LanguageServiceError as exc:
            logger.warning("Secondary language service failed (%s), keeping primary reply", exc)
            return rejected

    async def embed(self, text: str) -> NDArray[np.float32]:
        return await self._primary.embed(text)


def create_language_service(settings: Settings, api_key: str = "") -> LanguageService:
    """Build the language service arrangement for the operating mode.

    ``API_FALLBACK`` answers on the device and asks the remote API only
    when the on-device reply is not confident.  ``LOCAL_ENHANCED`` asks
    the remote API first and falls back to the device.  Modes that
    involve the remote API degrade to on-device rules when no API key is
    available.
    """
    local = RuleBasedLanguageService()
    mode = settings.mode
    if mode is OperatingMode.LOCAL_ONLY:
        return local

    remote = AnthropicLanguageService(settings, api_key=api_key)
    if not remote.has_api_key:
        logger.warning("No API key for %s mode, using on-device rules only", mode.value)
        return local

    if mode is OperatingMode.API_FALLBACK:
        return FallbackLanguageService(
            local,
            remote,
            settings.fallback_timeout_seconds,
            accept=is_confident_local_reply,
        )
    return FallbackLanguageService(remote, local, settings.fallback_timeout_seconds)
