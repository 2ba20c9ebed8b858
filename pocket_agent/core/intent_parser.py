"""Rule-first intent detection for natural-language requests.

The ``IntentParser`` checks a fixed, ordered list of keyword rules.  The
first rule that fires decides the action; its slot extractors pull the
contact, message body, app name, search query, reminder text or calendar
details out of the request.  When no rule fires, the language service is
asked to classify the request, and any failure of that call downgrades
the request to ``Unclear``.

Rule order (first match wins):

1. install / download          -> ``install_app``
2. open / launch / start       -> ``open_app``
3. calendar / event / meeting  -> ``create_calendar_event``
4. remind                      -> ``set_reminder``
5. send + message/text/sms     -> ``send_message``
6. call                        -> ``call``
7. search / google / look up   -> ``search``
8. settings / wifi / bluetooth -> ``open_app`` (settings)

Slot extractors are plain module functions returning ``None`` when they
find nothing; they never raise.

Typical usage::

    parser = IntentParser(language_service, settings)
    intent = await parser.parse("Send a message to John saying hi")
    assert isinstance(intent, Actionable)
    intent.action   # "send_message"
    intent.target   # "John"
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from pocket_agent.config.settings import Settings
from pocket_agent.llm.language_service import LanguageService
from pocket_agent.models.task import ParameterSlot, ParameterType

logger = logging.getLogger(__name__)

UNKNOWN_CONTACT: str = "Unknown"
DEFAULT_EVENT_TITLE: str = "New Event"


@dataclass(frozen=True)
class Actionable:
    """The user wants something done on the device.

    Attributes:
        action: Action name, e.g. ``"send_message"``.
        target: Main object of the action (contact, app, ``"clock"``).
        parameters: Extracted slot values.
    """

    action: str
    target: str
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Informational:
    """The user asked a question; answer with text only."""


@dataclass(frozen=True)
class Unclear:
    """The request could not be classified."""


Intent = Union[Actionable, Informational, Unclear]


# ---------------------------------------------------------------------------
# Slot extractors
# ---------------------------------------------------------------------------

_REMINDER_PATTERNS = (
    re.compile(
        r"remind(?:er)?\s+(?:me\s+)?(?:to\s+)?(.+?)(?:\s+at|\s+in|\s+tomorrow|$)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:about|for)\s+(.+?)$", re.IGNORECASE),
)
# Names are recognised by capitalisation, so no IGNORECASE here.
_CONTACT_PATTERN = re.compile(r"(?:\bto|\b[Cc]all)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)")
_MESSAGE_PATTERNS = (
    re.compile(r"saying\s+[\"']?(.+?)[\"']?$", re.IGNORECASE),
    re.compile(r"message\s+[\"'](.+?)[\"']", re.IGNORECASE),
)
_APP_PATTERNS = (
    re.compile(r"(?:open|launch|start)\s+(?:the\s+)?(.+?)(?:\s+app)?$", re.IGNORECASE),
    re.compile(r"(?:open|launch|start)\s+(.+)", re.IGNORECASE),
)
_INSTALL_PATTERNS = (
    re.compile(
        r"(?:install|download|get)\s+(?:the\s+)?(?:app\s+)?(.+?)(?:\s+app)?$",
        re.IGNORECASE,
    ),
    re.compile(r"(?:install|download|get)\s+(.+)", re.IGNORECASE),
)
_SEARCH_PATTERN = re.compile(r"search\s+(?:for\s+)?(.+)$", re.IGNORECASE)

_EVENT_TITLE_PATTERNS = (
    re.compile(r":(.+?)(?:\s+(?:at|on|for|tomorrow|today)|$)", re.IGNORECASE),
    re.compile(
        r"(?:about|for|called|titled)\s+(.+?)(?:\s+(?:at|on|tomorrow|today)|$)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:calendar|event|appointment|meeting|schedule)\s+(?:input\s+)?"
        r"(?:for\s+)?(.+?)(?:\s+(?:at|on|tomorrow|today)|$)",
        re.IGNORECASE,
    ),
)
_NUMERIC_DATE = re.compile(r"(?:on\s+)?(\d{1,2}[./\-]\d{1,2}(?:[./\-]\d{2,4})?)")
_EVENT_TIME = re.compile(
    r"(?:at\s+)?(\d{1,2})(?::\d{2})?\s*(?:o'?clock|am|pm|uhr)?",
    re.IGNORECASE,
)
_CLOCK_TIME = re.compile(r"(\d{1,2}(?::\d{2})?\s*(?:am|pm)?)", re.IGNORECASE)
_NUMBER = re.compile(r"\d+")


def _first_group(patterns: tuple[re.Pattern[str], ...], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match is not None:
            value = match.group(1).strip()
            if value:
                return value
    return None


def extract_reminder_message(text: str) -> str | None:
    """What the user wants to be reminded about."""
    return _first_group(_REMINDER_PATTERNS, text)


def extract_contact(text: str) -> str | None:
    """Capitalised name after ``to`` or ``call``."""
    match = _CONTACT_PATTERN.search(text)
    return match.group(1) if match else None


def extract_message_body(text: str) -> str | None:
    """Message text after ``saying`` or a quoted ``message "..."``."""
    return _first_group(_MESSAGE_PATTERNS, text)


def extract_app_name(text: str) -> str | None:
    """App named after open/launch/start, else the last word."""
    name = _first_group(_APP_PATTERNS, text)
    if name:
        return name
    words = text.split()
    return words[-1] if words else None


def extract_install_app_name(text: str) -> str | None:
    """App named after install/download/get, else the last word."""
    name = _first_group(_INSTALL_PATTERNS, text)
    if name:
        return name
    words = text.split()
    return words[-1] if words else None


def extract_search_query(text: str) -> str | None:
    """Terms following ``search`` (and an optional ``for``)."""
    match = _SEARCH_PATTERN.search(text)
    return match.group(1).strip() if match else None


def extract_time(text: str) -> str | None:
    """First clock time such as ``7``, ``7:30`` or ``7pm``."""
    match = _CLOCK_TIME.search(text)
    return match.group(1).strip() if match else None


def extract_date(text: str) -> str | None:
    """Relative day (``tomorrow``, ``today``, ``next week``) or a numeric date."""
    lowered = text.lower()
    if "tomorrow" in lowered:
        return "tomorrow"
    if "today" in lowered:
        return "today"
    if "next week" in lowered:
        return "next week"
    match = _NUMERIC_DATE.search(text)
    return match.group(1) if match else None


def extract_number(text: str) -> str | None:
    match = _NUMBER.search(text)
    return match.group(0) if match else None


def extract_event_details(text: str) -> dict[str, str]:
    """Title, date and time of a calendar request.

    The title falls back to ``"New Event"``; date and time are only
    present when found.
    """
    details = {"title": _first_group(_EVENT_TITLE_PATTERNS, text) or DEFAULT_EVENT_TITLE}

    date = extract_date(text)
    if date is not None:
        details["date"] = date

    time_match = _EVENT_TIME.search(text)
    if time_match is not None:
        details["time"] = time_match.group(0).strip()
    return details


def keyword_action(text: str) -> str:
    """Coarse action name for requests classified by the language service."""
    lowered = text.lower()
    if "remind" in lowered:
        return "set_reminder"
    if "message" in lowered or "text" in lowered:
        return "send_message"
    if "open" in lowered:
        return "open_app"
    if "call" in lowered:
        return "call"
    if "search" in lowered:
        return "search"
    return "unknown"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class IntentParser:
    """Classifies requests into ``Actionable``, ``Informational`` or ``Unclear``.

    Args:
        language_service: Consulted only when no keyword rule fires.
        settings: Supplies the classification token budget.
    """

    def __init__(
        self,
        language_service: LanguageService,
        settings: Settings | None = None,
    ) -> None:
        self._language_service = language_service
        self._settings = settings or Settings()

    async def parse(self, text: str) -> Intent:
        """Classify *text*.  Never raises."""
        intent = self.match_rules(text)
        if intent is not None:
            logger.debug("Rule intent for %r: %s", text, intent)
            return intent
        return await self._classify_remotely(text)

    def match_rules(self, text: str) -> Actionable | None:
        """Apply the keyword rules in order; ``None`` when none fires."""
        lowered = text.lower().strip()

        if any(k in lowered for k in ("install ", "download ", "get the app", "get app")):
            return Actionable(
                action="install_app",
                target=extract_install_app_name(text) or "",
            )

        if "open " in lowered or lowered.startswith(("launch ", "start ")):
            return Actionable(action="open_app", target=extract_app_name(text) or "")

        if any(
            k in lowered
            for k in ("calendar", "event", "appointment", "meeting", "schedule")
        ):
            return Actionable(
                action="create_calendar_event",
                target="calendar",
                parameters=extract_event_details(text),
            )

        if "remind" in lowered:
            return Actionable(
                action="set_reminder",
                target="clock",
                parameters={"message": extract_reminder_message(text) or text},
            )

        if "send" in lowered and any(k in lowered for k in ("message", "text", "sms")):
            contact = extract_contact(text) or UNKNOWN_CONTACT
            return Actionable(
                action="send_message",
                target=contact,
                parameters={
                    "contact": contact,
                    "message": extract_message_body(text) or "",
                },
            )

        if "call " in lowered:
            contact = extract_contact(text) or UNKNOWN_CONTACT
            return Actionable(
                action="call",
                target=contact,
                parameters={"contact": contact},
            )

        if any(k in lowered for k in ("search", "google", "look up")):
            return Actionable(
                action="search",
                target="browser",
                parameters={"query": extract_search_query(text) or text},
            )

        if any(k in lowered for k in ("settings", "wifi", "bluetooth")):
            return Actionable(action="open_app", target="settings")

        return None

    async def _classify_remotely(self, text: str) -> Intent:
        prompt = build_classification_prompt(text)
        try:
            reply = await self._language_service.generate(
                prompt,
                max_tokens=self._settings.classification_max_tokens,
            )
        except Exception as exc:
            logger.warning("Intent classification failed for %r: %s", text, exc)
            return Unclear()

        upper = reply.upper()
        if "ACTIONABLE" in upper:
            return Actionable(action=keyword_action(text), target="unknown")
        if "INFORMATIONAL" in upper:
            return Informational()
        logger.info("Request %r is unclear (%s)", text, reply.strip()[:60])
        return Unclear()


def build_classification_prompt(text: str) -> str:
    """Prompt asking the language service to categorise *text*."""
    return (
        "Classify this user request into one of these categories:\n"
        "1. ACTIONABLE - User wants to perform an action "
        "(set reminder, send message, open app, etc.)\n"
        "2. INFORMATIONAL - User is asking a question or wants information\n"
        "3. UNCLEAR - The request is ambiguous or unclear\n"
        "\n"
        f'User request: "{text}"\n'
        "\n"
        "Respond with just the category name and a brief description of the intent."
    )


# ---------------------------------------------------------------------------
# Template slots
# ---------------------------------------------------------------------------


def extract_text_slot(text: str, slot_name: str) -> str | None:
    """Free-text slot value, chosen by what the slot holds."""
    if slot_name == "message":
        return extract_message_body(text) or extract_reminder_message(text)
    if slot_name == "query":
        return extract_search_query(text)
    if slot_name == "title":
        return _first_group(_EVENT_TITLE_PATTERNS, text)
    stripped = text.strip()
    return stripped or None


def extract_slot_values(text: str, slots: Iterable[ParameterSlot]) -> dict[str, str]:
    """Values for each template slot found in *text*.

    Slots whose extractor finds nothing are absent from the result.
    """
    values: dict[str, str] = {}
    for slot in slots:
        if slot.type is ParameterType.TEXT:
            value = extract_text_slot(text, slot.name)
        elif slot.type is ParameterType.TIME:
            value = extract_time(text)
        elif slot.type is ParameterType.DATE:
            value = extract_date(text)
        elif slot.type is ParameterType.CONTACT:
            value = extract_contact(text)
        elif slot.type is ParameterType.APP:
            value = extract_app_name(text)
        else:
            value = extract_number(text)
        if value is not None:
            values[slot.name] = value
    return values
