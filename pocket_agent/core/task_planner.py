"""Task planner: turns a classified request into an ordered action plan.

The planner asks the ``IntentParser`` what the user wants and hands the
resulting ``Actionable`` intent to a dedicated constructor per action
name (reminder, message, open app, install app, calendar event, call,
search).  Unknown action names fall back to launching the target as an
app, or to a single ``Home`` action annotated with the request when the
target is unknown.

Every generated plan requires consent and rolls back to the home screen.
Message-body entry and the final send/call step are ``CRITICAL``.

The planner also adapts memorised ``TaskTemplate`` objects to a new
request (slot extraction and ``{slot}`` substitution) and produces text
replies for informational requests.

Dependencies: ``core.intent_parser``, ``llm.language_service``,
``config.settings``.

Typical usage::

    from pocket_agent.config.settings import get_default_settings
    from pocket_agent.core.task_planner import TaskPlanner

    planner = TaskPlanner(parser, language_service, get_default_settings())
    plan = await planner.create_plan(Query.create("Call Alice"))
    for action in plan.actions:
        print(action.description, action.safety_level.name)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import replace

from pocket_agent.config.settings import Settings
from pocket_agent.core.intent_parser import (
    DEFAULT_EVENT_TITLE,
    Actionable,
    IntentParser,
    extract_slot_values,
)
from pocket_agent.llm.language_service import LanguageService
from pocket_agent.models.actions import (
    Action,
    Click,
    Delay,
    Home,
    InputText,
    LaunchApp,
    SafetyLevel,
    Selector,
    Wait,
    map_text_fields,
    new_id,
)
from pocket_agent.models.session import Query
from pocket_agent.models.task import ActionPlan, TaskTemplate

logger = logging.getLogger(__name__)

# Package identifiers of the stock apps the constructors drive.
CLOCK_PACKAGE: str = "com.google.android.deskclock"
MESSAGING_PACKAGE: str = "com.google.android.apps.messaging"
DIALER_PACKAGE: str = "com.google.android.dialer"
BROWSER_PACKAGE: str = "com.android.chrome"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

_UNRESOLVED_TARGETS: frozenset[str] = frozenset({"", "unknown"})


def describe_intent(intent: Actionable) -> str:
    """One-line plan description for *intent*."""
    action = intent.action
    if action == "set_reminder":
        return "Set a reminder"
    if action == "send_message":
        return f"Send a message to {intent.target}"
    if action == "open_app":
        return f"Open {intent.target}"
    if action == "install_app":
        return f"Find '{intent.target}' in Play Store (you'll tap Install)"
    if action == "create_calendar_event":
        return f"Create calendar event: {intent.parameters.get('title', DEFAULT_EVENT_TITLE)}"
    if action == "call":
        return f"Call {intent.target}"
    if action == "search":
        return f"Search for: {intent.parameters.get('query', '')}"
    return f"Perform {action}"


def normalize_app_name(name: str) -> str:
    """App names are resolved by the executor; the planner only tidies them."""
    return name.strip().lower()


class TaskPlanner:
    """Builds ``ActionPlan`` objects from requests and templates.

    All collaborators are injected.  The planner itself performs no
    device I/O; its only suspension points are the intent parser and the
    language service.

    Args:
        intent_parser: Classifies requests and extracts slots.
        language_service: Produces text replies for informational turns.
        settings: Supplies token budgets, the plan length ceiling and the
            critical action names.
    """

    def __init__(
        self,
        intent_parser: IntentParser,
        language_service: LanguageService,
        settings: Settings | None = None,
    ) -> None:
        self._parser = intent_parser
        self._language_service = language_service
        self._settings = settings or Settings()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_plan(self, query: Query) -> ActionPlan | None:
        """Plan *query*, or return ``None`` for a text-only turn."""
        intent = await self._parser.parse(query.text)
        if not isinstance(intent, Actionable):
            logger.info("No plan for %r (%s)", query.text, type(intent).__name__)
            return None
        return self.build_plan(intent, query)

    def build_plan(self, intent: Actionable, query: Query) -> ActionPlan:
        """Run the constructor for ``intent.action`` and wrap the result."""
        constructor = self._CONSTRUCTORS.get(intent.action)
        if constructor is None:
            actions = self._generic_actions(intent, query)
        else:
            actions = constructor(self, intent)

        limit = self._settings.max_actions_per_plan
        if len(actions) > limit:
            logger.warning(
                "Plan for %r has %d actions, truncating to %d",
                intent.action,
                len(actions),
                limit,
            )
            actions = actions[:limit]

        if intent.action in self._settings.critical_actions and actions:
            last = actions[-1]
            if last.safety_level < SafetyLevel.CRITICAL:
                actions[-1] = replace(last, safety_level=SafetyLevel.CRITICAL)

        plan = ActionPlan(
            description=describe_intent(intent),
            actions=tuple(actions),
            requires_consent=True,
            rollback_actions=(Home(),),
            parameters=dict(intent.parameters),
        )
        logger.info(
            "Planned %r: %d action(s), safety %s",
            plan.description,
            len(plan.actions),
            plan.safety_level.name,
        )
        return plan

    def adapt_template(self, template: TaskTemplate, query: Query) -> ActionPlan:
        """Fill *template*'s slots from *query* and rebuild a plan.

        The adapted plan keeps the template's pattern as its description,
        so a successful run reinforces the same template.  It always
        requires consent.  Placeholders whose slot could not be filled are
        left in place and logged.
        """
        values = extract_slot_values(query.text, template.parameter_slots)

        def substitute(text: str) -> str:
            return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)

        actions = [
            replace(map_text_fields(action, substitute), id=new_id())
            for action in template.actions
        ]

        missing = sorted(
            {s.name for s in template.parameter_slots if s.required} - values.keys()
        )
        if missing:
            logger.warning(
                "Template %r: no value for slot(s) %s in %r",
                template.pattern,
                ", ".join(missing),
                query.text,
            )

        return ActionPlan(
            description=template.pattern,
            actions=tuple(actions),
            requires_consent=True,
            rollback_actions=(Home(),),
            parameters=values,
        )

    async def generate_text_response(self, query: Query) -> str:
        """Reply to an informational turn.  No planning is performed.

        Raises:
            LanguageServiceError: Propagated from the language service.
        """
        return await self._language_service.generate(
            build_reply_prompt(query),
            max_tokens=self._settings.llm_max_tokens,
        )

    # ------------------------------------------------------------------
    # Action constructors
    # ------------------------------------------------------------------

    def _reminder_actions(self, intent: Actionable) -> list[Action]:
        return [
            LaunchApp(target=CLOCK_PACKAGE, description="Open Clock app"),
            Click(selector=Selector(text="Alarm"), description="Tap on Alarm tab"),
            Click(
                selector=Selector(content_description="Add alarm"),
                description="Create new alarm",
            ),
        ]

    def _message_actions(self, intent: Actionable) -> list[Action]:
        contact = intent.target
        message = intent.parameters.get("message", "")
        return [
            LaunchApp(target=MESSAGING_PACKAGE, description="Open Messages app"),
            Click(
                selector=Selector(content_description="Start chat"),
                description="Start new conversation",
            ),
            InputText(
                selector=Selector(resource_id="recipient"),
                text=contact,
                description=f"Enter recipient: {contact}",
            ),
            InputText(
                selector=Selector(resource_id="compose"),
                text=message,
                description=f"Type message: {message}" if message else "Type message",
                safety_level=SafetyLevel.CRITICAL,
            ),
            Click(
                selector=Selector(content_description="Send"),
                description="Send message",
                safety_level=SafetyLevel.CRITICAL,
            ),
        ]

    def _open_app_actions(self, intent: Actionable) -> list[Action]:
        return [
            LaunchApp(
                target=normalize_app_name(intent.target),
                description=f"Open {intent.target}",
            )
        ]

    def _install_app_actions(self, intent: Actionable) -> list[Action]:
        app_name = intent.target.strip()
        return [
            LaunchApp(
                target="market://search?q=" + app_name.replace(" ", "+"),
                description=(
                    f"Open Play Store search for '{app_name}' (tap Install to download)"
                ),
            )
        ]

    def _calendar_actions(self, intent: Actionable) -> list[Action]:
        title = intent.parameters.get("title", DEFAULT_EVENT_TITLE)
        return [
            LaunchApp(target="calendar", description="Open Calendar"),
            Wait(
                condition=Delay(1000),
                timeout_ms=3000,
                description="Wait for Calendar to open",
            ),
            Click(
                selector=Selector(
                    content_description="Create",
                    content_description_contains="new",
                ),
                description="Create new event",
            ),
            Wait(
                condition=Delay(500),
                timeout_ms=2000,
                description="Wait for event form",
            ),
            InputText(
                selector=Selector(
                    resource_id_contains="title",
                    class_name="android.widget.EditText",
                ),
                text=title,
                description=f"Enter event title: {title}",
            ),
            Click(selector=Selector(text="Save"), description="Save event"),
        ]

    def _call_actions(self, intent: Actionable) -> list[Action]:
        contact = intent.target
        return [
            LaunchApp(target=DIALER_PACKAGE, description="Open Phone app"),
            InputText(
                selector=Selector(resource_id="search"),
                text=contact,
                description=f"Search for {contact}",
            ),
            Click(
                selector=Selector(text_contains=contact),
                description=f"Select {contact}",
            ),
            Click(
                selector=Selector(content_description="Call"),
                description="Start call",
                safety_level=SafetyLevel.CRITICAL,
            ),
        ]

    def _search_actions(self, intent: Actionable) -> list[Action]:
        query = intent.parameters.get("query", "")
        return [
            LaunchApp(target=BROWSER_PACKAGE, description="Open Browser"),
            Click(
                selector=Selector(resource_id="search_box"),
                description="Tap search bar",
            ),
            InputText(
                selector=Selector(resource_id="search_box"),
                text=query,
                description=f"Enter search query: {query}",
            ),
            Click(selector=Selector(text="Search"), description="Search"),
        ]

    def _generic_actions(self, intent: Actionable, query: Query) -> list[Action]:
        target = normalize_app_name(intent.target)
        if target not in _UNRESOLVED_TARGETS:
            return [LaunchApp(target=target, description=f"Open {intent.target}")]
        return [
            Home(
                description=(
                    "Go to home screen (couldn't determine specific action "
                    f"for: {query.text})"
                )
            )
        ]

    # ------------------------------------------------------------------
    # Dispatch table
    # ------------------------------------------------------------------

    _CONSTRUCTORS: dict[str, Callable[[TaskPlanner, Actionable], list[Action]]] = {
        "set_reminder": _reminder_actions,
        "send_message": _message_actions,
        "open_app": _open_app_actions,
        "install_app": _install_app_actions,
        "create_calendar_event": _calendar_actions,
        "call": _call_actions,
        "search": _search_actions,
    }


def build_reply_prompt(query: Query) -> str:
    """Prompt for a concise text reply to an informational request."""
    current_app = query.context.current_app or "Home screen"
    return (
        "You are a helpful phone assistant. Respond concisely and accurately.\n"
        "\n"
        f"Time of day: {query.context.time_of_day.value}\n"
        f"Current app: {current_app}\n"
        "\n"
        f"User: {query.text}\n"
        "\n"
        "Assistant:"
    )
