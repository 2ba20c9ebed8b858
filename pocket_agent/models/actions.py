"""Device actions: what the executor can do on the user's behalf.

Every action is an immutable value.  The set of variants is closed:
``LaunchApp``, ``Click``, ``InputText``, ``Scroll``, ``Wait``, ``Back``
and ``Home``.  Each variant declares its ``kind`` so that the executor
can dispatch through a table keyed by ``ActionKind`` and verify at import
time that every kind has a handler.

Elements on screen are addressed through ``Selector`` objects.  A
selector with no field set never matches anything.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from enum import Enum, IntEnum
from typing import ClassVar, Union

from pocket_agent.models.ui import UiNode


def new_id() -> str:
    """Return a fresh random identifier."""
    return uuid.uuid4().hex


class SafetyLevel(IntEnum):
    """Risk of an action, ordered from least to most sensitive.

    Attributes:
        SAFE: Read-only or purely navigational.
        NORMAL: Reversible side effect.
        CRITICAL: Irreversible or sensitive; always gated behind consent.
    """

    SAFE = 0
    NORMAL = 1
    CRITICAL = 2


class ActionKind(Enum):
    """Discriminator for the action variants."""

    LAUNCH_APP = "launch_app"
    CLICK = "click"
    INPUT_TEXT = "input_text"
    SCROLL = "scroll"
    WAIT = "wait"
    BACK = "back"
    HOME = "home"


class ScrollDirection(Enum):
    """Direction of content movement for a scroll."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class GlobalAction(Enum):
    """System-wide navigation actions offered by the backend."""

    BACK = "back"
    HOME = "home"
    RECENTS = "recents"
    NOTIFICATIONS = "notifications"


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Selector:
    """Optional-field matcher over ``UiNode`` attributes.

    Every field that is set must match for the selector to match.

    Attributes:
        text: Exact visible text.
        text_contains: Case-insensitive substring of the visible text.
        content_description: Accessible description, matched
            case-insensitively as equality or substring.
        content_description_contains: Case-insensitive substring of the
            accessible description.
        resource_id: Element identifier, matched as suffix or substring
            so that ``"send"`` finds ``"com.app:id/send"``.
        resource_id_contains: Case-insensitive substring of the
            identifier.
        class_name: Exact widget class name.
    """

    text: str | None = None
    text_contains: str | None = None
    content_description: str | None = None
    content_description_contains: str | None = None
    resource_id: str | None = None
    resource_id_contains: str | None = None
    class_name: str | None = None

    def is_empty(self) -> bool:
        """True when no field is set."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def matches(self, node: UiNode) -> bool:
        """Test *node* against every set field.

        An empty selector matches nothing.
        """
        if self.is_empty():
            return False

        if self.text is not None and node.text != self.text:
            return False
        if self.text_contains is not None and (
            self.text_contains.lower() not in node.text.lower()
        ):
            return False
        if self.content_description is not None:
            wanted = self.content_description.lower()
            desc = node.content_description.lower()
            if not desc or (desc != wanted and wanted not in desc):
                return False
        if self.content_description_contains is not None and (
            self.content_description_contains.lower()
            not in node.content_description.lower()
        ):
            return False
        if self.resource_id is not None:
            rid = node.resource_id
            if not rid or not (
                rid.endswith(self.resource_id) or self.resource_id in rid
            ):
                return False
        if self.resource_id_contains is not None and (
            self.resource_id_contains.lower() not in node.resource_id.lower()
        ):
            return False
        if self.class_name is not None and node.class_name != self.class_name:
            return False
        return True

    def describe(self) -> str:
        """Compact ``field=value`` rendering of the set fields."""
        parts = [
            f"{f.name}={getattr(self, f.name)!r}"
            for f in fields(self)
            if getattr(self, f.name) is not None
        ]
        return "Selector(" + ", ".join(parts) + ")"


# ---------------------------------------------------------------------------
# Wait conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ElementVisible:
    """Wait until an element matching *selector* is on screen."""

    selector: Selector


@dataclass(frozen=True)
class ElementGone:
    """Wait until no element matches *selector*."""

    selector: Selector


@dataclass(frozen=True)
class Delay:
    """Wait a fixed number of milliseconds."""

    duration_ms: int


WaitCondition = Union[ElementVisible, ElementGone, Delay]


# ---------------------------------------------------------------------------
# Action variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaunchApp:
    """Open an application, a store URI, or a web URL.

    Attributes:
        target: App label, package identifier, ``market://`` URI or
            ``http(s)://`` URL.
        activity: Optional explicit activity inside the package.
    """

    kind: ClassVar[ActionKind] = ActionKind.LAUNCH_APP

    target: str
    activity: str | None = None
    description: str = ""
    safety_level: SafetyLevel = SafetyLevel.SAFE
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Click:
    """Tap the element found by *selector*."""

    kind: ClassVar[ActionKind] = ActionKind.CLICK

    selector: Selector
    timeout_ms: int = 5000
    description: str = ""
    safety_level: SafetyLevel = SafetyLevel.NORMAL
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class InputText:
    """Focus the element found by *selector* and type *text* into it."""

    kind: ClassVar[ActionKind] = ActionKind.INPUT_TEXT

    selector: Selector
    text: str
    description: str = ""
    safety_level: SafetyLevel = SafetyLevel.NORMAL
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Scroll:
    """Swipe the screen.

    Attributes:
        direction: Direction the content moves towards.
        amount: Fraction of the screen extent covered by the swipe.
    """

    kind: ClassVar[ActionKind] = ActionKind.SCROLL

    direction: ScrollDirection
    amount: float = 0.5
    description: str = ""
    safety_level: SafetyLevel = SafetyLevel.SAFE
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Wait:
    """Pause, or poll until an element appears or disappears."""

    kind: ClassVar[ActionKind] = ActionKind.WAIT

    condition: WaitCondition
    timeout_ms: int = 10000
    description: str = ""
    safety_level: SafetyLevel = SafetyLevel.SAFE
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Back:
    """System back navigation."""

    kind: ClassVar[ActionKind] = ActionKind.BACK

    description: str = "Go back"
    safety_level: SafetyLevel = SafetyLevel.SAFE
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Home:
    """Return to the home screen."""

    kind: ClassVar[ActionKind] = ActionKind.HOME

    description: str = "Go to home screen"
    safety_level: SafetyLevel = SafetyLevel.SAFE
    id: str = field(default_factory=new_id)


Action = Union[LaunchApp, Click, InputText, Scroll, Wait, Back, Home]

# Variant classes in ``ActionKind`` order.
ACTION_CLASSES: tuple[type, ...] = (
    LaunchApp,
    Click,
    InputText,
    Scroll,
    Wait,
    Back,
    Home,
)


# ---------------------------------------------------------------------------
# Text rewriting
# ---------------------------------------------------------------------------

_SELECTOR_TEXT_FIELDS: tuple[str, ...] = (
    "text",
    "text_contains",
    "content_description",
    "content_description_contains",
)


def _map_selector(selector: Selector, transform: Callable[[str], str]) -> Selector:
    changes = {
        name: transform(getattr(selector, name))
        for name in _SELECTOR_TEXT_FIELDS
        if getattr(selector, name) is not None
    }
    return replace(selector, **changes)


def map_text_fields(
    action: Action,
    transform: Callable[[str], str],
    selector_transform: Callable[[str], str] | None = None,
) -> Action:
    """Return a copy of *action* with *transform* applied to its text.

    Text-bearing fields are the description, the launch target, the
    typed text, and the visible-text fields of selectors.  Element
    identifiers and class names are left alone.

    Args:
        action: The action to copy.
        transform: Applied to every text-bearing field.
        selector_transform: Applied to selector text fields instead of
            *transform* when given.
    """
    on_selector = selector_transform or transform
    changes: dict[str, object] = {"description": transform(action.description)}
    if isinstance(action, LaunchApp):
        changes["target"] = transform(action.target)
    elif isinstance(action, InputText):
        changes["text"] = transform(action.text)
        changes["selector"] = _map_selector(action.selector, on_selector)
    elif isinstance(action, Click):
        changes["selector"] = _map_selector(action.selector, on_selector)
    return replace(action, **changes)
