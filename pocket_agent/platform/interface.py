"""Abstract contracts for the device-side collaborators.

The pipeline never touches the OS directly.  It talks to two contracts:

* ``AutomationBackend`` locates on-screen elements and performs clicks,
  typing, swipes and global navigation.  It only exists once the user
  has enabled the automation service; the executor treats its absence
  as a normal, typed state.
* ``AppDirectory`` enumerates launchable apps and starts them, either by
  identifier or by URI.

Every operation is a coroutine.  All coordinates are in screen pixels.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from pocket_agent.models.actions import GlobalAction, ScrollDirection, Selector
from pocket_agent.models.ui import UiNode

# Swipe endpoints for a scroll cover this fraction of the screen, clamped.
_MIN_SCROLL_AMOUNT: float = 0.1
_MAX_SCROLL_AMOUNT: float = 0.9


@dataclass(frozen=True)
class InstalledApp:
    """A launchable application.

    Attributes:
        label: Display name shown in the launcher.
        package: Unique identifier, e.g. ``"com.spotify.music"``.
    """

    label: str
    package: str


def scroll_swipe(
    direction: ScrollDirection,
    amount: float,
    width: int,
    height: int,
) -> tuple[tuple[int, int], tuple[int, int]]:
    """Start and end points of the swipe that scrolls *direction*.

    The swipe covers *amount* (clamped to 0.1-0.9) of the screen extent
    along the scroll axis, centred on the screen.  Scrolling ``UP`` moves
    the finger from low on the screen to high; ``LEFT`` moves it from
    right to left.

    Returns:
        ``((x1, y1), (x2, y2))`` in screen pixels.
    """
    fraction = min(max(amount, _MIN_SCROLL_AMOUNT), _MAX_SCROLL_AMOUNT)
    near = 0.5 - fraction / 2
    far = 0.5 + fraction / 2
    cx = width // 2
    cy = height // 2

    if direction is ScrollDirection.UP:
        return (cx, int(height * far)), (cx, int(height * near))
    if direction is ScrollDirection.DOWN:
        return (cx, int(height * near)), (cx, int(height * far))
    if direction is ScrollDirection.LEFT:
        return (int(width * far), cy), (int(width * near), cy)
    return (int(width * near), cy), (int(width * far), cy)


class AutomationBackend(ABC):
    """Locates UI elements and performs input on the device."""

    # ------------------------------------------------------------------
    # Element lookup
    # ------------------------------------------------------------------

    @abstractmethod
    async def find_node(self, selector: Selector) -> UiNode | None:
        """Return the first element matching *selector*, or ``None``."""

    @abstractmethod
    async def find_all_nodes(self, selector: Selector) -> list[UiNode]:
        """Return every element matching *selector*, in tree order."""

    @abstractmethod
    async def dump_tree(self) -> str:
        """Render the current element tree for diagnostics."""

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    @abstractmethod
    async def click_node(self, node: UiNode) -> bool:
        """Perform the element's click action."""

    @abstractmethod
    async def tap(self, x: int, y: int) -> bool:
        """Synthetic tap at screen coordinates."""

    @abstractmethod
    async def input_text(self, node: UiNode, text: str) -> bool:
        """Replace the text of an editable element."""

    @abstractmethod
    async def swipe(
        self,
        start: tuple[int, int],
        end: tuple[int, int],
        duration_ms: int,
    ) -> bool:
        """Straight-line swipe gesture."""

    @abstractmethod
    async def perform_global_action(self, action: GlobalAction) -> bool:
        """Back, home, recents or notifications."""

    @abstractmethod
    async def screen_size(self) -> tuple[int, int]:
        """Return ``(width, height)`` in pixels."""

    # ------------------------------------------------------------------
    # Derived gestures
    # ------------------------------------------------------------------

    async def perform_scroll(
        self,
        direction: ScrollDirection,
        amount: float,
        duration_ms: int = 300,
    ) -> bool:
        """Scroll by swiping across *amount* of the screen."""
        width, height = await self.screen_size()
        start, end = scroll_swipe(direction, amount, width, height)
        return await self.swipe(start, end, duration_ms)


class AppDirectory(ABC):
    """Enumerates and launches installed applications."""

    @abstractmethod
    async def list_launchable_apps(self) -> list[InstalledApp]:
        """Every app that has a launcher entry."""

    @abstractmethod
    async def can_launch(self, package: str) -> bool:
        """Whether *package* is installed and launchable."""

    @abstractmethod
    async def launch(self, package: str, activity: str | None = None) -> bool:
        """Start *package* (optionally a specific activity)."""

    @abstractmethod
    async def open_uri(self, uri: str, package: str | None = None) -> bool:
        """Open *uri*, optionally forcing the handling *package*."""
