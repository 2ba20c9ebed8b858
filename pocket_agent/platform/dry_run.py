"""In-memory device simulation.

``DryRunBackend`` and ``DryRunAppDirectory`` implement the platform
contracts over a ``UiNode`` tree and a list of ``InstalledApp`` values.
Every call is recorded in ``calls`` so that a run can be inspected
afterwards.  The CLI uses them for ``--dry-run``; tests use them as
realistic collaborators.

With ``synthesize_missing=True`` the backend invents a matching element
for any selector it cannot satisfy, so that a whole plan can be walked
through without a real screen.
"""

from __future__ import annotations

import logging
from typing import Any

from pocket_agent.models.actions import GlobalAction, Selector
from pocket_agent.models.ui import Rectangle, UiNode
from pocket_agent.platform.interface import AppDirectory, AutomationBackend, InstalledApp

logger = logging.getLogger(__name__)

DEFAULT_APPS: tuple[InstalledApp, ...] = (
    InstalledApp("Clock", "com.google.android.deskclock"),
    InstalledApp("Messages", "com.google.android.apps.messaging"),
    InstalledApp("Phone", "com.google.android.dialer"),
    InstalledApp("Chrome", "com.android.chrome"),
    InstalledApp("Calendar", "com.google.android.calendar"),
    InstalledApp("Settings", "com.android.settings"),
    InstalledApp("Play Store", "com.android.vending"),
    InstalledApp("YouTube", "com.google.android.youtube"),
    InstalledApp("Maps", "com.google.android.apps.maps"),
    InstalledApp("Spotify", "com.spotify.music"),
)


class DryRunBackend(AutomationBackend):
    """Automation backend over an in-memory element tree.

    Args:
        root: Root of the simulated screen.  An empty container is used
            when omitted.
        width: Simulated screen width in pixels.
        height: Simulated screen height in pixels.
        synthesize_missing: Invent a matching element for unmatched
            selectors instead of reporting it missing.
    """

    def __init__(
        self,
        root: UiNode | None = None,
        width: int = 1080,
        height: int = 2400,
        synthesize_missing: bool = False,
    ) -> None:
        self.root = root or UiNode(
            class_name="android.widget.FrameLayout",
            bounds=Rectangle(0, 0, width, height),
        )
        self.width = width
        self.height = height
        self.synthesize_missing = synthesize_missing
        self.calls: list[tuple[str, Any]] = []

    async def find_node(self, selector: Selector) -> UiNode | None:
        self.calls.append(("find_node", selector))
        for node in self.root.walk():
            if selector.matches(node):
                return node
        if self.synthesize_missing and not selector.is_empty():
            return self._synthesize(selector)
        return None

    async def find_all_nodes(self, selector: Selector) -> list[UiNode]:
        self.calls.append(("find_all_nodes", selector))
        return [node for node in self.root.walk() if selector.matches(node)]

    async def dump_tree(self) -> str:
        return self.root.dump()

    async def click_node(self, node: UiNode) -> bool:
        self.calls.append(("click_node", node.label()))
        logger.info("[dry-run] click %s", node.label())
        return True

    async def tap(self, x: int, y: int) -> bool:
        self.calls.append(("tap", (x, y)))
        logger.info("[dry-run] tap at (%d, %d)", x, y)
        return True

    async def input_text(self, node: UiNode, text: str) -> bool:
        self.calls.append(("input_text", (node.label(), text)))
        logger.info("[dry-run] type %r into %s", text, node.label())
        node.text = text
        return True

    async def swipe(
        self,
        start: tuple[int, int],
        end: tuple[int, int],
        duration_ms: int,
    ) -> bool:
        self.calls.append(("swipe", (start, end, duration_ms)))
        logger.info("[dry-run] swipe %s -> %s in %d ms", start, end, duration_ms)
        return True

    async def perform_global_action(self, action: GlobalAction) -> bool:
        self.calls.append(("global_action", action))
        logger.info("[dry-run] global action %s", action.value)
        return True

    async def screen_size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def calls_named(self, name: str) -> list[Any]:
        """Arguments of every recorded call called *name*."""
        return [args for call, args in self.calls if call == name]

    def _synthesize(self, selector: Selector) -> UiNode:
        node = UiNode(
            text=selector.text or selector.text_contains or "",
            content_description=(
                selector.content_description
                or selector.content_description_contains
                or ""
            ),
            resource_id=selector.resource_id or selector.resource_id_contains or "",
            class_name=selector.class_name or "android.widget.Button",
            clickable=True,
            bounds=Rectangle(self.width // 4, self.height // 2, self.width // 2, 120),
        )
        logger.debug("[dry-run] synthesised %s for %s", node.label(), selector.describe())
        return self.root.add_child(node)


class DryRunAppDirectory(AppDirectory):
    """App directory over a fixed list of apps.

    Args:
        apps: Installed apps; ``DEFAULT_APPS`` when omitted.
        uri_handlers: Whether ``open_uri`` succeeds.
    """

    def __init__(
        self,
        apps: tuple[InstalledApp, ...] | list[InstalledApp] | None = None,
        uri_handlers: bool = True,
    ) -> None:
        self.apps = list(DEFAULT_APPS if apps is None else apps)
        self.uri_handlers = uri_handlers
        self.list_calls = 0
        self.launched: list[tuple[str, str | None]] = []
        self.opened_uris: list[tuple[str, str | None]] = []

    async def list_launchable_apps(self) -> list[InstalledApp]:
        self.list_calls += 1
        return list(self.apps)

    async def can_launch(self, package: str) -> bool:
        return any(app.package == package for app in self.apps)

    async def launch(self, package: str, activity: str | None = None) -> bool:
        if not await self.can_launch(package):
            return False
        self.launched.append((package, activity))
        logger.info("[dry-run] launch %s", package)
        return True

    async def open_uri(self, uri: str, package: str | None = None) -> bool:
        if not self.uri_handlers:
            return False
        if package is not None and not await self.can_launch(package):
            return False
        self.opened_uris.append((uri, package))
        logger.info("[dry-run] open %s via %s", uri, package or "default handler")
        return True
