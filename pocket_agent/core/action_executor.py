"""Execute device actions through the automation backend and app directory.

The ``ActionExecutor`` turns each planned action into calls on the
``AutomationBackend`` (element lookup, clicks, typing, swipes, global
navigation) or the ``AppDirectory`` (launching apps and URIs).  Every
execution produces an ``ActionSuccess`` or ``ActionFailure`` timed end
to end; nothing escapes as an exception.

The automation backend is injected and may be absent (the user has not
enabled the automation service yet).  Every action except ``LaunchApp``
then fails immediately as non-recoverable with kind
``AUTOMATION_UNAVAILABLE``.

``LaunchApp`` targets are resolved in order:

1. ``market://`` URIs, opened through the preferred store
2. ``http://`` / ``https://`` URLs
3. requests for an app store, resolved to the best installed store
4. fully qualified package identifiers
5. fuzzy lookup in the cached app directory
6. browser targets fall back to opening a web page

Typical usage::

    executor = ActionExecutor(app_directory, backend=backend, settings=settings)
    result = await executor.execute(Click(selector=Selector(text="OK")))
    if not result.success:
        print(result.error)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pocket_agent.config.settings import Settings
from pocket_agent.core.app_directory import AppDirectoryCache, is_store_request
from pocket_agent.models.actions import (
    Action,
    ActionKind,
    Back,
    Click,
    Delay,
    ElementGone,
    ElementVisible,
    GlobalAction,
    Home,
    InputText,
    LaunchApp,
    Scroll,
    Selector,
    Wait,
)
from pocket_agent.models.task import ActionFailure, ActionResult, ActionSuccess, ErrorKind
from pocket_agent.models.ui import UiNode
from pocket_agent.platform.interface import AppDirectory, AutomationBackend, InstalledApp

logger = logging.getLogger(__name__)

PLAY_STORE_PACKAGE: str = "com.android.vending"
BROWSER_FALLBACK_URL: str = "https://www.google.com"

# Characters of the UI tree dump written to the log after a failed lookup.
_TREE_DUMP_LIMIT: int = 2000


@dataclass(frozen=True)
class _Outcome:
    """What a handler reports before timing is attached."""

    ok: bool
    detail: str
    recoverable: bool = True
    kind: ErrorKind = ErrorKind.ACTION_EXECUTION_FAILURE


def _ok(detail: str) -> _Outcome:
    return _Outcome(ok=True, detail=detail)


def _fail(
    detail: str,
    recoverable: bool = True,
    kind: ErrorKind = ErrorKind.ACTION_EXECUTION_FAILURE,
) -> _Outcome:
    return _Outcome(ok=False, detail=detail, recoverable=recoverable, kind=kind)


class ActionExecutor:
    """Runs single actions against the device.

    Args:
        app_directory: Enumerates and launches installed apps.
        backend: Automation backend, or ``None`` while automation is not
            enabled.
        settings: Supplies delays, poll intervals and cache parameters.
        app_cache: Optional pre-built app cache (tests inject one with a
            fake clock).
        sleep: Coroutine used for every delay.
    """

    def __init__(
        self,
        app_directory: AppDirectory,
        backend: AutomationBackend | None = None,
        settings: Settings | None = None,
        app_cache: AppDirectoryCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or Settings()
        self._directory = app_directory
        self._backend = backend
        self._apps = app_cache or AppDirectoryCache(app_directory, self._settings)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Backend handle
    # ------------------------------------------------------------------

    @property
    def backend(self) -> AutomationBackend | None:
        return self._backend

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    def attach_backend(self, backend: AutomationBackend) -> None:
        """Use *backend* from now on (automation was enabled)."""
        self._backend = backend
        logger.info("Automation backend attached")

    def detach_backend(self) -> None:
        """Forget the backend (automation was disabled)."""
        self._backend = None
        logger.info("Automation backend detached")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, action: Action) -> ActionResult:
        """Execute *action* and report the outcome.  Never raises."""
        start_ns = time.monotonic_ns()

        if self._backend is None and action.kind is not ActionKind.LAUNCH_APP:
            logger.error("Cannot %s: automation backend unavailable", action.kind.value)
            return ActionFailure(
                action_id=action.id,
                duration_ms=0.0,
                error="backend unavailable",
                recoverable=False,
                kind=ErrorKind.AUTOMATION_UNAVAILABLE,
            )

        handler = self._DISPATCH[action.kind]
        try:
            outcome = await handler(self, action)
        except Exception as exc:
            outcome = _fail(str(exc) or type(exc).__name__, recoverable=False)

        elapsed_ms = (time.monotonic_ns() - start_ns) / 1_000_000
        if outcome.ok:
            logger.debug("%s ok in %.0f ms: %s", action.kind.value, elapsed_ms, outcome.detail)
            return ActionSuccess(
                action_id=action.id,
                duration_ms=elapsed_ms,
                message=outcome.detail,
            )

        logger.error("action %s failed: %s", action.kind.value, outcome.detail)
        return ActionFailure(
            action_id=action.id,
            duration_ms=elapsed_ms,
            error=outcome.detail,
            recoverable=outcome.recoverable,
            kind=outcome.kind,
        )

    async def available_apps(self) -> list[InstalledApp]:
        """Launchable apps as currently cached."""
        return await self._apps.apps()

    async def available_store_name(self) -> str:
        """Display name of the installed app store."""
        return await self._apps.store_name()

    # ------------------------------------------------------------------
    # Private handlers
    # ------------------------------------------------------------------

    async def _execute_launch(self, action: LaunchApp) -> _Outcome:
        target = action.target.strip()
        launched = await self._launch_target(target, action.activity)
        if launched is None:
            await self._log_available_apps(target)
            return _fail(f"No app found matching: {target}", recoverable=False)
        if not launched:
            return _fail(f"Failed to launch {target}", recoverable=False)

        await self._sleep(self._settings.launch_settle_seconds)
        return _ok(f"Launched {target}")

    async def _launch_target(self, target: str, activity: str | None) -> bool | None:
        """Resolve and launch *target*.

        Returns:
            The directory's launch result, or ``None`` when the target
            resolved to nothing.
        """
        lowered = target.lower()

        if lowered.startswith("market://"):
            store = (
                PLAY_STORE_PACKAGE
                if await self._directory.can_launch(PLAY_STORE_PACKAGE)
                else None
            )
            return await self._directory.open_uri(target, store)

        if lowered.startswith(("http://", "https://")):
            return await self._directory.open_uri(target)

        if is_store_request(target):
            store_app = await self._apps.find_store()
            if store_app is not None:
                logger.info("App store request resolved to %s", store_app.label)
                return await self._directory.launch(store_app.package)
            logger.warning("No app store found on device")

        if "." in target and "://" not in target:
            if await self._directory.can_launch(target):
                return await self._directory.launch(target, activity)

        app = await self._apps.find(target)
        if app is not None:
            logger.info("Resolved %r to %s (%s)", target, app.label, app.package)
            return await self._directory.launch(app.package)

        if "chrome" in lowered or "browser" in lowered:
            logger.info("Browser not installed by name, opening %s", BROWSER_FALLBACK_URL)
            return await self._directory.open_uri(BROWSER_FALLBACK_URL)

        return None

    async def _execute_click(self, action: Click) -> _Outcome:
        node = await self._find_with_retry(action.selector)
        if node is None:
            return _fail(
                f"Element not found: {action.selector.describe()}",
                kind=ErrorKind.ELEMENT_NOT_FOUND,
            )
        if not await self._activate(node):
            return _fail(f"Click on {node.label()} was rejected")
        return _ok(f"Clicked {node.label()}")

    async def _execute_input(self, action: InputText) -> _Outcome:
        backend = self._require_backend()
        node = await backend.find_node(action.selector)
        if node is None:
            await self._log_tree(action.selector)
            return _fail(
                f"Input field not found: {action.selector.describe()}",
                kind=ErrorKind.ELEMENT_NOT_FOUND,
            )
        if not await self._activate(node):
            return _fail(f"Failed to focus input field {node.label()}")

        await self._sleep(self._settings.input_focus_delay_seconds)

        if not await backend.input_text(node, action.text):
            return _fail(f"Failed to enter text into {node.label()}")
        return _ok(f"Entered text into {node.label()}")

    async def _execute_scroll(self, action: Scroll) -> _Outcome:
        backend = self._require_backend()
        scrolled = await backend.perform_scroll(
            action.direction,
            action.amount,
            self._settings.swipe_duration_ms,
        )
        if not scrolled:
            return _fail(f"Scroll {action.direction.value} failed")
        return _ok(f"Scrolled {action.direction.value}")

    async def _execute_wait(self, action: Wait) -> _Outcome:
        condition = action.condition
        if isinstance(condition, Delay):
            await self._sleep(condition.duration_ms / 1000)
            return _ok(f"Waited {condition.duration_ms} ms")

        visible = isinstance(condition, ElementVisible)
        assert isinstance(condition, (ElementVisible, ElementGone))
        if await self._wait_for(condition.selector, action.timeout_ms, visible):
            state = "visible" if visible else "gone"
            return _ok(f"{condition.selector.describe()} is {state}")
        return _fail(
            f"Timed out after {action.timeout_ms} ms waiting for "
            f"{condition.selector.describe()}",
            kind=ErrorKind.ELEMENT_NOT_FOUND,
        )

    async def _execute_back(self, action: Back) -> _Outcome:
        if not await self._require_backend().perform_global_action(GlobalAction.BACK):
            return _fail("Back navigation failed")
        return _ok("Went back")

    async def _execute_home(self, action: Home) -> _Outcome:
        if not await self._require_backend().perform_global_action(GlobalAction.HOME):
            return _fail("Home navigation failed")
        return _ok("Went to home screen")

    # ------------------------------------------------------------------
    # Dispatch table
    # ------------------------------------------------------------------

    _DISPATCH: dict[
        ActionKind,
        Callable[[ActionExecutor, Action], Awaitable[_Outcome]],
    ] = {
        ActionKind.LAUNCH_APP: _execute_launch,
        ActionKind.CLICK: _execute_click,
        ActionKind.INPUT_TEXT: _execute_input,
        ActionKind.SCROLL: _execute_scroll,
        ActionKind.WAIT: _execute_wait,
        ActionKind.BACK: _execute_back,
        ActionKind.HOME: _execute_home,
    }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_backend(self) -> AutomationBackend:
        if self._backend is None:
            raise RuntimeError("backend unavailable")
        return self._backend

    async def _find_with_retry(self, selector: Selector) -> UiNode | None:
        """Look *selector* up, retrying exactly once after a pause."""
        backend = self._require_backend()
        node = await backend.find_node(selector)
        if node is not None:
            return node

        logger.debug("Element not found, retrying: %s", selector.describe())
        await self._sleep(self._settings.click_retry_delay_seconds)
        node = await backend.find_node(selector)
        if node is None:
            await self._log_tree(selector)
        return node

    async def _activate(self, node: UiNode) -> bool:
        """Click *node*, its nearest clickable ancestor, or its center."""
        backend = self._require_backend()
        if node.clickable:
            return await backend.click_node(node)

        ancestor = node.clickable_ancestor()
        if ancestor is not None:
            return await backend.click_node(ancestor)

        x, y = node.bounds.center()
        logger.debug("No clickable ancestor for %s, tapping (%d, %d)", node.label(), x, y)
        return await backend.tap(x, y)

    async def _wait_for(self, selector: Selector, timeout_ms: int, visible: bool) -> bool:
        """Poll until *selector*'s presence equals *visible* or time runs out."""
        backend = self._require_backend()
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            found = await backend.find_node(selector) is not None
            if found == visible:
                return True
            if time.monotonic() >= deadline:
                return False
            await self._sleep(self._settings.wait_poll_interval_seconds)

    async def _log_tree(self, selector: Selector) -> None:
        backend = self._require_backend()
        tree = await backend.dump_tree()
        logger.debug(
            "No element for %s. UI tree:\n%s",
            selector.describe(),
            tree[:_TREE_DUMP_LIMIT],
        )

    async def _log_available_apps(self, target: str) -> None:
        apps = await self._apps.apps()
        logger.warning(
            "No app found matching %r. Available: %s",
            target,
            ", ".join(f"{a.label} ({a.package})" for a in apps) or "none",
        )


_missing = set(ActionKind) - set(ActionExecutor._DISPATCH)
if _missing:
    raise RuntimeError(
        "ActionExecutor has no handler for: "
        + ", ".join(sorted(k.value for k in _missing))
    )
