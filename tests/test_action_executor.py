"""Comprehensive unit tests for pocket_agent.core.action_executor.

Covers app launch resolution, clicks with retry and ancestor fallback,
text input, scrolling, waits, global navigation, the missing-backend
state, and exception handling.  Uses the in-memory dry-run platform with
a hand-rolled sleep recorder instead of unittest.mock.
"""

from __future__ import annotations

import asyncio

from pocket_agent.config.settings import Settings
from pocket_agent.core.action_executor import ActionExecutor
from pocket_agent.models.actions import (
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
    ScrollDirection,
    Selector,
    Wait,
)
from pocket_agent.models.task import ActionFailure, ActionSuccess, ErrorKind
from pocket_agent.models.ui import Rectangle, UiNode
from pocket_agent.platform.dry_run import DryRunAppDirectory, DryRunBackend
from pocket_agent.platform.interface import InstalledApp

# ------------------------------------------------------------------
# Mock collaborators
# ------------------------------------------------------------------


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class RaisingBackend(DryRunBackend):
    """Dry-run backend whose clicks raise."""

    async def click_node(self, node: UiNode) -> bool:
        raise RuntimeError("accessibility service crashed")


class RefusingBackend(DryRunBackend):
    """Dry-run backend whose global actions and swipes report failure."""

    async def perform_global_action(self, action: GlobalAction) -> bool:
        self.calls.append(("global_action", action))
        return False

    async def swipe(self, start, end, duration_ms: int) -> bool:
        return False


class AppearingBackend(DryRunBackend):
    """Adds *node* to the tree after a number of lookups."""

    def __init__(self, node: UiNode, after: int) -> None:
        super().__init__()
        self._pending = node
        self._after = after
        self.lookups = 0

    async def find_node(self, selector: Selector) -> UiNode | None:
        self.lookups += 1
        if self.lookups > self._after and self._pending is not None:
            self.root.add_child(self._pending)
            self._pending = None
        return await super().find_node(selector)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


_FAST = Settings(
    click_retry_delay_seconds=0.0,
    input_focus_delay_seconds=0.0,
    wait_poll_interval_seconds=0.0,
    launch_settle_seconds=0.0,
)


def _screen(*children: UiNode) -> UiNode:
    return UiNode(
        class_name="android.widget.FrameLayout",
        bounds=Rectangle(0, 0, 1080, 2400),
        children=list(children),
    )


def _button(text: str, clickable: bool = True) -> UiNode:
    return UiNode(
        text=text,
        class_name="android.widget.Button",
        clickable=clickable,
        bounds=Rectangle(100, 200, 200, 80),
    )


def _make_executor(
    backend: DryRunBackend | None = None,
    directory: DryRunAppDirectory | None = None,
    settings: Settings = _FAST,
) -> tuple[ActionExecutor, SleepRecorder]:
    sleep = SleepRecorder()
    executor = ActionExecutor(
        directory or DryRunAppDirectory(),
        backend=backend,
        settings=settings,
        sleep=sleep,
    )
    return executor, sleep


def _run(executor: ActionExecutor, action):
    return asyncio.run(executor.execute(action))


# ==================================================================
# Missing backend
# ==================================================================


class TestNoBackend:
    """Without a backend only launches can run."""

    def test_click_fails_unavailable(self) -> None:
        """Backend-dependent actions fail as AUTOMATION_UNAVAILABLE."""
        executor, _ = _make_executor(backend=None)
        result = _run(executor, Click(selector=Selector(text="OK")))
        assert isinstance(result, ActionFailure)
        assert result.error == "backend unavailable"
        assert result.recoverable is False
        assert result.kind is ErrorKind.AUTOMATION_UNAVAILABLE

    def test_every_backend_action_fails(self) -> None:
        """Scroll, wait, back and home need the backend too."""
        executor, _ = _make_executor(backend=None)
        for action in (
            Scroll(direction=ScrollDirection.DOWN),
            Wait(condition=Delay(10)),
            Back(),
            Home(),
            InputText(selector=Selector(text="a"), text="b"),
        ):
            result = _run(executor, action)
            assert result.kind is ErrorKind.AUTOMATION_UNAVAILABLE

    def test_launch_still_works(self) -> None:
        """App launches go through the app directory, not the backend."""
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(backend=None, directory=directory)
        result = _run(executor, LaunchApp(target="spotify"))
        assert isinstance(result, ActionSuccess)
        assert directory.launched == [("com.spotify.music", None)]

    def test_attach_and_detach(self) -> None:
        executor, _ = _make_executor(backend=None)
        assert executor.has_backend is False
        backend = DryRunBackend()
        executor.attach_backend(backend)
        assert executor.backend is backend
        executor.detach_backend()
        assert executor.backend is None


# ==================================================================
# Launch resolution
# ==================================================================


class TestLaunch:
    """Tests for LaunchApp target resolution."""

    def test_result_carries_action_id(self) -> None:
        executor, _ = _make_executor(DryRunBackend())
        action = LaunchApp(target="maps")
        result = _run(executor, action)
        assert result.action_id == action.id
        assert result.duration_ms >= 0.0

    def test_package_identifier(self) -> None:
        """A launchable package id is launched directly with its activity."""
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(DryRunBackend(), directory)
        _run(executor, LaunchApp(target="com.android.settings", activity=".Wifi"))
        assert directory.launched == [("com.android.settings", ".Wifi")]

    def test_label_lookup(self) -> None:
        """Labels resolve through the app cache."""
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(DryRunBackend(), directory)
        result = _run(executor, LaunchApp(target="youtube"))
        assert result.success
        assert directory.launched[0][0] == "com.google.android.youtube"

    def test_market_uri_prefers_play_store(self) -> None:
        """Store URIs are opened in the Play Store when it is installed."""
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(DryRunBackend(), directory)
        uri = "market://search?q=signal"
        assert _run(executor, LaunchApp(target=uri)).success
        assert directory.opened_uris == [(uri, "com.android.vending")]

    def test_market_uri_without_play_store(self) -> None:
        """Without the Play Store any handler may open the URI."""
        directory = DryRunAppDirectory(apps=[InstalledApp("F-Droid", "org.fdroid.fdroid")])
        executor, _ = _make_executor(DryRunBackend(), directory)
        uri = "market://search?q=signal"
        assert _run(executor, LaunchApp(target=uri)).success
        assert directory.opened_uris == [(uri, None)]

    def test_web_url(self) -> None:
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(DryRunBackend(), directory)
        assert _run(executor, LaunchApp(target="https://example.com")).success
        assert directory.opened_uris == [("https://example.com", None)]

    def test_store_request(self) -> None:
        """'app store' resolves to the best installed store."""
        directory = DryRunAppDirectory(
            apps=[
                InstalledApp("Aurora Store", "com.aurora.store"),
                InstalledApp("Notes", "com.example.notes"),
            ]
        )
        executor, _ = _make_executor(DryRunBackend(), directory)
        assert _run(executor, LaunchApp(target="app store")).success
        assert directory.launched == [("com.aurora.store", None)]

    def test_restore_app_is_not_a_store(self) -> None:
        """An app named Restore launches itself, not the Play Store."""
        directory = DryRunAppDirectory(
            apps=[
                InstalledApp("Google Play Store", "com.android.vending"),
                InstalledApp("Restore", "com.example.restore"),
            ]
        )
        executor, _ = _make_executor(DryRunBackend(), directory)
        assert _run(executor, LaunchApp(target="restore")).success
        assert directory.launched == [("com.example.restore", None)]

    def test_browser_fallback(self) -> None:
        """A missing browser falls back to opening a web page."""
        directory = DryRunAppDirectory(apps=[InstalledApp("Notes", "com.example.notes")])
        executor, _ = _make_executor(DryRunBackend(), directory)
        assert _run(executor, LaunchApp(target="chrome")).success
        assert directory.opened_uris[0][0].startswith("https://")

    def test_unknown_app_non_recoverable(self) -> None:
        """Nothing resolving is a non-recoverable failure."""
        executor, _ = _make_executor(DryRunBackend())
        result = _run(executor, LaunchApp(target="zzqx"))
        assert isinstance(result, ActionFailure)
        assert result.recoverable is False
        assert "zzqx" in result.error

    def test_settle_delay_after_launch(self) -> None:
        """A successful launch waits launch_settle_seconds."""
        settings = Settings(launch_settle_seconds=0.25)
        executor, sleep = _make_executor(DryRunBackend(), settings=settings)
        _run(executor, LaunchApp(target="maps"))
        assert sleep.delays == [0.25]

    def test_app_list_is_cached(self) -> None:
        """Two launches enumerate the installed apps once."""
        directory = DryRunAppDirectory()
        executor, _ = _make_executor(DryRunBackend(), directory)
        _run(executor, LaunchApp(target="maps"))
        _run(executor, LaunchApp(target="spotify"))
        assert directory.list_calls == 1


# ==================================================================
# Click
# ==================================================================


class TestClick:
    """Tests for Click execution."""

    def test_clicks_matching_node(self) -> None:
        backend = DryRunBackend(_screen(_button("OK")))
        executor, _ = _make_executor(backend)
        result = _run(executor, Click(selector=Selector(text="OK")))
        assert isinstance(result, ActionSuccess)
        assert backend.calls_named("click_node") == ["OK"]

    def test_retries_once(self) -> None:
        """A node appearing on the second lookup is still clicked."""
        backend = AppearingBackend(_button("Later"), after=1)
        executor, sleep = _make_executor(backend, settings=Settings(click_retry_delay_seconds=1.0))
        result = _run(executor, Click(selector=Selector(text="Later")))
        assert result.success
        assert backend.lookups == 2
        assert sleep.delays == [1.0]

    def test_missing_node_recoverable(self) -> None:
        """Two misses give a recoverable ELEMENT_NOT_FOUND."""
        backend = DryRunBackend(_screen())
        executor, _ = _make_executor(backend)
        result = _run(executor, Click(selector=Selector(text="Nope")))
        assert isinstance(result, ActionFailure)
        assert result.recoverable is True
        assert result.kind is ErrorKind.ELEMENT_NOT_FOUND
        assert len(backend.calls_named("find_node")) == 2

    def test_clickable_ancestor(self) -> None:
        """A non-clickable label clicks its clickable parent."""
        row = UiNode(text="Row", clickable=True, bounds=Rectangle(0, 0, 500, 100))
        row.add_child(UiNode(text="Label", bounds=Rectangle(10, 10, 50, 20)))
        backend = DryRunBackend(_screen(row))
        executor, _ = _make_executor(backend)
        assert _run(executor, Click(selector=Selector(text="Label"))).success
        assert backend.calls_named("click_node") == ["Row"]

    def test_tap_center_fallback(self) -> None:
        """Without any clickable ancestor the center is tapped."""
        backend = DryRunBackend(_screen(_button("Static", clickable=False)))
        executor, _ = _make_executor(backend)
        assert _run(executor, Click(selector=Selector(text="Static"))).success
        assert backend.calls_named("tap") == [(200, 240)]

    def test_exception_becomes_failure(self) -> None:
        """A raising backend yields a non-recoverable failure."""
        backend = RaisingBackend(_screen(_button("OK")))
        executor, _ = _make_executor(backend)
        result = _run(executor, Click(selector=Selector(text="OK")))
        assert isinstance(result, ActionFailure)
        assert result.recoverable is False
        assert "crashed" in result.error


# ==================================================================
# Input, scroll, wait, navigation
# ==================================================================


class TestInputText:
    """Tests for InputText execution."""

    def test_types_into_field(self) -> None:
        field = UiNode(resource_id="com.app:id/compose", clickable=True)
        backend = DryRunBackend(_screen(field))
        executor, _ = _make_executor(backend)
        action = InputText(selector=Selector(resource_id="compose"), text="hello")
        assert _run(executor, action).success
        assert field.text == "hello"
        assert backend.calls_named("click_node") == ["com.app:id/compose"]

    def test_focus_delay(self) -> None:
        field = UiNode(resource_id="compose", clickable=True)
        settings = Settings(input_focus_delay_seconds=0.2)
        executor, sleep = _make_executor(DryRunBackend(_screen(field)), settings=settings)
        _run(executor, InputText(selector=Selector(resource_id="compose"), text="x"))
        assert sleep.delays == [0.2]

    def test_missing_field(self) -> None:
        executor, _ = _make_executor(DryRunBackend(_screen()))
        result = _run(executor, InputText(selector=Selector(resource_id="nope"), text="x"))
        assert isinstance(result, ActionFailure)
        assert result.kind is ErrorKind.ELEMENT_NOT_FOUND


class TestScroll:
    """Tests for Scroll execution."""

    def test_swipes(self) -> None:
        backend = DryRunBackend(width=1000, height=2000)
        executor, _ = _make_executor(backend)
        assert _run(executor, Scroll(direction=ScrollDirection.UP, amount=0.5)).success
        start, end, duration = backend.calls_named("swipe")[0]
        assert start == (500, 1500)
        assert end == (500, 500)
        assert duration == _FAST.swipe_duration_ms

    def test_refused_swipe_fails(self) -> None:
        executor, _ = _make_executor(RefusingBackend())
        result = _run(executor, Scroll(direction=ScrollDirection.DOWN))
        assert isinstance(result, ActionFailure)
        assert result.recoverable is True


class TestWait:
    """Tests for Wait execution."""

    def test_delay(self) -> None:
        executor, sleep = _make_executor(DryRunBackend())
        assert _run(executor, Wait(condition=Delay(1500))).success
        assert sleep.delays == [1.5]

    def test_element_visible(self) -> None:
        """Polls until the element shows up."""
        backend = AppearingBackend(_button("Ready"), after=2)
        executor, _ = _make_executor(backend)
        action = Wait(condition=ElementVisible(Selector(text="Ready")), timeout_ms=5000)
        assert _run(executor, action).success
        assert backend.lookups == 3

    def test_element_gone(self) -> None:
        executor, _ = _make_executor(DryRunBackend(_screen()))
        action = Wait(condition=ElementGone(Selector(text="Spinner")), timeout_ms=100)
        assert _run(executor, action).success

    def test_timeout_recoverable(self) -> None:
        executor, _ = _make_executor(DryRunBackend(_screen()))
        action = Wait(condition=ElementVisible(Selector(text="Never")), timeout_ms=20)
        result = _run(executor, action)
        assert isinstance(result, ActionFailure)
        assert result.recoverable is True


class TestNavigation:
    """Tests for Back and Home."""

    def test_back_and_home(self) -> None:
        backend = DryRunBackend()
        executor, _ = _make_executor(backend)
        assert _run(executor, Back()).success
        assert _run(executor, Home()).success
        assert backend.calls_named("global_action") == [GlobalAction.BACK, GlobalAction.HOME]

    def test_refused_home(self) -> None:
        executor, _ = _make_executor(RefusingBackend())
        result = _run(executor, Home())
        assert isinstance(result, ActionFailure)


class TestAppQueries:
    """Tests for available_apps() and available_store_name()."""

    def test_available_apps(self) -> None:
        executor, _ = _make_executor(DryRunBackend())
        apps = asyncio.run(executor.available_apps())
        assert InstalledApp("Spotify", "com.spotify.music") in apps

    def test_store_name(self) -> None:
        executor, _ = _make_executor(DryRunBackend())
        assert asyncio.run(executor.available_store_name()) == "Play Store"
