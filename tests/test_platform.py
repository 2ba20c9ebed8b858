"""Unit tests for the Pocket Agent platform layer.

Tests cover:
- InstalledApp construction
- AutomationBackend and AppDirectory abstract base class enforcement
- scroll_swipe() geometry and clamping
- DryRunBackend element lookup, input recording and synthesis
- DryRunAppDirectory launches and URI handling
"""

from __future__ import annotations

import asyncio

import pytest

from pocket_agent.models.actions import GlobalAction, ScrollDirection, Selector
from pocket_agent.models.ui import Rectangle, UiNode
from pocket_agent.platform.dry_run import DEFAULT_APPS, DryRunAppDirectory, DryRunBackend
from pocket_agent.platform.interface import (
    AppDirectory,
    AutomationBackend,
    InstalledApp,
    scroll_swipe,
)

# ==================================================================
# Interface tests
# ==================================================================


class TestInstalledApp:
    """Tests for the InstalledApp dataclass."""

    def test_fields(self) -> None:
        app = InstalledApp("Spotify", "com.spotify.music")
        assert app.label == "Spotify"
        assert app.package == "com.spotify.music"

    def test_value_equality(self) -> None:
        assert InstalledApp("A", "a.b") == InstalledApp("A", "a.b")


class TestAbstractContracts:
    """The contracts cannot be instantiated directly."""

    def test_backend_abstract(self) -> None:
        with pytest.raises(TypeError):
            AutomationBackend()  # type: ignore[abstract]

    def test_directory_abstract(self) -> None:
        with pytest.raises(TypeError):
            AppDirectory()  # type: ignore[abstract]


class TestScrollSwipe:
    """Tests for scroll_swipe()."""

    def test_up_moves_finger_upwards(self) -> None:
        start, end = scroll_swipe(ScrollDirection.UP, 0.5, 1000, 2000)
        assert start == (500, 1500)
        assert end == (500, 500)

    def test_down_moves_finger_downwards(self) -> None:
        start, end = scroll_swipe(ScrollDirection.DOWN, 0.5, 1000, 2000)
        assert start == (500, 500)
        assert end == (500, 1500)

    def test_left_and_right(self) -> None:
        left = scroll_swipe(ScrollDirection.LEFT, 0.5, 1000, 2000)
        right = scroll_swipe(ScrollDirection.RIGHT, 0.5, 1000, 2000)
        assert left == ((750, 1000), (250, 1000))
        assert right == ((250, 1000), (750, 1000))

    def test_amount_clamped_high(self) -> None:
        clamped = scroll_swipe(ScrollDirection.DOWN, 5.0, 1000, 1000)
        assert clamped == scroll_swipe(ScrollDirection.DOWN, 0.9, 1000, 1000)

    def test_amount_clamped_low(self) -> None:
        clamped = scroll_swipe(ScrollDirection.DOWN, 0.0, 1000, 1000)
        assert clamped == scroll_swipe(ScrollDirection.DOWN, 0.1, 1000, 1000)


# ==================================================================
# Dry-run backend
# ==================================================================


class TestDryRunBackend:
    """Tests for DryRunBackend."""

    def _backend(self) -> DryRunBackend:
        button = UiNode(text="OK", clickable=True, bounds=Rectangle(0, 0, 10, 10))
        root = UiNode(class_name="android.widget.FrameLayout", children=[button])
        return DryRunBackend(root=root, width=1000, height=2000)

    def test_find_node(self) -> None:
        backend = self._backend()
        node = asyncio.run(backend.find_node(Selector(text="OK")))
        assert node is not None
        assert node.text == "OK"
        assert backend.calls_named("find_node") == [Selector(text="OK")]

    def test_find_missing(self) -> None:
        assert asyncio.run(self._backend().find_node(Selector(text="Nope"))) is None

    def test_find_all_nodes(self) -> None:
        backend = self._backend()
        backend.root.add_child(UiNode(text="OK"))
        assert len(asyncio.run(backend.find_all_nodes(Selector(text="OK")))) == 2

    def test_synthesize_missing(self) -> None:
        """Unmatched selectors produce a clickable node in the tree."""
        backend = DryRunBackend(synthesize_missing=True)
        node = asyncio.run(backend.find_node(Selector(content_description="Send")))
        assert node is not None
        assert node.clickable is True
        assert node.parent is backend.root
        assert Selector(content_description="Send").matches(node)

    def test_synthesize_ignores_empty_selector(self) -> None:
        backend = DryRunBackend(synthesize_missing=True)
        assert asyncio.run(backend.find_node(Selector())) is None

    def test_input_text_updates_node(self) -> None:
        backend = self._backend()
        field = UiNode(resource_id="com.app:id/compose")
        asyncio.run(backend.input_text(field, "hello"))
        assert field.text == "hello"
        assert backend.calls_named("input_text") == [("com.app:id/compose", "hello")]

    def test_perform_scroll_uses_screen_size(self) -> None:
        backend = self._backend()
        assert asyncio.run(backend.perform_scroll(ScrollDirection.UP, 0.5, 250)) is True
        assert backend.calls_named("swipe") == [((500, 1500), (500, 500), 250)]

    def test_global_action_recorded(self) -> None:
        backend = self._backend()
        asyncio.run(backend.perform_global_action(GlobalAction.HOME))
        assert backend.calls_named("global_action") == [GlobalAction.HOME]

    def test_dump_tree(self) -> None:
        assert "text='OK'" in asyncio.run(self._backend().dump_tree())


# ==================================================================
# Dry-run app directory
# ==================================================================


class TestDryRunAppDirectory:
    """Tests for DryRunAppDirectory."""

    def test_default_apps(self) -> None:
        apps = asyncio.run(DryRunAppDirectory().list_launchable_apps())
        assert apps == list(DEFAULT_APPS)

    def test_launch_installed(self) -> None:
        directory = DryRunAppDirectory()
        assert asyncio.run(directory.launch("com.spotify.music")) is True
        assert directory.launched == [("com.spotify.music", None)]

    def test_launch_missing(self) -> None:
        directory = DryRunAppDirectory()
        assert asyncio.run(directory.launch("com.not.installed")) is False
        assert directory.launched == []

    def test_open_uri_forced_package_must_exist(self) -> None:
        directory = DryRunAppDirectory(apps=[])
        assert asyncio.run(directory.open_uri("market://x", "com.android.vending")) is False
        assert asyncio.run(directory.open_uri("https://example.com")) is True

    def test_open_uri_without_handlers(self) -> None:
        directory = DryRunAppDirectory(uri_handlers=False)
        assert asyncio.run(directory.open_uri("https://example.com")) is False
