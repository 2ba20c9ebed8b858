"""Cached lookup of installed apps by loose, human-typed names.

``AppDirectoryCache`` wraps an ``AppDirectory`` and keeps an index of
launchable apps keyed by lowercase label, by label without spaces, and by
the last component of the package identifier.  The index is rebuilt at
most once per ``app_cache_ttl_seconds``.

A refresh builds a complete new index and then swaps it in, so readers
always see a consistent snapshot (possibly a stale one).  An
``asyncio.Lock`` keeps concurrent callers from refreshing twice.

``find`` resolves a name in this order:

1. exact lowercase label
2. label ignoring spaces (``"playstore"`` finds ``"Play Store"``)
3. alias table (``"maps"`` finds ``"Google Maps"``)
4. a unique app whose label contains the term, or is contained in it
5. a unique app whose package identifier contains the term
6. the best longest-common-subsequence ratio above ``app_fuzzy_floor``

Typical usage::

    cache = AppDirectoryCache(directory, settings)
    app = await cache.find("spotify")
    if app is not None:
        await directory.launch(app.package)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType

from pocket_agent.config.settings import Settings
from pocket_agent.core.text_similarity import lcs_ratio
from pocket_agent.platform.interface import AppDirectory, InstalledApp

logger = logging.getLogger(__name__)

# App stores in order of preference.
STORE_PACKAGES: tuple[str, ...] = (
    "com.android.vending",
    "com.aurora.store",
    "org.fdroid.fdroid",
    "com.aurora.adroid",
    "cm.aptoide.pt",
    "com.amazon.venezia",
    "com.sec.android.app.samsungapps",
    "com.huawei.appmarket",
    "ru.vk.store",
    "com.xiaomi.market",
)

STORE_NAMES: dict[str, str] = {
    "com.android.vending": "Play Store",
    "com.aurora.store": "Aurora Store",
    "org.fdroid.fdroid": "F-Droid",
    "com.aurora.adroid": "Aurora Droid",
    "cm.aptoide.pt": "Aptoide",
    "com.amazon.venezia": "Amazon Appstore",
    "com.sec.android.app.samsungapps": "Galaxy Store",
    "com.huawei.appmarket": "AppGallery",
}

APP_ALIASES: dict[str, tuple[str, ...]] = {
    "playstore": ("play store", "google play store"),
    "play store": ("google play store",),
    "chrome": ("google chrome",),
    "maps": ("google maps",),
    "gmail": ("google mail",),
    "youtube": ("youtube music", "youtube"),
    "files": ("files by google", "file manager", "my files"),
    "photos": ("google photos",),
    "drive": ("google drive",),
    "calendar": ("google calendar",),
}


def is_store_request(target: str) -> bool:
    """Whether *target* asks for an app store rather than a specific app."""
    lowered = target.lower()
    return (
        "play store" in lowered
        or "playstore" in lowered
        or "app store" in lowered
        or ("store" in lowered and "restore" not in lowered)
        or lowered in ("play", "market")
    )


def build_index(apps: list[InstalledApp]) -> dict[str, InstalledApp]:
    """Index *apps* by lowercase label, label without spaces, and package suffix.

    Labels win over package suffixes when they collide.
    """
    index: dict[str, InstalledApp] = {}
    suffixes: list[tuple[str, InstalledApp]] = []
    for app in apps:
        label = app.label.lower().strip()
        index[label] = app
        no_spaces = label.replace(" ", "")
        if no_spaces != label:
            index[no_spaces] = app
        suffixes.append((app.package.rsplit(".", 1)[-1].lower(), app))
    for suffix, app in suffixes:
        index.setdefault(suffix, app)
    return index


class AppDirectoryCache:
    """TTL cache and fuzzy resolver over an ``AppDirectory``.

    Args:
        directory: Source of installed apps.
        settings: Supplies the TTL and the fuzzy-match floor.
        clock: Monotonic time source in seconds (tests inject one).
    """

    def __init__(
        self,
        directory: AppDirectory,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._directory = directory
        self._settings = settings or Settings()
        self._clock = clock
        self._index: Mapping[str, InstalledApp] = MappingProxyType({})
        self._apps: tuple[InstalledApp, ...] = ()
        self._loaded_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Snapshot management
    # ------------------------------------------------------------------

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at > self._settings.app_cache_ttl_seconds

    def invalidate(self) -> None:
        self._loaded_at = None

    async def snapshot(self) -> Mapping[str, InstalledApp]:
        """Current read-only index, refreshed first when stale."""
        if self.is_stale():
            await self._refresh()
        return self._index

    async def apps(self) -> list[InstalledApp]:
        """Every launchable app, in directory order."""
        if self.is_stale():
            await self._refresh()
        return list(self._apps)

    async def _refresh(self) -> None:
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if not self.is_stale():
                return
            apps = await self._directory.list_launchable_apps()
            index = MappingProxyType(build_index(apps))
            self._apps, self._index = tuple(apps), index
            self._loaded_at = self._clock()
            logger.debug("Cached %d installed apps (%d keys)", len(apps), len(index))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def find(self, search_term: str) -> InstalledApp | None:
        """Resolve a loosely typed app name; ``None`` when nothing fits."""
        index = await self.snapshot()
        apps = self._apps
        term = search_term.lower().strip()
        if not term:
            return None
        no_spaces = term.replace(" ", "")

        app = index.get(term) or index.get(no_spaces)
        if app is not None:
            return app

        for alias in APP_ALIASES.get(term, ()):
            app = index.get(alias) or index.get(alias.replace(" ", ""))
            if app is not None:
                return app

        contains = [
            a for a in apps
            if a.label and (term in a.label.lower() or a.label.lower() in term)
        ]
        if len(contains) == 1:
            return contains[0]

        by_package = [a for a in apps if term in a.package.lower()]
        if len(by_package) == 1:
            return by_package[0]

        best: InstalledApp | None = None
        best_score = self._settings.app_fuzzy_floor
        for candidate in apps:
            score = lcs_ratio(term, candidate.label.lower())
            if score > best_score:
                best, best_score = candidate, score
        if best is not None:
            logger.debug("Fuzzy-matched %r to %r (%.2f)", search_term, best.label, best_score)
        return best

    async def find_store(self) -> InstalledApp | None:
        """Best available app store: preference list, then by label."""
        apps = await self.apps()
        by_package = {a.package: a for a in apps}
        for package in STORE_PACKAGES:
            if package in by_package:
                return by_package[package]
        for app in apps:
            label = app.label.lower()
            if ("store" in label or "market" in label) and "restore" not in label:
                return app
        return None

    async def store_name(self) -> str:
        """Display name of the available app store."""
        apps = await self.apps()
        installed = {a.package for a in apps}
        for package, name in STORE_NAMES.items():
            if package in installed:
                return name
        return "App Store"
