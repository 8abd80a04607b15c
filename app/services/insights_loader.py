"""
Client-side insights loader.

Fetches the published insights from the public read API, keeps a copy in
an injectable cache and turns the collection into render models for the
landing and listing surfaces. When the API is unavailable it falls back to
a fresh-enough cache entry, then to a bundled static copy, and only then
reports a failed state.
"""

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import Settings
from app.utils.text import format_display_date, parse_date, truncate_text

logger = logging.getLogger(__name__)

CACHE_KEY = "insights_cache"
LANDING_LIMIT = 3
EXCERPT_LIMIT = 120
EMPTY_MESSAGE = "No insights published yet. Check back soon!"
DEFAULT_EXCERPT = "Read more about this legal insight..."


class LoaderState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class Surface(str, Enum):
    LANDING = "landing"
    LISTING = "listing"


# ----------------------------------------------------------------------
# Cache capability
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return self.age(now) <= ttl_seconds


class Cache(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, stored_at: float) -> None:
        ...

    @abstractmethod
    def clear(self, key: str) -> None:
        ...


class MemoryCache(Cache):
    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, value: Any, stored_at: float) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=stored_at)

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)


class FileCache(Cache):
    """JSON file cache. A cache that cannot be read or written is just a miss."""

    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read insights cache %s: %s", self.path, e)
            return {}

    def _write_all(self, data: Dict[str, Any]) -> None:
        tmp = f"{self.path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning("Could not write insights cache %s: %s", self.path, e)

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self._read_all().get(key)
        if not isinstance(raw, dict) or "stored_at" not in raw:
            return None
        try:
            return CacheEntry(value=raw.get("value"), stored_at=float(raw["stored_at"]))
        except (TypeError, ValueError):
            return None

    def set(self, key: str, value: Any, stored_at: float) -> None:
        data = self._read_all()
        data[key] = {"value": value, "stored_at": stored_at}
        self._write_all(data)

    def clear(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)


# ----------------------------------------------------------------------
# Render models
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class InsightCard:
    title: str
    url: str
    image: str
    date: str
    excerpt: str
    featured: bool


@dataclass(frozen=True)
class ErrorState:
    title: str = "Unable to Load Insights"
    message: str = "Please check your internet connection and try again."
    retry_action: str = "reload"


@dataclass(frozen=True)
class View:
    surface: Surface
    state: LoaderState
    cards: Tuple[InsightCard, ...] = ()
    empty_message: Optional[str] = None
    error: Optional[ErrorState] = None


def _newest_first_key(item: Dict[str, Any]) -> float:
    when = parse_date(item.get("date")) or parse_date(item.get("createdAt"))
    if when is None:
        return float("-inf")
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp()


class InsightsLoader:
    """Load, cache and render published insights"""

    def __init__(
        self,
        api_url: str,
        cache: Cache,
        *,
        fallback_path: Optional[str] = None,
        ttl_seconds: float = 300,
        refresh_interval_seconds: float = 600,
        timeout_seconds: float = 5.0,
        default_image: str = "/images/default-insight.jpg",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_url = api_url
        self.cache = cache
        self.fallback_path = fallback_path or None
        self.ttl_seconds = ttl_seconds
        self.refresh_interval_seconds = refresh_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.default_image = default_image
        self._transport = transport
        self._clock = clock

        self.state = LoaderState.IDLE
        self.insights: List[Dict[str, Any]] = []
        self.source: Optional[str] = None
        self.view: Optional[View] = None
        self.surface: Optional[Surface] = None
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight = False
        self._load_task: Optional["asyncio.Task[Any]"] = None

    @classmethod
    def from_settings(cls, settings: Settings, cache: Cache, **kwargs: Any) -> "InsightsLoader":
        return cls(
            settings.PUBLIC_INSIGHTS_URL,
            cache,
            fallback_path=settings.INSIGHTS_FALLBACK_PATH,
            ttl_seconds=settings.INSIGHTS_CACHE_TTL_SECONDS,
            refresh_interval_seconds=settings.INSIGHTS_REFRESH_INTERVAL_SECONDS,
            timeout_seconds=settings.INSIGHTS_FETCH_TIMEOUT_SECONDS,
            default_image=settings.DEFAULT_INSIGHT_IMAGE,
            **kwargs,
        )

    @property
    def is_loading(self) -> bool:
        return self._in_flight

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _fetch(self) -> List[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            r = await client.get(self.api_url, headers={"Accept": "application/json"})
            r.raise_for_status()
            data = r.json()
        if not isinstance(data, list):
            raise ValueError("insights API did not return a list")
        return data

    def _read_fallback(self) -> Optional[List[Dict[str, Any]]]:
        if not self.fallback_path:
            return None
        try:
            with open(self.fallback_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Bundled insights %s unavailable: %s", self.fallback_path, e)
            return None
        if not isinstance(data, list):
            logger.warning("Bundled insights %s is not a list", self.fallback_path)
            return None
        return data

    async def load(self) -> LoaderState:
        self._in_flight = True
        self._load_task = asyncio.current_task()
        self.state = LoaderState.LOADING
        try:
            return await self._load()
        except asyncio.CancelledError:
            logger.info("Insights load cancelled")
            self.state = LoaderState.IDLE
            raise
        finally:
            self._in_flight = False
            self._load_task = None

    async def _load(self) -> LoaderState:
        """Network first, then a fresh cache entry, then the bundled copy"""
        try:
            insights = await self._fetch()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to load insights from %s: %s", self.api_url, e)
        else:
            self.insights = insights
            self.source = "network"
            self.cache.set(CACHE_KEY, insights, stored_at=self._clock())
            self.state = LoaderState.LOADED
            logger.info("Loaded %d insights", len(insights))
            return self.state

        entry = self.cache.get(CACHE_KEY)
        if entry is not None and isinstance(entry.value, list) \
                and entry.is_fresh(self._clock(), self.ttl_seconds):
            self.insights = entry.value
            self.source = "cache"
            self.state = LoaderState.LOADED
            logger.info("Loaded %d insights from cache", len(self.insights))
            return self.state

        bundled = self._read_fallback()
        if bundled is not None:
            self.insights = bundled
            self.source = "fallback"
            self.cache.set(CACHE_KEY, bundled, stored_at=self._clock())
            self.state = LoaderState.LOADED
            logger.info("Loaded %d insights from bundled copy", len(self.insights))
            return self.state

        self.insights = []
        self.source = None
        self.state = LoaderState.FAILED
        return self.state

    async def init(self, surface: Surface, auto_refresh: bool = True) -> View:
        """Load and render; the rendering surface never sees an exception"""
        self.surface = surface
        try:
            await self.load()
        except Exception:
            logger.exception("Insights loader initialization failed")
            self.insights = []
            self.state = LoaderState.FAILED
        self.view = self.render(surface)
        if auto_refresh:
            self.start_auto_refresh(surface)
        return self.view

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _card(self, item: Dict[str, Any]) -> InsightCard:
        slug = item.get("slug") or ""
        return InsightCard(
            title=str(item.get("title") or "Untitled"),
            url=item.get("url") or f"/insight/{slug}",
            image=item.get("image") or self.default_image,
            date=format_display_date(item.get("date") or item.get("createdAt")),
            excerpt=truncate_text(item.get("excerpt") or DEFAULT_EXCERPT, EXCERPT_LIMIT),
            featured=bool(item.get("featured")),
        )

    def published(self) -> List[Dict[str, Any]]:
        visible = [
            i for i in self.insights
            if isinstance(i, dict) and i.get("status") == "published"
        ]
        return sorted(visible, key=_newest_first_key, reverse=True)

    def render(self, surface: Surface) -> View:
        if self.state == LoaderState.FAILED:
            return View(surface=surface, state=self.state, error=ErrorState())

        items = self.published()
        if surface == Surface.LANDING:
            # stable sort keeps newest-first order inside each group
            items = sorted(items, key=lambda i: not i.get("featured"))[:LANDING_LIMIT]

        if not items:
            return View(surface=surface, state=self.state, empty_message=EMPTY_MESSAGE)
        return View(
            surface=surface,
            state=self.state,
            cards=tuple(self._card(i) for i in items),
        )

    def find(self, slug: str) -> Optional[Dict[str, Any]]:
        for item in self.insights:
            if isinstance(item, dict) and item.get("slug") == slug:
                return item
        return None

    # ------------------------------------------------------------------
    # Auto-refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Reload and re-render; returns False when a load is already running"""
        if self._in_flight:
            logger.info("Insights refresh skipped: a load is already in flight")
            return False
        await self.load()
        self.view = self.render(self.surface or Surface.LISTING)
        return True

    async def _scheduled_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception as e:
            logger.warning("Background insights refresh failed: %s", e)

    def start_auto_refresh(self, surface: Surface) -> bool:
        if surface != Surface.LISTING:
            return False
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._scheduled_refresh,
            trigger=IntervalTrigger(seconds=self.refresh_interval_seconds),
            id="insights_refresh",
            name="Insights auto-refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Insights auto-refresh every %ss", self.refresh_interval_seconds)
        return True

    def stop_auto_refresh(self) -> None:
        """Stop the refresh job and cancel a load that is still running"""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        task = self._load_task
        if task is not None and not task.done():
            logger.info("Cancelling in-flight insights load")
            task.cancel()
