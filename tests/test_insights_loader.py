import asyncio
import json

import httpx
import pytest

from app.config import Settings
from app.services.insights_loader import (
    CACHE_KEY,
    DEFAULT_EXCERPT,
    EMPTY_MESSAGE,
    EXCERPT_LIMIT,
    FileCache,
    InsightsLoader,
    LoaderState,
    MemoryCache,
    Surface,
)

API_URL = "https://site.example.com/api/get-insights"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _item(slug, date, status="published", featured=False, **extra):
    item = {
        "id": slug,
        "title": slug.replace("-", " ").title(),
        "excerpt": f"About {slug}",
        "slug": slug,
        "date": date,
        "featured": featured,
        "status": status,
        "url": f"/insight/{slug}",
    }
    if status is None:
        del item["status"]
    item.update(extra)
    return item


ITEMS = [
    _item("p1", "2024-05-01"),
    _item("p2", "2024-04-01", featured=True),
    _item("p3", "2024-03-01"),
    _item("p4", "2024-02-01", featured=True),
    _item("d1", "2024-06-01", status="draft", featured=True),
    _item("no-status", "2024-07-01", status=None),
]


def _ok(items):
    return httpx.MockTransport(lambda request: httpx.Response(200, json=items))


def _down():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)
    return httpx.MockTransport(handler)


def _loader(transport, cache=None, clock=None, **kwargs):
    return InsightsLoader(
        API_URL,
        cache if cache is not None else MemoryCache(),
        transport=transport,
        clock=clock or FakeClock(),
        **kwargs,
    )


# --- loading ---

@pytest.mark.asyncio
async def test_load_from_network_writes_cache():
    clock = FakeClock()
    cache = MemoryCache()
    loader = _loader(_ok(ITEMS), cache=cache, clock=clock)

    assert loader.state == LoaderState.IDLE
    assert await loader.load() == LoaderState.LOADED

    assert loader.source == "network"
    assert loader.insights == ITEMS
    entry = cache.get(CACHE_KEY)
    assert entry.value == ITEMS
    assert entry.stored_at == clock.now


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "age, expected",
    [(0, LoaderState.LOADED), (300, LoaderState.LOADED), (360, LoaderState.FAILED)],
)
async def test_cache_fallback_respects_ttl(age, expected):
    clock = FakeClock()
    cache = MemoryCache()
    cache.set(CACHE_KEY, ITEMS, stored_at=clock.now - age)
    loader = _loader(_down(), cache=cache, clock=clock, ttl_seconds=300)

    assert await loader.load() == expected
    if expected == LoaderState.LOADED:
        assert loader.source == "cache"
        assert loader.insights == ITEMS
    else:
        assert loader.insights == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json={"not": "a list"}),
        httpx.Response(200, text="<html>maintenance</html>"),
    ],
)
async def test_bad_responses_fall_back_to_cache(response):
    clock = FakeClock()
    cache = MemoryCache()
    cache.set(CACHE_KEY, ITEMS[:1], stored_at=clock.now - 10)
    loader = _loader(httpx.MockTransport(lambda request: response), cache=cache, clock=clock)

    assert await loader.load() == LoaderState.LOADED
    assert loader.source == "cache"


@pytest.mark.asyncio
async def test_bundled_copy_used_when_network_and_cache_fail(tmp_path):
    bundled = tmp_path / "insights.json"
    bundled.write_text(json.dumps(ITEMS[:2]), encoding="utf-8")
    cache = MemoryCache()
    loader = _loader(_down(), cache=cache, fallback_path=str(bundled))

    assert await loader.load() == LoaderState.LOADED
    assert loader.source == "fallback"
    assert cache.get(CACHE_KEY).value == ITEMS[:2]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["{broken", '{"a": 1}'])
async def test_unusable_bundled_copy_fails(tmp_path, content):
    bundled = tmp_path / "insights.json"
    bundled.write_text(content, encoding="utf-8")
    loader = _loader(_down(), fallback_path=str(bundled))

    assert await loader.load() == LoaderState.FAILED


@pytest.mark.asyncio
async def test_init_never_raises():
    class BrokenCache(MemoryCache):
        def get(self, key):
            raise RuntimeError("storage blocked")

    loader = _loader(_down(), cache=BrokenCache())
    view = await loader.init(Surface.LISTING, auto_refresh=False)

    assert view.state == LoaderState.FAILED
    assert view.error.retry_action == "reload"
    assert view.cards == ()


# --- rendering ---

@pytest.mark.asyncio
async def test_landing_shows_featured_first_and_at_most_three():
    loader = _loader(_ok(ITEMS))
    view = await loader.init(Surface.LANDING)

    assert [c.url for c in view.cards] == ["/insight/p2", "/insight/p4", "/insight/p1"]
    assert loader.scheduler is None


@pytest.mark.asyncio
async def test_listing_shows_every_published_newest_first():
    loader = _loader(_ok(ITEMS))
    await loader.load()
    view = loader.render(Surface.LISTING)

    assert [c.url for c in view.cards] == [
        "/insight/p1", "/insight/p2", "/insight/p3", "/insight/p4"
    ]
    assert view.empty_message is None
    assert view.error is None


@pytest.mark.asyncio
async def test_render_is_idempotent():
    loader = _loader(_ok(ITEMS))
    await loader.load()
    assert loader.render(Surface.LISTING) == loader.render(Surface.LISTING)
    assert loader.render(Surface.LANDING) == loader.render(Surface.LANDING)


@pytest.mark.asyncio
async def test_card_formatting():
    long_excerpt = "x" * 200
    item = {"title": "Tax", "slug": "tax", "date": "2024-01-05", "excerpt": long_excerpt, "status": "published"}
    loader = _loader(_ok([item]), default_image="/images/default.jpg")
    await loader.load()

    (card,) = loader.render(Surface.LISTING).cards
    assert card.url == "/insight/tax"
    assert card.image == "/images/default.jpg"
    assert card.date == "January 5, 2024"
    assert card.excerpt == "x" * EXCERPT_LIMIT + "..."
    assert card.featured is False


@pytest.mark.asyncio
async def test_card_without_excerpt_gets_default_text():
    item = {"title": "Tax", "slug": "tax", "date": "2024-01-05", "excerpt": "", "status": "published"}
    loader = _loader(_ok([item]))
    await loader.load()

    (card,) = loader.render(Surface.LISTING).cards
    assert card.excerpt == DEFAULT_EXCERPT


@pytest.mark.asyncio
async def test_bundled_copy_hides_records_without_status(tmp_path):
    """The bundled copy is the raw stored file, drafts included"""
    bundled = tmp_path / "insights.json"
    bundled.write_text(json.dumps([
        {"id": "a", "title": "Unfinished", "slug": "unfinished", "date": "2024-09-01"},
        _item("p1", "2024-05-01"),
    ]), encoding="utf-8")
    loader = _loader(_down(), fallback_path=str(bundled))

    view = await loader.init(Surface.LISTING, auto_refresh=False)

    assert loader.source == "fallback"
    assert [c.title for c in view.cards] == ["P1"]


@pytest.mark.asyncio
async def test_empty_collection_renders_empty_state():
    loader = _loader(_ok([_item("d1", "2024-01-01", status="draft")]))
    view = await loader.init(Surface.LANDING)

    assert view.state == LoaderState.LOADED
    assert view.cards == ()
    assert view.empty_message == EMPTY_MESSAGE


@pytest.mark.asyncio
async def test_find_by_slug():
    loader = _loader(_ok(ITEMS))
    await loader.load()
    assert loader.find("p3")["id"] == "p3"
    assert loader.find("nope") is None


# --- refresh ---

@pytest.mark.asyncio
async def test_refresh_is_skipped_while_loading():
    release = asyncio.Event()

    async def slow(request):
        await release.wait()
        return httpx.Response(200, json=ITEMS)

    loader = _loader(httpx.MockTransport(slow))
    first = asyncio.create_task(loader.load())
    await asyncio.sleep(0)

    assert loader.is_loading
    assert await loader.refresh() is False

    release.set()
    assert await first == LoaderState.LOADED
    assert not loader.is_loading
    assert await loader.refresh() is True
    assert loader.view.state == LoaderState.LOADED


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_load():
    release = asyncio.Event()

    async def slow(request):
        await release.wait()
        return httpx.Response(200, json=ITEMS)

    cache = MemoryCache()
    loader = _loader(httpx.MockTransport(slow), cache=cache)
    assert loader.start_auto_refresh(Surface.LISTING) is True
    pending = asyncio.create_task(loader.load())
    await asyncio.sleep(0)
    assert loader.is_loading

    loader.stop_auto_refresh()

    with pytest.raises(asyncio.CancelledError):
        await pending
    assert not loader.is_loading
    assert loader.state == LoaderState.IDLE
    assert loader.insights == []
    assert cache.get(CACHE_KEY) is None
    assert loader.scheduler is None


@pytest.mark.asyncio
async def test_auto_refresh_only_on_listing():
    loader = _loader(_ok(ITEMS), refresh_interval_seconds=600)

    assert loader.start_auto_refresh(Surface.LANDING) is False
    assert loader.scheduler is None

    assert loader.start_auto_refresh(Surface.LISTING) is True
    job = loader.scheduler.get_job("insights_refresh")
    assert job is not None
    assert job.max_instances == 1
    assert job.trigger.interval.total_seconds() == 600

    loader.stop_auto_refresh()
    assert loader.scheduler is None


@pytest.mark.asyncio
async def test_listing_init_starts_auto_refresh():
    loader = _loader(_ok(ITEMS))
    try:
        await loader.init(Surface.LISTING)
        assert loader.scheduler is not None and loader.scheduler.running
    finally:
        loader.stop_auto_refresh()


# --- caches ---

def test_file_cache_round_trip(tmp_path):
    path = str(tmp_path / "cache.json")
    FileCache(path).set(CACHE_KEY, ITEMS[:1], stored_at=123.0)

    entry = FileCache(path).get(CACHE_KEY)
    assert entry.value == ITEMS[:1]
    assert entry.stored_at == 123.0

    FileCache(path).clear(CACHE_KEY)
    assert FileCache(path).get(CACHE_KEY) is None


def test_file_cache_corrupt_file_is_a_miss(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{nope", encoding="utf-8")
    assert FileCache(str(path)).get(CACHE_KEY) is None


def test_file_cache_unwritable_location_does_not_raise(tmp_path):
    cache = FileCache(str(tmp_path / "missing-dir" / "cache.json"))
    cache.set(CACHE_KEY, [], stored_at=1.0)
    assert cache.get(CACHE_KEY) is None


def test_from_settings():
    settings = Settings(
        PUBLIC_INSIGHTS_URL="https://firm.example.com/api/get-insights",
        INSIGHTS_CACHE_TTL_SECONDS=120,
        INSIGHTS_REFRESH_INTERVAL_SECONDS=60,
    )
    loader = InsightsLoader.from_settings(settings, MemoryCache())
    assert loader.api_url == "https://firm.example.com/api/get-insights"
    assert loader.ttl_seconds == 120
    assert loader.refresh_interval_seconds == 60
