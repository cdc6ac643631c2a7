import asyncio
from datetime import datetime, timedelta, timezone

from ad_shipper.db.models import AnalysisCacheEntry
from ad_shipper.services.analysis_cache import AnalysisCache, cache_key_for


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def test_cache_key_replaces_path_separators():
    assert cache_key_for("dev/batch-ship/row-1-4x5/video.mp4") == "dev__batch-ship__row-1-4x5__video.mp4"


def test_cache_hit_within_ttl_then_miss_after_expiry(session_factory):
    clock = _Clock()
    cache = AnalysisCache(ttl_seconds=60, session_factory=session_factory, clock=clock)
    key = cache_key_for("dev/batch-ship/row-1/video.mp4")

    asyncio.run(cache.put(key, {"emotionalTone": "warm"}, staged_path="dev/batch-ship/row-1/video.mp4", row_id="row-1"))

    clock.advance(59)
    first = asyncio.run(cache.get(key))
    assert first is not None
    assert first.analysis == {"emotionalTone": "warm"}
    assert first.hit_count == 1

    second = asyncio.run(cache.get(key))
    assert second.hit_count == 2

    clock.advance(2)
    assert asyncio.run(cache.get(key)) is None

    with session_factory() as session:
        assert session.get(AnalysisCacheEntry, key) is None


def test_cache_put_overwrites_existing_entry(session_factory):
    clock = _Clock()
    cache = AnalysisCache(ttl_seconds=60, session_factory=session_factory, clock=clock)

    asyncio.run(cache.put("k", {"v": 1}, staged_path="p"))
    asyncio.run(cache.put("k", {"v": 2}, staged_path="p"))

    assert asyncio.run(cache.get("k")).analysis == {"v": 2}


def test_cache_miss_for_unknown_key(session_factory):
    cache = AnalysisCache(ttl_seconds=60, session_factory=session_factory, clock=_Clock())
    assert asyncio.run(cache.get("missing")) is None


def test_cache_failures_are_swallowed():
    def _broken_session():
        raise RuntimeError("database unavailable")

    cache = AnalysisCache(ttl_seconds=60, session_factory=_broken_session, clock=_Clock())

    asyncio.run(cache.put("k", {"v": 1}, staged_path="p"))
    assert asyncio.run(cache.get("k")) is None
    assert asyncio.run(cache.clear_expired()) == 0


def test_clear_expired_removes_only_expired_entries(session_factory):
    clock = _Clock()
    short = AnalysisCache(ttl_seconds=10, session_factory=session_factory, clock=clock)
    long = AnalysisCache(ttl_seconds=3600, session_factory=session_factory, clock=clock)
    asyncio.run(short.put("short", {"v": 1}, staged_path="a"))
    asyncio.run(long.put("long", {"v": 2}, staged_path="b"))

    clock.advance(30)

    assert asyncio.run(long.clear_expired()) == 1
    assert asyncio.run(long.get("long")) is not None
