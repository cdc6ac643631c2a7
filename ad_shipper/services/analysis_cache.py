from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ad_shipper.config import settings
from ad_shipper.db.base import SessionLocal, session_scope
from ad_shipper.db.repositories.analysis_cache import AnalysisCacheRepository

logger = logging.getLogger(__name__)


def cache_key_for(staged_path: str) -> str:
    return staged_path.replace("/", "__")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CachedAnalysis:
    cache_key: str
    analysis: dict[str, Any]
    staged_path: str
    row_id: Optional[str]
    hit_count: int
    expires_at: datetime
    created_at: datetime


class AnalysisCache:
    """
    TTL cache of video analyses keyed by staged path.

    The cache is an optimisation: read and write failures are logged and treated as a
    miss, never raised to the pipeline.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._session_factory = session_factory
        self._clock = clock

    @classmethod
    def from_settings(cls) -> "AnalysisCache":
        return cls(ttl_seconds=settings.ANALYSIS_CACHE_TTL_SECONDS)

    async def get(self, key: str) -> Optional[CachedAnalysis]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("analysis_cache.read_failed", extra={"cache_key": key, "error": str(exc)})
            return None

    async def put(
        self,
        key: str,
        payload: dict[str, Any],
        *,
        staged_path: str,
        row_id: Optional[str] = None,
    ) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, payload, staged_path, row_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("analysis_cache.write_failed", extra={"cache_key": key, "error": str(exc)})

    async def clear_expired(self, limit: int = 500) -> int:
        try:
            removed = await asyncio.to_thread(self._clear_expired_sync, limit)
        except Exception as exc:  # noqa: BLE001
            logger.warning("analysis_cache.sweep_failed", extra={"error": str(exc)})
            return 0
        if removed:
            logger.info("analysis_cache.swept", extra={"removed": removed})
        return removed

    def _get_sync(self, key: str) -> Optional[CachedAnalysis]:
        with session_scope(self._session_factory) as session:
            repo = AnalysisCacheRepository(session)
            entry = repo.get(key)
            if entry is None:
                return None
            now = self._clock()
            if _as_utc(entry.expires_at) <= now:
                try:
                    repo.delete_key(key)
                except Exception as exc:  # noqa: BLE001
                    session.rollback()
                    logger.warning("analysis_cache.expired_delete_failed", extra={"cache_key": key, "error": str(exc)})
                logger.info("analysis_cache.expired", extra={"cache_key": key})
                return None

            hit_count = entry.hit_count
            cached = dict(
                cache_key=entry.cache_key,
                analysis=dict(entry.analysis or {}),
                staged_path=entry.staged_path,
                row_id=entry.row_id,
                expires_at=_as_utc(entry.expires_at),
                created_at=_as_utc(entry.created_at),
            )
            try:
                repo.increment_hit(key)
                hit_count += 1
            except Exception as exc:  # noqa: BLE001
                session.rollback()
                logger.warning("analysis_cache.hit_update_failed", extra={"cache_key": key, "error": str(exc)})
            logger.info("analysis_cache.hit", extra={"cache_key": key, "hit_count": hit_count})
            return CachedAnalysis(hit_count=hit_count, **cached)

    def _put_sync(self, key: str, payload: dict[str, Any], staged_path: str, row_id: Optional[str]) -> None:
        expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
        with session_scope(self._session_factory) as session:
            AnalysisCacheRepository(session).upsert(
                cache_key=key,
                analysis=payload,
                staged_path=staged_path,
                row_id=row_id,
                expires_at=expires_at,
            )
        logger.info("analysis_cache.stored", extra={"cache_key": key, "ttl_seconds": self.ttl_seconds})

    def _clear_expired_sync(self, limit: int) -> int:
        with session_scope(self._session_factory) as session:
            return AnalysisCacheRepository(session).delete_expired(now=self._clock(), limit=limit)
