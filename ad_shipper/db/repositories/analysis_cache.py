from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ad_shipper.db.models import AnalysisCacheEntry
from ad_shipper.db.repositories.base import Repository


class AnalysisCacheRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, cache_key: str) -> Optional[AnalysisCacheEntry]:
        return self.session.get(AnalysisCacheEntry, cache_key)

    def upsert(
        self,
        *,
        cache_key: str,
        analysis: dict[str, Any],
        staged_path: str,
        row_id: Optional[str],
        expires_at: datetime,
    ) -> AnalysisCacheEntry:
        now = datetime.now(timezone.utc)
        entry = self.get(cache_key)
        if entry is None:
            entry = AnalysisCacheEntry(cache_key=cache_key, hit_count=0, created_at=now)
        entry.analysis = analysis
        entry.staged_path = staged_path
        entry.row_id = row_id
        entry.expires_at = expires_at
        entry.updated_at = now
        return self.save(entry)

    def increment_hit(self, cache_key: str) -> None:
        stmt = (
            update(AnalysisCacheEntry)
            .where(AnalysisCacheEntry.cache_key == cache_key)
            .values(
                hit_count=AnalysisCacheEntry.hit_count + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.session.execute(stmt)
        self.session.commit()

    def delete_key(self, cache_key: str) -> int:
        result = self.session.execute(delete(AnalysisCacheEntry).where(AnalysisCacheEntry.cache_key == cache_key))
        self.session.commit()
        return result.rowcount or 0

    def delete_expired(self, *, now: datetime, limit: int = 500) -> int:
        keys = list(
            self.session.scalars(
                select(AnalysisCacheEntry.cache_key).where(AnalysisCacheEntry.expires_at <= now).limit(limit)
            ).all()
        )
        if not keys:
            return 0
        result = self.session.execute(delete(AnalysisCacheEntry).where(AnalysisCacheEntry.cache_key.in_(keys)))
        self.session.commit()
        return result.rowcount or 0
