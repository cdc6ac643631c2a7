from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ad_shipper.db.base import Base
from ad_shipper.db.enums import PipelineJobStatusEnum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class PipelineJob(Base):
    __tablename__ = "pipeline_jobs"
    __table_args__ = (
        sa.Index("idx_pipeline_jobs_status", "status"),
        sa.Index("idx_pipeline_jobs_source_page", "source_page_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PipelineJobStatusEnum.queued.value
    )
    source_page_id: Mapped[str] = mapped_column(Text, nullable=False)
    deliverable_name: Mapped[str] = mapped_column(Text, nullable=False)
    asset_link: Mapped[str] = mapped_column(Text, nullable=False)
    angle: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    format: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    messenger: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    copy_revised: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    analysis_cached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    staged_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    primary_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    headline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False, default=dict)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class AnalysisCacheEntry(Base):
    __tablename__ = "video_analysis_cache"
    __table_args__ = (sa.Index("idx_video_analysis_cache_expires_at", "expires_at"),)

    cache_key: Mapped[str] = mapped_column(Text, primary_key=True)
    row_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    staged_path: Mapped[str] = mapped_column(Text, nullable=False)
    analysis: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
