from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ad_shipper.db.enums import PipelineJobStatusEnum
from ad_shipper.db.models import PipelineJob
from ad_shipper.db.repositories.base import Repository


# Forward-only progression. `failed` and `skipped` branch off it; the only way back
# is the failed -> queued retry edge, bounded by max_retries.
_PROGRESSION = [
    PipelineJobStatusEnum.queued,
    PipelineJobStatusEnum.analyzing,
    PipelineJobStatusEnum.writing_copy,
    PipelineJobStatusEnum.reviewing_copy,
    PipelineJobStatusEnum.updating_workspace,
    PipelineJobStatusEnum.completed,
]
_TERMINAL = {
    PipelineJobStatusEnum.completed,
    PipelineJobStatusEnum.failed,
    PipelineJobStatusEnum.skipped,
}
ACTIVE_STATUSES = [status.value for status in _PROGRESSION if status not in _TERMINAL]


class InvalidJobTransition(RuntimeError):
    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Illegal pipeline job transition {current} -> {target} (job {job_id}).")
        self.job_id = job_id
        self.current = current
        self.target = target


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_transition_allowed(current: str, target: str) -> bool:
    current_status = PipelineJobStatusEnum(current)
    target_status = PipelineJobStatusEnum(target)
    if current_status in _TERMINAL:
        return False
    if target_status == PipelineJobStatusEnum.failed:
        return True
    if target_status == PipelineJobStatusEnum.skipped:
        return current_status in (PipelineJobStatusEnum.queued, PipelineJobStatusEnum.analyzing)
    return _PROGRESSION.index(target_status) > _PROGRESSION.index(current_status)


class PipelineJobsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, job_id: str) -> Optional[PipelineJob]:
        return self.session.get(PipelineJob, job_id)

    def create(
        self,
        *,
        source_page_id: str,
        deliverable_name: str,
        asset_link: str,
        angle: Optional[str] = None,
        format: Optional[str] = None,
        messenger: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> PipelineJob:
        job = PipelineJob(
            source_page_id=source_page_id,
            deliverable_name=deliverable_name,
            asset_link=asset_link,
            angle=angle,
            format=format,
            messenger=messenger,
            media_type=media_type,
            status=PipelineJobStatusEnum.queued.value,
            retry_count=0,
            review={},
        )
        return self.save(job)

    def exists_for_page(self, source_page_id: str) -> bool:
        """True when the page already has a job that is queued, running or completed."""
        stmt = (
            select(PipelineJob.id)
            .where(PipelineJob.source_page_id == source_page_id)
            .where(
                PipelineJob.status.not_in(
                    [PipelineJobStatusEnum.failed.value, PipelineJobStatusEnum.skipped.value]
                )
            )
            .limit(1)
        )
        return self.session.scalars(stmt).first() is not None

    def counts_by_status(self) -> dict[str, int]:
        stmt = select(PipelineJob.status, func.count()).group_by(PipelineJob.status)
        counts = {status.value: 0 for status in PipelineJobStatusEnum}
        for status, count in self.session.execute(stmt).all():
            counts[status] = int(count)
        counts["total"] = sum(counts.values())
        return counts

    def list_by_status(self, status: PipelineJobStatusEnum, *, limit: int = 50) -> list[PipelineJob]:
        stmt = (
            select(PipelineJob)
            .where(PipelineJob.status == status.value)
            .order_by(PipelineJob.created_at.asc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def list_stale(self, *, older_than_minutes: int, now: Optional[datetime] = None) -> list[PipelineJob]:
        """Jobs stuck mid-pipeline (not queued, not terminal) for longer than the cutoff."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=older_than_minutes)
        in_flight = [status for status in ACTIVE_STATUSES if status != PipelineJobStatusEnum.queued.value]
        stmt = select(PipelineJob).where(PipelineJob.status.in_(in_flight))
        return [job for job in self.session.scalars(stmt).all() if _as_utc(job.updated_at) < cutoff]

    def transition(self, job_id: str, target: PipelineJobStatusEnum, **fields: Any) -> PipelineJob:
        job = self._require(job_id)
        if not is_transition_allowed(job.status, target.value):
            raise InvalidJobTransition(job.id, job.status, target.value)
        now = datetime.now(timezone.utc)
        job.status = target.value
        if target == PipelineJobStatusEnum.analyzing and job.started_at is None:
            job.started_at = now
        if target in _TERMINAL:
            job.completed_at = now
            started = _as_utc(job.started_at)
            if started is not None:
                job.duration_ms = int((now - started).total_seconds() * 1000)
        for key, value in fields.items():
            setattr(job, key, value)
        return self.save(job)

    def mark_completed(self, job_id: str, **fields: Any) -> PipelineJob:
        return self.transition(job_id, PipelineJobStatusEnum.completed, last_error=None, **fields)

    def mark_skipped(self, job_id: str, *, reason: str) -> PipelineJob:
        return self.transition(job_id, PipelineJobStatusEnum.skipped, last_error=reason)

    def mark_failed(self, job_id: str, *, error: str, max_retries: int) -> PipelineJob:
        """
        Record a failure and take the retry edge when budget remains.

        retry_count is incremented on every failure; the job goes back to `queued` while the
        new count is below max_retries, otherwise it stays terminally `failed`.
        """
        job = self.transition(job_id, PipelineJobStatusEnum.failed, last_error=error)
        job.retry_count += 1
        if job.retry_count < max_retries:
            job.status = PipelineJobStatusEnum.queued.value
            job.completed_at = None
            job.started_at = None
            job.duration_ms = None
        return self.save(job)

    def _require(self, job_id: str) -> PipelineJob:
        job = self.get(job_id)
        if job is None:
            raise KeyError(f"Pipeline job not found: {job_id}")
        return job
