from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ad_shipper.db.base import SessionLocal, session_scope
from ad_shipper.db.enums import PipelineJobStatusEnum
from ad_shipper.db.models import PipelineJob
from ad_shipper.db.repositories.pipeline_jobs import PipelineJobsRepository
from ad_shipper.pipeline.deps import PipelineDeps
from ad_shipper.pipeline.row_pipeline import analyze_staged_video
from ad_shipper.services.copy_engine import CopyContext
from ad_shipper.services.notion_rows import NotionRowsClient

logger = logging.getLogger(__name__)


class JobRunner:
    """
    Queue-driven copy pipeline over workspace rows.

    Rows that have an asset link but no primary text become queued jobs; each job is
    analyzed, gets reviewed copy, and the copy is written back to the row. Failures
    take the bounded retry edge back to `queued`.
    """

    def __init__(
        self,
        deps: PipelineDeps,
        notion: NotionRowsClient,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.deps = deps
        self.notion = notion
        self._session_factory = session_factory

    async def _jobs(self, fn: Callable[[PipelineJobsRepository], Any]) -> Any:
        def _run() -> Any:
            with session_scope(self._session_factory) as session:
                return fn(PipelineJobsRepository(session))

        return await asyncio.to_thread(_run)

    async def _transition(self, job_id: str, status: PipelineJobStatusEnum, **fields: Any) -> PipelineJob:
        return await self._jobs(lambda repo: repo.transition(job_id, status, **fields))

    async def discover_jobs(self) -> list[str]:
        rows = await self.notion.fetch_candidate_rows()
        created: list[str] = []
        for row in rows:
            if not row.asset_link:
                continue
            if await self._jobs(lambda repo: repo.exists_for_page(row.page_id)):
                continue
            job = await self._jobs(
                lambda repo: repo.create(
                    source_page_id=row.page_id,
                    deliverable_name=row.deliverable_name or row.page_id,
                    asset_link=row.asset_link,
                    angle=row.angle,
                    format=row.format,
                    messenger=row.messenger,
                    media_type=row.media_type,
                )
            )
            created.append(job.id)
        logger.info("job_runner.discovered", extra={"candidates": len(rows), "created": len(created)})
        return created

    async def process_job(self, job_id: str) -> PipelineJob:
        job: Optional[PipelineJob] = await self._jobs(lambda repo: repo.get(job_id))
        if job is None:
            raise KeyError(f"Pipeline job not found: {job_id}")

        media_type = (job.media_type or "video").lower()
        if media_type not in self.deps.settings.supported_media_types:
            logger.info("job_runner.skipped", extra={"job_id": job_id, "media_type": media_type})
            return await self._jobs(
                lambda repo: repo.mark_skipped(job_id, reason=f"Unsupported media type: {media_type}")
            )

        try:
            await self._transition(job_id, PipelineJobStatusEnum.analyzing)
            assets = await self.deps.assets.resolve(job.source_page_id, job.asset_link)
            analysis, cache_hit = await analyze_staged_video(self.deps, job.source_page_id, assets.primary)

            await self._transition(
                job_id,
                PipelineJobStatusEnum.writing_copy,
                staged_path=assets.primary.path,
                analysis_cached=cache_hit,
            )
            copy = await self.deps.copy.generate(
                CopyContext(
                    analysis=analysis,
                    angle=job.angle or "",
                    format=job.format or "",
                    messenger=job.messenger or "",
                    deliverable_name=job.deliverable_name,
                )
            )
            await self._transition(
                job_id,
                PipelineJobStatusEnum.reviewing_copy,
                review=copy.review_log.model_dump(mode="json", by_alias=True),
                copy_revised=copy.review_log.revised,
            )

            await self._transition(job_id, PipelineJobStatusEnum.updating_workspace)
            await self.notion.update_copy(job.source_page_id, primary_text=copy.primary_text, headline=copy.headline)

            completed = await self._jobs(
                lambda repo: repo.mark_completed(job_id, primary_text=copy.primary_text, headline=copy.headline)
            )
            logger.info("job_runner.completed", extra={"job_id": job_id, "duration_ms": completed.duration_ms})
            return completed
        except Exception as exc:  # noqa: BLE001
            logger.exception("job_runner.failed", extra={"job_id": job_id})
            return await self._jobs(
                lambda repo: repo.mark_failed(
                    job_id,
                    error=str(exc) or exc.__class__.__name__,
                    max_retries=self.deps.settings.PIPELINE_MAX_RETRIES,
                )
            )

    async def run_once(self, limit: Optional[int] = None) -> dict[str, int]:
        batch_size = limit or self.deps.settings.PIPELINE_MAX_CONCURRENCY * 4
        queued: list[PipelineJob] = await self._jobs(
            lambda repo: repo.list_by_status(PipelineJobStatusEnum.queued, limit=batch_size)
        )
        semaphore = asyncio.Semaphore(self.deps.settings.PIPELINE_MAX_CONCURRENCY)

        async def _run(job_id: str) -> PipelineJob:
            async with semaphore:
                return await self.process_job(job_id)

        finished = await asyncio.gather(*(_run(job.id) for job in queued))
        summary = {status.value: 0 for status in PipelineJobStatusEnum}
        for job in finished:
            summary[job.status] += 1
        summary["processed"] = len(finished)
        logger.info("job_runner.run_once", extra=summary)
        return summary

    async def cleanup_stale_jobs(self) -> int:
        """Fail (and possibly requeue) jobs stuck mid-pipeline past the stale cutoff."""
        stale_minutes = self.deps.settings.PIPELINE_STALE_JOB_MINUTES
        stale: list[PipelineJob] = await self._jobs(
            lambda repo: repo.list_stale(older_than_minutes=stale_minutes)
        )
        for job in stale:
            await self._jobs(
                lambda repo, job_id=job.id: repo.mark_failed(
                    job_id,
                    error=f"Job stalled for more than {stale_minutes} minutes",
                    max_retries=self.deps.settings.PIPELINE_MAX_RETRIES,
                )
            )
        if stale:
            logger.warning("job_runner.stale_jobs_reset", extra={"count": len(stale)})
        return len(stale)
