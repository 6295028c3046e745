"""Durable ingestion job queue backed by the ``ingestion_jobs`` table."""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitebot.config import settings
from sitebot.database import async_session
from sitebot.enums import JobPriority, JobStatus
from sitebot.models import IngestionJob
from sitebot.utils import truncate_error, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def calculate_backoff(attempts: int) -> timedelta:
    """
    Calculate exponential backoff delay.

    Attempts -> Delay: 1->2min, 2->4min, 3->8min
    """
    return timedelta(minutes=2**attempts)


class JobQueueStore:
    """Enqueue, claim and settle ingestion jobs.

    ``claim_next`` is the only mutual-exclusion point: a job moves from pending
    to processing through a conditional update, so two processors racing for
    the same row cannot both win.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
    ):
        self.session_factory = session_factory or async_session
        self.clock = clock
        self.max_attempts = max_attempts or settings.ingest_max_attempts

    async def enqueue(
        self,
        website_id: uuid.UUID,
        url: str,
        priority: str | int | JobPriority = JobPriority.NORMAL,
    ) -> IngestionJob:
        """Queue a website for ingestion. Returns the already-active job if there is one."""
        priority = JobPriority.parse(priority)
        async with self.session_factory() as db:
            existing = await self._active_job(db, website_id)
            if existing is not None:
                logger.info(f"Website {website_id} already has {existing.status} job {existing.id}")
                return existing

            now = self.clock()
            job = IngestionJob(
                website_id=website_id,
                url=url,
                priority=int(priority),
                status=JobStatus.PENDING,
                attempts=0,
                max_attempts=self.max_attempts,
                next_retry_at=now,
                created_at=now,
                updated_at=now,
            )
            db.add(job)
            await db.commit()

        logger.info(f"Added website {website_id} to ingestion queue as job {job.id} ({priority.name})")
        return job

    async def _active_job(self, db: AsyncSession, website_id: uuid.UUID) -> IngestionJob | None:
        result = await db.execute(
            select(IngestionJob)
            .where(
                IngestionJob.website_id == website_id,
                IngestionJob.status.in_(ACTIVE_STATUSES),
            )
            .order_by(IngestionJob.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def active_job(self, website_id: uuid.UUID) -> IngestionJob | None:
        """The pending or processing job for a website, if any."""
        async with self.session_factory() as db:
            return await self._active_job(db, website_id)

    async def get(self, job_id: uuid.UUID) -> IngestionJob | None:
        async with self.session_factory() as db:
            return await db.get(IngestionJob, job_id)

    async def claim_next(self) -> IngestionJob | None:
        """Atomically claim the next eligible job, respecting next_retry_at backoff.

        Eligible: pending, retry time passed, and no other job for the same
        website is processing. Highest priority first, then oldest.
        """
        now = self.clock()
        async with self.session_factory() as db:
            job_id = await self._next_candidate(db, now)
            if job_id is None:
                return None
            if not await self._try_claim(db, job_id, now):
                return None
            return await db.get(IngestionJob, job_id, populate_existing=True)

    async def _next_candidate(self, db: AsyncSession, now: datetime) -> uuid.UUID | None:
        busy_websites = select(IngestionJob.website_id).where(
            IngestionJob.status == JobStatus.PROCESSING
        )
        candidate = (
            select(IngestionJob.id)
            .where(
                IngestionJob.status == JobStatus.PENDING,
                IngestionJob.attempts < IngestionJob.max_attempts,
                IngestionJob.next_retry_at <= now,
                IngestionJob.website_id.not_in(busy_websites),
            )
            .order_by(IngestionJob.priority.desc(), IngestionJob.created_at.asc())
            .limit(1)
            # PostgreSQL: skip rows another processor is claiming. Ignored by SQLite.
            .with_for_update(skip_locked=True)
        )
        return (await db.execute(candidate)).scalar_one_or_none()

    async def _try_claim(self, db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
        """Flip one job from pending to processing. False if someone else got it first."""
        try:
            result = await db.execute(
                update(IngestionJob)
                .where(
                    IngestionJob.id == job_id,
                    IngestionJob.status == JobStatus.PENDING,
                )
                .values(status=JobStatus.PROCESSING, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                logger.debug(f"Lost claim race for job {job_id}")
                return False
            await db.commit()
        except IntegrityError:
            # Another job for this website was claimed concurrently
            await db.rollback()
            logger.debug(f"Job {job_id} skipped: website already has a processing job")
            return False
        return True

    async def mark_completed(self, job_id: uuid.UUID) -> None:
        """Mark a processing job as completed."""
        now = self.clock()
        async with self.session_factory() as db:
            result = await db.execute(
                update(IngestionJob)
                .where(
                    IngestionJob.id == job_id,
                    IngestionJob.status == JobStatus.PROCESSING,
                )
                .values(status=JobStatus.COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if result.rowcount != 1:
            logger.warning(f"Job {job_id} was not processing; completion ignored")

    def _record_failure(self, job: IngestionJob, error_message: str, now: datetime) -> None:
        job.attempts = min(job.attempts + 1, job.max_attempts)
        job.error_message = truncate_error(error_message)
        job.updated_at = now

        if job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED
            job.completed_at = now
            logger.error(f"Job {job.id} permanently failed after {job.attempts} attempts")
        else:
            backoff = calculate_backoff(job.attempts)
            job.status = JobStatus.PENDING
            job.next_retry_at = now + backoff
            logger.info(f"Job {job.id} will retry in {int(backoff.total_seconds())}s")

    async def mark_failed_with_backoff(
        self, job_id: uuid.UUID, error_message: str
    ) -> IngestionJob | None:
        """Record a failed attempt: retry later with backoff, or fail permanently.

        Returns the updated job, or None if it does not exist. Jobs that are not
        processing (already settled) are returned unchanged.
        """
        now = self.clock()
        async with self.session_factory() as db:
            job = await db.get(IngestionJob, job_id, with_for_update=True)
            if job is None:
                logger.warning(f"Job {job_id} not found; failure not recorded")
                return None
            if job.status != JobStatus.PROCESSING:
                logger.warning(f"Job {job_id} is {job.status}; failure not recorded")
                return job

            self._record_failure(job, error_message, now)
            await db.commit()
            return job

    async def reset(self, job_id: uuid.UUID) -> IngestionJob | None:
        """Manual retry: a pending or failed job starts over with zero attempts.

        Returns None if the job does not exist or is currently processing.
        """
        now = self.clock()
        async with self.session_factory() as db:
            job = await db.get(IngestionJob, job_id, with_for_update=True)
            if job is None or job.status == JobStatus.PROCESSING:
                return None

            job.status = JobStatus.PENDING
            job.attempts = 0
            job.next_retry_at = now
            job.error_message = None
            job.started_at = None
            job.completed_at = None
            job.updated_at = now
            await db.commit()

        logger.info(f"Manually retrying job {job_id}")
        return job

    async def requeue_stale(self, older_than: timedelta) -> list[IngestionJob]:
        """Recover jobs left processing by a crashed processor.

        Each counts as a failed attempt, so a job that keeps crashing the
        processor still ends up failed.
        """
        now = self.clock()
        async with self.session_factory() as db:
            result = await db.execute(
                select(IngestionJob)
                .where(
                    IngestionJob.status == JobStatus.PROCESSING,
                    IngestionJob.started_at < now - older_than,
                )
                .with_for_update(skip_locked=True)
            )
            jobs = list(result.scalars().all())
            for job in jobs:
                logger.warning(f"Job {job.id} stuck in processing since {job.started_at}")
                self._record_failure(job, "Processing timed out (processor restarted?)", now)
            await db.commit()
        return jobs

    async def stats(self) -> dict[str, int]:
        """Job counts by status."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(IngestionJob.status, func.count()).group_by(IngestionJob.status)
            )
            counts = {row[0]: row[1] for row in result.all()}

        stats = {status.value: counts.get(status.value, 0) for status in JobStatus}
        stats["total"] = sum(counts.values())
        return stats

    async def cleanup(self, older_than_days: int = 7) -> int:
        """Delete completed and failed jobs last updated before the cutoff."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        async with self.session_factory() as db:
            result = await db.execute(
                delete(IngestionJob)
                .where(
                    IngestionJob.status.in_(TERMINAL_STATUSES),
                    IngestionJob.updated_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        logger.info(f"Cleaned up {result.rowcount} ingestion jobs older than {older_than_days} days")
        return result.rowcount
