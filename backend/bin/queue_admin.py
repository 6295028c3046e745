#!/usr/bin/env python3
"""Ingestion queue management CLI.

Usage:
    bin/queue_admin.py --stats                 # Job counts by status
    bin/queue_admin.py --show <job_id>         # Show details for a job
    bin/queue_admin.py --retry <job_id>        # Reset a failed job to pending
    bin/queue_admin.py --cleanup [DAYS]        # Delete finished jobs older than DAYS (default 7)
    bin/queue_admin.py --requeue-stale         # Recover jobs stuck in processing
"""

import argparse
import asyncio
import sys
import uuid
from datetime import timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitebot.config import settings  # noqa: E402
from sitebot.enums import JobPriority, JobStatus  # noqa: E402
from sitebot.exceptions import IngestionInProgress  # noqa: E402
from sitebot.queue import JobQueueStore  # noqa: E402
from sitebot.services.ingestion import retry_job  # noqa: E402
from sitebot.services.status import WebsiteStatusRegister  # noqa: E402


def parse_job_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a job id: {value}") from None


async def show_stats(store: JobQueueStore) -> None:
    stats = await store.stats()
    print(f"\n{'Status':<12} {'Jobs':>6}")
    print("-" * 19)
    for status in ("pending", "processing", "completed", "failed"):
        print(f"{status:<12} {stats[status]:>6}")
    print("-" * 19)
    print(f"{'total':<12} {stats['total']:>6}")


async def show_job(store: JobQueueStore, job_id: uuid.UUID) -> int:
    job = await store.get(job_id)
    if job is None:
        print(f"Job not found: {job_id}")
        return 1

    print("\n" + "=" * 80)
    print("INGESTION JOB DETAILS")
    print("=" * 80)
    print(f"ID:              {job.id}")
    print(f"Website:         {job.website_id}")
    print(f"URL:             {job.url}")
    print(f"Status:          {job.status}")
    print(f"Priority:        {JobPriority(job.priority).name.lower()}")
    print(f"Attempts:        {job.attempts}/{job.max_attempts}")
    print(f"Next retry at:   {job.next_retry_at}")
    print(f"Created at:      {job.created_at}")
    print(f"Last error:      {job.error_message or 'N/A'}")
    return 0


async def retry(store: JobQueueStore, job_id: uuid.UUID) -> int:
    try:
        job = await retry_job(store, WebsiteStatusRegister(), job_id)
    except IngestionInProgress as e:
        print(f"Cannot retry: {e}")
        return 1
    if job is None:
        print(f"Job not found: {job_id}")
        return 1
    print(f"Job {job_id} reset to pending (website {job.website_id} reset for re-scrape)")
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(description="Manage the website ingestion queue")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--stats", action="store_true", help="Show job counts by status")
    group.add_argument("--show", type=parse_job_id, metavar="JOB_ID", help="Show job details")
    group.add_argument("--retry", type=parse_job_id, metavar="JOB_ID", help="Retry a failed job")
    group.add_argument(
        "--cleanup",
        type=int,
        nargs="?",
        const=settings.job_retention_days,
        metavar="DAYS",
        help="Delete completed/failed jobs older than DAYS",
    )
    group.add_argument(
        "--requeue-stale", action="store_true", help="Recover jobs stuck in processing"
    )
    args = parser.parse_args()

    store = JobQueueStore()

    if args.stats:
        await show_stats(store)
    elif args.show:
        return await show_job(store, args.show)
    elif args.retry:
        return await retry(store, args.retry)
    elif args.cleanup is not None:
        deleted = await store.cleanup(args.cleanup)
        print(f"Deleted {deleted} job(s) older than {args.cleanup} days")
    elif args.requeue_stale:
        jobs = await store.requeue_stale(timedelta(minutes=settings.stale_job_timeout_minutes))
        register = WebsiteStatusRegister()
        for job in jobs:
            print(f"{job.id}  -> {job.status} (attempt {job.attempts}/{job.max_attempts})")
            if job.status == JobStatus.FAILED:
                await register.mark_error(job.website_id, job.error_message or "Processing timed out")
        print(f"Recovered {len(jobs)} job(s)")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
