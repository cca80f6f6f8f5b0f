"""Jobs outbox service for async side effects.

Outbound email, SMS and reminder work MUST go through jobs_outbox.
No fire-and-forget tasks.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.models.enums import JobStatus
from fixit.models.jobs import JobsOutbox

JOB_SEND_EMAIL = "send_email"
JOB_SEND_SMS = "send_sms"
JOB_OVERDUE_REMINDER = "overdue_reminder"

STALE_PROCESSING_AFTER = timedelta(minutes=10)

# Delay before attempt n+1 is 2**(n-1) minutes: 1, 2, 4...
BACKOFF_BASE = timedelta(minutes=1)


def backoff_delay(attempts: int) -> timedelta:
    return BACKOFF_BASE * (2 ** max(attempts - 1, 0))


class JobsService:
    """Service for managing async jobs via outbox pattern."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(JobsOutbox)
        return sqlite_insert(JobsOutbox)

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        unique_scope: str,
        run_after: Optional[datetime] = None,
        max_attempts: int = 3,
    ) -> Optional[uuid.UUID]:
        """Enqueue a job with unique_scope de-duplication.

        Returns the new job ID, or None if a job with the same scope exists.
        """
        job_id = uuid.uuid4()
        now = datetime.utcnow()

        # INSERT ... ON CONFLICT DO NOTHING for idempotency
        stmt = self._insert().values(
            id=job_id,
            type=job_type,
            payload=payload,
            status=JobStatus.PENDING,
            unique_scope=unique_scope,
            attempts=0,
            max_attempts=max_attempts,
            run_after=run_after or now,
            created_at=now,
        ).on_conflict_do_nothing(index_elements=["unique_scope"])

        result = await self.db.execute(stmt)

        # rowcount will be 0 if conflict occurred
        if result.rowcount == 0:
            return None

        return job_id

    async def enqueue_email(
        self,
        notification_id: uuid.UUID,
        to: str,
        subject: str,
        text: str,
        html: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        return await self.enqueue(
            job_type=JOB_SEND_EMAIL,
            payload={
                "notification_id": str(notification_id),
                "to": to,
                "subject": subject,
                "text": text,
                "html": html,
            },
            unique_scope=f"{JOB_SEND_EMAIL}:notification:{notification_id}",
        )

    async def enqueue_sms(self, notification_id: uuid.UUID, to: str, body: str) -> Optional[uuid.UUID]:
        return await self.enqueue(
            job_type=JOB_SEND_SMS,
            payload={"notification_id": str(notification_id), "to": to, "body": body},
            unique_scope=f"{JOB_SEND_SMS}:notification:{notification_id}",
        )

    async def enqueue_overdue_reminder(self, request_id: uuid.UUID, sweep_day: str) -> Optional[uuid.UUID]:
        """At most one reminder per request per sweep day."""
        return await self.enqueue(
            job_type=JOB_OVERDUE_REMINDER,
            payload={"request_id": str(request_id), "sweep_day": sweep_day},
            unique_scope=f"reminder:{request_id}:{sweep_day}",
        )

    async def claim_pending_jobs(
        self,
        job_type: Optional[str] = None,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[JobsOutbox]:
        """Claim pending jobs for processing.

        Updates status to PROCESSING and returns the claimed jobs.
        """
        now = now or datetime.utcnow()
        query = (
            select(JobsOutbox)
            .where(
                JobsOutbox.status == JobStatus.PENDING,
                JobsOutbox.run_after <= now,
            )
        )

        if job_type:
            query = query.where(JobsOutbox.type == job_type)

        query = query.order_by(JobsOutbox.run_after).limit(limit)
        if self.db.get_bind().dialect.name == "postgresql":
            query = query.with_for_update(skip_locked=True)

        result = await self.db.execute(query)
        jobs = list(result.scalars().all())

        if not jobs:
            return []

        for job in jobs:
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.attempts = (job.attempts or 0) + 1
        await self.db.flush()

        return jobs

    async def complete_job(self, job_id: uuid.UUID) -> None:
        """Mark job as completed."""
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(
                status=JobStatus.COMPLETED,
                completed_at=datetime.utcnow(),
            )
        )

    async def fail_job(
        self,
        job_id: uuid.UUID,
        error: str,
        dead_letter: bool = False,
        now: Optional[datetime] = None,
    ) -> JobStatus:
        """Mark job as failed.

        If dead_letter=True or max attempts reached, moves to DEAD_LETTER.
        Otherwise, resets to PENDING with exponential backoff.
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(JobsOutbox).where(JobsOutbox.id == job_id)
        )
        job = result.scalar_one_or_none()

        if not job:
            return JobStatus.FAILED

        if dead_letter or job.attempts >= job.max_attempts:
            job.status = JobStatus.DEAD_LETTER
        else:
            job.status = JobStatus.PENDING
            job.run_after = now + backoff_delay(job.attempts)
        job.last_error = error[:2000]
        await self.db.flush()
        return job.status

    async def reclaim_stale_jobs(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Return jobs stuck in PROCESSING (crashed worker) to the queue."""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            update(JobsOutbox)
            .where(
                JobsOutbox.status == JobStatus.PROCESSING,
                JobsOutbox.started_at < now - older_than,
            )
            .values(status=JobStatus.PENDING, run_after=now)
        )
        return result.rowcount
