"""Periodic scheduler.

Three interval jobs run on an APScheduler ``AsyncIOScheduler``:

- materialise due scheduled maintenance (every ``SCHEDULER_TICK_SECONDS``)
- deliver the jobs outbox: email, SMS, overdue reminders (same cadence)
- sweep stale open requests for overdue reminders (every ``REMINDER_SWEEP_MINUTES``)

Only the holder of the ``scheduler_leases`` row does any work, so several
API instances can run the scheduler side by side. Each schedule is
materialised in its own session and transaction.
"""

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from fixit.core.config import Settings, get_settings
from fixit.core.database import async_session_factory, run_in_transaction
from fixit.core.errors import AppError, ConflictError, ExternalDependencyError
from fixit.models.enums import (
    AuditAction,
    EntityKind,
    JobStatus,
    NotificationKind,
    RequestStatus,
    ScheduleStatus,
)
from fixit.models.jobs import SchedulerLease
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.services.audit import SYSTEM_CONTEXT, AuditService
from fixit.services.email import EmailService, get_email_service
from fixit.services.items import assignee_user, assignee_vendor, get_item
from fixit.services.jobs import (
    JOB_OVERDUE_REMINDER,
    JOB_SEND_EMAIL,
    JOB_SEND_SMS,
    STALE_PROCESSING_AFTER,
    JobsService,
)
from fixit.services.media import MediaService
from fixit.services.notifications import NotificationService, Related
from fixit.services.scheduled_maintenance import ScheduledMaintenanceService
from fixit.services.sms import SmsService, get_sms_service
from fixit.services.storage import MediaRegistry, get_media_registry

logger = logging.getLogger(__name__)

LEASE_NAME = "fixit-scheduler"

REMINDABLE_STATUSES = (RequestStatus.NEW, RequestStatus.REOPENED, RequestStatus.ASSIGNED)


class MalformedJob(Exception):
    """Outbox payload cannot be processed; retrying will not help."""


class MaintenanceScheduler:
    """Owns the APScheduler instance and the work each tick performs.

    The tick methods accept ``now`` so they can be driven directly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_factory,
        settings: Optional[Settings] = None,
        email: Optional[EmailService] = None,
        sms: Optional[SmsService] = None,
        registry: Optional[MediaRegistry] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._email = email
        self._sms = sms
        self._registry = registry
        self.holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 120,
            },
            timezone="UTC",
        )

    @property
    def email(self) -> EmailService:
        return self._email or get_email_service()

    @property
    def sms(self) -> SmsService:
        return self._sms or get_sms_service()

    @property
    def registry(self) -> MediaRegistry:
        return self._registry or get_media_registry()

    def setup_jobs(self) -> None:
        tick = self.settings.scheduler_tick_seconds
        self.scheduler.add_job(
            self.run_materialisation,
            trigger=IntervalTrigger(seconds=tick),
            id="materialise_scheduled_maintenance",
            name="Materialise due scheduled maintenance",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_outbox,
            trigger=IntervalTrigger(seconds=tick),
            id="process_jobs_outbox",
            name="Deliver email, SMS and reminder jobs",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_reminder_sweep,
            trigger=IntervalTrigger(minutes=self.settings.reminder_sweep_minutes),
            id="overdue_reminder_sweep",
            name="Overdue request reminder sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            f"[SCHEDULER] Jobs registered: tick={tick}s, reminder sweep every {self.settings.reminder_sweep_minutes}m"
        )

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info(f"[SCHEDULER] Started as {self.holder}")

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.release_lease()
        logger.info("[SCHEDULER] Stopped")

    # Leader lease

    async def acquire_lease(self, now: Optional[datetime] = None) -> bool:
        """Take or renew the lease. False when another live instance holds it."""
        now = now or datetime.utcnow()
        expires_at = now + timedelta(seconds=self.settings.scheduler_lease_seconds)
        async with self.session_factory() as db:

            async def op() -> bool:
                query = select(SchedulerLease).where(SchedulerLease.name == LEASE_NAME)
                if db.get_bind().dialect.name == "postgresql":
                    query = query.with_for_update()
                lease = (await db.execute(query)).scalar_one_or_none()
                if lease is None:
                    db.add(SchedulerLease(name=LEASE_NAME, holder=self.holder, expires_at=expires_at, acquired_at=now))
                    return True
                if lease.holder != self.holder and lease.expires_at > now:
                    return False
                if lease.holder != self.holder:
                    logger.info(f"[SCHEDULER] Taking over expired lease from {lease.holder}")
                    lease.acquired_at = now
                lease.holder = self.holder
                lease.expires_at = expires_at
                return True

            try:
                return await run_in_transaction(db, op)
            except ConflictError:
                return False

    async def release_lease(self) -> None:
        async with self.session_factory() as db:
            lease = await db.get(SchedulerLease, LEASE_NAME)
            if lease is not None and lease.holder == self.holder:
                await db.delete(lease)
                await db.commit()

    # Job entry points

    async def run_materialisation(self) -> None:
        if await self.acquire_lease():
            await self.materialise_due()

    async def run_outbox(self) -> None:
        if await self.acquire_lease():
            await self.process_outbox()

    async def run_reminder_sweep(self) -> None:
        if await self.acquire_lease():
            await self.sweep_reminders()

    # Materialisation

    async def due_schedule_ids(self, now: datetime) -> list[uuid.UUID]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ScheduledMaintenance.id)
                .where(
                    ScheduledMaintenance.status == ScheduleStatus.SCHEDULED,
                    ScheduledMaintenance.is_active == True,
                    ScheduledMaintenance.next_due_date.is_not(None),
                    ScheduledMaintenance.next_due_date <= now,
                )
                .order_by(ScheduledMaintenance.next_due_date)
                .limit(self.settings.scheduler_batch_size)
            )
            return list(result.scalars().all())

    async def materialise_one(self, schedule_id: uuid.UUID, now: datetime) -> Optional[uuid.UUID]:
        """Materialise one schedule in its own transaction. Returns the request id."""
        async with self.session_factory() as db:
            audit = AuditService(db, SYSTEM_CONTEXT, self.session_factory)
            engine = ScheduledMaintenanceService(
                db, None, audit, media=MediaService(db, self.registry, audit), tz_name=self.settings.app_timezone
            )

            async def op() -> Optional[uuid.UUID]:
                schedule = await get_item(db, EntityKind.SCHEDULED_MAINTENANCE, schedule_id)
                # Another tick may have got here first
                if schedule.status != ScheduleStatus.SCHEDULED or schedule.next_due_date is None or schedule.next_due_date > now:
                    return None
                request = await engine.materialise(schedule, now)
                return request.id if request else None

            return await run_in_transaction(db, op)

    async def materialise_due(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        created = 0
        for schedule_id in await self.due_schedule_ids(now):
            try:
                if await self.materialise_one(schedule_id, now):
                    created += 1
            except ConflictError:
                logger.info(f"[SCHEDULER] Occurrence of {schedule_id} already materialised elsewhere")
            except AppError as e:
                logger.error(f"[SCHEDULER] Could not materialise {schedule_id}: {e.message}")
            except Exception:
                logger.exception(f"[SCHEDULER] Unexpected error materialising {schedule_id}")
        if created:
            logger.info(f"[SCHEDULER] Materialised {created} request(s)")
        return created

    # Overdue reminders

    async def sweep_reminders(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        threshold = now - timedelta(hours=self.settings.reminder_threshold_hours)
        sweep_day = now.date().isoformat()
        queued = 0
        async with self.session_factory() as db:
            result = await db.execute(
                select(Request.id).where(
                    Request.status.in_(REMINDABLE_STATUSES),
                    Request.created_at < threshold,
                    Request.is_active == True,
                )
            )
            jobs = JobsService(db)
            for request_id in result.scalars().all():
                if await jobs.enqueue_overdue_reminder(request_id, sweep_day):
                    queued += 1
            await db.commit()
        if queued:
            logger.info(f"[SCHEDULER] Queued {queued} overdue reminder(s) for {sweep_day}")
        return queued

    # Outbox delivery

    async def process_outbox(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        async with self.session_factory() as db:
            jobs = JobsService(db)
            reclaimed = await jobs.reclaim_stale_jobs(STALE_PROCESSING_AFTER, now)
            if reclaimed:
                logger.warning(f"[OUTBOX] Reclaimed {reclaimed} stale job(s)")
            claimed = [
                (job.id, job.type, dict(job.payload or {}))
                for job in await jobs.claim_pending_jobs(limit=self.settings.outbox_batch_size, now=now)
            ]
            await db.commit()

        for job_id, job_type, payload in claimed:
            await self._run_job(job_id, job_type, payload, now)
        return len(claimed)

    async def _run_job(self, job_id: uuid.UUID, job_type: str, payload: dict[str, Any], now: datetime) -> None:
        try:
            await self.dispatch(job_type, payload)
        except MalformedJob as e:
            await self._record_failure(job_id, job_type, payload, str(e), now, dead_letter=True)
        except ExternalDependencyError as e:
            await self._record_failure(job_id, job_type, payload, e.message, now)
        except Exception as e:
            logger.exception(f"[OUTBOX] Job {job_id} ({job_type}) raised")
            await self._record_failure(job_id, job_type, payload, str(e), now)
        else:
            async with self.session_factory() as db:
                await JobsService(db).complete_job(job_id)
                await db.commit()

    async def _record_failure(
        self,
        job_id: uuid.UUID,
        job_type: str,
        payload: dict[str, Any],
        error: str,
        now: datetime,
        dead_letter: bool = False,
    ) -> None:
        async with self.session_factory() as db:
            status = await JobsService(db).fail_job(job_id, error, dead_letter=dead_letter, now=now)
            if status == JobStatus.DEAD_LETTER:
                logger.error(f"[OUTBOX] Job {job_id} ({job_type}) dead-lettered: {error}")
                resource_id = payload.get("notification_id") or payload.get("request_id")
                await AuditService(db, SYSTEM_CONTEXT).log_failure(
                    AuditAction.NOTIFICATION_FAILED,
                    error_message=error,
                    resource_type="notification" if payload.get("notification_id") else EntityKind.REQUEST.value,
                    resource_id=uuid.UUID(resource_id) if resource_id else None,
                    details={"job_id": job_id, "job_type": job_type},
                )
            else:
                logger.warning(f"[OUTBOX] Job {job_id} ({job_type}) failed, will retry: {error}")
            await db.commit()

    async def dispatch(self, job_type: str, payload: dict[str, Any]) -> None:
        try:
            if job_type == JOB_SEND_EMAIL:
                sent = await self.email.send(payload["to"], payload["subject"], payload["text"], payload.get("html"))
                if not sent:
                    logger.warning(f"[OUTBOX] Email transport not configured; dropping message to {payload['to']}")
            elif job_type == JOB_SEND_SMS:
                sent = await self.sms.send(payload["to"], payload["body"])
                if not sent:
                    logger.warning("[OUTBOX] SMS transport not configured; dropping message")
            elif job_type == JOB_OVERDUE_REMINDER:
                await self.send_overdue_reminder(uuid.UUID(payload["request_id"]))
            else:
                raise MalformedJob(f"Unknown job type {job_type}")
        except (KeyError, ValueError) as e:
            raise MalformedJob(f"Malformed {job_type} payload: {e}") from e

    async def send_overdue_reminder(self, request_id: uuid.UUID) -> None:
        async with self.session_factory() as db:
            request = await db.get(Request, request_id)
            if request is None or request.status not in REMINDABLE_STATUSES:
                return
            audit = AuditService(db, SYSTEM_CONTEXT, self.session_factory)
            notifier = NotificationService(db, audit)
            age_hours = int((datetime.utcnow() - request.created_at).total_seconds() // 3600)
            message = f"Request \"{request.title}\" has been {request.status.value} for {age_hours} hours"
            await notifier.notify(
                [*await notifier.management_of(request.property_id), await assignee_user(db, request)],
                NotificationKind.REMINDER_OVERDUE,
                message,
                related=Related(EntityKind.REQUEST, request.id),
            )
            await notifier.notify_vendor(await assignee_vendor(db, request), NotificationKind.REMINDER_OVERDUE, message)
            await db.commit()


_scheduler: Optional[MaintenanceScheduler] = None


def get_scheduler() -> MaintenanceScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = MaintenanceScheduler()
    return _scheduler
