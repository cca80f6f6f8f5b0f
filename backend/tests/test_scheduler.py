"""
Scheduler tests: materialisation of due scheduled maintenance, the
open-request skip policy, overdue reminder sweeps, outbox delivery and
the leader lease.
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from fixit.core.errors import ExternalDependencyError
from fixit.models.activity import StatusHistoryEntry
from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, JobStatus, RequestStatus, ScheduleStatus
from fixit.models.jobs import JobsOutbox
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.services.jobs import JOB_OVERDUE_REMINDER, JOB_SEND_EMAIL, JobsService
from fixit.services.scheduler import MaintenanceScheduler
from tests.conftest import auth_headers


class RecordingEmail:
    def __init__(self, error: Exception = None):
        self.sent = []
        self.error = error

    async def send(self, to, subject, text, html=None):
        if self.error:
            raise self.error
        self.sent.append((to, subject))
        return True


class RecordingSms:
    def __init__(self):
        self.sent = []

    async def send(self, to, body):
        self.sent.append((to, body))
        return True


@pytest.fixture
def scheduler(session_factory, registry):
    return MaintenanceScheduler(
        session_factory=session_factory,
        email=RecordingEmail(),
        sms=RecordingSms(),
        registry=registry,
    )


async def create_schedule(client, estate, **overrides) -> dict:
    body = {
        "title": "Service the water pump",
        "category": "plumbing",
        "property": str(estate["property"].id),
        "scheduledDate": "2025-01-15T00:00:00",
        "recurring": True,
        "frequency": {"type": "monthly", "interval": 1, "dayOfMonth": 15},
        **overrides,
    }
    response = await client.post("/api/scheduled-maintenance", json=body, headers=auth_headers(estate["manager"]))
    assert response.status_code == 201, response.json()
    return response.json()["data"]


async def generated_requests(session_factory, schedule_id) -> list[Request]:
    async with session_factory() as db:
        result = await db.execute(
            select(Request).where(Request.generated_from_schedule_id == uuid.UUID(schedule_id))
        )
        return list(result.scalars().all())


# =============================================================================
# Materialisation
# =============================================================================

async def test_schedule_creation_sets_first_due_date(client, estate):
    schedule = await create_schedule(client, estate)

    assert schedule["status"] == "scheduled"
    assert schedule["next_due_date"].startswith("2025-01-15T00:00:00")
    assert schedule["frequency_formatted"] == "Monthly"


async def test_tick_materialises_once_and_advances_due_date(client, estate, scheduler, session_factory):
    schedule = await create_schedule(client, estate)
    tick = datetime(2025, 1, 15, 1, 0)

    assert await scheduler.materialise_due(tick) == 1
    assert await scheduler.materialise_due(tick + timedelta(seconds=30)) == 0

    requests = await generated_requests(session_factory, schedule["id"])
    assert len(requests) == 1
    assert requests[0].status == RequestStatus.NEW
    assert requests[0].generated_for_due_date == datetime(2025, 1, 15, 0, 0)

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
    assert stored.next_due_date == datetime(2025, 2, 15, 0, 0)
    assert stored.last_generated_request_id == requests[0].id
    assert stored.status == ScheduleStatus.SCHEDULED


async def test_generated_request_inherits_vendor_assignment(client, estate, scheduler, session_factory):
    vendor = estate["vendor"]
    schedule = await create_schedule(client, estate, assignedTo={"assignee": str(vendor.id), "kind": "Vendor"})

    await scheduler.materialise_due(datetime(2025, 1, 15, 1, 0))

    (request,) = await generated_requests(session_factory, schedule["id"])
    assert request.status == RequestStatus.ASSIGNED
    assert request.assigned_to_id == vendor.id


async def test_occurrence_skipped_while_previous_request_open(client, estate, scheduler, session_factory):
    schedule = await create_schedule(client, estate)

    assert await scheduler.materialise_due(datetime(2025, 1, 15, 1, 0)) == 1
    assert await scheduler.materialise_due(datetime(2025, 2, 15, 1, 0)) == 0

    assert len(await generated_requests(session_factory, schedule["id"])) == 1
    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
        skipped = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.SCHEDULED_MAINTENANCE_OCCURRENCE_SKIPPED)
        )).scalars().all()
    assert stored.next_due_date == datetime(2025, 3, 15, 0, 0)
    assert len(skipped) == 1


async def test_one_time_schedule_completes_after_materialising(client, estate, scheduler, session_factory):
    schedule = await create_schedule(client, estate, recurring=False, frequency=None)

    assert await scheduler.materialise_due(datetime(2025, 1, 15, 1, 0)) == 1

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
    assert stored.status == ScheduleStatus.COMPLETED
    assert stored.next_due_date is None


async def test_paused_schedule_is_not_materialised(client, estate, scheduler):
    schedule = await create_schedule(client, estate)
    paused = await client.post(
        f"/api/scheduled-maintenance/{schedule['id']}/pause", headers=auth_headers(estate["manager"])
    )
    assert paused.status_code == 200

    assert await scheduler.materialise_due(datetime(2025, 1, 15, 1, 0)) == 0


async def test_manual_generation_conflicts_with_open_request(client, estate, scheduler):
    schedule = await create_schedule(client, estate)
    headers = auth_headers(estate["manager"])

    first = await client.post(f"/api/scheduled-maintenance/{schedule['id']}/create-request", headers=headers)
    second = await client.post(f"/api/scheduled-maintenance/{schedule['id']}/create-request", headers=headers)

    assert first.status_code == 201
    assert first.json()["data"]["generated_from_schedule_id"] == schedule["id"]
    assert second.status_code == 409


# =============================================================================
# Overdue reminders
# =============================================================================

async def test_reminder_sweep_queues_once_per_day(client, estate, scheduler, session_factory):
    created = await client.post(
        "/api/requests",
        json={"title": "Gate motor stuck", "category": "security", "property": str(estate["property"].id)},
        headers=auth_headers(estate["manager"]),
    )
    assert created.status_code == 201
    later = (datetime.utcnow() + timedelta(days=4)).replace(hour=12, minute=0)

    assert await scheduler.sweep_reminders(later) == 1
    assert await scheduler.sweep_reminders(later + timedelta(minutes=5)) == 0
    assert await scheduler.sweep_reminders(later + timedelta(days=1)) == 1

    async with session_factory() as db:
        jobs = (await db.execute(
            select(JobsOutbox).where(JobsOutbox.type == JOB_OVERDUE_REMINDER)
        )).scalars().all()
    assert len(jobs) == 2


async def test_fresh_requests_are_not_reminded(client, estate, scheduler):
    await client.post(
        "/api/requests",
        json={"title": "Gate motor stuck", "category": "security", "property": str(estate["property"].id)},
        headers=auth_headers(estate["manager"]),
    )
    assert await scheduler.sweep_reminders(datetime.utcnow()) == 0


# =============================================================================
# Outbox delivery
# =============================================================================

async def _enqueue(session_factory, job_type, payload, scope):
    async with session_factory() as db:
        job_id = await JobsService(db).enqueue(job_type, payload, unique_scope=scope)
        await db.commit()
    return job_id


async def test_outbox_delivers_email(scheduler, session_factory):
    job_id = await _enqueue(
        session_factory,
        JOB_SEND_EMAIL,
        {"to": "manager@example.com", "subject": "Hello", "text": "Body"},
        "test:email:1",
    )

    assert await scheduler.process_outbox() == 1

    async with session_factory() as db:
        job = await db.get(JobsOutbox, job_id)
    assert job.status == JobStatus.COMPLETED
    assert scheduler.email.sent == [("manager@example.com", "Hello")]


async def test_failed_delivery_is_retried_with_backoff(session_factory, registry):
    scheduler = MaintenanceScheduler(
        session_factory=session_factory,
        email=RecordingEmail(error=ExternalDependencyError("Mail delivery failed")),
        sms=RecordingSms(),
        registry=registry,
    )
    job_id = await _enqueue(
        session_factory,
        JOB_SEND_EMAIL,
        {"to": "manager@example.com", "subject": "Hello", "text": "Body"},
        "test:email:2",
    )
    now = datetime.utcnow()

    await scheduler.process_outbox(now)

    async with session_factory() as db:
        job = await db.get(JobsOutbox, job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.run_after == now + timedelta(minutes=1)
    assert job.last_error == "Mail delivery failed"


async def test_malformed_job_is_dead_lettered(scheduler, session_factory):
    job_id = await _enqueue(session_factory, JOB_SEND_EMAIL, {"subject": "no recipient"}, "test:email:3")

    await scheduler.process_outbox()

    async with session_factory() as db:
        job = await db.get(JobsOutbox, job_id)
        failures = (await db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.NOTIFICATION_FAILED)
        )).scalars().all()
    assert job.status == JobStatus.DEAD_LETTER
    assert len(failures) == 1


# =============================================================================
# Leader lease
# =============================================================================

async def test_only_one_instance_holds_the_lease(session_factory, registry):
    first = MaintenanceScheduler(session_factory=session_factory, registry=registry)
    second = MaintenanceScheduler(session_factory=session_factory, registry=registry)
    now = datetime.utcnow()

    assert await first.acquire_lease(now) is True
    assert await second.acquire_lease(now) is False
    assert await first.acquire_lease(now + timedelta(seconds=30)) is True

    expired = now + timedelta(seconds=first.settings.scheduler_lease_seconds + 60)
    assert await second.acquire_lease(expired) is True
    assert await first.acquire_lease(expired) is False


async def test_concurrent_ticks_create_one_request_per_occurrence(client, estate, scheduler, session_factory):
    schedule = await create_schedule(client, estate)
    schedule_id = uuid.UUID(schedule["id"])
    tick = datetime(2025, 1, 15, 1, 0)

    results = await asyncio.gather(
        scheduler.materialise_one(schedule_id, tick),
        scheduler.materialise_one(schedule_id, tick),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, uuid.UUID)]
    assert len(created) == 1
    requests = await generated_requests(session_factory, schedule["id"])
    assert [r.id for r in requests] == created
    assert requests[0].generated_for_due_date == datetime(2025, 1, 15, 0, 0)


# =============================================================================
# Lifecycle
# =============================================================================

async def test_completing_recurring_task_rolls_to_next_occurrence(client, estate, session_factory):
    schedule = await create_schedule(
        client, estate, frequency={"type": "monthly", "interval": 1, "dayOfMonth": 15, "occurrences": 3}
    )
    before = datetime.utcnow()

    response = await client.post(
        f"/api/scheduled-maintenance/{schedule['id']}/complete", headers=auth_headers(estate["manager"])
    )
    assert response.status_code == 200, response.json()
    assert response.json()["data"]["status"] == "scheduled"

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
        history = (await db.execute(
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.entity_id == stored.id)
            .order_by(StatusHistoryEntry.sequence)
        )).scalars().all()

    assert stored.status == ScheduleStatus.SCHEDULED
    assert stored.next_due_date > before
    assert stored.next_due_date.day == 15
    assert stored.frequency["occurrences"] == 2
    assert stored.last_executed_at is not None
    assert [h.status for h in history] == ["scheduled", "completed", "scheduled"]


async def test_completing_last_occurrence_closes_the_series(client, estate, session_factory):
    schedule = await create_schedule(
        client, estate, frequency={"type": "monthly", "interval": 1, "dayOfMonth": 15, "occurrences": 1}
    )

    response = await client.post(
        f"/api/scheduled-maintenance/{schedule['id']}/complete", headers=auth_headers(estate["manager"])
    )
    assert response.json()["data"]["status"] == "completed"

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
    assert stored.next_due_date is None
    assert stored.frequency["occurrences"] == 0


async def test_resume_restarts_overdue_series_from_now(client, estate, session_factory):
    schedule = await create_schedule(client, estate)
    headers = auth_headers(estate["manager"])

    await client.post(f"/api/scheduled-maintenance/{schedule['id']}/pause", headers=headers)
    before = datetime.utcnow()
    resumed = await client.post(f"/api/scheduled-maintenance/{schedule['id']}/resume", headers=headers)
    after = datetime.utcnow()
    assert resumed.json()["data"]["status"] == "scheduled"

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
    # The frozen 2025-01-15 due date is in the past
    assert before <= stored.next_due_date <= after
    assert stored.paused_due_date is None


async def test_resume_keeps_future_due_date(client, estate, session_factory):
    schedule = await create_schedule(client, estate, scheduledDate="2030-01-15T00:00:00")
    headers = auth_headers(estate["manager"])

    await client.post(f"/api/scheduled-maintenance/{schedule['id']}/pause", headers=headers)
    await client.post(f"/api/scheduled-maintenance/{schedule['id']}/resume", headers=headers)

    async with session_factory() as db:
        stored = await db.get(ScheduledMaintenance, uuid.UUID(schedule["id"]))
    assert stored.next_due_date == datetime(2030, 1, 15, 0, 0)
