"""
Jobs outbox and audit trail tests.
"""

import uuid
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select

from fixit.models.audit import AuditLog
from fixit.models.enums import AuditAction, AuditStatus, GlobalRole, JobStatus
from fixit.models.jobs import JobsOutbox
from fixit.services.audit import REDACTED, AuditService, to_jsonable
from fixit.services.jobs import JOB_SEND_SMS, JobsService, backoff_delay
from tests.conftest import auth_headers


# =============================================================================
# Outbox
# =============================================================================

def test_backoff_doubles_each_attempt():
    assert [backoff_delay(n) for n in (1, 2, 3, 4)] == [
        timedelta(minutes=1),
        timedelta(minutes=2),
        timedelta(minutes=4),
        timedelta(minutes=8),
    ]


async def test_enqueue_is_idempotent_per_scope(db):
    jobs = JobsService(db)
    first = await jobs.enqueue(JOB_SEND_SMS, {"to": "+256700000001", "body": "hi"}, unique_scope="sms:once")
    second = await jobs.enqueue(JOB_SEND_SMS, {"to": "+256700000001", "body": "hi"}, unique_scope="sms:once")
    await db.commit()

    assert first is not None
    assert second is None
    rows = (await db.execute(select(JobsOutbox))).scalars().all()
    assert len(rows) == 1


async def test_claim_skips_jobs_not_yet_due(db):
    jobs = JobsService(db)
    now = datetime.utcnow()
    await jobs.enqueue(JOB_SEND_SMS, {"to": "1", "body": "now"}, unique_scope="sms:now")
    await jobs.enqueue(JOB_SEND_SMS, {"to": "2", "body": "later"}, unique_scope="sms:later", run_after=now + timedelta(hours=1))
    await db.commit()

    claimed = await jobs.claim_pending_jobs(now=now + timedelta(seconds=1))
    assert [j.payload["body"] for j in claimed] == ["now"]
    assert claimed[0].status == JobStatus.PROCESSING
    assert claimed[0].attempts == 1


async def test_job_dead_letters_after_max_attempts(db):
    jobs = JobsService(db)
    job_id = await jobs.enqueue(JOB_SEND_SMS, {"to": "1", "body": "x"}, unique_scope="sms:flaky", max_attempts=2)
    await db.commit()

    now = datetime.utcnow()
    for attempt in range(2):
        tick = now + timedelta(hours=attempt + 1)
        (job,) = await jobs.claim_pending_jobs(now=tick)
        status = await jobs.fail_job(job.id, "gateway timeout", now=tick)
    await db.commit()

    assert status == JobStatus.DEAD_LETTER
    stored = await db.get(JobsOutbox, job_id)
    assert stored.attempts == 2
    assert stored.last_error == "gateway timeout"


async def test_stale_processing_jobs_are_reclaimed(db):
    jobs = JobsService(db)
    await jobs.enqueue(JOB_SEND_SMS, {"to": "1", "body": "x"}, unique_scope="sms:stuck")
    await db.commit()
    start = datetime.utcnow()
    await jobs.claim_pending_jobs(now=start)
    await db.commit()

    assert await jobs.reclaim_stale_jobs(timedelta(minutes=10), now=start + timedelta(minutes=5)) == 0
    assert await jobs.reclaim_stale_jobs(timedelta(minutes=10), now=start + timedelta(minutes=15)) == 1


# =============================================================================
# Audit
# =============================================================================

class Colour(str, Enum):
    RED = "red"


def test_to_jsonable_redacts_credentials():
    when = datetime(2025, 1, 1, 12, 0)
    ident = uuid.uuid4()
    value = {
        "password_hash": "$2b$12$abc",
        "public_token_hash": "deadbeef",
        "jwt_secret": "s3cret",
        "colour": Colour.RED,
        "when": when,
        "id": ident,
        "nested": [{"Password": "x", "name": "kept"}],
    }

    assert to_jsonable(value) == {
        "password_hash": REDACTED,
        "public_token_hash": REDACTED,
        "jwt_secret": REDACTED,
        "colour": "red",
        "when": "2025-01-01T12:00:00",
        "id": str(ident),
        "nested": [{"Password": REDACTED, "name": "kept"}],
    }


async def test_failure_rows_are_marked(db):
    audit = AuditService(db)
    await audit.log_failure(AuditAction.LOGIN_FAILED, error_message="Incorrect password", resource_type="user")
    await db.commit()

    (row,) = (await db.execute(select(AuditLog))).scalars().all()
    assert row.status == AuditStatus.FAILURE
    assert row.error_message == "Incorrect password"


async def test_audit_log_endpoint_is_admin_only(client, estate, make_user):
    await client.post(
        "/api/requests",
        json={"title": "Loose railing", "category": "structural", "property": str(estate["property"].id)},
        headers=auth_headers(estate["manager"]),
    )

    denied = await client.get("/api/audit-logs", headers=auth_headers(estate["manager"]))
    assert denied.status_code == 403

    admin = await make_user(GlobalRole.ADMIN)
    listed = await client.get("/api/audit-logs?action=create", headers=auth_headers(admin))
    assert listed.status_code == 200
    assert listed.json()["total"] == 1
