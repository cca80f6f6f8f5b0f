"""Scheduled-maintenance engine: lifecycle, recurrence and materialisation.

    scheduled --begin--> in_progress                 assignee, management, public link
    scheduled/in_progress --complete--> completed    assignee, management, public link
    scheduled/in_progress --pause--> paused          assignee, management
    paused --resume--> scheduled                     assignee, management
    scheduled/in_progress/paused --cancel--> canceled  management

Completing a recurring task that still has occurrences left immediately
re-enters ``scheduled`` with the next due date (two history rows).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.core.database import run_in_transaction
from fixit.core.errors import ConflictError, StateError, ValidationError
from fixit.models.assignable import Assignee
from fixit.models.enums import (
    AssigneeKind,
    AuditAction,
    Category,
    EntityKind,
    FrequencyType,
    GlobalRole,
    NotificationKind,
    OPEN_REQUEST_STATUSES,
    Priority,
    RequestStatus,
    ScheduleStatus,
)
from fixit.models.notification import Notification
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.services.activity import StatusHistory
from fixit.services.audit import AuditService
from fixit.services.authorization import Action, Actor, Authorizer, Target
from fixit.services.comments import CommentService
from fixit.services.items import (
    assignee_user,
    assignee_vendor,
    check_assignee,
    check_location,
    get_item,
    participants,
)
from fixit.services.media import MediaService
from fixit.services.notifications import NotificationService, Related
from fixit.services.recurrence import Frequency, InvalidFrequency, describe, first_due_date, next_due_date
from fixit.services.requests import Page

logger = logging.getLogger(__name__)

settings = get_settings()


class ScheduleEvent(str, Enum):
    BEGIN = "begin"
    COMPLETE = "complete"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ScheduleTransition:
    sources: frozenset
    target: ScheduleStatus
    audit_action: AuditAction
    permission: Action
    public: bool = False


SCHEDULE_TRANSITIONS: dict[ScheduleEvent, ScheduleTransition] = {
    ScheduleEvent.BEGIN: ScheduleTransition(
        frozenset({ScheduleStatus.SCHEDULED}),
        ScheduleStatus.IN_PROGRESS,
        AuditAction.SCHEDULED_MAINTENANCE_STARTED,
        Action.TRANSITION_STATUS,
        public=True,
    ),
    ScheduleEvent.COMPLETE: ScheduleTransition(
        frozenset({ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS}),
        ScheduleStatus.COMPLETED,
        AuditAction.SCHEDULED_MAINTENANCE_COMPLETED,
        Action.TRANSITION_STATUS,
        public=True,
    ),
    ScheduleEvent.PAUSE: ScheduleTransition(
        frozenset({ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS}),
        ScheduleStatus.PAUSED,
        AuditAction.SCHEDULED_MAINTENANCE_PAUSED,
        Action.TRANSITION_STATUS,
    ),
    ScheduleEvent.RESUME: ScheduleTransition(
        frozenset({ScheduleStatus.PAUSED}),
        ScheduleStatus.SCHEDULED,
        AuditAction.SCHEDULED_MAINTENANCE_RESUMED,
        Action.TRANSITION_STATUS,
    ),
    ScheduleEvent.CANCEL: ScheduleTransition(
        frozenset({ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, ScheduleStatus.PAUSED}),
        ScheduleStatus.CANCELED,
        AuditAction.SCHEDULED_MAINTENANCE_CANCELED,
        Action.CANCEL,
    ),
}

STATUS_EVENTS: dict[ScheduleStatus, ScheduleEvent] = {
    ScheduleStatus.IN_PROGRESS: ScheduleEvent.BEGIN,
    ScheduleStatus.COMPLETED: ScheduleEvent.COMPLETE,
    ScheduleStatus.PAUSED: ScheduleEvent.PAUSE,
    ScheduleStatus.SCHEDULED: ScheduleEvent.RESUME,
    ScheduleStatus.CANCELED: ScheduleEvent.CANCEL,
}

CLOSED_STATUSES = frozenset({ScheduleStatus.COMPLETED, ScheduleStatus.CANCELED})


def plan_schedule_transition(current: ScheduleStatus, event: ScheduleEvent) -> ScheduleTransition:
    transition = SCHEDULE_TRANSITIONS[event]
    if current not in transition.sources:
        raise StateError(f"Cannot {event.value} a scheduled task that is {current.value}")
    return transition


def frequency_of(schedule: ScheduledMaintenance) -> Frequency:
    if not schedule.recurring:
        return Frequency(type=FrequencyType.ONCE)
    return Frequency.from_dict(schedule.frequency)


def parse_frequency(recurring: bool, data: Optional[dict[str, Any]]) -> Frequency:
    """Validate a client frequency record, mapping failures to 400."""
    if not recurring:
        return Frequency(type=FrequencyType.ONCE)
    try:
        freq = Frequency.from_dict(data)
    except (InvalidFrequency, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid frequency: {e}", errors=[{"field": "frequency", "reason": str(e)}])
    if freq.type == FrequencyType.ONCE:
        raise ValidationError(
            "Recurring tasks need a repeating frequency",
            errors=[{"field": "frequency.type", "reason": "once is not recurring"}],
        )
    return freq


def frequency_label(schedule: ScheduledMaintenance) -> str:
    try:
        return describe(schedule.recurring, frequency_of(schedule))
    except InvalidFrequency:
        return "Invalid frequency"


@dataclass
class ScheduleFilters:
    status: Optional[ScheduleStatus] = None
    category: Optional[Category] = None
    property_id: Optional[uuid.UUID] = None
    unit_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    search: Optional[str] = None


class ScheduledMaintenanceService:
    """Lifecycle and recurrence of scheduled maintenance tasks.

    ``actor`` is None for scheduler-driven operations.
    """

    def __init__(
        self,
        db: AsyncSession,
        actor: Optional[Actor],
        audit: AuditService,
        media: Optional[MediaService] = None,
        tz_name: Optional[str] = None,
    ):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.media = media
        self.tz_name = tz_name or settings.app_timezone
        self.authorizer = Authorizer(db)
        self.history = StatusHistory(db)
        self.notifier = NotificationService(db, audit)
        self.comments = CommentService(db, audit, self.notifier)

    @property
    def actor_id(self) -> Optional[uuid.UUID]:
        return self.actor.id if self.actor else None

    async def get(self, schedule_id: uuid.UUID) -> ScheduledMaintenance:
        return await get_item(self.db, EntityKind.SCHEDULED_MAINTENANCE, schedule_id)

    async def authorize(self, schedule: ScheduledMaintenance, action: Action) -> None:
        await self.authorizer.require(self.actor, action, Target.for_item(schedule, EntityKind.SCHEDULED_MAINTENANCE))

    async def get_for(self, schedule_id: uuid.UUID, action: Action = Action.READ) -> ScheduledMaintenance:
        schedule = await self.get(schedule_id)
        await self.authorize(schedule, action)
        return schedule

    async def can_see_internal(self, schedule: ScheduledMaintenance) -> bool:
        return await self.authorizer.is_management(self.actor, schedule.property_id)

    # Create / list / update / delete

    async def create(self, data: dict[str, Any]) -> ScheduledMaintenance:
        property_id = data["property_id"]
        unit_id = data.get("unit_id")
        await check_location(self.db, property_id, unit_id)
        await self.authorizer.require(
            self.actor,
            Action.CREATE,
            Target.for_property(property_id, unit_id, kind=EntityKind.SCHEDULED_MAINTENANCE),
        )
        recurring = bool(data.get("recurring"))
        freq = parse_frequency(recurring, data.get("frequency"))
        scheduled_date: datetime = data["scheduled_date"]
        due = first_due_date(freq, scheduled_date, self.tz_name)
        if due is None:
            raise ValidationError("The frequency produces no occurrence after the scheduled date")
        assignee: Optional[Assignee] = data.get("assignee")
        await check_assignee(self.db, assignee)

        async def op() -> ScheduledMaintenance:
            now = datetime.utcnow()
            schedule = ScheduledMaintenance(
                id=uuid.uuid4(),
                title=data["title"],
                description=data.get("description"),
                category=Category(data.get("category") or Category.SCHEDULED),
                property_id=property_id,
                unit_id=unit_id,
                created_by_id=self.actor_id,
                status=ScheduleStatus.SCHEDULED,
                scheduled_date=scheduled_date,
                recurring=recurring,
                frequency=freq.to_dict(),
                next_due_date=due,
            )
            if assignee is not None:
                schedule.assignee = assignee
                schedule.assigned_by_id = self.actor_id
                schedule.assigned_at = now
            self.db.add(schedule)
            await self.db.flush()
            await self.history.append(
                EntityKind.SCHEDULED_MAINTENANCE, schedule.id, ScheduleStatus.SCHEDULED, self.actor_id, "Task created", now
            )
            await self.audit.log(
                AuditAction.CREATE,
                resource_type=EntityKind.SCHEDULED_MAINTENANCE.value,
                resource_id=schedule.id,
                user_id=self.actor_id,
                new_value={
                    "title": schedule.title,
                    "status": schedule.status,
                    "recurring": recurring,
                    "frequency": schedule.frequency,
                    "next_due_date": due,
                },
            )
            if assignee is not None:
                await self._notify_assignment(schedule)
            return schedule

        schedule = await run_in_transaction(self.db, op)
        logger.info(f"[SCHEDULE] Created scheduled task {schedule.id}, next due {schedule.next_due_date}")
        return schedule

    async def list_schedules(self, filters: ScheduleFilters, page: int = 1, limit: int = 20) -> Page:
        query = select(ScheduledMaintenance).where(ScheduledMaintenance.is_active == True)
        if self.actor.role != GlobalRole.ADMIN:
            clauses = [
                ScheduledMaintenance.created_by_id == self.actor.id,
                and_(
                    ScheduledMaintenance.assigned_to_kind == AssigneeKind.USER,
                    ScheduledMaintenance.assigned_to_id == self.actor.id,
                ),
            ]
            managed = await self.authorizer.managed_property_ids(self.actor)
            if managed:
                clauses.append(ScheduledMaintenance.property_id.in_(managed))
            if self.actor.role == GlobalRole.TENANT:
                units = await self.authorizer.tenant_unit_ids(self.actor)
                if units:
                    clauses.append(ScheduledMaintenance.unit_id.in_(units))
            query = query.where(or_(*clauses))
        if filters.status:
            query = query.where(ScheduledMaintenance.status == filters.status)
        if filters.category:
            query = query.where(ScheduledMaintenance.category == filters.category)
        if filters.property_id:
            query = query.where(ScheduledMaintenance.property_id == filters.property_id)
        if filters.unit_id:
            query = query.where(ScheduledMaintenance.unit_id == filters.unit_id)
        if filters.assigned_to_id:
            query = query.where(ScheduledMaintenance.assigned_to_id == filters.assigned_to_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(
                or_(ScheduledMaintenance.title.ilike(pattern), ScheduledMaintenance.description.ilike(pattern))
            )

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(ScheduledMaintenance.next_due_date.asc()).offset((page - 1) * limit).limit(limit)
        )
        return Page(items=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def update(self, schedule_id: uuid.UUID, changes: dict[str, Any]) -> ScheduledMaintenance:
        async def op() -> ScheduledMaintenance:
            schedule = await self.get_for(schedule_id, Action.UPDATE)
            if schedule.status in CLOSED_STATUSES:
                raise StateError(f"Cannot edit a scheduled task that is {schedule.status.value}")
            old, new = {}, {}
            for field in ("title", "description", "category"):
                if changes.get(field) is not None and getattr(schedule, field) != changes[field]:
                    old[field], new[field] = getattr(schedule, field), changes[field]
                    setattr(schedule, field, changes[field])

            timing_fields = ("scheduled_date", "recurring", "frequency")
            if any(changes.get(f) is not None for f in timing_fields):
                recurring = changes["recurring"] if changes.get("recurring") is not None else schedule.recurring
                raw = changes["frequency"] if changes.get("frequency") is not None else schedule.frequency
                freq = parse_frequency(recurring, raw)
                anchor = changes.get("scheduled_date") or schedule.scheduled_date
                now = datetime.utcnow()
                due = first_due_date(freq, anchor, self.tz_name) if anchor > now else next_due_date(freq, anchor, now, self.tz_name)
                if due is None:
                    raise ValidationError("The frequency produces no further occurrence")
                old["schedule"] = {"scheduled_date": schedule.scheduled_date, "frequency": schedule.frequency}
                schedule.scheduled_date = anchor
                schedule.recurring = recurring
                schedule.frequency = freq.to_dict()
                if schedule.status == ScheduleStatus.PAUSED:
                    schedule.paused_due_date = due
                else:
                    schedule.next_due_date = due
                new["schedule"] = {"scheduled_date": anchor, "frequency": schedule.frequency, "next_due_date": due}

            if new:
                await self.audit.log(
                    AuditAction.UPDATE,
                    resource_type=EntityKind.SCHEDULED_MAINTENANCE.value,
                    resource_id=schedule.id,
                    user_id=self.actor_id,
                    old_value=old,
                    new_value=new,
                )
            return schedule

        return await run_in_transaction(self.db, op)

    async def assign(self, schedule_id: uuid.UUID, assignee: Optional[Assignee]) -> ScheduledMaintenance:
        await check_assignee(self.db, assignee)

        async def op() -> ScheduledMaintenance:
            schedule = await self.get_for(schedule_id, Action.ASSIGN)
            if schedule.status in CLOSED_STATUSES:
                raise StateError(f"Cannot assign a scheduled task that is {schedule.status.value}")
            old = schedule.assignee
            schedule.assignee = assignee
            schedule.assigned_by_id = self.actor_id if assignee else None
            schedule.assigned_at = datetime.utcnow() if assignee else None
            await self.audit.log(
                AuditAction.UPDATE,
                resource_type=EntityKind.SCHEDULED_MAINTENANCE.value,
                resource_id=schedule.id,
                user_id=self.actor_id,
                old_value={"assignee": {"kind": old.kind, "id": old.id} if old else None},
                new_value={"assignee": {"kind": assignee.kind, "id": assignee.id} if assignee else None},
                description="Assignment changed",
            )
            if assignee is not None:
                await self._notify_assignment(schedule)
            return schedule

        return await run_in_transaction(self.db, op)

    async def delete(self, schedule_id: uuid.UUID) -> None:
        released: list[str] = []

        async def op() -> None:
            schedule = await self.get_for(schedule_id, Action.DELETE)
            kind = EntityKind.SCHEDULED_MAINTENANCE
            await self.history.purge(kind, schedule.id)
            await self.comments.purge(kind, schedule.id)
            if self.media is not None:
                released.extend(await self.media.detach_all(kind, schedule.id))
            await self.db.execute(
                delete(Notification).where(Notification.related_kind == kind, Notification.related_id == schedule.id)
            )
            # Generated requests outlive their schedule
            await self.db.execute(
                update(Request)
                .where(Request.generated_from_schedule_id == schedule.id)
                .values(generated_from_schedule_id=None)
                .execution_options(synchronize_session=False)
            )
            await self.audit.log(
                AuditAction.DELETE,
                resource_type=kind.value,
                resource_id=schedule.id,
                user_id=self.actor_id,
                old_value={"title": schedule.title, "status": schedule.status, "property_id": schedule.property_id},
            )
            await self.db.delete(schedule)

        await run_in_transaction(self.db, op)
        if released and self.media is not None:
            await self.media.release(released)
            await self.db.commit()

    # Transitions

    async def _close_series(self, schedule: ScheduledMaintenance, changed_by_id: Optional[uuid.UUID], notes: str, now: datetime) -> None:
        """The series has no further occurrence: settle in ``completed``."""
        old_status = schedule.status
        schedule.status = ScheduleStatus.COMPLETED
        schedule.next_due_date = None
        await self.history.append(EntityKind.SCHEDULED_MAINTENANCE, schedule.id, schedule.status, changed_by_id, notes, now)
        await self.audit.log_transition(
            AuditAction.SCHEDULED_MAINTENANCE_COMPLETED,
            EntityKind.SCHEDULED_MAINTENANCE.value,
            schedule.id,
            changed_by_id,
            old_status,
            schedule.status,
            notes=notes,
        )

    async def apply(
        self,
        schedule: ScheduledMaintenance,
        event: ScheduleEvent,
        changed_by_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
        external_user_identifier: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduledMaintenance:
        """Apply one transition inside the caller's transaction."""
        now = now or datetime.utcnow()
        transition = plan_schedule_transition(schedule.status, event)
        old_status = schedule.status
        kind = EntityKind.SCHEDULED_MAINTENANCE

        if event == ScheduleEvent.PAUSE:
            schedule.paused_due_date = schedule.next_due_date
        elif event == ScheduleEvent.RESUME:
            frozen = schedule.paused_due_date
            if frozen is None:
                frozen = next_due_date(frequency_of(schedule), schedule.scheduled_date, now, self.tz_name) or now
            schedule.next_due_date = max(frozen, now)
            schedule.paused_due_date = None
        elif event == ScheduleEvent.CANCEL:
            schedule.next_due_date = None
            schedule.paused_due_date = None
        elif event == ScheduleEvent.COMPLETE:
            schedule.last_executed_at = now

        schedule.status = transition.target
        await self.history.append(kind, schedule.id, schedule.status, changed_by_id, notes, now)
        await self.audit.log_transition(
            transition.audit_action,
            kind.value,
            schedule.id,
            changed_by_id,
            old_status,
            schedule.status,
            notes=notes,
            external_user_identifier=external_user_identifier,
            details={"event": event},
        )

        if event == ScheduleEvent.COMPLETE:
            if schedule.recurring:
                await self._reschedule(schedule, changed_by_id, now)
            else:
                schedule.next_due_date = None

        await self._notify_transition(schedule, event, changed_by_id)
        return schedule

    async def _reschedule(self, schedule: ScheduledMaintenance, changed_by_id: Optional[uuid.UUID], now: datetime) -> None:
        freq = frequency_of(schedule).consume_occurrence()
        schedule.frequency = freq.to_dict()
        due = next_due_date(freq, schedule.scheduled_date, now, self.tz_name)
        if due is None:
            schedule.next_due_date = None
            return
        schedule.next_due_date = due
        schedule.status = ScheduleStatus.SCHEDULED
        notes = f"Rescheduled for {due.isoformat()}"
        await self.history.append(EntityKind.SCHEDULED_MAINTENANCE, schedule.id, schedule.status, changed_by_id, notes, now)
        await self.audit.log_transition(
            AuditAction.SCHEDULED_MAINTENANCE_RESCHEDULED,
            EntityKind.SCHEDULED_MAINTENANCE.value,
            schedule.id,
            changed_by_id,
            ScheduleStatus.COMPLETED,
            schedule.status,
            notes=notes,
            details={"next_due_date": due},
        )

    async def transition(self, schedule_id: uuid.UUID, event: ScheduleEvent, notes: Optional[str] = None) -> ScheduledMaintenance:
        async def op() -> ScheduledMaintenance:
            schedule = await self.get(schedule_id)
            transition = plan_schedule_transition(schedule.status, event)
            await self.authorize(schedule, transition.permission)
            return await self.apply(schedule, event, self.actor_id, notes)

        schedule = await run_in_transaction(self.db, op)
        logger.info(f"[SCHEDULE] {event.value} on scheduled task {schedule.id} -> {schedule.status.value}")
        return schedule

    async def transition_to(self, schedule_id: uuid.UUID, status: ScheduleStatus, notes: Optional[str] = None) -> ScheduledMaintenance:
        event = STATUS_EVENTS.get(status)
        if event is None:
            raise ValidationError(f"Unsupported target status: {status.value}")
        return await self.transition(schedule_id, event, notes)

    # Materialisation

    async def open_generated_request(self, schedule_id: uuid.UUID) -> Optional[Request]:
        result = await self.db.execute(
            select(Request)
            .where(
                Request.generated_from_schedule_id == schedule_id,
                Request.status.in_(list(OPEN_REQUEST_STATUSES)),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def materialise(
        self,
        schedule: ScheduledMaintenance,
        now: Optional[datetime] = None,
        manual: bool = False,
    ) -> Optional[Request]:
        """Generate the Request for the schedule's current due occurrence.

        Runs inside the caller's transaction. Returns None when the
        occurrence is skipped because an earlier generated request is
        still open.
        """
        now = now or datetime.utcnow()
        due = schedule.next_due_date
        if due is None:
            raise StateError("The scheduled task has no due occurrence")
        freq = frequency_of(schedule)
        kind = EntityKind.SCHEDULED_MAINTENANCE

        open_request = await self.open_generated_request(schedule.id)
        if open_request is not None:
            if manual:
                raise ConflictError("An open request generated from this task already exists")
            next_due = next_due_date(freq, schedule.scheduled_date, max(now, due), self.tz_name)
            schedule.next_due_date = next_due
            await self.audit.log(
                AuditAction.SCHEDULED_MAINTENANCE_OCCURRENCE_SKIPPED,
                resource_type=kind.value,
                resource_id=schedule.id,
                details={"due_date": due, "open_request_id": open_request.id, "next_due_date": next_due},
                description=f"Occurrence {due.isoformat()} skipped: request {open_request.id} still open",
            )
            logger.info(f"[SCHEDULE] Skipped occurrence {due} of {schedule.id}; request {open_request.id} still open")
            if next_due is None:
                await self._close_series(schedule, None, "Series ended", now)
            return None

        request = Request(
            id=uuid.uuid4(),
            title=schedule.title,
            description=schedule.description,
            category=schedule.category,
            priority=Priority.MEDIUM,
            property_id=schedule.property_id,
            unit_id=schedule.unit_id,
            created_by_id=schedule.created_by_id,
            status=RequestStatus.ASSIGNED if schedule.assignee else RequestStatus.NEW,
            generated_from_schedule_id=schedule.id,
            generated_for_due_date=due,
            created_at=now,
        )
        if schedule.assignee is not None:
            request.assignee = schedule.assignee
            request.assigned_by_id = schedule.assigned_by_id
            request.assigned_at = now
        self.db.add(request)
        await self.db.flush()
        await self.history.append(
            EntityKind.REQUEST,
            request.id,
            request.status,
            self.actor_id,
            f"Generated from scheduled maintenance due {due.isoformat()}",
            now,
        )
        if self.media is not None:
            await self.media.clone(kind, schedule.id, EntityKind.REQUEST, request.id)

        schedule.last_executed_at = now
        schedule.last_generated_request_id = request.id

        if freq.type == FrequencyType.ONCE:
            next_due = None
        else:
            freq = freq.consume_occurrence()
            schedule.frequency = freq.to_dict()
            next_due = next_due_date(freq, schedule.scheduled_date, max(now, due), self.tz_name)
        schedule.next_due_date = next_due

        await self.audit.log(
            AuditAction.SCHEDULED_MAINTENANCE_GENERATED_REQUEST,
            resource_type=kind.value,
            resource_id=schedule.id,
            user_id=self.actor_id,
            new_value={"request_id": request.id, "next_due_date": next_due},
            details={"schedule_id": schedule.id, "request_id": request.id, "due_date": due, "manual": manual},
            description=f"Request {request.id} generated from scheduled task {schedule.id}",
        )

        if next_due is None:
            await self._close_series(
                schedule,
                self.actor_id,
                "One-time task generated its request" if freq.type == FrequencyType.ONCE else "Series ended",
                now,
            )

        await self._notify_generated(schedule, request)
        logger.info(f"[SCHEDULE] Materialised request {request.id} from {schedule.id} (due {due}, next {next_due})")
        return request

    async def create_request_from_schedule(self, schedule_id: uuid.UUID) -> Request:
        """Manual materialisation of the current due occurrence."""

        async def op() -> Request:
            schedule = await self.get_for(schedule_id, Action.CREATE)
            if schedule.status not in (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS):
                raise StateError(f"Cannot generate a request from a task that is {schedule.status.value}")
            return await self.materialise(schedule, manual=True)

        return await run_in_transaction(self.db, op)

    # Notifications

    async def _notify_assignment(self, schedule: ScheduledMaintenance) -> None:
        related = Related(EntityKind.SCHEDULED_MAINTENANCE, schedule.id)
        user = await assignee_user(self.db, schedule)
        await self.notifier.notify(
            [user],
            NotificationKind.ASSIGNMENT,
            f"You have been assigned scheduled maintenance: {schedule.title}",
            related=related,
            sender_id=self.actor_id,
        )
        await self.notifier.notify_vendor(
            await assignee_vendor(self.db, schedule),
            NotificationKind.ASSIGNMENT,
            f"Scheduled maintenance assigned: {schedule.title}",
        )

    async def _notify_generated(self, schedule: ScheduledMaintenance, request: Request) -> None:
        related = Related(EntityKind.REQUEST, request.id)
        user = await assignee_user(self.db, request)
        await self.notifier.notify(
            [user],
            NotificationKind.ASSIGNMENT,
            f"Scheduled maintenance is due: {request.title}",
            related=related,
        )
        await self.notifier.notify_vendor(
            await assignee_vendor(self.db, request),
            NotificationKind.REMINDER_DUE,
            f"Scheduled maintenance is due: {request.title}",
        )
        await self.notifier.notify(
            await self.notifier.management_of(schedule.property_id),
            NotificationKind.NEW_REQUEST,
            f"Request generated from scheduled maintenance: {request.title}",
            related=related,
        )

    async def _notify_transition(self, schedule: ScheduledMaintenance, event: ScheduleEvent, sender_id: Optional[uuid.UUID]) -> None:
        if event == ScheduleEvent.CANCEL:
            return
        if event == ScheduleEvent.COMPLETE:
            kind, message = NotificationKind.TASK_COMPLETED, f"Scheduled maintenance \"{schedule.title}\" completed"
        else:
            label = schedule.status.value.replace("_", " ")
            kind, message = NotificationKind.STATUS_UPDATE, f"Scheduled maintenance \"{schedule.title}\" is now {label}"
        await self.notifier.notify(
            await participants(self.notifier, schedule),
            kind,
            message,
            related=Related(EntityKind.SCHEDULED_MAINTENANCE, schedule.id),
            sender_id=sender_id,
        )
