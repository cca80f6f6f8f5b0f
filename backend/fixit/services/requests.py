"""Maintenance request engine.

State machine (``reopened`` rows from older data behave like ``new``):

    new/reopened --assign--> assigned             management
    new/reopened/assigned --unassign--> new       management
    new/assigned/in_progress/on_hold --cancel--> canceled
    assigned --begin--> in_progress               assignee, management, public link
    assigned/in_progress --pause--> on_hold       assignee, management
    on_hold --resume--> in_progress               assignee, management, public link
    in_progress --finish--> completed             assignee, management, public link
    completed --verify--> verified                requester, management
    completed/verified --reopen--> new            management
    verified --archive--> archived                management

Every transition appends one status-history row and one audit entry in the
same transaction as the state change.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.database import run_in_transaction
from fixit.core.errors import StateError, ValidationError
from fixit.models.assignable import Assignee
from fixit.models.enums import (
    AssigneeKind,
    AuditAction,
    Category,
    EntityKind,
    GlobalRole,
    NotificationKind,
    Priority,
    RequestStatus,
    SILENT_REQUEST_STATUSES,
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

logger = logging.getLogger(__name__)


class RequestEvent(str, Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    CANCEL = "cancel"
    BEGIN = "begin"
    PAUSE = "pause"
    RESUME = "resume"
    FINISH = "finish"
    VERIFY = "verify"
    REOPEN = "reopen"
    ARCHIVE = "archive"


NEW_LIKE = frozenset({RequestStatus.NEW, RequestStatus.REOPENED})


@dataclass(frozen=True)
class Transition:
    sources: frozenset
    target: RequestStatus
    audit_action: AuditAction
    permission: Action
    public: bool = False


TRANSITIONS: dict[RequestEvent, Transition] = {
    RequestEvent.ASSIGN: Transition(
        NEW_LIKE | {RequestStatus.ASSIGNED},
        RequestStatus.ASSIGNED,
        AuditAction.REQUEST_ASSIGNED,
        Action.ASSIGN,
    ),
    RequestEvent.UNASSIGN: Transition(
        NEW_LIKE | {RequestStatus.ASSIGNED},
        RequestStatus.NEW,
        AuditAction.REQUEST_UNASSIGNED,
        Action.ASSIGN,
    ),
    RequestEvent.CANCEL: Transition(
        NEW_LIKE | {RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS, RequestStatus.ON_HOLD},
        RequestStatus.CANCELED,
        AuditAction.REQUEST_CANCELED,
        Action.CANCEL,
    ),
    RequestEvent.BEGIN: Transition(
        frozenset({RequestStatus.ASSIGNED}),
        RequestStatus.IN_PROGRESS,
        AuditAction.REQUEST_STARTED,
        Action.TRANSITION_STATUS,
        public=True,
    ),
    RequestEvent.PAUSE: Transition(
        frozenset({RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS}),
        RequestStatus.ON_HOLD,
        AuditAction.REQUEST_PAUSED,
        Action.TRANSITION_STATUS,
    ),
    RequestEvent.RESUME: Transition(
        frozenset({RequestStatus.ON_HOLD}),
        RequestStatus.IN_PROGRESS,
        AuditAction.REQUEST_RESUMED,
        Action.TRANSITION_STATUS,
        public=True,
    ),
    RequestEvent.FINISH: Transition(
        frozenset({RequestStatus.IN_PROGRESS}),
        RequestStatus.COMPLETED,
        AuditAction.REQUEST_COMPLETED,
        Action.TRANSITION_STATUS,
        public=True,
    ),
    RequestEvent.VERIFY: Transition(
        frozenset({RequestStatus.COMPLETED}),
        RequestStatus.VERIFIED,
        AuditAction.REQUEST_VERIFIED,
        Action.VERIFY,
    ),
    RequestEvent.REOPEN: Transition(
        frozenset({RequestStatus.COMPLETED, RequestStatus.VERIFIED}),
        RequestStatus.NEW,
        AuditAction.REQUEST_REOPENED,
        Action.REOPEN,
    ),
    RequestEvent.ARCHIVE: Transition(
        frozenset({RequestStatus.VERIFIED}),
        RequestStatus.ARCHIVED,
        AuditAction.REQUEST_ARCHIVED,
        Action.ARCHIVE,
    ),
}

# Requested target status -> event (in_progress depends on the current status)
STATUS_EVENTS: dict[RequestStatus, RequestEvent] = {
    RequestStatus.CANCELED: RequestEvent.CANCEL,
    RequestStatus.ON_HOLD: RequestEvent.PAUSE,
    RequestStatus.COMPLETED: RequestEvent.FINISH,
    RequestStatus.VERIFIED: RequestEvent.VERIFY,
    RequestStatus.ARCHIVED: RequestEvent.ARCHIVE,
    RequestStatus.NEW: RequestEvent.REOPEN,
    RequestStatus.REOPENED: RequestEvent.REOPEN,
}

TERMINAL_FOR_EDITS = frozenset({RequestStatus.CANCELED, RequestStatus.ARCHIVED})


def plan_transition(current: RequestStatus, event: RequestEvent) -> Transition:
    """Return the transition for ``event`` or raise StateError."""
    transition = TRANSITIONS[event]
    if current not in transition.sources:
        raise StateError(f"Cannot {event.value} a request that is {current.value}")
    return transition


def event_for_status(current: RequestStatus, requested: RequestStatus) -> RequestEvent:
    """Map a requested target status onto the event that reaches it."""
    if requested == RequestStatus.IN_PROGRESS:
        return RequestEvent.RESUME if current == RequestStatus.ON_HOLD else RequestEvent.BEGIN
    if requested == RequestStatus.ASSIGNED:
        raise ValidationError("Use the assign operation to assign a request")
    event = STATUS_EVENTS.get(requested)
    if event is None:
        raise ValidationError(f"Unsupported target status: {requested.value}")
    return event


def validate_feedback(rating: Any, comment: Optional[str]) -> dict[str, Any]:
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be an integer", errors=[{"field": "rating", "reason": "invalid"}])
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", errors=[{"field": "rating", "reason": "out of range"}])
    return {"rating": rating, "comment": (comment or "").strip() or None}


@dataclass
class RequestFilters:
    status: Optional[RequestStatus] = None
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    property_id: Optional[uuid.UUID] = None
    unit_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    include_inactive: bool = False


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class RequestService:
    """Lifecycle of one-shot maintenance requests."""

    def __init__(
        self,
        db: AsyncSession,
        actor: Optional[Actor],
        audit: AuditService,
        media: Optional[MediaService] = None,
    ):
        self.db = db
        self.actor = actor
        self.audit = audit
        self.media = media
        self.authorizer = Authorizer(db)
        self.history = StatusHistory(db)
        self.notifier = NotificationService(db, audit)
        self.comments = CommentService(db, audit, self.notifier)

    # Loading and authorization

    async def get(self, request_id: uuid.UUID) -> Request:
        return await get_item(self.db, EntityKind.REQUEST, request_id)

    async def authorize(self, request: Request, action: Action) -> None:
        await self.authorizer.require(self.actor, action, Target.for_item(request, EntityKind.REQUEST))

    async def get_for(self, request_id: uuid.UUID, action: Action = Action.READ) -> Request:
        request = await self.get(request_id)
        await self.authorize(request, action)
        return request

    async def can_see_internal(self, request: Request) -> bool:
        return await self.authorizer.is_management(self.actor, request.property_id)

    # Create / list / update / delete

    async def create(self, data: dict[str, Any]) -> Request:
        property_id = data["property_id"]
        unit_id = data.get("unit_id")
        await check_location(self.db, property_id, unit_id)
        await self.authorizer.require(
            self.actor,
            Action.CREATE_REQUEST,
            Target.for_property(property_id, unit_id, kind=EntityKind.REQUEST),
        )

        async def op() -> Request:
            now = datetime.utcnow()
            request = Request(
                id=uuid.uuid4(),
                title=data["title"],
                description=data.get("description"),
                category=Category(data["category"]),
                priority=Priority(data.get("priority") or Priority.MEDIUM),
                property_id=property_id,
                unit_id=unit_id,
                created_by_id=self.actor.id,
                status=RequestStatus.NEW,
                created_at=now,
            )
            self.db.add(request)
            await self.db.flush()
            await self.history.append(EntityKind.REQUEST, request.id, RequestStatus.NEW, self.actor.id, "Request created", now)
            await self.audit.log(
                AuditAction.CREATE,
                resource_type=EntityKind.REQUEST.value,
                resource_id=request.id,
                user_id=self.actor.id,
                new_value={
                    "title": request.title,
                    "category": request.category,
                    "priority": request.priority,
                    "status": request.status,
                    "property_id": property_id,
                    "unit_id": unit_id,
                },
            )
            await self.notifier.notify(
                await self.notifier.management_of(property_id),
                NotificationKind.NEW_REQUEST,
                f"New maintenance request: {request.title}",
                related=Related(EntityKind.REQUEST, request.id),
                sender_id=self.actor.id,
            )
            return request

        request = await run_in_transaction(self.db, op)
        logger.info(f"[REQUEST] Created request {request.id} on property {property_id}")
        return request

    async def _visibility_clause(self):
        if self.actor.role == GlobalRole.ADMIN:
            return None
        clauses = [
            Request.created_by_id == self.actor.id,
            and_(Request.assigned_to_kind == AssigneeKind.USER, Request.assigned_to_id == self.actor.id),
        ]
        managed = await self.authorizer.managed_property_ids(self.actor)
        if managed:
            clauses.append(Request.property_id.in_(managed))
        if self.actor.role == GlobalRole.TENANT:
            units = await self.authorizer.tenant_unit_ids(self.actor)
            if units:
                clauses.append(Request.unit_id.in_(units))
        return or_(*clauses)

    async def list_requests(self, filters: RequestFilters, page: int = 1, limit: int = 20) -> Page:
        query = select(Request)
        visibility = await self._visibility_clause()
        if visibility is not None:
            query = query.where(visibility)
        if not filters.include_inactive:
            query = query.where(Request.is_active == True)
        if filters.status:
            query = query.where(Request.status == filters.status)
        if filters.category:
            query = query.where(Request.category == filters.category)
        if filters.priority:
            query = query.where(Request.priority == filters.priority)
        if filters.property_id:
            query = query.where(Request.property_id == filters.property_id)
        if filters.unit_id:
            query = query.where(Request.unit_id == filters.unit_id)
        if filters.assigned_to_id:
            query = query.where(Request.assigned_to_id == filters.assigned_to_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(or_(Request.title.ilike(pattern), Request.description.ilike(pattern)))
        if filters.date_from:
            query = query.where(Request.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(Request.created_at <= filters.date_to)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(Request.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return Page(items=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def update(self, request_id: uuid.UUID, changes: dict[str, Any]) -> Request:
        async def op() -> Request:
            request = await self.get_for(request_id, Action.UPDATE)
            if request.status in TERMINAL_FOR_EDITS:
                raise StateError(f"Cannot edit a request that is {request.status.value}")
            old, new = {}, {}
            for field in ("title", "description", "category", "priority"):
                if field in changes and changes[field] is not None and getattr(request, field) != changes[field]:
                    old[field] = getattr(request, field)
                    new[field] = changes[field]
                    setattr(request, field, changes[field])
            if new:
                await self.audit.log(
                    AuditAction.UPDATE,
                    resource_type=EntityKind.REQUEST.value,
                    resource_id=request.id,
                    user_id=self.actor.id,
                    old_value=old,
                    new_value=new,
                )
            return request

        return await run_in_transaction(self.db, op)

    async def delete(self, request_id: uuid.UUID) -> None:
        """Hard delete with cascade of history, comments, media and notifications."""
        released: list[str] = []

        async def op() -> None:
            request = await self.get_for(request_id, Action.DELETE)
            await self.history.purge(EntityKind.REQUEST, request.id)
            await self.comments.purge(EntityKind.REQUEST, request.id)
            if self.media is not None:
                released.extend(await self.media.detach_all(EntityKind.REQUEST, request.id))
            await self.db.execute(
                delete(Notification).where(
                    Notification.related_kind == EntityKind.REQUEST,
                    Notification.related_id == request.id,
                )
            )
            await self.db.execute(
                update(ScheduledMaintenance)
                .where(ScheduledMaintenance.last_generated_request_id == request.id)
                .values(last_generated_request_id=None)
                .execution_options(synchronize_session=False)
            )
            await self.audit.log(
                AuditAction.DELETE,
                resource_type=EntityKind.REQUEST.value,
                resource_id=request.id,
                user_id=self.actor.id,
                old_value={"title": request.title, "status": request.status, "property_id": request.property_id},
            )
            await self.db.delete(request)

        await run_in_transaction(self.db, op)
        logger.info(f"[REQUEST] Deleted request {request_id} ({len(released)} media)")

        if released and self.media is not None:
            await self.media.release(released)
            await self.db.commit()

    # Transitions

    async def apply(
        self,
        request: Request,
        event: RequestEvent,
        changed_by_id: Optional[uuid.UUID],
        notes: Optional[str] = None,
        external_user_identifier: Optional[str] = None,
        assignee: Optional[Assignee] = None,
        feedback: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Request:
        """Apply one transition inside the caller's transaction.

        Authorization is the caller's job; this enforces the state matrix,
        writes the history row and the audit entry, and notifies.
        """
        now = now or datetime.utcnow()
        transition = plan_transition(request.status, event)
        old_status = request.status
        old_assignee = request.assignee

        if event == RequestEvent.ASSIGN:
            if assignee is None:
                raise ValidationError("An assignee is required", errors=[{"field": "assignee", "reason": "required"}])
            request.assignee = assignee
            request.assigned_by_id = changed_by_id
            request.assigned_at = now
        elif event == RequestEvent.UNASSIGN:
            request.assignee = None
            request.assigned_by_id = None
            request.assigned_at = None
        elif event == RequestEvent.FINISH:
            if request.resolved_at is None:
                request.resolved_at = now
            vendor = await assignee_vendor(self.db, request)
            if vendor is not None:
                vendor.total_jobs_completed = (vendor.total_jobs_completed or 0) + 1
        elif event == RequestEvent.REOPEN:
            request.resolved_at = None
        elif event == RequestEvent.VERIFY and feedback is not None:
            await self._attach_feedback(request, feedback, changed_by_id, now)

        request.status = transition.target
        await self.history.append(EntityKind.REQUEST, request.id, request.status, changed_by_id, notes, now)

        old_value: dict[str, Any] = {"status": old_status}
        new_value: dict[str, Any] = {"status": request.status}
        if event in (RequestEvent.ASSIGN, RequestEvent.UNASSIGN):
            old_value["assignee"] = _assignee_dict(old_assignee)
            new_value["assignee"] = _assignee_dict(request.assignee)
        await self.audit.log(
            transition.audit_action,
            resource_type=EntityKind.REQUEST.value,
            resource_id=request.id,
            user_id=changed_by_id,
            old_value=old_value,
            new_value=new_value,
            details={"event": event, **({"notes": notes} if notes else {})},
            external_user_identifier=external_user_identifier,
            description=f"Request {request.id} moved from {old_status.value} to {request.status.value}",
        )

        await self._notify_transition(request, event, changed_by_id)
        return request

    async def transition(
        self,
        request_id: uuid.UUID,
        event: RequestEvent,
        notes: Optional[str] = None,
        assignee: Optional[Assignee] = None,
        feedback: Optional[dict[str, Any]] = None,
    ) -> Request:
        """Authorised transition on behalf of the current actor."""
        if feedback is not None and event != RequestEvent.VERIFY:
            raise ValidationError("Feedback can only be attached when verifying")

        async def op() -> Request:
            request = await self.get(request_id)
            transition = plan_transition(request.status, event)
            await self.authorize(request, transition.permission)
            if assignee is not None:
                await check_assignee(self.db, assignee)
            return await self.apply(
                request,
                event,
                self.actor.id,
                notes=notes,
                assignee=assignee,
                feedback=feedback,
            )

        request = await run_in_transaction(self.db, op)
        logger.info(f"[REQUEST] {event.value} on request {request.id} -> {request.status.value}")
        return request

    async def transition_to(self, request_id: uuid.UUID, status: RequestStatus, notes: Optional[str] = None, feedback=None) -> Request:
        request = await self.get(request_id)
        return await self.transition(request_id, event_for_status(request.status, status), notes, feedback=feedback)

    async def assign(self, request_id: uuid.UUID, assignee: Optional[Assignee], notes: Optional[str] = None) -> Request:
        if assignee is None:
            return await self.transition(request_id, RequestEvent.UNASSIGN, notes)
        return await self.transition(request_id, RequestEvent.ASSIGN, notes, assignee=assignee)

    async def _attach_feedback(
        self,
        request: Request,
        feedback: dict[str, Any],
        submitted_by: Optional[uuid.UUID],
        now: datetime,
    ) -> None:
        request.feedback = {
            **feedback,
            "submitted_by": str(submitted_by) if submitted_by else None,
            "submitted_at": now.isoformat(),
        }
        vendor = await assignee_vendor(self.db, request)
        if vendor is not None:
            vendor.record_rating(feedback["rating"])
        await self.audit.log(
            AuditAction.FEEDBACK_SUBMITTED,
            resource_type=EntityKind.REQUEST.value,
            resource_id=request.id,
            user_id=submitted_by,
            new_value={"rating": feedback["rating"]},
        )

    async def submit_feedback(self, request_id: uuid.UUID, rating: Any, comment: Optional[str]) -> Request:
        """Feedback on an already verified request."""
        feedback = validate_feedback(rating, comment)

        async def op() -> Request:
            request = await self.get_for(request_id, Action.SUBMIT_FEEDBACK)
            if request.status != RequestStatus.VERIFIED:
                raise StateError("Feedback can only be submitted on a verified request")
            await self._attach_feedback(request, feedback, self.actor.id, datetime.utcnow())
            return request

        return await run_in_transaction(self.db, op)

    # Notifications

    async def _notify_transition(self, request: Request, event: RequestEvent, sender_id: Optional[uuid.UUID]) -> None:
        if request.status in SILENT_REQUEST_STATUSES:
            return
        related = Related(EntityKind.REQUEST, request.id)
        label = request.status.value.replace("_", " ")

        if event == RequestEvent.ASSIGN:
            user = await assignee_user(self.db, request)
            await self.notifier.notify(
                [user],
                NotificationKind.ASSIGNMENT,
                f"You have been assigned: {request.title}",
                related=related,
                sender_id=sender_id,
            )
            vendor = await assignee_vendor(self.db, request)
            if vendor is not None:
                await self.notifier.notify_vendor(
                    vendor,
                    NotificationKind.ASSIGNMENT,
                    f"New job assigned: {request.title}",
                )
            recipients = await participants(self.notifier, request, management=False, assignee=False)
            await self.notifier.notify(
                recipients,
                NotificationKind.STATUS_UPDATE,
                f"Your request \"{request.title}\" has been assigned",
                related=related,
                sender_id=sender_id,
            )
            return

        if event == RequestEvent.FINISH:
            kind, message = NotificationKind.TASK_COMPLETED, f"\"{request.title}\" has been completed"
        elif event == RequestEvent.VERIFY:
            kind, message = NotificationKind.TASK_VERIFIED, f"\"{request.title}\" has been verified"
        else:
            kind, message = NotificationKind.STATUS_UPDATE, f"\"{request.title}\" is now {label}"
        await self.notifier.notify(
            await participants(self.notifier, request),
            kind,
            message,
            related=related,
            sender_id=sender_id,
        )


def _assignee_dict(assignee: Optional[Assignee]) -> Optional[dict[str, Any]]:
    if assignee is None:
        return None
    return {"kind": assignee.kind, "id": assignee.id}
