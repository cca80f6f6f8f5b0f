"""
Request and scheduled-task lifecycle rules.
"""

import pytest

from fixit.core.errors import StateError, ValidationError
from fixit.models.enums import RequestStatus, ScheduleStatus
from fixit.services.public_links import public_request_events
from fixit.services.requests import (
    TRANSITIONS,
    RequestEvent,
    event_for_status,
    plan_transition,
    validate_feedback,
)
from fixit.services.scheduled_maintenance import ScheduleEvent, plan_schedule_transition


@pytest.mark.parametrize(
    "current,event,target",
    [
        (RequestStatus.NEW, RequestEvent.ASSIGN, RequestStatus.ASSIGNED),
        (RequestStatus.REOPENED, RequestEvent.ASSIGN, RequestStatus.ASSIGNED),
        (RequestStatus.ASSIGNED, RequestEvent.BEGIN, RequestStatus.IN_PROGRESS),
        (RequestStatus.IN_PROGRESS, RequestEvent.PAUSE, RequestStatus.ON_HOLD),
        (RequestStatus.ON_HOLD, RequestEvent.RESUME, RequestStatus.IN_PROGRESS),
        (RequestStatus.IN_PROGRESS, RequestEvent.FINISH, RequestStatus.COMPLETED),
        (RequestStatus.COMPLETED, RequestEvent.VERIFY, RequestStatus.VERIFIED),
        (RequestStatus.VERIFIED, RequestEvent.REOPEN, RequestStatus.NEW),
        (RequestStatus.VERIFIED, RequestEvent.ARCHIVE, RequestStatus.ARCHIVED),
        (RequestStatus.ON_HOLD, RequestEvent.CANCEL, RequestStatus.CANCELED),
    ],
)
def test_allowed_request_transitions(current, event, target):
    assert plan_transition(current, event).target == target


@pytest.mark.parametrize(
    "current,event",
    [
        (RequestStatus.NEW, RequestEvent.FINISH),
        (RequestStatus.NEW, RequestEvent.BEGIN),
        (RequestStatus.COMPLETED, RequestEvent.CANCEL),
        (RequestStatus.CANCELED, RequestEvent.REOPEN),
        (RequestStatus.ARCHIVED, RequestEvent.ASSIGN),
        (RequestStatus.IN_PROGRESS, RequestEvent.VERIFY),
    ],
)
def test_rejected_request_transitions(current, event):
    with pytest.raises(StateError):
        plan_transition(current, event)


def test_in_progress_depends_on_current_status():
    assert event_for_status(RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS) == RequestEvent.BEGIN
    assert event_for_status(RequestStatus.ON_HOLD, RequestStatus.IN_PROGRESS) == RequestEvent.RESUME


def test_assigned_is_not_a_status_target():
    with pytest.raises(ValidationError):
        event_for_status(RequestStatus.NEW, RequestStatus.ASSIGNED)


def test_only_work_events_are_public():
    public = {event for event, transition in TRANSITIONS.items() if transition.public}
    assert public == {RequestEvent.BEGIN, RequestEvent.RESUME, RequestEvent.FINISH}


class TestPublicRequestEvents:
    def test_complete_from_assigned_passes_through_in_progress(self):
        assert public_request_events(RequestStatus.ASSIGNED, RequestStatus.COMPLETED) == [
            RequestEvent.BEGIN,
            RequestEvent.FINISH,
        ]

    def test_resume_from_hold(self):
        assert public_request_events(RequestStatus.ON_HOLD, RequestStatus.IN_PROGRESS) == [RequestEvent.RESUME]

    def test_verify_is_not_public(self):
        with pytest.raises(StateError):
            public_request_events(RequestStatus.COMPLETED, RequestStatus.VERIFIED)


class TestScheduleTransitions:
    def test_pause_and_resume(self):
        assert plan_schedule_transition(ScheduleStatus.SCHEDULED, ScheduleEvent.PAUSE).target == ScheduleStatus.PAUSED
        assert plan_schedule_transition(ScheduleStatus.PAUSED, ScheduleEvent.RESUME).target == ScheduleStatus.SCHEDULED

    def test_canceled_is_final(self):
        for event in ScheduleEvent:
            with pytest.raises(StateError):
                plan_schedule_transition(ScheduleStatus.CANCELED, event)

    def test_paused_task_cannot_begin(self):
        with pytest.raises(StateError):
            plan_schedule_transition(ScheduleStatus.PAUSED, ScheduleEvent.BEGIN)


@pytest.mark.parametrize("rating", [0, 6, "five", None])
def test_feedback_rating_must_be_one_to_five(rating):
    with pytest.raises(ValidationError):
        validate_feedback(rating, "ok")


def test_feedback_comment_is_trimmed():
    assert validate_feedback("5", "  great  ") == {"rating": 5, "comment": "great"}
    assert validate_feedback(3, "   ") == {"rating": 3, "comment": None}
