"""
Authorization resolver tests. ``decide`` is pure, so no database is needed.
"""

import uuid
from types import SimpleNamespace

import pytest

from fixit.models.assignable import Assignee
from fixit.models.enums import AssigneeKind, EntityKind, GlobalRole, PropertyRole
from fixit.services.authorization import (
    NO_ACCESS,
    Action,
    Actor,
    PropertyAccess,
    Target,
    decide,
)

PROPERTY_ID = uuid.uuid4()
UNIT_A = uuid.uuid4()
UNIT_B = uuid.uuid4()


def actor(role: GlobalRole = GlobalRole.TENANT) -> Actor:
    return Actor(id=uuid.uuid4(), role=role)


def request_target(unit_id=UNIT_A, created_by_id=None, assignee=None) -> Target:
    return Target(
        kind=EntityKind.REQUEST,
        property_id=PROPERTY_ID,
        unit_id=unit_id,
        created_by_id=created_by_id,
        assignee=assignee,
    )


def tenant_of(*units) -> PropertyAccess:
    return PropertyAccess(roles=frozenset({PropertyRole.TENANT}), tenant_unit_ids=frozenset(units))


MANAGER_ACCESS = PropertyAccess(roles=frozenset({PropertyRole.PROPERTY_MANAGER}))


def test_anonymous_is_denied():
    assert not decide(None, Action.READ, request_target())


def test_unknown_action_is_denied():
    decision = decide(actor(GlobalRole.ADMIN), "teleport", request_target())
    assert not decision
    assert "Unknown action" in decision.reason


class TestAdmin:
    def test_admin_allowed_everywhere(self):
        assert decide(actor(GlobalRole.ADMIN), Action.DELETE, request_target())

    def test_admin_cannot_demote_self(self):
        admin = actor(GlobalRole.ADMIN)
        target = Target(kind=EntityKind.USER, user_id=admin.id, user_role=GlobalRole.ADMIN, new_role=GlobalRole.TENANT)
        assert not decide(admin, Action.CHANGE_ROLE, target)

    @pytest.mark.parametrize("role", [GlobalRole.ADMIN, GlobalRole.LANDLORD, GlobalRole.PROPERTY_MANAGER])
    def test_admin_cannot_delete_protected_users(self, role):
        target = Target(kind=EntityKind.USER, user_id=uuid.uuid4(), user_role=role)
        assert not decide(actor(GlobalRole.ADMIN), Action.DELETE_USER, target)

    def test_admin_can_delete_tenant(self):
        target = Target(kind=EntityKind.USER, user_id=uuid.uuid4(), user_role=GlobalRole.TENANT)
        assert decide(actor(GlobalRole.ADMIN), Action.DELETE_USER, target)


class TestManagement:
    @pytest.mark.parametrize("action", [Action.DELETE, Action.ASSIGN, Action.ENABLE_PUBLIC_LINK, Action.COMMENT_INTERNAL])
    def test_manager_holds_management_actions(self, action):
        assert decide(actor(GlobalRole.PROPERTY_MANAGER), action, request_target(), MANAGER_ACCESS)

    def test_global_role_without_grant_is_not_enough(self):
        assert not decide(actor(GlobalRole.PROPERTY_MANAGER), Action.ASSIGN, request_target(), NO_ACCESS)

    def test_admin_access_grant_counts_as_management(self):
        access = PropertyAccess(roles=frozenset({PropertyRole.ADMIN_ACCESS}))
        assert decide(actor(GlobalRole.VENDOR), Action.ASSIGN, request_target(), access)

    def test_management_never_gets_admin_only_actions(self):
        assert not decide(actor(GlobalRole.LANDLORD), Action.READ_AUDIT_LOG, request_target(), MANAGER_ACCESS)

    def test_manager_approves_user_scoped_to_managed_property(self):
        pending = SimpleNamespace(id=uuid.uuid4(), role=GlobalRole.TENANT)
        scoped = Target.for_user(pending, property_id=PROPERTY_ID)
        assert decide(actor(GlobalRole.PROPERTY_MANAGER), Action.APPROVE_USER, scoped, MANAGER_ACCESS)
        assert not decide(actor(GlobalRole.PROPERTY_MANAGER), Action.APPROVE_USER, Target.for_user(pending), NO_ACCESS)

    @pytest.mark.parametrize("action", [Action.EXPORT_REPORT, Action.INVITE_USER])
    def test_reports_and_invites_need_management(self, action):
        target = Target.for_property(PROPERTY_ID)
        assert decide(actor(GlobalRole.LANDLORD), action, target, MANAGER_ACCESS)
        assert not decide(actor(GlobalRole.TENANT), action, target, tenant_of(UNIT_A))


class TestRelationships:
    def test_creator_can_update_but_not_delete(self):
        me = actor()
        target = request_target(created_by_id=me.id)
        assert decide(me, Action.UPDATE, target)
        assert not decide(me, Action.DELETE, target)

    def test_user_assignee_can_transition(self):
        me = actor(GlobalRole.VENDOR)
        target = request_target(assignee=Assignee(AssigneeKind.USER, me.id))
        assert decide(me, Action.TRANSITION_STATUS, target)
        assert not decide(me, Action.ASSIGN, target)

    def test_vendor_assignee_grants_nothing_to_users(self):
        me = actor(GlobalRole.VENDOR)
        target = request_target(assignee=Assignee(AssigneeKind.VENDOR, me.id))
        assert not decide(me, Action.TRANSITION_STATUS, target)

    def test_tenant_reads_own_unit(self):
        assert decide(actor(), Action.READ, request_target(UNIT_A), tenant_of(UNIT_A))

    def test_tenant_cannot_read_other_unit(self):
        assert not decide(actor(), Action.READ, request_target(UNIT_B), tenant_of(UNIT_A))

    def test_tenant_cannot_delete_even_own_unit(self):
        decision = decide(actor(), Action.DELETE, request_target(UNIT_A), tenant_of(UNIT_A))
        assert not decision
        assert decision.reason == "Property management privileges required"


class TestSelfScoped:
    def test_own_profile(self):
        me = actor()
        assert decide(me, Action.EDIT_OWN_PROFILE, Target(kind=EntityKind.USER, user_id=me.id))

    def test_other_profile(self):
        assert not decide(actor(), Action.EDIT_OWN_PROFILE, Target(kind=EntityKind.USER, user_id=uuid.uuid4()))
