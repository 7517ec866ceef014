import pytest

from app.core.errors import Unauthorized
from app.core.roles import UserRole
from app.core.tenant import ALL_ORGANIZATIONS, apply_tenant_filter, require_tenant_scope, resolve_tenant_context
from app.db import models


def test_system_admin_sees_every_organization(db_session, make_user):
    admin = make_user(role="system_admin")
    context = resolve_tenant_context(db_session, admin)
    assert context.is_system_admin
    assert context.accessible_organization_ids is ALL_ORGANIZATIONS
    assert context.can_access(12345)
    assert not context.is_empty


def test_org_admin_reaches_one_level_of_children(db_session, make_org, make_user):
    root = make_org("Raiz")
    child = make_org("Filha", parent=root)
    grandchild = make_org("Neta", parent=child)
    admin = make_user(role="org_admin", organization=root, managed=root)

    context = resolve_tenant_context(db_session, admin)
    assert context.accessible_organization_ids == frozenset({root.id, child.id})
    assert context.home_organization_id == root.id
    assert not context.can_access(grandchild.id)


def test_member_roles_are_limited_to_their_organization(db_session, make_org, make_user):
    own = make_org("Propria")
    other = make_org("Outra")
    inspector = make_user(role="inspector", organization=own)

    context = resolve_tenant_context(db_session, inspector)
    assert context.accessible_organization_ids == frozenset({own.id})
    assert context.can_access(own.id)
    assert not context.can_access(other.id)
    assert not context.can_access(None)


def test_user_without_organization_has_empty_context(db_session, make_user):
    pending = make_user(role="pending", approval="pending")
    context = resolve_tenant_context(db_session, pending)
    assert context.is_empty
    with pytest.raises(Unauthorized):
        require_tenant_scope(context)


def test_unknown_role_is_treated_as_pending(db_session, make_org, make_user):
    organization = make_org("Org")
    user = make_user(role="superuser", organization=organization)
    context = resolve_tenant_context(db_session, user)
    assert context.role == UserRole.PENDING
    assert not context.is_system_admin


def test_empty_context_filters_every_row(db_session, make_org, make_user, make_inspection):
    organization = make_org("Org")
    inspector = make_user(role="inspector", organization=organization)
    make_inspection(organization, inspector)
    nobody = make_user(role="pending", approval="pending")

    context = resolve_tenant_context(db_session, nobody)
    query = apply_tenant_filter(db_session.query(models.Inspection), context, models.Inspection.organization_id)
    assert query.all() == []


def test_context_snapshot_is_serializable(db_session, make_org, make_user):
    organization = make_org("Org")
    admin = make_user(role="system_admin")
    manager = make_user(role="manager", organization=organization)

    assert resolve_tenant_context(db_session, admin).as_dict()["accessible_organization_ids"] == "all"
    assert resolve_tenant_context(db_session, manager).as_dict()["accessible_organization_ids"] == [organization.id]
