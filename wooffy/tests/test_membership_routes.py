from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from wooffy.app.memberships import LifecycleState, PlanKey
from wooffy.app.memberships.reminders import ExpiryReminderService
from wooffy.app.memberships.verification import MemberVerifier, VerificationStatus
from wooffy.app.routes import admin_memberships as admin_routes
from wooffy.app.routes import memberships as membership_routes
from wooffy.app.schemas.memberships import (
    ChangePlanRequest,
    CreateMembershipRequest,
    MembershipActiveRequest,
    PromoGrantCreateRequest,
    PromoGrantExtendRequest,
    RenewMembershipRequest,
)


@pytest.fixture
def wired(membership_components, monkeypatch):
    store, engine, administrator, notifier, roles = membership_components
    monkeypatch.setattr(membership_routes, "get_lifecycle_engine", lambda: engine)
    monkeypatch.setattr(membership_routes, "get_member_verifier", lambda: MemberVerifier(engine=engine))
    monkeypatch.setattr(admin_routes, "get_lifecycle_engine", lambda: engine)
    monkeypatch.setattr(admin_routes, "get_grant_administrator", lambda: administrator)
    monkeypatch.setattr(
        admin_routes,
        "get_reminder_service",
        lambda: ExpiryReminderService(engine=engine, notifier=notifier),
    )
    return store, engine, administrator, notifier


def test_list_plans_returns_catalog():
    response = membership_routes.get_plans()

    assert [plan.key for plan in response.plans] == [PlanKey.SINGLE, PlanKey.DUO, PlanKey.FAMILY]
    assert response.plans[2].display_name == "Pack Leader"


def test_create_and_read_own_membership(wired):
    user = SimpleNamespace(id="owner-1", roles=[])

    created = membership_routes.create_membership(CreateMembershipRequest(planId="duo"), current_user=user)
    status = membership_routes.get_my_membership(current_user=user)

    assert created.member_number == "WF-2025-1"
    assert created.effective_status.value == "active"
    assert status.state == LifecycleState.ACTIVE
    assert status.has_membership
    assert status.membership.id == created.id


def test_my_membership_without_record(wired):
    status = membership_routes.get_my_membership(current_user=SimpleNamespace(id="nobody"))

    assert status.state == LifecycleState.NO_MEMBERSHIP
    assert status.membership is None


def test_second_create_on_other_plan_returns_conflict(wired):
    user = SimpleNamespace(id="owner-1")
    membership_routes.create_membership(CreateMembershipRequest(planId="duo"), current_user=user)

    with pytest.raises(HTTPException) as excinfo:
        membership_routes.create_membership(CreateMembershipRequest(planId="family"), current_user=user)

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["error"] == "membership_already_active"
    assert excinfo.value.detail["plan"] == "duo"


def test_unknown_plan_returns_not_found(wired):
    with pytest.raises(HTTPException) as excinfo:
        membership_routes.create_membership(
            CreateMembershipRequest(planId="platinum"),
            current_user=SimpleNamespace(id="owner-1"),
        )

    assert excinfo.value.status_code == 404


def test_downgrade_over_quota_reports_excess(wired):
    store, engine, *_ = wired
    user = SimpleNamespace(id="owner-1")
    membership = engine.create("owner-1", "family")
    store.seed_pets(membership.id, 3)

    with pytest.raises(HTTPException) as excinfo:
        membership_routes.change_plan(membership.id, ChangePlanRequest(planId="single"), current_user=user)

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["error"] == "quota_exceeded"
    assert excinfo.value.detail["excess"] == 2


def test_cannot_manage_someone_elses_membership(wired):
    _, engine, *_ = wired
    membership = engine.create("owner-1", "duo")

    with pytest.raises(HTTPException) as excinfo:
        membership_routes.renew_membership(
            membership.id,
            RenewMembershipRequest(),
            current_user=SimpleNamespace(id="owner-2"),
        )

    assert excinfo.value.status_code == 403


def test_renew_and_reactivate_routes(wired, clock):
    _, engine, *_ = wired
    user = SimpleNamespace(id="owner-1")
    membership = engine.create("owner-1", "duo")
    clock.advance(days=400)

    reactivated = membership_routes.reactivate_membership(membership.id, current_user=user)
    renewed = membership_routes.renew_membership(membership.id, None, current_user=user)

    assert reactivated.effective_status.value == "active"
    assert renewed.expires_at == reactivated.expires_at + engine.term


def test_verify_route(wired):
    _, engine, *_ = wired
    membership = engine.create("owner-1", "single")

    response = membership_routes.verify_member(membership.member_number, current_user=SimpleNamespace(id="shop"))

    assert response.status == VerificationStatus.VALID
    assert response.plan_key == PlanKey.SINGLE


def test_admin_routes_require_admin_role():
    with pytest.raises(HTTPException) as excinfo:
        admin_routes._require_admin(current_user=SimpleNamespace(id="owner-1", roles=["member"]))

    assert excinfo.value.status_code == 403


def test_admin_grant_extend_revoke_flow(wired):
    store, *_ = wired
    admin = SimpleNamespace(id="admin-1", roles=["admin"])

    granted = admin_routes.create_promo_grant(
        PromoGrantCreateRequest(ownerId="owner-9", planId="duo", reason="partner", months=2, notes="Vet clinic"),
        current_user=admin,
    )
    extended = admin_routes.extend_promo_grant(
        granted.id,
        PromoGrantExtendRequest(extraMonths=1, planId="family"),
        current_user=admin,
    )
    response = admin_routes.revoke_promo_grant(granted.id, current_user=admin)

    assert granted.granted_by == "admin-1"
    assert extended.expires_at > granted.expires_at
    assert response.status_code == 204
    assert granted.id not in store.promo_grants
    assert not store.memberships[granted.membership_id].is_active


def test_admin_grant_for_active_member_is_conflict(wired):
    _, engine, *_ = wired
    engine.create("owner-1", "duo")

    with pytest.raises(HTTPException) as excinfo:
        admin_routes.create_promo_grant(
            PromoGrantCreateRequest(ownerId="owner-1", planId="duo", reason="gift", months=1),
            current_user=SimpleNamespace(id="admin-1", roles=["admin"]),
        )

    assert excinfo.value.status_code == 409
    assert "Extend it instead" in excinfo.value.detail["message"]


def test_admin_reminder_sweep_route(wired, clock):
    _, engine, *_ = wired
    engine.create("owner-1", "duo")
    clock.advance(days=360)

    response = admin_routes.send_expiry_reminders(current_user=SimpleNamespace(id="admin-1", roles=["admin"]))

    assert response.sent == 1
    assert response.failed == []


def test_admin_lists_expiring_memberships(wired, clock):
    _, engine, *_ = wired
    soon = engine.create("owner-1", "duo")
    clock.advance(days=60)
    engine.create("owner-2", "single")
    clock.advance(days=300)

    response = admin_routes.list_expiring_memberships(
        days=30,
        current_user=SimpleNamespace(id="admin-1", roles=["admin"]),
    )

    assert response.within_days == 30
    assert [item.id for item in response.memberships] == [soon.id]
    assert response.memberships[0].days_left == 5


def test_admin_toggles_membership_active_flag(wired):
    store, engine, *_ = wired
    admin = SimpleNamespace(id="admin-1", roles=["admin"])
    membership = engine.create("owner-1", "duo")

    deactivated = admin_routes.set_membership_active(
        membership.id, MembershipActiveRequest(isActive=False), current_user=admin
    )

    assert not deactivated.is_active
    assert deactivated.effective_status.value == "expired"
    assert not store.memberships[membership.id].is_active

    restored = admin_routes.set_membership_active(
        membership.id, MembershipActiveRequest(isActive=True), current_user=admin
    )
    assert restored.effective_status.value == "active"


def test_admin_toggle_for_unknown_membership_is_not_found(wired):
    with pytest.raises(HTTPException) as excinfo:
        admin_routes.set_membership_active(
            "missing",
            MembershipActiveRequest(isActive=False),
            current_user=SimpleNamespace(id="admin-1", roles=["admin"]),
        )

    assert excinfo.value.status_code == 404


def test_http_session_cookie_controls_access(wired):
    from wooffy import main

    client = TestClient(main.app)

    plans = client.get("/api/memberships/plans")
    assert plans.status_code == 200
    assert plans.json()["plans"][0]["displayName"] == "Solo Paw"

    anonymous = client.post("/api/memberships", json={"planId": "duo"})
    assert anonymous.status_code == 401

    client.cookies.set(membership_routes._SESSION_COOKIE_NAME, main.create_access_token(subject="owner-1"))
    created = client.post("/api/memberships", json={"planId": "duo"})
    assert created.status_code == 201
    assert created.json()["memberNumber"] == "WF-2025-1"

    forbidden = client.post(
        "/api/admin/promo-grants",
        json={"ownerId": "owner-2", "planId": "duo", "reason": "gift", "months": 1},
    )
    assert forbidden.status_code == 403

    client.cookies.set(membership_routes._SESSION_COOKIE_NAME, main.create_access_token(subject="admin-1", roles=["admin"]))
    granted = client.post(
        "/api/admin/promo-grants",
        json={"ownerId": "owner-2", "planId": "duo", "reason": "gift", "months": 1},
    )
    assert granted.status_code == 201
    assert granted.json()["grantedBy"] == "admin-1"
