"""Tests for administrative promo memberships."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from wooffy.app.memberships import (
    AlreadyActiveError,
    ConflictError,
    LifecycleState,
    NotFoundError,
    PlanKey,
    PromoGrantReason,
    QuotaExceeded,
    ValidationError,
)
from wooffy.app.memberships.grants import add_months
from wooffy.app.memberships.memory import InMemoryMembershipTransaction
from wooffy.app.notifications import GiftMembershipNotification, GiftMembershipUpdatedNotification


def _grant(administrator, owner_id="owner-1", plan="duo", months=3, notes=None):
    return administrator.grant(owner_id, plan, "gift", months, notes, "admin-1")


@pytest.mark.parametrize(
    ("start", "months", "expected"),
    [
        (datetime(2025, 1, 31, tzinfo=timezone.utc), 1, datetime(2025, 2, 28, tzinfo=timezone.utc)),
        (datetime(2024, 2, 29, tzinfo=timezone.utc), 12, datetime(2025, 2, 28, tzinfo=timezone.utc)),
        (datetime(2025, 11, 30, tzinfo=timezone.utc), 3, datetime(2026, 2, 28, tzinfo=timezone.utc)),
        (datetime(2025, 5, 10, tzinfo=timezone.utc), 0, datetime(2025, 5, 10, tzinfo=timezone.utc)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected


def test_grant_provisions_linked_membership(membership_components, clock):
    store, engine, administrator, notifier, roles = membership_components

    grant = _grant(administrator, months=3, notes="  Spring contest  ")

    membership = store.memberships[grant.membership_id]
    assert membership.owner_id == "owner-1"
    assert membership.plan_key == PlanKey.DUO
    assert membership.expires_at == add_months(clock(), 3)
    assert grant.expires_at == membership.expires_at
    assert grant.reason == PromoGrantReason.GIFT
    assert grant.granted_by == "admin-1"
    assert grant.notes == "Spring contest"
    assert store.promo_grants[grant.id] == grant
    assert ("owner-1", "member") in roles.roles

    owner_id, notification = notifier.sent[-1]
    assert owner_id == "owner-1"
    assert isinstance(notification, GiftMembershipNotification)
    assert notification.plan_type == PlanKey.DUO
    assert "3 months" in notification.message


def test_grant_rejected_when_owner_already_active(membership_components):
    store, engine, administrator, notifier, roles = membership_components
    existing = engine.create("owner-1", "duo")

    with pytest.raises(AlreadyActiveError) as excinfo:
        _grant(administrator)

    assert "Extend it instead" in excinfo.value.message
    assert excinfo.value.payload["expires_at"] == existing.expires_at.isoformat()
    assert store.promo_grants == {}
    assert notifier.sent == []
    assert roles.roles == set()


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"months": 0}, "invalid_months"),
        ({"reason": "bribe"}, "invalid_reason"),
        ({"granted_by": "  "}, "invalid_granted_by"),
        ({"plan_id": ""}, "invalid_plan_id"),
    ],
)
def test_grant_validates_input(membership_components, kwargs, code):
    store, _, administrator, *_ = membership_components
    arguments = dict(
        owner_id="owner-1",
        plan_id="duo",
        reason="gift",
        months=3,
        notes=None,
        granted_by="admin-1",
    )
    arguments.update(kwargs)

    with pytest.raises(ValidationError) as excinfo:
        administrator.grant(**arguments)

    assert excinfo.value.code == code
    assert store.memberships == {}


def test_grant_is_atomic_when_grant_insert_fails(membership_components, monkeypatch):
    store, _, administrator, notifier, _ = membership_components

    def failing_insert(self, grant):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(InMemoryMembershipTransaction, "insert_promo_grant", failing_insert)

    with pytest.raises(RuntimeError):
        _grant(administrator)

    assert store.memberships == {}
    assert store.promo_grants == {}
    assert notifier.sent == []


def test_grant_survives_side_effect_failures(membership_components, caplog):
    store, _, administrator, notifier, roles = membership_components
    notifier.fail_all = True
    roles.fail = True

    with caplog.at_level(logging.ERROR, logger="memberships.grants"):
        grant = _grant(administrator)

    assert store.promo_grants[grant.id] == grant
    assert store.memberships[grant.membership_id].is_active
    messages = [record.getMessage() for record in caplog.records]
    assert "Failed to assign member role" in messages
    assert "Failed to send membership notification" in messages


def test_extend_moves_membership_and_grant_expiry_together(membership_components):
    store, _, administrator, notifier, _ = membership_components
    grant = _grant(administrator, months=3)
    original_expiry = grant.expires_at

    extended = administrator.extend(grant.id, extra_months=6)

    membership = store.memberships[grant.membership_id]
    assert extended.expires_at == add_months(original_expiry, 6)
    assert membership.expires_at == extended.expires_at
    _, notification = notifier.sent[-1]
    assert isinstance(notification, GiftMembershipUpdatedNotification)
    assert notification.extra_months == 6
    assert "extended by 6 months" in notification.message


def test_extend_can_upgrade_plan(membership_components):
    store, _, administrator, notifier, _ = membership_components
    grant = _grant(administrator, plan="single")

    administrator.extend(grant.id, extra_months=0, new_plan_id="family")

    membership = store.memberships[grant.membership_id]
    assert membership.plan_key == PlanKey.FAMILY
    assert membership.max_pets == 5
    assert membership.expires_at == grant.expires_at
    _, notification = notifier.sent[-1]
    assert notification.previous_plan_type == PlanKey.SINGLE
    assert "upgraded to Pack Leader" in notification.message


def test_extend_downgrade_over_quota_changes_nothing(membership_components):
    store, _, administrator, notifier, _ = membership_components
    grant = _grant(administrator, plan="family")
    store.seed_pets(grant.membership_id, 4)
    membership_before = store.memberships[grant.membership_id]
    sent_before = len(notifier.sent)

    with pytest.raises(QuotaExceeded) as excinfo:
        administrator.extend(grant.id, extra_months=2, new_plan_id="duo")

    assert excinfo.value.excess == 2
    assert store.memberships[grant.membership_id] == membership_before
    assert store.promo_grants[grant.id] == grant
    assert len(notifier.sent) == sent_before


def test_extend_without_changes_sends_no_notification(membership_components):
    store, _, administrator, notifier, _ = membership_components
    grant = _grant(administrator)
    sent_before = len(notifier.sent)

    result = administrator.extend(grant.id, extra_months=0)

    assert result == grant
    assert len(notifier.sent) == sent_before


def test_extend_updates_notes_only_when_given(membership_components):
    store, _, administrator, *_ = membership_components
    grant = _grant(administrator, notes="original")

    kept = administrator.extend(grant.id, extra_months=1)
    cleared = administrator.extend(grant.id, extra_months=0, notes="")

    assert kept.notes == "original"
    assert cleared.notes is None


def test_extend_rejects_negative_months(membership_components):
    _, _, administrator, *_ = membership_components
    grant = _grant(administrator)

    with pytest.raises(ValidationError):
        administrator.extend(grant.id, extra_months=-1)


def test_extend_unknown_grant(membership_components):
    _, _, administrator, *_ = membership_components

    with pytest.raises(NotFoundError) as excinfo:
        administrator.extend("missing", extra_months=1)

    assert excinfo.value.entity == "promo_grant"


def test_concurrent_extends_apply_exactly_once(membership_components, monkeypatch):
    store, _, administrator, *_ = membership_components
    grant = _grant(administrator, months=3)
    original_commit = store._commit
    state = {"racing": False}

    def racing_commit(txn):
        if not state["racing"]:
            state["racing"] = True
            administrator.extend(grant.id, extra_months=1)
        original_commit(txn)

    monkeypatch.setattr(store, "_commit", racing_commit)

    with pytest.raises(ConflictError):
        administrator.extend(grant.id, extra_months=1)

    expected = add_months(grant.expires_at, 1)
    assert store.promo_grants[grant.id].expires_at == expected
    assert store.memberships[grant.membership_id].expires_at == expected


def test_revoke_deactivates_membership_and_deletes_grant(membership_components):
    store, engine, administrator, _, roles = membership_components
    grant = _grant(administrator)

    administrator.revoke(grant.id)

    assert grant.id not in store.promo_grants
    membership = store.memberships[grant.membership_id]
    assert not membership.is_active
    assert engine.status_for_owner("owner-1").state == LifecycleState.DEACTIVATED
    assert ("owner-1", "member") in roles.roles


def test_regrant_after_revoke_reuses_member_number(membership_components):
    store, _, administrator, *_ = membership_components
    first = _grant(administrator)
    member_number = store.memberships[first.membership_id].member_number
    administrator.revoke(first.id)

    second = _grant(administrator, plan="family", months=1)

    assert second.membership_id == first.membership_id
    assert store.memberships[second.membership_id].member_number == member_number
    assert store.memberships[second.membership_id].is_active


def test_revoke_unknown_grant(membership_components):
    _, _, administrator, *_ = membership_components

    with pytest.raises(NotFoundError):
        administrator.revoke("missing")


def test_renewing_an_active_gift_keeps_grant_in_lockstep(membership_components, clock):
    store, engine, administrator, *_ = membership_components
    grant = _grant(administrator, months=3)
    clock.advance(days=30)

    renewed = engine.renew(grant.membership_id)

    assert renewed.expires_at == grant.expires_at + engine.term
    assert store.promo_grants[grant.id].expires_at == renewed.expires_at
    assert store.promo_grants[grant.id].membership_id == grant.membership_id


def test_paid_signup_after_gift_lapses_is_not_controlled_by_old_grant(membership_components, clock):
    store, engine, administrator, *_ = membership_components
    grant = _grant(administrator, months=1)
    clock.advance(days=60)

    paid = engine.create("owner-1", "family")

    assert paid.id == grant.membership_id
    stale = store.promo_grants[grant.id]
    assert stale.membership_id is None
    assert stale.expires_at == grant.expires_at

    administrator.revoke(grant.id)

    assert grant.id not in store.promo_grants
    status = engine.status_for_owner("owner-1")
    assert status.state == LifecycleState.ACTIVE
    assert status.membership.expires_at == paid.expires_at


def test_stale_grant_cannot_extend_paid_membership(membership_components, clock):
    store, engine, administrator, *_ = membership_components
    grant = _grant(administrator, months=1)
    clock.advance(days=60)
    paid = engine.create("owner-1", "duo")

    with pytest.raises(ValidationError) as excinfo:
        administrator.extend(grant.id, extra_months=6, new_plan_id="family")

    assert excinfo.value.code == "promo_grant_unlinked"
    assert store.memberships[paid.id] == paid


@pytest.mark.parametrize("revive", ["reactivate", "renew"])
def test_self_service_revival_of_lapsed_gift_detaches_grant(membership_components, clock, revive):
    store, engine, administrator, *_ = membership_components
    grant = _grant(administrator, months=1)
    clock.advance(days=60)

    revived = getattr(engine, revive)(grant.membership_id)
    administrator.revoke(grant.id)

    assert revived.expires_at == clock() + engine.term
    assert store.memberships[revived.id].is_active
    assert engine.status_for_owner("owner-1").state == LifecycleState.ACTIVE
