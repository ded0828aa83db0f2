from __future__ import annotations

import pytest

from wooffy.app.memberships import PlanKey, ValidationError
from wooffy.app.memberships.verification import MemberVerifier, VerificationStatus


@pytest.fixture
def verifier_components(membership_components):
    store, engine, *_ = membership_components
    return store, engine, MemberVerifier(engine=engine)


def test_active_member_is_valid(verifier_components):
    store, engine, verifier = verifier_components
    membership = engine.create("owner-1", "duo")
    store.seed_pets(membership.id, 2)

    result = verifier.verify(f"  {membership.member_number} ")

    assert result.is_valid
    assert result.member_number == membership.member_number
    assert result.plan_key == PlanKey.DUO
    assert result.pet_count == 2
    assert result.expires_at == membership.expires_at


def test_lapsed_member_is_expired(verifier_components, clock):
    _, engine, verifier = verifier_components
    membership = engine.create("owner-1", "single")
    clock.advance(days=366)

    result = verifier.verify(membership.member_number)

    assert result.status == VerificationStatus.EXPIRED


def test_unknown_member_number_is_invalid(verifier_components):
    _, _, verifier = verifier_components

    result = verifier.verify("WF-1999-42")

    assert result.status == VerificationStatus.INVALID
    assert result.plan_key is None


@pytest.mark.parametrize("member_number", ["", "   ", "W" * 51])
def test_malformed_member_numbers_are_rejected(verifier_components, member_number):
    _, _, verifier = verifier_components

    with pytest.raises(ValidationError) as excinfo:
        verifier.verify(member_number)

    assert excinfo.value.code == "invalid_member_number"
