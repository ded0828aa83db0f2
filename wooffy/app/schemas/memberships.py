"""API schemas for membership endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..memberships import (
    EffectiveStatus,
    LifecycleState,
    Membership,
    MembershipStatusView,
    PlanDefinition,
    PlanKey,
    PromoGrant,
    PromoGrantReason,
)
from ..memberships.reminders import ReminderSummary, days_until
from ..memberships.verification import VerificationResult, VerificationStatus


class PlanResponse(BaseModel):
    key: PlanKey
    display_name: str = Field(alias="displayName")
    max_pets: int = Field(alias="maxPets")
    price_new: Decimal = Field(alias="priceNew")
    price_renewal: Decimal = Field(alias="priceRenewal")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            key=plan.key,
            display_name=plan.display_name,
            max_pets=plan.max_pets,
            price_new=plan.price_new,
            price_renewal=plan.price_renewal,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class MembershipResponse(BaseModel):
    id: str
    owner_id: str = Field(alias="ownerId")
    member_number: str = Field(alias="memberNumber")
    plan_key: PlanKey = Field(alias="planKey")
    max_pets: int = Field(alias="maxPets")
    is_active: bool = Field(alias="isActive")
    effective_status: EffectiveStatus = Field(alias="effectiveStatus")
    expires_at: datetime = Field(alias="expiresAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_membership(cls, membership: Membership, now: datetime) -> "MembershipResponse":
        return cls(
            id=membership.id,
            owner_id=membership.owner_id,
            member_number=membership.member_number,
            plan_key=membership.plan_key,
            max_pets=membership.max_pets,
            is_active=membership.is_active,
            effective_status=membership.effective_status(now),
            expires_at=membership.expires_at,
            created_at=membership.created_at,
            updated_at=membership.updated_at,
        )


class MembershipStatusResponse(BaseModel):
    state: LifecycleState
    has_membership: bool = Field(alias="hasMembership")
    pet_count: int = Field(alias="petCount")
    membership: Optional[MembershipResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, view: MembershipStatusView, now: datetime) -> "MembershipStatusResponse":
        return cls(
            state=view.state,
            has_membership=view.has_membership,
            pet_count=view.pet_count,
            membership=MembershipResponse.from_membership(view.membership, now) if view.membership else None,
        )


class CreateMembershipRequest(BaseModel):
    plan_id: str = Field(alias="planId")

    model_config = ConfigDict(populate_by_name=True)


class ChangePlanRequest(BaseModel):
    plan_id: str = Field(alias="planId")

    model_config = ConfigDict(populate_by_name=True)


class RenewMembershipRequest(BaseModel):
    plan_id: Optional[str] = Field(default=None, alias="planId")

    model_config = ConfigDict(populate_by_name=True)


class MembershipActiveRequest(BaseModel):
    is_active: bool = Field(alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class ExpiringMembershipResponse(MembershipResponse):
    days_left: int = Field(alias="daysLeft")

    @classmethod
    def from_expiring(cls, membership: Membership, now: datetime) -> "ExpiringMembershipResponse":
        base = MembershipResponse.from_membership(membership, now)
        return cls(**base.model_dump(), days_left=days_until(membership.expires_at, now))


class ExpiringMembershipListResponse(BaseModel):
    within_days: int = Field(alias="withinDays")
    memberships: List[ExpiringMembershipResponse]

    model_config = ConfigDict(populate_by_name=True)


class VerificationResponse(BaseModel):
    status: VerificationStatus
    member_number: str = Field(alias="memberNumber")
    plan_key: Optional[PlanKey] = Field(default=None, alias="planKey")
    pet_count: Optional[int] = Field(default=None, alias="petCount")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerificationResponse":
        return cls(
            status=result.status,
            member_number=result.member_number,
            plan_key=result.plan_key,
            pet_count=result.pet_count,
            expires_at=result.expires_at,
        )


class PromoGrantCreateRequest(BaseModel):
    owner_id: str = Field(alias="ownerId")
    plan_id: str = Field(alias="planId")
    reason: str
    months: int
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class PromoGrantExtendRequest(BaseModel):
    extra_months: int = Field(default=0, alias="extraMonths")
    plan_id: Optional[str] = Field(default=None, alias="planId")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class PromoGrantResponse(BaseModel):
    id: str
    owner_id: str = Field(alias="ownerId")
    membership_id: Optional[str] = Field(default=None, alias="membershipId")
    reason: PromoGrantReason
    granted_by: str = Field(alias="grantedBy")
    granted_at: datetime = Field(alias="grantedAt")
    expires_at: datetime = Field(alias="expiresAt")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grant(cls, grant: PromoGrant) -> "PromoGrantResponse":
        return cls(
            id=grant.id,
            owner_id=grant.owner_id,
            membership_id=grant.membership_id,
            reason=grant.reason,
            granted_by=grant.granted_by,
            granted_at=grant.granted_at,
            expires_at=grant.expires_at,
            notes=grant.notes,
        )


class ReminderSweepResponse(BaseModel):
    checked: int
    sent: int
    skipped: int
    failed: List[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: ReminderSummary) -> "ReminderSweepResponse":
        return cls(**summary.to_dict())
