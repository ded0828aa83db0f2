"""Domain models for memberships, plans and promotional grants."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanKey(str, Enum):
    """Canonical identifiers for membership plan tiers."""

    SINGLE = "single"
    DUO = "duo"
    FAMILY = "family"


class EffectiveStatus(str, Enum):
    """Entitlement state derived from the stored flag and the expiry date."""

    ACTIVE = "active"
    EXPIRED = "expired"


class LifecycleState(str, Enum):
    """Lifecycle states an owner can be in."""

    NO_MEMBERSHIP = "no_membership"
    ACTIVE = "active"
    EXPIRED = "expired"
    DEACTIVATED = "deactivated"


class PromoGrantReason(str, Enum):
    """Why an administrator issued a complimentary membership."""

    GIFT = "gift"
    PARTNER = "partner"
    CONTEST_WINNER = "contest_winner"
    EMPLOYEE = "employee"
    OTHER = "other"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Membership(BaseModel):
    """The single row holding an owner's current entitlement."""

    id: str
    owner_id: str
    member_number: str
    plan_key: PlanKey
    max_pets: int = Field(ge=1, description="Snapshot of the plan quota at the last plan change")
    is_active: bool = True
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = Field(default=1, ge=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    def effective_status(self, now: datetime) -> EffectiveStatus:
        """Return the entitlement state at ``now``.

        The stored ``is_active`` flag alone never grants access: a membership
        whose expiry has passed is expired even while the flag is still set.
        """

        if self.is_active and self.expires_at > now:
            return EffectiveStatus.ACTIVE
        return EffectiveStatus.EXPIRED

    def is_entitled(self, now: datetime) -> bool:
        return self.effective_status(now) == EffectiveStatus.ACTIVE

    def lifecycle_state(self, now: datetime) -> LifecycleState:
        if not self.is_active:
            return LifecycleState.DEACTIVATED
        if self.expires_at > now:
            return LifecycleState.ACTIVE
        return LifecycleState.EXPIRED


class PromoGrant(BaseModel):
    """Administrative record tracking a complimentary membership."""

    id: str
    owner_id: str
    membership_id: Optional[str] = None
    reason: PromoGrantReason
    granted_by: str
    granted_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime
    notes: Optional[str] = None
    version: int = Field(default=1, ge=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("expires_at", "granted_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_aware(value)


class MembershipStatusView(BaseModel):
    """Read model pairing a membership with its computed entitlement state."""

    owner_id: str
    state: LifecycleState
    effective_status: Optional[EffectiveStatus] = None
    membership: Optional[Membership] = None
    pet_count: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def has_membership(self) -> bool:
        return self.effective_status == EffectiveStatus.ACTIVE
