"""Typed notification payloads emitted by the membership engine."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..memberships.models import PlanKey, PromoGrantReason


class _NotificationBase(BaseModel):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    def data(self) -> Dict[str, Any]:
        """Payload stored alongside the notification, without the envelope fields."""

        return self.model_dump(mode="json", exclude={"type", "title", "message"})


class GiftMembershipNotification(_NotificationBase):
    type: Literal["gift_membership"] = "gift_membership"
    reason: PromoGrantReason
    plan_type: PlanKey
    membership_id: str
    expires_at: datetime


class GiftMembershipUpdatedNotification(_NotificationBase):
    type: Literal["gift_membership_updated"] = "gift_membership_updated"
    membership_id: str
    plan_type: PlanKey
    previous_plan_type: Optional[PlanKey] = None
    extra_months: int = Field(default=0, ge=0)
    expires_at: datetime


class MembershipExpiryNotification(_NotificationBase):
    type: Literal["membership_expiry"] = "membership_expiry"
    membership_id: str
    days_left: int = Field(ge=0)
    reminder_type: Literal["expiry_30_days", "expiry_7_days", "expiry_3_days"]
    expires_at: datetime


MembershipNotification = Annotated[
    Union[
        GiftMembershipNotification,
        GiftMembershipUpdatedNotification,
        MembershipExpiryNotification,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[MembershipNotification] = TypeAdapter(MembershipNotification)


def parse_notification(
    type: str,
    title: str,
    message: str,
    data: Optional[Mapping[str, Any]] = None,
) -> MembershipNotification:
    """Validate a raw notification against the tagged union.

    Raises :class:`pydantic.ValidationError` for unknown types or payloads that
    do not match the type's schema.
    """

    return _ADAPTER.validate_python({**(data or {}), "type": type, "title": title, "message": message})


__all__ = [
    "GiftMembershipNotification",
    "GiftMembershipUpdatedNotification",
    "MembershipExpiryNotification",
    "MembershipNotification",
    "parse_notification",
]
