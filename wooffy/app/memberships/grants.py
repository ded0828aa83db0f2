"""Administrative promotional memberships."""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple, Union
from uuid import uuid4

from ..notifications.delivery import MEMBER_ROLE, NotificationEmitter, RoleAssigner, dispatch_notification
from ..notifications.models import (
    GiftMembershipNotification,
    GiftMembershipUpdatedNotification,
    MembershipNotification,
)
from .catalog import PlanDefinition, get_plan
from .exceptions import NotFoundError, ValidationError
from .lifecycle import LifecycleEngine, pin_observed, require_identifier
from .models import Membership, PlanKey, PromoGrant, PromoGrantReason
from .quota import assert_downgrade_allowed
from .store import MembershipTransaction

logger = logging.getLogger("memberships.grants")


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by calendar months, clamping to the last day of the month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _parse_reason(reason: Union[PromoGrantReason, str]) -> PromoGrantReason:
    try:
        return PromoGrantReason(reason)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown grant reason: {reason!r}.",
            code="invalid_reason",
            detail={"reason": str(reason), "allowed": [item.value for item in PromoGrantReason]},
        ) from exc


def _require_months(value: object, field: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(
            f"{field} must be an integer of at least {minimum}.",
            code=f"invalid_{field}",
            detail={field: repr(value)},
        )
    return value


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


@dataclass
class GrantAdministrator:
    """Issues, extends and revokes complimentary memberships.

    Membership and grant writes for one call commit together. Role assignment
    and notifications run after the commit and never undo it.
    """

    engine: LifecycleEngine
    notifier: NotificationEmitter
    roles: RoleAssigner

    def grant(
        self,
        owner_id: str,
        plan_id: Union[PlanKey, str],
        reason: Union[PromoGrantReason, str],
        months: int,
        notes: Optional[str],
        granted_by: str,
    ) -> PromoGrant:
        owner_id = require_identifier(owner_id, "owner_id")
        granted_by = require_identifier(granted_by, "granted_by")
        plan = get_plan(plan_id)
        grant_reason = _parse_reason(reason)
        months = _require_months(months, "months", 1)
        cleaned_notes = (notes or "").strip() or None

        def action(txn: MembershipTransaction) -> Tuple[PromoGrant, Membership]:
            now = self.engine.now()
            membership = self.engine.provision(
                txn,
                owner_id=owner_id,
                plan=plan,
                expires_at=add_months(now, months),
                now=now,
                allow_replay=False,
                already_active_message="This user already has an active membership. Extend it instead.",
            )
            previous = txn.get_promo_grant_for_membership(membership.id)
            if previous is not None:
                txn.delete_promo_grant(previous)
            grant = txn.insert_promo_grant(
                PromoGrant(
                    id=str(uuid4()),
                    owner_id=owner_id,
                    membership_id=membership.id,
                    reason=grant_reason,
                    granted_by=granted_by,
                    granted_at=now,
                    expires_at=membership.expires_at,
                    notes=cleaned_notes,
                )
            )
            return grant, membership

        grant, membership = self.engine.run_atomic("grant", action)
        logger.info(
            "Promo membership granted",
            extra={
                "owner_id": owner_id,
                "promo_grant_id": grant.id,
                "membership_id": membership.id,
                "plan": plan.key.value,
                "reason": grant_reason.value,
                "granted_by": granted_by,
            },
        )

        self._ensure_member_role(owner_id)
        self._notify(
            owner_id,
            GiftMembershipNotification(
                title="🎁 You received a gift membership!",
                message=(
                    f"You've been granted a {plan.display_name} membership for {_plural(months, 'month')}. "
                    f"Enjoy your benefits until {membership.expires_at.date().isoformat()}!"
                ),
                reason=grant_reason,
                plan_type=plan.key,
                membership_id=membership.id,
                expires_at=membership.expires_at,
            ),
        )
        return grant

    def extend(
        self,
        promo_grant_id: str,
        extra_months: int = 0,
        new_plan_id: Union[PlanKey, str, None] = None,
        notes: Optional[str] = None,
    ) -> PromoGrant:
        """Push out a grant's expiry and optionally change its plan.

        ``notes=None`` keeps the existing notes; an empty string clears them.
        """

        promo_grant_id = require_identifier(promo_grant_id, "promo_grant_id")
        extra_months = _require_months(extra_months, "extra_months", 0)
        plan = get_plan(new_plan_id) if new_plan_id is not None else None
        observed: Dict[str, object] = {}

        def action(txn: MembershipTransaction) -> Tuple[PromoGrant, Membership, PlanDefinition]:
            now = self.engine.now()
            grant = txn.get_promo_grant(promo_grant_id)
            if grant is None:
                raise NotFoundError("promo_grant", promo_grant_id)
            pin_observed(observed, "expires_at", grant.expires_at, "promo_grant", promo_grant_id)
            if grant.membership_id is None:
                raise ValidationError(
                    "This promo grant is not linked to a membership.",
                    code="promo_grant_unlinked",
                    detail={"promo_grant_id": promo_grant_id},
                )
            membership = txn.get_membership(grant.membership_id)
            if membership is None:
                raise NotFoundError("membership", grant.membership_id)

            previous_plan = get_plan(membership.plan_key)
            target = plan or previous_plan
            if target.max_pets < membership.max_pets:
                assert_downgrade_allowed(txn.count_pets(membership.id), target)

            new_expiry = add_months(grant.expires_at, extra_months)
            if extra_months == 0 and target.key == membership.plan_key:
                updated_membership = membership
            else:
                updated_membership = txn.update_membership(
                    membership.model_copy(
                        update={
                            "plan_key": target.key,
                            "max_pets": target.max_pets,
                            "expires_at": new_expiry,
                            "updated_at": now,
                        }
                    )
                )
            grant_update: Dict[str, object] = {"expires_at": updated_membership.expires_at}
            if notes is not None:
                grant_update["notes"] = notes.strip() or None
            updated_grant = grant
            if any(getattr(grant, key) != value for key, value in grant_update.items()):
                updated_grant = txn.update_promo_grant(grant.model_copy(update=grant_update))
            return updated_grant, updated_membership, previous_plan

        grant, membership, previous_plan = self.engine.run_atomic("extend", action)
        plan_changed = membership.plan_key != previous_plan.key
        logger.info(
            "Promo membership extended",
            extra={
                "promo_grant_id": grant.id,
                "membership_id": membership.id,
                "extra_months": extra_months,
                "plan": membership.plan_key.value,
                "plan_changed": plan_changed,
            },
        )

        if extra_months > 0 or plan_changed:
            new_plan = get_plan(membership.plan_key)
            changes = []
            if extra_months > 0:
                changes.append(f"extended by {_plural(extra_months, 'month')}")
            if plan_changed:
                verb = "upgraded" if new_plan.max_pets >= previous_plan.max_pets else "changed"
                changes.append(f"{verb} to {new_plan.display_name}")
            self._notify(
                grant.owner_id,
                GiftMembershipUpdatedNotification(
                    title="🎁 Your membership was updated!",
                    message=(
                        f"Your gift membership has been {' and '.join(changes)}. "
                        f"New expiry: {membership.expires_at.date().isoformat()}."
                    ),
                    membership_id=membership.id,
                    plan_type=new_plan.key,
                    previous_plan_type=previous_plan.key if plan_changed else None,
                    extra_months=extra_months,
                    expires_at=membership.expires_at,
                ),
            )
        return grant

    def revoke(self, promo_grant_id: str) -> None:
        """Deactivate the linked membership and delete the grant together."""

        promo_grant_id = require_identifier(promo_grant_id, "promo_grant_id")

        def action(txn: MembershipTransaction) -> PromoGrant:
            now = self.engine.now()
            grant = txn.get_promo_grant(promo_grant_id)
            if grant is None:
                raise NotFoundError("promo_grant", promo_grant_id)
            if grant.membership_id is not None:
                membership = txn.get_membership(grant.membership_id)
                if membership is not None and membership.is_active:
                    txn.update_membership(
                        membership.model_copy(update={"is_active": False, "updated_at": now})
                    )
            txn.delete_promo_grant(grant)
            return grant

        grant = self.engine.run_atomic("revoke", action)
        logger.info(
            "Promo membership revoked",
            extra={"promo_grant_id": grant.id, "membership_id": grant.membership_id, "owner_id": grant.owner_id},
        )

    def _ensure_member_role(self, owner_id: str) -> None:
        try:
            self.roles.ensure_role(owner_id, MEMBER_ROLE)
        except Exception:
            logger.exception("Failed to assign member role", extra={"owner_id": owner_id})

    def _notify(self, owner_id: str, notification: MembershipNotification) -> None:
        try:
            dispatch_notification(self.notifier, owner_id, notification)
        except Exception:
            logger.exception(
                "Failed to send membership notification",
                extra={"owner_id": owner_id, "type": notification.type},
            )


__all__ = ["GrantAdministrator", "add_months"]
