"""Service orchestrating membership state transitions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, TypeVar, Union
from uuid import uuid4

from .catalog import PlanDefinition, get_plan
from .exceptions import AlreadyActiveError, ConflictError, NotFoundError, ValidationError
from .models import EffectiveStatus, LifecycleState, Membership, MembershipStatusView, PlanKey
from .quota import assert_can_add_pet, assert_downgrade_allowed
from .store import MembershipStore, MembershipTransaction

logger = logging.getLogger("memberships")

T = TypeVar("T")

DEFAULT_TERM = timedelta(days=365)


def _current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def require_identifier(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field} is required.",
            code=f"invalid_{field}",
            detail={field: repr(value)},
        )
    return value.strip()


def pin_observed(observed: Dict[str, object], key: str, value: object, entity: str, identifier: str) -> None:
    """Remember the state a decision was based on and fail if a retry sees it changed."""

    if key in observed and observed[key] != value:
        raise ConflictError(entity, identifier)
    observed[key] = value


@dataclass
class LifecycleEngine:
    """Coordinates membership transitions over a transactional store."""

    store: MembershipStore
    clock: Optional[Callable[[], datetime]] = None
    term: timedelta = DEFAULT_TERM
    conflict_retries: int = 1
    member_number_prefix: str = "WF"

    def now(self) -> datetime:
        return _current_time(self.clock)

    def run_atomic(self, operation: str, action: Callable[[MembershipTransaction], T]) -> T:
        """Run ``action`` in one transaction, retrying once on a write conflict."""

        attempts = max(0, self.conflict_retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                with self.store.transaction() as txn:
                    return action(txn)
            except ConflictError as exc:
                if attempt >= attempts:
                    logger.warning(
                        "Membership %s lost a concurrent write",
                        operation,
                        extra={"operation": operation, "attempt": attempt, "entity_id": exc.payload.get("id")},
                    )
                    raise
                logger.info(
                    "Retrying membership %s after conflict",
                    operation,
                    extra={"operation": operation, "attempt": attempt, "entity_id": exc.payload.get("id")},
                )
        raise RuntimeError("unreachable")  # pragma: no cover

    # Reads -----------------------------------------------------------------------

    def effective_status(self, membership: Membership, now: Optional[datetime] = None) -> EffectiveStatus:
        return membership.effective_status(now or self.now())

    def get_membership(self, membership_id: str) -> Membership:
        membership_id = require_identifier(membership_id, "membership_id")
        with self.store.transaction() as txn:
            return self._load(txn, membership_id)

    def status_for_owner(self, owner_id: str) -> MembershipStatusView:
        """Return the owner's lifecycle state computed against the current time."""

        owner_id = require_identifier(owner_id, "owner_id")
        now = self.now()
        with self.store.transaction() as txn:
            membership = txn.get_membership_by_owner(owner_id)
            if membership is None:
                return MembershipStatusView(owner_id=owner_id, state=LifecycleState.NO_MEMBERSHIP)
            pet_count = txn.count_pets(membership.id)
        return MembershipStatusView(
            owner_id=owner_id,
            state=membership.lifecycle_state(now),
            effective_status=membership.effective_status(now),
            membership=membership,
            pet_count=pet_count,
        )

    # Transitions -----------------------------------------------------------------

    def create(self, owner_id: str, plan_id: Union[PlanKey, str]) -> Membership:
        """Create the owner's membership, or return it when the call is a replay."""

        owner_id = require_identifier(owner_id, "owner_id")
        plan = get_plan(plan_id)

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            return self.provision(
                txn,
                owner_id=owner_id,
                plan=plan,
                expires_at=now + self.term,
                now=now,
                allow_replay=True,
            )

        membership = self.run_atomic("create", action)
        logger.info(
            "Membership provisioned",
            extra={
                "owner_id": owner_id,
                "membership_id": membership.id,
                "member_number": membership.member_number,
                "plan": membership.plan_key.value,
            },
        )
        return membership

    def provision(
        self,
        txn: MembershipTransaction,
        *,
        owner_id: str,
        plan: PlanDefinition,
        expires_at: datetime,
        now: datetime,
        allow_replay: bool,
        already_active_message: Optional[str] = None,
    ) -> Membership:
        """Create or revive the owner's membership row inside ``txn``.

        An owner keeps a single row for life; a lapsed or deactivated row is
        revived in place and keeps its member number. On the self-service path
        (``allow_replay``) a promo grant still linked to the lapsed row is
        detached so it can no longer steer the paid term.
        """

        existing = txn.get_membership_by_owner(owner_id)
        if existing is not None and existing.is_entitled(now):
            if allow_replay and existing.plan_key == plan.key:
                return existing
            raise AlreadyActiveError(
                owner_id=owner_id,
                membership_id=existing.id,
                member_number=existing.member_number,
                plan_key=existing.plan_key.value,
                expires_at=existing.expires_at,
                message=already_active_message,
            )

        if existing is not None:
            assert_downgrade_allowed(txn.count_pets(existing.id), plan)
            revived = txn.update_membership(
                existing.model_copy(
                    update={
                        "plan_key": plan.key,
                        "max_pets": plan.max_pets,
                        "is_active": True,
                        "expires_at": expires_at,
                        "updated_at": now,
                    }
                )
            )
            if allow_replay:
                self._detach_promo_grant(txn, revived)
            return revived

        sequence = txn.next_member_sequence(now.year)
        membership = Membership(
            id=str(uuid4()),
            owner_id=owner_id,
            member_number=f"{self.member_number_prefix}-{now.year}-{sequence}",
            plan_key=plan.key,
            max_pets=plan.max_pets,
            is_active=True,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        return txn.insert_membership(membership)

    def upgrade(self, membership_id: str, new_plan_id: Union[PlanKey, str]) -> Membership:
        plan = get_plan(new_plan_id)
        membership_id = require_identifier(membership_id, "membership_id")

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load_entitled(txn, membership_id, now, "upgrade")
            if plan.max_pets < membership.max_pets:
                raise ValidationError(
                    f"{plan.display_name} has a smaller pet quota; downgrade instead.",
                    code="not_an_upgrade",
                    detail={"current_plan": membership.plan_key.value, "target_plan": plan.key.value},
                )
            return self._apply_plan(txn, membership, plan, now)

        return self._logged("upgrade", self.run_atomic("upgrade", action))

    def downgrade(self, membership_id: str, new_plan_id: Union[PlanKey, str]) -> Membership:
        plan = get_plan(new_plan_id)
        membership_id = require_identifier(membership_id, "membership_id")

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load_entitled(txn, membership_id, now, "downgrade")
            if plan.max_pets > membership.max_pets:
                raise ValidationError(
                    f"{plan.display_name} has a larger pet quota; upgrade instead.",
                    code="not_a_downgrade",
                    detail={"current_plan": membership.plan_key.value, "target_plan": plan.key.value},
                )
            return self._apply_plan(txn, membership, plan, now)

        return self._logged("downgrade", self.run_atomic("downgrade", action))

    def change_plan(self, membership_id: str, new_plan_id: Union[PlanKey, str]) -> Membership:
        """Switch plans immediately, checking the pet quota when it shrinks."""

        plan = get_plan(new_plan_id)
        membership_id = require_identifier(membership_id, "membership_id")

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load_entitled(txn, membership_id, now, "change_plan")
            return self._apply_plan(txn, membership, plan, now)

        return self._logged("change_plan", self.run_atomic("change_plan", action))

    def renew(self, membership_id: str, plan_id: Union[PlanKey, str, None] = None) -> Membership:
        """Extend by one term from the later of now and the current expiry.

        Time lost while lapsed is not recovered: an expired membership renews
        from now, not from its old expiry.
        """

        membership_id = require_identifier(membership_id, "membership_id")
        plan = get_plan(plan_id) if plan_id is not None else None
        observed: Dict[str, object] = {}

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load(txn, membership_id)
            pin_observed(observed, "expires_at", membership.expires_at, "membership", membership_id)
            target = plan or get_plan(membership.plan_key)
            if target.key != membership.plan_key and target.max_pets < membership.max_pets:
                assert_downgrade_allowed(txn.count_pets(membership.id), target)
            update: Dict[str, object] = {
                "is_active": True,
                "expires_at": max(now, membership.expires_at) + self.term,
                "updated_at": now,
            }
            if target.key != membership.plan_key:
                update.update({"plan_key": target.key, "max_pets": target.max_pets})
            renewed = txn.update_membership(membership.model_copy(update=update))
            if membership.is_entitled(now):
                self._sync_promo_grant(txn, renewed)
            else:
                self._detach_promo_grant(txn, renewed)
            return renewed

        return self._logged("renew", self.run_atomic("renew", action))

    def reactivate(self, membership_id: str) -> Membership:
        """Resume a lapsed membership for a fresh term, keeping plan and number."""

        membership_id = require_identifier(membership_id, "membership_id")
        observed: Dict[str, object] = {}

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load(txn, membership_id)
            pin_observed(observed, "expires_at", membership.expires_at, "membership", membership_id)
            if membership.is_entitled(now):
                raise ValidationError(
                    "This membership is still active; renew it to extend the term.",
                    code="membership_not_expired",
                    detail={"membership_id": membership_id, "expires_at": membership.expires_at.isoformat()},
                )
            reactivated = txn.update_membership(
                membership.model_copy(
                    update={"is_active": True, "expires_at": now + self.term, "updated_at": now}
                )
            )
            self._detach_promo_grant(txn, reactivated)
            return reactivated

        return self._logged("reactivate", self.run_atomic("reactivate", action))

    def set_active(self, membership_id: str, active: bool) -> Membership:
        """Administrative switch for the stored ``is_active`` flag.

        The expiry is left untouched, so activating a membership whose term
        has already ended does not make it entitled again.
        """

        membership_id = require_identifier(membership_id, "membership_id")
        if not isinstance(active, bool):
            raise ValidationError(
                "active must be true or false.",
                code="invalid_active",
                detail={"active": repr(active)},
            )

        def action(txn: MembershipTransaction) -> Membership:
            now = self.now()
            membership = self._load(txn, membership_id)
            if membership.is_active == active:
                return membership
            updated = txn.update_membership(
                membership.model_copy(update={"is_active": active, "updated_at": now})
            )
            self._sync_promo_grant(txn, updated)
            return updated

        operation = "activate" if active else "deactivate"
        return self._logged(operation, self.run_atomic(operation, action))

    def list_expiring(self, within: timedelta) -> List[Membership]:
        """Active memberships whose term ends within ``within``, soonest first."""

        if within <= timedelta(0):
            raise ValidationError(
                "The expiry window must be positive.",
                code="invalid_window",
                detail={"days": within.days},
            )
        now = self.now()
        with self.store.transaction() as txn:
            memberships = txn.list_memberships_expiring(now, now + within)
        return [membership for membership in memberships if membership.is_entitled(now)]

    def add_pet(self, membership_id: str, write_pet: Callable[[MembershipTransaction], T]) -> T:
        """Run ``write_pet`` only if the membership has a free pet slot.

        The pet count is read in the same transaction as the write and the
        membership version is bumped, so a concurrent pet-add or downgrade on
        the same membership fails with a conflict instead of both succeeding.
        """

        membership_id = require_identifier(membership_id, "membership_id")

        def action(txn: MembershipTransaction) -> T:
            now = self.now()
            membership = self._load_entitled(txn, membership_id, now, "add_pet")
            assert_can_add_pet(membership, txn.count_pets(membership.id))
            txn.update_membership(membership.model_copy(update={"updated_at": now}))
            return write_pet(txn)

        return self.run_atomic("add_pet", action)

    # Helpers ---------------------------------------------------------------------

    def _load(self, txn: MembershipTransaction, membership_id: str) -> Membership:
        membership = txn.get_membership(membership_id)
        if membership is None:
            raise NotFoundError("membership", membership_id)
        return membership

    def _load_entitled(
        self,
        txn: MembershipTransaction,
        membership_id: str,
        now: datetime,
        operation: str,
    ) -> Membership:
        membership = self._load(txn, membership_id)
        if not membership.is_entitled(now):
            raise ValidationError(
                "This membership has expired. Renew or reactivate it first.",
                code="membership_inactive",
                detail={"membership_id": membership_id, "operation": operation},
            )
        return membership

    def _apply_plan(
        self,
        txn: MembershipTransaction,
        membership: Membership,
        plan: PlanDefinition,
        now: datetime,
    ) -> Membership:
        if membership.plan_key == plan.key:
            return membership
        if plan.max_pets < membership.max_pets:
            assert_downgrade_allowed(txn.count_pets(membership.id), plan)
        return txn.update_membership(
            membership.model_copy(
                update={"plan_key": plan.key, "max_pets": plan.max_pets, "updated_at": now}
            )
        )

    def _sync_promo_grant(self, txn: MembershipTransaction, membership: Membership) -> None:
        grant = txn.get_promo_grant_for_membership(membership.id)
        if grant is not None and grant.expires_at != membership.expires_at:
            txn.update_promo_grant(grant.model_copy(update={"expires_at": membership.expires_at}))

    def _detach_promo_grant(self, txn: MembershipTransaction, membership: Membership) -> None:
        # A paid revival of a lapsed row must not stay under the old grant's control.
        grant = txn.get_promo_grant_for_membership(membership.id)
        if grant is None:
            return
        txn.update_promo_grant(grant.model_copy(update={"membership_id": None}))
        logger.info(
            "Lapsed promo grant detached from membership",
            extra={"promo_grant_id": grant.id, "membership_id": membership.id, "owner_id": membership.owner_id},
        )

    def _logged(self, operation: str, membership: Membership) -> Membership:
        logger.info(
            "Membership %s applied",
            operation,
            extra={
                "membership_id": membership.id,
                "plan": membership.plan_key.value,
                "expires_at": membership.expires_at.isoformat(),
            },
        )
        return membership


__all__ = ["DEFAULT_TERM", "LifecycleEngine", "pin_observed", "require_identifier"]
