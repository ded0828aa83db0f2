"""Persistence contract for memberships and promotional grants.

Every lifecycle operation runs inside a single :meth:`MembershipStore.transaction`.
Writes carry the ``version`` of the row as it was read; an implementation must
raise :class:`~.exceptions.ConflictError` when the stored version no longer
matches, either immediately or when the transaction commits, and must discard
every write of the transaction when it does. Connection failures and timeouts
surface as :class:`~.exceptions.StoreUnavailable`.
"""
from __future__ import annotations

from datetime import datetime
from typing import ContextManager, Optional, Protocol, Sequence

from .models import Membership, PromoGrant


class MembershipTransaction(Protocol):
    """Reads and writes scoped to one atomic unit of work."""

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        ...

    def get_membership_by_owner(self, owner_id: str) -> Optional[Membership]:
        ...

    def get_membership_by_number(self, member_number: str) -> Optional[Membership]:
        ...

    def insert_membership(self, membership: Membership) -> Membership:
        ...

    def update_membership(self, membership: Membership) -> Membership:
        """Persist ``membership`` if the stored version equals ``membership.version``.

        Returns the stored row with its version incremented.
        """

    def count_pets(self, membership_id: str) -> int:
        ...

    def next_member_sequence(self, year: int) -> int:
        ...

    def get_promo_grant(self, promo_grant_id: str) -> Optional[PromoGrant]:
        ...

    def get_promo_grant_for_membership(self, membership_id: str) -> Optional[PromoGrant]:
        ...

    def insert_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        ...

    def update_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        ...

    def delete_promo_grant(self, grant: PromoGrant) -> None:
        ...

    def list_memberships_expiring(self, start: datetime, end: datetime) -> Sequence[Membership]:
        """Return active-flagged memberships with ``start < expires_at <= end``."""

    def reminder_sent(self, membership_id: str, reminder_type: str) -> bool:
        ...

    def record_reminder(
        self,
        membership_id: str,
        owner_id: str,
        reminder_type: str,
        days_left: int,
    ) -> bool:
        """Claim the tier for this membership; ``False`` when it was already claimed."""

    def release_reminder(self, membership_id: str, reminder_type: str) -> None:
        ...


class MembershipStore(Protocol):
    """Factory for transactional units of work."""

    def transaction(self) -> ContextManager[MembershipTransaction]:
        ...


__all__ = ["MembershipStore", "MembershipTransaction"]
