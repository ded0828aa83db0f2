"""In-memory membership store suitable for tests and local development."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from .exceptions import ConflictError, StoreUnavailable
from .models import Membership, PromoGrant


class InMemoryMembershipTransaction:
    """Buffers writes and validates row versions when the store commits."""

    def __init__(self, store: "InMemoryMembershipStore") -> None:
        self._store = store
        # id -> (pending row or None for delete, version read before the first write)
        self._memberships: Dict[str, Tuple[Membership, Optional[int]]] = {}
        self._grants: Dict[str, Tuple[Optional[PromoGrant], Optional[int]]] = {}
        self._pets: List[Tuple[str, str]] = []
        self._reminders: Dict[Tuple[str, str], Tuple[str, int]] = {}
        self._released: Set[Tuple[str, str]] = set()

    # Memberships -----------------------------------------------------------------

    def _visible_memberships(self) -> List[Membership]:
        rows = {key: value for key, value in self._store.memberships.items()}
        for membership_id, (row, _) in self._memberships.items():
            rows[membership_id] = row
        return list(rows.values())

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        pending = self._memberships.get(membership_id)
        if pending is not None:
            return pending[0]
        return self._store.memberships.get(membership_id)

    def get_membership_by_owner(self, owner_id: str) -> Optional[Membership]:
        for membership in self._visible_memberships():
            if membership.owner_id == owner_id:
                return membership
        return None

    def get_membership_by_number(self, member_number: str) -> Optional[Membership]:
        for membership in self._visible_memberships():
            if membership.member_number == member_number:
                return membership
        return None

    def insert_membership(self, membership: Membership) -> Membership:
        if self.get_membership(membership.id) is not None:
            raise ConflictError("membership", membership.id)
        stored = membership.model_copy(update={"version": 1})
        self._memberships[stored.id] = (stored, None)
        return stored

    def update_membership(self, membership: Membership) -> Membership:
        current = self.get_membership(membership.id)
        if current is None or current.version != membership.version:
            raise ConflictError("membership", membership.id)
        base = self._memberships.get(membership.id, (None, current.version))[1]
        stored = membership.model_copy(update={"version": membership.version + 1})
        self._memberships[stored.id] = (stored, base)
        return stored

    def count_pets(self, membership_id: str) -> int:
        committed = len(self._store.pets.get(membership_id, set()))
        pending = sum(1 for owner, _ in self._pets if owner == membership_id)
        return committed + pending

    def insert_pet(self, membership_id: str, pet_id: Optional[str] = None) -> str:
        """Stage a pet row; only used by pet-add callbacks in tests and local runs."""

        pet_id = pet_id or uuid4().hex
        self._pets.append((membership_id, pet_id))
        return pet_id

    def next_member_sequence(self, year: int) -> int:
        with self._store._lock:
            value = self._store.sequences.get(year, 0) + 1
            self._store.sequences[year] = value
            return value

    # Promo grants ----------------------------------------------------------------

    def get_promo_grant(self, promo_grant_id: str) -> Optional[PromoGrant]:
        pending = self._grants.get(promo_grant_id)
        if pending is not None:
            return pending[0]
        return self._store.promo_grants.get(promo_grant_id)

    def get_promo_grant_for_membership(self, membership_id: str) -> Optional[PromoGrant]:
        grants = dict(self._store.promo_grants)
        for grant_id, (row, _) in self._grants.items():
            if row is None:
                grants.pop(grant_id, None)
            else:
                grants[grant_id] = row
        for grant in grants.values():
            if grant.membership_id == membership_id:
                return grant
        return None

    def insert_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        if self.get_promo_grant(grant.id) is not None:
            raise ConflictError("promo_grant", grant.id)
        stored = grant.model_copy(update={"version": 1})
        self._grants[stored.id] = (stored, None)
        return stored

    def update_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        current = self.get_promo_grant(grant.id)
        if current is None or current.version != grant.version:
            raise ConflictError("promo_grant", grant.id)
        base = self._grants.get(grant.id, (None, current.version))[1]
        stored = grant.model_copy(update={"version": grant.version + 1})
        self._grants[stored.id] = (stored, base)
        return stored

    def delete_promo_grant(self, grant: PromoGrant) -> None:
        current = self.get_promo_grant(grant.id)
        if current is None or current.version != grant.version:
            raise ConflictError("promo_grant", grant.id)
        base = self._grants.get(grant.id, (None, current.version))[1]
        self._grants[grant.id] = (None, base)

    # Reminders -------------------------------------------------------------------

    def list_memberships_expiring(self, start: datetime, end: datetime) -> Sequence[Membership]:
        return sorted(
            (
                membership
                for membership in self._visible_memberships()
                if membership.is_active and start < membership.expires_at <= end
            ),
            key=lambda membership: membership.expires_at,
        )

    def reminder_sent(self, membership_id: str, reminder_type: str) -> bool:
        key = (membership_id, reminder_type)
        if key in self._reminders:
            return True
        return key in self._store.reminders and key not in self._released

    def record_reminder(
        self,
        membership_id: str,
        owner_id: str,
        reminder_type: str,
        days_left: int,
    ) -> bool:
        if self.reminder_sent(membership_id, reminder_type):
            return False
        self._reminders[(membership_id, reminder_type)] = (owner_id, days_left)
        return True

    def release_reminder(self, membership_id: str, reminder_type: str) -> None:
        key = (membership_id, reminder_type)
        self._reminders.pop(key, None)
        self._released.add(key)


class InMemoryMembershipStore:
    """Process-local store with optimistic version checks on commit."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.memberships: Dict[str, Membership] = {}
        self.promo_grants: Dict[str, PromoGrant] = {}
        self.pets: Dict[str, Set[str]] = {}
        self.sequences: Dict[int, int] = {}
        self.reminders: Set[Tuple[str, str]] = set()
        self.available = True

    @contextmanager
    def transaction(self) -> Iterator[InMemoryMembershipTransaction]:
        if not self.available:
            raise StoreUnavailable()
        txn = InMemoryMembershipTransaction(self)
        yield txn
        self._commit(txn)

    def _commit(self, txn: InMemoryMembershipTransaction) -> None:
        with self._lock:
            for membership_id, (row, base) in txn._memberships.items():
                current = self.memberships.get(membership_id)
                if base is None:
                    if current is not None:
                        raise ConflictError("membership", membership_id)
                    owner_rows = [m for m in self.memberships.values() if m.owner_id == row.owner_id]
                    if owner_rows:
                        raise ConflictError("membership", membership_id)
                elif current is None or current.version != base:
                    raise ConflictError("membership", membership_id)

            for grant_id, (_, base) in txn._grants.items():
                current = self.promo_grants.get(grant_id)
                if base is None:
                    if current is not None:
                        raise ConflictError("promo_grant", grant_id)
                elif current is None or current.version != base:
                    raise ConflictError("promo_grant", grant_id)

            for key in txn._reminders:
                if key in self.reminders and key not in txn._released:
                    raise ConflictError("expiry_reminder", key[0])

            for membership_id, (row, _) in txn._memberships.items():
                self.memberships[membership_id] = row
            for grant_id, (grant, _) in txn._grants.items():
                if grant is None:
                    self.promo_grants.pop(grant_id, None)
                else:
                    self.promo_grants[grant_id] = grant
            for membership_id, pet_id in txn._pets:
                self.pets.setdefault(membership_id, set()).add(pet_id)
            for key in txn._released:
                self.reminders.discard(key)
            for key in txn._reminders:
                self.reminders.add(key)

    # Seeding helpers -------------------------------------------------------------

    def seed_membership(self, membership: Membership) -> Membership:
        with self._lock:
            self.memberships[membership.id] = membership
        return membership

    def seed_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        with self._lock:
            self.promo_grants[grant.id] = grant
        return grant

    def seed_pets(self, membership_id: str, count: int) -> None:
        with self._lock:
            pets = self.pets.setdefault(membership_id, set())
            for _ in range(count):
                pets.add(uuid4().hex)


__all__ = ["InMemoryMembershipStore", "InMemoryMembershipTransaction"]
