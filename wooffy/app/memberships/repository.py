"""PostgreSQL persistence for memberships and promotional grants."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Mapping, Optional, Sequence

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import ConnectionFactory, managed_connection
from .exceptions import ConflictError, StoreUnavailable
from .models import Membership, PlanKey, PromoGrant, PromoGrantReason

logger = logging.getLogger("memberships.repository")

_CONFLICT_ERRORS = (
    psycopg2.errors.SerializationFailure,
    psycopg2.errors.DeadlockDetected,
    psycopg2.errors.UniqueViolation,
)
_UNAVAILABLE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def _row_to_membership(row: Mapping[str, Any]) -> Membership:
    return Membership(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        member_number=row["member_number"],
        plan_key=PlanKey(row["plan_key"]),
        max_pets=int(row["max_pets"]),
        is_active=bool(row["is_active"]),
        expires_at=row["expires_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=int(row["version"]),
    )


def _row_to_promo_grant(row: Mapping[str, Any]) -> PromoGrant:
    membership_id = row.get("membership_id")
    return PromoGrant(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        membership_id=str(membership_id) if membership_id is not None else None,
        reason=PromoGrantReason(row["reason"]),
        granted_by=str(row["granted_by"]),
        granted_at=row["granted_at"],
        expires_at=row["expires_at"],
        notes=row.get("notes"),
        version=int(row["version"]),
    )


class PostgresMembershipTransaction:
    """Runs membership statements on one cursor of an open transaction."""

    def __init__(self, cursor: PgCursor) -> None:
        self._cursor = cursor

    @property
    def cursor(self) -> PgCursor:
        """Cursor of the surrounding transaction, for pet writes guarded by the engine."""

        return self._cursor

    def _fetch_membership(self, column: str, value: str) -> Optional[Membership]:
        self._cursor.execute(
            f"""
            SELECT *
            FROM memberships
            WHERE {column} = %s
            LIMIT 1
            """,
            (value,),
        )
        row = self._cursor.fetchone()
        return _row_to_membership(row) if row else None

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        return self._fetch_membership("id", membership_id)

    def get_membership_by_owner(self, owner_id: str) -> Optional[Membership]:
        return self._fetch_membership("owner_id", owner_id)

    def get_membership_by_number(self, member_number: str) -> Optional[Membership]:
        return self._fetch_membership("member_number", member_number)

    def insert_membership(self, membership: Membership) -> Membership:
        self._cursor.execute(
            """
            INSERT INTO memberships (
                id,
                owner_id,
                member_number,
                plan_key,
                max_pets,
                is_active,
                expires_at,
                created_at,
                updated_at,
                version
            )
            VALUES (%(id)s, %(owner_id)s, %(member_number)s, %(plan_key)s, %(max_pets)s,
                    %(is_active)s, %(expires_at)s, %(created_at)s, %(updated_at)s, 1)
            RETURNING *
            """,
            {
                "id": membership.id,
                "owner_id": membership.owner_id,
                "member_number": membership.member_number,
                "plan_key": membership.plan_key.value,
                "max_pets": membership.max_pets,
                "is_active": membership.is_active,
                "expires_at": membership.expires_at,
                "created_at": membership.created_at,
                "updated_at": membership.updated_at,
            },
        )
        row = self._cursor.fetchone()
        if not row:
            raise RuntimeError("Failed to persist membership")
        return _row_to_membership(row)

    def update_membership(self, membership: Membership) -> Membership:
        self._cursor.execute(
            """
            UPDATE memberships
            SET plan_key = %(plan_key)s,
                max_pets = %(max_pets)s,
                is_active = %(is_active)s,
                expires_at = %(expires_at)s,
                updated_at = %(updated_at)s,
                version = version + 1
            WHERE id = %(id)s AND version = %(version)s
            RETURNING *
            """,
            {
                "id": membership.id,
                "plan_key": membership.plan_key.value,
                "max_pets": membership.max_pets,
                "is_active": membership.is_active,
                "expires_at": membership.expires_at,
                "updated_at": membership.updated_at,
                "version": membership.version,
            },
        )
        row = self._cursor.fetchone()
        if not row:
            raise ConflictError("membership", membership.id)
        return _row_to_membership(row)

    def count_pets(self, membership_id: str) -> int:
        self._cursor.execute(
            "SELECT COUNT(*) AS pet_count FROM pets WHERE membership_id = %s",
            (membership_id,),
        )
        row = self._cursor.fetchone()
        return int(row["pet_count"]) if row else 0

    def next_member_sequence(self, year: int) -> int:
        self._cursor.execute(
            """
            INSERT INTO member_number_sequences (year, last_value)
            VALUES (%s, 1)
            ON CONFLICT (year) DO UPDATE SET
                last_value = member_number_sequences.last_value + 1
            RETURNING last_value
            """,
            (year,),
        )
        row = self._cursor.fetchone()
        if not row:
            raise RuntimeError("Failed to allocate member number")
        return int(row["last_value"])

    def get_promo_grant(self, promo_grant_id: str) -> Optional[PromoGrant]:
        self._cursor.execute(
            """
            SELECT *
            FROM promo_grants
            WHERE id = %s
            LIMIT 1
            """,
            (promo_grant_id,),
        )
        row = self._cursor.fetchone()
        return _row_to_promo_grant(row) if row else None

    def get_promo_grant_for_membership(self, membership_id: str) -> Optional[PromoGrant]:
        self._cursor.execute(
            """
            SELECT *
            FROM promo_grants
            WHERE membership_id = %s
            ORDER BY granted_at DESC
            LIMIT 1
            """,
            (membership_id,),
        )
        row = self._cursor.fetchone()
        return _row_to_promo_grant(row) if row else None

    def insert_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        self._cursor.execute(
            """
            INSERT INTO promo_grants (
                id,
                owner_id,
                membership_id,
                reason,
                granted_by,
                granted_at,
                expires_at,
                notes,
                version
            )
            VALUES (%(id)s, %(owner_id)s, %(membership_id)s, %(reason)s, %(granted_by)s,
                    %(granted_at)s, %(expires_at)s, %(notes)s, 1)
            RETURNING *
            """,
            {
                "id": grant.id,
                "owner_id": grant.owner_id,
                "membership_id": grant.membership_id,
                "reason": grant.reason.value,
                "granted_by": grant.granted_by,
                "granted_at": grant.granted_at,
                "expires_at": grant.expires_at,
                "notes": grant.notes,
            },
        )
        row = self._cursor.fetchone()
        if not row:
            raise RuntimeError("Failed to persist promo grant")
        return _row_to_promo_grant(row)

    def update_promo_grant(self, grant: PromoGrant) -> PromoGrant:
        self._cursor.execute(
            """
            UPDATE promo_grants
            SET membership_id = %(membership_id)s,
                expires_at = %(expires_at)s,
                notes = %(notes)s,
                version = version + 1
            WHERE id = %(id)s AND version = %(version)s
            RETURNING *
            """,
            {
                "id": grant.id,
                "membership_id": grant.membership_id,
                "expires_at": grant.expires_at,
                "notes": grant.notes,
                "version": grant.version,
            },
        )
        row = self._cursor.fetchone()
        if not row:
            raise ConflictError("promo_grant", grant.id)
        return _row_to_promo_grant(row)

    def delete_promo_grant(self, grant: PromoGrant) -> None:
        self._cursor.execute(
            "DELETE FROM promo_grants WHERE id = %s AND version = %s",
            (grant.id, grant.version),
        )
        if self._cursor.rowcount == 0:
            raise ConflictError("promo_grant", grant.id)

    def list_memberships_expiring(self, start: datetime, end: datetime) -> Sequence[Membership]:
        self._cursor.execute(
            """
            SELECT *
            FROM memberships
            WHERE is_active
              AND expires_at > %s
              AND expires_at <= %s
            ORDER BY expires_at ASC
            """,
            (start, end),
        )
        rows: List[Mapping[str, Any]] = self._cursor.fetchall() or []
        return [_row_to_membership(row) for row in rows]

    def reminder_sent(self, membership_id: str, reminder_type: str) -> bool:
        self._cursor.execute(
            """
            SELECT 1
            FROM membership_expiry_reminders
            WHERE membership_id = %s AND reminder_type = %s
            LIMIT 1
            """,
            (membership_id, reminder_type),
        )
        return self._cursor.fetchone() is not None

    def record_reminder(
        self,
        membership_id: str,
        owner_id: str,
        reminder_type: str,
        days_left: int,
    ) -> bool:
        self._cursor.execute(
            """
            INSERT INTO membership_expiry_reminders (membership_id, owner_id, reminder_type, days_left)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (membership_id, reminder_type) DO NOTHING
            RETURNING membership_id
            """,
            (membership_id, owner_id, reminder_type, days_left),
        )
        return self._cursor.fetchone() is not None

    def release_reminder(self, membership_id: str, reminder_type: str) -> None:
        self._cursor.execute(
            """
            DELETE FROM membership_expiry_reminders
            WHERE membership_id = %s AND reminder_type = %s
            """,
            (membership_id, reminder_type),
        )


class PostgresMembershipStore:
    """Concrete store running each unit of work in one PostgreSQL transaction."""

    def __init__(
        self,
        *,
        conn: Optional[PgConnection] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        statement_timeout_ms: int = 5000,
        lock_timeout_ms: int = 2000,
    ) -> None:
        self._conn = conn
        self._connection_factory = connection_factory
        self._statement_timeout_ms = statement_timeout_ms
        self._lock_timeout_ms = lock_timeout_ms

    @contextmanager
    def transaction(self) -> Iterator[PostgresMembershipTransaction]:
        try:
            with managed_connection(self._conn, factory=self._connection_factory) as (connection, _):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    cursor.execute("SET LOCAL statement_timeout = %s", (self._statement_timeout_ms,))
                    cursor.execute("SET LOCAL lock_timeout = %s", (self._lock_timeout_ms,))
                    yield PostgresMembershipTransaction(cursor)
                finally:
                    cursor.close()
        except _CONFLICT_ERRORS as exc:
            logger.info("Membership transaction aborted by a concurrent write", extra={"pgcode": exc.pgcode})
            raise ConflictError("membership", "transaction") from exc
        except _UNAVAILABLE_ERRORS as exc:
            logger.warning("Membership store unavailable", extra={"error": str(exc)})
            raise StoreUnavailable() from exc


__all__ = ["PostgresMembershipStore", "PostgresMembershipTransaction"]
