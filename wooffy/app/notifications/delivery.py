"""Notification and role collaborators used after membership writes commit."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Protocol

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import ConnectionFactory, managed_connection
from .models import MembershipNotification, parse_notification

logger = logging.getLogger("notifications")

MEMBER_ROLE = "member"


class NotificationEmitter(Protocol):
    """Fire-and-forget delivery of a user-facing notification."""

    def send(
        self,
        owner_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        ...


class RoleAssigner(Protocol):
    """Idempotently grants a role to an owner."""

    def ensure_role(self, owner_id: str, role: str) -> None:
        ...


def dispatch_notification(
    emitter: NotificationEmitter,
    owner_id: str,
    notification: MembershipNotification,
) -> None:
    emitter.send(owner_id, notification.type, notification.title, notification.message, notification.data())


class LoggingNotificationEmitter:
    """Emitter that only logs; used when no database is configured."""

    def send(
        self,
        owner_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        notification = parse_notification(type, title, message, data)
        logger.info(
            "Notification queued",
            extra={"owner_id": owner_id, "type": notification.type, "title": notification.title},
        )


class LoggingRoleAssigner:
    def ensure_role(self, owner_id: str, role: str) -> None:
        logger.info("Role ensured", extra={"owner_id": owner_id, "role": role})


class _PostgresWriter:
    def __init__(
        self,
        *,
        conn: Optional[PgConnection] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self._conn = conn
        self._connection_factory = connection_factory

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn, factory=self._connection_factory) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()


class PostgresNotificationEmitter(_PostgresWriter):
    """Stores notifications in the ``notifications`` table read by the member app."""

    def send(
        self,
        owner_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        notification = parse_notification(type, title, message, data)
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO notifications (user_id, type, title, message, data)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    owner_id,
                    notification.type,
                    notification.title,
                    notification.message,
                    psycopg2.extras.Json(notification.data()),
                ),
            )


class PostgresRoleAssigner(_PostgresWriter):
    def ensure_role(self, owner_id: str, role: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO user_roles (user_id, role)
                VALUES (%s, %s)
                ON CONFLICT (user_id, role) DO NOTHING
                """,
                (owner_id, role),
            )


__all__ = [
    "LoggingNotificationEmitter",
    "LoggingRoleAssigner",
    "MEMBER_ROLE",
    "NotificationEmitter",
    "PostgresNotificationEmitter",
    "PostgresRoleAssigner",
    "RoleAssigner",
    "dispatch_notification",
]
