"""Connection helpers shared by the PostgreSQL repositories."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Tuple

from psycopg2.extensions import connection as PgConnection

from wooffy.app_context import get_conn

ConnectionFactory = Callable[[], PgConnection]


@contextmanager
def managed_connection(
    conn: Optional[PgConnection] = None,
    *,
    factory: Optional[ConnectionFactory] = None,
) -> Iterator[Tuple[PgConnection, bool]]:
    """Yield ``(connection, managed)``.

    A caller-supplied ``conn`` is yielded untouched and the caller owns its
    transaction. Otherwise a connection is opened from ``factory`` (or the
    application context), committed on success, rolled back on error and
    always closed.
    """

    if conn is not None:
        yield conn, False
        return

    connection = (factory or get_conn)()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


__all__ = ["ConnectionFactory", "managed_connection"]
