"""Connection and transaction helpers shared by the PostgreSQL repositories."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import psycopg2
from psycopg2.extensions import connection as PgConnection

from .. import app_context


def connect(dsn: str, *, connect_timeout: int, statement_timeout_ms: int) -> PgConnection:
    """Open a connection whose statements are bounded by ``statement_timeout_ms``."""

    options = f"-c statement_timeout={statement_timeout_ms}" if statement_timeout_ms else None
    return psycopg2.connect(dsn, connect_timeout=connect_timeout, options=options)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = app_context.get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


__all__ = ["connect", "managed_connection"]
