"""DB helper for Postgres."""

from __future__ import annotations

import contextvars
import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool


def get_db_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required when USE_DB=1")
    return url


_POOL: ThreadedConnectionPool | None = None
_logger = logging.getLogger("c6admin.db")
_query_logger = logging.getLogger("c6admin.db.query")
_ACTIVE_CONN: contextvars.ContextVar[Any | None] = contextvars.ContextVar("c6_db_active_conn", default=None)
_SLOW_MS = float(os.getenv("C6_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("C6_QUERY_LOG", "").strip() == "1"


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    if _POOL is None:
        if minconn is None:
            minconn = int(os.getenv("C6_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("C6_DB_POOL_MAX", "10"))
        _POOL = ThreadedConnectionPool(minconn, maxconn, dsn=get_db_url())


def _get_pool() -> ThreadedConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


def get_active_conn():
    return _ACTIVE_CONN.get()


@contextmanager
def get_conn():
    """Borrow a pooled connection, or reuse the one of an open transaction."""
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    conn = pool.getconn()
    _logger.debug("db_conn borrowed")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
        _logger.debug("db_conn returned")


@contextmanager
def transaction():
    """Pin one connection for the block so nested ``get_conn`` calls share it."""
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    conn = pool.getconn()
    token = _ACTIVE_CONN.set(conn)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _ACTIVE_CONN.reset(token)
        pool.putconn(conn)


def database_info() -> dict:
    with get_conn() as conn:
        return {
            "connection": "postgres",
            "type": "psycopg2",
            "name": conn.info.dbname,
            "version": str(conn.server_version),
        }


def fetch_one(conn, sql, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rows


def execute(conn, sql, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    _log_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rowcount
