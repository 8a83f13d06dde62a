import asyncio
import sqlite3
from typing import Any, Optional

from roomflow.core import config

db_lock = asyncio.Lock()
db_conn: sqlite3.Connection | None = None


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        create table if not exists rooms (
          job_id text primary key,
          original_name text,
          room_type text,
          style text,
          empty_url text,
          styled_url text,
          status text not null,
          created_at text not null,
          updated_at text not null
        );
        """
    )
    conn.execute(
        """
        create index if not exists idx_rooms_created
        on rooms (created_at);
        """
    )
    conn.commit()


async def connect_db(path: Optional[str] = None) -> None:
    global db_conn
    db_conn = sqlite3.connect(path or config.DB_PATH, check_same_thread=False)
    db_conn.row_factory = sqlite3.Row
    init_db(db_conn)


async def close_db() -> None:
    global db_conn
    if db_conn:
        db_conn.close()
        db_conn = None


def _ensure_conn() -> sqlite3.Connection:
    if db_conn is None:
        raise RuntimeError("database not initialized")
    return db_conn


async def execute(query: str, params: tuple[Any, ...] = ()) -> int:
    async with db_lock:
        return await asyncio.to_thread(_execute_sync, query, params)


def _execute_sync(query: str, params: tuple[Any, ...]) -> int:
    conn = _ensure_conn()
    cur = conn.execute(query, params)
    conn.commit()
    return cur.rowcount


async def fetchone(
    query: str, params: tuple[Any, ...] = ()
) -> Optional[sqlite3.Row]:
    async with db_lock:
        return await asyncio.to_thread(_fetchone_sync, query, params)


def _fetchone_sync(
    query: str, params: tuple[Any, ...]
) -> Optional[sqlite3.Row]:
    conn = _ensure_conn()
    cur = conn.execute(query, params)
    return cur.fetchone()


async def fetchall(
    query: str, params: tuple[Any, ...] = ()
) -> list[sqlite3.Row]:
    async with db_lock:
        return await asyncio.to_thread(_fetchall_sync, query, params)


def _fetchall_sync(
    query: str, params: tuple[Any, ...]
) -> list[sqlite3.Row]:
    conn = _ensure_conn()
    cur = conn.execute(query, params)
    return cur.fetchall()
