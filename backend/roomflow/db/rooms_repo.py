from typing import Any, Dict, List, Optional

from roomflow.db.connection import execute, fetchall, fetchone
from roomflow.utils.time import utc_now

_UPDATABLE = {"original_name", "room_type", "style", "empty_url", "styled_url", "status"}


def _row_to_room(row: Any) -> Dict[str, Any]:
    return {
        "job_id": row["job_id"],
        "original_name": row["original_name"],
        "room_type": row["room_type"],
        "style": row["style"],
        "empty_url": row["empty_url"],
        "styled_url": row["styled_url"],
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def save_room(
    job_id: str,
    original_name: Optional[str] = None,
    room_type: Optional[str] = None,
    style: Optional[str] = None,
    empty_url: Optional[str] = None,
    styled_url: Optional[str] = None,
    status: str = "processing",
) -> Dict[str, Any]:
    now = utc_now()
    await execute(
        """
        insert into rooms (
          job_id, original_name, room_type, style, empty_url, styled_url,
          status, created_at, updated_at
        )
        values (?, ?, ?, ?, ?, ?, ?, ?, ?)
        on conflict(job_id) do update set
          original_name = excluded.original_name,
          room_type = excluded.room_type,
          style = excluded.style,
          empty_url = excluded.empty_url,
          styled_url = excluded.styled_url,
          status = excluded.status,
          updated_at = excluded.updated_at
        """,
        (job_id, original_name, room_type, style, empty_url, styled_url, status, now, now),
    )
    return await load_room(job_id) or {}


async def update_room(job_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"unknown room fields: {sorted(unknown)}")
    if fields:
        fields["updated_at"] = utc_now()
        columns = [f"{key} = ?" for key in fields]
        values: List[Any] = list(fields.values())
        values.append(job_id)
        await execute(
            f"update rooms set {', '.join(columns)} where job_id = ?",
            tuple(values),
        )
    return await load_room(job_id)


async def load_room(job_id: str) -> Optional[Dict[str, Any]]:
    row = await fetchone("select * from rooms where job_id = ?", (job_id,))
    if row is None:
        return None
    return _row_to_room(row)


async def list_rooms(limit: int = 200) -> List[Dict[str, Any]]:
    rows = await fetchall(
        "select * from rooms order by created_at desc limit ?", (limit,)
    )
    return [_row_to_room(row) for row in rows]


async def delete_room(job_id: str) -> bool:
    deleted = await execute("delete from rooms where job_id = ?", (job_id,))
    return deleted > 0
