import asyncio
from pathlib import Path

import pytest

from roomflow.db import rooms_repo
from roomflow.db.connection import close_db, connect_db


def _with_db(db_path: Path, body):
    async def scenario():
        await connect_db(str(db_path))
        try:
            return await body()
        finally:
            await close_db()

    return asyncio.run(scenario())


def test_save_update_and_load_room(tmp_path: Path):
    async def body():
        saved = await rooms_repo.save_room(
            "job-1",
            original_name="living.png",
            room_type="living-room",
            empty_url="https://cdn.example.com/empty/job-1.jpg",
        )
        assert saved["status"] == "processing"
        assert saved["styled_url"] is None

        updated = await rooms_repo.update_room(
            "job-1",
            styled_url="https://cdn.example.com/styled/job-1.jpg",
            style="Modern",
            status="completed",
        )
        assert updated["status"] == "completed"
        assert updated["style"] == "Modern"
        assert updated["empty_url"] == "https://cdn.example.com/empty/job-1.jpg"
        assert updated["created_at"] == saved["created_at"]

    _with_db(tmp_path / "rooms.db", body)


def test_save_room_upserts(tmp_path: Path):
    async def body():
        await rooms_repo.save_room("job-1", original_name="a.png", status="processing")
        await rooms_repo.save_room("job-1", original_name="b.png", status="failed")
        rooms = await rooms_repo.list_rooms()
        assert len(rooms) == 1
        assert rooms[0]["original_name"] == "b.png"
        assert rooms[0]["status"] == "failed"

    _with_db(tmp_path / "rooms.db", body)


def test_update_rejects_unknown_fields(tmp_path: Path):
    async def body():
        await rooms_repo.save_room("job-1")
        with pytest.raises(ValueError):
            await rooms_repo.update_room("job-1", owner="someone")

    _with_db(tmp_path / "rooms.db", body)


def test_delete_and_missing_rooms(tmp_path: Path):
    async def body():
        await rooms_repo.save_room("job-1")
        await rooms_repo.save_room("job-2")
        assert await rooms_repo.delete_room("job-1") is True
        assert await rooms_repo.delete_room("job-1") is False
        assert await rooms_repo.load_room("job-1") is None
        assert await rooms_repo.update_room("missing", status="failed") is None
        assert [room["job_id"] for room in await rooms_repo.list_rooms()] == ["job-2"]

    _with_db(tmp_path / "rooms.db", body)


def test_rooms_persist_across_connections(tmp_path: Path):
    db_path = tmp_path / "rooms.db"

    async def write():
        await rooms_repo.save_room("job-1", room_type="kitchen")

    async def read():
        return await rooms_repo.load_room("job-1")

    _with_db(db_path, write)
    room = _with_db(db_path, read)
    assert room["room_type"] == "kitchen"
