import base64
import time

import pytest
from fastapi.testclient import TestClient

from fakes import EMPTY_URL, FAST_POLL, STYLED_URL, FakeRoomClient, png_bytes
from roomflow import main
from roomflow.api import deps
from roomflow.core import config
from roomflow.services import pipelines as pipeline_registry


@pytest.fixture
def fake_client():
    return FakeRoomClient()


@pytest.fixture
def api(tmp_path, monkeypatch, fake_client):
    monkeypatch.setattr(config, "APP_DATA_DIR", str(tmp_path))
    monkeypatch.setattr(config, "LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "rooms.db"))
    monkeypatch.setattr(main, "RoomServiceClient", lambda: fake_client)
    monkeypatch.setattr(pipeline_registry, "PollSettings", lambda: FAST_POLL)
    with TestClient(main.app) as client:
        yield client


def _create(api, data: bytes = None, **params):
    payload = {
        "image_base64": base64.b64encode(data or png_bytes()).decode("ascii"),
        "filename": "living.png",
        "params": params,
    }
    response = api.post("/pipelines", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def _wait_for(api, path: str, predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = api.get(path).json()
        if predicate(body):
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"timed out waiting on {path}: {body}")
        time.sleep(0.01)


def test_health_and_styles(api):
    health = api.get("/health").json()
    assert health["status"] == "ok"
    assert health["room_service"] is True
    styles = api.get("/styles").json()["styles"]
    assert len(styles) == 8
    assert {"id": "modern", "title": "Modern", "description": "Sleek, current, innovative"} in styles


def test_token_is_enforced(api, monkeypatch):
    monkeypatch.setattr(config, "BACKEND_TOKEN", "secret")
    assert api.get("/pipelines").status_code == 401
    assert api.get("/pipelines", headers={deps.TOKEN_HEADER: "secret"}).status_code == 200


def test_events_socket_sends_current_pipelines(api):
    created = _create(api)
    with api.websocket_connect("/events") as ws:
        hello = ws.receive_json()
        while hello["type"] != "connected":
            hello = ws.receive_json()
    assert hello["type"] == "connected"
    assert [p["pipeline_id"] for p in hello["pipelines"]] == [created["pipeline_id"]]


def test_events_socket_accepts_query_token(api, monkeypatch):
    monkeypatch.setattr(config, "BACKEND_TOKEN", "secret")
    with api.websocket_connect("/events?token=secret") as ws:
        assert ws.receive_json()["type"] == "connected"


def test_full_pipeline_over_http(api, fake_client):
    created = _create(api, room_type="bedroom")
    pipeline_id = created["pipeline_id"]
    assert created["job"]["stage"] == "Uploading"
    assert created["job"]["params"]["room_type"] == "bedroom"

    path = f"/pipelines/{pipeline_id}"
    body = _wait_for(api, path, lambda b: b["job"]["stage"] == "AwaitingStyleSelection")
    assert body["job"]["first_stage_result_url"] == EMPTY_URL
    job_id = body["job"]["job_id"]

    response = api.post(f"{path}/style", json={"style_id": "botanical"})
    assert response.status_code == 200
    assert response.json()["accepted"] is True

    body = _wait_for(api, path, lambda b: b["job"]["stage"] == "Complete")
    assert body["job"]["second_stage_result_url"] == STYLED_URL
    assert fake_client.triggers == [(job_id, "botanical")]

    room = _wait_for(api, f"/rooms/{job_id}", lambda b: b.get("status") == "completed")
    assert room["style"] == "Botanical"
    assert room["room_type"] == "bedroom"
    assert room["styled_url"] == STYLED_URL

    status = api.get("/status").json()
    assert status["pipelines"]["total"] == 1
    assert status["poll"]["interval_ms"] == 0

    listed = api.get("/pipelines").json()["pipelines"]
    assert [p["pipeline_id"] for p in listed] == [pipeline_id]


def test_unreadable_image_fails_without_retry(api):
    created = _create(api, data=b"definitely not an image")
    path = f"/pipelines/{created['pipeline_id']}"
    body = _wait_for(api, path, lambda b: b["job"]["stage"] == "Failed")
    error = body["job"]["last_error"]
    assert error["kind"] == "ValidationError"
    assert error["retryable"] is False

    response = api.post(f"{path}/retry")
    assert response.status_code == 200
    assert response.json()["accepted"] is False


def test_bad_base64_is_rejected(api):
    response = api.post("/pipelines", json={"image_base64": "***"})
    assert response.status_code == 400


def test_unknown_pipeline_and_style(api):
    assert api.get("/pipelines/nope").status_code == 404
    assert api.post("/pipelines/nope/retry").status_code == 404
    assert api.post("/pipelines/nope/style", json={"style_id": "modern"}).status_code == 404
    assert api.post("/pipelines/nope/style", json={"style_id": "gothic"}).status_code == 422
    assert api.get("/rooms/nope").status_code == 404
    assert api.delete("/rooms/nope").status_code == 404


def test_style_retry_without_style_failure_is_not_accepted(api):
    created = _create(api)
    path = f"/pipelines/{created['pipeline_id']}"
    _wait_for(api, path, lambda b: b["job"]["stage"] == "AwaitingStyleSelection")
    response = api.post(f"{path}/retry-style")
    assert response.json()["accepted"] is False


def test_cancel_discards_pipeline(api):
    created = _create(api)
    path = f"/pipelines/{created['pipeline_id']}"
    response = api.post(f"{path}/cancel")
    assert response.status_code == 200
    assert api.get(path).status_code == 404
    assert api.post(f"{path}/cancel").status_code == 404


def test_rooms_can_be_deleted(api):
    created = _create(api)
    body = _wait_for(
        api,
        f"/pipelines/{created['pipeline_id']}",
        lambda b: b["job"]["stage"] == "AwaitingStyleSelection",
    )
    job_id = body["job"]["job_id"]
    room = _wait_for(api, f"/rooms/{job_id}", lambda b: b.get("job_id") == job_id)
    assert room["status"] == "processing"
    assert [r["job_id"] for r in api.get("/rooms").json()["rooms"]] == [job_id]

    assert api.delete(f"/rooms/{job_id}").json() == {"job_id": job_id, "deleted": True}
    assert api.get(f"/rooms/{job_id}").status_code == 404


def test_finished_pipelines_are_evicted_but_rooms_remain(api, monkeypatch):
    monkeypatch.setattr(config, "PIPELINE_RETENTION_SEC", 0)
    created = _create(api)
    path = f"/pipelines/{created['pipeline_id']}"
    body = _wait_for(api, path, lambda b: b["job"]["stage"] == "AwaitingStyleSelection")
    job_id = body["job"]["job_id"]
    assert api.post(f"{path}/style", json={"style_id": "modern"}).json()["accepted"] is True

    _wait_for(api, path, lambda b: b.get("detail") == "pipeline not found")
    assert api.get("/status").json()["pipelines"]["total"] == 0
    room = api.get(f"/rooms/{job_id}").json()
    assert room["status"] == "completed"
    assert room["styled_url"] == STYLED_URL


def test_non_retryable_failures_are_evicted(api, monkeypatch):
    monkeypatch.setattr(config, "PIPELINE_RETENTION_SEC", 0)
    created = _create(api, data=b"definitely not an image")
    path = f"/pipelines/{created['pipeline_id']}"
    _wait_for(api, path, lambda b: b.get("detail") == "pipeline not found")
    assert api.get("/pipelines").json()["pipelines"] == []
