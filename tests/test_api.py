"""Tests for FastAPI endpoints."""

from pathlib import Path

import pytest

from kiosk.state_service import load_skip_request, save_kiosk_state

NEW_CAM = {
    "id": "pier",
    "name": "Pier",
    "kind": "hls",
    "url": "https://pier.example.org/index.m3u8",
    "dwellSec": 60,
}


@pytest.mark.api
def test_health_check(api_client, sample_cams_file: Path):
    response = api_client.get("/api/healthz")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] in ("ok", "degraded")
    assert data["checks"]["cams"]["count"] == 3
    assert data["checks"]["kiosk"]["status"] == "unknown"


@pytest.mark.api
def test_health_check_reports_kiosk_state(api_client, data_dir: Path):
    save_kiosk_state({"status": "ready"})

    kiosk = api_client.get("/api/healthz").json()["checks"]["kiosk"]
    assert kiosk["status"] == "ok"
    assert kiosk["playback"] == "ready"


@pytest.mark.api
def test_list_cams_without_health(api_client, sample_cams_file: Path):
    response = api_client.get("/api/cams", params={"health": "0"})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    cams = response.json()["cams"]
    assert [cam["id"] for cam in cams] == ["harbor", "eagle-nest", "traffic"]
    assert all("health" not in cam for cam in cams)


@pytest.mark.api
def test_list_cams_with_health(api_client, sample_cams_file: Path):
    response = api_client.get("/api/cams")

    assert response.status_code == 200
    cams = response.json()["cams"]
    assert all(cam["health"]["ok"] is True for cam in cams)
    assert cams[0]["health"]["detail"] == "HTTP 200 (reachable)"
    assert cams[1]["kind"] == "youtube"


@pytest.mark.api
def test_list_cams_empty(api_client):
    response = api_client.get("/api/cams")
    assert response.status_code == 200
    assert response.json()["cams"] == []


@pytest.mark.api
def test_upsert_cam(api_client, sample_cams_file: Path):
    response = api_client.post("/api/cams", json={"cam": NEW_CAM})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "count": 4}

    ids = [cam["id"] for cam in api_client.get("/api/cams", params={"health": "0"}).json()["cams"]]
    assert ids[-1] == "pier"


@pytest.mark.api
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"cam": {"id": "pier"}},
        {"cam": {**NEW_CAM, "kind": "rtsp"}},
        {"cam": {**NEW_CAM, "dwellSec": "soon"}},
    ],
)
def test_upsert_invalid_cam(api_client, data_dir: Path, body):
    response = api_client.post("/api/cams", json=body)
    assert response.status_code == 400


@pytest.mark.api
def test_delete_cam(api_client, sample_cams_file: Path):
    response = api_client.delete("/api/cams", params={"id": "traffic"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "count": 2}


@pytest.mark.api
def test_delete_cam_requires_id(api_client, sample_cams_file: Path):
    assert api_client.delete("/api/cams").status_code == 400


@pytest.mark.api
def test_delete_unknown_cam(api_client, sample_cams_file: Path):
    response = api_client.delete("/api/cams", params={"id": "ghost"})
    assert response.status_code == 404


@pytest.mark.api
def test_telemetry_is_counted(api_client):
    events = [
        {"ts": "2024-05-01T00:00:00Z", "event": "load", "camId": "harbor"},
        {"ts": "2024-05-01T00:00:01Z", "event": "error", "camId": "harbor", "detail": "boom"},
    ]
    for event in events:
        assert api_client.post("/api/telemetry", json=event).json() == {"ok": True}

    metrics = api_client.get("/api/metrics").json()
    assert metrics["counters"]["telemetry_total"] == 2
    assert metrics["counters"]["load_total"] == 1
    assert metrics["counters"]["error_total"] == 1
    assert metrics["lastErrors"][0]["detail"] == "boom"


@pytest.mark.api
@pytest.mark.parametrize(
    "event",
    [
        {"event": "load"},
        {"ts": "2024-05-01T00:00:00Z"},
        {"ts": "2024-05-01T00:00:00Z", "event": "exploded"},
    ],
)
def test_telemetry_rejects_incomplete_events(api_client, event):
    assert api_client.post("/api/telemetry", json=event).status_code == 400
    assert api_client.metrics.snapshot()["counters"]["telemetry_total"] == 0


@pytest.mark.api
def test_kiosk_state_not_published(api_client):
    assert api_client.get("/api/kiosk/state").status_code == 404


@pytest.mark.api
def test_kiosk_state_published(api_client, data_dir: Path):
    save_kiosk_state({"status": "failed", "detail": "Not ready within 15s", "generation": 4})

    response = api_client.get("/api/kiosk/state")
    assert response.status_code == 200
    assert response.json()["detail"] == "Not ready within 15s"


@pytest.mark.api
def test_kiosk_skip_bumps_counter(api_client, data_dir: Path):
    assert api_client.post("/api/kiosk/skip").json()["skip_request"] == 1
    assert api_client.post("/api/kiosk/skip").json()["skip_request"] == 2
    assert load_skip_request() == 2
