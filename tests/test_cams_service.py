"""Tests for cams.json persistence."""

import json
from pathlib import Path

import pytest

import kiosk.api.cams_service as cams_service
from kiosk.models import KIND_ADAPTIVE, KIND_EMBEDDED


@pytest.mark.unit
def test_missing_file_reads_as_empty_list(data_dir: Path):
    data = cams_service.read_cams_file()
    assert data["cams"] == []
    assert data["version"] == 1


@pytest.mark.unit
def test_corrupt_file_reads_as_empty_list(data_dir: Path):
    (data_dir / "cams.json").write_text("{not json")
    assert cams_service.read_cams_file()["cams"] == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "cam, valid",
    [
        ({"id": "a", "name": "A", "kind": "hls", "url": "https://a.example/x.m3u8"}, True),
        ({"id": "a", "name": "A", "kind": "youtube", "url": "https://y.example", "dwellSec": 30}, True),
        ({"id": "a", "name": "A", "kind": "rtsp", "url": "rtsp://a.example"}, False),
        ({"id": "a", "name": "A", "kind": "web", "url": "https://a.example", "dwellSec": "30"}, False),
        ({"id": "a", "name": "A", "kind": "web", "url": "https://a.example", "attribution": 5}, False),
        ({"id": " ", "name": "A", "kind": "web", "url": "https://a.example"}, False),
        ({"name": "A", "kind": "web", "url": "https://a.example"}, False),
        ("cam", False),
    ],
)
def test_validate_cam(cam, valid):
    assert cams_service.validate_cam(cam) is valid


@pytest.mark.unit
def test_normalize_drops_invalid_entries(sample_cams_file: Path):
    raw = json.loads(sample_cams_file.read_text())
    raw["cams"].append({"id": "broken", "kind": "hls"})
    sample_cams_file.write_text(json.dumps(raw))

    data = cams_service.read_cams_file()
    assert [cam["id"] for cam in data["cams"]] == ["harbor", "eagle-nest", "traffic"]


@pytest.mark.unit
def test_upsert_inserts_then_replaces(data_dir: Path):
    cam = {"id": "pier", "name": "Pier", "kind": "hls", "url": "https://pier.example/index.m3u8"}

    assert cams_service.upsert_cam(cam) == 1
    assert cams_service.upsert_cam({**cam, "name": "Pier (north)"}) == 1

    stored = json.loads((data_dir / "cams.json").read_text())
    assert stored["cams"] == [{**cam, "name": "Pier (north)"}]
    assert stored["updatedAt"].endswith("Z")


@pytest.mark.unit
def test_upsert_rejects_invalid_cam(data_dir: Path):
    with pytest.raises(ValueError):
        cams_service.upsert_cam({"id": "pier", "kind": "hls"})
    assert not (data_dir / "cams.json").exists()


@pytest.mark.unit
def test_delete_cam(sample_cams_file: Path):
    assert cams_service.delete_cam("eagle-nest") == 2
    ids = [cam["id"] for cam in cams_service.read_cams_file_cached()["cams"]]
    assert ids == ["harbor", "traffic"]


@pytest.mark.unit
def test_delete_missing_cam_raises(sample_cams_file: Path):
    with pytest.raises(KeyError):
        cams_service.delete_cam("nope")


@pytest.mark.unit
def test_cached_read_sees_writes(sample_cams_file: Path):
    first = cams_service.read_cams_file_cached()
    assert len(first["cams"]) == 3

    cams_service.upsert_cam({"id": "new", "name": "New", "kind": "web", "url": "https://new.example"})
    assert len(cams_service.read_cams_file_cached()["cams"]) == 4


@pytest.mark.unit
def test_load_stream_list_uses_canonical_kinds(sample_cams_file: Path):
    streams = cams_service.load_stream_list()

    assert len(streams) == 3
    assert streams[0].kind == KIND_ADAPTIVE
    assert streams[1].kind == KIND_EMBEDDED
