"""
Helpers for reading and writing the stream list (``cams.json``).
"""

from __future__ import annotations

import json
import logging
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..models import StreamList, normalize_kind, now_iso
from ..state_service import resolve_data_dir

LOGGER = logging.getLogger(__name__)

CAMS_FILENAME = "cams.json"

# (path, mtime, data)
_cams_cache: Optional[Tuple[Path, float, Dict[str, Any]]] = None


def resolve_cams_path() -> Path:
    return resolve_data_dir() / CAMS_FILENAME


def _invalidate_cams_cache() -> None:
    global _cams_cache
    _cams_cache = None


def default_cam_file() -> Dict[str, Any]:
    return {"version": 1, "updatedAt": now_iso(), "cams": []}


def validate_cam(cam: Any) -> bool:
    if not isinstance(cam, dict):
        return False
    for key in ("id", "name", "kind", "url"):
        value = cam.get(key)
        if not isinstance(value, str) or not value.strip():
            return False
    if normalize_kind(cam["kind"]) is None:
        return False
    dwell = cam.get("dwellSec")
    if dwell is not None and (isinstance(dwell, bool) or not isinstance(dwell, (int, float))):
        return False
    attribution = cam.get("attribution")
    if attribution is not None and not isinstance(attribution, str):
        return False
    return True


def normalize_cam_file(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict) or not isinstance(raw.get("cams"), list):
        return default_cam_file()

    cams: List[Dict[str, Any]] = []
    for cam in raw["cams"]:
        if validate_cam(cam):
            cams.append(deepcopy(cam))
        else:
            LOGGER.warning("Dropping invalid cam entry: %r", cam)

    version = raw.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        version = 1
    updated_at = raw.get("updatedAt")
    return {
        "version": version,
        "updatedAt": updated_at if isinstance(updated_at, str) else now_iso(),
        "cams": cams,
    }


def read_cams_file() -> Dict[str, Any]:
    """Read the stream list; missing or malformed files yield an empty default."""
    cams_path = resolve_cams_path()
    try:
        with cams_path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except FileNotFoundError:
        return default_cam_file()
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to read %s: %s", cams_path, exc)
        return default_cam_file()
    return normalize_cam_file(raw)


def read_cams_file_cached() -> Dict[str, Any]:
    """Read the stream list with mtime-based caching."""
    global _cams_cache

    cams_path = resolve_cams_path()
    try:
        current_mtime = cams_path.stat().st_mtime
    except OSError:
        current_mtime = 0.0

    if (
        _cams_cache is not None
        and _cams_cache[0] == cams_path
        and abs(current_mtime - _cams_cache[1]) < 0.001
    ):
        return _cams_cache[2]

    data = read_cams_file()
    _cams_cache = (cams_path, current_mtime, data)
    return data


def write_cams_file(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace the whole stream list. Returns what was written."""
    out = {
        "version": data.get("version") or 1,
        "updatedAt": now_iso(),
        "cams": data.get("cams") if isinstance(data.get("cams"), list) else [],
    }

    cams_path = resolve_cams_path()
    cams_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(cams_path.parent), delete=False
    ) as tmp:
        json.dump(out, tmp, indent=2)
        tmp_path = Path(tmp.name)
    tmp_path.replace(cams_path)

    _invalidate_cams_cache()
    return out


def upsert_cam(cam: Dict[str, Any]) -> int:
    """Insert or replace a cam by id. Returns the new cam count."""
    if not validate_cam(cam):
        raise ValueError("Cam must include id, name, kind and url.")

    current = read_cams_file_cached()
    cams = list(current.get("cams", []))
    for idx, existing in enumerate(cams):
        if existing.get("id") == cam["id"]:
            cams[idx] = deepcopy(cam)
            break
    else:
        cams.append(deepcopy(cam))

    write_cams_file({"version": current.get("version", 1), "cams": cams})
    return len(cams)


def delete_cam(cam_id: str) -> int:
    """Remove a cam by id. Returns the new cam count."""
    current = read_cams_file_cached()
    cams = current.get("cams", [])
    remaining = [cam for cam in cams if cam.get("id") != cam_id]
    if len(remaining) == len(cams):
        raise KeyError(f"Cam '{cam_id}' not found.")

    write_cams_file({"version": current.get("version", 1), "cams": remaining})
    return len(remaining)


def load_stream_list() -> StreamList:
    return StreamList.from_dict(read_cams_file_cached())
