"""
Shared helpers for the kiosk's on-disk state: the data directory, the published
playback snapshot and the control file used to request manual skips.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional

# File locking support (cross-platform)
try:
    import fcntl  # Linux/macOS
except ImportError:
    fcntl = None  # type: ignore

try:
    import msvcrt  # Windows
except ImportError:
    msvcrt = None  # type: ignore

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = Path("/data")
FALLBACK_DATA_DIR = REPO_ROOT / "data"

STATE_FILENAME = "kiosk_state.json"
CONTROL_FILENAME = "kiosk_control.json"


def resolve_data_dir() -> Path:
    override = os.environ.get("KIOSK_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if DEFAULT_DATA_DIR.exists():
        return DEFAULT_DATA_DIR

    FALLBACK_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return FALLBACK_DATA_DIR


def resolve_state_path() -> Path:
    return resolve_data_dir() / STATE_FILENAME


def resolve_control_path() -> Path:
    return resolve_data_dir() / CONTROL_FILENAME


def _write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(path.parent), delete=False
    ) as tmp:
        json.dump(data, tmp, indent=2)
        tmp_path = Path(tmp.name)
    tmp_path.replace(path)


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to read %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def _lock_file(file_handle) -> None:
    """Lock a file handle for exclusive access (cross-platform)."""
    if fcntl:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX)
    elif msvcrt:
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_LOCK, 1)


def _unlock_file(file_handle) -> None:
    if fcntl:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    elif msvcrt:
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)


def save_kiosk_state(state: Dict[str, Any]) -> None:
    """Publish the kiosk's playback snapshot for the admin API."""
    payload = dict(state)
    payload["updated_at"] = time.time()
    _write_json_atomic(resolve_state_path(), payload)


def load_kiosk_state() -> Optional[Dict[str, Any]]:
    return _read_json(resolve_state_path())


def load_skip_request() -> int:
    control = _read_json(resolve_control_path()) or {}
    value = control.get("skip_request", 0)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def request_skip() -> int:
    """Bump the skip counter the kiosk watches. Returns the new counter value."""
    control_path = resolve_control_path()
    control_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = control_path.with_suffix(".lock")

    with lock_path.open("a+", encoding="utf-8") as lock_fh:
        _lock_file(lock_fh)
        try:
            next_value = load_skip_request() + 1
            _write_json_atomic(
                control_path,
                {"skip_request": next_value, "requested_at": time.time()},
            )
        finally:
            _unlock_file(lock_fh)

    LOGGER.info("Requested kiosk skip #%d", next_value)
    return next_value
