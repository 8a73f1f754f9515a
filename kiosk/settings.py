"""
Kiosk runtime settings: optional JSON file plus environment overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

LOGGER = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "config" / "kiosk_settings.json"
CONTAINER_CONFIG_PATH = Path("/app/config/kiosk_settings.json")

SOURCE_KINDS = {"http", "file"}

# key -> (env var, default, (min, max) or None)
_NUMERIC_SETTINGS: Dict[str, Tuple[str, float, Optional[Tuple[float, float]]]] = {
    "default_dwell_seconds": ("KIOSK_DEFAULT_DWELL_SEC", 90.0, (1.0, 86400.0)),
    "ready_timeout_seconds": ("KIOSK_READY_TIMEOUT_SEC", 15.0, (1.0, 600.0)),
    "embed_ready_delay_seconds": ("KIOSK_EMBED_READY_SEC", 2.0, (0.0, 60.0)),
    "failover_delay_seconds": ("KIOSK_FAILOVER_DELAY_SEC", 8.0, (0.0, 300.0)),
    "poll_interval_seconds": ("KIOSK_POLL_SEC", 5.0, (0.5, 3600.0)),
    "health_cache_ttl_seconds": ("KIOSK_HEALTH_TTL_SEC", 30.0, (0.0, 3600.0)),
    "http_timeout_seconds": ("KIOSK_HTTP_TIMEOUT_SEC", 2.5, (0.1, 60.0)),
}

_TEXT_SETTINGS: Dict[str, Tuple[str, str]] = {
    "api_url": ("KIOSK_API_URL", "http://127.0.0.1:8000"),
    "source": ("KIOSK_SOURCE", "http"),
    "browser_path": ("KIOSK_BROWSER", "chromium"),
    "mpv_path": ("KIOSK_MPV", "mpv"),
    "feh_path": ("KIOSK_FEH", "feh"),
    "display_size": ("KIOSK_DISPLAY_SIZE", "1920x1080"),
}


@dataclass(frozen=True)
class KioskSettings:
    default_dwell_seconds: float = 90.0
    ready_timeout_seconds: float = 15.0
    embed_ready_delay_seconds: float = 2.0
    failover_delay_seconds: float = 8.0
    poll_interval_seconds: float = 5.0
    health_cache_ttl_seconds: float = 30.0
    http_timeout_seconds: float = 2.5
    api_url: str = "http://127.0.0.1:8000"
    source: str = "http"
    browser_path: str = "chromium"
    mpv_path: str = "mpv"
    feh_path: str = "feh"
    display_size: Tuple[int, int] = (1920, 1080)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["display_size"] = f"{self.display_size[0]}x{self.display_size[1]}"
        return data


def resolve_config_path(env: Mapping[str, str] = os.environ) -> Path:
    override = env.get("KIOSK_CONFIG")
    if override:
        return Path(override).expanduser()
    if CONTAINER_CONFIG_PATH.exists():
        return CONTAINER_CONFIG_PATH
    return CONFIG_PATH


def parse_display_size(value: Any, fallback: Tuple[int, int] = (1920, 1080)) -> Tuple[int, int]:
    try:
        width, height = (int(part) for part in str(value).lower().split("x", 1))
    except (TypeError, ValueError):
        return fallback
    if width < 320 or height < 240:
        return fallback
    return width, height


def normalize_settings(raw: Mapping[str, Any]) -> KioskSettings:
    """Coerce, clamp and default every setting; unknown keys are ignored."""
    values: Dict[str, Any] = {}

    for key, (_env, default, bounds) in _NUMERIC_SETTINGS.items():
        value = raw.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            LOGGER.warning("Invalid value for %s (%r), using %s", key, value, default)
            number = default
        if bounds is not None:
            number = max(bounds[0], min(number, bounds[1]))
        values[key] = number

    for key, (_env, default) in _TEXT_SETTINGS.items():
        value = raw.get(key)
        values[key] = str(value).strip() if value not in (None, "") else default

    if values["source"] not in SOURCE_KINDS:
        LOGGER.warning("Unknown stream source %r, using http", values["source"])
        values["source"] = "http"
    values["api_url"] = values["api_url"].rstrip("/")
    values["display_size"] = parse_display_size(values["display_size"])

    return KioskSettings(**values)


def load_settings(
    path: Optional[Path] = None, env: Mapping[str, str] = os.environ
) -> KioskSettings:
    config_path = path or resolve_config_path(env)

    raw: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            if isinstance(loaded, dict):
                raw.update(loaded)
            else:
                LOGGER.warning("Ignoring non-object settings file %s", config_path)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Failed to read settings from %s: %s", config_path, exc)

    for key, (env_var, _default, _bounds) in _NUMERIC_SETTINGS.items():
        if env.get(env_var):
            raw[key] = env[env_var]
    for key, (env_var, _default) in _TEXT_SETTINGS.items():
        if env.get(env_var):
            raw[key] = env[env_var]

    return normalize_settings(raw)
