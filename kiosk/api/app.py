"""
FastAPI application exposing stream-list management, telemetry and kiosk control endpoints.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

import psutil
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..models import StreamList
from ..services.health_probe import HealthProber
from ..services.telemetry import EVENT_KINDS, MetricsRegistry
from ..state_service import load_kiosk_state, request_skip, resolve_data_dir
from .cams_service import delete_cam, read_cams_file_cached, upsert_cam, validate_cam

LOGGER = logging.getLogger(__name__)

NO_STORE = {"cache-control": "no-store"}
KIOSK_STATE_STALE_SECONDS = 30.0

app = FastAPI(title="Camera Kiosk Admin API")

cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide collaborators, created once at import and injected per request.
_metrics = MetricsRegistry()
_prober = HealthProber()


def get_metrics() -> MetricsRegistry:
    return _metrics


def get_prober() -> HealthProber:
    return _prober


class CamUpsertRequest(BaseModel):
    cam: Optional[Dict[str, Any]] = None


class TelemetryPayload(BaseModel):
    ts: Optional[str] = None
    event: Optional[str] = None
    camId: Optional[str] = None
    camName: Optional[str] = None
    kind: Optional[str] = None
    detail: Optional[str] = None


@app.get("/api/healthz")
def health_check() -> Dict[str, Any]:
    """Liveness plus a quick look at the stream list, the kiosk and this process."""
    health_status: Dict[str, Any] = {
        "status": "ok",
        "timestamp": time.time(),
        "checks": {},
        "resources": {},
    }

    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        health_status["resources"] = {
            "memory_mb": round(memory_info.rss / (1024 * 1024), 2),
            "memory_percent": round(process.memory_percent(), 2),
        }
        disk_usage = psutil.disk_usage(str(resolve_data_dir()))
        health_status["resources"]["disk_percent"] = round(disk_usage.percent, 2)
        if disk_usage.percent > 90:
            health_status["status"] = "degraded"
            health_status["checks"]["disk"] = {
                "status": "warning",
                "message": f"Disk usage at {disk_usage.percent}%",
            }
    except (psutil.Error, OSError) as exc:
        LOGGER.debug("Failed to check resource usage: %s", exc)
        health_status["resources"] = {"error": str(exc)}

    data = read_cams_file_cached()
    health_status["checks"]["cams"] = {"status": "ok", "count": len(data.get("cams", []))}

    kiosk_state = load_kiosk_state()
    if kiosk_state is None:
        health_status["checks"]["kiosk"] = {"status": "unknown", "note": "no state published"}
    else:
        age = time.time() - float(kiosk_state.get("updated_at") or 0.0)
        stale = age > KIOSK_STATE_STALE_SECONDS
        health_status["checks"]["kiosk"] = {
            "status": "stale" if stale else "ok",
            "age_seconds": round(age, 2),
            "playback": kiosk_state.get("status"),
        }
        if stale:
            health_status["status"] = "degraded"

    return health_status


@app.get("/api/cams")
def get_cams(
    health: str = Query("1", description="Set to 0 to skip reachability probing."),
    prober: HealthProber = Depends(get_prober),
) -> JSONResponse:
    data = read_cams_file_cached()
    if health == "0":
        return JSONResponse(data, headers=NO_STORE)

    annotated = prober.annotate(StreamList.from_dict(data))
    health_by_id = {
        descriptor.id: descriptor.health.to_dict()
        for descriptor in annotated
        if descriptor.health is not None
    }
    cams: List[Dict[str, Any]] = []
    for cam in data.get("cams", []):
        entry = dict(cam)
        if cam.get("id") in health_by_id:
            entry["health"] = health_by_id[cam["id"]]
        cams.append(entry)

    return JSONResponse({**data, "cams": cams}, headers=NO_STORE)


@app.post("/api/cams")
def post_cam(body: CamUpsertRequest) -> JSONResponse:
    if body.cam is None or not validate_cam(body.cam):
        raise HTTPException(
            status_code=400,
            detail="Body must be { cam: { id, name, kind, url, dwellSec?, attribution? } }",
        )
    count = upsert_cam(body.cam)
    LOGGER.info("Upserted cam %s (%d total)", body.cam["id"], count)
    return JSONResponse({"ok": True, "count": count}, headers=NO_STORE)


@app.delete("/api/cams")
def remove_cam(cam_id: Optional[str] = Query(None, alias="id")) -> JSONResponse:
    if not cam_id:
        raise HTTPException(status_code=400, detail="Missing id")
    try:
        count = delete_cam(cam_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Not found") from None
    LOGGER.info("Deleted cam %s (%d left)", cam_id, count)
    return JSONResponse({"ok": True, "count": count}, headers=NO_STORE)


@app.post("/api/telemetry")
def post_telemetry(
    payload: TelemetryPayload, metrics: MetricsRegistry = Depends(get_metrics)
) -> Dict[str, Any]:
    if not payload.event or not payload.ts:
        raise HTTPException(status_code=400, detail="Missing fields")
    if payload.event not in EVENT_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown event: {payload.event}")
    event = payload.model_dump(exclude_none=True)
    metrics.record(event)
    return {"ok": True}


@app.get("/api/metrics")
def get_metrics_snapshot(metrics: MetricsRegistry = Depends(get_metrics)) -> JSONResponse:
    return JSONResponse(metrics.snapshot(), headers=NO_STORE)


@app.get("/api/kiosk/state")
def get_kiosk_state() -> JSONResponse:
    state = load_kiosk_state()
    if state is None:
        raise HTTPException(status_code=404, detail="Kiosk has not published any state yet")
    return JSONResponse(state, headers=NO_STORE)


@app.post("/api/kiosk/skip")
def skip_current_stream() -> Dict[str, Any]:
    try:
        value = request_skip()
    except OSError as exc:
        LOGGER.error("Failed to request kiosk skip: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to request skip: {exc}") from exc
    return {"ok": True, "skip_request": value}
