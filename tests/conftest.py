"""Pytest configuration and shared fixtures."""

import itertools
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from kiosk.controller import PlaybackController
from kiosk.models import StreamDescriptor, StreamHealth


SAMPLE_CAMS = {
    "version": 1,
    "updatedAt": "2024-05-01T12:00:00.000Z",
    "cams": [
        {
            "id": "harbor",
            "name": "Harbor Cam",
            "kind": "hls",
            "url": "https://cams.example.org/harbor/index.m3u8",
            "dwellSec": 45,
        },
        {
            "id": "eagle-nest",
            "name": "Eagle Nest",
            "kind": "youtube",
            "url": "https://www.youtube.com/embed/abc123",
            "attribution": "Wildlife Trust",
        },
        {
            "id": "traffic",
            "name": "Downtown Traffic",
            "kind": "web",
            "url": "https://traffic.example.org/live",
        },
    ],
}


def make_descriptor(
    cam_id: str,
    kind: str = "adaptive",
    url: Optional[str] = None,
    dwell_seconds: Optional[float] = None,
    health: Optional[StreamHealth] = None,
) -> StreamDescriptor:
    return StreamDescriptor(
        id=cam_id,
        name=f"Cam {cam_id}",
        kind=kind,
        url=url or f"https://cams.example.org/{cam_id}/index.m3u8",
        dwell_seconds=dwell_seconds,
        health=health,
    )


class FakeHandle:
    def __init__(self, when: float, seq: int, callback: Callable, args: tuple) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock implementing the slice of the event loop the controller uses."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._seq = itertools.count()
        self._handles: List[FakeHandle] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable, *args: Any) -> FakeHandle:
        handle = FakeHandle(self.now + delay, next(self._seq), callback, args)
        self._handles.append(handle)
        return handle

    def call_soon(self, callback: Callable, *args: Any) -> FakeHandle:
        return self.call_later(0, callback, *args)

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self._handles if not h.cancelled]

    def advance_to(self, when: float) -> None:
        """Fire every due callback in deadline order, then park the clock at ``when``."""
        while True:
            due = [h for h in self.pending if h.when <= when]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
        self.now = max(self.now, when)

    def advance(self, seconds: float) -> None:
        self.advance_to(self.now + seconds)


class FakeBinding:
    def __init__(self, descriptor, on_ready, on_fatal_error, attach_error=None) -> None:
        self.descriptor = descriptor
        self.on_ready = on_ready
        self.on_fatal_error = on_fatal_error
        self.attach_error = attach_error
        self.attach_calls = 0
        self.teardown_calls = 0

    def attach(self, descriptor) -> None:
        self.attach_calls += 1
        if self.attach_error is not None:
            raise self.attach_error

    def teardown(self) -> None:
        self.teardown_calls += 1


class BindingRecorder:
    """Binding factory that keeps every binding it hands out."""

    def __init__(self) -> None:
        self.bindings: List[FakeBinding] = []
        self.attach_error: Optional[Exception] = None

    def __call__(self, descriptor, on_ready, on_fatal_error) -> FakeBinding:
        binding = FakeBinding(descriptor, on_ready, on_fatal_error, self.attach_error)
        self.bindings.append(binding)
        return binding

    @property
    def last(self) -> FakeBinding:
        return self.bindings[-1]


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == name]


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def bindings() -> BindingRecorder:
    return BindingRecorder()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def controller(scheduler, bindings, telemetry) -> PlaybackController:
    return PlaybackController(
        scheduler=scheduler,
        binding_factory=bindings,
        telemetry=telemetry,
        default_dwell_seconds=90,
        ready_timeout_seconds=15,
        failover_delay_seconds=8,
    )


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch) -> Path:
    """Point the kiosk's data directory at a temporary directory."""
    import kiosk.api.cams_service as cams_module

    path = tmp_path / "data"
    path.mkdir()
    monkeypatch.setenv("KIOSK_DATA_DIR", str(path))
    cams_module._invalidate_cams_cache()
    yield path
    cams_module._invalidate_cams_cache()


@pytest.fixture
def sample_cams_file(data_dir: Path) -> Path:
    cams_file = data_dir / "cams.json"
    cams_file.write_text(json.dumps(SAMPLE_CAMS, indent=2))
    return cams_file


@pytest.fixture
def stub_prober():
    """A prober whose DNS and HTTP checks always succeed without touching the network."""
    from kiosk.services.health_probe import HealthProber

    session = MagicMock()
    session.head.return_value = MagicMock(status_code=200)
    return HealthProber(session=session, resolver=lambda host, port: [])


@pytest.fixture
def api_client(data_dir: Path, stub_prober):
    """Create a test client for the FastAPI app with isolated collaborators."""
    from fastapi.testclient import TestClient

    from kiosk.api.app import app, get_metrics, get_prober
    from kiosk.services.telemetry import MetricsRegistry

    metrics = MetricsRegistry()
    app.dependency_overrides[get_metrics] = lambda: metrics
    app.dependency_overrides[get_prober] = lambda: stub_prober

    client = TestClient(app)
    client.metrics = metrics
    yield client
    app.dependency_overrides.clear()
