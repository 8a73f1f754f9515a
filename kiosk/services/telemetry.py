"""
Telemetry events, the metrics registry that counts them, and a fire-and-forget sink.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import requests

from ..models import KIND_TO_WIRE, StreamDescriptor, now_iso

LOGGER = logging.getLogger(__name__)

EVENT_KINDS = ("load", "ready", "skip", "error")
DEFAULT_COUNTERS = ("telemetry_total", "ready_total", "error_total", "skip_total", "load_total")
MAX_LAST_ERRORS = 50


def make_event(
    event: str,
    descriptor: Optional[StreamDescriptor] = None,
    detail: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ts": now_iso(), "event": event}
    if descriptor is not None:
        payload["camId"] = descriptor.id
        payload["camName"] = descriptor.name
        payload["kind"] = KIND_TO_WIRE.get(descriptor.kind, descriptor.kind)
    if detail is not None:
        payload["detail"] = detail
    return payload


class MetricsRegistry:
    """Counters per event kind plus the most recent error events (newest first)."""

    def __init__(self, max_errors: int = MAX_LAST_ERRORS) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in DEFAULT_COUNTERS}
        self._last_errors: Deque[Dict[str, Any]] = deque(maxlen=max_errors)

    def record(self, event: Dict[str, Any]) -> None:
        key = f"{event.get('event')}_total"
        with self._lock:
            self._counters["telemetry_total"] += 1
            self._counters[key] = self._counters.get(key, 0) + 1
            if event.get("event") == "error":
                self._last_errors.appendleft(dict(event))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "lastErrors": list(self._last_errors),
            }

    def reset(self) -> None:
        with self._lock:
            self._counters = {name: 0 for name in DEFAULT_COUNTERS}
            self._last_errors.clear()


def http_delivery(api_url: str, timeout: float = 2.5) -> Callable[[Dict[str, Any]], None]:
    endpoint = f"{api_url.rstrip('/')}/api/telemetry"

    def deliver(event: Dict[str, Any]) -> None:
        resp = requests.post(endpoint, json=event, timeout=timeout)
        resp.raise_for_status()

    return deliver


class TelemetrySink:
    """
    Unordered, best-effort outbound queue.

    ``emit`` never blocks and never raises; a daemon thread drains the queue
    and hands each event to ``deliver``. Delivery failures are dropped.
    """

    def __init__(self, deliver: Callable[[Dict[str, Any]], None], name: str = "telemetry") -> None:
        self._deliver = deliver
        self._name = name
        self._queue: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name=f"{self._name}-sink")
        self._thread.start()

    def emit(self, event: Dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread is None:
            return
        self._queue.put_nowait(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            try:
                self._deliver(event)
            except Exception as exc:
                LOGGER.debug("Dropped telemetry event %s: %s", event.get("event"), exc)

    @property
    def pending(self) -> int:
        return self._queue.qsize()
