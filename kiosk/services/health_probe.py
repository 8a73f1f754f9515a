"""
Reachability probing used to annotate streams with a precomputed health verdict.

A probe is a DNS lookup followed by a best-effort HTTP HEAD. Results are cached
per ``kind:host`` so a list with many cams on the same host costs one probe.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests

from ..models import StreamDescriptor, StreamHealth, StreamList, now_iso

LOGGER = logging.getLogger(__name__)

HEALTH_CACHE_TTL_SECONDS = 30.0
HTTP_TIMEOUT_SECONDS = 2.5
MAX_PROBE_WORKERS = 8


class HealthCache:
    def __init__(
        self,
        ttl_seconds: float = HEALTH_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, StreamHealth]] = {}

    def get(self, key: str) -> Optional[StreamHealth]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, health = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return health

    def put(self, key: str, health: StreamHealth) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), health)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def hostname_from_url(raw: str) -> Optional[str]:
    try:
        parsed = urlparse(raw)
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    return parsed.hostname or None


class HealthProber:
    def __init__(
        self,
        cache: Optional[HealthCache] = None,
        http_timeout: float = HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        resolver: Callable[..., object] = socket.getaddrinfo,
    ) -> None:
        self.cache = cache if cache is not None else HealthCache()
        self.http_timeout = http_timeout
        self._session = session or requests.Session()
        self._resolver = resolver

    def check(self, descriptor: StreamDescriptor) -> StreamHealth:
        checked_at = now_iso()
        host = hostname_from_url(descriptor.url)
        if not host:
            return StreamHealth(ok=False, detail="Invalid URL", checked_at=checked_at)

        cache_key = f"{descriptor.kind}:{host}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            self._resolver(host, None)
        except (socket.gaierror, OSError) as exc:
            reason = exc.strerror if getattr(exc, "strerror", None) else str(exc)
            health = StreamHealth(
                ok=False,
                detail=f"DNS lookup failed for {host}: {reason}",
                checked_at=checked_at,
            )
            self.cache.put(cache_key, health)
            LOGGER.info("Health probe for %s failed at DNS: %s", descriptor.id, reason)
            return health

        ok, detail = self._http_check(descriptor.url)
        health = StreamHealth(
            ok=ok,
            detail=detail if ok else f"Reachability failed: {detail}",
            checked_at=checked_at,
        )
        self.cache.put(cache_key, health)
        if not ok:
            LOGGER.info("Health probe for %s failed: %s", descriptor.id, detail)
        return health

    def _http_check(self, url: str) -> Tuple[bool, str]:
        try:
            resp = self._session.head(url, timeout=self.http_timeout, allow_redirects=True)
        except requests.Timeout:
            return False, "HTTP check timed out"
        except requests.RequestException as exc:
            return False, str(exc)
        # Some hosts reject HEAD; any response at all means the host is reachable.
        return True, f"HTTP {resp.status_code} (reachable)"

    def annotate(self, stream_list: StreamList) -> StreamList:
        """Return a copy of ``stream_list`` with every descriptor's health filled in."""
        if not len(stream_list):
            return stream_list
        workers = min(MAX_PROBE_WORKERS, len(stream_list))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="health-probe") as pool:
            verdicts = list(pool.map(self.check, stream_list.streams))
        streams = tuple(
            descriptor.with_health(health)
            for descriptor, health in zip(stream_list.streams, verdicts)
        )
        return StreamList(
            streams=streams,
            version=stream_list.version,
            updated_at=stream_list.updated_at,
        )
