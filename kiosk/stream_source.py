"""
Stream list sources and the poller that feeds fresh snapshots to the controller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import requests

from .api import cams_service
from .models import StreamList
from .services.health_probe import HealthProber

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_FETCH_TIMEOUT = 10.0


class HttpStreamListSource:
    """Reads the health-annotated list from the admin API."""

    def __init__(
        self,
        api_url: str,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = f"{api_url.rstrip('/')}/api/cams"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._loaded = False

    def fetch(self) -> Optional[StreamList]:
        """
        Return the current list, or ``None`` when a refresh fails after a list
        has already been delivered. Only the very first load falls back to an
        empty list.
        """
        try:
            resp = self._session.get(
                self.endpoint,
                params={"health": "1"},
                headers={"Cache-Control": "no-store"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Failed to fetch stream list from %s: %s", self.endpoint, exc)
            if self._loaded:
                return None
            self._loaded = True
            return StreamList.empty()
        self._loaded = True
        return StreamList.from_dict(data)


class FileStreamListSource:
    """Reads ``cams.json`` directly, probing health locally when a prober is given."""

    def __init__(self, prober: Optional[HealthProber] = None) -> None:
        self._prober = prober

    def fetch(self) -> StreamList:
        stream_list = cams_service.load_stream_list()
        if self._prober is None:
            return stream_list
        return self._prober.annotate(stream_list)


class StreamListPoller:
    """
    Fetches a snapshot every ``interval`` seconds and hands it to ``on_refresh``.

    ``fetch`` is blocking and runs in the default executor, so a slow source
    never delays timers or binding callbacks on the loop.
    """

    def __init__(
        self,
        source: object,
        on_refresh: Callable[[StreamList], None],
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._source = source
        self._on_refresh = on_refresh
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> Optional[StreamList]:
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, self._source.fetch)
        if snapshot is None:
            LOGGER.info("Keeping the previous stream list")
            return None
        self._on_refresh(snapshot)
        return snapshot

    async def run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Stream list poll failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
