#!/usr/bin/env python3
"""
Kiosk process: rotates through the configured streams on one asyncio loop.

The loop hosts the playback controller, its timers and player bindings, the
stream-list poller and a once-a-second housekeeping tick that publishes the
kiosk state, redraws the fallback screen countdown and the status overlay, and
picks up manual skip requests from the admin API.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Dict, Optional

from .controller import PlaybackController, PlaybackStatus
from .models import StreamDescriptor
from .players import make_binding_factory
from .screens import (
    overlay_geometry,
    render_idle_screen,
    render_offline_screen,
    render_status_overlay,
    save_screen,
)
from .services.health_probe import HealthCache, HealthProber
from .services.telemetry import TelemetrySink, http_delivery
from .settings import KioskSettings, load_settings
from .state_service import (
    load_skip_request,
    resolve_data_dir,
    save_kiosk_state,
)
from .stream_source import FileStreamListSource, HttpStreamListSource, StreamListPoller
from .surfaces import ImageSurface

LOGGER = logging.getLogger(__name__)

TICK_INTERVAL = 1.0
SCREEN_FILENAME = "fallback_screen.png"
OVERLAY_FILENAME = "status_overlay.png"


def build_source(settings: KioskSettings) -> Any:
    if settings.source == "file":
        prober = HealthProber(
            cache=HealthCache(ttl_seconds=settings.health_cache_ttl_seconds),
            http_timeout=settings.http_timeout_seconds,
        )
        return FileStreamListSource(prober)
    return HttpStreamListSource(settings.api_url)


class KioskRuntime:
    def __init__(
        self,
        settings: KioskSettings,
        controller: PlaybackController,
        image_surface: Optional[ImageSurface] = None,
        screen_path: Optional[Path] = None,
        overlay_surface: Optional[ImageSurface] = None,
        overlay_path: Optional[Path] = None,
    ) -> None:
        self.settings = settings
        self.controller = controller
        self.image_surface = image_surface if image_surface is not None else ImageSurface(settings.feh_path)
        self.overlay_surface = (
            overlay_surface if overlay_surface is not None else ImageSurface(settings.feh_path)
        )
        self.screen_path = screen_path or resolve_data_dir() / SCREEN_FILENAME
        self.overlay_path = overlay_path or resolve_data_dir() / OVERLAY_FILENAME
        self._overlay_key: Optional[tuple] = None
        self._overlay_lock: Optional[asyncio.Lock] = None
        self._last_skip_request = load_skip_request()
        self._tasks: set = set()
        controller.add_listener(self._on_change)

    def _on_change(self, _controller: PlaybackController) -> None:
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def refresh(self) -> Dict[str, Any]:
        """Publish the current snapshot and bring the fallback screen and overlay in line with it."""
        loop = asyncio.get_running_loop()
        snapshot = self.controller.snapshot()
        try:
            await loop.run_in_executor(None, save_kiosk_state, snapshot)
        except OSError as exc:
            LOGGER.warning("Failed to publish kiosk state: %s", exc)
        await self._update_screen(snapshot)
        await self._update_overlay(snapshot)
        return snapshot

    async def _update_screen(self, snapshot: Dict[str, Any]) -> None:
        status = snapshot["status"]
        if status not in (PlaybackStatus.FAILED.value, PlaybackStatus.IDLE.value):
            self.image_surface.close()
            return

        loop = asyncio.get_running_loop()
        if status == PlaybackStatus.FAILED.value:
            descriptor = self.controller.current
            image = await loop.run_in_executor(
                None,
                render_offline_screen,
                descriptor,
                snapshot["detail"],
                snapshot["auto_skip_in"],
                self.settings.display_size,
            )
        else:
            image = await loop.run_in_executor(None, render_idle_screen, self.settings.display_size)
        await loop.run_in_executor(None, save_screen, image, self.screen_path)

        # The session may have moved on while we were rendering.
        current = self.controller.snapshot()
        if current["status"] != status or current["generation"] != snapshot["generation"]:
            return
        self.image_surface.show(self.screen_path)

    async def _update_overlay(self, snapshot: Dict[str, Any]) -> None:
        if self._overlay_lock is None:
            self._overlay_lock = asyncio.Lock()
        async with self._overlay_lock:
            key = (
                snapshot["generation"],
                snapshot["status"],
                snapshot["detail"],
                snapshot["dwell_seconds"],
            )
            if key == self._overlay_key:
                return
            loop = asyncio.get_running_loop()
            image = await loop.run_in_executor(
                None,
                render_status_overlay,
                StreamDescriptor.from_dict(snapshot["cam"]),
                snapshot["status"],
                snapshot["detail"],
                snapshot["dwell_seconds"],
                self.settings.display_size,
            )
            await loop.run_in_executor(None, save_screen, image, self.overlay_path)
            self._overlay_key = key
            # Restart the viewer so it stacks above the window that just changed.
            self.overlay_surface.close()
            self.overlay_surface.show(
                self.overlay_path,
                geometry=overlay_geometry(image.size, self.settings.display_size),
            )

    async def check_skip_request(self) -> bool:
        loop = asyncio.get_running_loop()
        value = await loop.run_in_executor(None, load_skip_request)
        if value <= self._last_skip_request:
            return False
        self._last_skip_request = value
        self.controller.skip_now()
        return True

    async def tick(self) -> None:
        while True:
            try:
                await self.check_skip_request()
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Kiosk housekeeping tick failed")
            await asyncio.sleep(TICK_INTERVAL)

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self.image_surface.close()
        self.overlay_surface.close()


async def run(settings: KioskSettings) -> None:
    loop = asyncio.get_running_loop()

    sink = TelemetrySink(http_delivery(settings.api_url, timeout=settings.http_timeout_seconds))
    sink.start()

    controller = PlaybackController(
        scheduler=loop,
        binding_factory=make_binding_factory(settings, loop),
        telemetry=sink,
        default_dwell_seconds=settings.default_dwell_seconds,
        ready_timeout_seconds=settings.ready_timeout_seconds,
        failover_delay_seconds=settings.failover_delay_seconds,
    )
    runtime = KioskRuntime(settings, controller)
    poller = StreamListPoller(
        build_source(settings),
        controller.on_list_refreshed,
        interval=settings.poll_interval_seconds,
    )

    stop_event = asyncio.Event()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            pass

    LOGGER.info("Kiosk starting with settings: %s", settings.to_dict())
    poller.start()
    tick_task = loop.create_task(runtime.tick())
    try:
        await stop_event.wait()
    finally:
        LOGGER.info("Kiosk shutting down...")
        poller.stop()
        tick_task.cancel()
        controller.shutdown()
        runtime.close()
        sink.stop()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    asyncio.run(run(load_settings()))


if __name__ == "__main__":
    main()
