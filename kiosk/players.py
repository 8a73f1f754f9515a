"""
Player bindings, one per stream kind, behind the same ``attach``/``teardown`` shape.

Bindings report back only through the two callbacks they are constructed with;
the controller binds those to the session that owns the binding, so a late
callback from a torn-down binding is harmless.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Optional

from streamlink.exceptions import PluginError, StreamError
from streamlink.session import Streamlink
from streamlink.stream.hls import HLSStream

from .errors import HlsFatalError
from .models import KIND_ADAPTIVE, KIND_EMBEDDED, KIND_PAGE, StreamDescriptor
from .settings import KioskSettings
from .surfaces import HLS_MIME, BrowserSurface, MpvSurface

LOGGER = logging.getLogger(__name__)

DEFAULT_EMBED_READY_DELAY = 2.0
PIPE_CHUNK_SIZE = 64 * 1024


def open_hls_client(url: str) -> Any:
    """Open ``url`` with streamlink's HLS client. Blocking; returns a readable stream."""
    session = Streamlink()
    try:
        variants = HLSStream.parse_variant_playlist(session, url)
        stream = variants.get("best") if variants else None
        if stream is None:
            stream = HLSStream(session, url)
        return stream.open()
    except PluginError as exc:
        raise HlsFatalError("networkError", str(exc)) from exc
    except (StreamError, ValueError) as exc:
        raise HlsFatalError("manifestError", str(exc)) from exc


class EmbeddedBinding:
    """Third-party embeds expose no playing signal, so readiness is declared after a delay."""

    def __init__(
        self,
        surface: BrowserSurface,
        scheduler: Any,
        on_ready: Callable[[], None],
        on_fatal_error: Callable[[str], None],
        ready_delay: float = DEFAULT_EMBED_READY_DELAY,
    ) -> None:
        self.surface = surface
        self._scheduler = scheduler
        self._on_ready = on_ready
        self._on_fatal_error = on_fatal_error
        self.ready_delay = ready_delay
        self._ready_handle: Any = None
        self._attached = False

    def attach(self, descriptor: StreamDescriptor) -> None:
        self.surface.show(descriptor.url)
        self._attached = True
        self._ready_handle = self._scheduler.call_later(self.ready_delay, self._declare_ready)

    def _declare_ready(self) -> None:
        self._ready_handle = None
        if self._attached:
            self._on_ready()

    def teardown(self) -> None:
        if self._ready_handle is not None:
            self._ready_handle.cancel()
            self._ready_handle = None
        if self._attached:
            self._attached = False
            self.surface.close()


class PageBinding:
    """Generic web pages have no readiness wiring; the shared timers bound them."""

    def __init__(self, surface: BrowserSurface) -> None:
        self.surface = surface
        self._attached = False

    def attach(self, descriptor: StreamDescriptor) -> None:
        self.surface.show(descriptor.url)
        self._attached = True

    def teardown(self) -> None:
        if self._attached:
            self._attached = False
            self.surface.close()


class AdaptiveBinding:
    """
    HLS playback. Native mpv playback is preferred when the surface can demux
    HLS; otherwise streamlink fetches the stream and its bytes are piped into
    the surface. Readiness is the surface's ``playing`` event.
    """

    def __init__(
        self,
        surface_factory: Callable[[], MpvSurface],
        loop: asyncio.AbstractEventLoop,
        on_ready: Callable[[], None],
        on_fatal_error: Callable[[str], None],
        client_factory: Optional[Callable[[str], Any]] = open_hls_client,
    ) -> None:
        self._surface_factory = surface_factory
        self._loop = loop
        self._on_ready = on_ready
        self._on_fatal_error = on_fatal_error
        self._client_factory = client_factory
        self._surface: Optional[MpvSurface] = None
        self._client: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def attach(self, descriptor: StreamDescriptor) -> None:
        self._task = self._loop.create_task(self._run(descriptor.url))

    def teardown(self) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        surface, self._surface = self._surface, None
        if surface is not None:
            surface.close()
        client, self._client = self._client, None
        if client is not None:
            # Closing joins streamlink's worker threads; keep that off the loop.
            self._loop.run_in_executor(None, client.close)

    def _fatal(self, detail: str) -> None:
        if not self._closed:
            self._on_fatal_error(detail)

    def _close_abandoned_client(self, opening: asyncio.Future) -> None:
        """Close a client whose open finished after teardown."""
        if opening.cancelled() or opening.exception() is not None:
            return
        self._loop.run_in_executor(None, opening.result().close)

    async def _run(self, url: str) -> None:
        try:
            surface = self._surface = self._surface_factory()
            # The first capability check shells out to mpv.
            native = await self._loop.run_in_executor(None, surface.can_play_type, HLS_MIME)
            if native:
                await surface.start(url)
                await self._watch(surface)
                return

            if self._client_factory is None:
                self._fatal("HLS not supported by this runtime")
                return

            opening = self._loop.run_in_executor(None, self._client_factory, url)
            try:
                client = await asyncio.shield(opening)
            except asyncio.CancelledError:
                opening.add_done_callback(self._close_abandoned_client)
                raise
            self._client = client
            await surface.start(None)
            pump = self._loop.create_task(self._pump(client, surface))
            try:
                await self._watch(surface)
            finally:
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await pump
        except asyncio.CancelledError:
            raise
        except HlsFatalError as exc:
            self._fatal(f"HLS fatal: {exc.category}/{exc.detail}")
        except Exception as exc:
            LOGGER.debug("HLS playback of %s failed", url, exc_info=True)
            self._fatal(f"HLS play failed: {exc}")

    async def _watch(self, surface: MpvSurface) -> None:
        async for event in surface.events():
            name = event.get("event")
            if name == "playing":
                if not self._closed:
                    self._on_ready()
            elif name == "error":
                self._fatal("Video element error")
                return
            elif name in ("ended", "closed"):
                self._fatal(f"Playback stopped ({event.get('detail') or name})")
                return

    async def _pump(self, client: Any, surface: MpvSurface) -> None:
        while True:
            try:
                chunk = await self._loop.run_in_executor(None, client.read, PIPE_CHUNK_SIZE)
            except (OSError, StreamError) as exc:
                self._fatal(f"HLS fatal: networkError/{exc}")
                return
            if not chunk:
                self._fatal("HLS fatal: networkError/stream ended")
                return
            await surface.write(chunk)


def make_binding_factory(
    settings: KioskSettings, loop: asyncio.AbstractEventLoop
) -> Callable[[StreamDescriptor, Callable[[], None], Callable[[str], None]], Any]:
    def factory(
        descriptor: StreamDescriptor,
        on_ready: Callable[[], None],
        on_fatal_error: Callable[[str], None],
    ) -> Any:
        kind = descriptor.kind
        if kind == KIND_EMBEDDED:
            return EmbeddedBinding(
                BrowserSurface(settings.browser_path),
                loop,
                on_ready,
                on_fatal_error,
                ready_delay=settings.embed_ready_delay_seconds,
            )
        if kind == KIND_ADAPTIVE:
            return AdaptiveBinding(
                lambda: MpvSurface(settings.mpv_path),
                loop,
                on_ready,
                on_fatal_error,
            )
        if kind == KIND_PAGE:
            return PageBinding(BrowserSurface(settings.browser_path))
        raise ValueError(f"Unsupported stream kind: {kind}")

    return factory
