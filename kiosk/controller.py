"""
Playback lifecycle controller.

Owns the rotation index, the single live playback session, its ready/dwell
timers and its player binding. Every failure path (health gate rejection,
ready timeout, player fatal error) and dwell expiry converge on ``advance()``;
a stream is never retried in place.

All methods run on one scheduling domain (the asyncio loop in production, a
manual clock in tests). Timer and binding callbacks carry the generation of
the session that created them and are dropped when that session is gone.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .health_gate import should_attempt
from .models import StreamDescriptor, StreamList
from .services.telemetry import make_event

LOGGER = logging.getLogger(__name__)

DEFAULT_DWELL_SECONDS = 90.0
DEFAULT_READY_TIMEOUT_SECONDS = 15.0
DEFAULT_FAILOVER_DELAY_SECONDS = 8.0

ReadyCallback = Callable[[], None]
ErrorCallback = Callable[[str], None]
BindingFactory = Callable[[StreamDescriptor, ReadyCallback, ErrorCallback], Any]


class PlaybackStatus(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class PlaybackSession:
    generation: int
    descriptor: StreamDescriptor
    active_index: int
    status: PlaybackStatus = PlaybackStatus.LOADING
    status_detail: str = ""
    ready_deadline: Optional[float] = None
    dwell_deadline: Optional[float] = None
    advance_deadline: Optional[float] = None
    player: Any = None
    ready_handle: Any = None
    dwell_handle: Any = None
    advance_handle: Any = None


def select_current(stream_list: StreamList, index: int) -> Optional[StreamDescriptor]:
    """Return the descriptor at ``index`` wrapped onto the list, or None when empty."""
    count = len(stream_list)
    if count == 0:
        return None
    return stream_list[((index % count) + count) % count]


def _format_seconds(value: float) -> str:
    return f"{value:g}"


class PlaybackController:
    def __init__(
        self,
        scheduler: Any,
        binding_factory: BindingFactory,
        telemetry: Any = None,
        default_dwell_seconds: float = DEFAULT_DWELL_SECONDS,
        ready_timeout_seconds: float = DEFAULT_READY_TIMEOUT_SECONDS,
        failover_delay_seconds: float = DEFAULT_FAILOVER_DELAY_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self._binding_factory = binding_factory
        self._telemetry = telemetry
        self.default_dwell_seconds = default_dwell_seconds
        self.ready_timeout_seconds = ready_timeout_seconds
        self.failover_delay_seconds = failover_delay_seconds

        self._streams = StreamList.empty()
        self._index = 0
        self._generation = 0
        self._session: Optional[PlaybackSession] = None
        self._listeners: List[Callable[["PlaybackController"], None]] = []

    # ----- read-only state -----

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def streams(self) -> StreamList:
        return self._streams

    @property
    def rotation_index(self) -> int:
        return self._index

    @property
    def status(self) -> PlaybackStatus:
        if self._session is None:
            return PlaybackStatus.IDLE
        return self._session.status

    @property
    def current(self) -> Optional[StreamDescriptor]:
        return self._session.descriptor if self._session else None

    def add_listener(self, listener: Callable[["PlaybackController"], None]) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> Dict[str, Any]:
        session = self._session
        if session is None:
            return {
                "status": PlaybackStatus.IDLE.value,
                "detail": "",
                "cam": None,
                "index": None,
                "generation": self._generation,
                "count": len(self._streams),
                "dwell_seconds": None,
                "auto_skip_in": None,
            }

        auto_skip_in = None
        if session.advance_deadline is not None:
            auto_skip_in = max(0.0, session.advance_deadline - self._scheduler.time())
        return {
            "status": session.status.value,
            "detail": session.status_detail,
            "cam": session.descriptor.to_dict(),
            "index": session.active_index,
            "generation": session.generation,
            "count": len(self._streams),
            "dwell_seconds": session.descriptor.effective_dwell(self.default_dwell_seconds),
            "auto_skip_in": auto_skip_in,
        }

    # ----- list refresh -----

    def on_list_refreshed(self, new_list: StreamList) -> None:
        self._streams = new_list

        if len(new_list) == 0:
            if self._session is not None:
                LOGGER.info("Stream list is empty, going idle")
                self._teardown_session()
                self._notify()
            return

        session = self._session
        if session is None:
            self._start_current()
            return

        position = new_list.index_of(session.descriptor.id)
        if position < 0:
            LOGGER.info("Stream %s was removed, switching", session.descriptor.id)
            self._teardown_session()
            self._start_current()
            return

        refreshed = new_list[position]
        previous = session.descriptor
        self._index = position
        session.active_index = position

        if refreshed.kind != previous.kind or refreshed.url != previous.url:
            LOGGER.info("Stream %s changed source, restarting", refreshed.id)
            self._teardown_session()
            self._start_current()
            return

        session.descriptor = refreshed
        if refreshed.health_failing and session.status is not PlaybackStatus.FAILED:
            self.on_fatal_error(session.generation, should_attempt(refreshed).reason or "")
            return
        self._notify()

    # ----- session lifecycle -----

    def start_session(self, descriptor: StreamDescriptor) -> None:
        self._teardown_session()

        self._generation += 1
        generation = self._generation
        session = PlaybackSession(
            generation=generation,
            descriptor=descriptor,
            active_index=self._index,
        )
        self._session = session

        decision = should_attempt(descriptor)
        if not decision.attempt:
            LOGGER.info("Skipping %s without attaching: %s", descriptor.id, decision.reason)
            self._fail(session, decision.reason or "")
            return

        LOGGER.info("Loading %s (%s) [session %d]", descriptor.id, descriptor.kind, generation)
        self._emit("load", descriptor)

        now = self._scheduler.time()
        dwell = descriptor.effective_dwell(self.default_dwell_seconds)
        session.ready_deadline = now + self.ready_timeout_seconds
        session.dwell_deadline = now + dwell
        session.ready_handle = self._scheduler.call_later(
            self.ready_timeout_seconds, self._on_ready_timeout, generation
        )
        session.dwell_handle = self._scheduler.call_later(dwell, self._on_dwell_expired, generation)

        session.player = self._binding_factory(
            descriptor,
            functools.partial(self.on_ready, generation),
            functools.partial(self.on_fatal_error, generation),
        )
        self._notify()
        try:
            session.player.attach(descriptor)
        except Exception as exc:
            LOGGER.exception("Attaching player for %s failed", descriptor.id)
            self.on_fatal_error(generation, f"Player attach failed: {exc}")

    def on_ready(self, generation: int) -> None:
        session = self._current_session(generation)
        if session is None or session.status is not PlaybackStatus.LOADING:
            return

        session.status = PlaybackStatus.READY
        session.status_detail = ""
        self._cancel(session.ready_handle)
        session.ready_handle = None
        session.ready_deadline = None

        LOGGER.info("Stream %s is ready [session %d]", session.descriptor.id, generation)
        self._emit("ready", session.descriptor)
        self._notify()

    def on_fatal_error(self, generation: int, detail: str) -> None:
        session = self._current_session(generation)
        if session is None or session.status is PlaybackStatus.FAILED:
            return
        LOGGER.warning("Stream %s failed: %s", session.descriptor.id, detail)
        self._fail(session, detail)

    def advance(self) -> None:
        self._teardown_session()
        if len(self._streams) == 0:
            self._notify()
            return
        self._index += 1
        self._start_current()

    def skip_now(self) -> None:
        """Manual skip: move on immediately whatever the current status."""
        if self._session is None:
            return
        LOGGER.info("Manual skip of %s", self._session.descriptor.id)
        self.advance()

    def shutdown(self) -> None:
        self._teardown_session()
        self._notify()

    # ----- internals -----

    def _start_current(self) -> None:
        descriptor = select_current(self._streams, self._index)
        if descriptor is None:
            self._notify()
            return
        self.start_session(descriptor)

    def _current_session(self, generation: int) -> Optional[PlaybackSession]:
        session = self._session
        if session is None or session.generation != generation:
            LOGGER.debug("Ignoring stale callback for session %d", generation)
            return None
        return session

    def _fail(self, session: PlaybackSession, detail: str) -> None:
        session.status = PlaybackStatus.FAILED
        session.status_detail = detail
        self._disarm_timers(session)
        self._release_player(session)

        self._emit("skip", session.descriptor, detail)

        delay = self.failover_delay_seconds
        session.advance_deadline = self._scheduler.time() + delay
        session.advance_handle = self._scheduler.call_later(
            delay, self._advance_if_current, session.generation
        )
        self._notify()

    def _on_ready_timeout(self, generation: int) -> None:
        session = self._current_session(generation)
        if session is None or session.status is not PlaybackStatus.LOADING:
            return
        session.ready_handle = None
        self.on_fatal_error(
            generation, f"Not ready within {_format_seconds(self.ready_timeout_seconds)}s"
        )

    def _on_dwell_expired(self, generation: int) -> None:
        session = self._current_session(generation)
        if session is None:
            return
        session.dwell_handle = None
        dwell = session.descriptor.effective_dwell(self.default_dwell_seconds)
        LOGGER.info("Dwell reached for %s after %ss", session.descriptor.id, _format_seconds(dwell))
        self._emit("skip", session.descriptor, f"Dwell reached ({_format_seconds(dwell)}s)")
        self.advance()

    def _advance_if_current(self, generation: int) -> None:
        session = self._current_session(generation)
        if session is None:
            return
        session.advance_handle = None
        self.advance()

    def _disarm_timers(self, session: PlaybackSession) -> None:
        self._cancel(session.ready_handle)
        self._cancel(session.dwell_handle)
        session.ready_handle = session.dwell_handle = None
        session.ready_deadline = session.dwell_deadline = None

    def _release_player(self, session: PlaybackSession) -> None:
        player, session.player = session.player, None
        if player is None:
            return
        try:
            player.teardown()
        except Exception:
            LOGGER.exception("Player teardown for %s raised", session.descriptor.id)

    def _teardown_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        self._disarm_timers(session)
        self._cancel(session.advance_handle)
        session.advance_handle = None
        session.advance_deadline = None
        self._release_player(session)

    @staticmethod
    def _cancel(handle: Any) -> None:
        if handle is not None:
            handle.cancel()

    def _emit(self, event: str, descriptor: StreamDescriptor, detail: Optional[str] = None) -> None:
        if self._telemetry is None:
            return
        try:
            self._telemetry.emit(make_event(event, descriptor, detail))
        except Exception as exc:
            LOGGER.debug("Telemetry emit failed: %s", exc)

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener(self)
            except Exception:
                LOGGER.exception("Playback listener raised")
