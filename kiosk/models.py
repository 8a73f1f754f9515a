"""
Stream descriptors and stream-list snapshots shared by the kiosk and the admin API.

The JSON wire format is the one stored in ``cams.json`` (``dwellSec``,
``checkedAt`` and the ``youtube``/``hls``/``web`` kind names). Parsing is
tolerant: malformed entries are dropped rather than raising, so a bad edit
to the stream list never takes the kiosk down.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

KIND_EMBEDDED = "embedded"
KIND_ADAPTIVE = "adaptive"
KIND_PAGE = "page"
STREAM_KINDS = (KIND_EMBEDDED, KIND_ADAPTIVE, KIND_PAGE)

WIRE_KINDS = {"youtube": KIND_EMBEDDED, "hls": KIND_ADAPTIVE, "web": KIND_PAGE}
KIND_TO_WIRE = {kind: wire for wire, kind in WIRE_KINDS.items()}


def now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def normalize_kind(value: Any) -> Optional[str]:
    """Map a wire or canonical kind name to the canonical one, or None."""
    if not isinstance(value, str):
        return None
    token = value.strip().lower()
    if token in STREAM_KINDS:
        return token
    return WIRE_KINDS.get(token)


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value <= 0:
        return None
    return float(value)


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


@dataclass(frozen=True)
class StreamHealth:
    ok: bool
    detail: Optional[str] = None
    checked_at: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["StreamHealth"]:
        if not isinstance(raw, dict) or not isinstance(raw.get("ok"), bool):
            return None
        detail = raw.get("detail")
        return cls(
            ok=raw["ok"],
            detail=str(detail) if detail is not None else None,
            checked_at=str(raw.get("checkedAt") or raw.get("checked_at") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": self.ok, "checkedAt": self.checked_at}
        if self.detail is not None:
            data["detail"] = self.detail
        return data


@dataclass(frozen=True)
class StreamDescriptor:
    id: str
    name: str
    kind: str
    url: str
    dwell_seconds: Optional[float] = None
    attribution: Optional[str] = None
    health: Optional[StreamHealth] = None

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["StreamDescriptor"]:
        """Build a descriptor from a cams.json entry; None when it is unusable."""
        if not isinstance(raw, dict):
            return None

        cam_id = _clean_text(raw.get("id"))
        name = _clean_text(raw.get("name"))
        kind = normalize_kind(raw.get("kind"))
        url = _clean_text(raw.get("url"))
        if not (cam_id and name and kind and url):
            return None

        dwell = raw.get("dwellSec", raw.get("dwellSeconds", raw.get("dwell_seconds")))
        return cls(
            id=cam_id,
            name=name,
            kind=kind,
            url=url,
            dwell_seconds=_positive_number(dwell),
            attribution=_clean_text(raw.get("attribution")),
            health=StreamHealth.from_dict(raw.get("health")),
        )

    def to_dict(self, include_health: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "kind": KIND_TO_WIRE[self.kind],
            "url": self.url,
        }
        if self.dwell_seconds is not None:
            data["dwellSec"] = self.dwell_seconds
        if self.attribution is not None:
            data["attribution"] = self.attribution
        if include_health and self.health is not None:
            data["health"] = self.health.to_dict()
        return data

    def with_health(self, health: Optional[StreamHealth]) -> "StreamDescriptor":
        return replace(self, health=health)

    def effective_dwell(self, default_seconds: float) -> float:
        return self.dwell_seconds if self.dwell_seconds is not None else default_seconds

    @property
    def health_failing(self) -> bool:
        return self.health is not None and not self.health.ok


@dataclass(frozen=True)
class StreamList:
    """One snapshot of the configured streams, replaced wholesale on refresh."""

    streams: Tuple[StreamDescriptor, ...] = ()
    version: int = 1
    updated_at: str = ""

    @classmethod
    def empty(cls) -> "StreamList":
        return cls(streams=(), version=1, updated_at=now_iso())

    @classmethod
    def from_dict(cls, raw: Any) -> "StreamList":
        if not isinstance(raw, dict):
            return cls.empty()

        cams = raw.get("cams")
        if not isinstance(cams, list):
            cams = []

        streams: List[StreamDescriptor] = []
        seen = set()
        for entry in cams:
            descriptor = StreamDescriptor.from_dict(entry)
            if descriptor is None or descriptor.id in seen:
                continue
            seen.add(descriptor.id)
            streams.append(descriptor)

        version = raw.get("version")
        if isinstance(version, bool) or not isinstance(version, int):
            version = 1
        updated_at = raw.get("updatedAt")
        return cls(
            streams=tuple(streams),
            version=version,
            updated_at=updated_at if isinstance(updated_at, str) else now_iso(),
        )

    @classmethod
    def of(cls, streams: Sequence[StreamDescriptor]) -> "StreamList":
        return cls(streams=tuple(streams), version=1, updated_at=now_iso())

    def to_dict(self, include_health: bool = True) -> Dict[str, Any]:
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "cams": [s.to_dict(include_health=include_health) for s in self.streams],
        }

    def index_of(self, stream_id: str) -> int:
        for idx, descriptor in enumerate(self.streams):
            if descriptor.id == stream_id:
                return idx
        return -1

    def __len__(self) -> int:
        return len(self.streams)

    def __iter__(self) -> Iterator[StreamDescriptor]:
        return iter(self.streams)

    def __getitem__(self, index: int) -> StreamDescriptor:
        return self.streams[index]
