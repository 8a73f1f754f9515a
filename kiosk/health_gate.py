"""
Decides whether a stream is worth attempting, from its precomputed health verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import StreamDescriptor

DEFAULT_OFFLINE_REASON = "Stream is offline"


@dataclass(frozen=True)
class GateDecision:
    attempt: bool
    reason: Optional[str] = None


def should_attempt(descriptor: StreamDescriptor) -> GateDecision:
    # Missing health means "unknown": attempt anyway.
    health = descriptor.health
    if health is not None and health.ok is False:
        return GateDecision(attempt=False, reason=health.detail or DEFAULT_OFFLINE_REASON)
    return GateDecision(attempt=True)
