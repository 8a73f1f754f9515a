"""Tests for the health gate."""

import pytest

from conftest import make_descriptor
from kiosk.health_gate import DEFAULT_OFFLINE_REASON, should_attempt
from kiosk.models import StreamHealth


@pytest.mark.unit
def test_unknown_health_is_attempted():
    decision = should_attempt(make_descriptor("a"))
    assert decision.attempt is True
    assert decision.reason is None


@pytest.mark.unit
def test_healthy_stream_is_attempted():
    decision = should_attempt(make_descriptor("a", health=StreamHealth(ok=True, detail="HTTP 200 (reachable)")))
    assert decision.attempt is True


@pytest.mark.unit
def test_failing_stream_is_rejected_with_its_detail():
    health = StreamHealth(ok=False, detail="DNS lookup failed for cams.example.org: timeout")
    decision = should_attempt(make_descriptor("a", health=health))

    assert decision.attempt is False
    assert decision.reason == "DNS lookup failed for cams.example.org: timeout"


@pytest.mark.unit
def test_failing_stream_without_detail_gets_default_reason():
    decision = should_attempt(make_descriptor("a", health=StreamHealth(ok=False)))

    assert decision.attempt is False
    assert decision.reason == DEFAULT_OFFLINE_REASON
