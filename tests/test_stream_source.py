"""Tests for stream list sources and the poller."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from conftest import SAMPLE_CAMS, make_descriptor
from kiosk.controller import PlaybackStatus
from kiosk.models import StreamList
from kiosk.stream_source import FileStreamListSource, HttpStreamListSource, StreamListPoller


@pytest.mark.unit
def test_http_source_fetches_health_annotated_list():
    session = MagicMock()
    session.get.return_value.json.return_value = SAMPLE_CAMS
    source = HttpStreamListSource("http://api.local:8000/", timeout=3, session=session)

    streams = source.fetch()

    assert [s.id for s in streams] == ["harbor", "eagle-nest", "traffic"]
    args, kwargs = session.get.call_args
    assert args == ("http://api.local:8000/api/cams",)
    assert kwargs["params"] == {"health": "1"}
    assert kwargs["timeout"] == 3


@pytest.mark.unit
def test_http_source_failure_on_first_load_yields_empty_list():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    source = HttpStreamListSource("http://api.local:8000", session=session)

    assert len(source.fetch()) == 0
    assert source.fetch() is None


@pytest.mark.unit
def test_http_source_bad_json_on_first_load_yields_empty_list():
    session = MagicMock()
    session.get.return_value.json.side_effect = ValueError("no json")
    source = HttpStreamListSource("http://api.local:8000", session=session)

    assert len(source.fetch()) == 0


@pytest.mark.unit
def test_http_source_failure_after_a_load_keeps_previous_list():
    session = MagicMock()
    session.get.return_value.json.return_value = SAMPLE_CAMS
    source = HttpStreamListSource("http://api.local:8000", session=session)
    assert len(source.fetch()) == 3

    session.get.side_effect = requests.ConnectionError("refused")
    assert source.fetch() is None

    session.get.side_effect = None
    assert len(source.fetch()) == 3


@pytest.mark.unit
def test_file_source_reads_cams_file(sample_cams_file: Path):
    assert len(FileStreamListSource().fetch()) == 3


@pytest.mark.unit
def test_file_source_annotates_with_prober(sample_cams_file: Path):
    annotated = StreamList.of([make_descriptor("probed")])
    prober = MagicMock()
    prober.annotate.return_value = annotated

    assert FileStreamListSource(prober).fetch() is annotated
    assert len(prober.annotate.call_args[0][0]) == 3


@pytest.mark.unit
def test_poll_once_feeds_controller():
    snapshot = StreamList.of([make_descriptor("a")])
    source = MagicMock()
    source.fetch.return_value = snapshot
    on_refresh = MagicMock()

    result = asyncio.run(StreamListPoller(source, on_refresh).poll_once())

    assert result is snapshot
    on_refresh.assert_called_once_with(snapshot)


@pytest.mark.unit
def test_poller_keeps_running_after_a_failed_poll():
    snapshot = StreamList.of([make_descriptor("a")])
    source = MagicMock()
    source.fetch.side_effect = [RuntimeError("boom"), snapshot, snapshot]
    received = []

    async def scenario():
        got_one = asyncio.Event()

        def on_refresh(stream_list):
            received.append(stream_list)
            got_one.set()

        poller = StreamListPoller(source, on_refresh, interval=0)
        poller.start()
        await asyncio.wait_for(got_one.wait(), timeout=5)
        poller.stop()

    asyncio.run(scenario())

    assert received[0] is snapshot


@pytest.mark.unit
def test_poll_once_skips_refresh_when_source_keeps_previous_list():
    source = MagicMock()
    source.fetch.return_value = None
    on_refresh = MagicMock()

    assert asyncio.run(StreamListPoller(source, on_refresh).poll_once()) is None
    on_refresh.assert_not_called()


@pytest.mark.unit
def test_failed_refresh_does_not_interrupt_playback(controller, bindings):
    session = MagicMock()
    session.get.return_value.json.return_value = {
        "version": 1,
        "cams": [
            {"id": "a", "name": "A", "kind": "hls", "url": "https://cams.example.org/a.m3u8"},
            {"id": "b", "name": "B", "kind": "hls", "url": "https://cams.example.org/b.m3u8"},
        ],
    }
    poller = StreamListPoller(
        HttpStreamListSource("http://api.local:8000", session=session),
        controller.on_list_refreshed,
    )

    asyncio.run(poller.poll_once())
    bindings.last.on_ready()
    assert controller.status is PlaybackStatus.READY

    session.get.side_effect = requests.ConnectionError("refused")
    asyncio.run(poller.poll_once())

    assert controller.status is PlaybackStatus.READY
    assert controller.current.id == "a"
    assert bindings.last.teardown_calls == 0
