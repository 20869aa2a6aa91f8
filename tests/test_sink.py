from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from eventcrawler.models import EventStatus, ImportedEventRecord
from eventcrawler.services.sink import SINK_PATH_ENV, InMemoryEventSink, JsonFileEventSink, PersistenceSink

START = datetime(2030, 6, 1, 19, 0, tzinfo=UTC)


def _record(**overrides) -> ImportedEventRecord:
    values = {
        "event_name": "Jazz Night",
        "event_desc": "Live jazz in Itaewon",
        "event_start_at": START,
        "event_end_at": START + timedelta(hours=2),
        "external_id": "evt-1",
        "external_url": "https://luma.com/jazz",
        "origin": "luma",
    }
    values.update(overrides)
    return ImportedEventRecord(**values)


@pytest.fixture(params=["memory", "json"])
def sink(request, tmp_path) -> PersistenceSink:
    if request.param == "memory":
        return InMemoryEventSink()
    return JsonFileEventSink(tmp_path / "store" / "events.json")


def test_sinks_satisfy_protocol(sink) -> None:
    assert isinstance(sink, PersistenceSink)


def test_find_existing_by_id_or_url(sink) -> None:
    record = _record()
    sink.insert(record)

    assert sink.find_existing("evt-1", None).record_id == record.record_id
    assert sink.find_existing(None, "https://luma.com/jazz").record_id == record.record_id
    assert sink.find_existing("evt-2", "https://luma.com/other") is None
    assert sink.find_existing(None, None) is None


def test_status_queries_and_updates(sink) -> None:
    upcoming = _record()
    ongoing = _record(external_id="evt-2", external_url=None, event_status=EventStatus.ONGOING)
    sink.insert(upcoming)
    sink.insert(ongoing)

    assert [record.record_id for record in sink.find_by_status(EventStatus.ONGOING)] == [ongoing.record_id]
    assert sink.update_status(upcoming.record_id, EventStatus.COMPLETED) is True
    assert sink.update_status("missing", EventStatus.COMPLETED) is False
    assert [record.record_id for record in sink.find_by_status(EventStatus.COMPLETED)] == [upcoming.record_id]


def test_json_sink_persists_across_instances(tmp_path) -> None:
    path = tmp_path / "events.json"
    JsonFileEventSink(path).insert(_record())

    reloaded = JsonFileEventSink(path).find_existing("evt-1", None)

    assert reloaded is not None
    assert reloaded.event_start_at == START
    assert reloaded.is_real_event is False


def test_json_sink_skips_invalid_records(tmp_path) -> None:
    path = tmp_path / "events.json"
    path.write_text('{"events": [{"event_name": "broken"}]}', encoding="utf-8")

    assert JsonFileEventSink(path).find_by_status(EventStatus.UPCOMING) == []


def test_json_sink_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "events.json"
    path.write_text("{oops", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid JSON"):
        JsonFileEventSink(path).find_existing("evt-1", None)


def test_json_sink_path_from_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv(SINK_PATH_ENV, str(tmp_path / "custom.json"))

    assert JsonFileEventSink().path == tmp_path / "custom.json"
