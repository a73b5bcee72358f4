import threading

import pytest

from product_match.pipeline_types import PipelineCounts, RetrievalPlan, TelemetryEvent
from product_match.telemetry import TelemetrySink


def _event(i):
    return TelemetryEvent(request_id=f"req-{i}", counts=PipelineCounts(retrieved=i), retrieval_plan=RetrievalPlan.A)


def test_capacity_keeps_newest_fifty():
    sink = TelemetrySink()
    for i in range(1, 56):
        sink.record(_event(i))

    events = sink.get_events()
    assert len(events) == 50
    assert events[0].request_id == "req-55"
    assert events[-1].request_id == "req-6"


def test_record_sets_utc_timestamp():
    sink = TelemetrySink(capacity=3)
    sink.record(_event(1))
    ts = sink.get_events()[0].timestamp
    assert ts.endswith("Z")
    assert "T" in ts


def test_readers_get_copies():
    sink = TelemetrySink(capacity=3)
    sink.record(_event(1))
    sink.get_events()[0].counts.retrieved = 999
    assert sink.get_events()[0].counts.retrieved == 1


def test_clear_and_len():
    sink = TelemetrySink(capacity=3)
    for i in range(5):
        sink.record(_event(i))
    assert len(sink) == 3
    sink.clear()
    assert len(sink) == 0
    assert sink.get_events() == []


def test_export_serialises_whole_buffer():
    sink = TelemetrySink(capacity=5)
    sink.record(_event(1))
    sink.record(_event(2))

    payload = sink.export()

    assert payload["count"] == 2
    assert [e["request_id"] for e in payload["events"]] == ["req-2", "req-1"]
    assert payload["events"][0]["retrieval_plan"] == "A"
    assert payload["exported_at"].endswith("Z")


def test_concurrent_records_respect_capacity():
    sink = TelemetrySink(capacity=50)

    def worker(offset):
        for i in range(40):
            sink.record(_event(offset + i))

    threads = [threading.Thread(target=worker, args=(n * 100,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(sink) == 50
    assert len({e.request_id for e in sink.get_events()}) == 50


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        TelemetrySink(capacity=0)
