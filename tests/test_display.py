from __future__ import annotations

from dps_meter.display import DisplayPublisher


def test_publish_reaches_every_sink_with_timestamp():
    publisher = DisplayPublisher()
    first, second = [], []
    publisher.register(first.append)
    publisher.register(second.append)
    publisher.register(first.append)

    assert publisher.publish({"event": "DPSMeterSnapshot", "total_dps": "10"}) is True

    assert len(first) == 1 and len(second) == 1
    assert "timestamp" in first[0]
    assert first[0]["total_dps"] == "10"


def test_publish_rejects_invalid_payloads():
    publisher = DisplayPublisher()
    seen = []
    publisher.register(seen.append)

    assert publisher.publish({}) is False
    assert publisher.publish({"total_dps": 1}) is False
    assert publisher.publish({"event": "x", "bad": object()}) is False
    assert publisher.publish({"event": "x", "blob": "a" * 70_000}) is False
    assert seen == []


def test_failing_sink_is_skipped():
    publisher = DisplayPublisher()
    seen = []

    def broken(_payload):
        raise OSError("display gone")

    publisher.register(broken)
    publisher.register(seen.append)

    assert publisher.publish({"event": "x"}) is True
    assert len(seen) == 1


def test_no_sinks_reports_undelivered():
    publisher = DisplayPublisher()
    sink = lambda _payload: None  # noqa: E731
    publisher.register(sink)
    publisher.unregister(sink)
    publisher.unregister(sink)

    assert publisher.publish({"event": "x"}) is False
