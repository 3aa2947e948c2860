from __future__ import annotations

from datetime import datetime

from pybonsai import DevLog, EventKind, StoreEvent, report
from pybonsai.devlog import current_devlog, reporting_to


def test_devlog_is_bounded() -> None:
    log = DevLog("s", maxlen=3)

    for index in range(5):
        log.record(EventKind.VETO, f"p{index}")

    assert len(log) == 3
    assert [e.path for e in log.entries()] == ["p2", "p3", "p4"]


def test_entries_filter_and_clear() -> None:
    log = DevLog()
    log.record(EventKind.VETO, "a", "no")
    log.record(EventKind.STAGE_FAULT, "b", "boom")

    assert [e.path for e in log.entries(EventKind.STAGE_FAULT)] == ["b"]
    log.clear()
    assert log.entries() == []


def test_listeners_receive_events_and_can_be_removed() -> None:
    log = DevLog()
    seen: list[StoreEvent] = []
    remove = log.add_listener(seen.append)

    log.record(EventKind.VETO, "a")
    remove()
    remove()
    log.record(EventKind.VETO, "b")

    assert [e.path for e in seen] == ["a"]


def test_failing_listener_does_not_stop_recording() -> None:
    log = DevLog()

    def broken(event: StoreEvent) -> None:
        raise RuntimeError("boom")

    log.add_listener(broken)
    log.record(EventKind.VETO, "a")

    assert len(log) == 1


def test_report_targets_the_active_log_only() -> None:
    log = DevLog()

    assert report(EventKind.SINK_FAULT, "a") is None
    with reporting_to(log):
        assert current_devlog() is log
        report(EventKind.SINK_FAULT, "/a/", "disk full")
    assert current_devlog() is None

    (event,) = log.entries()
    assert event.path == "a"
    assert event.reason == "disk full"


def test_event_format_and_timestamps() -> None:
    event = StoreEvent(kind=EventKind.VETO, path="", reason="nope", observed_at=datetime(2026, 1, 1, 12, 0, 0))

    assert event.observed_at.tzinfo is not None
    assert "veto <root>: nope" in event.format()
    assert not event.is_fault
    assert DevLog().record(EventKind.SUBSCRIBER_FAULT).is_fault


def test_lines_render_every_entry() -> None:
    log = DevLog()
    log.record(EventKind.VETO, "a/b", "blocked")

    (line,) = log.lines()
    assert line.endswith("veto a/b: blocked")
