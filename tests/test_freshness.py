"""Tests for the per-room latest-response tracker."""

from agent_runtime.orchestrator.freshness import ResponseTracker


def test_latest_response_is_current():
    tracker = ResponseTracker()
    first = tracker.begin_response("agent", "room")
    assert tracker.is_current("agent", "room", first)

    second = tracker.begin_response("agent", "room")
    assert not tracker.is_current("agent", "room", first)
    assert tracker.is_current("agent", "room", second)


def test_rooms_and_agents_are_independent():
    tracker = ResponseTracker()
    a = tracker.begin_response("agent", "room-a")
    b = tracker.begin_response("agent", "room-b")
    other = tracker.begin_response("other-agent", "room-a")
    assert tracker.is_current("agent", "room-a", a)
    assert tracker.is_current("agent", "room-b", b)
    assert tracker.is_current("other-agent", "room-a", other)
    assert len(tracker) == 3


def test_superseded_run_cannot_clear_newer_entry():
    tracker = ResponseTracker()
    old = tracker.begin_response("agent", "room")
    new = tracker.begin_response("agent", "room")
    tracker.end_response("agent", "room", old)
    assert tracker.is_current("agent", "room", new)

    tracker.end_response("agent", "room", new)
    assert tracker.pending_rooms("agent") == []
    assert len(tracker) == 0


def test_end_without_id_clears_room():
    tracker = ResponseTracker()
    tracker.begin_response("agent", "room")
    tracker.end_response("agent", "room")
    tracker.end_response("unknown", "room")
    assert len(tracker) == 0
    assert "rooms=0" in repr(tracker)
