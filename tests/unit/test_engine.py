"""Unit tests for the in-memory workflow engine."""

from __future__ import annotations

import threading

from bookmark_relay.engine.memory import InMemoryWorkflowEngine


def test_resume_matches_once() -> None:
    engine = InMemoryWorkflowEngine()
    bookmark_id = engine.create_bookmark("WaitMessage", "after-wait")

    first = engine.resume(bookmark_id, "go")
    second = engine.resume(bookmark_id, "go")

    assert first.matched is True
    assert second.matched is False
    assert engine.resumed[0].resume_token == "after-wait"
    assert engine.pending() == []


def test_cancelled_bookmark_is_not_matched() -> None:
    engine = InMemoryWorkflowEngine()
    bookmark_id = engine.create_bookmark("WaitMessage")

    assert engine.cancel(bookmark_id) is True
    assert engine.resume(bookmark_id, "go").matched is False
    assert engine.wait_for(bookmark_id, timeout=0) is None


def test_wait_for_unblocks_on_resume() -> None:
    engine = InMemoryWorkflowEngine()
    bookmark_id = engine.create_bookmark("WaitMessage")

    timer = threading.Timer(0.05, engine.resume, args=(bookmark_id, "late"))
    timer.start()
    resumed = engine.wait_for(bookmark_id, timeout=3)
    timer.join()

    assert resumed is not None
    assert resumed.resume_input == "late"


def test_wait_for_times_out() -> None:
    engine = InMemoryWorkflowEngine()
    bookmark_id = engine.create_bookmark("WaitMessage")

    assert engine.wait_for(bookmark_id, timeout=0.01) is None
    assert engine.wait_for("unknown", timeout=0.01) is None


def test_finished_bookmark_is_released_after_wait() -> None:
    engine = InMemoryWorkflowEngine()
    bookmark_id = engine.create_bookmark("WaitMessage")
    engine.resume(bookmark_id, "go")

    first = engine.wait_for(bookmark_id, timeout=0)

    assert first is not None and first.resume_input == "go"
    assert engine.wait_for(bookmark_id, timeout=0) is None
    assert len(engine.resumed) == 1
