"""End-to-end tests for the relay host against the fake broker."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from bookmark_relay.bookmarks.registry import BookmarkRegistry
from bookmark_relay.engine.memory import InMemoryWorkflowEngine
from bookmark_relay.errors import BrokerConnectionError
from bookmark_relay.relay.host import RelayHost


def test_message_from_another_process_resumes_waiters(
    fake_broker, make_channel, relay_settings, wait_until
) -> None:
    engine = InMemoryWorkflowEngine()
    host = RelayHost(settings=relay_settings, engine=engine, channel=make_channel())
    publisher = make_channel()

    with host:
        first = host.activities.suspend("go", activity="Approve")
        second = host.activities.suspend("go", activity="Ship")
        other = host.activities.suspend("stop")

        publisher.connect()
        publisher.publish("go")

        assert engine.wait_for(first.id, timeout=3) is not None
        assert engine.wait_for(second.id, timeout=3) is not None
        assert wait_until(lambda: fake_broker.acked() == [b"go"])
        assert [b.id for b in host.registry.snapshot()] == [other.id]

    assert not host.channel.is_open


def test_relay_receives_its_own_publish(
    fake_broker, make_channel, relay_settings, wait_until
) -> None:
    engine = InMemoryWorkflowEngine()

    with RelayHost(settings=relay_settings, engine=engine, channel=make_channel()) as host:
        bookmark = host.activities.suspend("self")
        host.activities.publish("self")

        resumed = engine.wait_for(bookmark.id, timeout=3)

    assert resumed is not None
    assert resumed.resume_input == "self"
    assert fake_broker.queues["relay-queue"] == (True, None)


def test_poison_message_is_requeued_once_then_dropped(
    fake_broker, make_channel, relay_settings, wait_until
) -> None:
    registry = MagicMock(spec=BookmarkRegistry)
    registry.find_by_condition.side_effect = RuntimeError("corrupt")
    host = RelayHost(
        settings=relay_settings,
        engine=InMemoryWorkflowEngine(),
        channel=make_channel(),
        registry=registry,
    )

    with host:
        host.activities.publish("boom")
        assert wait_until(lambda: len(fake_broker.nacked()) == 2)

    assert fake_broker.nacked() == [(b"boom", True), (b"boom", False)]
    assert fake_broker.acked() == []


def test_start_failure_is_logged_and_raised(
    fake_broker, make_channel, relay_settings, caplog: pytest.LogCaptureFixture
) -> None:
    fake_broker.refuse_connections = True
    host = RelayHost(
        settings=relay_settings, engine=InMemoryWorkflowEngine(), channel=make_channel()
    )

    with caplog.at_level(logging.ERROR, logger="bookmark_relay.relay.host"):
        with pytest.raises(BrokerConnectionError):
            host.start()

    assert any("Failed to connect" in r.getMessage() for r in caplog.records)


def test_stop_warns_about_lost_bookmarks(
    make_channel, relay_settings, caplog: pytest.LogCaptureFixture
) -> None:
    host = RelayHost(
        settings=relay_settings, engine=InMemoryWorkflowEngine(), channel=make_channel()
    )
    host.start()
    host.activities.suspend("never")

    with caplog.at_level(logging.WARNING, logger="bookmark_relay.relay.host"):
        host.stop()

    assert any("pending bookmarks" in r.getMessage() for r in caplog.records)
