#!/usr/bin/env python3
"""Programmatic suspend/resume example.

This demonstrates using the relay components directly against a running broker
(`docker compose up rabbitmq`):

* load settings from `.env`
* suspend two activities on the same condition
* publish the condition; the fanout exchange delivers it back to our own queue
* both activities are resumed

The condition is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from typing import Sequence

from bookmark_relay.engine.memory import InMemoryWorkflowEngine
from bookmark_relay.relay.config import RelaySettings
from bookmark_relay.relay.host import RelayHost
from bookmark_relay.relay.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Suspend and resume activities (example).")
    parser.add_argument("--condition", default="go", help="Message that resumes the activities")
    parser.add_argument("--timeout-seconds", type=float, default=10.0, help="How long to wait")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = RelaySettings()
    configure_logging(settings.log_level)

    engine = InMemoryWorkflowEngine()
    with RelayHost(settings=settings, engine=engine) as host:
        first = host.activities.suspend(args.condition, activity="ApproveOrder")
        second = host.activities.suspend(args.condition, activity="NotifyWarehouse")

        host.activities.publish(args.condition)

        for bookmark in (first, second):
            resumed = engine.wait_for(bookmark.id, timeout=args.timeout_seconds)
            if resumed is None:
                print(f"Bookmark {bookmark.id} was not resumed")
                return 4
            print(f"Resumed {resumed.name} with {resumed.resume_input!r}")

        print(f"Pending bookmarks: {len(host.registry)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
