"""CLI entrypoint for the bookmark relay."""

from __future__ import annotations

import argparse
import logging
import sys
import time

from pydantic import ValidationError

from bookmark_relay import __version__
from bookmark_relay.bookmarks.activities import DEFAULT_MESSAGE, WAIT_ACTIVITY
from bookmark_relay.engine.memory import InMemoryWorkflowEngine
from bookmark_relay.errors import BrokerConnectionError, NotConnectedError
from bookmark_relay.messaging.channel import MessageChannel
from bookmark_relay.relay.config import RelaySettings
from bookmark_relay.relay.host import RelayHost
from bookmark_relay.relay.listener import logging_handler
from bookmark_relay.relay.logging import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_BROKER = 3
EXIT_TIMEOUT = 4

# How often `wait` checks that the consume loop is still running.
BROKER_CHECK_SECONDS = 1.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookmark-relay",
        description="Suspend workflow activities until a matching broker message arrives",
    )
    parser.add_argument("--version", action="version", version=f"bookmark-relay {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser(
        "listen",
        help="Consume the queue and log every message (no resumption)",
    )
    listen.add_argument(
        "--queue",
        default=None,
        help="Queue to consume (defaults to RABBITMQ_QUEUE_NAME)",
    )

    publish = subparsers.add_parser("publish", help="Publish a message to the exchange")
    publish.add_argument(
        "text",
        nargs="?",
        default=DEFAULT_MESSAGE,
        help=f"Message text (default: {DEFAULT_MESSAGE!r})",
    )

    wait = subparsers.add_parser(
        "wait",
        help="Suspend on a condition and block until a matching message resumes it",
    )
    wait.add_argument("condition", help="Message text that resumes the activity")
    wait.add_argument(
        "--queue",
        default=None,
        help="Queue to consume (defaults to RABBITMQ_QUEUE_NAME)",
    )
    wait.add_argument(
        "--activity",
        default=WAIT_ACTIVITY,
        help="Activity name recorded on the bookmark",
    )
    wait.add_argument(
        "--timeout",
        "--timeout-seconds",
        dest="timeout_seconds",
        metavar="SECONDS",
        type=float,
        default=0.0,
        help="Give up after this many seconds (0 means wait forever)",
    )

    return parser


def _with_queue(settings: RelaySettings, queue: str | None) -> RelaySettings:
    if not queue:
        return settings
    broker = settings.broker.model_copy(update={"queue_name": queue})
    return settings.model_copy(update={"broker": broker})


def _listen(settings: RelaySettings) -> int:
    queue = settings.broker.queue_name
    channel = MessageChannel.from_settings(settings)
    channel.connect()
    try:
        channel.subscribe(queue, logging_handler(queue))
        print(f"Listening on {queue!r} (Ctrl+C to stop)")
        while not channel.wait(timeout=1.0):
            pass
        logger.error("Consume loop ended unexpectedly", extra={"queue": queue})
        return EXIT_BROKER
    except KeyboardInterrupt:
        return EXIT_OK
    finally:
        channel.disconnect()


def _publish(settings: RelaySettings, text: str) -> int:
    with MessageChannel.from_settings(settings) as channel:
        channel.publish(text)
    print(f"Published {text!r} to exchange {settings.broker.exchange_name!r}")
    return EXIT_OK


def _wait(settings: RelaySettings, condition: str, activity: str, timeout: float) -> int:
    engine = InMemoryWorkflowEngine()
    with RelayHost(settings=settings, engine=engine) as host:
        bookmark = host.activities.suspend(condition, activity=activity)
        print(f"Waiting for {condition!r} (bookmark {bookmark.id})")
        deadline = time.monotonic() + timeout if timeout > 0 else None
        resumed = None
        try:
            while resumed is None:
                interval = BROKER_CHECK_SECONDS
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    interval = min(remaining, interval)
                resumed = engine.wait_for(bookmark.id, timeout=interval)
                if resumed is None and host.channel.wait(timeout=0):
                    # Nothing can resume the bookmark once the consume loop is gone.
                    logger.error(
                        "Broker connection lost while waiting",
                        extra={"condition": condition, "bookmark_id": bookmark.id},
                    )
                    print("Broker connection lost", file=sys.stderr)
                    return EXIT_BROKER
        except KeyboardInterrupt:
            return EXIT_OK
    if resumed is None:
        print(f"Timed out waiting for {condition!r}", file=sys.stderr)
        return EXIT_TIMEOUT
    print(f"Resumed {resumed.name} with {resumed.resume_input!r}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RelaySettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.log_level)

    try:
        if args.command == "listen":
            return _listen(_with_queue(settings, args.queue))

        if args.command == "publish":
            return _publish(settings, args.text)

        if args.command == "wait":
            return _wait(
                _with_queue(settings, args.queue),
                args.condition,
                args.activity,
                args.timeout_seconds,
            )

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG

    except (BrokerConnectionError, NotConnectedError) as e:
        logger.error("Broker unavailable: %s", e)
        print(str(e), file=sys.stderr)
        return EXIT_BROKER

    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
