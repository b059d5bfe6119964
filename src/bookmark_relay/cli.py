"""Console script entrypoint; the CLI lives in `bookmark_relay.relay.main`."""

from __future__ import annotations

from bookmark_relay.relay.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
