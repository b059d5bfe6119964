"""Process-level wiring: configuration, logging, hosting and the CLI."""

from bookmark_relay.relay.config import BrokerSettings, RelaySettings

__all__ = ["BrokerSettings", "RelaySettings"]
