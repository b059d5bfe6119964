"""Configuration for the bookmark relay.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Broker connection values use the `RABBITMQ_` prefix, relay behaviour uses the
`RELAY_` prefix. The log level is shared with other tools via `LOG_LEVEL`.
"""

from __future__ import annotations

import logging

import pika
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BrokerSettings(BaseSettings):
    """Connection and topology settings for the AMQP broker.

    Environment variables:
    - RABBITMQ_HOST_NAME
    - RABBITMQ_PORT
    - RABBITMQ_USER_NAME
    - RABBITMQ_PASSWORD
    - RABBITMQ_VIRTUAL_HOST
    - RABBITMQ_EXCHANGE_NAME
    - RABBITMQ_QUEUE_NAME
    """

    host_name: str = Field(
        default="localhost",
        description="Broker host name",
    )
    port: int = Field(
        default=5672,
        gt=0,
        le=65535,
        description="Broker AMQP port",
    )
    user_name: str = Field(
        default="guest",
        description="Broker user name",
    )
    password: str = Field(
        default="guest",
        description="Broker password",
    )
    virtual_host: str = Field(
        default="/",
        description="Broker virtual host",
    )
    exchange_name: str = Field(
        default="Default",
        description="Fanout exchange every message is published to",
    )
    queue_name: str = Field(
        default="SubscribeQueue",
        description="Durable queue bound to the exchange and consumed by this process",
    )
    heartbeat_seconds: int = Field(
        default=60,
        ge=0,
        description="AMQP heartbeat interval (0 disables heartbeats)",
    )
    blocked_connection_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Fail a connection the broker keeps blocked for longer than this",
    )

    model_config = SettingsConfigDict(
        env_prefix="RABBITMQ_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("exchange_name", "queue_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    def connection_parameters(self) -> pika.ConnectionParameters:
        """Build pika connection parameters.

        A single connection attempt is made; retry policy belongs to the caller.
        """

        return pika.ConnectionParameters(
            host=self.host_name,
            port=self.port,
            virtual_host=self.virtual_host,
            credentials=pika.PlainCredentials(self.user_name, self.password),
            heartbeat=self.heartbeat_seconds,
            blocked_connection_timeout=self.blocked_connection_timeout_seconds,
            connection_attempts=1,
        )


class RelaySettings(BaseSettings):
    """Settings for the relay process."""

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    prefetch_count: int = Field(
        default=10,
        gt=0,
        description="Unacknowledged deliveries the broker may push to this channel",
    )
    worker_threads: int = Field(
        default=4,
        gt=0,
        description="Handler threads per subscribed queue",
    )
    poll_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        description="How long the I/O thread waits for broker events per iteration",
    )
    call_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a channel call marshalled onto the I/O thread",
    )
    dead_letter_exchange: str | None = Field(
        default=None,
        description="Fanout exchange receiving dropped messages (optional)",
    )
    requeue_redelivered: bool = Field(
        default=False,
        description=(
            "Requeue a message whose handling failed even if it was already redelivered. "
            "Leaving this off bounds redelivery of poison messages to one retry."
        ),
    )

    broker: BrokerSettings = Field(
        default_factory=BrokerSettings,
        description="Broker configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("dead_letter_exchange")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value!r}")
        return level
