"""Connection settings for RabbitMQ backed queues."""

from collections.abc import Mapping

import typing as t
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["QueueSettings"]

# Legacy option map keys, as found under ``options["client"]``.
_CLIENT_OPTION_KEYS = ("host", "port", "username", "password", "vhost")


class QueueSettings(BaseSettings):
    """Settings shared by work and pub/sub queues.

    Every field can be overridden with a ``JOBQUEUE_RABBITMQ_<FIELD>``
    environment variable. Unknown keys are ignored.
    """

    model_config = SettingsConfigDict(
        env_prefix="JOBQUEUE_RABBITMQ_",
        extra="ignore",
    )

    # Broker connection
    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: SecretStr = SecretStr("guest")
    vhost: str = "/"
    heartbeat: int = 60
    connection_timeout: float = 10.0

    # Pub/sub exchange durability
    durable_exchange: bool = False

    # Per-operation timeouts (seconds)
    operation_timeout: float = Field(
        default=5.0,
        description="Timeout for basic.get, queue declaration and purge",
    )
    publish_timeout: float | None = Field(
        default=30.0,
        description="Timeout for the publisher confirm of a single publish",
    )

    @classmethod
    def from_options(cls, options: Mapping[str, t.Any] | None = None) -> "QueueSettings":
        """Build settings from the nested option map used by job queue configs.

        ``{"client": {"host": ..., "port": ..., "username": ..., "password": ...,
        "vhost": ...}, "durableExchange": bool}``. Missing or ``None`` values
        fall back to the defaults.
        """
        options = options or {}
        client = options.get("client") or {}
        values: dict[str, t.Any] = {
            key: client[key]
            for key in _CLIENT_OPTION_KEYS
            if client.get(key) is not None
        }
        if options.get("durableExchange") is not None:
            values["durable_exchange"] = options["durableExchange"]
        return cls(**values)

    @property
    def display_url(self) -> str:
        """Connection target with the password masked, for log output."""
        return f"amqp://{self.username}:***@{self.host}:{self.port}{self.vhost_path}"

    @property
    def vhost_path(self) -> str:
        return self.vhost if self.vhost.startswith("/") else f"/{self.vhost}"
