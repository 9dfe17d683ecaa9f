"""
Relay configuration.

Defaults can be overridden with ``RELAY_*`` environment variables, and
command line flags override both.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ConfigurationError


DEFAULT_SERIAL_PORT = "/dev/ttyACM0"
DEFAULT_BAUD_RATE = 115_200
DEFAULT_READ_TIMEOUT = 0.1
DEFAULT_WS_HOST = "127.0.0.1"
DEFAULT_WS_PORT = 8080
DEFAULT_WS_PATH = "/ws"
DEFAULT_HUB_CAPACITY = 100
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_RESTART_DELAY = 2.0
DEFAULT_HEALTHY_AFTER = 30.0


def env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}")


def env_optional_int(name: str, default: Optional[int]) -> Optional[int]:
    """Like env_int, but an empty value or "none" means unlimited."""
    v = os.getenv(name)
    if v is None:
        return default
    if v.strip().lower() in ("", "none", "unlimited"):
        return None
    return env_int(name, 0)


def env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {v!r}")


def env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-delay retry for a connection attempt.

    ``max_attempts=None`` retries forever; otherwise the operation is given
    up after that many consecutive failures.
    """

    delay: float = DEFAULT_RETRY_DELAY
    max_attempts: Optional[int] = None

    def allows(self, attempts: int) -> bool:
        """Whether another attempt may follow ``attempts`` failures."""
        return self.max_attempts is None or attempts < self.max_attempts

    def describe(self, attempts: int) -> str:
        if self.max_attempts is None:
            return f"attempt {attempts}"
        return f"attempt {attempts}/{self.max_attempts}"


@dataclass(frozen=True)
class RestartPolicy:
    """
    How the supervisor restarts a failed unit.

    The failure counter resets when a unit ran at least ``healthy_after``
    seconds before failing.
    """

    delay: float = DEFAULT_RESTART_DELAY
    max_restarts: Optional[int] = 10
    healthy_after: float = DEFAULT_HEALTHY_AFTER

    def allows(self, restarts: int) -> bool:
        return self.max_restarts is None or restarts < self.max_restarts


@dataclass
class RelayConfig:
    serial_port: str = DEFAULT_SERIAL_PORT
    baud_rate: int = DEFAULT_BAUD_RATE
    read_timeout: float = DEFAULT_READ_TIMEOUT
    ws_host: str = DEFAULT_WS_HOST
    ws_port: int = DEFAULT_WS_PORT
    ws_path: str = DEFAULT_WS_PATH
    hub_capacity: int = DEFAULT_HUB_CAPACITY
    serial_retry: RetryPolicy = field(default_factory=RetryPolicy)
    restart: RestartPolicy = field(default_factory=RestartPolicy)

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Build a configuration from ``RELAY_*`` environment variables."""
        return cls(
            serial_port=env_str("RELAY_SERIAL_PORT", DEFAULT_SERIAL_PORT),
            baud_rate=env_int("RELAY_BAUD_RATE", DEFAULT_BAUD_RATE),
            read_timeout=env_float("RELAY_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
            ws_host=env_str("RELAY_WS_HOST", DEFAULT_WS_HOST),
            ws_port=env_int("RELAY_WS_PORT", DEFAULT_WS_PORT),
            ws_path=env_str("RELAY_WS_PATH", DEFAULT_WS_PATH),
            hub_capacity=env_int("RELAY_HUB_CAPACITY", DEFAULT_HUB_CAPACITY),
            serial_retry=RetryPolicy(
                delay=env_float("RELAY_RETRY_DELAY", DEFAULT_RETRY_DELAY),
                max_attempts=env_optional_int("RELAY_MAX_RETRIES", None),
            ),
            restart=RestartPolicy(
                delay=env_float("RELAY_RESTART_DELAY", DEFAULT_RESTART_DELAY),
                max_restarts=env_optional_int("RELAY_MAX_RESTARTS", 10),
                healthy_after=env_float("RELAY_HEALTHY_AFTER", DEFAULT_HEALTHY_AFTER),
            ),
        )

    @property
    def ws_url(self) -> str:
        return f"ws://{self.ws_host}:{self.ws_port}{self.ws_path}"

    def validate(self) -> "RelayConfig":
        """
        Reject values no retry could make work.

        Raises:
            ConfigurationError: On the first invalid setting
        """
        if not self.serial_port:
            raise ConfigurationError("serial port must not be empty")
        if self.baud_rate <= 0:
            raise ConfigurationError(f"baud rate must be positive, got {self.baud_rate}")
        if self.read_timeout <= 0:
            raise ConfigurationError(f"read timeout must be positive, got {self.read_timeout}")
        if not 0 <= self.ws_port <= 65535:
            raise ConfigurationError(f"WebSocket port out of range: {self.ws_port}")
        if not self.ws_path.startswith("/"):
            raise ConfigurationError(f"WebSocket path must start with '/', got {self.ws_path!r}")
        if self.hub_capacity < 1:
            raise ConfigurationError(f"hub capacity must be at least 1, got {self.hub_capacity}")
        if self.serial_retry.delay < 0 or self.restart.delay < 0:
            raise ConfigurationError("retry delays must not be negative")
        if self.serial_retry.max_attempts is not None and self.serial_retry.max_attempts < 1:
            raise ConfigurationError("max retries must be at least 1")
        if self.restart.max_restarts is not None and self.restart.max_restarts < 0:
            raise ConfigurationError("max restarts must not be negative")
        return self
