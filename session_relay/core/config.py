"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from session_relay.core.exceptions import ConfigurationError


def split_address(addr: str, default_host: str) -> tuple[str, int]:
    """Split a ``host:port`` or ``:port`` address.

    Args:
        addr: Address string, e.g. ``":8081"`` or ``"127.0.0.1:6379"``.
        default_host: Host used when the address omits one.

    Returns:
        Tuple of (host, port).

    Raises:
        ConfigurationError: If the address has no valid port.
    """
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ConfigurationError(f"Address {addr!r} is missing a port")

    try:
        port = int(port_text)
    except ValueError as e:
        raise ConfigurationError(f"Address {addr!r} has an invalid port") from e

    if not 0 < port < 65536:
        raise ConfigurationError(f"Address {addr!r} has an out of range port")

    # IPv6 literals are written as [::1]:8081
    host = host.strip("[]")
    return host or default_host, port


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Session Relay"
    debug: bool = False

    # Listener
    listen_addr: str = ":8081"

    # Redis
    redis_addr: str = "127.0.0.1:6379"
    redis_db: int = 0

    # Routing
    topic_prefix: str = "session."
    delivery_timeout: float = 5.0  # Max seconds for a single client write
    subscribe_timeout: float = 5.0  # Max seconds to wait for psubscribe confirmation

    # Resubscription after the subscription stream is lost
    resubscribe_max_attempts: int = 5
    resubscribe_initial_delay: float = 0.5
    resubscribe_max_delay: float = 10.0

    @property
    def redis_url(self) -> str:
        """Redis connection URL built from the backend address."""
        host, port = split_address(self.redis_addr, default_host="127.0.0.1")
        if ":" in host:
            host = f"[{host}]"
        return f"redis://{host}:{port}/{self.redis_db}"

    @property
    def topic_pattern(self) -> str:
        """Pattern covering every session topic."""
        return f"{self.topic_prefix}*"

    @property
    def listen_host(self) -> str:
        """Host part of the listen address (all interfaces if omitted)."""
        return split_address(self.listen_addr, default_host="0.0.0.0")[0]

    @property
    def listen_port(self) -> int:
        """Port part of the listen address."""
        return split_address(self.listen_addr, default_host="0.0.0.0")[1]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
