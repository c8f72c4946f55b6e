"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with HASSSTREAM_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: The broadcast limits (max clients, rate-limit window, timeouts) are
read once here and handed to the broadcaster as a BroadcastLimits value.
The broadcaster never reads settings itself, so tests can build isolated
instances with their own limits.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via HASSSTREAM_* env vars."""

    # Home Assistant
    hass_token: str = ""  # shared secret clients must present
    hass_socket_url: str = ""  # e.g. ws://homeassistant.local:8123/api/websocket

    # Server
    environment: str = "development"
    debug: bool = False  # forces DEBUG logging; `serve` auto-reloads
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Broadcast limits
    max_clients: int = 100
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 1000
    client_timeout_seconds: float = 300.0  # idle eviction threshold
    ping_interval_seconds: float = 30.0
    maintenance_interval_seconds: float = 60.0
    send_timeout_seconds: float = 5.0

    # Transports
    sse_queue_size: int = 256  # frames buffered per SSE stream

    # Upstream feed
    upstream_reconnect_delay_seconds: float = 1.0
    upstream_max_reconnect_attempts: int = 5

    model_config = {"env_prefix": "HASSSTREAM_"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure a shared token is configured in non-development environments."""
        if self.environment != "development" and not self.hass_token:
            raise ValueError(
                "HASSSTREAM_HASS_TOKEN must be set in non-development "
                "environments. Use the long-lived access token clients "
                "will present on connect."
            )
        return self

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


# Singleton: import this everywhere
settings = Settings()
