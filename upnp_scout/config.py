"""
Centralized configuration management using Pydantic Settings.

Configuration is loaded from environment variables with sensible defaults.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscoveryConfig(BaseSettings):
    """SSDP discovery configuration."""

    model_config = SettingsConfigDict(env_prefix="UPNP_SCOUT_DISCOVERY_")

    multicast_address: str = Field(default="239.255.255.250", description="SSDP multicast group")
    port: int = Field(default=1900, ge=0, le=65535, description="SSDP port (bind and destination)")
    bind_address: str = Field(default="", description="Local address to bind ('' = all interfaces)")
    interface_address: str = Field(
        default="0.0.0.0",
        description="Interface used to join the multicast group",
    )
    multicast_ttl: int = Field(default=2, ge=1, le=255, description="TTL for outgoing search datagrams")
    mx: int = Field(default=2, ge=1, le=5, description="MX hint (max response delay in seconds)")
    search_target: str = Field(default="ssdp:all", description="Default ST for searches")
    product: str = Field(default="upnp-scout", description="Product token in USER-AGENT")
    product_version: str = Field(default="1.0", description="Product version in USER-AGENT")
    log_messages: bool = Field(default=False, description="Log every received datagram at INFO")
    receive_buffer_size: int = Field(
        default=65536,
        ge=1024,
        description="SO_RCVBUF for the discovery socket",
    )


class DescriptionConfig(BaseSettings):
    """Device description fetch configuration."""

    model_config = SettingsConfigDict(env_prefix="UPNP_SCOUT_DESCRIPTION_")

    timeout: float = Field(default=5.0, gt=0, description="HTTP timeout per description fetch")
    max_concurrency: int = Field(default=8, ge=1, description="Concurrent description fetches")


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="UPNP_SCOUT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Nested configs
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    description: DescriptionConfig = Field(default_factory=DescriptionConfig)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


# Singleton settings instance
settings = Settings()
