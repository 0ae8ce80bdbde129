"""
WOPI broker configuration.
"""

import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class WOPISettings(BaseSettings):
    """WOPI broker configuration."""

    model_config = SettingsConfigDict(env_prefix="WOPI_", env_file=".env", extra="ignore")

    # Environment
    environment: str = "development"

    # Redis settings
    redis_url: str = "redis://localhost:6379"
    redis_pool_size: int = 20
    redis_socket_keepalive: bool = True

    # Token settings
    token_ttl_seconds: int = 36000

    # WOPI settings
    wopi_base_url: str = "http://localhost:8000"
    collabora_url: str = "http://localhost:9980"

    # Discovery settings
    discovery_ttl_seconds: int = 3600
    discovery_timeout: float = 45.0
    discovery_proxy_timeout: float = 180.0
    disable_certificate_verification: bool = False

    # State codec settings
    state_secret: Optional[str] = None
    passphrase_cookie_name: str = "nc_wopiPassphrase"
    passphrase_cookie_secure: bool = False
    web_root: str = "/"

    # Cleanup settings
    cleanup_interval_seconds: int = 600
    cleanup_batch_size: int = 1000
    template_mapping_grace_seconds: int = 60

    # Document defaults
    theme: str = "nextcloud"
    ui_mode: str = "classic"

    # Logging settings
    log_level: str = "INFO"
    json_logs: bool = True
    service_name: str = "wopi-broker"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Use SECRET_KEY_BASE if state secret not provided
        if not self.state_secret:
            self.state_secret = os.getenv("SECRET_KEY_BASE", "development-secret-key")

        # Use FORCE_SSL setting
        if os.getenv("FORCE_SSL", "false").lower() == "true":
            self.passphrase_cookie_secure = True

    @property
    def discovery_url(self) -> str:
        return self.collabora_url.rstrip("/") + "/hosting/discovery"


# Global settings instance
settings = WOPISettings()
