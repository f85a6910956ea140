"""
Configuration management for the lab trend backend.
"""

from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_IMPORT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_IMPORT_MAX_ROWS = 100_000


class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    allowed_hosts: str = "localhost,127.0.0.1"

    # Import limits
    import_max_bytes: int = DEFAULT_IMPORT_MAX_BYTES
    import_max_rows: int = DEFAULT_IMPORT_MAX_ROWS

    # App metadata
    app_version: str = "1.0.0"

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def cors_origins(self) -> List[str]:
        """Return CORS origins as a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def trusted_hosts(self) -> List[str]:
        hosts = [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]
        # Allow Starlette TestClient default host
        if "testserver" not in hosts:
            hosts.append("testserver")
        return hosts

    def import_max_bytes_or_default(self) -> int:
        return self.import_max_bytes if self.import_max_bytes > 0 else DEFAULT_IMPORT_MAX_BYTES

    def import_max_rows_or_default(self) -> int:
        return self.import_max_rows if self.import_max_rows > 0 else DEFAULT_IMPORT_MAX_ROWS


# Global settings instance
settings = Settings()
