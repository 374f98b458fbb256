"""
Configuration management for the BitBucket reporting backend
"""
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.exceptions import ConfigurationError


class BitBucketSettings(BaseSettings):
    """BitBucket API configuration"""
    bitbucket_domain: str = Field(default="", description="Base URL of the BitBucket instance")
    bitbucket_api_token: str = Field(default="", description="Bearer token")

    bitbucket_request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    bitbucket_max_pages: int = Field(default=1000, description="Pagination safety ceiling")
    bitbucket_repositories_page_size: int = Field(default=100)
    bitbucket_pull_requests_page_size: int = Field(default=50)
    bitbucket_error_body_limit: int = Field(default=500, description="Max chars of a non-JSON error body")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def domain(self) -> str:
        return self.bitbucket_domain.rstrip("/")

    def require_domain(self) -> str:
        """Return the configured domain or fail before any network I/O"""
        if not self.bitbucket_domain:
            raise ConfigurationError(
                "BITBUCKET_DOMAIN environment variable is not set",
                setting="BITBUCKET_DOMAIN",
            )
        return self.domain

    def require_token(self) -> str:
        """Return the configured token or fail before any network I/O"""
        if not self.bitbucket_api_token:
            raise ConfigurationError(
                "BITBUCKET_API_TOKEN environment variable is not set",
                setting="BITBUCKET_API_TOKEN",
            )
        return self.bitbucket_api_token


class AppSettings(BaseSettings):
    """Main application settings"""
    app_name: str = Field(default="BitBucket PR Dashboard")
    debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:8080"])

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_bitbucket_settings() -> BitBucketSettings:
    """Read BitBucket settings from the environment.

    Built fresh on every call so credential changes take effect without a restart.
    """
    return BitBucketSettings()


# Global settings instance
settings = AppSettings()
