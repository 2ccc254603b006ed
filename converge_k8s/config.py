"""Configuration for converge-k8s."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LABEL_DOMAIN = "converge.k8s.io"
HASH_SUFFIX_LENGTH = 10


class Settings(BaseSettings):
    """Library settings, read from CONVERGE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Labels
    label_domain: str = Field(
        default=DEFAULT_LABEL_DOMAIN,
        description="Domain prefix for owner and component labels",
    )

    # Server-side apply
    field_manager: str = "converge-k8s"

    # Hashed ConfigMaps
    hash_suffix_length: int = Field(default=HASH_SUFFIX_LENGTH, ge=1, le=64)

    # API calls
    request_timeout_seconds: Optional[float] = None

    # Cluster
    kubeconfig_path: Optional[str] = None
    kube_context: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def owner_label(self) -> str:
        return f"{self.label_domain}/owner"

    @property
    def component_label(self) -> str:
        return f"{self.label_domain}/component"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )


OWNER_LABEL = f"{DEFAULT_LABEL_DOMAIN}/owner"
COMPONENT_LABEL = f"{DEFAULT_LABEL_DOMAIN}/component"
