"""
Document Control Configuration
Reads DOC_CONTROL_* environment variables (or .env)
"""
from datetime import timedelta
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class DocumentControlSettings(BaseSettings):
    """Tunables for numbering, reservations, retries and identity tokens."""

    # Serial numbers
    serial_prefix: str = "IEMS"
    reservation_ttl_seconds: int = 300

    # Bounded retry for sequence / check-and-set conflicts
    max_write_retries: int = 3

    # Optional JSON file with extra workflow definitions
    workflow_definitions_file: Optional[str] = None

    # Identity tokens (issued elsewhere)
    jwt_secret_key: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    model_config = SettingsConfigDict(
        env_prefix="DOC_CONTROL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def reservation_ttl(self) -> timedelta:
        return timedelta(seconds=self.reservation_ttl_seconds)


document_control_settings = DocumentControlSettings()
