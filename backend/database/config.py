"""
PostgreSQL settings for the Document Control store
DATABASE_URL wins; otherwise the URL is assembled from POSTGRES_* variables
"""
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCHEME_ALIASES = ("postgres://", "postgresql://")


def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver and translate libpq's sslmode into asyncpg's ssl."""
    for scheme in _SCHEME_ALIASES:
        if url.startswith(scheme):
            url = "postgresql+asyncpg://" + url[len(scheme):]
            break
    return url.replace("sslmode=", "ssl=")


class PostgresSettings(BaseSettings):
    """Connection and pool settings (environment or .env)"""

    database_url_direct: str = ""

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "document_control"
    postgres_sslmode: str = "disable"

    # Pool
    pool_size: int = 10
    max_overflow: int = 5
    pool_pre_ping: bool = True
    pool_recycle: int = 1800
    echo_sql: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def database_url(self) -> str:
        direct_url = os.environ.get("DATABASE_URL", self.database_url_direct)
        if direct_url:
            return normalize_database_url(direct_url)

        ssl_param = f"?ssl={self.postgres_sslmode}" if self.postgres_sslmode != "disable" else ""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            f"{ssl_param}"
        )


postgres_settings = PostgresSettings()
