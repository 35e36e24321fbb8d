from functools import lru_cache
from urllib.parse import quote

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging import parse_level


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, case_sensitive=False)

    env: str = "development"

    # Database target: either a full URL or the libpq-style parts below
    database_url: str | None = None
    pg_host: str = Field("localhost", validation_alias=AliasChoices("pg_host", "pghost"))
    pg_port: int = Field(5432, validation_alias=AliasChoices("pg_port", "pgport"))
    pg_database: str = Field(
        "imagebuilder", validation_alias=AliasChoices("pg_database", "pgdatabase")
    )
    pg_user: str = Field("postgres", validation_alias=AliasChoices("pg_user", "pguser"))
    pg_password: str | None = Field(
        None, validation_alias=AliasChoices("pg_password", "pgpassword")
    )
    pg_sslmode: str = Field("prefer", validation_alias=AliasChoices("pg_sslmode", "pgsslmode"))

    # Retention
    dry_run: bool = False
    clones_retention_months: int = 5

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    def resolved_database_url(self) -> str:
        """Return DATABASE_URL, or build one from the PG* settings."""
        if (self.database_url or "").strip():
            return self.database_url.strip()  # type: ignore[union-attr]
        if not (self.pg_host or "").strip():
            return ""
        credentials = quote(self.pg_user, safe="")
        if self.pg_password:
            credentials += ":" + quote(self.pg_password, safe="")
        return (
            f"postgresql+psycopg://{credentials}@{self.pg_host}:{self.pg_port}"
            f"/{quote(self.pg_database, safe='')}?sslmode={self.pg_sslmode}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def validate_settings(settings: Settings) -> None:
    """Basic runtime validation before touching the database."""
    if not settings.resolved_database_url():
        raise ValueError("DATABASE_URL or PGHOST is required")
    if settings.clones_retention_months < 1:
        raise ValueError("CLONES_RETENTION_MONTHS must be at least 1")
    try:
        parse_level(settings.log_level)
    except ValueError as exc:
        raise ValueError(f"LOG_LEVEL is invalid: {exc}") from exc
