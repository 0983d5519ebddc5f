"""
Contact reconciliation service settings
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Storage
    database_path: str = Field(default="contacts.db", alias="CONTACTS_DB_PATH")
    db_timeout: float = Field(
        default=5.0,
        alias="CONTACTS_DB_TIMEOUT",
        description="Seconds to wait on a locked database before failing"
    )

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")


settings = Settings()
