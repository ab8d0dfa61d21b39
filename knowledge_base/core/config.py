from typing import Any, List

from pydantic import PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    API_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "agent-knowledge-base"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"  # Dashboard URL

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "knowledge_base"
    SQLALCHEMY_DATABASE_URI: PostgresDsn | None = None
    SYNC_SQLALCHEMY_DATABASE_URI: PostgresDsn | None = None

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: str | None, info: Any) -> Any:
        if isinstance(v, str):
            return v
        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST"),
            port=info.data.get("POSTGRES_PORT"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    @field_validator("SYNC_SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_sync_db_connection(cls, v: str | None, info: Any) -> Any:
        if isinstance(v, str):
            return v
        return PostgresDsn.build(
            scheme="postgresql+psycopg2",  # Used by alembic migrations
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST"),
            port=info.data.get("POSTGRES_PORT"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: str = "6379"
    REDIS_PASSWORD: str = ""
    REDIS_URL: str | None = None

    @field_validator("REDIS_URL", mode="before")
    def assemble_redis_connection(cls, v: str | None, info: Any) -> Any:
        if isinstance(v, str):
            return v
        password = f":{info.data.get('REDIS_PASSWORD')}@" if info.data.get("REDIS_PASSWORD") else ""
        return f"redis://{password}{info.data.get('REDIS_HOST')}:{info.data.get('REDIS_PORT')}/0"

    # Mem0 (vector store backing the agent namespaces)
    MEM0_API_KEY: str | None = None

    # Ingestion
    MAX_FILE_SIZE_BYTES: int = 10 * 1024 * 1024  # 10MB
    SUPPORTED_FILE_TYPES: List[str] = [".txt", ".md", ".markdown", ".csv", ".json", ".html"]
    PREVIEW_ENABLED: bool = True
    PREVIEW_DISABLED_ORGANIZATIONS: str = ""  # Comma separated organization ids
    PREVIEW_TTL_HOURS: int = 24
    EMBEDDING_CONCURRENCY: int = 10
    CHUNK_SIZE_TOKENS: int = 500
    CHUNK_OVERLAP_TOKENS: int = 50

    # Deletion
    DELETION_BATCH_SIZE: int = 50
    DELETION_MAX_RETRIES: int = 3
    DELETED_FILE_RETENTION_DAYS: int = 30
    DELETION_LOCK_TIMEOUT_SECONDS: int = 900  # One worker per queue entry

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # Test Database - SQLite in-memory for tests
    TEST_DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",  # Allow extra fields from environment variables
    )

    def preview_enabled_for(self, organization_id: str) -> bool:
        """Whether uploads for an organization stop at the preview gate."""
        if not self.PREVIEW_ENABLED:
            return False
        disabled = {org.strip() for org in self.PREVIEW_DISABLED_ORGANIZATIONS.split(",") if org.strip()}
        return organization_id not in disabled


settings = Settings()
