from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent.parent


class RunConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class DatabaseConfig(BaseModel):
    url: str = "postgresql+asyncpg://postgres:postgres@db:5432/telemetry"
    echo: bool = False
    echo_pool: bool = False
    max_overflow: int = 10
    pool_size: int = 50
    naming_convention: dict[str, str] = {
          "ix": "ix_%(column_0_label)s",
          "uq": "uq_%(table_name)s_%(column_0_name)s",
          "ck": "ck_%(table_name)s_%(constraint_name)s",
          "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
          "pk": "pk_%(table_name)s"
    }


class RedisConfig(BaseModel):
    url: str = "redis://redis:6379"


class RateLimitConfig(BaseModel):
    # requests per minute; enterprise tokens are not limited
    free_rpm: int = 10
    pro_rpm: int = 100
    business_rpm: int = 1000


class IngestConfig(BaseModel):
    max_batch_size: int = 1000
    timestamp_tolerance_secs: int = 600
    nonce_ttl_secs: int = 600 # matches the timestamp tolerance window
    supported_schema_prefix: str = "1."


class LogConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter='__',
        env_prefix="APP_CONFIG__",
        extra="ignore",
    )
    run: RunConfig = RunConfig()
    db: DatabaseConfig = DatabaseConfig()
    redis: RedisConfig = RedisConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    ingest: IngestConfig = IngestConfig()
    log: LogConfig = LogConfig()

settings = Settings()
