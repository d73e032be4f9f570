from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    EPOCH: int = 1609459200000
    WORKER_ID: Optional[int] = Field(default=None, ge=0, le=1023)
    DOMAIN: str = "http://localhost:8000"
    SLUG_MAX_RETRIES: int = 3
    CACHE_TTL: int = 86400
    KEYSPACE: str = "snowlink"
    REDIS_HOST_DEV: str = "localhost"
    REDIS_HOST_PROD: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[str] = None
    CASSANDRA_HOST: str = "127.0.0.1"
    CASSANDRA_CLIENT_ID: str = ""
    CASSANDRA_CLIENT_SECRET: str = ""
    ASTRA_BUNDLE_B64: str = ""

    class Config:
        env_file = ".env"


settings = Settings()
