from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "eci"
    POSTGRES_USER: str = "eci"
    POSTGRES_PASSWORD: str = "eci"
    DATABASE_URL: Optional[str] = None

    REDIS_URL: str = "redis://redis:6379/0"

    # Per-key lease used to serialize adjustments
    LOCK_PREFIX: str = "lock:inventory"
    LOCK_LEASE_SECONDS: float = 5.0
    LOCK_ACQUIRE_ATTEMPTS: int = 3
    LOCK_RETRY_BACKOFF_SECONDS: float = 0.1

    # Order event ingestion
    ORDER_EVENTS_STREAM: str = "orders.events"
    INGESTER_GROUP: str = "inventory"
    INGESTER_CONSUMER: str = "inventory-1"
    INGESTER_ENABLED: bool = True
    INGESTER_BLOCK_MS: int = 1000
    INGESTER_BATCH_SIZE: int = 10
    INGESTER_RETRY_DELAY_SECONDS: float = 1.0
    INGESTER_ITEM_ATTEMPTS: int = 3

    # Outbound stock notifications
    INVENTORY_EVENTS_STREAM: str = "inventory.events"
    PUBLISH_ATTEMPTS: int = 3

    RUN_MIGRATIONS: bool = True
    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

@lru_cache
def get_settings() -> Settings:
    return Settings()
