"""Service configuration from environment variables."""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class RenewalConfig(BaseModel):
    """Tunables consumed by the renewal job and the pause/cancel workflow."""

    BATCH_SIZE: int = Field(100, gt=0)
    CONCURRENT_BATCHES: int = Field(5, gt=0)
    MAX_RETRIES: int = Field(3, ge=0)
    BUFFER_DAYS: int = Field(2, ge=0)
    DELIVERY_BUFFER_DAYS: int = Field(2, ge=0)
    RETRY_BACKOFF_SEC: float = Field(0.0, ge=0)
    # A claim older than this belongs to a run that died; it may be taken over.
    CLAIM_LEASE_SEC: float = Field(900.0, gt=0)


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://harvest:harvest@db:5432/harvest"
    TELEGRAM_BOT_TOKEN: str | None = None
    LOG_LEVEL: str = "INFO"

    # Renewal job
    RENEWAL_BATCH_SIZE: int = 100
    RENEWAL_CONCURRENT_BATCHES: int = 5
    RENEWAL_MAX_RETRIES: int = 3
    RENEWAL_RETRY_BACKOFF_SEC: float = 0.0
    RENEWAL_CLAIM_LEASE_SEC: float = 900.0
    RENEWAL_SCHEDULER_ENABLED: bool = True
    RENEWAL_RUN_AT: str = "02:00"
    RENEWAL_TIMEZONE: str = "Asia/Dhaka"

    # Buffers (days)
    SUBSCRIPTION_BUFFER_DAYS: int = 2
    DELIVERY_BUFFER_DAYS: int = 2

    class Config:
        env_file = ".env"
        extra = "allow"

    def renewal_config(self) -> RenewalConfig:
        return RenewalConfig(
            BATCH_SIZE=self.RENEWAL_BATCH_SIZE,
            CONCURRENT_BATCHES=self.RENEWAL_CONCURRENT_BATCHES,
            MAX_RETRIES=self.RENEWAL_MAX_RETRIES,
            BUFFER_DAYS=self.SUBSCRIPTION_BUFFER_DAYS,
            DELIVERY_BUFFER_DAYS=self.DELIVERY_BUFFER_DAYS,
            RETRY_BACKOFF_SEC=self.RENEWAL_RETRY_BACKOFF_SEC,
            CLAIM_LEASE_SEC=self.RENEWAL_CLAIM_LEASE_SEC,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
