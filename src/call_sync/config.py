from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from .coordinator.batch_sink import BatchConfig
from .coordinator.retry_queue import RetryConfig
from .reconcile.poller import PollConfig


class SyncSettings(BaseSettings):
    # rate limiter
    CAPACITY: float = 50
    REFILL_PER_SECOND: float = 5

    # batch sink
    BATCH_SIZE: int = 20
    BATCH_TIMEOUT_MS: int = 10000
    IMMEDIATE_THRESHOLD: float = 5

    # retry queue
    MAX_RETRIES: int = 3
    RETRY_BATCH_SIZE: int = 5
    RETRY_LOW_WATER_MARK: float = 2
    RETRY_HIGH_WATER_MARK: int = 50
    RETRY_ITEM_DELAY_MS: int = 1000

    # reconciliation
    POLL_PAGE_SIZE: int = 100
    POLL_SUB_BATCH_SIZE: int = 5
    POLL_INTER_BATCH_DELAY_MS: int = 2000
    POLL_TOKEN_FLOOR: float = 10
    POLL_READ_COST: float = 5
    FALLBACK_ROWS: int = 5
    POLL_INTERVAL_SEC: float = 300

    # collaborators
    SHEET_ID: Optional[str] = None
    SHEET_SECTION: str = "Call Logs"
    SHEETS_TOKEN: Optional[str] = None
    STATUS_API_URL: str = "https://api.bland.ai"
    STATUS_API_KEY: Optional[str] = None
    DATABASE_URL: Optional[str] = None
    DLQ_PATH: Optional[str] = None
    METRICS_PORT: Optional[int] = None

    class Config:
        env_prefix = "CALL_SYNC_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def batch_config(self) -> BatchConfig:
        return BatchConfig(
            batch_size=self.BATCH_SIZE,
            batch_timeout_ms=self.BATCH_TIMEOUT_MS,
            immediate_threshold=self.IMMEDIATE_THRESHOLD,
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.MAX_RETRIES,
            batch_size=self.RETRY_BATCH_SIZE,
            low_water_mark=self.RETRY_LOW_WATER_MARK,
            high_water_mark=self.RETRY_HIGH_WATER_MARK,
            item_delay_ms=self.RETRY_ITEM_DELAY_MS,
        )

    def poll_config(self) -> PollConfig:
        return PollConfig(
            page_size=self.POLL_PAGE_SIZE,
            sub_batch_size=self.POLL_SUB_BATCH_SIZE,
            inter_batch_delay_ms=self.POLL_INTER_BATCH_DELAY_MS,
            token_floor=self.POLL_TOKEN_FLOOR,
            read_cost=self.POLL_READ_COST,
            fallback_rows=self.FALLBACK_ROWS,
        )


@lru_cache()
def get_settings() -> SyncSettings:
    return SyncSettings()
