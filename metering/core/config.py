from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SUBSCRIPTION_URLS = {
    "mainnet": "https://subscriptions-api-mainnet.ixo-api.workers.dev",
    "testnet": "https://subscriptions-api-testnet.ixo-api.workers.dev",
    "devnet": "https://subscriptions-api.ixo-api.workers.dev",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    internal_api_token: str = Field(default="", alias="INTERNAL_API_TOKEN")

    # Redis (ledger, pending claims, subscription snapshots, checkpoints)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # MongoDB (optional checkpoint backend and dead-letter jobs)
    mongodb_uri: str | None = Field(default=None, alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="metering", alias="MONGODB_DB_NAME")

    # Network
    network: Literal["mainnet", "testnet", "devnet"] = Field(default="devnet", alias="NETWORK")
    subscription_url_override: str | None = Field(default=None, alias="SUBSCRIPTION_URL")
    chain_gateway_url: str = Field(default="http://localhost:8700", alias="CHAIN_GATEWAY_URL")
    record_store_url: str = Field(default="http://localhost:8701", alias="RECORD_STORE_URL")
    oracle_address: str = Field(default="", alias="ORACLE_ADDRESS")
    http_timeout_seconds: float = Field(default=15.0, alias="HTTP_TIMEOUT_SECONDS")

    # Settlement
    min_claim_threshold: float = Field(default=5000, alias="MIN_CLAIM_THRESHOLD")
    max_claim_amounts: dict[str, float] = Field(
        default_factory=lambda: {"uixo": 5_000_000, "usdcc": 5_000_000},
        alias="MAX_CLAIM_AMOUNTS",
        description="JSON map of denom -> max amount per claim",
    )
    pending_claim_ttl_seconds: int = Field(default=60 * 60, alias="PENDING_CLAIM_TTL_SECONDS")
    reconcile_interval_minutes: int = Field(default=5, alias="RECONCILE_INTERVAL_MINUTES")
    disable_credits: bool = Field(default=False, alias="DISABLE_CREDITS")

    # Saga retry policy
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_backoff_factor: float = Field(default=2.0, alias="RETRY_BACKOFF_FACTOR")
    retry_initial_interval: float = Field(default=1.0, alias="RETRY_INITIAL_INTERVAL")

    # Checkpoints
    checkpoint_backend: Literal["redis", "mongo", "memory"] = Field(default="redis", alias="CHECKPOINT_BACKEND")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    @property
    def mongo_configured(self) -> bool:
        return bool(self.mongodb_uri)

    @property
    def denom(self) -> str:
        return "usdcc" if self.network == "mainnet" else "uixo"

    @property
    def subscription_url(self) -> str:
        return self.subscription_url_override or SUBSCRIPTION_URLS[self.network]


@lru_cache
def get_settings() -> Settings:
    return Settings()
