from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Campus Escrow & Contract Core"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours
    jwt_issuer: str = "campus-escrow"

    # ─────────── STORE ───────────
    store_max_retries: int = 5
    store_retry_base_delay_seconds: float = 0.02
    store_retry_max_delay_seconds: float = 0.5

    # ─────────── ESCROW ───────────
    # test-only: tops up a short client wallet from system:treasury on deposit
    escrow_dev_wallet_topup: bool = False
    min_deposit_amount: int = 100  # minor units

    # ─────────── BACKGROUND ───────────
    outbox_max_attempts: int = 5
    outbox_dispatch_interval_seconds: int = 30
    # deliver the outbox from a background thread of the API process
    outbox_dispatch_enabled: bool = False
    reconciliation_interval_seconds: int = 300
    # run the sweeper in a background thread of the API process
    reconciliation_enabled: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
