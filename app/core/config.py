from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Billing Reconciler"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "production"

    # Database (empty = build from PG* vars)
    DATABASE_URL: str = ""

    # Shared secret sent by the scheduler in the x-cron-secret header.
    # Empty rejects every trigger.
    CRON_SECRET: str = ""

    # Stripe Billing
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_MAX_NETWORK_RETRIES: int = 0  # sweeps never retry in-process

    # Full reconciliation
    RECONCILE_BATCH_SIZE: int = 40  # stays under the per-invocation external call ceiling
    RECONCILE_PERIOD_TOLERANCE_HOURS: float = 1.0
    RATE_LIMIT_DELAY_MS: int = 100
    PACER: str = "fixed"  # "fixed" or "token_bucket"
    PACER_RATE_PER_SECOND: int = 10

    # Webhook recovery
    WEBHOOK_RECOVERY_BATCH_SIZE: int = 50
    WEBHOOK_MAX_RETRIES: int = 3

    # Run APScheduler inside the API process
    RUN_SCHEDULER: bool = False

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
