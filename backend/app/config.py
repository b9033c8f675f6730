from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./weekly_digest.db"

    # Batch provider (OpenAI Batch API)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    batch_completion_window: str = "24h"

    # Batch job bookkeeping
    batch_retention_days: int = 30
    batch_list_limit: int = 10

    # Poll cycle: hard wall-clock budget, and a lease TTL that outlives it so a
    # crashed cycle frees the lease before the next scheduled slot.
    poll_cycle_budget_seconds: int = 300
    poll_lease_ttl_seconds: int = 360

    # In-process scheduler (UTC slots, "<day> <hour>[,<hour>]" separated by ";")
    scheduler_enabled: bool = False
    scheduler_tick_seconds: int = 60
    submit_schedule: str = "sat 18"
    poll_schedule: str = "sat 21; sun 0,3,9,12,15,21"

    # Email notification of pipeline reports.
    # Use a Gmail App Password (not the account password).
    smtp_from_email: str = ""
    smtp_app_password: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    notify_email: str = ""

    log_level: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
