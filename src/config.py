from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    database_url: str | None = None
    environment: str = "development"  # development | staging | production
    vapi_allow_unsigned_webhooks: bool = True  # ignored in production
    vapi_api_base_url: str = "https://api.vapi.ai"
    vapi_request_timeout_seconds: float = 10.0
    vapi_signature_header: str = "x-vapi-signature"
    transcript_backfill_initial_delay_seconds: float = 5.0
    transcript_backfill_max_retries: int = 5
    transcript_backfill_jitter_ratio: float = Field(default=0.0, ge=0.0, lt=1.0)
    webhook_dedupe_backend: str = "memory"  # memory | redis
    webhook_dedupe_ttl_seconds: int = 86400
    webhook_dedupe_max_entries: int = 100000
    redis_url: str = "redis://localhost:6379/0"
    credential_cache_ttl_seconds: float = 0.0
    webhook_status_recent_limit: int = 10
    ai_processing_priority_threshold: int = 8

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def unsigned_webhooks_allowed(self) -> bool:
        return self.vapi_allow_unsigned_webhooks and not self.is_production


settings = Settings()
