"""
Centralized configuration for the Quiz Lead Pipeline.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    service_name: str = Field(default="Quiz Lead Pipeline", env="SERVICE_NAME")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", env="OPENAI_MODEL")

    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, env="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-3-5-sonnet-20241022", env="ANTHROPIC_MODEL")

    # Google Gemini
    google_api_key: Optional[str] = Field(default=None, env="GOOGLE_API_KEY")
    gemini_model: str = Field(default="gemini-1.5-flash", env="GEMINI_MODEL")

    # AWS / Bedrock
    bedrock_enabled: bool = Field(default=False, env="BEDROCK_ENABLED")
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    bedrock_llm_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-20250514-v1:0", env="BEDROCK_LLM_MODEL_ID"
    )

    # Orchestration
    ai_provider_priority: str = Field(
        default="anthropic,openai,gemini,bedrock", env="AI_PROVIDER_PRIORITY"
    )
    ai_timeout_ms: int = Field(default=30000, env="AI_TIMEOUT_MS")
    max_tokens: int = Field(default=1000, env="MAX_TOKENS")
    temperature: float = Field(default=0.7, env="TEMPERATURE")
    circuit_failure_threshold: int = Field(default=3, env="CIRCUIT_FAILURE_THRESHOLD")
    circuit_cooldown_seconds: float = Field(default=60.0, env="CIRCUIT_COOLDOWN_SECONDS")

    # Response cache
    ai_cache_enabled: bool = Field(default=True, env="AI_CACHE_ENABLED")
    ai_cache_ttl_seconds: float = Field(default=3600.0, env="AI_CACHE_TTL_SECONDS")
    ai_cache_max_entries: int = Field(default=1000, env="AI_CACHE_MAX_ENTRIES")
    ai_cache_sweep_seconds: float = Field(default=600.0, env="AI_CACHE_SWEEP_SECONDS")

    # Job queue
    queue_backend: str = Field(default="memory", env="QUEUE_BACKEND")  # memory | redis
    redis_url: str = Field(default="redis://localhost:6379/1", env="REDIS_URL")
    queue_poll_interval: float = Field(default=0.5, env="QUEUE_POLL_INTERVAL")
    queue_job_timeout_seconds: float = Field(default=120.0, env="QUEUE_JOB_TIMEOUT_SECONDS")
    queue_backoff_max_ms: int = Field(default=300000, env="QUEUE_BACKOFF_MAX_MS")
    queue_backoff_jitter: float = Field(default=0.1, env="QUEUE_BACKOFF_JITTER")

    ai_queue_concurrency: int = Field(default=5, env="AI_QUEUE_CONCURRENCY")
    ai_queue_attempts: int = Field(default=3, env="AI_QUEUE_ATTEMPTS")
    ai_queue_backoff_ms: int = Field(default=2000, env="AI_QUEUE_BACKOFF_MS")
    export_queue_concurrency: int = Field(default=5, env="EXPORT_QUEUE_CONCURRENCY")
    export_queue_attempts: int = Field(default=5, env="EXPORT_QUEUE_ATTEMPTS")
    export_queue_backoff_ms: int = Field(default=1000, env="EXPORT_QUEUE_BACKOFF_MS")
    notification_queue_concurrency: int = Field(default=3, env="NOTIFICATION_QUEUE_CONCURRENCY")
    notification_queue_attempts: int = Field(default=3, env="NOTIFICATION_QUEUE_ATTEMPTS")
    notification_queue_backoff_ms: int = Field(default=5000, env="NOTIFICATION_QUEUE_BACKOFF_MS")
    analytics_queue_concurrency: int = Field(default=2, env="ANALYTICS_QUEUE_CONCURRENCY")
    analytics_queue_attempts: int = Field(default=2, env="ANALYTICS_QUEUE_ATTEMPTS")
    analytics_queue_backoff_ms: int = Field(default=10000, env="ANALYTICS_QUEUE_BACKOFF_MS")

    # Finished jobs kept per queue; older ones are deleted as new ones finish
    ai_queue_keep_completed: int = Field(default=50, env="AI_QUEUE_KEEP_COMPLETED")
    ai_queue_keep_failed: int = Field(default=100, env="AI_QUEUE_KEEP_FAILED")
    export_queue_keep_completed: int = Field(default=100, env="EXPORT_QUEUE_KEEP_COMPLETED")
    export_queue_keep_failed: int = Field(default=50, env="EXPORT_QUEUE_KEEP_FAILED")
    notification_queue_keep_completed: int = Field(default=200, env="NOTIFICATION_QUEUE_KEEP_COMPLETED")
    notification_queue_keep_failed: int = Field(default=100, env="NOTIFICATION_QUEUE_KEEP_FAILED")
    analytics_queue_keep_completed: int = Field(default=10, env="ANALYTICS_QUEUE_KEEP_COMPLETED")
    analytics_queue_keep_failed: int = Field(default=25, env="ANALYTICS_QUEUE_KEEP_FAILED")

    # Downstream webhooks
    export_webhook_url: Optional[str] = Field(default=None, env="EXPORT_WEBHOOK_URL")
    notification_webhook_url: Optional[str] = Field(default=None, env="NOTIFICATION_WEBHOOK_URL")
    webhook_api_key: Optional[str] = Field(default=None, env="WEBHOOK_API_KEY")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # Campaign definitions (JSON list) used when no database is configured
    campaigns_file: Optional[str] = Field(default=None, env="CAMPAIGNS_FILE")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_version: str = Field(default="1.0.0", env="API_VERSION")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def provider_priority_list(self) -> List[str]:
        return [p.strip().lower() for p in self.ai_provider_priority.split(",") if p.strip()]

    @property
    def is_redis_queue(self) -> bool:
        return self.queue_backend.lower() == "redis"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
