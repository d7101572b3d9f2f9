from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration. Built once, never mutated."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    DATABASE_URL: str = "postgresql://emopulse:emopulse@db:5432/emopulse"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    CORS_ORIGINS: str = "*"

    # --- Slack ---
    SLACK_VERIFICATION_TOKEN: str = ""
    BOT_OAUTH_TOKEN: str = ""
    SLACK_API_URL: str = "https://slack.com/api"
    # Daily digest destination.
    RESULT_CHANNEL_ID: str = ""
    # Immediate warnings go here; empty means "reply in the message's own thread".
    ALERT_CHANNEL_ID: str = ""

    # --- Scoring ---
    IMMEDIATE_WARNING_THRESHOLD: float = 0.6
    NEGATIVE_INTENSITY_METHOD: str = "max"
    CHAT_MODEL: str = "anthropic.claude-3-haiku-20240307-v1:0"
    # "bedrock" or "anthropic"
    CLASSIFIER_BACKEND: str = "bedrock"
    ANTHROPIC_API_KEY: str = ""
    AWS_REGION: str = "ap-northeast-1"
    CLASSIFIER_MAX_TOKENS: int = 512

    # --- Queue ---
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = 600
    QUEUE_MAX_RECEIVES: int = 5
    QUEUE_RETRY_DELAY_SECONDS: int = 30
    WORKER_POLL_INTERVAL_SECONDS: float = 1.0
    STORE_WRITE_ATTEMPTS: int = 3

    # --- Digest ---
    DAILY_DIGEST_SCHEDULE: str = "0 9 * * MON-FRI"
    DIGEST_HIGHLIGHT_THRESHOLD: float = 0.4
    DIGEST_INCLUDE_ADVICE: bool = True

    # --- Export ---
    EXPORT_SCHEDULE: str = "0 15 * * SAT"
    # "s3" or "local"
    STORAGE_BACKEND: str = "s3"
    BUCKET_NAME: str = ""
    LOCAL_STORAGE_ROOT: str = "./var/exports"
    EXPORT_PREFIX: str = "exports/"
    PROCESSED_S3_FOLDER: str = "processed/"
    EXPORT_SHARD_SIZE: int = 1000

    # --- Visualization ---
    VISUALIZATION_PRINCIPAL: str = ""
    DISPLAY_TIMEZONE: str = "Asia/Tokyo"

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.DISPLAY_TIMEZONE)


@lru_cache
def get_settings() -> Settings:
    return Settings()
