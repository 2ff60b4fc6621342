from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str
    SUPABASE_DB_URL: str

    # Redis settings (realtime family channel)
    REDIS_URL: str | None = None
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # Resend email provider
    RESEND_API_KEY: str | None = None
    EMAIL_FROM: str = "ICE SOS <noreply@icesos.app>"

    # Twilio telephony provider
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None

    # Public URL the telephony provider calls back into
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # =================================================================
    # SOS FAN-OUT SETTINGS
    # =================================================================
    CALL_SEQUENCE_INTERVAL_SECONDS: float = 15.0
    CALL_STATUS_POLL_SECONDS: float = 1.0

    # =================================================================
    # EMAIL QUEUE SETTINGS
    # =================================================================
    EMAIL_QUEUE_MAX_RETRIES: int = 3
    EMAIL_QUEUE_DEFAULT_PRIORITY: int = 5
    EMAIL_QUEUE_BATCH_SIZE: int = 10
    EMAIL_QUEUE_POLL_INTERVAL_SECONDS: float = 30.0
    EMAIL_QUEUE_CLAIM_LEASE_SECONDS: int = 300

    # Proxy handling for request context
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def redis_url(self) -> str | None:
        """
        Resolve the Redis URL.

        An explicit REDIS_URL wins; otherwise an Upstash REST host/token pair
        is turned into a native TLS URL, e.g.
        https://redis-12345.upstash.io -> rediss://default:<token>@redis-12345.upstash.io:6379
        """
        if self.REDIS_URL:
            return self.REDIS_URL
        if not (self.UPSTASH_REDIS_REST_URL and self.UPSTASH_REDIS_REST_TOKEN):
            return None
        host = (
            self.UPSTASH_REDIS_REST_URL.replace("https://", "")
            .replace("http://", "")
            .strip("/")
        )
        return f"rediss://default:{self.UPSTASH_REDIS_REST_TOKEN}@{host}:6379"

    def call_status_callback_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/webhooks/twilio/call-status"

    def twilio_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER
        )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": min(self.DB_POOL_MIN_SIZE, 2),
                    "max_size": min(self.DB_POOL_MAX_SIZE, 6),
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
