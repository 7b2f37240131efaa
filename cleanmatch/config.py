from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings (auth + Postgres)
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str

    # Redis settings
    UPSTASH_REDIS_REST_URL: str
    UPSTASH_REDIS_REST_TOKEN: str

    # Admin allow-list (comma separated e-mails)
    ADMIN_EMAILS: str = ""

    # Routing / ETA settings
    MAPBOX_TOKEN: str | None = None
    MAPBOX_BASE_URL: str = "https://api.mapbox.com/directions/v5/mapbox/driving"
    OSRM_BASE_URL: str = "https://router.project-osrm.org/route/v1/driving"
    ETA_TIMEOUT_SECONDS: float = 5.0
    ETA_CACHE_TTL_SECONDS: int = 600

    # Payment gateway settings
    STRIPE_SECRET_KEY: str | None = None

    # Push notification settings
    FCM_PROJECT_ID: str | None = None
    FIREBASE_CREDENTIALS_PATH: str | None = None

    # Lead engine
    LEAD_MAX_PER_JOB: int = 10
    LEAD_TTL_HOURS: int = 24

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

    def admin_emails(self) -> set[str]:
        """Normalized admin allow-list."""
        return {
            email.strip().lower() for email in self.ADMIN_EMAILS.split(",") if email.strip()
        }

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
                    "min_size": 2,
                    "max_size": 6,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
