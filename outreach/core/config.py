"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Google OAuth (per-user Gmail send grant)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GMAIL_REDIRECT_URI: str = "http://localhost:8000/integrations/gmail/callback"

    # OAuth state signing (falls back to JWT_SECRET if empty)
    OAUTH_STATE_SECRET: str = ""
    OAUTH_STATE_MAX_AGE_SECONDS: int = 600

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (for safe redirects)
    FRONTEND_URL: str = "http://localhost:3000"

    # Token Encryption (for storing OAuth tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Cross-worker status cache (empty or memory:// disables the Redis tier)
    REDIS_URL: str = ""

    # Connection status cache tiers and throttling
    GMAIL_STATUS_MEMORY_TTL_SECONDS: int = 30 * 60
    GMAIL_STATUS_REDIS_TTL_SECONDS: int = 2 * 60 * 60
    GMAIL_STATUS_THROTTLE_SECONDS: int = 5 * 60
    GMAIL_CONNECT_LOCK_SECONDS: int = 30

    # Outbound send guards
    GMAIL_SEND_DEDUP_SECONDS: int = 10
    GMAIL_SEND_RATE_LIMIT: int = 10
    GMAIL_SEND_RATE_WINDOW_SECONDS: int = 60
    GMAIL_SEND_TIMEOUT_SECONDS: float = 60.0

    # Outreach defaults
    OUTREACH_SUBJECT_PREFIX: str = ""
    OUTREACH_DEFAULT_JOB_TITLE: str = "General Position"
    OUTREACH_DEFAULT_CC: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60  # General API

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def oauth_state_secret(self) -> str:
        return self.OAUTH_STATE_SECRET or self.JWT_SECRET

    @property
    def has_gmail_oauth(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
