"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "MemoDams API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours
    ENCRYPTION_KEY: str  # Fernet key for TOTP secrets

    # Database
    DATABASE_URL: str

    # URLs
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Email
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM_NAME: str = "MemoDams"

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM: Optional[str] = None
    SMS_CODE_TTL_SECONDS: int = 300
    SMS_RESEND_COOLDOWN_SECONDS: int = 30

    # Google sign-in
    GOOGLE_OAUTH_CLIENT_ID: Optional[str] = None
    GOOGLE_OAUTH_CLIENT_SECRET: Optional[str] = None
    # Must match the redirect URI registered with Google; the web client
    # receives the code there and posts it to /api/auth/oauth/google/token.
    GOOGLE_OAUTH_REDIRECT_URI: str = "http://localhost:3000/auth/oauth/google/callback"

    # Admin bootstrap
    # WHY: The first admin can only be identified by a configured address until
    # an admin has been seeded with `python -m memodams.cli seed-admin`.
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None

    # Step-up authentication
    STEP_UP_CHALLENGE_TTL_SECONDS: int = 600
    STEP_UP_MAX_ATTEMPTS: int = 5
    TRUSTED_DEVICE_DAYS: int = 0  # 0 = device trust never expires on its own
    TOTP_ISSUER: str = "MemoDams"
    TOTP_VALID_WINDOW: int = 1

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:9002",
        "http://127.0.0.1:3000",
    ]

    @property
    def twilio_enabled(self) -> bool:
        """Twilio needs the account, the token and a sender number."""
        return all([
            self.TWILIO_ACCOUNT_SID,
            self.TWILIO_AUTH_TOKEN,
            self.TWILIO_FROM,
        ])

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.GOOGLE_OAUTH_CLIENT_ID and self.GOOGLE_OAUTH_CLIENT_SECRET)

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
