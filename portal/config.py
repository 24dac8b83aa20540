"""
Consultant Portal - Configuration Management
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Literal
import os


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """
    model_config = ConfigDict(
        extra='ignore',  # Ignore extra env vars not in model
        env_file=".env",
        case_sensitive=True
    )

    # ========================================================================
    # APPLICATION
    # ========================================================================
    APP_NAME: str = "Consultant Portal API"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ========================================================================
    # DOCUMENT STORE
    # ========================================================================
    STORE_BACKEND: Literal["sql", "memory"] = "sql"
    DATABASE_URL: str = "sqlite:///./portal.db"
    DATABASE_ECHO: bool = False
    STORE_TIMEOUT_SECONDS: float = 15.0

    # ========================================================================
    # SECURITY (tokens are issued by the identity provider)
    # ========================================================================
    SECRET_KEY: str = "your-super-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # ========================================================================
    # CORS
    # ========================================================================
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite dev server
    ]
    ALLOWED_HOSTS: List[str] = [
        "localhost",
        "127.0.0.1",
        "*"
    ]

    # ========================================================================
    # EMAIL
    # ========================================================================
    BREVO_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@consultant-portal.local"
    EMAIL_FROM_NAME: str = "Consultant Portal"
    EMAIL_REPLY_TO: str = "support@consultant-portal.local"
    PORTAL_URL: str = "http://localhost:3000"

    # ========================================================================
    # FILE STORAGE (profile photos)
    # ========================================================================
    UPLOAD_BASE_DIR: str = os.getenv("UPLOAD_BASE_DIR", os.path.join(os.path.dirname(os.path.dirname(__file__)), "uploads"))
    STATIC_URL_PREFIX: str = os.getenv("STATIC_URL_PREFIX", "/static")
    MAX_PHOTO_SIZE_MB: int = 5
    ALLOWED_PHOTO_EXTENSIONS: List[str] = ["jpg", "jpeg", "png", "gif", "webp"]

    # ========================================================================
    # RATE LIMITING
    # ========================================================================
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_PER_HOUR: int = 1000

    # ========================================================================
    # MONITORING
    # ========================================================================
    LOG_LEVEL: str = "INFO"

    # ========================================================================
    # BUSINESS POLICY
    # ========================================================================
    COMPLETION_WINDOW_POLICY: Literal["same-day", "on-or-after"] = "on-or-after"
    REQUIRE_PAYMENT_BEFORE_COMPLETION: bool = False
    BOOKING_OWNER_FIELD: str = "consultantId"
    PORTAL_TIMEZONE: str = "UTC"
    CURRENCY_SYMBOL: str = "₱"


# Create global settings instance
settings = Settings()
