from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ============================================
    # APPLICATION
    # ============================================
    APP_NAME: str = "Sakina API"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api/v1"
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # ============================================
    # DATABASE
    # ============================================
    DATABASE_URL: str = "sqlite:///./sakina.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # ============================================
    # AUTH
    # ============================================
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    GOOGLE_CLIENT_ID: Optional[str] = None

    # ============================================
    # REDIS
    # ============================================
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_ENABLED: bool = True
    PACKAGES_CACHE_TTL: int = 3600
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_PER_HOUR: int = 3000

    # ============================================
    # PAYMENTS
    # ============================================
    PAYMENT_TEST_MODE: bool = True
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    DEFAULT_CURRENCY: str = "SAR"

    # ============================================
    # STORAGE
    # ============================================
    STORAGE_BACKEND: str = "local"  # "local" or "s3"
    UPLOAD_DIR: str = "uploads"
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_AUDIO_FILE_SIZE: int = 200 * 1024 * 1024
    S3_BUCKET_NAME: Optional[str] = None
    S3_ENDPOINT_URL: Optional[str] = None  # set for R2 / MinIO
    AWS_REGION: str = "auto"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SIGNED_URL_EXPIRE_SECONDS: int = 3600

    # ============================================
    # PUSH NOTIFICATIONS
    # ============================================
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None

    # ============================================
    # BACKGROUND JOBS
    # ============================================
    ABANDONED_SESSION_HOURS: int = 24
    AUTO_RENEW_LOOKAHEAD_DAYS: int = 1
    EXPIRY_REMINDER_DAYS: int = 7
    NOTIFICATION_RETENTION_DAYS: int = 90

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def use_s3(self) -> bool:
        return self.STORAGE_BACKEND == "s3"


settings = Settings()
