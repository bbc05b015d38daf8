from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Project Info
    PROJECT_NAME: str = "Health Records API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = Field(default="development", description="Environment: development, staging, production")

    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./data/health_records.db",
        description="Database URL (SQLite or PostgreSQL via asyncpg)"
    )
    DB_POOL_SIZE: int = Field(default=5, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Database max overflow connections")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Database pool timeout in seconds")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database pool recycle time in seconds")
    DB_AUTO_CREATE: bool = Field(default=True, description="Create missing tables on startup")

    # Security - JWT
    SECRET_KEY: str = Field(..., description="Secret key for JWT token generation")
    ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24 * 7, description="JWT token expiration in minutes (7 days)")

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError('SECRET_KEY must be at least 32 characters')
        return v

    # Security - CORS
    BACKEND_CORS_ORIGINS: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins (mobile clients send no Origin)"
    )

    # Documents
    MAX_FILE_SIZE: int = Field(default=5 * 1024 * 1024, description="Max document size in bytes (default 5MB)")
    MAX_REQUEST_SIZE: int = Field(default=10 * 1024 * 1024, description="Max request body size in bytes (default 10MB)")
    ALLOWED_FILE_TYPES: List[str] = Field(
        default=["image/jpeg", "image/jpg", "image/png", "image/gif", "application/pdf"],
        description="Allowed MIME types for document uploads"
    )
    DEFAULT_STORAGE_QUOTA: int = Field(default=100 * 1024 * 1024, description="Per-user storage quota in bytes (default 100MB)")

    # Object storage (S3 compatible)
    S3_ENDPOINT: str = Field(default="s3.ap-south-1.amazonaws.com", description="S3/MinIO endpoint host[:port]")
    S3_ACCESS_KEY: str = Field(default="", description="S3 access key")
    S3_SECRET_KEY: str = Field(default="", description="S3 secret key")
    S3_BUCKET_NAME: str = Field(default="health-records-documents", description="Bucket for documents and thumbnails")
    S3_REGION: str = Field(default="ap-south-1", description="S3 region")
    S3_SECURE: bool = Field(default=True, description="Use HTTPS for the storage endpoint")

    # External APIs - Google Cloud Vision (OCR)
    GOOGLE_VISION_API_KEY: str = Field(default="", description="Google Cloud Vision API key")
    OCR_TIMEOUT_SECONDS: float = Field(default=10.0, description="Hard timeout for a single OCR call")
    OCR_LOW_CONFIDENCE_THRESHOLD: float = Field(default=60.0, description="Confidence (percent) below which OCR results are flagged")

    # External APIs - Anthropic (document analysis)
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    ANTHROPIC_MODEL: str = Field(default="claude-sonnet-4-5", description="Model used for document analysis")
    ANTHROPIC_MAX_TOKENS: int = Field(default=2048, description="Max tokens for a document analysis reply")

    # Enrichment queue
    ENRICHMENT_WORKERS: int = Field(default=4, description="Concurrent enrichment workers per process")
    ENRICHMENT_QUEUE_SIZE: int = Field(default=100, description="Max queued enrichment jobs per process")
    ENRICHMENT_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per enrichment job for retryable failures")
    ENRICHMENT_RETRY_BACKOFF: float = Field(default=2.0, description="Base seconds for exponential retry backoff")

    # Server Configuration
    WORKERS: int = Field(default=4, description="Number of Uvicorn workers (4-5)")
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    LOG_DIR: str = Field(default="./logs", description="Directory for log files")
    LOG_RETENTION_DAYS: int = Field(default=30, description="Number of days to keep log files")
    LOG_MASK_SENSITIVE: bool = Field(default=True, description="Enable sensitive data masking in logs")
    LOG_ENABLE_REQUEST_LOGGING: bool = Field(default=True, description="Enable HTTP request/response logging")

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_DEFAULT: str = Field(default="100/minute", description="Default rate limit")
    RATE_LIMIT_AUTH: str = Field(default="5/minute", description="Rate limit for auth endpoints")
    RATE_LIMIT_UPLOADS: str = Field(default="20/minute", description="Rate limit for document uploads")
    RATE_LIMIT_STORAGE_URI: str = Field(default="memory://", description="Rate limit storage URI")

    # Circuit Breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(default=5, description="Failures before circuit opens")
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(default=30, description="Seconds before attempting reset")
    CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS: int = Field(default=3, description="Max calls in half-open state")

    def get_log_level(self) -> str:
        """Get log level based on environment."""
        if self.ENVIRONMENT.lower() in ["development", "dev", "test"]:
            return "DEBUG"
        return self.LOG_LEVEL.upper()

    def get_storage_base_url(self) -> str:
        """Base URL under which stored objects are addressed (path style)."""
        scheme = "https" if self.S3_SECURE else "http"
        return f"{scheme}://{self.S3_ENDPOINT}/{self.S3_BUCKET_NAME}"


settings = Settings()
