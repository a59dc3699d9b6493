from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Catalog Cache Service"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./catalog.db"
    DB_POOL_TIMEOUT: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 5000  # Postgres only

    # Security
    SECRET_KEY: str = "change-me-in-env"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Cache
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_BACKEND: str = "redis"  # redis | memory
    CACHE_SOCKET_TIMEOUT: float = 0.5
    CACHE_CONNECT_TIMEOUT: float = 0.5
    CACHE_SCAN_BATCH: int = 500
    CACHE_LISTING_TTL: int = 3600  # 1 hour
    CACHE_CATEGORY_TTL: int = 86400  # 24 hours
    CACHE_MAX_MEMORY_MB: int = 500
    CACHE_INVALIDATION_RETRY_DELAY: int = 30

    # Listing limits
    LISTING_DEFAULT_LIMIT: int = 12
    LISTING_MAX_LIMIT: int = 100
    CATEGORY_LISTING_DEFAULT_LIMIT: int = 20
    REVIEWS_MAX_LIMIT: int = 50
    SUGGESTIONS_MAX_LIMIT: int = 10
    CATALOG_MENU_PRODUCTS: int = 8

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # Media
    MAX_UPLOAD_SIZE: int = 10485760  # 10MB
    ALLOWED_EXTENSIONS: List[str] = ["jpg", "jpeg", "png", "webp"]
    MEDIA_ROOT: str = "static/uploads"
    MEDIA_URL_PREFIX: str = "/static/uploads"

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)
    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in {"redis", "memory"}:
            raise ValueError("CACHE_BACKEND must be 'redis' or 'memory'")
        return normalized

    @field_validator("CACHE_LISTING_TTL", "CACHE_CATEGORY_TTL")
    @classmethod
    def validate_finite_ttl(cls, value: int) -> int:
        # Every cached namespace must expire; TTL is the backstop for missed invalidations.
        if value <= 0:
            raise ValueError("Cache TTLs must be positive")
        return value

    @field_validator("LISTING_MAX_LIMIT")
    @classmethod
    def validate_max_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("LISTING_MAX_LIMIT must be at least 1")
        return value

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith("postgresql")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
