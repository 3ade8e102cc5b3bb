from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


# Known placeholder secrets that must never reach production
WEAK_SECRET_KEYS = {
    "changeme",
    "secret",
    "password",
    "dev",
    "test",
    "development-secret-key-change-in-production",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/mini_crm"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth (tokens are issued by the identity service, verified here)
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Text generation (OpenAI-compatible chat completions endpoint)
    AI_BASE_URL: str = "https://api.openai.com"
    AI_API_KEY: str | None = None
    AI_MODEL: str = "gpt-4o-mini"
    AI_TIMEOUT_SECONDS: float = 20.0

    # Segmentation
    MAX_RULE_DEPTH: int = 32
    SEGMENT_REFRESH_ENABLED: bool = False
    SEGMENT_REFRESH_INTERVAL_MINUTES: int = 60

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @model_validator(mode="after")
    def validate_production_secrets(self) -> "Settings":
        """Refuse to boot production with a guessable signing key."""
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY must be changed in production")
            if len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production")
        return self

    @property
    def DOCS_ENABLED(self) -> bool:
        return self.ENVIRONMENT != "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        # Never echo SQL (and bound parameters) outside local development
        return self.DEBUG and self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
