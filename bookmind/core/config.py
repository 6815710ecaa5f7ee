from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Cache store, in-memory store is used when no redis url is given
    REDIS_URL: Optional[str] = None
    CACHE_OPERATION_TIMEOUT_MS: int = 500

    # Language model
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.2
    OPENAI_TIMEOUT_SECONDS: float = 20.0

    # AI query assistant
    AI_RATE_LIMIT_MAX_CALLS: int = 4
    AI_RATE_LIMIT_WINDOW_SECONDS: int = 60
    AI_CACHE_TTL_FAST_SECONDS: int = 30
    AI_CACHE_TTL_NORMAL_SECONDS: int = 180

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
