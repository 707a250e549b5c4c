from functools import lru_cache

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "R2S Auth"
    VERSION: str = "0.1.0"
    HOST: str = "127.0.0.1"
    PORT: int = 8081
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # SQLAlchemy database URL
    DATABASE_URL: str = "sqlite:///./r2s_auth.db"

    # Redis settings, empty host = in-process cache (single instance only)
    REDIS_HOST: str | None = None
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    REDIS_SSL: bool = False
    REDIS_MAX_CONNECTIONS: int = 50

    # Login configuration
    JWT_SECRET: str | None = None
    JWT_REFRESH_SECRET: str | None = None
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "r2s-auth"
    JWT_AUDIENCE: str = "r2s-api"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 15 * 60  # 15 minutes
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 7 * 24 * 3600  # 7 days
    NONCE_EXPIRY_SECONDS: int = 6 * 60  # 6 minutes

    # Challenge message
    APP_URL: str = "https://r2s.io"
    DEFAULT_CHAIN_ID: str = "1001"

    # LINE login
    LINE_CHANNEL_ID: str | None = None
    LINE_API_TIMEOUT: float = 5.0

    # Sessions
    MAX_SESSIONS_PER_USER: int = 0  # 0 = unlimited
    TOUCH_WORKERS: int = 2
    # last_used_at updates queued beyond this are dropped
    TOUCH_MAX_PENDING: int = 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
