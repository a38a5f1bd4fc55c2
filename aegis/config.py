from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://aegis:aegis_dev@db:5432/aegis"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Roles
    ADMINISTRATOR_ID: str = "admin"
    DEFAULT_ARBITER_ID: str = "arbiter_MVP_001"
    SYSTEM_ACTOR_ID: str = "system:timelock"

    # Escrow policy
    PAYEE_FUNDING_CONFIRMS: bool = True
    ESCROW_STORE_BACKEND: str = "database"  # database, memory
    TIMELOCK_POLL_MINUTES: int = 1

    # Monero daemon (funding broadcast)
    MONERO_DAEMON_URL: str = "mock_daemon"
    BROADCAST_TIMEOUT_SECONDS: float = 30.0

    # App
    APP_ENV: str = "development"
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
