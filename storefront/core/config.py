from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DB_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_ECHO: bool = False
    DB_CREATE_TABLES: bool = False

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str | None = None

    # "memory" runs the dispatcher inside the API process,
    # "database" expects one or more storefront-worker processes
    QUEUE_BACKEND: str = "memory"
    JOB_MAX_RETRIES: int = 3
    QUEUE_VISIBILITY_TIMEOUT: float = 60.0
    QUEUE_WAIT_TIME: float = 20.0
    QUEUE_POLL_INTERVAL: float = 1.0
    QUEUE_GROUP_BY_TYPE: bool = False
    DISPATCHER_BACKOFF: float = 5.0
    WORKER_HEARTBEAT_INTERVAL: float = 60.0

    PRINT_OUTPUT_DIR: str = "output/prints"
    PAYMENT_WEBHOOK_SECRET: str = "test-signature"
    CURRENCY: str = "INR"

    class Config:
        env_file = ".env"


settings = Settings()
