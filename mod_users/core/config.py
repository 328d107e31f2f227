from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "folio_admin"
    POSTGRES_PASSWORD: str = "folio_admin"
    DB_NAME: str = "okapi_modules"

    # every 30 minutes
    EXPIRATION_SCHEDULE_CRON: str = "*/30 * * * *"
    EXPIRATION_ENABLED: bool = True

    # stays below the engine pool (5 + 10 overflow)
    EXPIRATION_MAX_CONCURRENT_UPDATES: int = 10

    STREAM_QUEUE_SIZE: int = 64

    LOG_LEVEL: str = "INFO"
    ENV: str = "local"

    class Config:
        env_file = ".env"

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"postgresql+asyncpg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}"
            f"/{self.DB_NAME}"
        )


settings = Settings()
