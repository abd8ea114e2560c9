from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Cardbill Backend"
    ENV: str = "dev"

    # apps/backend/db.sqlite3 as an absolute path so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "America/Sao_Paulo"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Daily invoice processing (closing, next-period invoices, overdue)
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_HOUR: int = 6
    SCHEDULER_MINUTE: int = 0
    CARRY_OVER_CREDIT_LIMIT: bool = False

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="CARDBILL_", case_sensitive=False)


settings = Settings()
