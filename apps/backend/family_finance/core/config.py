from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "KGiQ Family Finance"
    ENV: str = "dev"

    # apps/backend/db.sqlite3 as an absolute path so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "America/New_York"
    LOG_LEVEL: str = "INFO"

    # Auth
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REMEMBER_ME_ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    REMEMBER_ME_REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60
    REQUIRE_EMAIL_VERIFICATION: bool = False

    # Family
    INVITATION_EXPIRE_DAYS: int = 7
    MAX_ADMINS: int = 3
    MAX_FAMILY_MEMBERS: int = 10

    # Rate limits: category -> (max requests, window seconds)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMITS: dict[str, tuple[int, int]] = {
        "auth": (100, 15 * 60),
        "password_reset": (20, 60 * 60),
        "bank_sync": (50, 60),
        "report_export": (50, 60),
    }

    # Plaid
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENV: str = "sandbox"
    PLAID_BASE_URL: str = "https://sandbox.plaid.com"
    PLAID_PRODUCTS: list[str] = ["transactions"]
    PLAID_COUNTRY_CODES: list[str] = ["US"]
    PLAID_WEBHOOK_URL: str | None = None
    PLAID_TIMEOUT_SECONDS: float = 30.0
    PLAID_WEBHOOK_MAX_AGE_SECONDS: int = 5 * 60

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="FF_", case_sensitive=False)


settings = Settings()
