import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("APP_NAME", "Library Management API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = _flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Databases: users and loans in one store, books in the catalog store
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./library.db")
    catalog_database_url: str = os.getenv("CATALOG_DATABASE_URL", "sqlite:///./catalog.db")

    # Security
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "change-this-secret-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "1440"))  # 24h
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Loans
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    max_renewals: int = int(os.getenv("MAX_RENEWALS", "2"))
    late_fee_per_day: Decimal = Decimal(os.getenv("LATE_FEE_PER_DAY", "1.50"))

    # HTTP
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Optional admin bootstrap
    admin_username: Optional[str] = os.getenv("ADMIN_USERNAME")
    admin_password: Optional[str] = os.getenv("ADMIN_PASSWORD")

    @property
    def cors_origin_list(self) -> list:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
