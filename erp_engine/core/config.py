# erp_engine/core/config.py
import os
from decimal import Decimal
from typing import List
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "ERP Document Lifecycle & Settlement Engine")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "erp_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "erp")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # Full URL wins over the MySQL parts (sqlite:// in tests)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "280"))

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")

    # ---------- Runtime ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    EXPOSE_ERROR_DETAILS: bool = _flag("EXPOSE_ERROR_DETAILS")

    # ---------- Business ----------
    PAID_TOLERANCE: Decimal = Decimal(os.getenv("PAID_TOLERANCE", "0.01"))
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")
    PO_NUMBER_PREFIX: str = os.getenv("PO_NUMBER_PREFIX", "PO-PK")
    AGREEMENT_DEFAULT_DAYS: int = int(os.getenv("AGREEMENT_DEFAULT_DAYS", "365"))

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+{self.DB_DRIVER}://{quote_plus(self.MYSQL_USER)}:{quote_plus(self.MYSQL_PASSWORD)}"
            f"@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}?charset=utf8mb4")


settings = Settings()
