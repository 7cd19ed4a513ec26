# stockledger/core/config.py
import os
from typing import List
from urllib.parse import quote_plus

from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Pharmacy Stock Ledger")
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
    MYSQL_USER: str = os.getenv("MYSQL_USER", "stock_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "pharmacy_stock")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins over the MySQL parts (sqlite:// in tests)
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}")

    # ---------- Locale ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Bangkok")

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    # ---------- Ledger ----------
    ALLOW_NEGATIVE_STOCK: bool = _flag("ALLOW_NEGATIVE_STOCK")
    LEDGER_RETRY_ATTEMPTS: int = int(os.getenv("LEDGER_RETRY_ATTEMPTS", "3"))
    BATCH_CONSUMPTION_POLICY: str = os.getenv("BATCH_CONSUMPTION_POLICY",
                                              "fefo")
    EXPIRY_CRITICAL_DAYS: int = int(os.getenv("EXPIRY_CRITICAL_DAYS", "30"))
    EXPIRY_WARNING_DAYS: int = int(os.getenv("EXPIRY_WARNING_DAYS", "90"))

    # ---------- Stock counting ----------
    WAREHOUSES: List[str] = _split_csv(
        os.getenv("WAREHOUSES", "main,retail,online,consignment"))

    # ---------- Marketplace sync ----------
    SYNC_ENABLED: bool = _flag("SYNC_ENABLED")
    SYNC_BASE_URL: str = os.getenv("SYNC_BASE_URL", "https://open-api.zortout.com/v4")
    SYNC_STORE_NAME: str = os.getenv("SYNC_STORE_NAME", "")
    SYNC_API_KEY: str = os.getenv("SYNC_API_KEY", "")
    SYNC_API_SECRET: str = os.getenv("SYNC_API_SECRET", "")
    SYNC_WAREHOUSE_ID: str = os.getenv("SYNC_WAREHOUSE_ID", "")
    SYNC_TIMEOUT_SECONDS: float = float(os.getenv("SYNC_TIMEOUT_SECONDS", "10"))
    SYNC_MAX_RETRIES: int = int(os.getenv("SYNC_MAX_RETRIES", "2"))
    SYNC_BACKOFF_SECONDS: float = float(os.getenv("SYNC_BACKOFF_SECONDS", "1"))
    # "inline" dispatches before the response, "background" after it
    SYNC_DISPATCH: str = os.getenv("SYNC_DISPATCH", "inline")


settings = Settings()
