import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Veritabanı Ayarları
    database_file: Optional[str] = os.getenv("LIBRARY_DB_FILE")

    # Open Library zenginleştirme
    openlibrary_timeout: float = float(os.getenv("OPENLIBRARY_TIMEOUT", "5"))
    openlibrary_retries: int = int(os.getenv("OPENLIBRARY_RETRIES", "1"))
    enable_enrichment: bool = _flag("ENABLE_ENRICHMENT", "True")

    # Ödünç verme kuralları
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    renewal_period_days: int = int(os.getenv("RENEWAL_PERIOD_DAYS", "14"))
    max_renewals: int = int(os.getenv("MAX_RENEWALS", "3"))
    fine_per_day: float = float(os.getenv("FINE_PER_DAY", "1.0"))
    due_soon_days: int = int(os.getenv("DUE_SOON_DAYS", "7"))
    # API sürecinde arka plandaki gecikme taramaları arasındaki saniye; 0 kapatır
    overdue_sweep_interval: float = float(os.getenv("OVERDUE_SWEEP_INTERVAL", "0"))

    # Sayfalama
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Uygulama
    app_name: str = os.getenv("APP_NAME", "Library Reservations")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
