"""
Application configuration loaded from environment variables / .env file.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # ── App ──
    APP_NAME: str = "Contract Check Bot API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ── Database ──
    DATABASE_URL: str = "sqlite:///./contractbot.db"

    # ── Telegram ──
    TELEGRAM_BOT_TOKEN: str = ""
    ADMIN_IDS: List[str] = []
    ADMIN_API_TOKEN: str = ""

    # ── Analyzer (Anthropic) ──
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-3-opus-20240229"
    ANALYZER_MAX_TOKENS: int = 4000
    ANALYZER_MAX_CHARS: int = 150_000

    # ── YooKassa ──
    YOOKASSA_SHOP_ID: str = ""
    YOOKASSA_SECRET_KEY: str = ""
    YOOKASSA_API_URL: str = "https://api.yookassa.ru/v3"
    YOOKASSA_RETURN_URL: str = "http://localhost:8000/payment/success"

    # ── Extraction / OCR ──
    TEMP_DIR: str = "./temp"
    OCR_LANG: str = "rus+eng"
    OCR_DPI: int = 300
    OCR_MAX_PAGES: int = 20
    PDF_MIN_CHARS_PER_PAGE: int = 50
    DOC_CONVERT_TIMEOUT_SECONDS: int = 60

    # ── Pipeline timing ──
    DOWNLOAD_NOTICE_SECONDS: float = 10
    EXTRACT_NOTICE_SECONDS: float = 15
    ANALYSIS_NOTICE_SECONDS: float = 45
    EXTRACTION_TIMEOUT_SECONDS: float = 120
    LARGE_DOCUMENT_CHARS: int = 30_000

    # ── Job store ──
    JOB_TTL_SECONDS: int = 60 * 60  # 1 hour
    JOB_STORE_MAX_SIZE: int = 1000

    # ── Event log ──
    EVENTS_LOG_FILE: str = "./logs/user_events.jsonl"

    # ── Rate Limiting ──
    RATE_LIMIT_DEFAULT: str = "60/minute"
    RATE_LIMIT_ADMIN: str = "10/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"          # ignore unknown vars in .env


settings = Settings()

# ── Warn early when the external services are not configured ──
if not settings.TELEGRAM_BOT_TOKEN or not settings.ANTHROPIC_API_KEY:
    import warnings
    warnings.warn(
        "\n⚠  TELEGRAM_BOT_TOKEN or ANTHROPIC_API_KEY is empty!\n"
        "   The bot will not be able to receive documents or analyse them.\n"
        "   Set both values in your .env file.\n",
        stacklevel=1,
    )
