"""
Fixed tables shared across the bot: supported formats, size caps, tariff plans.
"""
from schemas.plan_schema import Plan

IMAGE_FILE_TYPES = [".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"]

SUPPORTED_FILE_TYPES = [".pdf", ".doc", ".docx", ".rtf", ".html", ".htm", ".txt"] + IMAGE_FILE_TYPES

MAX_FILE_SIZE_MB = 30
MAX_RTF_SIZE_MB = 10
MAX_PDF_PAGES = 100

MAX_TEXT_CHARS = 500_000
TRUNCATION_MARKER = "\n\n[ВНИМАНИЕ: Документ слишком большой, показана только часть текста]"

PAGE_MARKER = "--- Страница {page} ---"

# Telegram rejects messages longer than this
TELEGRAM_MESSAGE_LIMIT = 4096

FREE_PLAN_ID = "FREE"

PLANS = {
    "FREE": Plan(id="FREE", name="Бесплатный", price=0, request_limit=3, duration_days=0,
                 description="3 бесплатных проверки договоров"),
    "BASIC": Plan(id="BASIC", name="Базовый", price=290, request_limit=10, duration_days=30,
                  description="10 проверок договоров в месяц"),
    "PRO": Plan(id="PRO", name="Профессиональный", price=990, request_limit=50, duration_days=30,
                description="50 проверок договоров в месяц"),
    "UNLIMITED": Plan(id="UNLIMITED", name="Безлимитный", price=4990, request_limit=None, duration_days=30,
                      description="Неограниченное количество проверок в течение месяца"),
}
