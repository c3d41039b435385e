"""
User-facing message templates (Telegram Markdown).
"""
from typing import Optional

from constants import MAX_FILE_SIZE_MB
from services.analyzer import ContextTooLong, EmptyInput, MalformedResponse, UpstreamError
from utils.text_extractor import (
    DownloadFailure,
    DownloadTooLarge,
    EmptyResult,
    ExtractionTimeout,
    ParserFailure,
    UnsupportedFormat,
)

# ── Progress ──
RECEIVED = "📥 Документ получен. Загружаю файл..."
DOWNLOADING_SLOW = "⏳ Загрузка файла занимает больше времени, чем обычно. Пожалуйста, подождите..."
EXTRACTING = "📄 Извлекаю текст из документа..."
EXTRACTING_SLOW = "⏳ Документ большой или отсканирован, распознавание текста займет еще немного времени..."
CLASSIFYING = "🔎 Проверяю, является ли документ договором..."
ANALYZING = "🤖 Анализирую договор. Это может занять до минуты..."
ANALYZING_LARGE = "📚 Документ очень большой. Анализ может занять несколько минут..."
ANALYZING_SLOW = "⏳ Анализ все еще выполняется. Сложные договоры требуют больше времени, пожалуйста, подождите..."

# ── Rejections ──
DEGRADED_DOCUMENT = (
    "⚠️ *Не удалось распознать структуру документа*\n\n"
    "Текст слишком короткий или похож на результат неудачного распознавания. "
    "Попробуйте отправить файл в другом формате или более четкое фото.\n\n"
    "Если вы уверены, что это договор, нажмите «Обработать как текст»."
)
NOT_A_CONTRACT = (
    "⚠️ *Документ не похож на договор*\n\n{reason}\n\n"
    "Если это все-таки договор, нажмите кнопку ниже или отправьте документ заново "
    "с подписью, содержащей слово «договор»."
)
NO_PARTIES = (
    "⚠️ *Не удалось определить стороны договора*\n\n{reason}\n\n"
    "Убедитесь, что документ является договором. Проверка не была списана."
)
JOB_EXPIRED = "⌛ Этот документ больше не доступен. Отправьте его заново."

# ── Quota ──
SUBSCRIPTION_INACTIVE = (
    "⚠️ *Требуется оплата*\n\n"
    "Ваш тариф еще не оплачен. Откройте /plans, чтобы оплатить подписку или вернуться к бесплатному тарифу."
)
LIMIT_REACHED = (
    "⚠️ *Превышен лимит запросов*\n\n"
    "Вы достигли лимита проверок документов для вашего тарифа.\n\n"
    "Используйте команду /plans для просмотра и выбора тарифа с большим количеством проверок."
)
LAST_REQUEST = "\n\n⚠️ Это была ваша последняя проверка по текущему тарифу. Выбрать тариф: /plans"
FEW_REQUESTS_LEFT = "\n\n⚠️ У вас осталось проверок: {remaining}."

# ── Analysis ──
PARTY_SELECTION = (
    "✅ *Анализ договора завершен*\n\n"
    "Стороны договора:\n1️⃣ {party1}\n2️⃣ {party2}\n\n"
    "Выберите сторону, с позиции которой показать анализ:"
)
INCOMPLETE_ANALYSIS = (
    "\n\nℹ️ _Анализ может быть неполным: часть текста распознана с изображения "
    "или не все разделы удалось проанализировать._"
)
FORWARD_HINT = (
    "💡 Вы можете переслать этот анализ юристу или контрагенту. "
    "Чтобы проверить другой договор, просто отправьте новый файл."
)
SELECTION_EXPIRED = "Результат анализа устарел. Отправьте документ заново."

# ── Errors ──
GENERIC_ERROR = "❌ Произошла ошибка при обработке документа. Пожалуйста, попробуйте позже."

ERROR_MESSAGES = {
    DownloadTooLarge: f"❌ Файл слишком большой. Максимальный размер: {MAX_FILE_SIZE_MB} МБ.",
    DownloadFailure: "❌ Не удалось загрузить файл. Попробуйте отправить его еще раз.",
    UnsupportedFormat: (
        "❌ Этот формат файла не поддерживается.\n"
        "Отправьте документ в формате PDF, DOC, DOCX, RTF, HTML, TXT или фото."
    ),
    ExtractionTimeout: "❌ Извлечение текста заняло слишком много времени. Попробуйте файл меньшего размера.",
    EmptyResult: "❌ В документе не найден текст. Если это скан, отправьте более четкое изображение.",
    ParserFailure: "❌ Не удалось прочитать документ. Попробуйте сохранить его в другом формате (PDF или DOCX).",
    EmptyInput: "❌ Документ пустой или не содержит текста для анализа.",
    ContextTooLong: (
        "❌ Документ слишком большой для анализа. "
        "Разделите его на части или отправьте только основной текст договора."
    ),
    MalformedResponse: "❌ Не удалось обработать результат анализа. Пожалуйста, отправьте документ еще раз.",
    UpstreamError: "❌ Сервис анализа временно недоступен. Пожалуйста, попробуйте позже.",
}


def message_for_error(error: BaseException) -> str:
    """Pick the most specific template for an exception class."""
    for cls in type(error).__mro__:
        if cls in ERROR_MESSAGES:
            return ERROR_MESSAGES[cls]
    return GENERIC_ERROR


def quota_message(reason: str) -> str:
    return SUBSCRIPTION_INACTIVE if reason == "subscription_inactive" else LIMIT_REACHED


def remaining_note(remaining: Optional[int]) -> str:
    if remaining is None or remaining > 2:
        return ""
    if remaining == 0:
        return LAST_REQUEST
    return FEW_REQUESTS_LEFT.format(remaining=remaining)
