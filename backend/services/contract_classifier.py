"""Heuristic gates deciding whether extracted text is worth a paid analysis.

Two pure checks run before the analyzer is called:

* ``has_structure`` rejects OCR noise and fragments that do not read like a
  legal document at all.
* ``classify`` separates contracts from invoices and other paperwork using
  weighted keyword scores, invoice table shape and recognised contract
  sections.
"""
import re
import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

MIN_STRUCTURED_LENGTH = 200
MIN_SENTENCES = 3
CLASSIFIER_SAMPLE_CHARS = 5000
INVOICE_HEADER_WINDOW = 200
CONTRACT_SCORE_THRESHOLD = 3

# ── Keyword tables (lower-case, «ё» folded to «е») ──
# Weight 2: phrases that practically only occur in contracts
_CONTRACT_KEYWORDS: Dict[str, int] = {
    'договор': 1, 'соглашение': 1, 'контракт': 1,
    'стороны договорились': 2, 'предмет договора': 2, 'обязанности сторон': 2,
    'условия договора': 2, 'настоящий договор': 2, 'обязуется': 1,
    'заключили настоящий': 2, 'далее именуемый': 2, 'реквизиты сторон': 2,
    'юридические адреса': 1, 'сторона 1': 1, 'сторона 2': 1,
    'исполнитель': 1, 'заказчик': 1, 'ответственность сторон': 2,
    'форс-мажор': 2, 'срок действия договора': 2, 'расторжение договора': 2,
    'порядок разрешения споров': 2, 'конфиденциальность': 1, 'в лице': 1,
    'действующего на основании': 2, 'стороны пришли к соглашению': 2,
}

_INVOICE_KEYWORDS: Dict[str, int] = {
    'счет': 1, 'оплата': 1, 'к оплате': 1, 'итого': 1, 'всего': 1,
    'сумма': 1, 'ндс': 1, 'плательщик': 1, 'получатель': 1, 'поставщик': 1,
    'покупатель': 1, 'бик': 1, 'корр. счет': 1, 'расчетный счет': 1,
    'банк получателя': 1, 'количество': 1, 'цена': 1, 'наименование товара': 1,
    'счет на оплату': 2, 'счет №': 2, 'счет-фактура': 2, 'итого к оплате': 2,
    'всего к оплате': 2, 'сумма к оплате': 2, 'счет должен быть оплачен': 2,
}

_STRONG_INVOICE_MARKERS = (
    'счет на оплату', 'счет №', 'счет-фактура', 'итого к оплате',
    'всего к оплате', 'сумма к оплате', 'счет должен быть оплачен',
)

_INVOICE_TABLE_HEADERS = ('наименование', 'количество', 'цена', 'сумма', 'ед.', 'изм.', 'ндс', 'стоимость')

# Invoice vocabulary is matched as whole words so «расчет» does not count as «счет»
_INVOICE_PATTERNS = {
    keyword: re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)")
    for keyword in (*_INVOICE_KEYWORDS, *_INVOICE_TABLE_HEADERS, "инн", "кпп")
}

# Keywords used by the structure gate to excuse short texts
_LEGAL_KEYWORDS = (
    'договор', 'соглашение', 'контракт', 'сторона', 'стороны', 'исполнитель',
    'заказчик', 'арендатор', 'арендодатель', 'продавец', 'покупатель',
    'подрядчик', 'обязуется', 'ответственность', 'реквизиты', 'подпись',
)

_CONTRACT_SECTIONS = {
    'subject': re.compile(r'предмет\s+(?:договора|соглашения|контракта)'),
    'price': re.compile(r'цена\s+договора|стоимость\s+(?:услуг|работ|товара)|порядок\s+(?:расчетов|оплаты)'),
    'term': re.compile(r'срок\s+(?:действия|договора)|вступает\s+в\s+силу'),
    'liability': re.compile(r'ответственность\s+сторон'),
    'signatures': re.compile(r'подписи\s+сторон|реквизиты\s+и\s+подписи|адреса\s+и\s+реквизиты'),
}

# ── Precompiled patterns ──
_RE_NUMBERED_CLAUSE = re.compile(r'^\s*(?:\d{1,2}\.\d{1,2}\.?|\d{1,2}\))\s+\S', re.MULTILINE)
_RE_SENTENCE = re.compile(r'[А-ЯЁA-Z][^.!?\n]{19,}[.!?]')
_RE_REGISTRATION = re.compile(r'\b(?:инн|огрн|огрнип|кпп)\s*:?\s*\d{9,15}\b', re.IGNORECASE)
_RE_ORGANISATION = re.compile(r'\b(?:ооо|оао|зао|пао|ао|ип)\s+[«"]?[а-яёa-z]', re.IGNORECASE)
_RE_INVOICE_HEADER = re.compile(r'сч[её]т\s+(?:на\s+оплату\s*)?№\s*\d+')
_RE_INVOICE_NUMBER = re.compile(r'(?:сч[её]т|invoice)\s*(?:№|no\.?|#)\s*[\w-]+|номер\s+сч[её]та')
_RE_PARTY_MENTION = re.compile(r'\bстороны?\b|далее\s+именуем|в\s+лице')
_RE_SIGNATURE_BLOCK = re.compile(r'подпис|м\.\s?п\.|_{5,}')

_RE_CAPTION_FORCE = re.compile(r'договор|контракт|соглашение|анализ', re.IGNORECASE)
_RE_FILENAME_HINT = re.compile(r'договор|соглашение|контракт', re.IGNORECASE)
_RE_ROLE_HINT = re.compile(
    r'\b(?:я|мы)\s*[-:]?\s+(заказчик\w*|исполнител\w*|арендатор\w*|арендодател\w*|продав\w*|покупател\w*|подрядчик\w*|поставщик\w*)'
    r'|роль\s*[:\-—]?\s*([а-яё]+)',
    re.IGNORECASE,
)


@dataclass
class ClassificationResult:
    is_contract: bool
    kind: str  # contract | invoice | undetermined
    reason: str
    contract_score: int = 0
    invoice_score: int = 0


def _normalise(text: str) -> str:
    return text.lower().replace('ё', 'е')


def _score(sample: str, table: Dict[str, int]) -> int:
    return sum(weight for keyword, weight in table.items() if keyword in sample)


def _count_matches(sample: str, keywords) -> int:
    return sum(1 for keyword in keywords if keyword in sample)


def _has_invoice_term(sample: str, keyword: str) -> bool:
    return _INVOICE_PATTERNS[keyword].search(sample) is not None


def _invoice_score(sample: str) -> int:
    return sum(weight for keyword, weight in _INVOICE_KEYWORDS.items() if _has_invoice_term(sample, keyword))


def has_structure(text: str) -> bool:
    """Return True if the text looks like a structured legal document."""
    if not text:
        return False
    stripped = text.strip()
    lowered = _normalise(stripped)

    if len(stripped) < MIN_STRUCTURED_LENGTH and _count_matches(lowered, _LEGAL_KEYWORDS) < 2:
        logger.info(f"Structure gate: text too short ({len(stripped)} chars) and no legal keywords")
        return False

    if len(_RE_NUMBERED_CLAUSE.findall(stripped)) >= 2:
        return True
    if len(_RE_SENTENCE.findall(stripped)) >= MIN_SENTENCES:
        return True
    if _RE_REGISTRATION.search(stripped) or _RE_ORGANISATION.search(stripped):
        return True

    logger.info("Structure gate: no clauses, sentences or organisation details found")
    return False


def _has_invoice_structure(sample: str) -> bool:
    """Invoice table shape or the classic invoice requisites block."""
    def has(keyword):
        return _has_invoice_term(sample, keyword)

    if has('наименование') and (has('количество') or has('цена')):
        return True
    if has('итого') and has('сумма'):
        return True
    if has('инн') and has('кпп') and has('расчетный счет'):
        return True
    return sum(1 for header in _INVOICE_TABLE_HEADERS if has(header)) >= 4


def _invoice_header(head: str) -> Optional[str]:
    """Return the matched invoice header in the first characters of a document."""
    if re.match(r"счет(?!\w)", head):
        return 'счет'
    for marker in ('счет на оплату', 'счет-фактура', 'счет №'):
        if _has_invoice_term(head, marker):
            return marker
    match = _RE_INVOICE_HEADER.search(head)
    return match.group(0) if match else None


def classify(text: str) -> ClassificationResult:
    """Decide whether the text is a contract, an invoice, or undetermined."""
    sample = _normalise((text or '')[:CLASSIFIER_SAMPLE_CHARS]).strip()

    contract_score = _score(sample, _CONTRACT_KEYWORDS)
    invoice_score = _invoice_score(sample)

    header = _invoice_header(sample[:INVOICE_HEADER_WINDOW])
    if header:
        logger.info(f"Classifier: invoice header '{header}' at the top of the document")
        return ClassificationResult(
            is_contract=False, kind='invoice',
            reason='Документ начинается как счет на оплату, а не как договор.',
            contract_score=contract_score, invoice_score=invoice_score,
        )

    strong_invoice = any(_has_invoice_term(sample, marker) for marker in _STRONG_INVOICE_MARKERS)
    invoice_shape = _has_invoice_structure(sample)
    if (strong_invoice or invoice_shape) and (
        invoice_score >= contract_score or contract_score < CONTRACT_SCORE_THRESHOLD
    ):
        return ClassificationResult(
            is_contract=False, kind='invoice',
            reason='Документ похож на счет или платежный документ, а не на договор.',
            contract_score=contract_score, invoice_score=invoice_score,
        )

    sections = [name for name, pattern in _CONTRACT_SECTIONS.items() if pattern.search(sample)]
    party_block = _RE_PARTY_MENTION.search(sample) and (
        _RE_SIGNATURE_BLOCK.search(sample) or _RE_REGISTRATION.search(sample)
    )
    if contract_score >= CONTRACT_SCORE_THRESHOLD or len(sections) >= 2 or party_block:
        return ClassificationResult(
            is_contract=True, kind='contract',
            reason=f"Найдены признаки договора (баллы: {contract_score}, разделы: {', '.join(sections) or 'нет'}).",
            contract_score=contract_score, invoice_score=invoice_score,
        )

    if _RE_INVOICE_NUMBER.search(sample):
        return ClassificationResult(
            is_contract=False, kind='invoice',
            reason='В документе найден номер счета, признаков договора нет.',
            contract_score=contract_score, invoice_score=invoice_score,
        )

    return ClassificationResult(
        is_contract=False, kind='undetermined',
        reason='Не удалось определить, является ли документ договором.',
        contract_score=contract_score, invoice_score=invoice_score,
    )


def caption_forces_contract(caption: Optional[str]) -> bool:
    """A caption mentioning a contract (or asking for analysis) forces contract mode."""
    return bool(caption and _RE_CAPTION_FORCE.search(caption))


def filename_hints_contract(file_name: Optional[str]) -> bool:
    return bool(file_name and _RE_FILENAME_HINT.search(file_name))


def extract_role_hint(caption: Optional[str]) -> Optional[str]:
    """Return the party role named in the caption, e.g. "я заказчик" -> "Заказчик"."""
    if not caption:
        return None
    match = _RE_ROLE_HINT.search(caption)
    if not match:
        return None
    role = match.group(1) or match.group(2)
    return role.capitalize() if role else None
