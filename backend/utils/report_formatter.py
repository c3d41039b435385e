"""
Render structured contract analysis as Telegram Markdown messages.
"""
import re
from typing import List

from constants import TELEGRAM_MESSAGE_LIMIT
from schemas.analysis_schema import AnalysisDetails, PartyInfo
from services.chat_gateway import Button, Keyboard

_RE_MARKDOWN_SPECIAL = re.compile(r'([_*`\[])')

_PARTY_SECTIONS = (
    ("critical_errors", "❗ *Критические ошибки*"),
    ("risks", "⚠️ *Риски*"),
    ("improvements", "🔧 *Рекомендуемые улучшения*"),
    ("advantages", "✅ *Преимущества*"),
    ("disadvantages", "➖ *Недостатки*"),
)


def escape_markdown(text: str) -> str:
    """Escape characters that break legacy Telegram Markdown."""
    return _RE_MARKDOWN_SPECIAL.sub(r'\\\1', text or "")


def party_label(party: PartyInfo) -> str:
    return f"{party.name} ({party.role})"


def party_selection_keyboard(user_id: str, details: AnalysisDetails) -> Keyboard:
    return [
        [Button(text=f"1️⃣ {party_label(details.party1)}"[:64], callback_data=f"select_party:{user_id}:party1")],
        [Button(text=f"2️⃣ {party_label(details.party2)}"[:64], callback_data=f"select_party:{user_id}:party2")],
    ]


def _bullets(items: List[str]) -> str:
    return "\n".join(f"• {escape_markdown(item)}" for item in items)


def format_terms_report(details: AnalysisDetails) -> str:
    """First report message: parties, main terms and the overall conclusion."""
    terms = details.main_terms
    lines = [
        "📋 *Основные условия договора*",
        "",
        f"*Стороны:*\n1. {escape_markdown(party_label(details.party1))}\n2. {escape_markdown(party_label(details.party2))}",
        "",
        f"*Предмет договора:* {escape_markdown(terms.subject)}",
        f"*Стоимость и оплата:* {escape_markdown(terms.price)}",
        f"*Срок действия:* {escape_markdown(terms.duration)}",
        f"*Обязанности сторон:* {escape_markdown(terms.responsibilities)}",
    ]
    if terms.special:
        lines.append(f"*Особые условия:* {escape_markdown(terms.special)}")

    conclusion = details.conclusion
    lines += [
        "",
        "📌 *Общее заключение*",
        f"*Качество составления:* {escape_markdown(conclusion.contract_quality)}",
        f"*Баланс интересов:* {escape_markdown(conclusion.balance_of_power)}",
    ]
    if conclusion.main_problems:
        lines += ["", "*Основные проблемы:*", _bullets(conclusion.main_problems)]
    return "\n".join(lines)


def format_party_report(details: AnalysisDetails, party_key: str) -> str:
    """Second report message: the analysis from one party's point of view."""
    party = details.party(party_key)
    analysis = details.party_analysis(party_key)
    lines = [f"👤 *Анализ для стороны: {escape_markdown(party_label(party))}*"]

    for attr, title in _PARTY_SECTIONS:
        items = getattr(analysis, attr)
        if items:
            lines += ["", title, _bullets(items)]

    if len(lines) == 1:
        lines += ["", "Существенных замечаний для этой стороны не найдено."]

    actions = details.conclusion.recommended_actions
    if actions:
        lines += ["", "🧭 *Рекомендуемые действия*", _bullets(actions)]
    return "\n".join(lines)


def format_role_report(role: str, report: str) -> str:
    return f"👤 *Анализ договора для стороны: {escape_markdown(role)}*\n\n{report}"


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> List[str]:
    """Split long text on line boundaries so every part fits a Telegram message."""
    if len(text) <= limit:
        return [text]
    parts = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            parts.append(current)
            current = line
        else:
            current = candidate
    if current:
        parts.append(current)
    return parts
