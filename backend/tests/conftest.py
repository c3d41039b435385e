"""
Shared pytest fixtures and fakes for the chat, file, analyzer and payment collaborators.
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

# Settings are read on first import of ``config``; keep tests off real services.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-secret")
os.environ.setdefault("TEMP_DIR", tempfile.mkdtemp(prefix="contractbot-tests-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base, import_models
from schemas.analysis_schema import AnalysisDetails
from schemas.payment_schema import Amount, PaymentInfo
from services.analyzer import ContractAnalysis
from services.quota_ledger import QuotaLedger
from workers.job_store import JobStore

CONTRACT_TEXT = """ДОГОВОР ОКАЗАНИЯ УСЛУГ № 15
г. Москва, 01 марта 2024 г.
ООО «Ромашка», далее именуемое Исполнитель, в лице генерального директора Иванова И.И., действующего на основании Устава, и ООО «Лютик», далее именуемое Заказчик, заключили настоящий договор о нижеследующем.
1. Предмет договора
1.1. Исполнитель обязуется оказать услуги по разработке программного обеспечения, а Заказчик обязуется принять и оплатить услуги.
1.2. Перечень услуг согласуется сторонами в техническом задании.
2. Ответственность сторон
2.1. За неисполнение обязательств стороны несут ответственность в соответствии с законодательством РФ.
2.2. Стороны освобождаются от ответственности при наступлении обстоятельств форс-мажор.
3. Срок действия договора
3.1. Договор вступает в силу с момента подписания и действует до 31 декабря 2024 года.
4. Реквизиты и подписи сторон
Исполнитель: ООО «Ромашка», ИНН 7701234567
Заказчик: ООО «Лютик», ИНН 7709876543
"""

INVOICE_TEXT = """Счет на оплату № 123 от 01 февраля 2024 г.
Поставщик: ООО «Ромашка», ИНН 7701234567, КПП 770101001
Покупатель: ООО «Лютик»
Наименование товара | Количество | Цена | Сумма
Бумага офисная А4 | 10 | 300,00 | 3000,00
Итого: 3000,00
В том числе НДС: 500,00
Всего к оплате: 3000,00 руб.
Счет должен быть оплачен в течение трех банковских дней.
"""

SHORT_TEXT = "Привет! Купить молоко и хлеб до вечера, не забыть."

ANALYSIS_PAYLOAD = {
    "party1": {"name": "ООО «Ромашка»", "role": "Исполнитель"},
    "party2": {"name": "ООО «Лютик»", "role": "Заказчик"},
    "mainTerms": {
        "subject": "Разработка программного обеспечения",
        "price": "Не указана",
        "duration": "До 31.12.2024",
        "responsibilities": "Исполнитель оказывает услуги, Заказчик принимает и оплачивает",
    },
    "analysis": {
        "party1Analysis": {
            "criticalErrors": ["Не определена цена услуг"],
            "risks": [{"clause": "1.2", "description": "Объем работ не зафиксирован"}],
            "improvements": ["Добавить порядок приемки"],
            "advantages": ["Гибкий объем работ"],
            "disadvantages": [],
        },
        "party2Analysis": {
            "criticalErrors": ["Нет сроков оказания услуг"],
            "risks": ["Отсутствует неустойка за просрочку"],
            "improvements": ["Добавить график работ"],
            "advantages": [],
            "disadvantages": ["Нет гарантийных обязательств"],
        },
    },
    "conclusion": {
        "contractQuality": "средний",
        "balanceOfPower": "Исполнитель",
        "mainProblems": ["Не определена цена"],
        "recommendedActions": ["Согласовать цену до подписания"],
    },
}


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeChat:
    """Records every outbound chat call."""

    def __init__(self):
        self.sent = []
        self.edits = []
        self.answers = []
        self._next_id = 100

    async def send_message(self, chat_id, text, keyboard=None):
        self._next_id += 1
        self.sent.append({"chat_id": chat_id, "text": text, "keyboard": keyboard, "message_id": self._next_id})
        return self._next_id

    async def edit_message(self, chat_id, message_id, text, keyboard=None):
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, "keyboard": keyboard})

    async def answer_callback(self, callback_id, text=None, show_alert=False):
        self.answers.append({"callback_id": callback_id, "text": text, "show_alert": show_alert})

    @property
    def last_status(self):
        return self.edits[-1]

    def all_texts(self):
        return [m["text"] for m in self.sent] + [e["text"] for e in self.edits]


class FakeFetcher:
    """Writes prepared bytes to a temp file, or raises a prepared error."""

    def __init__(self, directory: Path, content=b"", delay: float = 0):
        self.directory = directory
        self.content = content
        self.delay = delay
        self.calls = []
        self.paths = []

    async def fetch(self, file_id, file_name):
        self.calls.append((file_id, file_name))
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.content, Exception):
            raise self.content
        content = self.content.encode("utf-8") if isinstance(self.content, str) else self.content
        path = self.directory / f"{file_id}{Path(file_name).suffix}"
        path.write_bytes(content)
        self.paths.append(path)
        return path


class FakeAnalyzer:
    def __init__(self, result=None, error=None, role_report="Отчет для выбранной стороны", delay: float = 0):
        self.result = result
        self.error = error
        self.role_report = role_report
        self.delay = delay
        self.calls = []
        self.role_calls = []

    async def analyze(self, text):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    async def analyze_for_role(self, text, role):
        self.role_calls.append((text, role))
        if self.error is not None:
            raise self.error
        return self.role_report


class FakePaymentProvider:
    def __init__(self):
        self.created = []
        self.payments = {}
        self.cancelled = []
        self.refunds = []
        self._counter = 0

    async def create_payment(self, user_id, plan_id, amount, description):
        self._counter += 1
        info = PaymentInfo(
            id=f"pay-{self._counter}",
            status="pending",
            paid=False,
            amount=Amount(value=f"{amount:.2f}"),
            confirmation_url=f"https://yoomoney.test/checkout/pay-{self._counter}",
            metadata={"userId": str(user_id), "planId": plan_id},
        )
        self.created.append({"user_id": user_id, "plan_id": plan_id, "amount": amount, "description": description})
        self.payments[info.id] = info
        return info

    async def get_payment(self, payment_id):
        return self.payments[payment_id]

    async def cancel_payment(self, payment_id):
        self.cancelled.append(payment_id)
        info = self.payments[payment_id].model_copy(update={"status": "canceled"})
        self.payments[payment_id] = info
        return info

    async def create_refund(self, payment_id, amount, description=None):
        self.refunds.append((payment_id, amount, description))
        return {"id": f"refund-{payment_id}", "status": "succeeded", "payment_id": payment_id}

    def mark_paid(self, payment_id):
        self.payments[payment_id] = self.payments[payment_id].model_copy(update={"status": "succeeded", "paid": True})


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import_models()
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(session_factory, clock):
    return QuotaLedger(session_factory=session_factory, clock=clock)


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def job_store():
    return JobStore(ttl=600, maxsize=100)


@pytest.fixture
def analysis_details():
    return AnalysisDetails.model_validate(ANALYSIS_PAYLOAD)


@pytest.fixture
def contract_analysis(analysis_details):
    return ContractAnalysis(details=analysis_details)
