"""Contract analysis through the Anthropic Messages API.

The analyzer returns a tagged result instead of raising for "not a
contract" outcomes; transport and parsing problems are raised as typed
``AnalyzerError`` subclasses so the pipeline can choose the user message
without inspecting error text.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union

import anthropic
from pydantic import ValidationError

from config import settings
from schemas.analysis_schema import AnalysisDetails

logger = logging.getLogger(__name__)

TRUNCATED_NOTE = "... [текст сокращен из-за ограничений размера]"


class AnalyzerError(Exception):
    """Base class for analyzer failures."""
    pass


class ContextTooLong(AnalyzerError):
    pass


class EmptyInput(AnalyzerError):
    pass


class MalformedResponse(AnalyzerError):
    pass


class UpstreamError(AnalyzerError):
    pass


@dataclass(frozen=True)
class ContractAnalysis:
    details: AnalysisDetails


@dataclass(frozen=True)
class NotAContract:
    reason: str


@dataclass(frozen=True)
class DegradedAnalysis:
    """Parties were found but some sections are missing and hold defaults."""
    details: AnalysisDetails
    missing_sections: Tuple[str, ...]


Analysis = Union[ContractAnalysis, NotAContract, DegradedAnalysis]


class DocumentAnalyzer(Protocol):
    async def analyze(self, text: str) -> Analysis: ...

    async def analyze_for_role(self, text: str, role: str) -> str: ...


SYSTEM_PROMPT = (
    "Вы - опытный юрист-эксперт по анализу договоров. Ваша задача - проанализировать предоставленный "
    "договор и вернуть структурированный JSON-ответ со следующими полями:\n\n"
    "1. party1 и party2 - объекты с информацией о сторонах договора:\n"
    "   - name: название/ФИО стороны\n"
    "   - role: роль в договоре (Заказчик, Исполнитель, etc.)\n\n"
    "2. mainTerms - объект с основными условиями договора:\n"
    "   - subject: предмет договора (подробное описание)\n"
    "   - price: условия оплаты и стоимость\n"
    "   - duration: срок действия договора\n"
    "   - responsibilities: основные обязанности сторон\n"
    "   - special: особые условия (если есть)\n\n"
    "3. analysis - объект с анализом для каждой стороны (party1Analysis и party2Analysis):\n"
    "   - criticalErrors: массив критических ошибок/упущений в договоре\n"
    "   - risks: массив рисков с указанием пункта договора и описанием последствий\n"
    "   - improvements: массив необходимых улучшений с конкретными формулировками\n"
    "   - advantages: массив преимуществ для этой стороны\n"
    "   - disadvantages: массив недостатков для этой стороны\n\n"
    "4. conclusion - объект с общим заключением:\n"
    "   - contractQuality: оценка качества составления (высокий/средний/низкий)\n"
    "   - balanceOfPower: какая сторона в более выгодном положении\n"
    "   - mainProblems: основные проблемы договора\n"
    "   - recommendedActions: рекомендуемые действия\n\n"
    "Если текст не является договором и стороны определить невозможно, верните "
    "{\"notContract\": true, \"reason\": \"...\"}.\n"
    "Анализ должен быть максимально конкретным, с указанием номеров пунктов договора и "
    "предложением точных формулировок для улучшения. Ответ - только JSON, без пояснений."
)

ROLE_SYSTEM_PROMPT = (
    "Вы - опытный юрист-эксперт по анализу договоров. Проанализируйте договор с позиции стороны, "
    "указанной пользователем. Перечислите критические ошибки, риски со ссылками на пункты договора, "
    "необходимые улучшения с конкретными формулировками, преимущества и недостатки для этой стороны, "
    "и завершите кратким выводом. Пишите простым языком, используйте Markdown-заголовки *жирным*."
)

_RE_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _extract_json(raw: str) -> dict:
    """Pull the JSON object out of a model reply, tolerating code fences and chatter."""
    candidate = raw.strip()
    fenced = _RE_JSON_FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponse("Model reply contains no JSON object")
    try:
        payload = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Model reply is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedResponse("Model reply JSON is not an object")
    return payload


def parse_analysis(raw: str) -> Analysis:
    """
    Turn the model reply into a tagged analysis result.

    Raises:
        MalformedResponse: If the reply is not a JSON object matching the schema
    """
    payload = _extract_json(raw)

    if payload.get("notContract"):
        return NotAContract(reason=str(payload.get("reason") or "Текст не является договором"))
    if not payload.get("party1") or not payload.get("party2"):
        return NotAContract(reason="Не удалось определить стороны договора")

    missing = tuple(key for key in ("mainTerms", "analysis", "conclusion") if not payload.get(key))
    try:
        details = AnalysisDetails.model_validate({key: value for key, value in payload.items() if key not in missing})
    except ValidationError as e:
        raise MalformedResponse(f"Model reply does not match the analysis schema: {e}") from e

    if missing:
        logger.warning(f"Analysis is missing sections: {', '.join(missing)}")
        return DegradedAnalysis(details=details, missing_sections=missing)
    return ContractAnalysis(details=details)


class AnthropicAnalyzer:
    """DocumentAnalyzer backed by Claude."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: Optional[int] = None, max_chars: Optional[int] = None, client=None):
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.ANALYZER_MAX_TOKENS
        self.max_chars = max_chars or settings.ANALYZER_MAX_CHARS
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key or settings.ANTHROPIC_API_KEY)

    def _prepare(self, text: str) -> str:
        if not text or not text.strip():
            raise EmptyInput("Nothing to analyse: the document text is empty")
        if len(text) > self.max_chars:
            logger.info(f"Document too large ({len(text)} chars), truncating to {self.max_chars}")
            text = text[:self.max_chars] + TRUNCATED_NOTE
        return text

    async def _call_claude(self, system_prompt: str, user_prompt: str) -> str:
        logger.info(f"Calling Claude ({self.model})...")
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        """Call the model and translate SDK exceptions into analyzer errors."""
        try:
            return await self._call_claude(system_prompt, user_prompt)
        except anthropic.BadRequestError as e:
            message = str(e).lower()
            if "too long" in message or "context" in message or "max_tokens" in message:
                raise ContextTooLong(f"Document does not fit the model context: {e}") from e
            raise UpstreamError(f"Claude rejected the request: {e}") from e
        except anthropic.APIError as e:
            logger.error(f"Claude API call failed: {e}")
            raise UpstreamError(f"Claude API call failed: {e}") from e

    async def analyze(self, text: str) -> Analysis:
        text = self._prepare(text)
        raw = await self._complete(
            SYSTEM_PROMPT,
            f"Пожалуйста, проанализируйте следующий договор и верните результат в формате JSON:\n\n{text}",
        )
        return parse_analysis(raw)

    async def analyze_for_role(self, text: str, role: str) -> str:
        text = self._prepare(text)
        raw = await self._complete(
            ROLE_SYSTEM_PROMPT,
            f"Моя роль в договоре: {role}.\n\nТекст договора:\n\n{text}",
        )
        if not raw.strip():
            raise MalformedResponse("Model returned an empty report")
        return raw.strip()
