"""
Pydantic schemas for the structured contract analysis returned by the model.

Field aliases follow the camelCase keys the model is asked to produce.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


def _as_lines(value) -> List[str]:
    """Coerce a model-produced list (strings, dicts or a single string) to strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, dict):
        value = [value]
    lines = []
    for item in value:
        if isinstance(item, dict):
            lines.append(": ".join(str(v) for v in item.values() if v))
        elif item:
            lines.append(str(item))
    return lines


class _Aliased(BaseModel):
    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        # The model sometimes answers `null` for a field it could not fill
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class PartyInfo(_Aliased):
    name: str = "Не указано"
    role: str = "Сторона"


class MainTerms(_Aliased):
    subject: str = "Не удалось определить предмет договора"
    price: str = "Не удалось определить условия оплаты"
    duration: str = "Не удалось определить срок действия"
    responsibilities: str = "Не удалось определить обязанности сторон"
    special: Optional[str] = None

    @field_validator("subject", "price", "duration", "responsibilities", "special", mode="before")
    @classmethod
    def _join_lists(cls, value):
        if isinstance(value, (list, dict)):
            return "; ".join(_as_lines(value))
        return value


class PartyAnalysis(_Aliased):
    critical_errors: List[str] = Field(default_factory=list, alias="criticalErrors")
    risks: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    advantages: List[str] = Field(default_factory=list)
    disadvantages: List[str] = Field(default_factory=list)

    @field_validator("critical_errors", "risks", "improvements", "advantages", "disadvantages", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _as_lines(value)


class PartiesAnalysis(_Aliased):
    party1_analysis: PartyAnalysis = Field(default_factory=PartyAnalysis, alias="party1Analysis")
    party2_analysis: PartyAnalysis = Field(default_factory=PartyAnalysis, alias="party2Analysis")


class Conclusion(_Aliased):
    contract_quality: str = Field("средний", alias="contractQuality")
    balance_of_power: str = Field("не определено", alias="balanceOfPower")
    main_problems: List[str] = Field(default_factory=list, alias="mainProblems")
    recommended_actions: List[str] = Field(default_factory=list, alias="recommendedActions")

    @field_validator("main_problems", "recommended_actions", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _as_lines(value)


class AnalysisDetails(_Aliased):
    party1: PartyInfo
    party2: PartyInfo
    main_terms: MainTerms = Field(default_factory=MainTerms, alias="mainTerms")
    analysis: PartiesAnalysis = Field(default_factory=PartiesAnalysis)
    conclusion: Conclusion = Field(default_factory=Conclusion)

    def party(self, key: str) -> PartyInfo:
        return self.party1 if key == "party1" else self.party2

    def party_analysis(self, key: str) -> PartyAnalysis:
        return self.analysis.party1_analysis if key == "party1" else self.analysis.party2_analysis
