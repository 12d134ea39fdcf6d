from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from coordinator.utils import bare_field

Record = dict[str, Any]


class MaturityLevel(str, Enum):
    ADVANCED = "advanced"
    EARLY = "early"


class FormSource(BaseModel):
    """One independently fetchable Kobo form."""
    model_config = ConfigDict(frozen=True)

    category: str
    form_id: str
    maturity: MaturityLevel | None = None
    id_fields: tuple[str, ...] = ()
    schema_key: str | None = None


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: str = "text"
    choices: tuple[Choice, ...] = ()


class QuestionSchema(BaseModel):
    """Questions of one XLSForm keyed by bare field name (group prefix removed)."""
    model_config = ConfigDict(frozen=True)

    category: str = ""
    questions: dict[str, Question] = {}

    def question_for(self, field_name: str) -> Question | None:
        return self.questions.get(bare_field(field_name))

    def label_for(self, field_name: str) -> str:
        q = self.question_for(field_name)
        return q.label if q else field_name

    def choice_label(self, field_name: str, value: Any) -> Any:
        """Map a stored choice value to its label; unknown values pass through.

        ``select_multiple`` answers are space separated, each token is resolved
        on its own and the labels joined with ``", "``.
        """
        q = self.question_for(field_name)
        if q is None or not q.choices or not isinstance(value, str) or not value:
            return value
        labels = {c.name: c.label for c in q.choices}
        if value in labels:
            return labels[value]
        if q.type.startswith("select_multiple"):
            return ", ".join(labels.get(tok, tok) for tok in value.split())
        return value


class Column(BaseModel):
    key: str
    label: str
    type: str = "text"


class SubmissionTable(BaseModel):
    columns: list[Column] = []
    rows: list[dict[str, Any]] = []


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: FormSource
    maturity: MaturityLevel | None = None
    matched_records: list[Record] = []
    resolved_schema: QuestionSchema | None = None
    error: str | None = None

    @property
    def category(self) -> str:
        return self.source.category

    @property
    def ok(self) -> bool:
        return self.error is None


class InnovatorStatus(BaseModel):
    role: str
    form_id: str
    submitted: bool
    count: int
    error: str | None = None


class DomainExpertStatus(BaseModel):
    category: str
    maturity: MaturityLevel
    submitted: bool
    count: int


class AggregateStatus(BaseModel):
    innovator_statuses: list[InnovatorStatus] = []
    domain_expert_statuses: list[DomainExpertStatus] = []
    domain_expert_error: str | None = None


class KoboPage(BaseModel):
    """Shape returned by the Kobo ``data.json`` endpoint."""
    results: list[Record] = []
    count: int = 0
    next: str | None = None
    previous: str | None = None


class SearchResult(BaseModel):
    tool_id: str
    maturity: MaturityLevel
    status: AggregateStatus
    surveys: list[MatchResult] = []
