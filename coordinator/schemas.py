"""Pydantic request/response schemas for the coordinator API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from coordinator.models import AggregateStatus, MatchResult, MaturityLevel, SearchResult, SubmissionTable
from coordinator.xlsform import build_table


class SearchRequest(BaseModel):
    tool_id: str

    @field_validator("tool_id")
    @classmethod
    def tool_id_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a Tool ID")
        return v


class MaturityOut(BaseModel):
    tool_id: str
    maturity: MaturityLevel


class SurveyOut(BaseModel):
    category: str
    form_id: str
    maturity: MaturityLevel | None = None
    count: int
    error: str | None = None
    table: SubmissionTable

    @classmethod
    def from_result(cls, result: MatchResult) -> SurveyOut:
        return cls(
            category=result.category,
            form_id=result.source.form_id,
            maturity=result.maturity,
            count=len(result.matched_records),
            error=result.error,
            table=build_table(result.matched_records, result.resolved_schema),
        )


class SearchOut(BaseModel):
    tool_id: str
    maturity: MaturityLevel
    status: AggregateStatus
    surveys: list[SurveyOut] = []

    @classmethod
    def from_result(cls, result: SearchResult) -> SearchOut:
        return cls(
            tool_id=result.tool_id,
            maturity=result.maturity,
            status=result.status,
            surveys=[SurveyOut.from_result(r) for r in result.surveys],
        )


class KoboProxyOut(BaseModel):
    results: list[dict[str, Any]]
    count: int
    next: str | None = None
    previous: str | None = None
