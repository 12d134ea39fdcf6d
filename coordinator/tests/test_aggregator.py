"""Tests for the concurrent multi-source aggregator."""
from __future__ import annotations

import asyncio
import time

import pytest

from coordinator.aggregator import aggregate, fetch_bounded, settle
from coordinator.errors import SchemaLoadError, SourceFetchError, SourceTimeoutError
from coordinator.models import FormSource, MaturityLevel
from coordinator.xlsform import SchemaResolver

ID_FIELDS = ("group_requester/Q_13110000",)


def _src(n: int, **kw) -> FormSource:
    return FormSource(category=f"cat{n}", form_id=f"form{n}", id_fields=ID_FIELDS, **kw)


def _rec(tool_id: str, **extra) -> dict:
    return {"group_requester/Q_13110000": tool_id, **extra}


class TestSettle:
    @pytest.mark.asyncio
    async def test_collects_results_and_exceptions_in_order(self):
        async def ok(v):
            await asyncio.sleep(0.01 * (3 - v))
            return v

        async def bad():
            raise RuntimeError("nope")

        out = await settle([ok(1), bad(), ok(3)])
        assert out[0] == 1 and out[2] == 3
        assert isinstance(out[1], RuntimeError)

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await settle([]) == []


class TestAggregate:
    @pytest.mark.asyncio
    async def test_failing_middle_source_is_contained(self, fake_provider):
        provider = fake_provider({
            "form1": [_rec("T-1"), _rec("T-2")],
            "form2": SourceFetchError("HTTP 500: boom", "form2", 500),
            "form3": [_rec(" t-1 ")],
        })
        sources = [_src(1), _src(2), _src(3)]
        results = await aggregate("T-1", MaturityLevel.EARLY, sources, provider)

        assert [r.source for r in results] == sources
        assert len(results[0].matched_records) == 1 and results[0].error is None
        assert results[1].matched_records == [] and "boom" in results[1].error
        assert len(results[2].matched_records) == 1 and results[2].ok
        assert all(r.maturity == MaturityLevel.EARLY for r in results)

    @pytest.mark.asyncio
    async def test_order_follows_sources_not_completion(self, fake_provider):
        provider = fake_provider(
            {"form1": [_rec("T-1")], "form2": [_rec("T-1")], "form3": [_rec("T-1")]},
            delays={"form1": 0.05, "form2": 0.0, "form3": 0.02},
        )
        sources = [_src(1), _src(2), _src(3)]
        results = await aggregate("T-1", None, sources, provider)
        assert [r.source.form_id for r in results] == ["form1", "form2", "form3"]

    @pytest.mark.asyncio
    async def test_fetches_overlap(self, fake_provider):
        provider = fake_provider(
            {f"form{i}": [] for i in range(1, 4)},
            delays={f"form{i}": 0.1 for i in range(1, 4)},
        )
        start = time.monotonic()
        await aggregate("T-1", None, [_src(1), _src(2), _src(3)], provider)
        assert time.monotonic() - start < 0.25

    @pytest.mark.asyncio
    async def test_timeout_captured(self, fake_provider):
        provider = fake_provider(
            {"form1": [_rec("T-1")], "form2": [_rec("T-1")]}, delays={"form2": 1.0},
        )
        results = await aggregate("T-1", None, [_src(1), _src(2)], provider, timeout=0.05)
        assert results[0].ok
        assert results[1].matched_records == []
        assert "timed out" in results[1].error

    @pytest.mark.asyncio
    async def test_unexpected_exception_captured(self, fake_provider):
        provider = fake_provider({"form1": ValueError("bad payload")})
        [result] = await aggregate("T-1", None, [_src(1)], provider)
        assert result.error == "bad payload"

    @pytest.mark.asyncio
    async def test_schema_attached_for_survey_sources(self, fake_provider):
        class Source:
            def load(self, category):
                return {"fields": [{"name": "Q_13110000", "label": "Tool ID"}]}

        provider = fake_provider({"form1": [_rec("T-1")]})
        resolver = SchemaResolver(Source())
        [result] = await aggregate("T-1", None, [_src(1, schema_key="ut3_early")], provider, resolver)
        assert result.resolved_schema.label_for("group_requester/Q_13110000") == "Tool ID"

    @pytest.mark.asyncio
    async def test_schema_failure_contained_to_source(self, fake_provider):
        class Broken:
            def load(self, category):
                raise SchemaLoadError("Could not load form schema file: ut3_early.xlsx", category)

        provider = fake_provider({"form1": [_rec("T-1")], "form2": [_rec("T-1")]})
        sources = [_src(1, schema_key="ut3_early"), _src(2)]
        results = await aggregate("T-1", None, sources, provider, SchemaResolver(Broken()))
        assert "ut3_early.xlsx" in results[0].error
        assert results[0].resolved_schema.questions == {}
        assert len(results[0].matched_records) == 1
        assert results[1].ok and results[1].resolved_schema is None

    @pytest.mark.asyncio
    async def test_no_schema_without_resolver(self, fake_provider):
        provider = fake_provider({"form1": []})
        [result] = await aggregate("T-1", None, [_src(1, schema_key="ut3_early")], provider)
        assert result.resolved_schema is None and result.ok


class TestFetchBounded:
    @pytest.mark.asyncio
    async def test_raises_timeout_error(self, fake_provider):
        provider = fake_provider({"f": []}, delays={"f": 1.0})
        with pytest.raises(SourceTimeoutError) as exc_info:
            await fetch_bounded(provider, "f", 0.01)
        assert exc_info.value.form_id == "f"
        assert isinstance(exc_info.value, SourceFetchError)
