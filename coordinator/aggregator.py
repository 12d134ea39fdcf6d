"""Concurrent fan-out over independent Kobo form sources.

Each source is fetched, matched against the tool id and (for surveys) paired
with its question schema.  A failing source yields a MatchResult carrying the
error; the others are unaffected.  Results come back in source order.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Sequence, TypeVar

from coordinator import config
from coordinator.errors import SchemaLoadError, SourceTimeoutError
from coordinator.kobo import FormDataProvider
from coordinator.matcher import match
from coordinator.models import FormSource, MatchResult, MaturityLevel, QuestionSchema
from coordinator.xlsform import SchemaResolver

log = logging.getLogger(__name__)

T = TypeVar("T")


async def settle(awaitables: Sequence[Awaitable[T]]) -> list[T | Exception]:
    """Await all of *awaitables*; each slot holds its result or its exception.

    Never short-circuits on the first failure.  Cancellation of the caller is
    still propagated.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    out: list[T | Exception] = []
    for r in results:
        if isinstance(r, BaseException) and not isinstance(r, Exception):
            raise r
        out.append(r)
    return out


async def fetch_bounded(provider: FormDataProvider, form_id: str, timeout: float):
    try:
        return await asyncio.wait_for(provider.fetch(form_id), timeout)
    except asyncio.TimeoutError as exc:
        raise SourceTimeoutError(f"Request timed out after {timeout:g}s", form_id) from exc


async def _fetch_source(
    tool_id: str, maturity: MaturityLevel | None, source: FormSource,
    provider: FormDataProvider, resolver: SchemaResolver | None, timeout: float,
) -> MatchResult:
    page = await fetch_bounded(provider, source.form_id, timeout)
    matched = match(page.results, tool_id, source.id_fields)
    log.info("%s: %d of %d records match tool %s",
             source.category, len(matched), len(page.results), tool_id)

    schema = None
    error = None
    if source.schema_key and resolver is not None:
        try:
            schema = resolver.resolve(source.schema_key)
        except SchemaLoadError as exc:
            log.warning("Schema %s unavailable for %s: %s", source.schema_key, source.category, exc)
            schema = QuestionSchema(category=source.schema_key)
            error = str(exc)
    return MatchResult(
        source=source, maturity=maturity, matched_records=matched,
        resolved_schema=schema, error=error,
    )


async def aggregate(
    tool_id: str, maturity: MaturityLevel | None, sources: Sequence[FormSource],
    provider: FormDataProvider, resolver: SchemaResolver | None = None,
    timeout: float | None = None,
) -> list[MatchResult]:
    """Fetch and match every source concurrently; one result per source, in order."""
    timeout = config.KOBO_TIMEOUT if timeout is None else timeout
    outcomes = await settle([
        _fetch_source(tool_id, maturity, s, provider, resolver, timeout) for s in sources
    ])
    results: list[MatchResult] = []
    for source, outcome in zip(sources, outcomes):
        if isinstance(outcome, Exception):
            log.warning("Could not fetch %s (%s): %s", source.category, source.form_id, outcome)
            results.append(MatchResult(
                source=source, maturity=maturity, error=str(outcome) or type(outcome).__name__,
            ))
        else:
            results.append(outcome)
    return results
