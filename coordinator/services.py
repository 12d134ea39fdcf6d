"""Search orchestration shared by the HTTP API and the MCP server."""
from __future__ import annotations

import asyncio
import logging

from coordinator import config
from coordinator.aggregator import aggregate, fetch_bounded
from coordinator.config import (
    DEFAULT_CONFIG, DOMAIN_EXPERT, INNOVATOR_CATEGORIES, MAIN, SURVEY_CATEGORIES, FormConfig,
)
from coordinator.kobo import FormDataProvider
from coordinator.matcher import classify_maturity, decode_expertise, expertise_statuses
from coordinator.models import (
    AggregateStatus, FormSource, InnovatorStatus, MatchResult, MaturityLevel, SearchResult,
)
from coordinator.xlsform import SchemaResolver

log = logging.getLogger(__name__)


class Coordinator:
    """Looks up a tool's maturity and the submission status of every related form."""

    def __init__(
        self, provider: FormDataProvider, resolver: SchemaResolver | None = None,
        form_config: FormConfig = DEFAULT_CONFIG, timeout: float | None = None,
    ):
        self.provider = provider
        self.resolver = resolver
        self.config = form_config
        self.timeout = config.KOBO_TIMEOUT if timeout is None else timeout

    def source(self, category: str, maturity: MaturityLevel | None = None) -> FormSource:
        level = maturity.value if maturity else None
        return FormSource(
            category=category,
            form_id=self.config.form_id(category, level),
            maturity=maturity,
            id_fields=self.config.id_fields_for(category),
            schema_key=self.config.schema_key(category, level) if level else None,
        )

    def sources_for(self, maturity: MaturityLevel) -> list[FormSource]:
        """Innovator roles, then the domain-expert form, then the user surveys."""
        return [
            *(self.source(c) for c in INNOVATOR_CATEGORIES),
            self.source(DOMAIN_EXPERT, maturity),
            *(self.source(c, maturity) for c in SURVEY_CATEGORIES),
        ]

    async def maturity_for(self, tool_id: str) -> MaturityLevel:
        if not tool_id or not tool_id.strip():
            raise ValueError("Please enter a Tool ID")
        page = await fetch_bounded(self.provider, self.config.form_id(MAIN), self.timeout)
        log.info("Searching %d main-form records for tool %s", len(page.results), tool_id)
        return classify_maturity(page.results, tool_id, self.config)

    def build_status(self, maturity: MaturityLevel, results: list[MatchResult]) -> AggregateStatus:
        status = AggregateStatus()
        for result in results:
            if result.category in INNOVATOR_CATEGORIES:
                status.innovator_statuses.append(InnovatorStatus(
                    role=self.config.role_labels.get(result.category, result.category),
                    form_id=result.source.form_id,
                    submitted=bool(result.matched_records),
                    count=len(result.matched_records),
                    error=result.error,
                ))
            elif result.category == DOMAIN_EXPERT:
                counts = decode_expertise(result.matched_records, maturity, self.config)
                status.domain_expert_statuses = expertise_statuses(counts, maturity, self.config)
                status.domain_expert_error = result.error
        return status

    async def search(self, tool_id: str) -> SearchResult:
        """Classify *tool_id*, then fan out over every form for its maturity.

        Classification errors propagate; per-form failures are reported on the
        individual results.
        """
        tool_id = tool_id.strip() if tool_id else ""
        maturity = await self.maturity_for(tool_id)
        log.info("Tool %s is %s", tool_id, maturity.value)
        results = await aggregate(
            tool_id, maturity, self.sources_for(maturity), self.provider,
            self.resolver, self.timeout,
        )
        return SearchResult(
            tool_id=tool_id,
            maturity=maturity,
            status=self.build_status(maturity, results),
            surveys=[r for r in results if r.category in SURVEY_CATEGORIES],
        )


class SearchSession:
    """Runs searches so that only the most recent one publishes its result.

    Starting a search cancels any search still in flight; a search that was
    superseded returns ``None`` and leaves ``latest`` untouched.
    """

    def __init__(self, coordinator: Coordinator):
        self.coordinator = coordinator
        self.latest: SearchResult | None = None
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def generation(self) -> int:
        return self._generation

    async def run(self, tool_id: str) -> SearchResult | None:
        self._generation += 1
        generation = self._generation
        if self._task is not None and not self._task.done():
            log.info("Superseding in-flight search (generation %d)", generation - 1)
            self._task.cancel()
        self.latest = None
        task = asyncio.create_task(self.coordinator.search(tool_id))
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return None
            raise
        if generation != self._generation:
            log.info("Discarding stale search result for %s", tool_id)
            return None
        self.latest = result
        return result
