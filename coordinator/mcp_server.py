from __future__ import annotations

import json
import logging

from mcp.server.fastmcp import FastMCP

from coordinator import config
from coordinator.config import DEFAULT_CONFIG
from coordinator.errors import CoordinatorError
from coordinator.kobo import KoboClient
from coordinator.schemas import SearchOut, SurveyOut
from coordinator.services import Coordinator
from coordinator.xlsform import SchemaResolver, XLSFormSource

log = logging.getLogger(__name__)

mcp = FastMCP(
    "MDII Coordinator",
    instructions=(
        "Tracks Kobo form submissions for an MDII Tool ID. "
        "Start with get_tool_maturity(tool_id), then get_submission_status(tool_id) "
        "for innovator and domain-expert coverage, then get_survey_submissions(tool_id) "
        "for the matched user survey answers."
    ),
    json_response=True,
)

_coordinator: Coordinator | None = None


def _get_coordinator() -> Coordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = Coordinator(KoboClient(), SchemaResolver(XLSFormSource(config.SCHEMA_DIR)))
    return _coordinator


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("coordinator://overview")
def coordinator_overview() -> str:
    """Forms, maturity levels and domain categories the coordinator knows about."""
    cfg = DEFAULT_CONFIG
    return json.dumps({
        "config_version": cfg.version,
        "maturity_levels": sorted(set(cfg.maturity_synonyms.values())),
        "maturity_synonyms": dict(cfg.maturity_synonyms),
        "innovator_roles": list(cfg.role_labels.values()),
        "domain_categories": {k: list(v) for k, v in cfg.expected_categories.items()},
        "workflow": [
            "1. get_tool_maturity(tool_id): advanced or early, from the main registry.",
            "2. get_submission_status(tool_id): innovator roles and domain-expert categories.",
            "3. get_survey_submissions(tool_id): labelled user survey answers.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_tool_maturity(tool_id: str) -> dict:
    """Classify a tool's maturity level (advanced or early) from the main Kobo form."""
    try:
        maturity = await _get_coordinator().maturity_for(tool_id)
    except (CoordinatorError, ValueError) as exc:
        return {"error": str(exc)}
    return {"tool_id": tool_id.strip(), "maturity": maturity.value}


@mcp.tool()
async def get_submission_status(tool_id: str) -> dict:
    """Submission status per innovator role and per domain-expert category."""
    try:
        result = await _get_coordinator().search(tool_id)
    except (CoordinatorError, ValueError) as exc:
        return {"error": str(exc)}
    out = SearchOut.from_result(result)
    return {
        "tool_id": out.tool_id,
        "maturity": out.maturity.value,
        **out.status.model_dump(mode="json"),
    }


@mcp.tool()
async def get_survey_submissions(tool_id: str) -> list[dict]:
    """Matched user survey submissions, with question labels, for a tool."""
    try:
        result = await _get_coordinator().search(tool_id)
    except (CoordinatorError, ValueError) as exc:
        return [{"error": str(exc)}]
    return [SurveyOut.from_result(r).model_dump(mode="json") for r in result.surveys]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the coordinator MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
