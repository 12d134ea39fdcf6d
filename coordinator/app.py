from __future__ import annotations

import logging
from functools import lru_cache
from typing import NoReturn

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from coordinator import config
from coordinator.errors import (
    InvalidMaturityError, SourceFetchError, SourceTimeoutError, ToolNotFoundError,
)
from coordinator.kobo import KoboClient
from coordinator.schemas import KoboProxyOut, MaturityOut, SearchOut, SearchRequest
from coordinator.services import Coordinator, SearchSession
from coordinator.xlsform import SchemaResolver, XLSFormSource

log = logging.getLogger(__name__)

app = FastAPI(
    title="MDII Coordinator",
    version="0.1.0",
    description=(
        "Coordinator panel API. Looks up a Tool ID in the main Kobo registry, "
        "classifies its maturity and reports submissions across the innovator, "
        "domain-expert and user survey forms."
    ),
    openapi_tags=[
        {"name": "Kobo", "description": "Pass-through access to Kobo form data."},
        {"name": "Tools", "description": "Maturity and submission status for a Tool ID."},
        {"name": "Search", "description": "Dashboard search with stale-result suppression."},
        {"name": "Admin", "description": "Administrative operations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_kobo_client() -> KoboClient:
    return KoboClient()


@lru_cache(maxsize=1)
def get_resolver() -> SchemaResolver:
    return SchemaResolver(XLSFormSource(config.SCHEMA_DIR))


def get_coordinator(
    client: KoboClient = Depends(get_kobo_client),
    resolver: SchemaResolver = Depends(get_resolver),
) -> Coordinator:
    return Coordinator(client, resolver)


_search_session: SearchSession | None = None


def get_search_session(coordinator: Coordinator = Depends(get_coordinator)) -> SearchSession:
    """One shared session so a new dashboard search supersedes the pending one."""
    global _search_session
    if _search_session is None:
        _search_session = SearchSession(coordinator)
    else:
        _search_session.coordinator = coordinator
    return _search_session


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, ToolNotFoundError):
        raise HTTPException(404, str(exc)) from exc
    if isinstance(exc, InvalidMaturityError):
        raise HTTPException(422, str(exc)) from exc
    if isinstance(exc, SourceTimeoutError):
        raise HTTPException(504, f"Failed to fetch main form data: {exc}") from exc
    if isinstance(exc, SourceFetchError):
        raise HTTPException(502, f"Failed to fetch main form data: {exc}") from exc
    if isinstance(exc, ValueError):
        raise HTTPException(400, str(exc)) from exc
    raise exc


# ---------------------------------------------------------------------------
# Routes: Kobo proxy
# ---------------------------------------------------------------------------


@app.get("/api/kobo", response_model=KoboProxyOut, tags=["Kobo"],
         summary="Fetch raw submissions for a form id")
async def kobo_proxy(
    form_id: str | None = Query(None, alias="formId"),
    client: KoboClient = Depends(get_kobo_client),
):
    if not form_id:
        return JSONResponse({"error": "Missing formId parameter"}, status_code=400)
    try:
        page = await client.fetch(form_id)
    except SourceTimeoutError as exc:
        return JSONResponse({"error": str(exc)}, status_code=504)
    except SourceFetchError as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code or 500)
    return page.model_dump()


# ---------------------------------------------------------------------------
# Routes: Tools
# ---------------------------------------------------------------------------


@app.get("/api/tools/{tool_id}/maturity", response_model=MaturityOut, tags=["Tools"],
         summary="Classify a tool's maturity from the main registry")
async def tool_maturity(tool_id: str, coordinator: Coordinator = Depends(get_coordinator)):
    try:
        maturity = await coordinator.maturity_for(tool_id)
    except Exception as exc:
        _raise_http(exc)
    return {"tool_id": tool_id.strip(), "maturity": maturity}


@app.get("/api/tools/{tool_id}/status", response_model=SearchOut, tags=["Tools"],
         summary="Submission status and matched survey records for a tool")
async def tool_status(tool_id: str, coordinator: Coordinator = Depends(get_coordinator)):
    try:
        result = await coordinator.search(tool_id)
    except Exception as exc:
        _raise_http(exc)
    return SearchOut.from_result(result)


# ---------------------------------------------------------------------------
# Routes: Search
# ---------------------------------------------------------------------------


@app.post("/api/search", response_model=SearchOut, tags=["Search"],
          summary="Run a dashboard search, superseding any search still in flight")
async def search(body: SearchRequest, session: SearchSession = Depends(get_search_session)):
    try:
        result = await session.run(body.tool_id)
    except Exception as exc:
        _raise_http(exc)
    if result is None:
        raise HTTPException(409, "Search superseded by a newer request")
    return SearchOut.from_result(result)


@app.get("/api/search/latest", response_model=SearchOut, tags=["Search"],
         summary="Result of the most recent completed search")
async def latest_search(session: SearchSession = Depends(get_search_session)):
    if session.latest is None:
        raise HTTPException(404, "No completed search")
    return SearchOut.from_result(session.latest)


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.post("/api/admin/schema-cache/clear", tags=["Admin"], summary="Drop cached question schemas")
async def clear_schema_cache(resolver: SchemaResolver = Depends(get_resolver)):
    resolver.clear()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("coordinator.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
