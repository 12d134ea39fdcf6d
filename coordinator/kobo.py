"""Async client for the KoboToolbox v2 data API."""
from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from coordinator import config
from coordinator.errors import SourceFetchError, SourceTimeoutError
from coordinator.models import KoboPage

log = logging.getLogger(__name__)

_USER_AGENT = "MDIICoordinator/1.0"
_MAX_PAGES = 50


class FormDataProvider(Protocol):
    async def fetch(self, form_id: str) -> KoboPage: ...


def _error_message(resp: httpx.Response, form_id: str) -> str:
    if resp.status_code == 401:
        return "Authentication failed. Check your API token."
    if resp.status_code == 403:
        return f"Access forbidden. Check permissions for form ID: {form_id}"
    if resp.status_code == 404:
        return f"Form not found. Check form ID: {form_id}"
    body = resp.text[:200]
    return f"HTTP {resp.status_code}: {body}" if body else f"HTTP {resp.status_code}: {resp.reason_phrase}"


class KoboClient:
    """Fetches form submissions by form id.

    Every request is bounded by *timeout* seconds; a timeout surfaces as
    SourceTimeoutError, any other transport or HTTP failure as SourceFetchError.
    """

    def __init__(
        self, base_url: str | None = None, token: str | None = None,
        timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None,
        follow_pages: bool | None = None,
    ):
        self.base_url = (base_url or config.KOBO_BASE_URL).rstrip("/")
        self.token = config.kobo_token() if token is None else token
        self.timeout = config.KOBO_TIMEOUT if timeout is None else timeout
        self._transport = transport
        self.follow_pages = config.KOBO_FOLLOW_PAGES if follow_pages is None else follow_pages

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Token {self.token}"
        return headers

    def data_url(self, form_id: str) -> str:
        return f"{self.base_url}/assets/{form_id}/data.json"

    async def _get_json(self, url: str, form_id: str) -> dict:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), headers=self._headers(),
                transport=self._transport, follow_redirects=True,
            ) as client:
                resp = await client.get(url)
        except httpx.TimeoutException as exc:
            raise SourceTimeoutError("Request timed out", form_id) from exc
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"Network error: {exc}", form_id) from exc

        log.info("Kobo status %s for form %s", resp.status_code, form_id)
        if resp.status_code >= 400:
            raise SourceFetchError(_error_message(resp, form_id), form_id, resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise SourceFetchError(f"Invalid JSON from Kobo for form {form_id}", form_id) from exc
        if not isinstance(data, dict):
            raise SourceFetchError(f"Unexpected payload for form {form_id}", form_id)
        return data

    async def fetch(self, form_id: str) -> KoboPage:
        """Fetch submissions for *form_id* (every page when ``follow_pages``)."""
        if self.follow_pages:
            return await self.fetch_all(form_id)
        return await self._fetch_page(form_id)

    async def _fetch_page(self, form_id: str, url: str | None = None) -> KoboPage:
        if not form_id:
            raise ValueError("Missing formId parameter")
        data = await self._get_json(url or self.data_url(form_id), form_id)
        results = data.get("results") or []
        try:
            page = KoboPage(
                results=results,
                count=data.get("count") or len(results),
                next=data.get("next"),
                previous=data.get("previous"),
            )
        except (ValidationError, TypeError) as exc:
            raise SourceFetchError(f"Unexpected payload for form {form_id}", form_id) from exc
        log.info("Found %d records for form %s", len(page.results), form_id)
        return page

    async def fetch_all(self, form_id: str) -> KoboPage:
        """Fetch every page of *form_id* by following ``next`` links."""
        page = await self._fetch_page(form_id)
        results = list(page.results)
        next_url = page.next
        pages = 1
        while next_url and pages < _MAX_PAGES:
            extra = await self._fetch_page(form_id, next_url)
            results.extend(extra.results)
            next_url = extra.next
            pages += 1
        if next_url:
            log.warning("Stopped paging form %s after %d pages", form_id, pages)
        return KoboPage(results=results, count=page.count or len(results))
