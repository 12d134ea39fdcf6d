from __future__ import annotations

import asyncio

import pytest

from coordinator.config import DEFAULT_CONFIG
from coordinator.errors import SourceFetchError
from coordinator.models import KoboPage


class FakeProvider:
    """In-memory Form Data Provider.

    ``pages`` maps form id to a record list, or to an exception to raise.
    ``delays`` maps form id to seconds to sleep before answering.
    """

    def __init__(self, pages: dict, delays: dict[str, float] | None = None):
        self.pages = pages
        self.delays = delays or {}
        self.calls: list[str] = []

    async def fetch(self, form_id: str) -> KoboPage:
        self.calls.append(form_id)
        if form_id in self.delays:
            await asyncio.sleep(self.delays[form_id])
        value = self.pages.get(form_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise SourceFetchError(f"Form not found. Check form ID: {form_id}", form_id, 404)
        return KoboPage(results=value, count=len(value))


@pytest.fixture()
def fake_provider():
    return FakeProvider


@pytest.fixture()
def forms():
    """Form ids from the default configuration, keyed by short name."""
    f = DEFAULT_CONFIG.forms
    return {
        "main": f[("main", None)],
        "leadership": f[("leadership", None)],
        "technical": f[("technical", None)],
        "project_manager": f[("project_manager", None)],
        "expert_advanced": f[("domain_expert", "advanced")],
        "expert_early": f[("domain_expert", "early")],
        "ut3_advanced": f[("usertype3", "advanced")],
        "ut4_advanced": f[("usertype4", "advanced")],
        "ut3_early": f[("usertype3", "early")],
        "ut4_early": f[("usertype4", "early")],
    }
