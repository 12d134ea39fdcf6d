"""Integration tests for the FastAPI endpoints.

Uses TestClient with dependency overrides so no request leaves the process.
"""
from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from coordinator import app as app_module
from coordinator.errors import SourceFetchError
from coordinator.kobo import KoboClient
from coordinator.services import Coordinator
from coordinator.xlsform import SchemaResolver

TOOL = "MDII-test1-310725"


class _Source:
    def __init__(self):
        self.calls = 0

    def load(self, category):
        self.calls += 1
        return {"fields": [
            {"name": "Q_13110000", "label": "Tool ID", "type": "text"},
            {"name": "Q_5", "label": "Satisfied?", "type": "select_one yn",
             "choices": [{"name": "y", "label": "Yes"}, {"name": "n", "label": "No"}]},
        ]}


@pytest.fixture()
def pages(forms):
    return {
        forms["main"]: [{"ID": TOOL, "tool_maturity": "advanced"}, {"ID": "BAD", "tool_maturity": "??"}],
        forms["leadership"]: [{"group_requester/Q_13110000": TOOL}],
        forms["technical"]: [],
        forms["project_manager"]: SourceFetchError("HTTP 500: down", forms["project_manager"], 500),
        forms["expert_advanced"]: [{"group_intro/Q_13110000": TOOL, "group_individual/Q_22300000": "gesi"}],
        forms["ut3_advanced"]: [{
            "_id": 7, "meta/instanceID": "uuid:1",
            "group_toolid/Q_13110000": TOOL, "group_feedback/Q_5": "y",
        }],
        forms["ut4_advanced"]: [],
    }


@pytest.fixture()
def client(fake_provider, pages):
    source = _Source()
    resolver = SchemaResolver(source)
    coordinator = Coordinator(fake_provider(pages), resolver)

    app_module.app.dependency_overrides[app_module.get_coordinator] = lambda: coordinator
    app_module.app.dependency_overrides[app_module.get_resolver] = lambda: resolver
    app_module._search_session = None
    with TestClient(app_module.app, raise_server_exceptions=True) as c:
        yield c, source
    app_module.app.dependency_overrides.clear()
    app_module._search_session = None


class TestToolEndpoints:
    def test_maturity(self, client):
        c, _ = client
        resp = c.get(f"/api/tools/{TOOL}/maturity")
        assert resp.status_code == 200
        assert resp.json() == {"tool_id": TOOL, "maturity": "advanced"}

    def test_maturity_not_found(self, client):
        c, _ = client
        resp = c.get("/api/tools/NOPE/maturity")
        assert resp.status_code == 404
        assert "NOPE" in resp.json()["detail"]

    def test_maturity_invalid(self, client):
        c, _ = client
        resp = c.get("/api/tools/BAD/maturity")
        assert resp.status_code == 422
        assert "??" in resp.json()["detail"]

    def test_status(self, client):
        c, _ = client
        resp = c.get(f"/api/tools/{TOOL}/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["maturity"] == "advanced"

        innovators = data["status"]["innovator_statuses"]
        assert [i["role"] for i in innovators] == ["Leadership", "Technical", "Project Manager"]
        assert innovators[0]["submitted"] is True and innovators[0]["count"] == 1
        assert innovators[2]["error"] == "HTTP 500: down"

        experts = {e["category"]: e for e in data["status"]["domain_expert_statuses"]}
        assert experts["Gender Equity and Social Inclusion"]["submitted"] is True
        assert experts["Data"]["count"] == 0

        ut3 = data["surveys"][0]
        assert ut3["category"] == "usertype3" and ut3["count"] == 1
        assert [col["key"] for col in ut3["table"]["columns"]] == ["Q_13110000", "Q_5"]
        assert ut3["table"]["rows"] == [{"Q_13110000": TOOL, "Q_5": "Yes"}]


class TestSearchEndpoints:
    def test_latest_empty(self, client):
        c, _ = client
        assert c.get("/api/search/latest").status_code == 404

    def test_search_then_latest(self, client):
        c, _ = client
        resp = c.post("/api/search", json={"tool_id": f" {TOOL} "})
        assert resp.status_code == 200
        assert resp.json()["tool_id"] == TOOL
        latest = c.get("/api/search/latest")
        assert latest.status_code == 200
        assert latest.json()["maturity"] == "advanced"

    def test_blank_tool_id_rejected(self, client):
        c, _ = client
        assert c.post("/api/search", json={"tool_id": "  "}).status_code == 422

    def test_failed_search_clears_latest(self, client):
        c, _ = client
        c.post("/api/search", json={"tool_id": TOOL})
        assert c.post("/api/search", json={"tool_id": "NOPE"}).status_code == 404
        assert c.get("/api/search/latest").status_code == 404


class TestAdmin:
    def test_clear_schema_cache(self, client):
        c, source = client
        c.get(f"/api/tools/{TOOL}/status")
        c.get(f"/api/tools/{TOOL}/status")
        assert source.calls == 2  # ut3_advance + ut4_advance, cached on the second search
        assert c.post("/api/admin/schema-cache/clear").json() == {"ok": True}
        c.get(f"/api/tools/{TOOL}/status")
        assert source.calls == 4


class TestKoboProxy:
    @pytest.fixture()
    def proxy_client(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "missing" in request.url.path:
                return httpx.Response(404)
            if "garbled" in request.url.path:
                return httpx.Response(200, json={"results": {"detail": "oops"}})
            return httpx.Response(200, json={"results": [{"ID": "T"}], "count": 1})

        kobo = KoboClient(base_url="https://kobo.test/api/v2", token="t",
                          transport=httpx.MockTransport(handler))
        app_module.app.dependency_overrides[app_module.get_kobo_client] = lambda: kobo
        with TestClient(app_module.app) as c:
            yield c
        app_module.app.dependency_overrides.clear()

    def test_proxy_success(self, proxy_client):
        resp = proxy_client.get("/api/kobo", params={"formId": "abc"})
        assert resp.status_code == 200
        assert resp.json() == {"results": [{"ID": "T"}], "count": 1, "next": None, "previous": None}

    def test_proxy_missing_form_id(self, proxy_client):
        resp = proxy_client.get("/api/kobo")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing formId parameter"}

    def test_proxy_upstream_status(self, proxy_client):
        resp = proxy_client.get("/api/kobo", params={"formId": "missing"})
        assert resp.status_code == 404
        assert "Form not found" in resp.json()["error"]

    def test_proxy_malformed_payload(self, proxy_client):
        resp = proxy_client.get("/api/kobo", params={"formId": "garbled"})
        assert resp.status_code == 500
        assert "Unexpected payload" in resp.json()["error"]


class TestUpstreamPayload:
    def test_malformed_main_form_is_bad_gateway(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"results": {"detail": "oops"}})

        kobo = KoboClient(base_url="https://kobo.test/api/v2", token="t",
                          transport=httpx.MockTransport(handler))
        app_module.app.dependency_overrides[app_module.get_coordinator] = lambda: Coordinator(kobo)
        try:
            with TestClient(app_module.app) as c:
                resp = c.get(f"/api/tools/{TOOL}/maturity")
        finally:
            app_module.app.dependency_overrides.clear()
        assert resp.status_code == 502
        assert "Unexpected payload" in resp.json()["detail"]
