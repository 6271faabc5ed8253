"""
Taxis - API Tests
=================
HTTP-level tests for the FastAPI backend.
"""

import inspect
import os
import sys

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend"))

from main import app, get_store
from scenario_store import ScenarioStore


@pytest.fixture
def client():
    store = ScenarioStore()
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestEngineEndpoints:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["supported_tax_years"] == [2024, 2025]

    def test_calculate(self, client):
        response = client.post("/api/calculate", json={
            "tax_year": 2024,
            "filing_status": "single",
            "ordinary_income": 60000,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["taxable_income"] == 45400
        assert body["total_tax"] == pytest.approx(5216.00)

    def test_calculate_detailed(self, client):
        response = client.post("/api/calculate/detailed", json={
            "filing_status": "single",
            "ordinary_income": 2_000_000,
        })
        assert response.status_code == 200
        brackets = response.json()["ordinary_tax"]["brackets"]
        assert len(brackets) == 7
        assert brackets[0]["upper_bound"] == 11600
        assert brackets[-1]["upper_bound"] is None

    def test_unsupported_year(self, client):
        response = client.post("/api/calculate", json={"tax_year": 1999})
        assert response.status_code == 400

    def test_negative_input(self, client):
        response = client.post("/api/calculate", json={"ordinary_income": -1})
        assert response.status_code == 422


class TestScenarioEndpoints:

    def test_scenario_lifecycle(self, client):
        created = client.post("/api/scenarios", json={
            "name": "Baseline",
            "inputs": {"ordinary_income": 60000},
        })
        assert created.status_code == 201
        scenario_id = created.json()["scenario_id"]
        assert created.json()["results"]["total_tax"] == pytest.approx(5216.00)

        patched = client.patch(f"/api/scenarios/{scenario_id}", json={
            "inputs": {"long_term_capital_gains": 10000},
        })
        assert patched.status_code == 200
        assert patched.json()["revision"] == 1
        assert patched.json()["results"]["capital_gains_tax"] == pytest.approx(8375 * 0.15)

        duplicate = client.post(f"/api/scenarios/{scenario_id}/duplicate")
        assert duplicate.status_code == 201
        assert duplicate.json()["name"] == "Baseline (Copy)"

        listing = client.get("/api/scenarios")
        assert len(listing.json()) == 2

        comparison = client.get(f"/api/scenarios/{scenario_id}/compare/{duplicate.json()['scenario_id']}")
        assert comparison.status_code == 200
        assert comparison.json()["tax_difference"] == 0

        deleted = client.delete(f"/api/scenarios/{scenario_id}")
        assert deleted.status_code == 200
        assert client.get(f"/api/scenarios/{scenario_id}").status_code == 404

    def test_invalid_senior_count(self, client):
        response = client.post("/api/scenarios", json={"inputs": {"seniors_65_plus": 2}})
        assert response.status_code == 422

    def test_unknown_scenario(self, client):
        assert client.patch("/api/scenarios/missing", json={"name": "x"}).status_code == 404
        assert client.post("/api/scenarios/missing/duplicate").status_code == 404
        assert client.delete("/api/scenarios/missing").status_code == 404

    def test_scenario_handlers_run_in_threadpool(self):
        """Store calls take a lock and write files, so they stay off the event loop."""
        routes = [
            route for route in app.routes
            if isinstance(route, APIRoute) and route.path.startswith("/api/scenarios")
        ]
        assert len(routes) == 7
        for route in routes:
            assert not inspect.iscoroutinefunction(route.endpoint), route.name


class TestReferenceEndpoints:

    def test_tax_years(self, client):
        assert client.get("/api/reference/tax-years").json() == {"tax_years": [2024, 2025]}

    def test_brackets_for_status(self, client):
        response = client.get("/api/reference/brackets/2024", params={"filing_status": "married_filing_jointly"})
        assert response.status_code == 200
        body = response.json()
        assert body["table"]["standard_deduction"] == 29200
        assert body["table"]["brackets"][-1]["upper_bound"] is None

    def test_brackets_unknown_year(self, client):
        assert client.get("/api/reference/brackets/1990").status_code == 400
        assert client.get("/api/reference/brackets/2024", params={"filing_status": "nope"}).status_code == 400
