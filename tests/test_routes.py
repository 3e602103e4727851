from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from inndesign.errors import ProviderError
from inndesign.main import app
from inndesign.providers import PROVIDER_CAPABILITIES


def _payload(**overrides) -> dict:
    payload = {
        "user_id": "user-1",
        "design_id": "design-1",
        "preferences": {
            "room_type": "living_room",
            "style_preference": "scandinavian",
            "size": "large",
            "budget_level": "mid_range",
            "material_preferences": ["oak"],
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client(orchestrator):
    app.state.orchestrator = orchestrator
    yield TestClient(app)
    del app.state.orchestrator


# --- POST /api/designs/generate ---

class TestGenerateDesign:
    def test_success(self, client):
        resp = client.post("/api/designs/generate", json=_payload(num_variations=2))
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert len(data["images"]) == 2
        assert data["provider"] == "replicate"
        assert data["cost_usd"] == pytest.approx(0.2)
        assert data["parameters"]["width"] == 1792
        assert data["metadata"]["state"] == "succeeded"

    def test_unknown_provider(self, client):
        resp = client.post("/api/designs/generate", json=_payload(provider="midjourney"))
        assert resp.status_code == 400
        assert "Unsupported provider" in resp.json()["detail"]

    def test_invalid_budget(self, client):
        payload = _payload()
        payload["preferences"]["budget_level"] = "unlimited"
        resp = client.post("/api/designs/generate", json=payload)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PROMPT"

    def test_too_many_variations(self, client):
        resp = client.post("/api/designs/generate", json=_payload(num_variations=9))
        assert resp.status_code == 400
        assert resp.json()["retryable"] is False

    def test_cost_limit(self, client, orchestrator):
        orchestrator.set_daily_limit(0.05)
        resp = client.post("/api/designs/generate", json=_payload())
        assert resp.status_code == 429
        body = resp.json()
        assert body == {
            "success": False,
            "error": body["error"],
            "code": "COST_LIMIT_EXCEEDED",
            "retryable": False,
        }

    def test_exhausted(self, client, primary, fallback):
        primary.failures = [ProviderError("replicate", "boom", status_code=500)] * 3
        fallback.failures = [ProviderError("openai", "boom", status_code=500)] * 2
        resp = client.post("/api/designs/generate", json=_payload())
        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "GENERATION_FAILED"
        assert "boom" not in body["error"]

    def test_no_provider_available(self, client, primary, fallback):
        primary.available = False
        fallback.available = False
        resp = client.post("/api/designs/generate", json=_payload())
        assert resp.status_code == 503
        assert resp.json()["code"] == "PROVIDER_UNAVAILABLE"

    def test_missing_ids(self, client):
        resp = client.post("/api/designs/generate", json=_payload(user_id=" "))
        assert resp.status_code == 400


# --- Providers ---

class TestProviders:
    def test_list(self, client):
        with patch.dict("os.environ", {"REPLICATE_API_TOKEN": "r8", "OPENAI_API_KEY": ""}):
            resp = client.get("/api/providers")
        assert resp.status_code == 200
        data = resp.json()
        assert data["default"] == "replicate"
        assert data["fallback"] == "openai"
        assert data["providers"]["replicate"]["hasKey"] is True
        assert data["providers"]["openai"]["hasKey"] is False
        assert data["providers"]["openai"]["configured"] is True

    def test_capabilities_have_required_keys(self):
        required = {"label", "models", "requiresKey"}
        for provider_id, caps in PROVIDER_CAPABILITIES.items():
            assert required.issubset(caps.keys()), f"{provider_id} missing keys"

    def test_models(self, client):
        resp = client.get("/api/providers/openai/models")
        assert resp.status_code == 200
        assert resp.json() == {"provider": "openai", "models": ["fake-v1", "fake-v2"]}

    def test_models_unknown_provider(self, client):
        assert client.get("/api/providers/bogus/models").status_code == 400


# --- Costs ---

class TestCosts:
    def test_estimate(self, client):
        resp = client.post("/api/costs/estimate", json=_payload(num_variations=4))
        assert resp.status_code == 200
        data = resp.json()
        assert data["estimated_cost_usd"] == pytest.approx(0.4)
        assert data["num_variations"] == 4
        assert data["provider"] == "replicate"

    def test_estimate_rejects_bad_count(self, client):
        assert client.post("/api/costs/estimate", json=_payload(num_variations=0)).status_code == 400

    def test_summary_after_generation(self, client):
        client.post("/api/designs/generate", json=_payload(num_variations=5))
        resp = client.get("/api/costs/user-1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["today_cost"] == pytest.approx(0.5)
        assert data["generation_count"] == 1
        assert data["daily_usage_percent"] == pytest.approx(5.0)
        assert data["monthly_usage_percent"] == pytest.approx(0.25)

    def test_check(self, client):
        resp = client.get("/api/costs/user-1/check", params={"cost": 0.5})
        assert resp.status_code == 200
        assert resp.json()["allowed"] is True

        resp = client.get("/api/costs/user-1/check", params={"cost": 50})
        assert resp.json()["allowed"] is False
        assert resp.json()["limit_kind"] == "daily"

    def test_check_negative(self, client):
        assert client.get("/api/costs/user-1/check", params={"cost": -1}).status_code == 400

    def test_reset(self, client):
        client.post("/api/designs/generate", json=_payload())
        resp = client.delete("/api/costs/user-1")
        assert resp.status_code == 200
        assert client.get("/api/costs/user-1").json()["total_cost"] == 0.0

    def test_limits(self, client):
        resp = client.post("/api/costs/limits", json={"daily_limit_usd": 3.0})
        assert resp.status_code == 200
        assert resp.json() == {"daily_limit_usd": 3.0, "monthly_limit_usd": 200.0}
        assert client.get("/api/costs/user-1").json()["daily_limit"] == 3.0

    def test_negative_limit(self, client):
        assert client.post("/api/costs/limits", json={"monthly_limit_usd": -5}).status_code == 400

    def test_admin_reports(self, client):
        client.post("/api/designs/generate", json=_payload(user_id="a", num_variations=1))
        client.post("/api/designs/generate", json=_payload(user_id="b", num_variations=3))

        top = client.get("/api/costs/admin/top-users", params={"limit": 5}).json()
        assert [row["user_id"] for row in top] == ["b", "a"]

        trend = client.get("/api/costs/admin/trend").json()
        assert len(trend) == 1
        assert trend[0]["generation_count"] == 2
