"""End-to-end tests of the REST layer."""
from app.core.auth import require_auth_token
from app.core.settings import config_settings
from app.main import app

API = "/api/v1/config"


def experiment_payload(key="checkout-button-color", status="RUNNING", traffic_pct=100):
    return {
        "key": key,
        "status": status,
        "traffic_pct": traffic_pct,
        "variants": [
            {"name": "blue", "weight_pct": 50, "payload": {"color": "#00f"}},
            {"name": "green", "weight_pct": 50, "payload": {"color": "#0f0"}},
        ],
    }


class TestExperimentRoutes:
    def test_create_and_get(self, client):
        response = client.post(f"{API}/experiments", json=experiment_payload())
        assert response.status_code == 201
        assert [v["name"] for v in response.json()["variants"]] == ["blue", "green"]

        response = client.get(f"{API}/experiments/checkout-button-color")
        assert response.status_code == 200
        assert response.json()["status"] == "RUNNING"

    def test_get_unknown(self, client):
        assert client.get(f"{API}/experiments/ghost").status_code == 404

    def test_create_rejects_bad_weights(self, client):
        payload = experiment_payload()
        payload["variants"][0]["weight_pct"] = 10

        response = client.post(f"{API}/experiments", json=payload)

        assert response.status_code == 400
        assert "sum to 100" in response.json()["detail"]

    def test_create_rejects_duplicate_key(self, client):
        client.post(f"{API}/experiments", json=experiment_payload())
        response = client.post(f"{API}/experiments", json=experiment_payload())
        assert response.status_code == 400

    def test_create_rejects_out_of_range_traffic(self, client):
        response = client.post(f"{API}/experiments", json=experiment_payload(traffic_pct=120))
        assert response.status_code == 422

    def test_assign_is_stable(self, client):
        client.post(f"{API}/experiments", json=experiment_payload())

        first = client.post(
            f"{API}/experiments/checkout-button-color/assign", params={"user_id": "u-42"}
        )
        second = client.post(
            f"{API}/experiments/checkout-button-color/assign", params={"user_id": "u-42"}
        )

        assert first.status_code == 200
        assert first.json() == second.json()
        assert first.json()["variant_name"] in {"blue", "green"}
        assert first.json()["variant_payload"] in ({"color": "#00f"}, {"color": "#0f0"})

    def test_assign_unknown_experiment(self, client):
        response = client.post(f"{API}/experiments/ghost/assign", params={"user_id": "u-1"})
        assert response.status_code == 404

    def test_assign_not_running(self, client):
        client.post(f"{API}/experiments", json=experiment_payload(status="DRAFT"))

        response = client.post(
            f"{API}/experiments/checkout-button-color/assign", params={"user_id": "u-1"}
        )

        assert response.status_code == 409
        assert "not running" in response.json()["detail"]

    def test_assign_excluded_by_traffic(self, client):
        client.post(f"{API}/experiments", json=experiment_payload(traffic_pct=0))

        response = client.post(
            f"{API}/experiments/checkout-button-color/assign", params={"user_id": "u-1"}
        )

        assert response.status_code == 204
        assert response.content == b""

    def test_user_assignments(self, client):
        client.post(f"{API}/experiments", json=experiment_payload(key="exp-1"))
        client.post(f"{API}/experiments", json=experiment_payload(key="exp-2"))
        client.post(f"{API}/experiments/exp-1/assign", params={"user_id": "u-1"})
        client.post(f"{API}/experiments/exp-2/assign", params={"user_id": "u-1"})

        response = client.get(f"{API}/experiments/assignments", params={"user_id": "u-1"})

        assert response.status_code == 200
        assert sorted(a["experiment_key"] for a in response.json()) == ["exp-1", "exp-2"]

    def test_active_experiments(self, client):
        client.post(f"{API}/experiments", json=experiment_payload(key="running"))
        client.post(f"{API}/experiments", json=experiment_payload(key="draft", status="DRAFT"))

        response = client.get(f"{API}/experiments/active")

        assert [e["key"] for e in response.json()] == ["running"]

    def test_update_and_delete(self, client):
        client.post(f"{API}/experiments", json=experiment_payload(status="DRAFT"))

        response = client.put(
            f"{API}/experiments/checkout-button-color", json={"status": "RUNNING"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "RUNNING"

        assert client.delete(f"{API}/experiments/checkout-button-color").status_code == 204
        assert client.delete(f"{API}/experiments/checkout-button-color").status_code == 404


class TestFlagRoutes:
    def test_flag_lifecycle(self, client):
        response = client.post(
            f"{API}/flags",
            json={"key": "new-search", "enabled": True, "payload": {"rollout_percentage": 0}},
        )
        assert response.status_code == 201

        response = client.get(f"{API}/flags/new-search/evaluate", params={"user_id": "u-1"})
        assert response.json() == {"flag_key": "new-search", "user_id": "u-1", "enabled": False}

        client.put(f"{API}/flags/new-search", json={"payload": {"target_users": ["u-1"]}})
        response = client.get(f"{API}/flags/new-search/evaluate", params={"user_id": "u-1"})
        assert response.json()["enabled"] is True

        response = client.post(f"{API}/flags/new-search/toggle")
        assert response.json()["enabled"] is False

        assert client.get(f"{API}/flags/enabled").json() == []
        assert [f["key"] for f in client.get(f"{API}/flags").json()] == ["new-search"]

        assert client.delete(f"{API}/flags/new-search").status_code == 204
        assert client.get(f"{API}/flags/new-search").status_code == 404

    def test_invalid_flag_payload(self, client):
        response = client.post(
            f"{API}/flags",
            json={"key": "broken", "enabled": True, "payload": {"rollout_percentage": 300}},
        )
        assert response.status_code == 400

    def test_evaluate_unknown_flag(self, client):
        response = client.get(f"{API}/flags/ghost/evaluate", params={"user_id": "u-1"})
        assert response.status_code == 200
        assert response.json()["enabled"] is False

    def test_batch_evaluation(self, client):
        client.post(f"{API}/flags", json={"key": "on", "enabled": True})
        client.post(f"{API}/flags", json={"key": "off", "enabled": False})

        response = client.post(
            f"{API}/flags/evaluate",
            json={"user_id": "u-1", "flag_keys": ["on", "off", "ghost"], "context": {"country": "BD"}},
        )

        assert response.status_code == 200
        assert response.json() == {"on": True, "off": False, "ghost": False}

    def test_toggle_unknown_flag(self, client):
        assert client.post(f"{API}/flags/ghost/toggle").status_code == 404


class TestAuth:
    def test_missing_token_rejected(self, client):
        app.dependency_overrides.pop(require_auth_token)
        assert client.get(f"{API}/flags").status_code == 401

    def test_unknown_token_rejected(self, client, monkeypatch):
        app.dependency_overrides.pop(require_auth_token)
        monkeypatch.setattr(config_settings, "TOKENS", ["secret"])

        response = client.get(f"{API}/flags", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 401

    def test_configured_token_accepted(self, client, monkeypatch):
        app.dependency_overrides.pop(require_auth_token)
        monkeypatch.setattr(config_settings, "TOKENS", ["secret"])

        response = client.get(f"{API}/flags", headers={"Authorization": "Bearer secret"})

        assert response.status_code == 200
