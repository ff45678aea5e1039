"""
FlowVision
Tests — System configuration admin API.

Covers:
    - Admin-only access (401 / 403)
    - List, create, update (422 on rule violations), deactivate
    - /validate, /history (limit cap), /seed, /cache
"""

import pytest

BASE = "/api/v1/admin/system-config"
PRIORITY = {"category": "scoring", "key": "issue_priority_thresholds"}


class TestAccess:

    def test_no_key_is_401(self, client, api_keys):
        assert client.get(BASE).status_code == 401

    @pytest.mark.parametrize("role", ["editor", "viewer"])
    def test_non_admin_is_403(self, client, api_keys, role):
        res = client.get(BASE, headers=api_keys[role])
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_non_admin_cannot_write(self, client, api_keys, seeded):
        res = client.put(BASE, json={**PRIORITY, "value": {"critical": 90, "high": 60, "medium": 40, "low": 0}},
                         headers=api_keys["editor"])
        assert res.status_code == 403

    def test_admin_allowed(self, client, api_keys, seeded):
        res = client.get(BASE, headers=api_keys["admin"])
        assert res.status_code == 200
        assert res.get_json()["total"] > 0


class TestListAndCreate:

    def test_list_by_category(self, client, seeded):
        items = client.get(f"{BASE}?category=scoring").get_json()["items"]
        assert items
        assert {i["category"] for i in items} == {"scoring"}

    def test_create(self, client):
        res = client.post(BASE, json={**PRIORITY, "value": {"critical": 80, "high": 60, "medium": 40, "low": 0}})
        assert res.status_code == 201
        data = res.get_json()
        assert data["success"] is True
        assert data["config"]["version"] == 1
        assert data["config"]["updated_by"] == "dev@flowvision.local"
        assert data["validation"]["valid"] is True

    def test_create_duplicate_is_409(self, client, seeded):
        res = client.post(BASE, json={**PRIORITY, "value": {"critical": 80, "high": 60, "medium": 40, "low": 0}})
        assert res.status_code == 409

    def test_create_missing_fields(self, client):
        res = client.post(BASE, json={"category": "scoring"})
        assert res.status_code == 400
        assert "key" in res.get_json()["error"]


class TestUpdate:

    def test_update_bumps_version(self, client, seeded):
        res = client.put(BASE, json={**PRIORITY, "value": {"critical": 85, "high": 60, "medium": 40, "low": 0}})
        assert res.status_code == 200
        data = res.get_json()
        assert data["config"]["version"] == 2
        assert data["dry_run"]["success"] is True

    def test_critical_not_above_high_is_422(self, client, seeded, system_config):
        res = client.put(BASE, json={**PRIORITY, "value": {"critical": 60, "high": 60, "medium": 40, "low": 0}})
        assert res.status_code == 422
        assert "critical" in res.get_json()["details"]
        assert system_config.get_config("scoring", "issue_priority_thresholds")["critical"] == 80

    def test_update_unknown_is_404(self, client):
        res = client.put(BASE, json={"category": "scoring", "key": "nope", "value": 1})
        assert res.status_code == 404

    def test_value_is_required(self, client, seeded):
        res = client.put(BASE, json=PRIORITY)
        assert res.status_code == 400
        assert "value" in res.get_json()["error"]

    def test_null_value_is_validated_not_missing(self, client, seeded):
        res = client.put(BASE, json={**PRIORITY, "value": None})
        assert res.status_code == 422


class TestDeactivate:

    def test_deactivate(self, client, seeded, system_config):
        system_config.get_config("scoring", "issue_priority_thresholds")
        res = client.delete(f"{BASE}?category=scoring&key=issue_priority_thresholds")
        assert res.status_code == 200
        assert res.get_json()["config"]["is_active"] is False
        assert system_config.get_config("scoring", "issue_priority_thresholds", fallback=None) is None

    def test_deactivate_requires_key(self, client):
        assert client.delete(f"{BASE}?category=scoring").status_code == 400


class TestValidateEndpoint:

    def test_valid_value_runs_dry_run(self, client):
        res = client.post(f"{BASE}/validate", json={
            "category": "performance", "key": "api_response_thresholds",
            "value": {"warning": 800, "critical": 2000, "timeout": 30000, "healthCheck": 100},
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["validation"]["valid"] is True
        assert data["testResults"]["success"] is True

    def test_invalid_value_skips_dry_run(self, client, seeded, system_config):
        res = client.post(f"{BASE}/validate", json={
            **PRIORITY, "value": {"critical": 60, "high": 60, "medium": 40, "low": 0},
        })
        data = res.get_json()
        assert data["validation"]["valid"] is False
        assert data["testResults"] is None
        assert system_config.get_config("scoring", "issue_priority_thresholds")["critical"] == 80

    def test_unknown_pair_is_404(self, client):
        res = client.post(f"{BASE}/validate", json={"category": "x", "key": "y", "value": 1})
        assert res.status_code == 404


class TestHistoryEndpoint:

    def test_limit_is_capped(self, client, seeded):
        data = client.get(f"{BASE}/history?limit=1000").get_json()
        assert data["filters"]["limit"] == 100
        assert len(data["history"]) <= 100

    def test_filtered_history(self, client, seeded):
        client.put(BASE, json={**PRIORITY, "value": {"critical": 85, "high": 60, "medium": 40, "low": 0}})
        data = client.get(f"{BASE}/history?category=scoring&key=issue_priority_thresholds").get_json()
        assert [h["change_type"] for h in data["history"]] == ["update", "create"]
        assert data["history"][0]["changed_by"] == "dev@flowvision.local"


class TestSeedAndCache:

    def test_seed_is_idempotent(self, client):
        first = client.post(f"{BASE}/seed").get_json()
        second = client.post(f"{BASE}/seed").get_json()
        assert first["created"] == first["total"]
        assert second["created"] == 0

    def test_cache_stats_and_clear(self, client, seeded, system_config):
        system_config.get_config("scoring", "issue_priority_thresholds")
        assert client.get(f"{BASE}/cache").get_json()["size"] == 1
        assert client.delete(f"{BASE}/cache").status_code == 200
        assert client.get(f"{BASE}/cache").get_json()["size"] == 0
