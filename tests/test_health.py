"""
FlowVision
Tests — Health endpoints, request middleware and app factory wiring.
"""

from flowvision.ai.operation_queue import AIOperation


class TestHealth:

    def test_summary(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ok"
        assert data["app"] == "FlowVision"
        assert data["queue_healthy"] is True

    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live_details(self, client, seeded):
        data = client.get("/api/v1/health/live").get_json()
        checks = data["checks"]
        assert data["status"] == "healthy"
        assert checks["database"]["status"] == "ok"
        assert checks["system_config"]["configurations"] == seeded["total"]
        assert checks["ai_provider"]["providers"] == ["local"]
        assert checks["ai_queue"]["running_workers"] is False
        assert checks["app"]["testing"] is True

    def test_backlog_is_reported_but_not_fatal(self, client, ai_queue):
        for i in range(10):
            ai_queue.queue_operation(AIOperation(type="insights", input=f"batch {i}"))
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["queue_healthy"] is False

    def test_health_needs_no_key(self, client, api_keys):
        assert client.get("/api/v1/health").status_code == 200


class TestMiddleware:

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_method_not_allowed(self, client):
        assert client.delete("/api/v1/health/ready").status_code == 405


class TestFactory:

    def test_extensions_registered(self, app):
        for name in ("system_config", "ai_gateway", "ai_queue"):
            assert name in app.extensions

    def test_queue_not_started_in_tests(self, ai_queue):
        assert ai_queue.is_running is False

    def test_seed_cli(self, app, system_config):
        result = app.test_cli_runner().invoke(args=["seed-system-config"])
        assert result.exit_code == 0
        assert system_config.get_config("scoring", "issue_priority_thresholds")["critical"] == 80
