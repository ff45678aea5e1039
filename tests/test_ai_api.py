"""
FlowVision
Tests — AI queue HTTP API.

Covers:
    - POST /api/v1/ai/async (202, validation errors)
    - POST /api/v1/ai/cancel/<id>
    - GET  /api/v1/ai/progress/<id>, /result/<id>, /queue-status
    - GET  /api/v1/ai/operations (admin audit trail)
    - Auth: missing / invalid keys
    - Tenant isolation of queue endpoints
"""

BASE = "/api/v1/ai"


def _queue(client, body, headers=None):
    return client.post(f"{BASE}/async", json=body, headers=headers or {})


def _analysis_body(**overrides):
    body = {
        "type": "issue_analysis",
        "input": {"description": "Purchase orders wait days for a second approval"},
        "priority": "high",
    }
    body.update(overrides)
    return body


class TestQueueEndpoint:

    def test_queue_returns_202(self, client):
        res = _queue(client, _analysis_body())
        assert res.status_code == 202
        data = res.get_json()
        assert data["operationId"].startswith("op_")
        assert data["status"] == "queued"
        assert data["message"] == "Operation queued for processing"
        assert data["estimatedDuration"] == 4000
        assert data["type"] == "issue_analysis"
        assert data["cached"] is False

    def test_missing_type(self, client):
        res = _queue(client, {"input": "x"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_missing_input(self, client):
        res = _queue(client, {"type": "insights", "input": ""})
        assert res.status_code == 400
        assert res.get_json()["error"] == "input is required"

    def test_unknown_type_is_422(self, client):
        res = _queue(client, _analysis_body(type="poetry"))
        assert res.status_code == 422
        assert "type" in res.get_json()["details"]

    def test_unknown_priority_is_422(self, client):
        res = _queue(client, _analysis_body(priority="urgent"))
        assert res.status_code == 422

    def test_context_must_be_object(self, client):
        res = _queue(client, _analysis_body(context=["not", "an", "object"]))
        assert res.status_code == 422

    def test_requester_and_tenant_recorded(self, client, ai_queue):
        res = _queue(client, _analysis_body(), headers={"X-Tenant-ID": "acme"})
        op = ai_queue.get_operation(res.get_json()["operationId"])
        assert op.tenant_id == "acme"
        assert op.requested_by == "dev@flowvision.local"

    def test_non_json_body_rejected(self, client):
        res = client.post(f"{BASE}/async", data="type=insights", content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415


class TestCancelEndpoint:

    def test_cancel_queued(self, client, ai_queue):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        res = client.post(f"{BASE}/cancel/{op_id}")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "cancelled"
        assert data["message"] == "Operation cancelled successfully"
        assert data["cancelledAt"]
        assert ai_queue.get_progress(op_id)["status"] == "cancelled"

    def test_cancel_twice_is_404(self, client):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        client.post(f"{BASE}/cancel/{op_id}")
        res = client.post(f"{BASE}/cancel/{op_id}")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Operation not found or already completed"

    def test_cancel_unknown(self, client):
        assert client.post(f"{BASE}/cancel/op_missing").status_code == 404


class TestProgressAndResult:

    def test_progress_of_queued_operation(self, client):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        res = client.get(f"{BASE}/progress/{op_id}")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "queued"
        assert data["progress"] == 0
        assert data["estimated_time_remaining"] == 4000

    def test_result_after_processing(self, client, ai_queue):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        ai_queue.process_next()

        data = client.get(f"{BASE}/result/{op_id}").get_json()
        assert data["status"] == "completed"
        assert data["result"]["category"] == "Process"
        assert data["error"] is None

        progress = client.get(f"{BASE}/progress/{op_id}").get_json()
        assert progress["progress"] == 100

    def test_repeat_request_is_served_from_cache(self, client, ai_queue):
        _queue(client, _analysis_body())
        ai_queue.process_next()
        data = _queue(client, _analysis_body()).get_json()
        assert data["status"] == "completed"
        assert data["cached"] is True

    def test_result_of_queued_operation_has_no_payload(self, client):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        data = client.get(f"{BASE}/result/{op_id}").get_json()
        assert data["status"] == "queued"
        assert data["result"] is None

    def test_unknown_ids_are_404(self, client):
        assert client.get(f"{BASE}/progress/op_missing").status_code == 404
        res = client.get(f"{BASE}/result/op_missing")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Operation not found"


class TestQueueStatus:

    def test_status_counts(self, client):
        _queue(client, _analysis_body())
        _queue(client, {"type": "insights", "input": "Q3 ticket volume"})
        data = client.get(f"{BASE}/queue-status").get_json()
        assert data["queue_length"] == 2
        assert data["running"] == 0
        assert data["healthy"] is True
        assert data["max_workers"] == 2
        assert "timestamp" in data


class TestOperationsAudit:

    def test_admin_lists_tenant_operations(self, client, ai_queue):
        _queue(client, _analysis_body(), headers={"X-Tenant-ID": "acme"})
        _queue(client, {"type": "insights", "input": "other tenant"}, headers={"X-Tenant-ID": "globex"})
        ai_queue.process_next()

        data = client.get(f"{BASE}/operations", headers={"X-Tenant-ID": "acme"}).get_json()
        assert data["total"] == 1
        assert data["items"][0]["operation_type"] == "issue_analysis"
        assert data["items"][0]["status"] == "completed"

    def test_status_filter(self, client, ai_queue):
        op_id = _queue(client, _analysis_body()).get_json()["operationId"]
        _queue(client, {"type": "insights", "input": "numbers"})
        client.post(f"{BASE}/cancel/{op_id}")
        data = client.get(f"{BASE}/operations?status=cancelled").get_json()
        assert [i["operation_id"] for i in data["items"]] == [op_id]

    def test_long_input_is_listed_as_truncated(self, client):
        op_id = _queue(client, {"type": "insights", "input": "x" * 5000}).get_json()["operationId"]
        res = client.get(f"{BASE}/operations")
        assert res.status_code == 200
        item = res.get_json()["items"][0]
        assert item["operation_id"] == op_id
        assert item["input"]["truncated"] is True
        assert item["input"]["size"] == 5002
        assert item["input"]["preview"].startswith('"xxx')


class TestAuth:

    def test_missing_key_is_401(self, client, api_keys):
        res = _queue(client, _analysis_body())
        assert res.status_code == 401

    def test_invalid_key_is_401(self, client, api_keys):
        res = _queue(client, _analysis_body(), headers={"X-API-Key": "nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid API key"

    def test_viewer_can_queue(self, client, api_keys, ai_queue):
        res = _queue(client, _analysis_body(), headers=api_keys["viewer"])
        assert res.status_code == 202
        op = ai_queue.get_operation(res.get_json()["operationId"])
        assert op.requested_by == "viewer@acme.io"

    def test_operations_list_is_admin_only(self, client, api_keys):
        assert client.get(f"{BASE}/operations", headers=api_keys["editor"]).status_code == 403
        assert client.get(f"{BASE}/operations", headers=api_keys["admin"]).status_code == 200


class TestTenantIsolation:

    def _acme_op(self, client, api_keys):
        return _queue(client, _analysis_body(), headers=api_keys["editor"]).get_json()["operationId"]

    def test_other_tenant_cannot_cancel(self, client, api_keys, ai_queue):
        op_id = self._acme_op(client, api_keys)
        res = client.post(f"{BASE}/cancel/{op_id}", headers=api_keys["globex_admin"])
        assert res.status_code == 404
        assert ai_queue.get_operation(op_id).status == "queued"

    def test_other_tenant_cannot_read(self, client, api_keys):
        op_id = self._acme_op(client, api_keys)
        assert client.get(f"{BASE}/progress/{op_id}", headers=api_keys["globex_admin"]).status_code == 404
        assert client.get(f"{BASE}/result/{op_id}", headers=api_keys["globex_admin"]).status_code == 404

    def test_same_tenant_can_cancel(self, client, api_keys):
        op_id = self._acme_op(client, api_keys)
        assert client.post(f"{BASE}/cancel/{op_id}", headers=api_keys["viewer"]).status_code == 200

    def test_header_cannot_switch_tenant(self, client, api_keys):
        op_id = _queue(client, _analysis_body(), headers=api_keys["globex_admin"]).get_json()["operationId"]
        res = client.post(f"{BASE}/cancel/{op_id}", headers={**api_keys["viewer"], "X-Tenant-ID": "globex"})
        assert res.status_code == 403
