"""
Tests for the SLA API routes.

The store and sweeper are patched to the in-memory mock (see conftest
client fixture), except where the unconfigured store path is exercised; escalation egress goes through httpx.MockTransport.
"""
import pytest
from fastapi.testclient import TestClient

from app.core.database import SupabaseClient
from app.main import app


class TestRunSweep:

    @pytest.mark.integration
    def test_run_sweep_returns_counts(self, client, fixed_clock, egress, create_step, create_record):
        create_step()
        create_record("PO-1")
        create_record("PO-2", start_time="2026-01-15T05:00:00+00:00")
        fixed_clock.advance(hours=5)

        response = client.post("/api/sla/admin/run-sweep")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["waiting_count"] == 1
        assert data["violated_count"] == 1
        assert "1 escalated" in data["message"]
        assert len(egress.requests) == 1

    @pytest.mark.integration
    def test_run_sweep_store_down_is_structured(self, client, fresh_mock_client):
        fresh_mock_client.failing_tables.add("records")

        response = client.post("/api/sla/admin/run-sweep")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"]

    @pytest.mark.integration
    def test_run_sweep_without_configured_store(self, monkeypatch):
        monkeypatch.setattr("app.core.database.settings.supabase_url", None)
        monkeypatch.setattr(SupabaseClient, "_instance", None)
        monkeypatch.setattr(SupabaseClient, "_client", None)

        with TestClient(app) as unpatched_client:
            response = unpatched_client.post("/api/sla/admin/run-sweep")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert "not configured" in data["error"]


class TestSummary:

    @pytest.mark.unit
    def test_summary_counts(self, client, create_record):
        create_record("PO-1")
        create_record("PO-2", status="violated", violation_count=1)
        create_record("PO-3", status="violated", violation_count=2)
        create_record("PO-4", status="completed")

        response = client.get("/api/sla/summary")

        assert response.status_code == 200
        assert response.json() == {"waiting_count": 1, "violated_count": 2, "active_count": 3}

    @pytest.mark.edge
    def test_store_failure_maps_to_database_error(self, client, fresh_mock_client):
        fresh_mock_client.failing_tables.add("records")

        response = client.get("/api/sla/summary")

        assert response.status_code == 500
        assert response.json()["error"] == "DatabaseError"


class TestRecordStatus:

    @pytest.fixture
    def live_clock(self, fixed_clock, monkeypatch):
        monkeypatch.setattr("app.api.routes.sla_routes.system_clock", fixed_clock)
        return fixed_clock

    @pytest.mark.unit
    def test_unknown_record_is_404(self, client):
        response = client.get("/api/sla/records/PO-404")
        assert response.status_code == 404

    @pytest.mark.integration
    def test_live_evaluation_is_not_persisted(self, client, live_clock, mock_data, egress, create_step, create_record):
        create_step()
        create_record()
        live_clock.advance(hours=5)

        response = client.get("/api/sla/records/PO-1")

        assert response.status_code == 200
        data = response.json()
        assert data["record"]["record_id"] == "PO-1"
        assert data["step"]["code"] == "manager_review"
        assert data["step"]["max_violations"] == 3
        live = data["live"]
        assert live["evaluated"] is True
        assert live["elapsed_hours"] == 5.0
        assert live["violation_count"] == 1
        assert live["status"] == "violated"
        assert live["remaining_hours"] == -1.0
        assert live["pending_escalation"] is True

        assert mock_data["records"][0]["violation_count"] == 0
        assert mock_data["sla_action_logs"] == []
        assert egress.requests == []

    @pytest.mark.edge
    def test_completed_record_reports_skip(self, client, live_clock, create_step, create_record):
        create_step()
        create_record(status="completed")

        live = client.get("/api/sla/records/PO-1").json()["live"]

        assert live["evaluated"] is False
        assert live["skipped_reason"] == "completed"
        assert live["pending_escalation"] is False

    @pytest.mark.edge
    def test_missing_step_is_404_with_error_body(self, client, live_clock, create_record):
        create_record(activity_id="404", step_code="gone")

        response = client.get("/api/sla/records/PO-1")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "StepNotFoundError"
        assert body["details"]["record_id"] == "PO-1"

    @pytest.mark.edge
    def test_malformed_record_is_422(self, client, live_clock, create_step, create_record):
        create_step()
        create_record(start_time="not-a-date")

        response = client.get("/api/sla/records/PO-1")

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"


class TestDueAtPreview:

    @pytest.mark.unit
    def test_one_hour_within_business_day(self, client):
        response = client.post("/api/sla/due-at", json={
            "start_time": "2026-01-15T08:40:18Z",
            "sla_hours": 1,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["due_at"] == "2026-01-15T09:40:18+00:00"
        assert data["due_at_business_time"] == "2026-01-15T16:40:18+07:00"
        assert data["required_business_hours"] == 1.0

    @pytest.mark.unit
    def test_violation_count_extends_required_time(self, client):
        response = client.post("/api/sla/due-at", json={
            "start_time": "2026-01-16T09:00:00+00:00",
            "sla_hours": 2,
            "violation_count": 1,
        })

        data = response.json()
        assert data["required_business_hours"] == 4.0
        # 1h Friday + 3h Saturday -> Saturday 11:00 business time
        assert data["due_at_business_time"] == "2026-01-17T11:00:00+07:00"

    @pytest.mark.edge
    def test_negative_sla_rejected(self, client):
        response = client.post("/api/sla/due-at", json={
            "start_time": "2026-01-15T08:40:18Z",
            "sla_hours": -1,
        })
        assert response.status_code == 422


class TestActionLogs:

    @pytest.fixture
    def logged(self, mock_data):
        for i, action_type in enumerate(["notify", "auto_approve", "notify"]):
            mock_data["sla_action_logs"].append({
                "id": f"log-{i}",
                "record_id": f"PO-{i}",
                "action_type": action_type,
                "violation_count": 1,
                "is_success": True,
                "message": f"{action_type} sent: HTTP 200",
                "created_at": f"2026-01-15T0{i}:00:00+00:00",
            })

    @pytest.mark.unit
    def test_paged_newest_first(self, client, logged):
        response = client.get("/api/sla/action-logs", params={"page": 1, "page_size": 2})

        data = response.json()
        assert data["total"] == 3
        assert data["page"] == 1
        assert data["page_size"] == 2
        assert [item["id"] for item in data["items"]] == ["log-2", "log-1"]

    @pytest.mark.unit
    def test_filter_by_action_type(self, client, logged):
        data = client.get("/api/sla/action-logs", params={"action_type": "auto_approve"}).json()

        assert data["total"] == 1
        assert data["items"][0]["id"] == "log-1"

    @pytest.mark.edge
    def test_unknown_action_type_rejected(self, client, logged):
        response = client.get("/api/sla/action-logs", params={"action_type": "escalate"})
        assert response.status_code == 422

    @pytest.mark.edge
    def test_page_size_limit(self, client):
        response = client.get("/api/sla/action-logs", params={"page_size": 101})
        assert response.status_code == 422


class TestSchedulerRoutes:

    @pytest.mark.unit
    def test_scheduler_health(self, client):
        response = client.get("/api/sla/admin/scheduler")

        assert response.status_code == 200
        data = response.json()
        assert "is_running" in data
        assert "interval_minutes" in data

    @pytest.mark.unit
    def test_resume_without_running_scheduler_is_conflict(self, client):
        response = client.post("/api/sla/admin/scheduler/resume")
        assert response.status_code == 409


class TestSystemEndpoints:

    @pytest.mark.unit
    def test_health_with_scheduler_disabled(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["scheduler"]["is_running"] is False

    @pytest.mark.unit
    def test_root(self, client):
        data = client.get("/").json()
        assert data["health"] == "/health"
