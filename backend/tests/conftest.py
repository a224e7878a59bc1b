"""
Pytest fixtures and configuration for SLA engine tests.

Provides:
- Mock Supabase client for isolated testing
- Store / sweeper wiring over the mock client
- Escalation egress capture via httpx.MockTransport
- Record, step and workflow factories
- Test client with the store patched in
"""
import pytest
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import patch
from uuid import uuid4

import httpx
from fastapi.testclient import TestClient

from app.core.clock import FixedClock
from app.core.database import SlaStore
from app.main import app
from app.services.action_log import ActionLogRecorder
from app.services.business_calendar import BusinessCalendar
from app.services.escalation import EscalationDispatcher
from app.services.sweeper import Sweeper
from app.services.violations import ViolationEvaluator


# Thursday 2026-01-15 08:00 in the business zone (01:00 UTC)
THURSDAY_MORNING = datetime(2026, 1, 15, 1, 0, tzinfo=timezone.utc)

NOTIFY_URL = "https://erp.example.com/api/sla/notify"
APPROVE_URL = "https://erp.example.com/api/sla/approve"


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


class MockSupabaseTable:
    """Mock Supabase table operations (the subset the store uses)."""

    def __init__(self, table_name: str, mock_data: Dict[str, list], failing_tables: set):
        self.table_name = table_name
        self.mock_data = mock_data
        self.failing_tables = failing_tables
        self._filters = []
        self._order_by = None
        self._order_desc = False
        self._limit = None
        self._range_start = 0
        self._range_end = None
        self._or_filter = None
        self._count_mode = None

    def select(self, fields: str = "*", count: str = None):
        self._count_mode = count
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def or_(self, filter_str: str):
        self._or_filter = filter_str
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range_start = start
        self._range_end = end
        return self

    def insert(self, data: dict):
        """Mock insert - returns self for chaining like the real builder."""
        self._insert_data = data
        return self

    def update(self, data: dict):
        """Mock update operation - returns self for chaining."""
        self._update_data = data
        return self

    def _apply_filters(self, results: list) -> list:
        for op, column, value in self._filters:
            if op == "eq":
                results = [r for r in results if r.get(column) == value]
            elif op == "neq":
                results = [r for r in results if r.get(column) != value]
            elif op == "in":
                results = [r for r in results if r.get(column) in value]

        if self._or_filter:
            # "col.ilike.%term%,col2.ilike.%term%"
            clauses = []
            for clause in self._or_filter.split(","):
                column, _, pattern = clause.split(".", 2)
                clauses.append((column, pattern.strip("%").lower()))
            results = [
                r for r in results
                if any(term in str(r.get(column) or "").lower() for column, term in clauses)
            ]
        return results

    def execute(self):
        """Execute the query and return results."""
        if self.table_name in self.failing_tables:
            raise ConnectionError(f"connection to {self.table_name} refused")

        if hasattr(self, "_insert_data"):
            row = dict(self._insert_data)
            row.setdefault("id", str(uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self.mock_data.setdefault(self.table_name, []).append(row)
            return MockSupabaseResponse([row])

        table_data = self.mock_data.get(self.table_name, [])
        results = self._apply_filters(list(table_data))

        if hasattr(self, "_update_data"):
            for result in results:
                result.update(self._update_data)
            return MockSupabaseResponse([dict(r) for r in results])

        if self._order_by:
            results.sort(
                key=lambda x: x.get(self._order_by) or "",
                reverse=self._order_desc
            )

        total_count = len(results)

        if self._range_end is not None:
            results = results[self._range_start:self._range_end + 1]
        elif self._limit:
            results = results[:self._limit]

        # Copies, so callers can't mutate stored rows by accident
        return MockSupabaseResponse(
            [dict(r) for r in results],
            count=total_count if self._count_mode else None
        )


class MockSupabaseClientInner:
    """Mock inner Supabase client (the actual client with table() method)."""

    def __init__(self, mock_data: Dict[str, list], failing_tables: set):
        self.mock_data = mock_data
        self.failing_tables = failing_tables

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self.mock_data, self.failing_tables)


class MockSupabaseClient:
    """
    Mock Supabase client wrapper (matches SupabaseClient class structure).
    This has a .client property that provides the actual table operations.
    """

    def __init__(self):
        self.mock_data: Dict[str, list] = {
            "records": [],
            "activities": [],
            "workflows": [],
            "sla_action_logs": [],
        }
        # Tables whose queries raise, to simulate an unavailable store
        self.failing_tables: set = set()
        self.client = MockSupabaseClientInner(self.mock_data, self.failing_tables)


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.mock_data


@pytest.fixture
def store(fresh_mock_client) -> SlaStore:
    return SlaStore(fresh_mock_client.client)


@pytest.fixture
def calendar() -> BusinessCalendar:
    """Default business calendar: UTC+7, Mon-Fri 08-17, Sat 08-12."""
    return BusinessCalendar()


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(THURSDAY_MORNING)


class EgressRecorder:
    """Collects requests sent through httpx.MockTransport and answers them."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 300})

    @property
    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


@pytest.fixture
def egress() -> EgressRecorder:
    return EgressRecorder()


@pytest.fixture
def dispatcher(egress, fixed_clock) -> EscalationDispatcher:
    return EscalationDispatcher(
        timeout=1.0,
        transport=httpx.MockTransport(egress.handler),
        clock=fixed_clock
    )


@pytest.fixture
def sweeper(store, dispatcher, fixed_clock, calendar) -> Sweeper:
    return Sweeper(
        store,
        evaluator=ViolationEvaluator(calendar=calendar),
        dispatcher=dispatcher,
        recorder=ActionLogRecorder(store),
        clock=fixed_clock,
        concurrency=2
    )


@pytest.fixture(scope="function")
def client(store, sweeper) -> Generator[TestClient, None, None]:
    """
    Create test client with the mocked store.

    Each test gets a fresh mock client with clean data.
    """
    with patch("app.api.routes.sla_routes.get_sla_store", return_value=store):
        with patch("app.services.sweeper.get_sweeper", return_value=sweeper):
            with TestClient(app) as test_client:
                yield test_client


# ==========================================
# FACTORY FIXTURES
# ==========================================

def notify_config(url: str = NOTIFY_URL) -> Dict[str, Any]:
    return {
        "url": url,
        "method": "POST",
        "headers": {"X-Record": "{recordId}"},
        "body": {"msg": "SLA breach for {recordId}, count={violationCount}"},
    }


def auto_approve_config(approval_type: str = "single", url: str = APPROVE_URL) -> Dict[str, Any]:
    return {
        "approvalType": approval_type,
        "singleApprovalConfig": {
            "url": url,
            "body": {"record": "{recordId}", "type": "{approvalType}"},
        },
        "multipleApprovalConfig": {
            "url": url + "/bulk",
            "body": {"records": ["{recordId}"], "count": "{approvalCount}"},
        },
    }


@pytest.fixture
def make_notify_config() -> Callable[..., Dict[str, Any]]:
    return notify_config


@pytest.fixture
def make_auto_approve_config() -> Callable[..., Dict[str, Any]]:
    return auto_approve_config


@pytest.fixture
def create_workflow(mock_data) -> Callable[..., Dict[str, Any]]:
    """Factory fixture to create workflow rows."""
    def _create(workflow_id: str = "10", **overrides) -> Dict[str, Any]:
        workflow = {
            "id": workflow_id,
            "workflow_name": "Purchase Order Approval",
            "model": "purchase.order",
            "notify_api_config": None,
            "auto_approve_api_config": None,
        }
        workflow.update(overrides)
        mock_data["workflows"].append(workflow)
        return workflow

    return _create


@pytest.fixture
def create_step(mock_data) -> Callable[..., Dict[str, Any]]:
    """Factory fixture to create step (activity) rows."""
    def _create(step_id: str = "100", **overrides) -> Dict[str, Any]:
        step = {
            "id": step_id,
            "workflow_id": "10",
            "code": "manager_review",
            "name": "Manager Review",
            "sla_hours": 4,
            "max_violations": 3,
            "violation_action": "notify",
            "notify_api_config": notify_config(),
            "auto_approve_api_config": None,
            "is_active": True,
        }
        step.update(overrides)
        mock_data["activities"].append(step)
        return step

    return _create


@pytest.fixture
def create_record(mock_data) -> Callable[..., Dict[str, Any]]:
    """Factory fixture to create tracked record rows."""
    def _create(record_id: str = "PO-1", **overrides) -> Dict[str, Any]:
        record = {
            "id": len(mock_data["records"]) + 1,
            "record_id": record_id,
            "model": "purchase.order",
            "workflow_id": "10",
            "workflow_name": "Purchase Order Approval",
            "activity_id": "100",
            "step_code": "manager_review",
            "step_name": "Manager Review",
            "start_time": THURSDAY_MORNING.isoformat(),
            "status": "waiting",
            "violation_count": 0,
            "sla_hours": 4,
            "remaining_hours": 4,
            "next_due_at": None,
        }
        record.update(overrides)
        mock_data["records"].append(record)
        return record

    return _create


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (store + egress mocked)")
    config.addinivalue_line("markers", "edge: Edge case tests")
