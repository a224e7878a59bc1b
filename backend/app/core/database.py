"""
Supabase database client management.
Provides the store used by the SLA engine.

Features:
- Singleton Supabase client
- Record store with compare-and-set writes on violation_count
- Step / workflow definition lookups (read-only)
- Append-only action log store with paged listing
"""
from functools import lru_cache
from typing import Any, Callable, Optional

from supabase import create_client, Client

from .config import settings
from .exceptions import DatabaseError


class SupabaseClient:
    """
    Singleton wrapper for Supabase client.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            if not settings.supabase_configured:
                raise DatabaseError(
                    "Supabase is not configured (SUPABASE_URL / key missing)",
                    operation="connect"
                )
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key or settings.supabase_anon_key
            )

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client


class SlaStore:
    """
    Table operations for the SLA engine.

    Wraps anything exposing the supabase-py query builder (``.table(name)``).
    Every failure of the underlying client is re-raised as DatabaseError.
    """

    def __init__(
        self,
        client: Any,
        records_table: str = settings.records_table,
        steps_table: str = settings.steps_table,
        workflows_table: str = settings.workflows_table,
        action_logs_table: str = settings.action_logs_table,
    ):
        self.client = client
        self.records_table = records_table
        self.steps_table = steps_table
        self.workflows_table = workflows_table
        self.action_logs_table = action_logs_table

    def _run(self, table: str, operation: str, query: Callable[[], Any]) -> Any:
        try:
            return query()
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(
                f"Failed to {operation} on {table}",
                table=table,
                operation=operation,
                original_error=str(e)
            ) from e

    # ==========================================
    # RECORDS
    # ==========================================

    def list_active_records(self) -> list[dict]:
        """All records still being tracked (waiting or violated)."""
        response = self._run(
            self.records_table,
            "list_active",
            lambda: self.client.table(self.records_table)
            .select("*")
            .in_("status", ["waiting", "violated"])
            .order("id")
            .execute()
        )
        return response.data or []

    def get_record(self, record_id: str) -> Optional[dict]:
        response = self._run(
            self.records_table,
            "get",
            lambda: self.client.table(self.records_table)
            .select("*")
            .eq("record_id", record_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def claim_violation(
        self,
        record_id: str,
        expected_violation_count: int,
        violation_count: int,
        status: str
    ) -> bool:
        """
        Move a record onto a new violation boundary before it is escalated.

        Same compare-and-set as ``save_record_state`` but only touches
        violation_count / status. Exactly one concurrent caller wins;
        the others get False and must not escalate.
        """
        response = self._run(
            self.records_table,
            "claim_violation",
            lambda: self.client.table(self.records_table)
            .update({"violation_count": violation_count, "status": status})
            .eq("record_id", record_id)
            .eq("violation_count", expected_violation_count)
            .neq("status", "completed")
            .execute()
        )
        return bool(response.data)

    def save_record_state(self, record: Any, expected_violation_count: int) -> bool:
        """
        Write the engine-owned columns of a record in a single update.

        Compare-and-set: the row must still carry ``expected_violation_count``
        and must not be completed. Returns False when no row matched.
        """
        response = self._run(
            self.records_table,
            "save_state",
            lambda: self.client.table(self.records_table)
            .update(record.state_columns())
            .eq("record_id", record.record_id)
            .eq("violation_count", expected_violation_count)
            .neq("status", "completed")
            .execute()
        )
        return bool(response.data)

    def count_records(self, status: str) -> int:
        response = self._run(
            self.records_table,
            "count",
            lambda: self.client.table(self.records_table)
            .select("id", count="exact")
            .eq("status", status)
            .execute()
        )
        if response.count is not None:
            return response.count
        return len(response.data or [])

    # ==========================================
    # STEP / WORKFLOW DEFINITIONS
    # ==========================================

    def get_step(self, step_id: str) -> Optional[dict]:
        response = self._run(
            self.steps_table,
            "get",
            lambda: self.client.table(self.steps_table)
            .select("*")
            .eq("id", step_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def find_step(self, workflow_id: str, step_code: str) -> Optional[dict]:
        response = self._run(
            self.steps_table,
            "find",
            lambda: self.client.table(self.steps_table)
            .select("*")
            .eq("workflow_id", workflow_id)
            .eq("code", step_code)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def get_workflow(self, workflow_id: str) -> Optional[dict]:
        response = self._run(
            self.workflows_table,
            "get",
            lambda: self.client.table(self.workflows_table)
            .select("*")
            .eq("id", workflow_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    # ==========================================
    # ACTION LOGS (append-only)
    # ==========================================

    def insert_action_log(self, row: dict) -> dict:
        response = self._run(
            self.action_logs_table,
            "insert",
            lambda: self.client.table(self.action_logs_table).insert(row).execute()
        )
        return response.data[0] if response.data else {}

    def list_action_logs(
        self,
        page: int = 1,
        page_size: int = 20,
        action_type: Optional[str] = None,
        search: Optional[str] = None
    ) -> tuple[list[dict], int]:
        """
        Paged action log listing, newest first.

        Returns (rows, total matching rows).
        """
        page = max(1, page)
        page_size = min(100, max(1, page_size))
        start = (page - 1) * page_size

        def query():
            q = self.client.table(self.action_logs_table).select("*", count="exact")
            if action_type:
                q = q.eq("action_type", action_type)
            if search:
                pattern = f"%{search}%"
                q = q.or_(
                    f"record_id.ilike.{pattern},"
                    f"message.ilike.{pattern},"
                    f"action_type.ilike.{pattern}"
                )
            return q.order("created_at", desc=True).range(start, start + page_size - 1).execute()

        response = self._run(self.action_logs_table, "list", query)
        rows = response.data or []
        total = response.count if response.count is not None else len(rows)
        return rows, total


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    return SupabaseClient()


def get_sla_store() -> SlaStore:
    """Store bound to the singleton Supabase client."""
    return SlaStore(get_supabase_client().client)
