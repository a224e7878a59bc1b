# Core modules - Database, Config, Clock, Exceptions
from .database import get_supabase_client, get_sla_store, SlaStore
from .config import settings
from .clock import SystemClock, FixedClock, system_clock
from .exceptions import (
    SlaEngineException,
    ValidationError,
    DatabaseError,
    StepNotFoundError,
)

__all__ = [
    "get_supabase_client",
    "get_sla_store",
    "SlaStore",
    "settings",
    "SystemClock",
    "FixedClock",
    "system_clock",
    "SlaEngineException",
    "ValidationError",
    "DatabaseError",
    "StepNotFoundError",
]
