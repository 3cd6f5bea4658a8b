"""Database utilities for Supabase integration.

Every statement is a single PostgREST request executed in a worker thread so
the event loop never blocks on the synchronous client. Rows with a non-null
``deleted_at`` are soft-deleted and filtered out of every read.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends
from postgrest.exceptions import APIError
from pydantic import BaseModel

from supabase import Client, create_client

from .config import Settings, get_settings
from .errors import ConfigurationError
from .logging_config import get_logger

logger = get_logger("zappytalk.database")

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ConfigurationError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


def get_optional_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client | None:
    """Like get_db, but None when the client cannot be configured."""
    try:
        return get_supabase_client(settings)
    except ConfigurationError as e:
        logger.error(f"Supabase client unavailable: {e.message}")
        return None


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]
OptionalDatabase = Annotated[Client | None, Depends(get_optional_db)]


# =============================================================================
# Table Names
# =============================================================================

USERS_TABLE = "users"
CALLS_TABLE = "calls"
MEMORIES_TABLE = "memories"
AGENTS_TABLE = "agents"

USER_PROFILE_COLUMNS = "user_id, user_name, email, profile_img, created_at, updated_at"
CALL_LIST_COLUMNS = "id, user_id, agent_name, started_at, ended_at, summary, messages_json, location, room_id"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_unique_violation(error: Exception, column: str | None = None) -> bool:
    """True when a PostgREST error is a unique constraint violation.

    With ``column``, only a violation on that column counts. Postgres names
    the offending key in the error details as ``Key (column)=(value)``.
    """
    if not isinstance(error, APIError) or error.code != UNIQUE_VIOLATION:
        return False
    if column is None:
        return True
    return f"({column})=" in (error.details or "")


# =============================================================================
# Partial Updates
# =============================================================================

# Patch field -> (column, normalizer). Order is the column order of the update.
USER_PATCH_COLUMNS = {
    "user_name": ("user_name", str.strip),
    "email": ("email", lambda v: v.strip().lower()),
    "profile_img": ("profile_img", None),
}


def build_patch(patch: BaseModel, columns: dict, touch: str | None = "updated_at") -> dict:
    """Map the fields explicitly set on ``patch`` to column values.

    Unset fields are left out entirely. Explicit nulls are kept and skip
    normalization. ``touch`` names a timestamp column refreshed on every call.
    """
    changes = {}
    for field, (column, normalize) in columns.items():
        if field not in patch.model_fields_set:
            continue
        value = getattr(patch, field)
        if value is not None and normalize is not None:
            value = normalize(value)
        changes[column] = value
    if touch:
        changes[touch] = _now()
    return changes


# =============================================================================
# User Operations
# =============================================================================

async def get_user(db: Client, user_id: str, columns: str = "*") -> dict | None:
    """Get a live (not soft-deleted) user by ID."""
    def _query():
        return (
            db.table(USERS_TABLE)
            .select(columns)
            .eq("user_id", user_id)
            .is_("deleted_at", "null")
            .limit(1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.data[0] if result.data else None


async def create_user(
    db: Client,
    user_id: str,
    user_name: str,
    email: str,
    profile_img: str | None = None,
) -> dict | None:
    """Insert a new user row. Raises APIError on a duplicate email."""
    now = _now()
    data = {
        "user_id": user_id,
        "user_name": user_name,
        "email": email,
        "profile_img": profile_img,
        "created_at": now,
        "updated_at": now,
    }

    def _insert():
        return db.table(USERS_TABLE).insert(data).execute()

    result = await asyncio.to_thread(_insert)
    return result.data[0] if result.data else None


async def update_user(db: Client, user_id: str, changes: dict) -> dict | None:
    """Apply column changes to a live user. Raises APIError on a duplicate email."""
    def _update():
        return (
            db.table(USERS_TABLE)
            .update(changes)
            .eq("user_id", user_id)
            .is_("deleted_at", "null")
            .execute()
        )

    result = await asyncio.to_thread(_update)
    return result.data[0] if result.data else None


# =============================================================================
# Call Operations
# =============================================================================

async def create_call(
    db: Client,
    call_id: str,
    user_id: str,
    agent_name: str,
    started_at: str,
    ended_at: str,
    messages_json: str,
    location: str | None = None,
    room_id: str | None = None,
) -> dict | None:
    """Store a finished call with its transcript."""
    data = {
        "id": call_id,
        "user_id": user_id,
        "agent_name": agent_name,
        "started_at": started_at,
        "ended_at": ended_at,
        "deleted_at": None,
        "messages_json": messages_json,
        "location": location,
        "room_id": room_id,
    }

    def _insert():
        return db.table(CALLS_TABLE).insert(data).execute()

    result = await asyncio.to_thread(_insert)
    return result.data[0] if result.data else None


async def get_call(db: Client, call_id: str) -> dict | None:
    """Get a live call by ID (owner included for authorization)."""
    def _query():
        return (
            db.table(CALLS_TABLE)
            .select("id, user_id")
            .eq("id", call_id)
            .is_("deleted_at", "null")
            .limit(1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.data[0] if result.data else None


async def count_calls_for_user(db: Client, user_id: str) -> int:
    """Count a user's live calls."""
    def _query():
        return (
            db.table(CALLS_TABLE)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .is_("deleted_at", "null")
            .limit(1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.count or 0


async def list_calls_for_user(db: Client, user_id: str, limit: int, offset: int) -> list[dict]:
    """Get one page of a user's live calls, newest first."""
    def _query():
        return (
            db.table(CALLS_TABLE)
            .select(CALL_LIST_COLUMNS)
            .eq("user_id", user_id)
            .is_("deleted_at", "null")
            .order("started_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.data or []


async def update_call_summary(db: Client, call_id: str, summary: str) -> bool:
    """Set the summary of a live call. Returns False if no row changed."""
    def _update():
        return (
            db.table(CALLS_TABLE)
            .update({"summary": summary})
            .eq("id", call_id)
            .is_("deleted_at", "null")
            .execute()
        )

    result = await asyncio.to_thread(_update)
    return len(result.data) > 0


# =============================================================================
# Memory Operations
# =============================================================================

async def create_memory(
    db: Client,
    room_id: str,
    user_id: str,
    embedding_id: int,
    memory: str,
    memory_type: str,
) -> dict | None:
    """Append a memory entry derived from a call."""
    data = {
        "memory_id": str(uuid.uuid4()),
        "room_id": room_id,
        "user_id": user_id,
        "embedding_id": embedding_id,
        "memory": memory,
        "memory_type": memory_type,
        "created_at": _now(),
    }

    def _insert():
        return db.table(MEMORIES_TABLE).insert(data).execute()

    result = await asyncio.to_thread(_insert)
    return result.data[0] if result.data else None


# =============================================================================
# Agent Operations
# =============================================================================

async def list_agents(db: Client) -> list[dict]:
    """List the names of dispatchable agents."""
    def _query():
        return db.table(AGENTS_TABLE).select("name").order("name").execute()

    result = await asyncio.to_thread(_query)
    return [{"name": row["name"]} for row in result.data or []]
