"""Call history and memory routes."""

import math
from typing import Annotated

from fastapi import APIRouter, Query, status

from ..auth import CurrentUser
from ..authorization import owns, require_owner
from ..database import (
    Database,
    count_calls_for_user,
    create_call,
    create_memory,
    get_call,
    list_calls_for_user,
    update_call_summary,
)
from ..errors import GatewayError, InternalError, NotFound
from ..logging_config import get_logger
from ..models import (
    CallCreate,
    CallListResponse,
    CallSummaryUpdate,
    MemoryCreate,
    MessageResponse,
    Pagination,
)

logger = get_logger("zappytalk.calls")
router = APIRouter(prefix="/calls", tags=["calls"])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_call_record(body: CallCreate, auth: CurrentUser, db: Database):
    """Store a finished call and its transcript."""
    require_owner(auth, body.user_id, "Access denied. You can only store your own calls.")

    try:
        await create_call(
            db,
            call_id=body.id,
            user_id=body.user_id,
            agent_name=body.agent_name,
            started_at=body.started_at,
            ended_at=body.ended_at,
            messages_json=body.messages_json,
            location=body.user_location or None,
            room_id=body.room_id or None,
        )
    except Exception:
        logger.exception(f"Error in POST /calls | {body.user_id}")
        raise InternalError()

    logger.info(f"Stored call {body.id} | {body.user_id}")
    return MessageResponse(message="Session log created successfully")


@router.get("/user/{user_id}", response_model=CallListResponse)
async def list_user_calls(
    user_id: str,
    auth: CurrentUser,
    db: Database,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
):
    """Page through the caller's calls, newest first."""
    require_owner(auth, user_id, "Access denied. You can only access your own call data.")

    offset = (page - 1) * limit
    try:
        total_calls = await count_calls_for_user(db, user_id)
        calls = await list_calls_for_user(db, user_id, limit=limit, offset=offset)
    except Exception:
        logger.exception(f"Error in GET /calls/user/{user_id}")
        raise InternalError()

    total_pages = math.ceil(total_calls / limit)
    return CallListResponse(
        calls=calls,
        pagination=Pagination(
            page=page,
            limit=limit,
            total_calls=total_calls,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        ),
    )


@router.put("/{call_id}/summary", response_model=MessageResponse)
async def update_summary(call_id: str, body: CallSummaryUpdate, auth: CurrentUser, db: Database):
    """Attach or replace the summary of one of the caller's calls."""
    try:
        call = await get_call(db, call_id)
    except Exception:
        logger.exception(f"Error in PUT /calls/{call_id}/summary")
        raise InternalError()

    # Someone else's call is reported exactly like a missing one
    if not call or not owns(auth, call["user_id"]):
        if call:
            logger.warning(f"Summary update on foreign call {call_id} | {auth.subject_id}")
        raise NotFound("Call not found")

    try:
        if not await update_call_summary(db, call_id, body.summary):
            raise InternalError("Failed to update call summary")
    except GatewayError:
        raise
    except Exception:
        logger.exception(f"Error in PUT /calls/{call_id}/summary")
        raise InternalError()

    return MessageResponse(message="Call summary updated successfully")


@router.post("/add-memory", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def add_memory(body: MemoryCreate, auth: CurrentUser, db: Database):
    """Append a memory extracted from a call."""
    require_owner(auth, body.user_id, "Access denied. You can only add your own memories.")

    try:
        await create_memory(
            db,
            room_id=body.room_id,
            user_id=body.user_id,
            embedding_id=body.embedding_id,
            memory=body.memory,
            memory_type=body.memory_type,
        )
    except Exception:
        logger.exception(f"Error in POST /calls/add-memory | {body.user_id}")
        raise InternalError()

    return MessageResponse(message="Memory added successfully")
