"""Agent routes: listing, default agent and session dispatch."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from ..auth import CurrentUser
from ..config import Settings, get_settings
from ..database import Database, list_agents
from ..dispatch import Coordinator, DispatchRequest
from ..errors import ConfigurationError, DispatchError, GatewayError, InternalError
from ..logging_config import get_logger
from ..models import AgentName, DefaultAgentResponse, RoomTokenResponse
from ..rate_limit import dispatch_limit, limiter

logger = get_logger("zappytalk.agents")
router = APIRouter(tags=["agents"])

TOKEN_FAILURE_MESSAGE = "Failed to generate token"


@router.get("/get-agents", response_model=list[AgentName])
async def get_agents(auth: CurrentUser, db: Database):
    """List available agents."""
    try:
        return await list_agents(db)
    except Exception:
        logger.exception(f"Error in GET /get-agents | {auth.subject_id}")
        raise InternalError("Failed to fetch agents")


@router.get("/dispatch-agent", response_model=RoomTokenResponse)
@limiter.limit(dispatch_limit)
async def dispatch_agent(
    request: Request,
    auth: CurrentUser,
    coordinator: Coordinator,
    room: Annotated[str | None, Query()] = None,
    user_name: Annotated[str | None, Query(alias="userName")] = None,
    identity: Annotated[str | None, Query()] = None,
    agent_name: Annotated[str | None, Query(alias="agentName")] = None,
    user_context: Annotated[str | None, Query(alias="userContext")] = None,
):
    """
    Dispatch an agent into a LiveKit room and return a token to join it.

    Configuration and dispatch failures are reported identically so callers
    cannot tell which infrastructure step failed.
    """
    logger.info(f"GET /dispatch-agent | {auth.subject_id} | room={room} agent={agent_name}")
    try:
        result = await coordinator.dispatch(
            DispatchRequest(
                room=room,
                participant_identity=identity,
                display_name=user_name,
                agent_name=agent_name,
                user_context=user_context,
            )
        )
    except (ConfigurationError, DispatchError):
        raise InternalError(TOKEN_FAILURE_MESSAGE)
    except GatewayError:
        raise
    except Exception:
        logger.exception(f"Error in GET /dispatch-agent | {auth.subject_id}")
        raise InternalError(TOKEN_FAILURE_MESSAGE)

    return RoomTokenResponse(token=result.token, room=result.room, identity=result.identity)


@router.get("/get-token", response_model=RoomTokenResponse)
@limiter.limit(dispatch_limit)
async def get_token(
    request: Request,
    auth: CurrentUser,
    coordinator: Coordinator,
    room: Annotated[str | None, Query()] = None,
    user_name: Annotated[str | None, Query(alias="userName")] = None,
    identity: Annotated[str | None, Query()] = None,
):
    """Issue a room token without dispatching an agent (rejoin flow)."""
    try:
        result = await coordinator.issue_only(room=room, participant_identity=identity, display_name=user_name)
    except GatewayError as e:
        logger.error(f"GET /get-token failed | {auth.subject_id} | {type(e).__name__}")
        raise InternalError(TOKEN_FAILURE_MESSAGE)

    return RoomTokenResponse(token=result.token, room=result.room, identity=result.identity)


@router.get("/default-agent", response_model=DefaultAgentResponse)
async def default_agent(settings: Annotated[Settings, Depends(get_settings)]):
    """Name of the agent clients should dispatch by default."""
    return DefaultAgentResponse(agent=settings.default_agent_name or "")
