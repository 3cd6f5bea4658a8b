"""Session dispatch: mint a room token and send a voice agent into the room.

Token issuance and agent dispatch form one logical operation, run strictly in
that order. A malformed user context fails before anything is signed, and a
signing failure means no dispatch is attempted. If the dispatch fails after
the token was signed, the token is discarded: tokens are stateless, so there
is nothing to revoke, and the caller retries the whole operation.
"""

import json
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Protocol

from fastapi import Depends
from livekit import api
from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import BadRequest, ConfigurationError, DispatchError
from .livekit_tokens import issue_room_token
from .logging_config import log_dispatch_event
from .models import UserContext

DEFAULT_ROOM = "quickstart-room"
DEFAULT_IDENTITY = "quickstart-user"
DEFAULT_AGENT_NAME = "voice-agent-dev"

# Unknown top-level context keys are forwarded under this key only
EXTRA_CONTEXT_KEY = "extra"


@dataclass
class DispatchRequest:
    room: str | None = None
    participant_identity: str | None = None
    display_name: str | None = None
    agent_name: str | None = None
    user_context: str | None = None


@dataclass
class DispatchResult:
    token: str
    room: str
    identity: str


class AgentDispatchClient(Protocol):
    async def create_dispatch(self, room: str, agent_name: str, metadata: str) -> Any: ...


class LiveKitDispatchClient:
    """Create agent dispatches through the LiveKit server API."""

    def __init__(self, url: str | None, api_key: str | None, api_secret: str | None):
        self.url = url
        self.api_key = api_key
        self.api_secret = api_secret

    async def create_dispatch(self, room: str, agent_name: str, metadata: str) -> Any:
        lk = api.LiveKitAPI(url=self.url, api_key=self.api_key, api_secret=self.api_secret)
        try:
            return await lk.agent_dispatch.create_dispatch(
                api.CreateAgentDispatchRequest(agent_name=agent_name, room=room, metadata=metadata)
            )
        finally:
            await lk.aclose()


def parse_user_context(raw: str | None) -> dict:
    """Parse and validate the caller's JSON context.

    Known fields are type-checked and re-emitted in their wire (camelCase)
    names; anything else is namespaced under ``extra``.
    """
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        raise BadRequest("userContext must be valid JSON")
    if not isinstance(parsed, dict):
        raise BadRequest("userContext must be a JSON object")

    try:
        context = UserContext.model_validate(parsed)
    except ValidationError:
        raise BadRequest("userContext has invalid fields")

    result = context.model_dump(by_alias=True, exclude_none=True)
    known = UserContext.known_keys()
    extra = {k: v for k, v in parsed.items() if k not in known}
    if extra:
        result[EXTRA_CONTEXT_KEY] = extra
    return result


def build_dispatch_metadata(display_name: str | None, identity: str, user_context: dict) -> str:
    """Metadata the agent reads on join."""
    return json.dumps(
        {
            "userName": display_name,
            "participantIdentity": identity,
            "userId": identity,
            "userContext": user_context,
        }
    )


class SessionDispatchCoordinator:
    """Issue a room token and dispatch an agent into the same room."""

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        dispatch_client: AgentDispatchClient,
        issuer: Callable[..., str] = issue_room_token,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.dispatch_client = dispatch_client
        self.issuer = issuer

    def _issue(self, identity: str, room: str, display_name: str | None) -> str:
        try:
            return self.issuer(self.api_key, self.api_secret, identity, room, display_name)
        except ConfigurationError:
            raise
        except Exception as e:
            raise DispatchError(f"token signing failed: {e}")

    async def issue_only(
        self,
        room: str | None = None,
        participant_identity: str | None = None,
        display_name: str | None = None,
    ) -> DispatchResult:
        """Issue a room token without dispatching an agent."""
        room = room or DEFAULT_ROOM
        identity = participant_identity or DEFAULT_IDENTITY
        token = self._issue(identity, room, display_name)
        return DispatchResult(token=token, room=room, identity=identity)

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        room = request.room or DEFAULT_ROOM
        agent_name = request.agent_name or DEFAULT_AGENT_NAME
        identity = request.participant_identity or DEFAULT_IDENTITY

        # Parsed before signing so bad input never leaves a half-done dispatch
        user_context = parse_user_context(request.user_context)

        try:
            token = self._issue(identity, room, request.display_name)
        except (ConfigurationError, DispatchError) as e:
            log_dispatch_event("token_failed", room=room, agent_name=agent_name, identity=identity, error=e)
            raise

        metadata = build_dispatch_metadata(request.display_name, identity, user_context)
        try:
            dispatch = await self.dispatch_client.create_dispatch(room, agent_name, metadata)
        except Exception as e:
            log_dispatch_event("dispatch_failed", room=room, agent_name=agent_name, identity=identity, error=e)
            raise DispatchError()

        dispatch_id = getattr(dispatch, "id", None)
        log_dispatch_event(f"dispatched {dispatch_id or ''}".strip(), room=room, agent_name=agent_name, identity=identity)
        return DispatchResult(token=token, room=room, identity=identity)


def get_dispatch_coordinator(
    settings: Annotated[Settings, Depends(get_settings)],
) -> SessionDispatchCoordinator:
    """FastAPI dependency: a coordinator bound to the LiveKit settings."""
    client = LiveKitDispatchClient(settings.livekit_url, settings.livekit_api_key, settings.livekit_api_secret)
    return SessionDispatchCoordinator(
        api_key=settings.livekit_api_key,
        api_secret=settings.livekit_api_secret,
        dispatch_client=client,
    )


# Type alias for dependency injection
Coordinator = Annotated[SessionDispatchCoordinator, Depends(get_dispatch_coordinator)]
