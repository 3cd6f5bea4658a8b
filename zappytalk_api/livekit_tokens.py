"""LiveKit room access tokens.

Tokens are HS256 JWTs in the claim layout the LiveKit server verifies:
``iss`` is the API key, ``sub``/``jti`` the participant identity and
``video`` the grant set. Only the room-join grant is ever issued.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from .errors import ConfigurationError

TOKEN_TTL = timedelta(minutes=10)
TOKEN_ALGORITHM = "HS256"


def room_join_grant(room: str) -> dict:
    return {"roomJoin": True, "room": room}


def issue_room_token(
    api_key: str | None,
    api_secret: str | None,
    identity: str,
    room: str,
    display_name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Sign a token letting ``identity`` join ``room`` for TOKEN_TTL.

    Raises ConfigurationError when the signing credentials are missing.
    """
    if not api_key or not api_secret:
        raise ConfigurationError("LiveKit API credentials not configured")

    issued_at = int((now or datetime.now(timezone.utc)).timestamp())
    claims = {
        "iss": api_key,
        "sub": identity,
        "jti": identity,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": issued_at + int(TOKEN_TTL.total_seconds()),
        "video": room_join_grant(room),
    }
    if display_name:
        claims["name"] = display_name
    return jwt.encode(claims, api_secret, algorithm=TOKEN_ALGORITHM)


def decode_room_token(token: str, api_secret: str, verify_exp: bool = True) -> dict:
    """Verify a room token's signature and return its claims."""
    return jwt.decode(
        token,
        api_secret,
        algorithms=[TOKEN_ALGORITHM],
        options={"verify_exp": verify_exp},
    )
