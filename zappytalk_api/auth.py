"""Request authentication for the ZappyTalk gateway.

Two interchangeable credential verifiers exist. The Clerk verifier checks the
caller's session token; the local verifier lets everything through and is
only selected when ENVIRONMENT=local. The choice is made once at startup by
build_credential_verifier() and stored on app.state.
"""

from dataclasses import dataclass
from typing import Annotated, Protocol

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt

from .config import Settings
from .errors import Unauthorized
from .logging_config import log_auth_event

# Clerk stores the session token in this cookie for same-site browser requests
SESSION_COOKIE_NAME = "__session"

SUPPORTED_ALGORITHM = "RS256"

# Make bearer optional to allow cookie fallback
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Identity established for a single request.

    ``isolated`` is False only for the local verifier, in which case no
    subject exists and ownership checks are skipped.
    """

    subject_id: str | None
    session_id: str | None = None
    isolated: bool = True


class CredentialVerifier(Protocol):
    async def verify(self, request: Request, token: str | None) -> AuthContext: ...


class ClerkCredentialVerifier:
    """Verify Clerk session tokens (RS256 JWTs)."""

    def __init__(
        self,
        secret_key: str | None,
        jwt_key: str | None = None,
        authorized_parties: list[str] | None = None,
        api_url: str = "https://api.clerk.com/v1",
        timeout: float = 10.0,
    ):
        self.secret_key = secret_key
        # PEM keys pasted into env files often carry literal "\n"
        self.jwt_key = jwt_key.replace("\\n", "\n") if jwt_key else None
        self.authorized_parties = authorized_parties
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    async def verify(self, request: Request, token: str | None) -> AuthContext:
        path = request.url.path
        if not token:
            log_auth_event("rejected", path=path, reason="no session token")
            raise Unauthorized()

        try:
            claims = await self._verify_token(token)
        except Exception as e:
            log_auth_event("rejected", path=path, reason=f"{type(e).__name__}: {e}")
            raise Unauthorized()

        subject_id = claims["sub"]
        log_auth_event("verified", path=path, subject_id=subject_id)
        return AuthContext(subject_id=subject_id, session_id=claims.get("sid"))

    async def _verify_token(self, token: str) -> dict:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")
        # Validate algorithm to prevent algorithm confusion attacks
        if alg != SUPPORTED_ALGORITHM:
            raise ValueError(f"unsupported algorithm {alg}")

        key = self.jwt_key or await self._fetch_signing_key(header.get("kid"))
        claims = jwt.decode(
            token,
            key,
            algorithms=[SUPPORTED_ALGORITHM],
            # Clerk session tokens are scoped by azp, not aud
            options={"verify_aud": False},
        )

        if self.authorized_parties:
            azp = claims.get("azp")
            if azp not in self.authorized_parties:
                raise ValueError(f"unauthorized party {azp}")

        if not claims.get("sub"):
            raise ValueError("token has no subject")
        return claims

    async def _fetch_signing_key(self, kid: str | None) -> dict:
        """Fetch the JWKS entry matching kid from the Clerk backend API."""
        if not self.secret_key:
            raise ValueError("CLERK_SECRET_KEY is not configured")
        if not kid:
            raise ValueError("token header has no kid")

        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{self.api_url}/jwks",
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            jwks = response.json()

        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key
        raise ValueError(f"no signing key for kid={kid}")


class LocalCredentialVerifier:
    """Accept every request without establishing a subject. Local use only."""

    async def verify(self, request: Request, token: str | None) -> AuthContext:
        return AuthContext(subject_id=None, isolated=False)


def build_credential_verifier(settings: Settings) -> CredentialVerifier:
    """Pick the verifier for this process from settings."""
    if settings.is_local:
        return LocalCredentialVerifier()
    return ClerkCredentialVerifier(
        secret_key=settings.clerk_secret_key,
        jwt_key=settings.clerk_jwt_key,
        authorized_parties=settings.authorized_parties,
        api_url=settings.clerk_api_url,
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    request: Request,
) -> AuthContext:
    """Authenticate the request using the verifier chosen at startup."""
    # Try Authorization header first, then fall back to cookie
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get(SESSION_COOKIE_NAME)

    verifier: CredentialVerifier = request.app.state.credential_verifier
    return await verifier.verify(request, token)


# Type alias for dependency injection
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
