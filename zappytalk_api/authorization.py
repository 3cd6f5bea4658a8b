"""Ownership checks for user-scoped resources."""

from .auth import AuthContext
from .errors import Forbidden
from .logging_config import get_logger

logger = get_logger("zappytalk.authorization")


def authorize(requested_owner_id: str | None, authenticated_subject_id: str | None) -> bool:
    """Allow only when the caller is the owner. An absent subject never matches."""
    if authenticated_subject_id is None or requested_owner_id is None:
        return False
    return requested_owner_id == authenticated_subject_id


def owns(auth: AuthContext, owner_id: str | None) -> bool:
    """Ownership as seen by ``auth``; the local verifier carries no isolation."""
    return not auth.isolated or authorize(owner_id, auth.subject_id)


def require_owner(auth: AuthContext, owner_id: str | None, message: str = "Access denied") -> None:
    """Raise Forbidden unless ``auth`` owns ``owner_id``."""
    if not owns(auth, owner_id):
        logger.warning(f"Ownership denied | subject={auth.subject_id} owner={owner_id}")
        raise Forbidden(message)
