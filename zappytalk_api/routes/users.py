"""User profile routes."""

from fastapi import APIRouter, Request, Response, status

from ..auth import CurrentUser
from ..authorization import require_owner
from ..database import (
    USER_PATCH_COLUMNS,
    USER_PROFILE_COLUMNS,
    Database,
    build_patch,
    create_user,
    get_user,
    is_unique_violation,
    update_user,
)
from ..errors import Conflict, GatewayError, InternalError, NotFound
from ..logging_config import get_logger
from ..models import (
    CheckOrCreateResponse,
    CheckOrCreateUser,
    UserResponse,
    UserUpdate,
    UserUpdateResponse,
)
from ..rate_limit import limiter, signup_limit

logger = get_logger("zappytalk.users")
router = APIRouter(prefix="/users", tags=["users"])

DUPLICATE_EMAIL_MESSAGE = "Email already exists. Please use a different email address."
INACTIVE_USER_MESSAGE = "This account is no longer active."


@router.post("/check-or-create", response_model=CheckOrCreateResponse)
@limiter.limit(signup_limit)
async def check_or_create_user(
    request: Request,
    response: Response,
    body: CheckOrCreateUser,
    db: Database,
):
    """
    Sign-in hook: return the user if known, otherwise create them.

    Responds 200 for an existing user and 201 for a newly created one.
    """
    try:
        existing = await get_user(db, body.user_id)
        if existing:
            return CheckOrCreateResponse(exists=True, user=existing, message="User already exists")

        try:
            await create_user(db, body.user_id, body.user_name, body.email.lower(), body.profile_img)
        except Exception as e:
            if is_unique_violation(e, "email"):
                logger.warning(f"Duplicate email on sign-up | {body.user_id}")
                raise Conflict(DUPLICATE_EMAIL_MESSAGE)
            if is_unique_violation(e):
                # A soft-deleted row still holds the user_id
                logger.warning(f"Sign-up for inactive user_id | {body.user_id}")
                raise Conflict(INACTIVE_USER_MESSAGE)
            raise

        new_user = await get_user(db, body.user_id)
        if not new_user:
            raise InternalError("Failed to create user")

        logger.info(f"Created user | {body.user_id}")
        response.status_code = status.HTTP_201_CREATED
        return CheckOrCreateResponse(exists=False, user=new_user, message="User created successfully")
    except GatewayError:
        raise
    except Exception:
        logger.exception("Error in POST /users/check-or-create")
        raise InternalError()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_profile(user_id: str, auth: CurrentUser, db: Database):
    """Get the caller's own profile."""
    require_owner(auth, user_id, "Access denied. You can only access your own user data.")

    try:
        user = await get_user(db, user_id, columns=USER_PROFILE_COLUMNS)
    except Exception:
        logger.exception(f"Error in GET /users/{user_id}")
        raise InternalError()

    if not user:
        raise NotFound("User not found")
    return {"user": user}


@router.put("/{user_id}", response_model=UserUpdateResponse)
async def update_user_profile(user_id: str, patch: UserUpdate, auth: CurrentUser, db: Database):
    """
    Partially update the caller's own profile.

    Only fields present in the body change; updated_at is always refreshed.
    """
    require_owner(auth, user_id, "Access denied. You can only edit your own user data.")

    try:
        if not await get_user(db, user_id, columns="user_id"):
            raise NotFound("User not found")

        changes = build_patch(patch, USER_PATCH_COLUMNS)
        try:
            await update_user(db, user_id, changes)
        except Exception as e:
            if is_unique_violation(e, "email"):
                logger.warning(f"Duplicate email on update | {user_id}")
                raise Conflict(DUPLICATE_EMAIL_MESSAGE)
            raise

        updated = await get_user(db, user_id, columns=USER_PROFILE_COLUMNS)
        if not updated:
            raise InternalError("Failed to update user")
    except GatewayError:
        raise
    except Exception:
        logger.exception(f"Error in PUT /users/{user_id}")
        raise InternalError()

    logger.info(f"Updated user | {user_id} | fields={sorted(patch.model_fields_set)}")
    return {"user": updated, "message": "User updated successfully"}
