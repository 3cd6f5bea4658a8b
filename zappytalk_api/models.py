"""Pydantic models for API requests and responses."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
URL_PATTERN = r"^https?://\S+$"

# Surrounding whitespace is dropped before the pattern is checked
Email = Annotated[str, StringConstraints(strip_whitespace=True, pattern=EMAIL_PATTERN)]

# =============================================================================
# Agent Models
# =============================================================================


class AgentName(BaseModel):
    """An agent that can be dispatched."""
    name: str


class DefaultAgentResponse(BaseModel):
    agent: str


class RoomTokenResponse(BaseModel):
    """Token for joining a room, returned by dispatch and token routes."""
    token: str
    room: str
    identity: str


class Coordinates(BaseModel):
    latitude: float
    longitude: float
    address: str | None = None


class DeviceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    brand: str | None = None
    device_name: str | None = Field(default=None, alias="deviceName")
    device_type: str | None = Field(default=None, alias="deviceType")
    manufacturer: str | None = None
    os_name: str | None = Field(default=None, alias="osName")
    os_version: str | None = Field(default=None, alias="osVersion")


class UserContext(BaseModel):
    """Client-side context forwarded to the agent in dispatch metadata.

    Every field is optional so an empty object is valid. Keys outside the
    schema are collected by the dispatch layer under ``extra``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_date_time: str | None = Field(default=None, alias="currentDateTime")
    current_date_time_local: str | None = Field(default=None, alias="currentDateTimeLocal")
    timezone: str | None = None
    locale: str | None = None
    location: Coordinates | None = None
    last_call_time: str | None = Field(default=None, alias="lastCallTime")
    last_call_location: Coordinates | None = Field(default=None, alias="lastCallLocation")
    previous_calls_count: int | None = Field(default=None, alias="previousCallsCount")
    time_since_last_call: float | None = Field(default=None, alias="timeSinceLastCall")
    device: DeviceInfo | None = None

    @classmethod
    def known_keys(cls) -> set[str]:
        return {field.alias or name for name, field in cls.model_fields.items()}


# =============================================================================
# User Models
# =============================================================================


class CheckOrCreateUser(BaseModel):
    """Sign-in payload: look the user up, create on first sight."""
    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    email: Email
    profile_img: str | None = Field(default=None, pattern=URL_PATTERN)


class UserUpdate(BaseModel):
    """Partial update for a user profile.

    Only fields present in the request body are applied; ``profile_img`` may be
    explicitly null to clear it.
    """
    user_name: str | None = Field(default=None, min_length=1)
    email: Email | None = None
    profile_img: str | None = Field(default=None, pattern=URL_PATTERN)

    @model_validator(mode="after")
    def _require_a_field(self):
        if not self.model_fields_set:
            raise ValueError(
                "At least one field (user_name, email, or profile_img) must be provided for update"
            )
        if "user_name" in self.model_fields_set and self.user_name is None:
            raise ValueError("user_name cannot be empty")
        if "email" in self.model_fields_set and self.email is None:
            raise ValueError("Valid email is required")
        return self


class UserProfile(BaseModel):
    user_id: str
    user_name: str
    email: str
    profile_img: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class CheckOrCreateResponse(BaseModel):
    exists: bool
    user: dict[str, Any] | None
    message: str


class UserResponse(BaseModel):
    user: UserProfile


class UserUpdateResponse(BaseModel):
    user: UserProfile
    message: str


# =============================================================================
# Call & Memory Models
# =============================================================================


class CallCreate(BaseModel):
    """A finished call with its transcript."""
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    agent_name: str = Field(..., min_length=1)
    started_at: str = Field(..., min_length=1)
    ended_at: str = Field(..., min_length=1)
    messages_json: str = Field(..., min_length=1)
    user_location: str | None = None
    room_id: str | None = None


class CallSummaryUpdate(BaseModel):
    summary: str


class MemoryCreate(BaseModel):
    room_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    embedding_id: int = Field(..., ge=1)
    memory: str = Field(..., min_length=1)
    memory_type: Literal["summary", "fact"]


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total_calls: int = Field(alias="totalCalls")
    total_pages: int = Field(alias="totalPages")
    has_next_page: bool = Field(alias="hasNextPage")
    has_previous_page: bool = Field(alias="hasPreviousPage")


class CallRecord(BaseModel):
    id: str
    user_id: str
    agent_name: str
    started_at: str
    ended_at: str | None = None
    summary: str | None = None
    messages_json: str | None = None
    location: str | None = None
    room_id: str | None = None


class CallListResponse(BaseModel):
    calls: list[CallRecord]
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str
