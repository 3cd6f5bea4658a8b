"""API routes."""

from .agents import router as agents_router
from .calls import router as calls_router
from .users import router as users_router

__all__ = [
    "agents_router",
    "users_router",
    "calls_router",
]
