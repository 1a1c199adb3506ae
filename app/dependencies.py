"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, Header

from app.services.vote_service import VoteService
from app.utils.errors import UnauthorizedError
from app.utils.supabase_client import get_auth_client, get_service_client
from supabase import Client


def get_current_user(authorization: str = Header(None)) -> Any:
    """Extract and validate a Supabase JWT from the Authorization header.

    Raises:
        UnauthorizedError: 401 if the header is missing, malformed, or
            the token cannot be validated.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing authorization header")

    token = authorization.split(" ", 1)[1]
    try:
        response = get_auth_client().auth.get_user(token)
    except Exception as exc:
        raise UnauthorizedError("Invalid or expired token") from exc
    if not response or not response.user:
        raise UnauthorizedError("Invalid token")
    return response.user


def get_current_user_id(user: Any) -> str:
    """Extract a stable user id string from the Supabase user object."""
    return str(user.id)


def get_db_client() -> Client:
    """Return the privileged Supabase client used by backend services."""
    return get_service_client()


def get_vote_service(client: Client = Depends(get_db_client)) -> VoteService:
    """Build the vote lifecycle service for one request."""
    return VoteService.from_client(client)
