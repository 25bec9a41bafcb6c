"""Supabase JWT validation and tenant resolution for FastAPI."""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Header, Request
from loguru import logger
from supabase import Client, ClientOptions, create_client

from smart_resizer.config import Settings
from smart_resizer.exceptions import NoClientAccountError, RepositoryError, UnauthorizedError


@dataclass(frozen=True)
class Owner:
    """Authenticated caller and the client (tenant) whose jobs they may see."""
    user_id: str
    client_id: str
    email: Optional[str] = None


class SupabaseIdentityProvider:
    """Resolves a bearer token to an Owner via Supabase Auth and client_members."""

    def __init__(
        self,
        settings: Settings,
        admin_client_factory: Callable[[], Client],
    ):
        self._url = settings.supabase_url
        self._anon_key = settings.supabase_anon_key
        self._members_table = settings.members_table
        self._admin_client_factory = admin_client_factory

    def resolve(self, token: str) -> Owner:
        try:
            client = create_client(
                self._url,
                self._anon_key,
                options=ClientOptions(auto_refresh_token=False, persist_session=False),
            )
            user = client.auth.get_user(token).user
        except Exception:
            raise UnauthorizedError("Invalid token")
        if user is None:
            raise UnauthorizedError("Invalid token")

        try:
            response = (
                self._admin_client_factory()
                .table(self._members_table)
                .select("client_id")
                .eq("user_id", user.id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise RepositoryError("Failed to resolve client membership") from exc
        if not response.data:
            logger.warning("User {} has no client membership", user.id)
            raise NoClientAccountError("No client account")

        return Owner(
            user_id=str(user.id),
            client_id=str(response.data[0]["client_id"]),
            email=getattr(user, "email", None),
        )


async def get_current_owner(
    request: Request,
    authorization: str = Header(None),
) -> Owner:
    """Validate the Supabase JWT from the Authorization header.

    Returns the authenticated caller with their client id.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing or invalid token")

    token = authorization.replace("Bearer ", "", 1)
    identity = request.app.state.container.identity
    if identity is None:
        raise UnauthorizedError("Authentication is not configured")
    return await asyncio.to_thread(identity.resolve, token)
