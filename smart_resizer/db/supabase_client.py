"""Service-role Supabase client factory.

A new client is built on every call, with token refresh and session
persistence switched off. A shared service-role client picks up the session
of whichever user last authenticated through it, after which its queries run
under that user's row-level security instead of as the service role.
"""

from typing import Callable

from supabase import Client, ClientOptions, create_client

from smart_resizer.config import Settings


def make_admin_client_factory(settings: Settings) -> Callable[[], Client]:
    """Return a zero-argument factory producing fresh service-role clients."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )

    url = settings.supabase_url
    key = settings.supabase_service_role_key

    def factory() -> Client:
        return create_client(
            url,
            key,
            options=ClientOptions(auto_refresh_token=False, persist_session=False),
        )

    return factory
