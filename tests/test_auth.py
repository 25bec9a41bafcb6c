"""
Tests for resolving a bearer token to an Owner through Supabase.
"""

from unittest.mock import MagicMock, patch

import pytest

from smart_resizer.auth.supabase_auth import SupabaseIdentityProvider
from smart_resizer.config import Settings
from smart_resizer.exceptions import NoClientAccountError, RepositoryError, UnauthorizedError


@pytest.fixture
def auth_settings():
    return Settings(supabase_url="http://supabase.test", supabase_anon_key="anon")


@pytest.fixture
def signed_in():
    """Patch the anon client so every token belongs to user-1."""
    with patch("smart_resizer.auth.supabase_auth.create_client") as create_client:
        user = MagicMock(id="user-1", email="owner@example.com")
        create_client.return_value.auth.get_user.return_value = MagicMock(user=user)
        yield create_client


def _members(data=None, error=None):
    admin = MagicMock()
    if error is not None:
        admin.table.side_effect = error
    else:
        query = admin.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=data or [])
    return lambda: admin


@pytest.mark.unit
class TestSupabaseIdentityProvider:

    def test_member_resolves_to_owner(self, auth_settings, signed_in):
        provider = SupabaseIdentityProvider(auth_settings, _members([{"client_id": "client-1"}]))
        owner = provider.resolve("token")
        assert owner.user_id == "user-1"
        assert owner.client_id == "client-1"
        assert owner.email == "owner@example.com"

    def test_user_without_membership(self, auth_settings, signed_in):
        provider = SupabaseIdentityProvider(auth_settings, _members([]))
        with pytest.raises(NoClientAccountError):
            provider.resolve("token")

    def test_membership_store_failure_is_a_database_error(self, auth_settings, signed_in):
        provider = SupabaseIdentityProvider(
            auth_settings, _members(error=ConnectionError("connection refused"))
        )
        with pytest.raises(RepositoryError) as exc_info:
            provider.resolve("token")
        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "DATABASE_ERROR"

    def test_rejected_token(self, auth_settings):
        with patch("smart_resizer.auth.supabase_auth.create_client") as create_client:
            create_client.return_value.auth.get_user.side_effect = RuntimeError("invalid JWT")
            provider = SupabaseIdentityProvider(auth_settings, _members([{"client_id": "c"}]))
            with pytest.raises(UnauthorizedError):
                provider.resolve("token")
