"""Supabase client singletons (anon + service-role)."""

from functools import lru_cache

import httpx
from supabase.lib.client_options import SyncClientOptions

from app.config import settings
from supabase import Client, create_client


def _build_sync_options() -> SyncClientOptions:
    max_connections = max(10, settings.supabase_http_max_connections)
    max_keepalive_connections = max(
        5,
        min(max_connections, settings.supabase_http_max_keepalive_connections),
    )
    timeout_seconds = max(1, settings.supabase_postgrest_timeout_seconds)

    return SyncClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        postgrest_client_timeout=timeout_seconds,
        httpx_client=httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
        ),
    )


def _create(key: str) -> Client:
    return create_client(settings.supabase_url, key, options=_build_sync_options())


@lru_cache(maxsize=1)
def get_auth_client() -> Client:
    """Return the anon-key client used only to verify bearer tokens."""
    return _create(settings.supabase_anon_key)


@lru_cache(maxsize=1)
def get_service_client() -> Client:
    """Return the service-role client (bypasses RLS).

    Vote state transitions are guarded by the service layer, so every
    request and the expiry job share this client.
    """
    return _create(settings.supabase_service_key)
