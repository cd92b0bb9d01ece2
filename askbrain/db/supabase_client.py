"""Supabase client shared by the thread, corpus and training stores."""

from functools import lru_cache

from supabase import Client, create_client

from askbrain.core.config import get_settings
from askbrain.core.errors import PersistenceError


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get the service-role Supabase client (cached singleton).

    Raises:
        PersistenceError: If the URL or key is missing or the client can't be built
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise PersistenceError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise PersistenceError(f"Failed to initialize Supabase client: {e}") from e
