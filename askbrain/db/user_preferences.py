"""LexyBrain opt-in preferences kept in user_profiles.metadata."""

from typing import Any
from uuid import UUID

from askbrain.core.errors import PersistenceError
from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)

PREFERENCES_KEY = "lexybrain_preferences"

DEFAULT_PREFS: dict[str, Any] = {
    "training_opt_in": False,
}


def _load_profile(user_id: str | UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("user_profiles")
            .select("id, metadata")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to load profile for user {user_id}: {e}")
        raise PersistenceError(f"Failed to load user profile: {e}") from e

    return response.data[0] if response.data else None


def get_lexybrain_preferences(user_id: str | UUID) -> dict[str, Any]:
    """
    Preferences for a user, defaults filled in. Missing profiles get defaults.

    Raises:
        PersistenceError: If the profile lookup fails
    """
    profile = _load_profile(user_id)
    if not profile:
        return dict(DEFAULT_PREFS)

    stored = (profile.get("metadata") or {}).get(PREFERENCES_KEY) or {}
    return {**DEFAULT_PREFS, **stored}


def update_lexybrain_preferences(user_id: str | UUID, prefs: dict[str, Any]) -> bool:
    """
    Merge prefs into the profile's stored preferences, keeping other metadata.

    Returns:
        False when the user has no profile row

    Raises:
        PersistenceError: If the lookup or the update fails
    """
    profile = _load_profile(user_id)
    if not profile:
        logger.warning(f"No profile found for user {user_id}")
        return False

    metadata = dict(profile.get("metadata") or {})
    metadata[PREFERENCES_KEY] = {**(metadata.get(PREFERENCES_KEY) or {}), **prefs}

    supabase = get_supabase()
    try:
        supabase.table("user_profiles").update({"metadata": metadata}).eq(
            "id", profile["id"]
        ).execute()
    except Exception as e:
        logger.error(f"Failed to update preferences for user {user_id}: {e}")
        raise PersistenceError(f"Failed to update preferences: {e}") from e

    logger.info(f"Updated LexyBrain preferences for user {user_id}: {sorted(prefs)}")
    return True
