"""Read active prompt instructions from lexybrain_prompt_configs."""

from typing import Any

from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)

SYSTEM_PROMPT_NAME = "ask_lexybrain_system"


def get_system_prompt() -> str | None:
    """Active global system instructions, or None when not configured."""
    supabase = get_supabase()
    response = (
        supabase.table("lexybrain_prompt_configs")
        .select("system_instructions")
        .eq("is_active", True)
        .eq("name", SYSTEM_PROMPT_NAME)
        .maybe_single()
        .execute()
    )
    if not response or not response.data:
        return None
    return response.data.get("system_instructions")


def get_capability_prompt(capability: str) -> dict[str, Any] | None:
    """Active role instructions + constraints for a capability, or None."""
    supabase = get_supabase()
    response = (
        supabase.table("lexybrain_prompt_configs")
        .select("system_instructions, constraints")
        .eq("is_active", True)
        .eq("type", capability)
        .maybe_single()
        .execute()
    )
    if not response or not response.data:
        return None
    return {
        "system_instructions": response.data.get("system_instructions") or "",
        "constraints": response.data.get("constraints") or {},
    }
