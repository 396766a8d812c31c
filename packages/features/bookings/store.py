from __future__ import annotations

from typing import Union

from services.gateway.settings import Settings

from .json_store import JsonStore
from .supabase_store import StoreError, SupabaseStore

Store = Union[JsonStore, SupabaseStore]

__all__ = ["JsonStore", "Store", "StoreError", "SupabaseStore", "get_store_from_settings"]


def get_store_from_settings(settings: Settings) -> Store:
    """Pick the backing store.

    STORE_BACKEND=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY;
    anything else falls back to the JSON file under DATA_DIR.
    """
    if settings.store_backend == "supabase":
        if not (settings.supabase_url and settings.supabase_service_role_key):
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the supabase store.")
        return SupabaseStore(
            settings.supabase_url,
            settings.supabase_service_role_key,
            anon_key=settings.supabase_anon_key,
        )
    return JsonStore(settings.data_dir / "bookings_db.json")
