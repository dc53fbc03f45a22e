"""Supabase client for the tracking backend."""

import logging
from functools import lru_cache
from supabase import create_client, Client
from ..config import settings


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase Client instance if configured, None otherwise.
        Note: This does not test the connection - actual queries may fail with network errors.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logging.warning("Supabase credentials not configured (missing URL or key)")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logging.error(f"Failed to create Supabase client: {e}")
        return None


# Tables used by the tracker:
#
#   tracking_records(key text primary key, value jsonb, updated_at timestamptz)
#       route progress per "{route_id}:{driver_id}:{date}", recalculated
#       stop lists per "route:{route_id}", GPS logs per "gps_log:{date}"
#   routes, route_stops, warehouses, vehicles
#       read-only registries maintained by the fleet management screens
