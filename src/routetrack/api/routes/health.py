"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_travel_time_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.estimator.google_client import check_health as travel_time_health_check
    return travel_time_health_check


@router.get("/health/travel-time", status_code=status.HTTP_200_OK)
def health_travel_time() -> dict:
    """Check the travel-time provider."""
    try:
        travel_time_health_check = _get_travel_time_health_check()
        status_flag = travel_time_health_check()
        return {"service": "travel-time", "healthy": status_flag}
    except Exception as e:
        return {"service": "travel-time", "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and tracking record storage status."""
    from ...config import settings
    from ...db.supabase import get_supabase_client

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "store_backend": settings.store_backend,
            "message": "Supabase not configured. Set RT_SUPABASE_URL and RT_SUPABASE_KEY environment variables.",
        }

    try:
        supabase.table("tracking_records").select("key", count="exact").limit(1).execute()
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "store_backend": settings.store_backend,
            "tracking_records_table_exists": False,
            "error": str(exc),
            "message": "Database connection failed or tracking_records table may not exist.",
        }

    return {
        "configured": True,
        "connected": True,
        "store_backend": settings.store_backend,
        "tracking_records_table_exists": True,
        "message": "Database connected.",
    }
