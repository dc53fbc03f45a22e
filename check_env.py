#!/usr/bin/env python3
"""Helper script to check the .env file and the settings the tracker will run with."""

from pathlib import Path
import os
import sys

ENV_TEMPLATE = """# Supabase (durable tracking records and the route/vehicle registry)
RT_SUPABASE_URL=https://your-project-id.supabase.co
RT_SUPABASE_KEY=your-service-role-key-here
RT_STORE_BACKEND=supabase

# Travel-time estimates (Google Directions); leave empty to use the fallback duration
RT_GOOGLE_MAPS_API_KEY=

# GPS provider (Trak-4); leave empty to disable polling
RT_GPS_API_KEY=
RT_AUTO_START_POLLING=false

# Local time zone for planned times and the operating window
RT_TIMEZONE=America/Los_Angeles
RT_DATA_ROOT=./data
"""

SECRET_NAMES = ("RT_SUPABASE_KEY", "RT_GOOGLE_MAPS_API_KEY", "RT_GPS_API_KEY")


def _mask(line: str) -> str:
    name, _, value = line.partition("=")
    value = value.strip()
    if name.strip() in SECRET_NAMES and len(value) > 20:
        return f"{name}={value[:8]}...{value[-4:]}"
    return line


def main():
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("Route Progress Tracker environment check")
    print("=" * 60)

    if not env_file.exists():
        env_file.write_text(ENV_TEMPLATE, encoding="utf-8")
        print(f"Created template .env file at: {env_file}")
        print("Edit it and run this script again.")
        return

    print(f"Found .env file at: {env_file}")
    print("-" * 60)
    for line in env_file.read_text(encoding="utf-8").splitlines():
        print(_mask(line))
    print("-" * 60)

    for name in ("RT_SUPABASE_URL", "RT_SUPABASE_KEY", "RT_GOOGLE_MAPS_API_KEY", "RT_GPS_API_KEY"):
        print(f"{name} in process environment: {'yes' if os.getenv(name) else 'no'}")
    print()

    try:
        sys.path.insert(0, str(project_root / "src"))
        from routetrack.config import settings
    except Exception as e:
        print(f"Error loading config: {e}")
        print("Make sure you're running this from the project root directory")
        return

    print(f"Store backend:      {settings.store_backend}")
    print(f"Supabase:           {'configured' if settings.supabase_url and settings.supabase_key else 'not configured'}")
    print(f"Travel-time:        {'Google Directions' if settings.google_maps_api_key else f'fallback {settings.fallback_travel_minutes} min'}")
    print(f"GPS polling:        {'enabled' if settings.gps_api_key else 'disabled'}")
    print(f"Tracking hours:     {settings.tracking_start_hour}:00-{settings.tracking_end_hour}:59 ({settings.timezone})")
    if settings.store_backend == "supabase" and not (settings.supabase_url and settings.supabase_key):
        print()
        print("ERROR: RT_STORE_BACKEND=supabase requires RT_SUPABASE_URL and RT_SUPABASE_KEY")


if __name__ == "__main__":
    main()
