"""Persistence gateway for route progress, recalculated schedules and GPS logs."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Any

from ..config import settings
from ..models.domain import RouteProgress, Stop, progress_key
from .records import progress_from_record, progress_to_record, stop_from_record, stop_to_record
from .store import KeyValueStore

ROUTE_PREFIX = "route:"
GPS_LOG_PREFIX = "gps_log:"

logger = logging.getLogger(__name__)


def route_stops_key(route_id: str) -> str:
    return f"{ROUTE_PREFIX}{route_id}"


def gps_log_key(day: date | str) -> str:
    return f"{GPS_LOG_PREFIX}{day.isoformat() if isinstance(day, date) else day}"


class PersistenceGateway:
    """Loads and saves tracking records through a key-value store.

    A failed write is kept in memory and retried on the next write or on
    ``flush()``. Until then the in-memory copy is what readers get back.
    """

    def __init__(self, store: KeyValueStore, max_gps_log_entries: int | None = None) -> None:
        self.store = store
        self.max_gps_log_entries = max_gps_log_entries or settings.max_gps_log_entries
        self._pending: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._key_locks: dict[str, threading.RLock] = {}

    @property
    def has_pending_writes(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def _key_lock(self, key: str) -> threading.RLock:
        # Writes to different keys never wait on each other's store I/O.
        with self._lock:
            return self._key_locks.setdefault(key, threading.RLock())

    def _put(self, key: str, value: Any) -> bool:
        with self._key_lock(key):
            try:
                self.store.put(key, value)
            except Exception as e:
                logger.error(f"Failed to persist '{key}', keeping it in memory until the next write: {e}")
                with self._lock:
                    self._pending[key] = value
                return False
            with self._lock:
                self._pending.pop(key, None)
            return True

    def _write(self, key: str, value: Any) -> bool:
        written = self._put(key, value)
        if written and self.has_pending_writes:
            self._flush_pending()
        return written

    def _read(self, key: str) -> Any | None:
        with self._lock:
            if key in self._pending:
                return self._pending[key]
        try:
            return self.store.get(key)
        except Exception as e:
            logger.error(f"Failed to load '{key}': {e}")
            return None

    def _flush_pending(self) -> bool:
        with self._lock:
            pending = list(self._pending.items())
        for key, value in pending:
            with self._key_lock(key):
                try:
                    self.store.put(key, value)
                except Exception as e:
                    logger.warning(f"Retry of pending write '{key}' failed: {e}")
                    return False
                with self._lock:
                    if self._pending.get(key) is value:
                        del self._pending[key]
        return True

    def flush(self) -> bool:
        """Retry unflushed writes. Returns True when nothing is left pending."""
        if not self.has_pending_writes:
            return True
        flushed = self._flush_pending()
        if flushed:
            logger.info("Flushed pending tracking records")
        return flushed

    def save_progress(self, progress: RouteProgress) -> bool:
        return self._write(progress.key, progress_to_record(progress))

    def load_progress(self, route_id: str, driver_id: str, day: date | str) -> RouteProgress | None:
        record = self._read(progress_key(route_id, driver_id, day))
        if not record:
            return None
        try:
            return progress_from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Corrupt route progress record for route {route_id}, driver {driver_id}, {day}: {e}")
            return None

    def list_progress(self, day: date | str) -> list[RouteProgress]:
        day_str = day.isoformat() if isinstance(day, date) else day
        try:
            keys = self.store.keys()
        except Exception as e:
            logger.error(f"Failed to list tracking records: {e}")
            keys = []
        with self._lock:
            keys = sorted(set(keys) | set(self._pending))

        progresses: list[RouteProgress] = []
        for key in keys:
            if key.startswith((ROUTE_PREFIX, GPS_LOG_PREFIX)) or not key.endswith(f":{day_str}"):
                continue
            record = self._read(key)
            if not record:
                continue
            try:
                progresses.append(progress_from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt route progress record '{key}': {e}")
        return progresses

    def save_route_stops(self, route_id: str, stops: list[Stop]) -> bool:
        return self._write(route_stops_key(route_id), [stop_to_record(stop) for stop in stops])

    def load_route_stops(self, route_id: str) -> list[Stop] | None:
        records = self._read(route_stops_key(route_id))
        if not records:
            return None
        try:
            return [stop_from_record(record) for record in records]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Corrupt stop schedule for route {route_id}: {e}")
            return None

    def append_gps_log(self, entry: dict[str, Any]) -> None:
        key = gps_log_key(entry["date"])
        with self._key_lock(key):
            logs = list(self._read(key) or [])
            logs.append(entry)
            if len(logs) > self.max_gps_log_entries:
                del logs[: len(logs) - self.max_gps_log_entries]
            written = self._put(key, logs)
        if written and self.has_pending_writes:
            self._flush_pending()

    def get_gps_logs(self, day: date | str) -> list[dict[str, Any]]:
        return list(self._read(gps_log_key(day)) or [])

    def export_tracking_data(self, day: date | str) -> dict[str, Any]:
        return {
            "routeProgresses": [progress_to_record(progress) for progress in self.list_progress(day)],
            "gpsLogs": self.get_gps_logs(day),
            "exportDate": datetime.now(timezone.utc).isoformat(),
        }
