"""Key-value stores for tracking records."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from ..config import settings
from ..db.supabase import get_supabase_client

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """The backing store could not be reached or refused the operation."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class FileKeyValueStore:
    """One JSON document per key under ``<data_root>/tracking``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.records_root = self.root / "tracking"
        self.records_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.records_root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Cannot read record '{key}': {e}") from e

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            with self._lock:
                with tmp_path.open("w", encoding="utf-8") as handle:
                    json.dump(value, handle, ensure_ascii=False, indent=2)
                tmp_path.replace(path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write record '{key}': {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        names = (unquote(path.stem) for path in self.records_root.glob("*.json"))
        return sorted(name for name in names if name.startswith(prefix))


class SupabaseKeyValueStore:
    """Records in the ``tracking_records`` table, last write wins."""

    table = "tracking_records"

    def _client(self):
        client = get_supabase_client()
        if client is None:
            raise StoreUnavailableError("Supabase is not configured.")
        return client

    def get(self, key: str) -> Any | None:
        try:
            response = self._client().table(self.table).select("value").eq("key", key).limit(1).execute()
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Cannot read record '{key}': {e}") from e
        if not response.data:
            return None
        return response.data[0]["value"]

    def put(self, key: str, value: Any) -> None:
        row = {"key": key, "value": value, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            self._client().table(self.table).upsert(row, on_conflict="key").execute()
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Cannot write record '{key}': {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        try:
            response = self._client().table(self.table).select("key").like("key", f"{prefix}%").execute()
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Cannot list records with prefix '{prefix}': {e}") from e
        return sorted(row["key"] for row in response.data or [])


def build_store() -> KeyValueStore:
    if settings.store_backend == "supabase":
        return SupabaseKeyValueStore()
    return FileKeyValueStore()
