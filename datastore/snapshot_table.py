from __future__ import annotations
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from pydantic import ValidationError

from app.schemas import PersistedSnapshot
from settings import get_settings

logger = logging.getLogger(__name__)


class SnapshotTable:
    """Key-value table of snapshots keyed by device id, mirrored to a JSON file.

    Disk failures never reach the caller: unreadable files load as an empty
    table and failed writes keep the in-memory state.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, PersistedSnapshot] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            try:
                persistence_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                logger.exception(
                    "Unable to create snapshot directory", extra={"path": str(persistence_path)}
                )
            self._load_from_disk()

    def put_item(self, item: PersistedSnapshot) -> None:
        with self._lock:
            self._items[item.device_id] = item.model_copy(deep=True)
            self._persist()

    def get_item(self, key: str) -> Optional[PersistedSnapshot]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def delete_item(self, key: str) -> bool:
        with self._lock:
            if self._items.pop(key, None) is None:
                return False
            self._persist()
            return True

    def scan(self) -> list[PersistedSnapshot]:
        """Return deep copies of all stored snapshots."""

        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._persist()

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            device_id: item.model_dump(mode="json") for device_id, item in self._items.items()
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError:
            logger.exception(
                "Failed to write snapshot table", extra={"path": str(self.persistence_path)}
            )

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.exception(
                "Failed to read snapshot table, starting empty",
                extra={"path": str(self.persistence_path)},
            )
            data = {}

        if not isinstance(data, dict):
            logger.error(
                "Snapshot table has unexpected layout, starting empty",
                extra={"path": str(self.persistence_path)},
            )
            return

        for device_id, payload in data.items():
            try:
                snapshot = PersistedSnapshot.model_validate(payload)
            except ValidationError:
                logger.warning(
                    "Discarding malformed snapshot",
                    extra={"device_id": device_id, "path": str(self.persistence_path)},
                )
                continue
            if snapshot.device_id != device_id:
                logger.warning(
                    "Snapshot key does not match its device id, using the device id",
                    extra={"device_id": snapshot.device_id, "path": str(self.persistence_path)},
                )
            self._items[snapshot.device_id] = snapshot


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> SnapshotTable:
    settings = get_settings()
    table_name = "snapshots" if name is None else name
    table_path = settings.snapshot_store_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return SnapshotTable(name=table_name, persistence_path=persistence)
