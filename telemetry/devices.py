from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from settings import get_settings

logger = logging.getLogger(__name__)

UNKNOWN_SERIAL = "unknown"


class DeviceRegistry:
    """Static mapping of telemetry device ids to vehicle serial numbers."""

    def __init__(self, mapping: Optional[Mapping[str, str]] = None) -> None:
        self._mapping: Dict[str, str] = dict(mapping or {})

    @classmethod
    def from_file(cls, path: Path) -> "DeviceRegistry":
        if not path.exists():
            logger.warning("Device map not found", extra={"path": str(path)})
            return cls()
        try:
            data = json.loads(path.read_text() or "{}")
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read device map", extra={"path": str(path)})
            return cls()
        if not isinstance(data, dict):
            logger.error("Device map must be a JSON object", extra={"path": str(path)})
            return cls()
        return cls({str(key): str(value) for key, value in data.items()})

    def serial_number_of(self, device_id: str) -> str:
        return self._mapping.get(device_id, UNKNOWN_SERIAL)

    def is_known_device(self, device_id: str) -> bool:
        return device_id in self._mapping

    def all_devices(self) -> List[str]:
        return list(self._mapping)


@lru_cache
def build_default_registry(path: Optional[str] = None) -> DeviceRegistry:
    settings = get_settings()
    map_path = settings.device_map_path if path is None else path
    if not map_path:
        return DeviceRegistry()
    return DeviceRegistry.from_file(Path(map_path))
