"""Key/value stores backing client-side state such as the guest quota."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from deal_assistant.log import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Minimal persistent mapping of string keys to JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileKeyValueStore(KeyValueStore):
    """Stores all keys in a single JSON object file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def get(self, key: str) -> Any | None:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("kv_store_corrupt", path=str(self._path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}
