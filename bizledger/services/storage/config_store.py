"""
Key-Value Configuration Stores

Hold the per-user category list (`categories_<user_id>`) and the cached
AI-context text (`business_context_<user_id>`).

The JSON file store keeps every key in one document. Writes go to a
`.tmp` sibling first and are moved into place with os.replace, so a
crash mid-write leaves the previous document intact.
"""

import contextlib
import copy
import json
import os
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from bizledger.services.storage.interface import ConfigStoreInterface, StorageError


logger = structlog.get_logger(__name__)


def categories_key(user_id: str) -> str:
    return f"categories_{user_id}"


def business_context_key(user_id: str) -> str:
    return f"business_context_{user_id}"


class InMemoryConfigStore(ConfigStoreInterface):
    """Process-local store, used in tests and when no path is configured."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        super().__init__()
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def _read(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def _write(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class JsonFileConfigStore(ConfigStoreInterface):
    """Single JSON document on local disk."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self._path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read config store {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Config store {self._path} is not a JSON object")
        return data

    async def _read(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    async def _write(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value

        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(data, ensure_ascii=False, indent=2, default=str),
                encoding="utf-8",
            )
            os.replace(tmp, self._path)
        except (OSError, TypeError) as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            logger.error("config_store_write_failed", path=str(self._path), key=key, error=str(e))
            raise StorageError(f"Could not write config store {self._path}: {e}") from e
