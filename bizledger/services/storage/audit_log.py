"""
JSON-lines audit log.

One AuditEvent per line, appended. Never rewritten.
"""

import json
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from bizledger.models.audit import AuditEvent
from bizledger.services.storage.interface import AuditStorageInterface, StorageError


class JsonlAuditStorage(AuditStorageInterface):
    """Append-only audit log on local disk."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(event.model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(f"Could not append audit event: {e}") from e
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        if not self._path.exists():
            return []

        events = []
        with self._path.open(encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(AuditEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    # Skip torn lines from an interrupted append
                    continue

        events.reverse()
        return events[:limit]
