"""Bounded, append-only audit trail for authorization decisions.

Entries live in a ring buffer: once `max_entries` is reached the oldest
entry is evicted on every append. Each append also emits a structured log
line on the `sekolah_rbac.audit` logger for external aggregation.

When a storage collaborator is supplied, the buffer is restored from it on
construction and written back by `persist()`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone

from pydantic import TypeAdapter

from sekolah_rbac.schemas.access import AuditLogEntry
from sekolah_rbac.storage.blobs import BlobStorage, load_json, save_json

logger = logging.getLogger("sekolah_rbac.audit")

DEFAULT_MAX_ENTRIES = 1000

_entries_adapter = TypeAdapter(list[AuditLogEntry])


def _as_utc(value: datetime | None) -> datetime | None:
    # Naive datetimes are taken to be UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuditTrail:
    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        storage: BlobStorage | None = None,
        storage_key: str = "sekolah_rbac:audit_logs",
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._storage = storage
        self._storage_key = storage_key
        self._lock = threading.Lock()
        self._entries: deque[AuditLogEntry] = deque(maxlen=max_entries)

        if storage is not None:
            restored = load_json(storage, storage_key, _entries_adapter) or []
            self._entries.extend(restored)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

        logger.info(
            "Permission check",
            extra={
                "timestamp": entry.timestamp.isoformat(),
                "user_id": entry.user_id,
                "role": entry.role,
                "extra_role": entry.extra_role,
                "resource": entry.resource,
                "action": entry.action,
                "granted": entry.granted,
            },
        )

    def snapshot(self) -> list[AuditLogEntry]:
        """Entries in append order (oldest first)."""
        with self._lock:
            return list(self._entries)

    def query(
        self,
        user_id: str | None = None,
        role: str | None = None,
        granted: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditLogEntry]:
        """Filtered entries, newest first."""
        start = _as_utc(start)
        end = _as_utc(end)
        logs = self.snapshot()

        if user_id:
            logs = [log for log in logs if log.user_id == user_id]
        if role:
            logs = [log for log in logs if log.role == role]
        if granted is not None:
            logs = [log for log in logs if log.granted == granted]
        if start is not None:
            logs = [log for log in logs if log.timestamp >= start]
        if end is not None:
            logs = [log for log in logs if log.timestamp <= end]

        # Reverse first so equal timestamps keep "latest append first"
        logs.reverse()
        return sorted(logs, key=lambda log: log.timestamp, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def persist(self) -> bool:
        """Write the current buffer to storage. No-op without storage."""
        if self._storage is None:
            return True
        return save_json(self._storage, self._storage_key, _entries_adapter, self.snapshot())
