"""Key/value blob storage used by the custom-role store and the audit trail.

The engine only needs "get/set a named blob of bytes". Every backend
follows the same contract:

  load(key)        → bytes, or None when the key is absent or unreadable
  save(key, data)  → True on success, False on failure

Backend errors are logged and swallowed here so a storage hiccup never
propagates into an authorization decision.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, TypeVar

import redis
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from sekolah_rbac.config import Settings
from sekolah_rbac.database import Base, make_engine, make_session_factory
from sekolah_rbac.models.blob import StoredBlob

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlobStorage(Protocol):
    def load(self, key: str) -> bytes | None: ...

    def save(self, key: str, data: bytes) -> bool: ...


class MemoryBlobStorage:
    """In-process storage. Default backend and the one used in tests."""

    def __init__(self, initial: dict[str, bytes] | None = None):
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, data: bytes) -> bool:
        with self._lock:
            self._data[key] = bytes(data)
        return True


class RedisBlobStorage:
    """Blobs stored as plain Redis string values."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBlobStorage":
        return cls(redis.Redis.from_url(url, decode_responses=False))

    def load(self, key: str) -> bytes | None:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis error reading {key} (treating as empty): {e}")
            return None
        if value is None:
            return None
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    def save(self, key: str, data: bytes) -> bool:
        try:
            self._client.set(key, data)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis error writing {key}: {e}")
            return False


class DatabaseBlobStorage:
    """Blobs stored as rows of the `stored_blobs` table."""

    def __init__(self, url: str, create_tables: bool = False, echo: bool = False):
        self._engine = make_engine(url, echo=echo)
        self._session = make_session_factory(self._engine)
        if create_tables:
            Base.metadata.create_all(self._engine)

    def load(self, key: str) -> bytes | None:
        try:
            with self._session() as session:
                row = session.execute(
                    select(StoredBlob.value).where(StoredBlob.key == key)
                ).scalar_one_or_none()
                return row
        except SQLAlchemyError as e:
            logger.warning(f"Database error reading {key} (treating as empty): {e}")
            return None

    def save(self, key: str, data: bytes) -> bool:
        try:
            with self._session.begin() as session:
                blob = session.get(StoredBlob, key)
                if blob is None:
                    session.add(StoredBlob(key=key, value=data))
                else:
                    blob.value = data
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database error writing {key}: {e}")
            return False

    def dispose(self) -> None:
        self._engine.dispose()


# ── JSON helpers ────────────────────────────────────────────

def load_json(storage: BlobStorage, key: str, adapter: TypeAdapter[T]) -> T | None:
    """Load and validate a JSON blob. Malformed data is treated as absent."""
    try:
        raw = storage.load(key)
    except Exception as e:
        logger.error(f"Storage error reading {key} (treating as empty): {e}")
        return None
    if not raw:
        return None
    try:
        return adapter.validate_json(raw)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Discarding malformed blob {key}: {e}")
        return None


def save_json(storage: BlobStorage, key: str, adapter: TypeAdapter[Any], value: Any) -> bool:
    try:
        data = adapter.dump_json(value)
    except (TypeError, ValueError) as e:
        logger.error(f"Could not serialize blob {key}: {e}")
        return False
    try:
        ok = storage.save(key, data)
    except Exception as e:
        logger.error(f"Storage error writing {key}: {e}")
        return False
    if not ok:
        logger.warning(f"Failed to persist blob {key}")
    return ok


# ── Factory ─────────────────────────────────────────────────

def build_storage(settings: Settings) -> BlobStorage:
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return MemoryBlobStorage()
    if backend == "redis":
        return RedisBlobStorage.from_url(settings.redis_url)
    if backend == "database":
        return DatabaseBlobStorage(settings.database_url_sync)
    raise ValueError(f"Unknown storage backend '{settings.storage_backend}'")
