"""
govcore/protocol/storage.py

Persistence layer for governance records.

Provides:
1. Storage backends - get/put/delete/list keyed by id (memory or disk)
2. RecordStore - typed records with JSON serialization and an explicit
   invalidate-on-write read cache in front of the backend

Used by:
- DelegationLedger - delegation records (retained after revocation for audit)
- ConsensusValidator - validation items (retained after finalization)
"""

import os
import json
import time
import logging
import hashlib
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar
from abc import ABC, abstractmethod

import trio

logger = logging.getLogger("govcore.protocol.storage")


# ============================================================================
# CONSTANTS
# ============================================================================

STORAGE_KEY_PREFIX = "govcore:"

# Default storage path for FileBackend
DEFAULT_STORAGE_DIR = Path.home() / ".govcore" / "storage"

# Suffix of FileBackend writes not yet swapped into place
TEMP_SUFFIX = ".tmp"


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> bool:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileBackend(StorageBackend):
    """
    Local file storage backend. Survives process restarts.

    Each value lives in a sha256-named .dat file and metadata.json indexes
    the keys. Both are rewritten through a temporary file in the same
    directory and swapped in with os.replace, so an interrupted write
    leaves the previous version readable. Blocking file I/O runs in a
    worker thread.
    """

    def __init__(self, storage_dir: Path = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._metadata_file = self.storage_dir / "metadata.json"
        self._remove_stale_temp_files()
        self._metadata: Dict[str, dict] = self._load_metadata()
        self._write_lock = trio.Lock()

    def _load_metadata(self) -> Dict[str, dict]:
        """Load the key index from disk."""
        if self._metadata_file.exists():
            try:
                with open(self._metadata_file, "r") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load metadata: {e}")
        return {}

    def _remove_stale_temp_files(self) -> None:
        # Left behind only when a process died between write and replace
        for stale in self.storage_dir.glob(f"*{TEMP_SUFFIX}"):
            logger.warning(f"Removing unfinished write {stale.name}")
            stale.unlink()

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=TEMP_SUFFIX
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    async def _save_metadata(self) -> None:
        """Persist the index. Caller holds the write lock."""
        data = json.dumps(self._metadata).encode()
        await trio.to_thread.run_sync(self._write_atomic, self._metadata_file, data)

    def _key_to_path(self, key: str) -> Path:
        # Hash keeps arbitrary ids filesystem-safe
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.dat"

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._metadata:
            return None
        try:
            return await trio.to_thread.run_sync(self._key_to_path(key).read_bytes)
        except FileNotFoundError:
            logger.warning(f"Indexed key {key} has no data file")
            return None

    async def put(self, key: str, value: bytes) -> bool:
        path = self._key_to_path(key)
        async with self._write_lock:
            await trio.to_thread.run_sync(self._write_atomic, path, value)
            previous = self._metadata.get(key)
            self._metadata[key] = {
                "file": path.name,
                "size": len(value),
                "updated_at": time.time(),
            }
            try:
                await self._save_metadata()
            except OSError:
                if previous is None:
                    del self._metadata[key]
                else:
                    self._metadata[key] = previous
                raise
        return True

    async def delete(self, key: str) -> bool:
        async with self._write_lock:
            entry = self._metadata.pop(key, None)
            if entry is None:
                return False
            try:
                await self._save_metadata()
            except OSError:
                self._metadata[key] = entry
                raise
            # Index first: a crash here orphans a file, never a key
            await trio.to_thread.run_sync(
                lambda: self._key_to_path(key).unlink(missing_ok=True)
            )
        return True

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._metadata if key.startswith(prefix)]


# ============================================================================
# RECORD STORE
# ============================================================================

T = TypeVar('T')


class RecordStore(Generic[T]):
    """
    Typed record storage with an invalidate-on-write cache.

    Reads are served from the cache when possible and repopulate it from
    the backend on a miss. Every write goes to the backend first and then
    drops the cached entry, so a read never observes a value older than
    the latest completed write. The cache holds serialized bytes: each
    read returns a fresh object and callers never share mutable state
    through it.
    """

    def __init__(
        self,
        namespace: str,
        backend: Optional[StorageBackend] = None,
        serializer: Callable[[T], bytes] = None,
        deserializer: Callable[[bytes], T] = None,
    ):
        """
        Initialize record store.

        Args:
            namespace: Key namespace for isolation
            backend: Storage backend (defaults to MemoryBackend)
            serializer: Function to convert records to bytes
            deserializer: Function to convert bytes to records
        """
        self.namespace = namespace
        self._backend = backend or MemoryBackend()

        self._serialize = serializer or self._default_serialize
        self._deserialize = deserializer or self._default_deserialize

        self._cache: Dict[str, bytes] = {}
        self._keys_cache: Optional[List[str]] = None
        # Bumped on every invalidation; a read that raced a write must not
        # repopulate the cache with the value it fetched before the write.
        self._generation = 0
        self._hits = 0
        self._misses = 0

    def _default_serialize(self, obj: Any) -> bytes:
        """Default JSON serialization."""
        if hasattr(obj, 'to_dict'):
            return json.dumps(obj.to_dict()).encode()
        return json.dumps(obj).encode()

    def _default_deserialize(self, data: bytes) -> Any:
        """Default JSON deserialization."""
        return json.loads(data.decode())

    def _make_key(self, key: str) -> str:
        return f"{STORAGE_KEY_PREFIX}{self.namespace}:{key}"

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one cached entry, or the whole cache when key is None."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)
        self._keys_cache = None
        self._generation += 1

    async def get(self, key: str) -> Optional[T]:
        """
        Get a record by id.

        Returns:
            Deserialized record or None
        """
        data = self._cache.get(key)
        if data is not None:
            self._hits += 1
            return self._deserialize(data)

        self._misses += 1
        generation = self._generation
        data = await self._backend.get(self._make_key(key))
        if data is None:
            return None
        if generation == self._generation:
            self._cache[key] = data
        return self._deserialize(data)

    async def put(self, key: str, value: T) -> bool:
        """Store a record, then invalidate its cached copy."""
        data = self._serialize(value)
        try:
            return await self._backend.put(self._make_key(key), data)
        finally:
            self.invalidate(key)

    async def delete(self, key: str) -> bool:
        try:
            return await self._backend.delete(self._make_key(key))
        finally:
            self.invalidate(key)

    async def list_keys(self) -> List[str]:
        """List record ids in this namespace."""
        if self._keys_cache is not None:
            return list(self._keys_cache)
        generation = self._generation
        prefix = self._make_key("")
        keys = sorted(k[len(prefix):] for k in await self._backend.list_keys(prefix))
        if generation == self._generation:
            self._keys_cache = keys
        return list(keys)

    async def values(self) -> List[T]:
        """All records in this namespace."""
        records = []
        for key in await self.list_keys():
            record = await self.get(key)
            if record is not None:
                records.append(record)
        return records

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "namespace": self.namespace,
            "cached_records": len(self._cache),
            "cache_hits": self._hits,
            "cache_misses": self._misses,
        }
