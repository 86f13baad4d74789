"""
CacheManager module for TTL-stamped cache entries over a pluggable key -> JSON store
"""

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import duckdb

from catalog_adapter.database_manager import DatabaseConnectionError, DatabaseManager

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400  # 24 hours


class CacheStoreError(Exception):
    """Raised by a store when a read or write cannot be completed"""
    pass


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and its freshness bookkeeping"""
    value: Any
    expires_at: float
    updated_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_record(self) -> Dict[str, Any]:
        return {'value': self.value, 'expires_at': self.expires_at, 'updated_at': self.updated_at}

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            value=record['value'],
            expires_at=float(record['expires_at']),
            updated_at=float(record.get('updated_at', 0.0))
        )


class PersistentStore(Protocol):
    """Key -> JSON-compatible record store backing the cache"""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, record: Dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self, prefix: str = '') -> List[str]:
        ...

    def clear(self) -> None:
        ...


class InMemoryStore:
    """Process-local store; records are copied on the way in and out"""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def set(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def keys(self, prefix: str = '') -> List[str]:
        with self._lock:
            return sorted(key for key in self._records if key.startswith(prefix))

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class DuckDBStore:
    """Durable store persisting records in the DuckDB cache_entries table"""

    def __init__(self, database_manager: DatabaseManager):
        self.db_manager = database_manager
        self.db_manager.create_tables()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.db_manager.fetch_entry(key)
            if row is None:
                return None
            value_json, expires_at, updated_at = row
            return {'value': json.loads(value_json), 'expires_at': expires_at, 'updated_at': updated_at}
        except (duckdb.Error, DatabaseConnectionError, json.JSONDecodeError) as e:
            raise CacheStoreError(f"Failed to read cache entry {key}: {e}") from e

    def set(self, key: str, record: Dict[str, Any]) -> None:
        try:
            self.db_manager.upsert_entry(
                key,
                json.dumps(record['value']),
                record['expires_at'],
                record.get('updated_at', time.time())
            )
        except (duckdb.Error, DatabaseConnectionError, TypeError, ValueError) as e:
            raise CacheStoreError(f"Failed to write cache entry {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return self.db_manager.delete_entry(key)
        except (duckdb.Error, DatabaseConnectionError) as e:
            raise CacheStoreError(f"Failed to delete cache entry {key}: {e}") from e

    def keys(self, prefix: str = '') -> List[str]:
        try:
            return self.db_manager.list_keys(prefix)
        except (duckdb.Error, DatabaseConnectionError) as e:
            raise CacheStoreError(f"Failed to list cache keys: {e}") from e

    def clear(self) -> None:
        try:
            self.db_manager.clear_entries()
        except (duckdb.Error, DatabaseConnectionError) as e:
            raise CacheStoreError(f"Failed to clear cache: {e}") from e


class CacheManager:
    """
    Owns cache entries and their expiry bookkeeping

    Entries are never evicted here: expiry is judged at read time by callers,
    and an expired entry is still returned by get_entry so it can serve as
    stale fallback data.
    """

    def __init__(self, store: Optional[PersistentStore] = None,
                 default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.store = store if store is not None else InMemoryStore()
        self.default_ttl_seconds = default_ttl_seconds
        self.clock = clock
        self.hits = 0
        self.misses = 0
        self.write_failures = 0
        self._stats_lock = threading.Lock()

    @staticmethod
    def entity_key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    @staticmethod
    def collection_key(namespace: str, name: str = 'all') -> str:
        return f"{namespace}s:{name}"

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Retrieve a cached entry whether or not it has expired

        Args:
            key: Cache key

        Returns:
            CacheEntry if present and readable, None otherwise
        """
        try:
            record = self.store.get(key)
            entry = CacheEntry.from_record(record) if record is not None else None
        except (CacheStoreError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Cache read failed for {key}, treating as miss: {e}")
            entry = None

        with self._stats_lock:
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1

        return entry

    def set_entry(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> Optional[CacheEntry]:
        """
        Store a value with expires_at = now + ttl

        Args:
            key: Cache key
            value: JSON-compatible value
            ttl_seconds: Override of the default TTL

        Returns:
            The stored CacheEntry, or None if the store rejected the write
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self.clock()
        entry = CacheEntry(value=value, expires_at=now + ttl, updated_at=now)

        try:
            self.store.set(key, entry.to_record())
        except CacheStoreError as e:
            # Failed to write cache, continue without caching
            logger.error(f"Cache write failed for {key}: {e}")
            with self._stats_lock:
                self.write_failures += 1
            return None

        return entry

    def is_expired(self, entry: CacheEntry) -> bool:
        return entry.is_expired(self.clock())

    def delete(self, key: str) -> bool:
        try:
            return self.store.delete(key)
        except CacheStoreError as e:
            logger.error(f"Cache delete failed for {key}: {e}")
            return False

    def keys(self, prefix: str = '') -> List[str]:
        try:
            return self.store.keys(prefix)
        except CacheStoreError as e:
            logger.error(f"Cache key listing failed: {e}")
            return []

    def clear_cache(self) -> None:
        """
        Remove all entries and reset statistics
        """
        try:
            self.store.clear()
        except CacheStoreError as e:
            logger.error(f"Cache clear failed: {e}")
        with self._stats_lock:
            self.hits = 0
            self.misses = 0
            self.write_failures = 0

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return {
                'keys': len(self.keys()),
                'hits': self.hits,
                'misses': self.misses,
                'write_failures': self.write_failures
            }
