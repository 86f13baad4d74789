"""
CacheAsideService module serving entities and collections from cache,
refreshing from injected fetch functions and degrading to stale data on failure
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from catalog_adapter.cache_manager import CacheManager
from catalog_adapter.cancellation import OperationCancelledError
from catalog_adapter.single_flight import SingleFlight

T = TypeVar('T')


class LookupStatus(str, Enum):
    """Where a served value came from"""
    FRESH = "fresh"          # fetched upstream during this call
    CACHED = "cached"        # cache hit, no fetch attempted
    STALE = "stale"          # fetch failed, previously cached value served
    NOT_FOUND = "not_found"  # nothing upstream and nothing cached


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Value returned by the service together with its provenance"""
    value: Optional[T]
    status: LookupStatus

    @property
    def found(self) -> bool:
        return self.status != LookupStatus.NOT_FOUND


def _field_values(entity: Any, field_name: str) -> List[Any]:
    if isinstance(entity, Mapping):
        value = entity.get(field_name)
    else:
        value = getattr(entity, field_name, None)

    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _values_match(candidate: Any, expected: Any, case_insensitive: bool) -> bool:
    if case_insensitive and isinstance(candidate, str) and isinstance(expected, str):
        return candidate.lower() == expected.lower()
    return candidate == expected


class CacheAsideService(Generic[T]):
    """
    Cache-aside service for one entity type

    Reads go to the cache first and return any present entry, expired or
    not; TTL only drives refresh_expired(). On a miss or forced refresh the
    fetch function runs (collapsed per key across threads) and its result is
    written back. A failing fetch never reaches the caller: it becomes the
    last cached value (stale) or NOT_FOUND. Only cancellation propagates.

    When no collection fetch function is configured, the "all" collection is
    accumulated from individual entity fetches instead.
    """

    def __init__(self, cache_manager: CacheManager, namespace: str, key_fn: Callable[[T], str],
                 fetch_one: Optional[Callable[[str], Optional[T]]] = None,
                 fetch_all: Optional[Callable[[], Iterable[T]]] = None,
                 ttl_seconds: Optional[int] = None, collection_name: str = 'all'):
        self.cache_manager = cache_manager
        self.namespace = namespace
        self.key_fn = key_fn
        self.fetch_one = fetch_one
        self.fetch_all = fetch_all
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else cache_manager.default_ttl_seconds
        self.collection_key = cache_manager.collection_key(namespace, collection_name)

        self.logger = logging.getLogger(__name__)
        self._single_flight = SingleFlight()
        self._collection_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = {
            'fetches': 0,
            'fetch_failures': 0,
            'stale_served': 0,
            'not_found': 0
        }

    # ------------------------------------------------------------------
    # Single entities
    # ------------------------------------------------------------------

    def get(self, key: str, force_refresh: bool = False) -> Optional[T]:
        """
        Get one entity by key

        Args:
            key: Entity key (e.g. a slug)
            force_refresh: Bypass the cache and fetch upstream

        Returns:
            Fresh, cached or stale entity; None when not found
        """
        return self.lookup(key, force_refresh).value

    def lookup(self, key: str, force_refresh: bool = False) -> Lookup[T]:
        """
        Same as get() but reports where the value came from

        Args:
            key: Entity key
            force_refresh: Bypass the cache and fetch upstream

        Returns:
            Lookup with value and LookupStatus
        """
        entity_key = self.cache_manager.entity_key(self.namespace, key)

        if not force_refresh:
            entry = self.cache_manager.get_entry(entity_key)
            if entry is not None:
                return Lookup(entry.value, LookupStatus.CACHED)

        if self.fetch_one is None:
            self.logger.warning(f"No fetch function for {self.namespace}; serving cache only for {key}")
            return self._cached_or_not_found(entity_key, LookupStatus.CACHED)

        try:
            value, shared = self._single_flight.do(entity_key, lambda: self._fetch_and_store_one(key))
        except OperationCancelledError:
            raise
        except Exception as e:
            self._record('fetch_failures')
            self.logger.error(f"Failed to fetch {self.namespace} {key}: {e}")
            return self._cached_or_not_found(entity_key, LookupStatus.STALE)

        if shared:
            self.logger.debug(f"Shared in-flight fetch for {self.namespace} {key}")

        if value is None:
            self._record('not_found')
            return Lookup(None, LookupStatus.NOT_FOUND)

        return Lookup(value, LookupStatus.FRESH)

    def refresh(self, key: str) -> Optional[T]:
        """Force a refresh of one entity; falls back exactly like get()"""
        return self.get(key, force_refresh=True)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def get_all(self, force_refresh: bool = False) -> List[T]:
        """
        Get the whole collection

        Args:
            force_refresh: Bypass the cache and fetch upstream

        Returns:
            Fresh, cached or stale collection; empty list when nothing is known
        """
        lookup = self.lookup_all(force_refresh)
        return list(lookup.value) if lookup.value is not None else []

    def lookup_all(self, force_refresh: bool = False) -> Lookup[List[T]]:
        """
        Same as get_all() but reports where the collection came from
        """
        if not force_refresh:
            entry = self.cache_manager.get_entry(self.collection_key)
            if entry is not None:
                return Lookup(entry.value, LookupStatus.CACHED)

        if self.fetch_all is None:
            # The collection cannot be synthesised; never report a partial one as freshly complete
            self.logger.warning(
                f"No collection fetch function for {self.namespace}; returning cached collection"
            )
            return self._cached_or_not_found(self.collection_key, LookupStatus.CACHED)

        try:
            values, shared = self._single_flight.do(self.collection_key, self._fetch_and_store_all)
        except OperationCancelledError:
            raise
        except Exception as e:
            self._record('fetch_failures')
            self.logger.error(f"Failed to fetch {self.collection_key}: {e}")
            return self._cached_or_not_found(self.collection_key, LookupStatus.STALE)

        if shared:
            self.logger.debug(f"Shared in-flight fetch for {self.collection_key}")

        return Lookup(values, LookupStatus.FRESH)

    def refresh_all(self) -> List[T]:
        """Force a refresh of the collection; falls back exactly like get_all()"""
        return self.get_all(force_refresh=True)

    def get_by_filter(self, predicate: Callable[[T], bool]) -> List[T]:
        """
        Filter the currently cached collection in memory; never fetches

        Args:
            predicate: Callable selecting entities

        Returns:
            Matching entities in collection order
        """
        entry = self.cache_manager.get_entry(self.collection_key)
        if entry is None:
            return []
        return [entity for entity in entry.value if predicate(entity)]

    def get_by_field(self, field_name: str, value: Any, case_insensitive: bool = False) -> List[T]:
        """
        Filter the cached collection by exact field equality

        List-valued fields (such as tags) match when any element matches.
        Strings are compared as-is, without trimming.

        Args:
            field_name: Entity field or attribute name
            value: Expected value
            case_insensitive: Compare strings case-insensitively

        Returns:
            Matching entities in collection order
        """
        return self.get_by_filter(
            lambda entity: any(
                _values_match(candidate, value, case_insensitive)
                for candidate in _field_values(entity, field_name)
            )
        )

    def search(self, query: str, fields: Iterable[str] = ('name',)) -> List[T]:
        """
        Case-insensitive substring search over several fields of the cached collection

        A blank query returns the whole cached collection. List-valued fields
        match when any element contains the query. Never fetches.

        Args:
            query: Text to look for
            fields: Entity fields searched, in any order

        Returns:
            Matching entities in collection order
        """
        if not query or not query.strip():
            return self.get_by_filter(lambda entity: True)

        needle = query.lower()
        field_names = tuple(fields)
        return self.get_by_filter(
            lambda entity: any(
                isinstance(candidate, str) and needle in candidate.lower()
                for field_name in field_names
                for candidate in _field_values(entity, field_name)
            )
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def refresh_expired(self) -> int:
        """
        Refresh every cached entity (and the collection) whose TTL has elapsed

        Returns:
            Number of entries refreshed with fresh data
        """
        refreshed = 0
        prefix = self.cache_manager.entity_key(self.namespace, '')

        for entity_key in self.cache_manager.keys(prefix):
            entry = self.cache_manager.get_entry(entity_key)
            if entry is None or not self.cache_manager.is_expired(entry):
                continue

            key = entity_key[len(prefix):]
            if self.lookup(key, force_refresh=True).status == LookupStatus.FRESH:
                refreshed += 1

        collection_entry = self.cache_manager.get_entry(self.collection_key)
        if (self.fetch_all is not None and collection_entry is not None
                and self.cache_manager.is_expired(collection_entry)):
            if self.lookup_all(force_refresh=True).status == LookupStatus.FRESH:
                refreshed += 1

        self.logger.info(f"Refreshed {refreshed} expired {self.namespace} entries")
        return refreshed

    def stats(self) -> Dict[str, int]:
        """Service counters plus the hit/miss counts of the underlying cache"""
        with self._stats_lock:
            counters = dict(self._stats)
        counters['hits'] = self.cache_manager.hits
        counters['misses'] = self.cache_manager.misses
        return counters

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_and_store_one(self, key: str) -> Optional[T]:
        self._record('fetches')
        value = self.fetch_one(key)

        if value is None:
            return None

        # Keys are resolved before any write; a value without a key is a failed fetch
        item_key = self.key_fn(value)

        with self._collection_lock:
            collection = self._collection_with(value, item_key)
            self.cache_manager.set_entry(self.cache_manager.entity_key(self.namespace, key), value, self.ttl_seconds)
            if collection is not None:
                members, ttl = collection
                self.cache_manager.set_entry(self.collection_key, members, ttl)

        return value

    def _fetch_and_store_all(self) -> List[T]:
        self._record('fetches')
        values = list(self.fetch_all())
        keys = [self.key_fn(value) for value in values]

        with self._collection_lock:
            self.cache_manager.set_entry(self.collection_key, values, self.ttl_seconds)

        for item_key, value in zip(keys, values):
            self.cache_manager.set_entry(
                self.cache_manager.entity_key(self.namespace, item_key), value, self.ttl_seconds
            )

        self.logger.info(f"Cached {len(values)} {self.namespace} entries")
        return values

    def _collection_with(self, value: T, item_key: str) -> Optional[Tuple[List[T], int]]:
        """
        Cached collection with one entity appended or replaced, plus the TTL left on it

        Returns None when there is nothing to update: a fetchable collection
        is only ever written whole.
        """
        entry = self.cache_manager.get_entry(self.collection_key)

        if entry is None:
            if self.fetch_all is not None:
                return None
            return [value], self.ttl_seconds

        members = list(entry.value)
        for index, member in enumerate(members):
            if self.key_fn(member) == item_key:
                # Replace in place to keep collection order stable
                members[index] = value
                break
        else:
            members.append(value)

        return members, max(0, int(entry.expires_at - self.cache_manager.clock()))

    def _cached_or_not_found(self, cache_key: str, status: LookupStatus) -> Lookup:
        entry = self.cache_manager.get_entry(cache_key)

        if entry is None:
            self._record('not_found')
            return Lookup(None, LookupStatus.NOT_FOUND)

        if status == LookupStatus.STALE:
            self._record('stale_served')
            self.logger.warning(f"Returning stale cached data for {cache_key}")

        return Lookup(entry.value, status)

    def _record(self, counter: str) -> None:
        with self._stats_lock:
            self._stats[counter] += 1
