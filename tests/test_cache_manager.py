"""
Test suite for CacheManager, stores and DatabaseManager components
Following TDD approach with AAA pattern and descriptive naming
"""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import Mock

from catalog_adapter.cache_manager import (
    CacheEntry, CacheManager, CacheStoreError, DuckDBStore, InMemoryStore
)
from catalog_adapter.database_manager import DatabaseConnectionError, DatabaseManager


class FakeClock:
    """Manually advanced clock for expiry tests"""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestCacheManager:
    """Test suite for TTL bookkeeping over a store"""

    def test_get_entry_with_nonexistent_key_returns_none_and_counts_miss(self):
        """
        Test that cache miss returns None for non-existent keys
        """
        # Arrange
        cache_manager = CacheManager()

        # Act
        result = cache_manager.get_entry("brand:missing")

        # Assert
        assert result is None
        assert cache_manager.get_stats()['misses'] == 1

    def test_set_entry_with_default_ttl_stamps_expiry(self):
        """
        Test that expires_at is now plus the default TTL
        """
        # Arrange
        clock = FakeClock(1000.0)
        cache_manager = CacheManager(default_ttl_seconds=86400, clock=clock)

        # Act
        entry = cache_manager.set_entry("brand:dogma", {'slug': 'dogma'})

        # Assert
        assert entry.expires_at == 1000.0 + 86400
        assert entry.updated_at == 1000.0
        assert cache_manager.get_entry("brand:dogma").value == {'slug': 'dogma'}
        assert cache_manager.get_stats()['hits'] == 1

    def test_get_entry_with_expired_entry_still_returns_it(self):
        """
        Test that expired entries remain readable as stale data
        """
        # Arrange
        clock = FakeClock(1000.0)
        cache_manager = CacheManager(clock=clock)
        cache_manager.set_entry("brand:dogma", {'slug': 'dogma'}, ttl_seconds=60)
        clock.now = 2000.0

        # Act
        entry = cache_manager.get_entry("brand:dogma")

        # Assert
        assert entry is not None
        assert cache_manager.is_expired(entry) is True

    def test_is_expired_at_exact_expiry_returns_true(self):
        """
        Test the expiry boundary
        """
        # Arrange
        entry = CacheEntry(value=1, expires_at=100.0)

        # Act & Assert
        assert entry.is_expired(99.9) is False
        assert entry.is_expired(100.0) is True

    def test_set_entry_with_failing_store_returns_none_without_raising(self):
        """
        Test that a cache write failure is logged and does not break the caller
        """
        # Arrange
        store = Mock()
        store.set.side_effect = CacheStoreError("disk full")
        cache_manager = CacheManager(store)

        # Act
        result = cache_manager.set_entry("brand:dogma", {'slug': 'dogma'})

        # Assert
        assert result is None
        assert cache_manager.write_failures == 1

    def test_get_entry_with_failing_store_treats_as_miss(self):
        """
        Test that an unreadable entry is a miss rather than an error
        """
        # Arrange
        store = Mock()
        store.get.side_effect = CacheStoreError("corrupt")
        cache_manager = CacheManager(store)

        # Act
        result = cache_manager.get_entry("brand:dogma")

        # Assert
        assert result is None
        assert cache_manager.misses == 1

    def test_key_helpers_with_namespace_build_entity_and_collection_keys(self):
        """
        Test cache key layout
        """
        # Act & Assert
        assert CacheManager.entity_key('brand', 'dogma') == 'brand:dogma'
        assert CacheManager.collection_key('brand') == 'brands:all'
        assert CacheManager.collection_key('item', '42') == 'items:42'

    def test_clear_cache_with_entries_removes_them_and_resets_stats(self):
        """
        Test that clearing empties the store and statistics
        """
        # Arrange
        cache_manager = CacheManager()
        cache_manager.set_entry("brand:a", 1)
        cache_manager.get_entry("brand:a")

        # Act
        cache_manager.clear_cache()

        # Assert
        assert cache_manager.get_stats() == {'keys': 0, 'hits': 0, 'misses': 0, 'write_failures': 0}


class TestInMemoryStore:
    """Test suite for the process-local store"""

    def test_get_with_mutated_source_returns_original_copy(self):
        """
        Test that stored records are isolated from caller mutation
        """
        # Arrange
        store = InMemoryStore()
        record = {'value': {'tags': ['mint']}, 'expires_at': 1.0, 'updated_at': 0.0}
        store.set('brand:a', record)

        # Act
        record['value']['tags'].append('ice')
        result = store.get('brand:a')

        # Assert
        assert result['value'] == {'tags': ['mint']}

    def test_keys_with_prefix_returns_matching_keys_sorted(self):
        """
        Test prefix listing
        """
        # Arrange
        store = InMemoryStore()
        for key in ['brand:b', 'brands:all', 'brand:a', 'flavor:x']:
            store.set(key, {'value': None, 'expires_at': 0.0})

        # Act & Assert
        assert store.keys('brand:') == ['brand:a', 'brand:b']
        assert store.delete('brand:a') is True
        assert store.delete('brand:a') is False


class TestDuckDBStore:
    """Test suite for the DuckDB-backed store"""

    def test_set_and_get_with_memory_database_round_trips_value(self):
        """
        Test that values survive JSON persistence in DuckDB
        """
        # Arrange
        database_manager = DatabaseManager()
        database_manager.create_connection(Path(':memory:'))
        cache_manager = CacheManager(DuckDBStore(database_manager), clock=FakeClock(50.0))

        # Act
        cache_manager.set_entry('brand:dogma', {'slug': 'dogma', 'tags': ['dark']}, ttl_seconds=10)
        cache_manager.set_entry('brand:dogma', {'slug': 'dogma', 'tags': ['dark', 'new']}, ttl_seconds=10)
        entry = cache_manager.get_entry('brand:dogma')

        # Assert
        assert entry.value == {'slug': 'dogma', 'tags': ['dark', 'new']}
        assert entry.expires_at == 60.0
        assert cache_manager.keys('brand:') == ['brand:dogma']

        database_manager.close_connection()

    def test_store_with_file_database_persists_across_connections(self):
        """
        Test that entries written to a database file are visible after reconnecting
        """
        # Arrange
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / 'nested' / 'cache.duckdb'

            first = DatabaseManager()
            first.create_connection(db_path)
            CacheManager(DuckDBStore(first)).set_entry('brands:all', [{'slug': 'a'}])
            first.close_connection()

            # Act
            second = DatabaseManager()
            second.create_connection(db_path)
            entry = CacheManager(DuckDBStore(second)).get_entry('brands:all')
            second.close_connection()

            # Assert
            assert entry.value == [{'slug': 'a'}]

    def test_delete_and_clear_with_entries_remove_rows(self):
        """
        Test row removal
        """
        # Arrange
        database_manager = DatabaseManager()
        database_manager.create_connection(Path(':memory:'))
        store = DuckDBStore(database_manager)
        store.set('a', {'value': 1, 'expires_at': 1.0, 'updated_at': 0.0})
        store.set('b', {'value': 2, 'expires_at': 1.0, 'updated_at': 0.0})

        # Act
        deleted = store.delete('a')
        missing = store.delete('a')
        store.clear()

        # Assert
        assert deleted is True
        assert missing is False
        assert store.keys() == []

        database_manager.close_connection()

    def test_get_with_closed_connection_raises_cache_store_error(self):
        """
        Test that database failures surface as CacheStoreError
        """
        # Arrange
        database_manager = DatabaseManager()
        database_manager.create_connection(Path(':memory:'))
        store = DuckDBStore(database_manager)
        database_manager.close_connection()

        # Act & Assert
        with pytest.raises(CacheStoreError):
            store.get('a')


class TestDatabaseManager:
    """Test suite for DuckDB connection handling"""

    def test_create_connection_with_existing_connection_raises_error(self):
        """
        Test that a second connection is refused
        """
        # Arrange
        database_manager = DatabaseManager()
        database_manager.create_connection(Path(':memory:'))

        # Act & Assert
        with pytest.raises(DatabaseConnectionError):
            database_manager.create_connection(Path(':memory:'))

        database_manager.close_connection()
        assert database_manager.is_connected is False

    def test_create_tables_without_connection_raises_error(self):
        """
        Test that schema creation requires a connection
        """
        # Act & Assert
        with pytest.raises(DatabaseConnectionError):
            DatabaseManager().create_tables()
