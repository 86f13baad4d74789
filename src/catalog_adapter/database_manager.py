"""
DatabaseManager module for handling DuckDB connections and the cache entry table
"""

import threading
from pathlib import Path
from typing import List, Optional, Tuple

import duckdb


class DatabaseConnectionError(Exception):
    """Raised when database connection operations fail"""
    pass


class DatabaseManager:
    """Manages a DuckDB connection holding cache entries as key -> JSON rows"""

    MEMORY_DATABASE = ':memory:'

    def __init__(self):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        # A DuckDB connection must not be used from several threads at once
        self._lock = threading.RLock()

    def create_connection(self, db_path: Path) -> duckdb.DuckDBPyConnection:
        """
        Create DuckDB database connection with proper error handling

        Args:
            db_path: Path to the database file, or ':memory:'

        Returns:
            DuckDB connection object

        Raises:
            DatabaseConnectionError: If connection fails or already exists
        """
        if self._connection is not None:
            raise DatabaseConnectionError("Connection already exists. Close existing connection first.")

        try:
            if str(db_path) == self.MEMORY_DATABASE:
                self._connection = duckdb.connect(self.MEMORY_DATABASE)
            else:
                # Ensure parent directory exists
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = duckdb.connect(str(db_path))

            return self._connection

        except (duckdb.Error, OSError) as e:
            raise DatabaseConnectionError(f"Failed to create database connection: {e}") from e

    def close_connection(self) -> None:
        """
        Close database connection and release resources
        """
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except duckdb.Error:
                    pass  # Connection might already be closed
                finally:
                    self._connection = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def create_tables(self) -> None:
        """
        Create the cache entry table

        Raises:
            DatabaseConnectionError: If no active connection exists
        """
        cache_entries_sql = """
        CREATE TABLE IF NOT EXISTS cache_entries (
            cache_key VARCHAR PRIMARY KEY,
            value_json VARCHAR NOT NULL,
            expires_at DOUBLE NOT NULL,
            updated_at DOUBLE NOT NULL
        )
        """
        with self._lock:
            self._require_connection().execute(cache_entries_sql)

    def fetch_entry(self, cache_key: str) -> Optional[Tuple[str, float, float]]:
        """
        Read one cache row

        Args:
            cache_key: Key of the entry

        Returns:
            (value_json, expires_at, updated_at) or None if absent
        """
        with self._lock:
            result = self._require_connection().execute(
                "SELECT value_json, expires_at, updated_at FROM cache_entries WHERE cache_key = ?",
                (cache_key,)
            )
            row = result.fetchone()

        if row is None:
            return None
        return row[0], row[1], row[2]

    def upsert_entry(self, cache_key: str, value_json: str, expires_at: float, updated_at: float) -> None:
        """
        Insert or overwrite one cache row using UPSERT pattern

        Args:
            cache_key: Key of the entry
            value_json: Serialised value
            expires_at: Expiry as epoch seconds
            updated_at: Write time as epoch seconds
        """
        upsert_sql = """
        INSERT INTO cache_entries (cache_key, value_json, expires_at, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (cache_key) DO UPDATE SET
            value_json = EXCLUDED.value_json,
            expires_at = EXCLUDED.expires_at,
            updated_at = EXCLUDED.updated_at
        """
        with self._lock:
            self._require_connection().execute(upsert_sql, (cache_key, value_json, expires_at, updated_at))

    def delete_entry(self, cache_key: str) -> bool:
        """
        Delete one cache row

        Returns:
            True if a row was removed
        """
        with self._lock:
            connection = self._require_connection()
            exists = connection.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE cache_key = ?", (cache_key,)
            ).fetchone()[0]
            if exists:
                connection.execute("DELETE FROM cache_entries WHERE cache_key = ?", (cache_key,))
            return bool(exists)

    def list_keys(self, prefix: str = '') -> List[str]:
        """
        List cache keys starting with a prefix, in key order
        """
        with self._lock:
            rows = self._require_connection().execute(
                "SELECT cache_key FROM cache_entries WHERE starts_with(cache_key, ?) ORDER BY cache_key",
                (prefix,)
            ).fetchall()
        return [row[0] for row in rows]

    def clear_entries(self) -> None:
        with self._lock:
            self._require_connection().execute("DELETE FROM cache_entries")

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if not self._connection:
            raise DatabaseConnectionError("No active database connection")
        return self._connection
