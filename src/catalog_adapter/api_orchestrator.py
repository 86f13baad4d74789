"""
APIOrchestrator module for high-level refresh coordination
"""
import logging
import uuid
from datetime import datetime, timezone
from operator import itemgetter
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .cache_manager import DEFAULT_TTL_SECONDS, CacheManager, DuckDBStore, InMemoryStore, PersistentStore
from .cancellation import CancellationToken
from .config_loader import AdapterConfig
from .database_manager import DatabaseManager
from .entity_service import CacheAsideService, LookupStatus
from .http_client import DEFAULT_RETRYABLE_STATUS_CODES, DEFAULT_USER_AGENT, HTTPClient, RetryPolicy
from .item_normalizer import UrlItemNormalizer
from .page_fetcher import HTTPPageFetcher
from .paginated_extractor import ExtractionResult, PaginatedExtractor, StopReason
from .pagination_strategy import PaginationFactory
from .payload_validator import PayloadValidator


class UnusablePayloadError(Exception):
    """Raised when the first page of a parent cannot be read as an item list"""
    pass


class APIOrchestrator:
    """
    High-level coordinator for the catalog refresh workflow

    Orchestrates the complete process of:
    1. Loading parent ids from files
    2. Extracting each parent's items page by page
    3. Serving them through a per-parent cache-aside collection
    4. Summarising refresh runs

    A parent whose extraction fails keeps serving its last cached items.
    """

    ITEM_NAMESPACE = 'item'

    def __init__(
        self,
        config: AdapterConfig,
        http_client: HTTPClient,
        extractor: PaginatedExtractor,
        cache_manager: CacheManager,
        database_manager: Optional[DatabaseManager] = None
    ):
        """
        Initialise APIOrchestrator with dependency injection

        Args:
            config: Loaded adapter configuration
            http_client: HTTP communication component
            extractor: Pagination component
            cache_manager: Cache bookkeeping component
            database_manager: Optional DuckDB connection owner, closed by close()
        """
        self.config = config
        self.http_client = http_client
        self.extractor = extractor
        self.cache_manager = cache_manager
        self.database_manager = database_manager

        self.logger = logging.getLogger(__name__)
        self.cancel_token = CancellationToken()
        self.ttl_seconds = config.cache.get('ttl_seconds', cache_manager.default_ttl_seconds)
        self.key_fn = itemgetter(config.normalization.get('slug_field', 'slug'))
        self.item_services: Dict[str, CacheAsideService] = {}
        self.last_results: Dict[str, ExtractionResult] = {}

    @classmethod
    def from_config(cls, config: AdapterConfig) -> 'APIOrchestrator':
        """
        Build a fully wired orchestrator from configuration

        Args:
            config: Loaded adapter configuration

        Returns:
            APIOrchestrator ready to serve and refresh
        """
        transport = config.transport
        rate_limits = config.rate_limits
        extraction = config.extraction

        retry_policy = RetryPolicy(
            max_retries=transport['max_retries'],
            base_delay_ms=transport.get('base_delay_ms', 1000),
            retryable_status_codes=frozenset(
                transport.get('retryable_status_codes', DEFAULT_RETRYABLE_STATUS_CODES)
            )
        )
        http_client = HTTPClient(
            retry_policy=retry_policy,
            min_delay_ms=rate_limits.get('min_delay_ms', 1000),
            timeout_seconds=transport.get('timeout_seconds', 30.0),
            base_url=config.base_url,
            user_agent=transport.get('user_agent', DEFAULT_USER_AGENT),
            enable_rate_limit=rate_limits.get('enabled', True)
        )

        items_path = extraction.get('items_path', '')
        page_fetcher = HTTPPageFetcher(
            http_client,
            endpoint=extraction.get('endpoint', '/postData'),
            method=extraction.get('method', 'POST'),
            strategy=PaginationFactory.create_strategy(config.pagination),
            parent_param=extraction.get('parent_param', 'id'),
            body_template=extraction.get('body_template'),
            data_key=extraction.get('data_key', 'data'),
            extra_data=extraction.get('extra_data')
        )
        extractor = PaginatedExtractor(
            http_client,
            page_fetcher,
            PayloadValidator({'items_path': items_path, **config.payload_validation}),
            UrlItemNormalizer({'items_path': items_path, **config.normalization}),
            page_size=extraction.get('page_size', 20),
            max_pages=extraction.get('max_pages', 100),
            request_delay_ms=extraction.get('request_delay_ms', 500),
            enable_fallback=extraction.get('enable_fallback', True),
            stop_on_short_page=extraction.get('stop_on_short_page', True),
            items_path=items_path
        )

        database_manager, store = cls._create_store(config.cache)
        cache_manager = CacheManager(store, default_ttl_seconds=config.cache.get('ttl_seconds', DEFAULT_TTL_SECONDS))

        return cls(config, http_client, extractor, cache_manager, database_manager)

    @staticmethod
    def _create_store(cache_config: Dict[str, Any]) -> Tuple[Optional[DatabaseManager], PersistentStore]:
        """Use DuckDB when a cache database is configured, else a process-local store"""
        database = cache_config.get('database')
        if not database:
            return None, InMemoryStore()

        database_manager = DatabaseManager()
        database_manager.create_connection(Path(database))
        return database_manager, DuckDBStore(database_manager)

    def load_parent_ids_from_file(self, file_path: Path) -> List[str]:
        """
        Load parent ids from input file

        Args:
            file_path: Path to file containing parent ids (one per line, # for comments)

        Returns:
            List of parent id strings

        Raises:
            FileNotFoundError: If the input file doesn't exist
            ValueError: If the file contains no parent ids
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Parent file not found: {file_path}")

        with open(file_path, 'r', encoding='utf-8') as file:
            parent_ids = [
                line.strip() for line in file
                if line.strip() and not line.strip().startswith('#')
            ]

        if not parent_ids:
            raise ValueError(f"Parent file is empty: {file_path}")

        self.logger.info(f"Loaded {len(parent_ids)} parent ids from {file_path}")
        return parent_ids

    def items_service(self, parent_id: str) -> CacheAsideService:
        """
        Cache-aside service over one parent's item collection

        Items are cached under item:<slug> and the collection under items:<parent_id>.
        """
        service = self.item_services.get(parent_id)
        if service is None:
            service = CacheAsideService(
                self.cache_manager,
                self.ITEM_NAMESPACE,
                key_fn=self.key_fn,
                fetch_all=lambda: self._extract_parent_items(parent_id),
                ttl_seconds=self.ttl_seconds,
                collection_name=parent_id
            )
            self.item_services[parent_id] = service
        return service

    def get_items(self, parent_id: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        return self.items_service(parent_id).get_all(force_refresh)

    def get_item(self, slug: str) -> Optional[Dict[str, Any]]:
        """Cached item by slug from any parent already extracted; never fetches"""
        entry = self.cache_manager.get_entry(self.cache_manager.entity_key(self.ITEM_NAMESPACE, slug))
        return entry.value if entry is not None else None

    def find_items(self, parent_id: str, field_name: str, value: Any,
                   case_insensitive: bool = False) -> List[Dict[str, Any]]:
        return self.items_service(parent_id).get_by_field(field_name, value, case_insensitive)

    def run_refresh(self, parent_ids: List[str], force: bool = False) -> Dict[str, Any]:
        """
        Refresh the item collections of several parents

        Args:
            parent_ids: Parents to refresh, processed sequentially
            force: Refetch even when a collection is cached and not expired

        Returns:
            Run summary with per-parent outcomes
        """
        run_id = f"{self.config.name}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{str(uuid.uuid4())[:8]}"
        start_time = datetime.now(timezone.utc)
        self.logger.info(f"Starting refresh run {run_id} for {len(parent_ids)} parents (force={force})")

        parent_results = []
        for parent_id in parent_ids:
            self.cancel_token.raise_if_cancelled()
            parent_results.append(self._refresh_parent(parent_id, force))

        counts = {status.value: 0 for status in LookupStatus}
        for result in parent_results:
            counts[result['status']] += 1

        degraded = counts[LookupStatus.STALE.value] + counts[LookupStatus.NOT_FOUND.value]
        summary = {
            'run_id': run_id,
            'data_source': self.config.name,
            'start_time': start_time.isoformat(),
            'end_time': datetime.now(timezone.utc).isoformat(),
            'total_parents': len(parent_ids),
            'refreshed_parents': counts[LookupStatus.FRESH.value],
            'cached_parents': counts[LookupStatus.CACHED.value],
            'stale_parents': counts[LookupStatus.STALE.value],
            'failed_parents': counts[LookupStatus.NOT_FOUND.value],
            'total_items': sum(result['items'] for result in parent_results),
            'total_requests': sum(result['requests_made'] for result in parent_results),
            'status': 'SUCCESS' if degraded == 0 else 'PARTIAL',
            'parent_results': parent_results
        }

        self.logger.info(
            f"Refresh run {run_id} completed: {summary['refreshed_parents']} refreshed, "
            f"{summary['cached_parents']} cached, {summary['stale_parents']} stale, "
            f"{summary['failed_parents']} failed"
        )
        return summary

    def _refresh_parent(self, parent_id: str, force: bool) -> Dict[str, Any]:
        service = self.items_service(parent_id)

        if not force:
            entry = self.cache_manager.get_entry(service.collection_key)
            # Expired collections are refetched, live ones are left alone
            force = entry is not None and self.cache_manager.is_expired(entry)

        self.last_results.pop(parent_id, None)
        lookup = service.lookup_all(force_refresh=force)
        extraction = self.last_results.get(parent_id)

        return {
            'parent_id': parent_id,
            'status': lookup.status.value,
            'items': len(lookup.value or []),
            'requests_made': extraction.requests_made if extraction else 0,
            'elapsed_ms': extraction.elapsed_ms if extraction else 0
        }

    def _extract_parent_items(self, parent_id: str) -> List[Dict[str, Any]]:
        # Fallback disabled so a failure keeps the cached collection instead of overwriting it with []
        result = self.extractor.extract_all(parent_id, cancel_token=self.cancel_token, enable_fallback=False)
        self.last_results[parent_id] = result

        if result.stop_reason == StopReason.VALIDATION_FAILED and result.total_count == 0:
            # e.g. a maintenance page; an empty collection would replace the cached one
            raise UnusablePayloadError(f"No readable items for parent {parent_id}")

        return result.payloads

    def cancel(self, reason: str = "shutdown") -> None:
        self.cancel_token.cancel(reason)

    def close(self) -> None:
        """
        Release network and database resources
        """
        self.http_client.close_connection()
        if self.database_manager is not None:
            self.database_manager.close_connection()
