"""
Catalog adapter package for paginated upstream catalogs
Provides rate-limited retrying transport, page-by-page extraction and a cache-aside entity service
"""

from .cancellation import CancellationToken, OperationCancelledError
from .config_loader import AdapterConfig, ConfigLoader, ConfigurationError, EnvironmentError
from .database_manager import DatabaseManager, DatabaseConnectionError
from .rate_limiter import RateLimiter
from .http_client import (
    HTTPClient, RetryPolicy, APIRequest, APIResponse, TransportError, NetworkError,
    RequestTimeoutError, ClientError, ServerError, RateLimitedError, MaxRetriesExceededError
)
from .pagination_strategy import Page, PaginationFactory
from .page_fetcher import HTTPPageFetcher
from .payload_validator import PayloadValidator, ValidationResult
from .item_normalizer import NormalizedItem, UrlItemNormalizer
from .paginated_extractor import PaginatedExtractor, ExtractionResult, StopReason
from .cache_manager import CacheManager, CacheEntry, InMemoryStore, DuckDBStore
from .single_flight import SingleFlight
from .entity_service import CacheAsideService, Lookup, LookupStatus
from .api_orchestrator import APIOrchestrator

__all__ = [
    'CancellationToken',
    'OperationCancelledError',
    'AdapterConfig',
    'ConfigLoader',
    'ConfigurationError',
    'EnvironmentError',
    'DatabaseManager',
    'DatabaseConnectionError',
    'RateLimiter',
    'HTTPClient',
    'RetryPolicy',
    'APIRequest',
    'APIResponse',
    'TransportError',
    'NetworkError',
    'RequestTimeoutError',
    'ClientError',
    'ServerError',
    'RateLimitedError',
    'MaxRetriesExceededError',
    'Page',
    'PaginationFactory',
    'HTTPPageFetcher',
    'PayloadValidator',
    'ValidationResult',
    'NormalizedItem',
    'UrlItemNormalizer',
    'PaginatedExtractor',
    'ExtractionResult',
    'StopReason',
    'CacheManager',
    'CacheEntry',
    'InMemoryStore',
    'DuckDBStore',
    'SingleFlight',
    'CacheAsideService',
    'Lookup',
    'LookupStatus',
    'APIOrchestrator'
]
