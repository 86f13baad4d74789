"""
PaginatedExtractor module for collecting every item of a parent across sequential pages
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from catalog_adapter.cancellation import CancellationToken, interruptible_sleep
from catalog_adapter.http_client import HTTPClient, TransportError
from catalog_adapter.item_normalizer import ItemNormalizer, NormalizedItem
from catalog_adapter.page_fetcher import PageFetcher
from catalog_adapter.pagination_strategy import Page, PageResult, is_last_page
from catalog_adapter.payload_validator import PayloadValidator, resolve_items


class StopReason(str, Enum):
    """Why an extraction run stopped requesting pages"""
    EMPTY_PAGE = "empty_page"
    SHORT_PAGE = "short_page"
    VALIDATION_FAILED = "validation_failed"
    MAX_PAGES = "max_pages"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ExtractionResult:
    """Immutable summary of one extraction run"""
    items: Tuple[NormalizedItem, ...]
    total_count: int
    requests_made: int
    elapsed_ms: int
    used_fallback: bool
    pages_fetched: int = 0
    stop_reason: StopReason = StopReason.EMPTY_PAGE
    error: Optional[str] = None

    @property
    def canonical_keys(self) -> List[str]:
        return [item.canonical_key for item in self.items]

    @property
    def payloads(self) -> List[object]:
        return [item.payload for item in self.items]


class PaginatedExtractor:
    """
    Drives sequential page fetches for one parent until the source is exhausted

    Pages are requested strictly in increasing offset order through
    HTTPClient.execute, so every page gets the client's rate limiting and
    retry policy. A transport failure that survives those retries ends the
    whole run; a payload that fails validation is a soft stop treated as
    the end of the data.
    """

    def __init__(self, http_client: HTTPClient, page_fetcher: PageFetcher,
                 validator: PayloadValidator, normalizer: ItemNormalizer,
                 page_size: int = 20, max_pages: int = 100, request_delay_ms: int = 500,
                 enable_fallback: bool = True, stop_on_short_page: bool = True,
                 items_path: str = ''):
        self.http_client = http_client
        self.page_fetcher = page_fetcher
        self.validator = validator
        self.normalizer = normalizer
        self.page_size = page_size
        self.max_pages = max_pages
        self.request_delay_ms = request_delay_ms
        self.enable_fallback = enable_fallback
        self.stop_on_short_page = stop_on_short_page
        self.items_path = items_path

        self.logger = logging.getLogger(__name__)

    def extract_all(self, parent_id: str, page_size: Optional[int] = None,
                    max_pages: Optional[int] = None,
                    cancel_token: Optional[CancellationToken] = None,
                    enable_fallback: Optional[bool] = None) -> ExtractionResult:
        """
        Extract every item of a parent, de-duplicated by canonical key

        Args:
            parent_id: Identifier whose items are paginated
            page_size: Items requested per page (defaults to the configured size)
            max_pages: Upper bound on page requests (defaults to the configured bound)
            cancel_token: Optional token checked at every suspension point
            enable_fallback: Overrides the configured fallback flag for this run

        Returns:
            ExtractionResult; with fallback enabled a fatal transport failure
            yields an empty result with used_fallback=True

        Raises:
            TransportError: Fatal transport failure when fallback is disabled
            OperationCancelledError: If the token is cancelled
        """
        page_size = page_size if page_size is not None else self.page_size
        max_pages = max_pages if max_pages is not None else self.max_pages
        fallback = self.enable_fallback if enable_fallback is None else enable_fallback

        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")

        start_time = time.monotonic()
        items: List[NormalizedItem] = []
        seen_keys = set()
        requests_made = 0
        pages_fetched = 0
        stop_reason = StopReason.MAX_PAGES
        page = Page(parent_id, 0, page_size)

        self.logger.info(
            f"Starting extraction for parent {parent_id} "
            f"(page_size={page_size}, max_pages={max_pages}, delay={self.request_delay_ms}ms)"
        )

        try:
            for page_number in range(1, max_pages + 1):
                self.logger.debug(f"Fetching page {page_number} with offset {page.offset} for parent {parent_id}")

                requests_made += 1
                payload = self.http_client.execute(
                    lambda page=page: self.page_fetcher.fetch(page.parent_id, page.offset, page.page_size),
                    cancel_token=cancel_token,
                    description=f"Page {page_number} of parent {parent_id}"
                )
                pages_fetched += 1

                validation = self.validator.validate(payload)
                if not validation.is_valid:
                    self.logger.warning(
                        f"Payload validation failed for parent {parent_id} at offset {page.offset}, "
                        f"treating as end of data: {validation.errors}"
                    )
                    stop_reason = StopReason.VALIDATION_FAILED
                    break

                page_result = self._build_page_result(payload)

                duplicates = 0
                for item in page_result.items:
                    if item.canonical_key in seen_keys:
                        duplicates += 1
                        continue
                    seen_keys.add(item.canonical_key)
                    items.append(item)

                self.logger.debug(
                    f"Extracted {len(page_result.items)} items from page {page_number} "
                    f"({duplicates} duplicates, {len(items)} total)"
                )

                if page_result.raw_count == 0:
                    stop_reason = StopReason.EMPTY_PAGE
                    break

                if self.stop_on_short_page and is_last_page(page_result.raw_count, page_size):
                    stop_reason = StopReason.SHORT_PAGE
                    break

                page = page.next()

                if page_number < max_pages and self.request_delay_ms > 0:
                    interruptible_sleep(self.request_delay_ms / 1000.0, cancel_token)

        except TransportError as e:
            self.logger.error(f"Extraction failed for parent {parent_id} after {requests_made} requests: {e}")

            if not fallback:
                raise

            return ExtractionResult(
                items=(),
                total_count=0,
                requests_made=requests_made,
                elapsed_ms=self._elapsed_ms(start_time),
                used_fallback=True,
                pages_fetched=pages_fetched,
                stop_reason=StopReason.FALLBACK,
                error=str(e)
            )

        elapsed_ms = self._elapsed_ms(start_time)
        if stop_reason == StopReason.MAX_PAGES:
            self.logger.warning(f"Reached max_pages={max_pages} for parent {parent_id}; results may be incomplete")

        self.logger.info(
            f"Extraction completed for parent {parent_id}: {len(items)} items, "
            f"{requests_made} requests, {elapsed_ms}ms ({stop_reason.value})"
        )

        return ExtractionResult(
            items=tuple(items),
            total_count=len(items),
            requests_made=requests_made,
            elapsed_ms=elapsed_ms,
            used_fallback=False,
            pages_fetched=pages_fetched,
            stop_reason=stop_reason
        )

    def extract_for_slug(self, slug: str, resolve_parent_id: Callable[[str], Optional[str]],
                         cancel_token: Optional[CancellationToken] = None,
                         **kwargs) -> ExtractionResult:
        """
        Resolve a parent id from a human-facing slug, then extract its items

        Never raises transport failures: an unresolved parent or any failed
        fetch produces an empty result flagged with used_fallback=True.

        Args:
            slug: Parent slug
            resolve_parent_id: Callable returning the parent id for a slug, or None
            cancel_token: Optional cancellation token
            **kwargs: Forwarded to extract_all

        Returns:
            ExtractionResult
        """
        start_time = time.monotonic()

        try:
            self.logger.info(f"Resolving parent id for slug {slug}")
            parent_id = resolve_parent_id(slug)

            if not parent_id:
                self.logger.warning(f"Failed to resolve parent id for slug {slug}, cannot extract")
                return self._fallback_result(start_time, f"Parent id not resolved for slug {slug}")

            return self.extract_all(parent_id, cancel_token=cancel_token, **kwargs)

        except TransportError as e:
            self.logger.error(f"Failed to extract items for slug {slug}: {e}")
            return self._fallback_result(start_time, str(e))

    def _build_page_result(self, payload: object) -> PageResult:
        """Normalise one validated page; raw_count is taken before normalisation drops unusable entries"""
        items = self.normalizer.normalize(payload)
        try:
            raw_items = resolve_items(payload, self.items_path)
        except (KeyError, TypeError):
            return PageResult(items, len(items))
        return PageResult(items, len(raw_items) if isinstance(raw_items, list) else len(items))

    def _fallback_result(self, start_time: float, error: str) -> ExtractionResult:
        return ExtractionResult(
            items=(),
            total_count=0,
            requests_made=0,
            elapsed_ms=self._elapsed_ms(start_time),
            used_fallback=True,
            stop_reason=StopReason.FALLBACK,
            error=error
        )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
