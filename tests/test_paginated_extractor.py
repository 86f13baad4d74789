"""
Test suite for PaginatedExtractor component
Following TDD approach with AAA pattern and descriptive naming
"""

import pytest
from unittest.mock import Mock, call, patch

from catalog_adapter.cancellation import CancellationToken, OperationCancelledError
from catalog_adapter.http_client import ClientError, HTTPClient, MaxRetriesExceededError, RetryPolicy, ServerError
from catalog_adapter.item_normalizer import UrlItemNormalizer
from catalog_adapter.paginated_extractor import ExtractionResult, PaginatedExtractor, StopReason
from catalog_adapter.pagination_strategy import PageResult
from catalog_adapter.payload_validator import PayloadValidator


def _page(prefix, count):
    return [{'url': f'/tobaccos/{prefix}-{index}', 'name': f'{prefix} {index}'} for index in range(count)]


def _item(name):
    return {'url': f'/tobaccos/{name}'}


def _extractor(pages, **kwargs):
    """Extractor over a fetcher returning the given payloads (or raising given exceptions) in order"""
    fetcher = Mock()
    fetcher.fetch.side_effect = pages
    http_client = HTTPClient(RetryPolicy(max_retries=kwargs.pop('max_retries', 1)), enable_rate_limit=False)
    extractor = PaginatedExtractor(
        http_client,
        fetcher,
        PayloadValidator(),
        UrlItemNormalizer(),
        **kwargs
    )
    return extractor, fetcher


class TestPaginatedExtractor:
    """Test suite for page-by-page extraction"""

    @patch('time.sleep')
    def test_extract_all_with_short_last_page_stops_after_it(self, mock_sleep):
        """
        Test that pages of 20, 20, 20, 7 make exactly four requests
        """
        # Arrange
        pages = [_page('a', 20), _page('b', 20), _page('c', 20), _page('d', 7)]
        extractor, fetcher = _extractor(pages, page_size=20)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert isinstance(result, ExtractionResult)
        assert result.requests_made == 4
        assert result.pages_fetched == 4
        assert result.total_count == 67
        assert result.used_fallback is False
        assert result.stop_reason == StopReason.SHORT_PAGE
        assert fetcher.fetch.call_args_list == [
            call('brand-1', 0, 20),
            call('brand-1', 20, 20),
            call('brand-1', 40, 20),
            call('brand-1', 60, 20)
        ]

    @patch('time.sleep')
    def test_extract_all_with_multiple_pages_sleeps_between_pages_only(self, mock_sleep):
        """
        Test that the inter-page delay is applied between pages and not after the last one
        """
        # Arrange
        extractor, _ = _extractor([_page('a', 2), _page('b', 2), _page('c', 1)], page_size=2, request_delay_ms=500)

        # Act
        extractor.extract_all('brand-1')

        # Assert
        assert [c[0][0] for c in mock_sleep.call_args_list] == [0.5, 0.5]

    @patch('time.sleep')
    def test_extract_all_with_duplicate_items_keeps_first_occurrence(self, mock_sleep):
        """
        Test that items repeated across pages appear once, in first-seen order
        """
        # Arrange
        pages = [
            [_item('x'), _item('y')],
            [_item('y/'), _item('z')],
            []
        ]
        extractor, _ = _extractor(pages, page_size=2)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.canonical_keys == ['/tobaccos/x', '/tobaccos/y', '/tobaccos/z']
        assert result.total_count == 3
        assert result.requests_made == 3

    @patch('time.sleep')
    def test_extract_all_with_full_page_of_duplicates_keeps_paginating(self, mock_sleep):
        """
        Test that completion counts raw items, so a page of duplicates does not end pagination
        """
        # Arrange
        pages = [
            [_item('x'), _item('y')],
            [_item('x'), _item('y')],
            [_item('z')]
        ]
        extractor, _ = _extractor(pages, page_size=2)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.requests_made == 3
        assert result.canonical_keys == ['/tobaccos/x', '/tobaccos/y', '/tobaccos/z']

    @patch('time.sleep')
    def test_extract_all_with_short_page_rule_disabled_stops_on_empty_page(self, mock_sleep):
        """
        Test pages [a], [b, c], [] with page size 2 when only an empty page ends pagination
        """
        # Arrange
        pages = [[_item('a')], [_item('b'), _item('c')], []]
        extractor, _ = _extractor(pages, page_size=2, stop_on_short_page=False)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.canonical_keys == ['/tobaccos/a', '/tobaccos/b', '/tobaccos/c']
        assert result.requests_made == 3
        assert result.stop_reason == StopReason.EMPTY_PAGE

    @patch('time.sleep')
    def test_extract_all_with_short_first_page_stops_immediately(self, mock_sleep):
        """
        Test that the default completion rule stops on the first short page
        """
        # Arrange
        extractor, fetcher = _extractor([[_item('a')], [_item('b'), _item('c')], []], page_size=2)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.requests_made == 1
        assert result.canonical_keys == ['/tobaccos/a']
        assert fetcher.fetch.call_count == 1

    @patch('time.sleep')
    def test_extract_all_with_full_pages_stops_at_max_pages(self, mock_sleep):
        """
        Test that max_pages bounds the number of page requests
        """
        # Arrange
        pages = [_page(f'p{index}', 2) for index in range(10)]
        extractor, _ = _extractor(pages, page_size=2, request_delay_ms=500)

        # Act
        result = extractor.extract_all('brand-1', max_pages=3)

        # Assert
        assert result.requests_made == 3
        assert result.total_count == 6
        assert result.stop_reason == StopReason.MAX_PAGES
        assert mock_sleep.call_count == 2

    @patch('time.sleep')
    def test_extract_all_with_invalid_payload_soft_stops_and_keeps_items(self, mock_sleep):
        """
        Test that a validation failure ends pagination without raising
        """
        # Arrange
        pages = [_page('a', 2), {'error': 'maintenance'}, _page('c', 2)]
        extractor, fetcher = _extractor(pages, page_size=2)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.stop_reason == StopReason.VALIDATION_FAILED
        assert result.total_count == 2
        assert result.used_fallback is False
        assert fetcher.fetch.call_count == 2

    @patch('time.sleep')
    def test_extract_all_with_null_payload_and_fallback_soft_stops(self, mock_sleep):
        """
        Test that a null page payload ends pagination as a validation failure
        """
        # Arrange
        fetcher = Mock()
        fetcher.fetch.side_effect = [_page('a', 2), None]
        extractor = PaginatedExtractor(
            HTTPClient(RetryPolicy(max_retries=0), enable_rate_limit=False),
            fetcher,
            PayloadValidator({'item_validation': True}),
            UrlItemNormalizer(),
            page_size=2,
            enable_fallback=True
        )

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.stop_reason == StopReason.VALIDATION_FAILED
        assert result.used_fallback is False
        assert [item.payload['url'] for item in result.items] == ['/tobaccos/a-0', '/tobaccos/a-1']
        assert result.pages_fetched == 2

    @patch('time.sleep')
    def test_extract_all_with_fatal_error_and_fallback_returns_empty_result(self, mock_sleep):
        """
        Test that a persistent failure mid-run discards items and flags the fallback
        """
        # Arrange
        failure = ServerError("Server error 503", status_code=503)
        extractor, _ = _extractor([_page('a', 2), failure, failure], page_size=2, enable_fallback=True)

        # Act
        result = extractor.extract_all('brand-1')

        # Assert
        assert result.used_fallback is True
        assert result.items == ()
        assert result.total_count == 0
        assert result.requests_made == 2
        assert result.stop_reason == StopReason.FALLBACK
        assert "Failed after 2 attempts" in result.error

    @patch('time.sleep')
    def test_extract_all_with_fatal_error_and_fallback_disabled_raises(self, mock_sleep):
        """
        Test that with fallback disabled the classified error reaches the caller
        """
        # Arrange
        failure = ServerError("Server error 503", status_code=503)
        extractor, _ = _extractor([failure, failure], page_size=2, enable_fallback=False)

        # Act & Assert
        with pytest.raises(MaxRetriesExceededError):
            extractor.extract_all('brand-1')

    @patch('time.sleep')
    def test_extract_all_with_per_call_fallback_override_raises_client_error(self, mock_sleep):
        """
        Test that enable_fallback=False on the call overrides the configured default
        """
        # Arrange
        extractor, fetcher = _extractor([ClientError("Client error 403", status_code=403)], enable_fallback=True)

        # Act & Assert
        with pytest.raises(ClientError):
            extractor.extract_all('brand-1', enable_fallback=False)

        assert fetcher.fetch.call_count == 1

    @patch('time.sleep')
    def test_extract_all_with_unrelated_exception_propagates(self, mock_sleep):
        """
        Test that non-transport errors are never converted into a fallback result
        """
        # Arrange
        extractor, _ = _extractor([KeyError('bug')], enable_fallback=True)

        # Act & Assert
        with pytest.raises(KeyError):
            extractor.extract_all('brand-1')

    def test_extract_all_with_cancelled_token_raises_even_with_fallback(self):
        """
        Test that cancellation is not swallowed by the fallback
        """
        # Arrange
        token = CancellationToken()
        token.cancel("shutdown")
        extractor, fetcher = _extractor([_page('a', 2)], enable_fallback=True)

        # Act & Assert
        with pytest.raises(OperationCancelledError):
            extractor.extract_all('brand-1', cancel_token=token)

        fetcher.fetch.assert_not_called()

    def test_build_page_result_with_unusable_entries_counts_raw_entries(self):
        """
        Test that the page result keeps the raw entry count used by the completion rule
        """
        # Arrange
        extractor, _ = _extractor([])
        payload = [_item('a'), {'name': 'no url'}, _item('b')]

        # Act
        page_result = extractor._build_page_result(payload)

        # Assert
        assert isinstance(page_result, PageResult)
        assert [item.canonical_key for item in page_result.items] == ['/tobaccos/a', '/tobaccos/b']
        assert page_result.raw_count == 3

    def test_extract_all_with_zero_page_size_raises_value_error(self):
        """
        Test that a non-positive page size is rejected
        """
        # Arrange
        extractor, _ = _extractor([])

        # Act & Assert
        with pytest.raises(ValueError):
            extractor.extract_all('brand-1', page_size=0)

    @patch('time.sleep')
    def test_extract_for_slug_with_unresolved_parent_returns_fallback(self, mock_sleep):
        """
        Test that an unknown slug yields an empty fallback result without fetching
        """
        # Arrange
        extractor, fetcher = _extractor([])

        # Act
        result = extractor.extract_for_slug('unknown-brand', lambda slug: None)

        # Assert
        assert result.used_fallback is True
        assert result.requests_made == 0
        assert "unknown-brand" in result.error
        fetcher.fetch.assert_not_called()

    @patch('time.sleep')
    def test_extract_for_slug_with_resolved_parent_extracts_items(self, mock_sleep):
        """
        Test that the resolved parent id is used for extraction
        """
        # Arrange
        extractor, fetcher = _extractor([_page('a', 3)], page_size=20)
        resolver = Mock(return_value='42')

        # Act
        result = extractor.extract_for_slug('dogma', resolver)

        # Assert
        resolver.assert_called_once_with('dogma')
        assert result.total_count == 3
        fetcher.fetch.assert_called_once_with('42', 0, 20)

    @patch('time.sleep')
    def test_extract_for_slug_with_failing_resolver_returns_fallback(self, mock_sleep):
        """
        Test that a transport failure while resolving the parent is absorbed
        """
        # Arrange
        extractor, _ = _extractor([])

        def resolver(slug):
            raise ServerError("Server error 502", status_code=502)

        # Act
        result = extractor.extract_for_slug('dogma', resolver)

        # Assert
        assert result.used_fallback is True
        assert result.total_count == 0
