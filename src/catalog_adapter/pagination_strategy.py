"""
PaginationStrategy module for describing pages and translating them into request parameters
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol


@dataclass(frozen=True)
class Page:
    """Request descriptor for one page of a parent's items"""
    parent_id: str
    offset: int
    page_size: int

    def next(self) -> 'Page':
        return Page(self.parent_id, self.offset + self.page_size, self.page_size)


@dataclass(frozen=True)
class PageResult:
    """Normalised items of one page plus the number of raw entries the source returned"""
    items: List[Any] = field(default_factory=list)
    raw_count: int = 0


def is_last_page(raw_count: int, page_size: int) -> bool:
    """
    Completion rule: an empty page or a short page ends pagination

    Args:
        raw_count: Number of entries the source returned for the page
        page_size: Number of entries requested

    Returns:
        True if no further page should be requested
    """
    return raw_count == 0 or raw_count < page_size


class PaginationStrategy(Protocol):
    """Protocol for translating a Page into upstream request parameters"""

    def get_page_params(self, page: Page) -> Dict[str, Any]:
        """Return request parameters selecting the given page"""
        ...


class OffsetLimitPagination:
    """Offset-based pagination strategy"""

    def __init__(self, config: Dict[str, Any]):
        self.offset_param = config.get('offset_param', 'offset')
        self.limit_param = config.get('limit_param', 'limit')

    def get_page_params(self, page: Page) -> Dict[str, Any]:
        return {
            self.limit_param: page.page_size,
            self.offset_param: page.offset
        }


class PageBasedPagination:
    """Page-number pagination strategy (1-based page numbers)"""

    def __init__(self, config: Dict[str, Any]):
        self.page_param = config.get('page_param', 'page')
        self.size_param = config.get('size_param', 'size')

    def get_page_params(self, page: Page) -> Dict[str, Any]:
        """Translate the offset into a page number"""
        return {
            self.page_param: page.offset // page.page_size + 1,
            self.size_param: page.page_size
        }


class PaginationFactory:
    """Factory for creating appropriate pagination strategy based on config"""

    STRATEGIES = {
        'offset_limit': OffsetLimitPagination,
        'page_based': PageBasedPagination
    }

    @classmethod
    def create_strategy(cls, pagination_config: Dict[str, Any]) -> PaginationStrategy:
        """Create pagination strategy instance based on configuration"""
        strategy_type = pagination_config.get('strategy', 'offset_limit')

        if strategy_type not in cls.STRATEGIES:
            raise ValueError(f"Unsupported pagination strategy: {strategy_type}")

        strategy_class = cls.STRATEGIES[strategy_type]
        return strategy_class(pagination_config)
