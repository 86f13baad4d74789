"""
ItemNormalizer module for turning raw page payloads into canonically keyed items
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from catalog_adapter.payload_validator import resolve_items

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedItem:
    """An extracted item and the key used to de-duplicate it across pages"""
    canonical_key: str
    payload: Any


class ItemNormalizer(Protocol):
    """Turns one raw payload into normalised items"""

    def normalize(self, payload: Any) -> List[NormalizedItem]:
        ...


def normalize_url(url: str) -> str:
    """Canonical form of an item URL: trimmed, without query, fragment or trailing slash"""
    url = url.strip().split('#', 1)[0].split('?', 1)[0]
    if len(url) > 1:
        url = url.rstrip('/')
    return url


class UrlItemNormalizer:
    """
    Keys items by their detail-page URL

    The URL is read from `url_field`; when it is absent it is built from
    `slug_field` as `{url_prefix}{slug}`. Items with neither are skipped.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.items_path = config.get('items_path', '')
        self.url_field = config.get('url_field', 'url')
        self.slug_field = config.get('slug_field', 'slug')
        self.url_prefix = config.get('url_prefix', '/tobaccos/')

    def normalize(self, payload: Any) -> List[NormalizedItem]:
        try:
            raw_items = resolve_items(payload, self.items_path)
        except (KeyError, TypeError):
            logger.warning(f"No item array at path '{self.items_path}'")
            return []

        if not isinstance(raw_items, list):
            logger.warning(f"Payload items are not an array: {type(raw_items).__name__}")
            return []

        items = []
        for index, raw_item in enumerate(raw_items):
            item = self.normalize_item(raw_item)
            if item is None:
                logger.warning(f"Failed to normalise item at index {index}")
                continue
            items.append(item)

        return items

    def normalize_item(self, raw_item: Any) -> Optional[NormalizedItem]:
        """
        Normalise a single raw item

        Args:
            raw_item: One entry of the payload's item array

        Returns:
            NormalizedItem, or None if no URL can be determined
        """
        if not isinstance(raw_item, dict):
            return None

        url = raw_item.get(self.url_field)
        slug = raw_item.get(self.slug_field)

        if not isinstance(url, str) or not url.strip():
            if not isinstance(slug, str) or not slug.strip('/ '):
                return None
            url = f"{self.url_prefix}{slug.strip('/ ')}"

        url = normalize_url(url)

        if not isinstance(slug, str) or not slug.strip():
            slug = self._slug_from_url(url)
            if not slug:
                return None

        return NormalizedItem(canonical_key=url, payload={**raw_item, self.url_field: url, self.slug_field: slug})

    def _slug_from_url(self, url: str) -> str:
        if self.url_prefix and url.startswith(self.url_prefix):
            return url[len(self.url_prefix):].strip('/')
        return url.strip('/')
