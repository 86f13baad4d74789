"""
PayloadValidator module for validating the structure of raw page payloads
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one payload"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def resolve_items(payload: Any, items_path: str = '') -> Any:
    """
    Navigate a dotted path to the item array inside a payload

    Args:
        payload: Raw payload returned by a page fetch
        items_path: Dotted path such as 'results.data'; empty means the payload itself

    Returns:
        The value found at the path

    Raises:
        KeyError: If a path segment is missing
        TypeError: If a path segment is applied to a non-mapping
    """
    data = payload
    if not items_path:
        return data

    for part in items_path.split('.'):
        if not isinstance(data, dict):
            raise TypeError(f"Cannot resolve '{part}' on {type(data).__name__}")
        data = data[part]

    return data


class PayloadValidator:
    """Validates page payloads based on configurable validation rules"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.items_path = self.config.get('items_path', '')
        self.required_fields_any = list(self.config.get('required_fields_any', ['url', 'slug']))
        self.url_field = self.config.get('url_field', 'url')
        self.url_prefix = self.config.get('url_prefix')

    def validate(self, payload: Any) -> ValidationResult:
        """
        Run all enabled validations on a page payload

        An empty item array is valid; the extractor's completion rule handles it.

        Args:
            payload: Raw payload to validate

        Returns:
            ValidationResult with every error found
        """
        errors: List[str] = []

        try:
            items = resolve_items(payload, self.items_path)
        except (KeyError, TypeError) as e:
            errors.append(f"Items not found at path '{self.items_path}': {e}")
            return ValidationResult(False, errors)

        if not isinstance(items, list):
            errors.append('Response is not an array')
            logger.debug(f"Payload validation failed: not an array ({type(items).__name__})")
            return ValidationResult(False, errors)

        if self.config.get('item_validation', True):
            for index, item in enumerate(items):
                item_errors = self.validate_item(item)
                if item_errors:
                    errors.append(f"Item at index {index}: {', '.join(item_errors)}")

        if errors:
            logger.warning(f"Payload validation failed with {len(errors)} errors")
        return ValidationResult(not errors, errors)

    def validate_item(self, item: Any) -> List[str]:
        """
        Validate the structure of a single item

        Args:
            item: One entry of the item array

        Returns:
            List of problems found (empty when the item is valid)
        """
        if not isinstance(item, dict):
            return ['Item is not an object']

        errors = []
        if self.required_fields_any and not any(item.get(name) for name in self.required_fields_any):
            errors.append(f"Missing required properties ({' or '.join(self.required_fields_any)})")

        url = item.get(self.url_field)
        if self.url_prefix and isinstance(url, str) and not url.startswith(self.url_prefix):
            errors.append(f"Invalid URL format: {url}")

        return errors
