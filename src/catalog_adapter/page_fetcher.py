"""
PageFetcher module: the contract the extractor consumes, plus a JSON API implementation
"""

import copy
from typing import Any, Dict, Optional, Protocol

from catalog_adapter.http_client import APIRequest, HTTPClient
from catalog_adapter.pagination_strategy import OffsetLimitPagination, Page, PaginationStrategy


class PageFetcher(Protocol):
    """Returns the raw payload for one page or raises a classified TransportError"""

    def fetch(self, parent_id: str, offset: int, page_size: int) -> Any:
        ...


class HTTPPageFetcher:
    """
    Fetches pages from a JSON endpoint with a single HTTP attempt per call

    Retries and rate limiting are left to HTTPClient.execute, which the
    extractor wraps around every fetch.

    POST requests send an envelope like the upstream /postData endpoint expects:
        {"action": "objectByBrand", "data": {"id": ..., "limit": ..., "offset": ..., "sort": {}}}
    GET requests send the same fields as query parameters.
    """

    def __init__(self, http_client: HTTPClient, endpoint: str = '/postData', method: str = 'POST',
                 strategy: Optional[PaginationStrategy] = None, parent_param: str = 'id',
                 body_template: Optional[Dict[str, Any]] = None, data_key: Optional[str] = 'data',
                 extra_data: Optional[Dict[str, Any]] = None):
        self.http_client = http_client
        self.endpoint = endpoint
        self.method = method.upper()
        self.strategy = strategy or OffsetLimitPagination({})
        self.parent_param = parent_param
        self.body_template = body_template if body_template is not None else {'action': 'objectByBrand'}
        self.data_key = data_key
        self.extra_data = extra_data if extra_data is not None else {'sort': {}}

    def build_request(self, page: Page) -> APIRequest:
        """
        Build the APIRequest selecting one page of a parent's items

        Args:
            page: Page descriptor

        Returns:
            APIRequest for the page
        """
        selection = {
            self.parent_param: page.parent_id,
            **self.strategy.get_page_params(page),
        }

        if self.method == 'GET':
            return APIRequest(url=self.endpoint, parameters=selection, method='GET')

        data = {**selection, **copy.deepcopy(self.extra_data)}
        body = copy.deepcopy(self.body_template)
        if self.data_key:
            body[self.data_key] = data
        else:
            body.update(data)

        return APIRequest(url=self.endpoint, method=self.method, json_body=body)

    def fetch(self, parent_id: str, offset: int, page_size: int) -> Any:
        request = self.build_request(Page(parent_id, offset, page_size))
        return self.http_client.send(request).raw_data
