"""
HTTPClient module for executing upstream calls with failure classification,
bounded exponential-backoff retry and rate limiting
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, TypeVar

import requests

from catalog_adapter.cancellation import CancellationToken, interruptible_sleep
from catalog_adapter.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar('T')

# HTTP status codes that should trigger retries
DEFAULT_RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

DEFAULT_USER_AGENT = 'Mozilla/5.0 (compatible; CatalogAdapter/1.0)'


class ErrorKind(str, Enum):
    """Classification of transport failures"""
    NETWORK = "network"
    TIMEOUT = "timeout"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


RETRYABLE_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.SERVER_ERROR,
    ErrorKind.RATE_LIMITED,
})


class TransportError(Exception):
    """Base class for classified transport failures"""
    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class NetworkError(TransportError):
    """Raised when no response was received"""
    kind = ErrorKind.NETWORK


class RequestTimeoutError(TransportError):
    """Raised when a single call exceeds its timeout"""
    kind = ErrorKind.TIMEOUT


class ClientError(TransportError):
    """Raised for 4xx responses (other than 429); never retried"""
    kind = ErrorKind.CLIENT_ERROR


class ServerError(TransportError):
    """Raised for 5xx responses"""
    kind = ErrorKind.SERVER_ERROR


class RateLimitedError(TransportError):
    """Raised for 429 responses, carrying the Retry-After hint when present"""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, url: Optional[str] = None, retry_after: Optional[int] = None):
        message = (
            f"Rate limit exceeded. Retry after {retry_after} seconds."
            if retry_after is not None else "Rate limit exceeded."
        )
        super().__init__(message, status_code=429, url=url)
        self.retry_after = retry_after


class MaxRetriesExceededError(TransportError):
    """Raised when a retryable failure persists through every attempt"""
    kind = ErrorKind.MAX_RETRIES_EXCEEDED

    def __init__(self, last_error: TransportError, attempts: int):
        super().__init__(
            f"Failed after {attempts} attempts. Last error: {last_error}",
            status_code=last_error.status_code,
            url=last_error.url,
        )
        self.last_error = last_error
        self.attempts = attempts


def _parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    if not isinstance(headers, Mapping):
        return None
    value = None
    for name, header_value in headers.items():
        if name.lower() == 'retry-after':
            value = header_value
            break
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        # HTTP-date form is not interpreted
        return None


def classify_status(status_code: int, headers: Optional[Mapping[str, str]] = None,
                    url: Optional[str] = None, reason: str = "") -> TransportError:
    """
    Map an HTTP error status to its classified error

    Args:
        status_code: HTTP status code of the failed response
        headers: Response headers, used for the Retry-After hint
        url: Request URL for diagnostics
        reason: Optional reason phrase

    Returns:
        Classified TransportError instance (not raised)
    """
    if status_code == 429:
        return RateLimitedError(url, _parse_retry_after(headers))

    suffix = f": {reason}" if reason else ""

    if 400 <= status_code < 500:
        return ClientError(f"Client error {status_code}{suffix}", status_code, url)

    return ServerError(f"Server error {status_code}{suffix}", status_code, url)


def classify_exception(error: BaseException, url: Optional[str] = None) -> Optional[TransportError]:
    """
    Convert a raised exception into a classified TransportError

    Args:
        error: Exception raised by the underlying call
        url: Request URL for diagnostics

    Returns:
        TransportError for transport failures, None for anything else
    """
    if isinstance(error, TransportError):
        return error

    # ConnectTimeout is both a ConnectionError and a Timeout; timeout wins
    if isinstance(error, requests.exceptions.Timeout):
        return RequestTimeoutError(f"Request timeout: {error}", url=url)

    if isinstance(error, requests.exceptions.HTTPError):
        response = error.response
        if response is not None:
            return classify_status(
                response.status_code,
                getattr(response, 'headers', None),
                url,
                getattr(response, 'reason', '') or '',
            )
        return NetworkError(f"HTTP error without response: {error}", url=url)

    if isinstance(error, requests.exceptions.RequestException):
        return NetworkError(f"Network error: {error}", url=url)

    return None


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry settings for one HTTPClient"""
    max_retries: int = 3
    base_delay_ms: int = 1000
    retryable_status_codes: FrozenSet[int] = DEFAULT_RETRYABLE_STATUS_CODES

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        object.__setattr__(self, 'retryable_status_codes', frozenset(self.retryable_status_codes))

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before the attempt following `attempt` (0-based): 1x, 2x, 4x... the base"""
        return self.base_delay_ms * (2 ** attempt)


@dataclass
class APIRequest:
    """Represents a single API request"""
    url: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    json_body: Optional[Any] = None


@dataclass
class APIResponse:
    """Standardised API response wrapper"""
    raw_data: Any
    metadata: Dict[str, Any]
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    request_timestamp: datetime = field(default_factory=datetime.now)


class HTTPClient:
    """HTTP client with failure classification, retry logic and rate limiting"""

    def __init__(self, retry_policy: Optional[RetryPolicy] = None, min_delay_ms: int = 1000,
                 timeout_seconds: float = 30.0, base_url: str = "",
                 user_agent: str = DEFAULT_USER_AGENT, enable_rate_limit: bool = True,
                 rate_limiter: Optional[RateLimiter] = None):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url
        self.enable_rate_limit = enable_rate_limit
        self.rate_limiter = rate_limiter or RateLimiter(min_delay_ms)
        self.headers: Dict[str, str] = {
            'User-Agent': user_agent,
            'Accept': 'application/json, text/html;q=0.9, */*;q=0.8',
        }
        self.session: Optional[requests.Session] = None

    def is_retryable(self, error: TransportError) -> bool:
        """
        Decide whether a classified error may be retried under this client's policy

        Args:
            error: Classified transport error

        Returns:
            True if another attempt should be made
        """
        if not error.retryable:
            return False
        if error.status_code is None:
            # Network and timeout failures carry no status code
            return True
        return error.status_code in self.retry_policy.retryable_status_codes

    def execute(self, call: Callable[[], T], cancel_token: Optional[CancellationToken] = None,
                description: str = "request") -> T:
        """
        Execute one logical call with rate limiting and bounded retry

        Rate limiting is applied once before the whole retry sequence; backoff
        delays are in addition to the minimum inter-call spacing.

        Args:
            call: Zero-argument callable performing a single attempt
            cancel_token: Optional token checked before every attempt and sleep
            description: Label used in log messages

        Returns:
            Whatever `call` returns on its first successful attempt

        Raises:
            TransportError: Non-retryable classified failure, raised on first occurrence
            MaxRetriesExceededError: If a retryable failure persists through every attempt
            OperationCancelledError: If the token is cancelled
        """
        if self.enable_rate_limit:
            self.rate_limiter.wait(cancel_token)

        max_retries = self.retry_policy.max_retries

        for attempt in range(max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                return call()
            except (TransportError, requests.exceptions.RequestException) as e:
                error = classify_exception(e)

                if not self.is_retryable(error):
                    logger.warning(f"{description} failed with non-retryable {error.kind.value}: {error}")
                    if error is e:
                        raise
                    raise error from e

                if attempt >= max_retries:
                    logger.error(f"{description} failed after {attempt + 1} attempts: {error}")
                    raise MaxRetriesExceededError(error, attempts=attempt + 1) from e

                delay_ms = self.retry_policy.backoff_delay_ms(attempt)
                logger.warning(
                    f"{description} failed ({error.kind.value}), attempt {attempt + 1}/{max_retries + 1}, "
                    f"retrying in {delay_ms}ms"
                )
                interruptible_sleep(delay_ms / 1000.0, cancel_token)

        # The loop always returns or raises
        raise AssertionError("unreachable")

    def send(self, request: APIRequest) -> APIResponse:
        """
        Perform a single HTTP attempt without retry or rate limiting

        Args:
            request: APIRequest object containing request details

        Returns:
            APIResponse object with response data

        Raises:
            TransportError: Classified failure for the attempt
        """
        if self.session is None:
            self.session = requests.Session()

        url = self._resolve_url(request.url)
        combined_headers = {**self.headers, **request.headers}
        request_timestamp = datetime.now()
        method = request.method.upper()
        response = None

        try:
            if method == 'GET':
                response = self.session.get(
                    url,
                    params=request.parameters,
                    headers=combined_headers,
                    timeout=self.timeout_seconds
                )
            elif method == 'POST':
                response = self.session.post(
                    url,
                    params=request.parameters or None,
                    json=request.json_body,
                    headers=combined_headers,
                    timeout=self.timeout_seconds
                )
            else:
                response = self.session.request(
                    method,
                    url,
                    params=request.parameters or None,
                    json=request.json_body,
                    headers=combined_headers,
                    timeout=self.timeout_seconds
                )

            response.raise_for_status()

        except requests.exceptions.HTTPError as e:
            if response is None:
                raise NetworkError(f"HTTP error without response: {e}", url=url) from e
            raise classify_status(
                response.status_code,
                getattr(response, 'headers', None),
                url,
                str(getattr(response, 'reason', '') or ''),
            ) from e
        except requests.exceptions.RequestException as e:
            raise classify_exception(e, url) from e

        try:
            raw_data = response.json()
        except ValueError:
            # Handle non-JSON responses
            raw_data = {'text': response.text}

        return APIResponse(
            raw_data=raw_data,
            metadata={
                'url': url,
                'method': method,
                'parameters': request.parameters,
            },
            status_code=response.status_code,
            headers=dict(response.headers),
            request_timestamp=request_timestamp
        )

    def make_request(self, request: APIRequest,
                     cancel_token: Optional[CancellationToken] = None) -> APIResponse:
        """
        Make HTTP request with integrated rate limiting, retry and exponential backoff

        Args:
            request: APIRequest object containing request details
            cancel_token: Optional cancellation token

        Returns:
            APIResponse object with response data
        """
        return self.execute(
            lambda: self.send(request),
            cancel_token=cancel_token,
            description=f"{request.method.upper()} {request.url}"
        )

    def reset_rate_limiter(self) -> None:
        self.rate_limiter.reset()

    def close_connection(self) -> None:
        """
        Close HTTP session and release resources
        """
        if self.session:
            self.session.close()
            self.session = None

    def _resolve_url(self, url: str) -> str:
        if not self.base_url or url.startswith(('http://', 'https://')):
            return url
        return f"{self.base_url.rstrip('/')}/{url.lstrip('/')}"
