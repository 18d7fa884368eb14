"""Shared HTTP transport for the TestRail and Jira REST clients."""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Type

import aiohttp

from ..utils.exceptions import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RemoteError,
)
from ..utils.logging_config import get_logger, get_security_logger

RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (NetworkError, RateLimitError)


class RateLimiter:
    """At most ``max_requests`` requests in any ``time_window`` seconds."""

    def __init__(self, max_requests: int = 100, time_window: int = 60):
        self.max_requests = max_requests
        self.time_window = time_window
        self._sent: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.logger = get_logger(__name__)

    def _expire(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= self.time_window:
            self._sent.popleft()

    async def acquire(self) -> None:
        """Wait for a free slot in the window, then take it."""
        while True:
            async with self._lock:
                now = time.monotonic()
                self._expire(now)
                if len(self._sent) < self.max_requests:
                    self._sent.append(now)
                    return
                wait = self.time_window - (now - self._sent[0])

            self.logger.warning(f"Rate limit reached, waiting {wait:.2f} seconds")
            await asyncio.sleep(max(wait, 0))

    def reset(self) -> None:
        self._sent.clear()

    @property
    def current_usage(self) -> float:
        """Share of the window already used, as a percentage."""
        self._expire(time.monotonic())
        return len(self._sent) / self.max_requests * 100


class RetryStrategy:
    """Exponential backoff for transient failures.

    ``max_retries=0`` means one attempt and no retries, which is how both
    source clients are built unless configured otherwise.
    """

    def __init__(
        self,
        max_retries: int = 0,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, retry_count: int) -> float:
        delay = min(self.initial_delay * self.exponential_base**retry_count, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        retry_on: Tuple[Type[Exception], ...] = RETRYABLE_ERRORS,
        **kwargs,
    ) -> Any:
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except retry_on:
                if attempt >= self.max_retries:
                    raise
            await asyncio.sleep(self.get_delay(attempt))
            attempt += 1


@dataclass
class RequestMetrics:
    """Request counters kept per client for health checks."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency: float = 0.0
    last_request_time: Optional[datetime] = None

    def record_success(self, latency: float) -> None:
        self.successful_requests += 1
        self.total_latency += latency
        self.last_request_time = datetime.now()

    @property
    def average_latency(self) -> float:
        if not self.successful_requests:
            return 0.0
        return self.total_latency / self.successful_requests


class BaseIntegrationClient(ABC):
    """Authenticated JSON-over-HTTP client with rate limiting.

    Each instance owns its session and credentials; nothing is shared
    between the TestRail and Jira clients. Non-2xx answers are mapped onto
    :class:`RemoteError` and its subclasses.
    """

    service_name = "integration"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        rate_limit: int = 100,
        timeout: int = 30,
        max_retries: int = 0,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.timeout = timeout
        self._auth = aiohttp.BasicAuth(username, password)
        self.logger = get_logger(self.__class__.__name__)
        self.security_logger = get_security_logger()

        self.rate_limiter = RateLimiter(max_requests=rate_limit, time_window=60)
        self.retry_strategy = RetryStrategy(max_retries=max_retries)
        self.metrics = RequestMetrics()

        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the configured credentials are accepted."""

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    connector=aiohttp.TCPConnector(limit=20, limit_per_host=10),
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    headers={
                        "User-Agent": "HappyTrack/1.0",
                        "Accept": "application/json",
                    },
                    auth=self._auth,
                )
            return self._session

    def _build_url(self, endpoint: str) -> Any:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``endpoint`` relative to the base URL and decode the body."""
        await self.rate_limiter.acquire()
        url = self._build_url(endpoint)
        self.logger.debug(f"GET {endpoint}")

        async def attempt() -> Any:
            session = await self._get_session()
            try:
                async with session.request("GET", url, params=params) as response:
                    return await self._handle_response(response)
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                raise NetworkError(
                    f"Failed to connect to {self.service_name}: {type(e).__name__}"
                ) from e

        started = time.monotonic()
        self.metrics.total_requests += 1
        try:
            result = await self.retry_strategy.execute_with_retry(attempt)
        except Exception as e:
            self.metrics.failed_requests += 1
            self.logger.error(f"Request failed: GET {endpoint}: {e}")
            raise

        self.metrics.record_success(time.monotonic() - started)
        return result

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        status = response.status

        if status == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise RateLimitError(
                f"{self.service_name} rate limit exceeded. Retry after {retry_after} seconds",
                status_code=status,
            )

        if status in (401, 403):
            self.security_logger.log_authentication_attempt(
                service=self.service_name, username=self.username, success=False
            )
            raise AuthenticationError(
                f"Authentication failed for {self.service_name}: {status}",
                status_code=status,
            )

        if status >= 400:
            body = await response.text()
            raise RemoteError(
                f"{self.service_name} request failed with status {status}",
                status_code=status,
                details={"body": body[:500]},
            )

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Any:
        """Map the status onto the error taxonomy, then decode the body."""
        self.security_logger.log_api_request(
            service=self.service_name,
            endpoint=response.url.path,
            method=response.method,
            status_code=response.status,
        )
        await self._raise_for_status(response)

        if response.status == 204:
            return None
        if response.content_type == "application/json":
            return await response.json()
        return {"content": await response.text()}

    def get_metrics(self) -> Dict[str, Any]:
        metrics = asdict(self.metrics)
        metrics["average_latency"] = self.metrics.average_latency
        metrics["rate_limit_usage"] = f"{self.rate_limiter.current_usage:.1f}%"
        return metrics

    async def health_check(self) -> Dict[str, Any]:
        health: Dict[str, Any] = {"service": self.service_name}
        try:
            health["healthy"] = await self.test_connection()
        except Exception as e:
            health["healthy"] = False
            health["error"] = str(e)

        health["metrics"] = self.get_metrics()
        health["timestamp"] = datetime.now().isoformat()
        return health

    async def close(self) -> None:
        """Release the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self.logger.info(f"{self.service_name} client closed", extra={"metrics": self.get_metrics()})

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
