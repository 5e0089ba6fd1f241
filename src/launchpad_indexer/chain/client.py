"""Async Hiro (Stacks) API client with rate limiting and retry logic."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import aiohttp

from launchpad_indexer.chain.models import RawTransaction

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
MAINNET_API_URL = "https://api.hiro.so"
TESTNET_API_URL = "https://api.testnet.hiro.so"
MAX_REQUESTS_PER_SECOND = 5
DEFAULT_REQUEST_TIMEOUT = 15.0
DEFAULT_EVENT_LIMIT = 50

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class ChainClientError(Exception):
    """Base exception for chain API client errors."""


class ChainNotFoundError(ChainClientError):
    """Raised when a requested resource does not exist (404)."""


class ChainApiError(ChainClientError):
    """Raised for retryable/transient errors (429/5xx, timeouts, network issues)."""


class RetryError(ChainApiError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (ChainApiError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator adding retry with exponential backoff to a coroutine function.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class HiroClient:
    """Read-only client for the Hiro Stacks API.

    Only the two endpoints the indexer needs are wrapped: the per-contract
    transaction listing and the single-transaction lookup used to hydrate print
    events when the listing omits them.

    Example:
        ```python
        async with HiroClient(base_url=TESTNET_API_URL) as client:
            txs = await client.get_transactions("ST1...launchpad-factory", limit=50)
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = MAINNET_API_URL,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        event_limit: int = DEFAULT_EVENT_LIMIT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._rate_limiter = RateLimiter(requests_per_second)
        self._event_limit = event_limit
        self._session = session
        self._owns_session = session is None

        logger.info(
            "Initialized HiroClient with base_url=%s, rate_limit=%.1f req/s",
            self._base_url,
            requests_per_second,
        )

    async def __aenter__(self) -> HiroClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["x-api-key"] = self._api_key
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    @with_retry()
    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        await self._rate_limiter.acquire()
        url = f"{self._base_url}{path}"
        try:
            async with self._get_session().get(url, params=params) as resp:
                if resp.status == 404:
                    raise ChainNotFoundError(f"Not found: {path}")
                if resp.status in RETRY_STATUS_CODES:
                    raise ChainApiError(f"HTTP {resp.status} from {path}")
                if resp.status >= 400:
                    raise ChainClientError(f"HTTP {resp.status} from {path}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChainApiError(f"Request to {path} failed: {e}") from e
        except ValueError as e:
            raise ChainApiError(f"Invalid JSON from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ChainClientError(f"Unexpected response shape from {path}")
        return data

    async def get_transaction(self, tx_id: str) -> RawTransaction:
        """Fetch one transaction with its events."""
        data = await self._get_json(
            f"/extended/v1/tx/{tx_id}",
            params={"event_limit": self._event_limit},
        )
        return RawTransaction.from_api(data)

    async def get_transactions(self, contract_id: str, *, limit: int = 50) -> list[RawTransaction]:
        """Fetch the most recent transactions involving a contract.

        Successful contract calls whose listing entry carries fewer events than
        `event_count` are re-fetched individually so print events are present.

        Args:
            contract_id: Fully qualified contract principal (`ADDR.name`).
            limit: Maximum number of transactions (newest first).

        Returns:
            List of RawTransaction in API order (newest first).
        """
        data = await self._get_json(
            f"/extended/v1/address/{contract_id}/transactions",
            params={"limit": limit},
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise ChainClientError("Unexpected transactions response shape")

        txs: list[RawTransaction] = []
        for item in results:
            if not isinstance(item, dict):
                continue
            tx = RawTransaction.from_api(item)
            event_count = tx.raw.get("event_count")
            if (
                tx.is_success
                and tx.is_contract_call
                and isinstance(event_count, int)
                and event_count > len(tx.raw.get("events") or [])
            ):
                tx = await self.get_transaction(tx.tx_id)
            txs.append(tx)

        logger.debug("Fetched %d transactions for %s", len(txs), contract_id)
        return txs
