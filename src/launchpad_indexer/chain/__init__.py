"""Chain access - Hiro API client and normalized transaction records."""

from launchpad_indexer.chain.clarity import ClarityParseError, ResponseValue, parse_repr
from launchpad_indexer.chain.client import (
    ChainApiError,
    ChainClientError,
    ChainNotFoundError,
    HiroClient,
    RateLimiter,
    RetryError,
    with_retry,
)
from launchpad_indexer.chain.models import FunctionArg, PrintEvent, RawTransaction

__all__ = [
    "ChainApiError",
    "ChainClientError",
    "ChainNotFoundError",
    "ClarityParseError",
    "FunctionArg",
    "HiroClient",
    "PrintEvent",
    "RateLimiter",
    "RawTransaction",
    "ResponseValue",
    "RetryError",
    "parse_repr",
    "with_retry",
]
