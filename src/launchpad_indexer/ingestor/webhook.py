"""Chainhook webhook ingestion.

A chainhook delivery is a JSON document with `apply` blocks (new chain tip)
and `rollback` blocks (reorged away). Transactions in `apply` blocks are
decoded and reconciled in delivery order. A failure raises
`WebhookProcessingError` so the HTTP layer answers 500 and the sender
redelivers; everything already applied is idempotent on replay.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from launchpad_indexer.chain.models import RawTransaction
from launchpad_indexer.ingestor.decoder import EventDecoder
from launchpad_indexer.reconciler import ApplyCounts, Reconciler, ReconcileError

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-chainhook-secret"
AUTHORIZATION_HEADER = "authorization"
DEFAULT_PROCESSING_TIMEOUT_SECONDS = 30.0


class WebhookProcessingError(Exception):
    """A delivery could not be fully processed; it should be redelivered."""


@dataclass
class WebhookResult(ApplyCounts):
    """Counts for one chainhook delivery."""

    blocks: int = 0
    rolled_back_blocks: int = 0


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class WebhookIngestor:
    """Authenticates and applies chainhook deliveries.

    Example:
        ```python
        ingestor = WebhookIngestor(decoder, reconciler, secret="s3cret")
        if not ingestor.authenticate(request.headers):
            ...  # 401
        result = await ingestor.ingest(payload)
        ```
    """

    def __init__(
        self,
        decoder: EventDecoder,
        reconciler: Reconciler,
        *,
        secret: str | None = None,
        processing_timeout_seconds: float = DEFAULT_PROCESSING_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the ingestor.

        Args:
            decoder: Decoder turning transactions into domain events.
            reconciler: Reconciler applying events to the store.
            secret: Shared secret; when unset every delivery is accepted.
            processing_timeout_seconds: Upper bound for processing one delivery.
        """
        self._decoder = decoder
        self._reconciler = reconciler
        self._secret = secret or None
        self._timeout = processing_timeout_seconds
        if self._secret is None:
            logger.warning("No chainhook secret configured; webhook deliveries are not authenticated")

    def authenticate(self, headers: Mapping[str, str]) -> bool:
        """Check the shared secret in `x-chainhook-secret` or `Authorization: Bearer`."""
        if self._secret is None:
            return True

        provided = _header(headers, SECRET_HEADER)
        if provided is None:
            authorization = _header(headers, AUTHORIZATION_HEADER) or ""
            scheme, _, token = authorization.partition(" ")
            if scheme.lower() == "bearer" and token:
                provided = token.strip()
        if not provided:
            return False
        return hmac.compare_digest(provided.encode(), self._secret.encode())

    async def ingest(self, payload: Any) -> WebhookResult:
        """Process one delivery.

        Raises:
            WebhookProcessingError: On a malformed payload, a store failure, a
                deferred event, or timeout.
        """
        if not isinstance(payload, dict):
            raise WebhookProcessingError("Payload must be a JSON object")
        try:
            return await asyncio.wait_for(self._process(payload), timeout=self._timeout)
        except ReconcileError as e:
            raise WebhookProcessingError(str(e)) from e
        except TimeoutError as e:
            raise WebhookProcessingError(f"Processing exceeded {self._timeout:.0f}s") from e

    async def _process(self, payload: dict[str, Any]) -> WebhookResult:
        result = WebhookResult()

        rollback = payload.get("rollback") or []
        if rollback:
            # The ledger is append-only; reorged blocks are reported, not undone.
            result.rolled_back_blocks = len(rollback)
            logger.warning("Ignoring %d rollback block(s) in chainhook delivery", len(rollback))

        blocks = payload.get("apply") or []
        if not isinstance(blocks, list):
            raise WebhookProcessingError("'apply' must be a list")

        for block in blocks:
            if not isinstance(block, dict):
                continue
            result.blocks += 1
            for item in block.get("transactions") or []:
                if not isinstance(item, dict):
                    result.skipped += 1
                    continue
                tx = RawTransaction.from_chainhook(item, block)
                event = self._decoder.decode(tx)
                if event is None:
                    result.skipped += 1
                    continue
                result.record(await self._reconciler.apply(event))

        logger.info(
            "Chainhook delivery: %d blocks, %d events, %d applied, %d duplicates",
            result.blocks,
            result.processed,
            result.applied,
            result.duplicates,
        )
        if result.deferred:
            # Trades for tokens not yet registered must be redelivered, not acknowledged.
            raise WebhookProcessingError(f"{result.deferred} event(s) deferred awaiting token registration")
        return result
