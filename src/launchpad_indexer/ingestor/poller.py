"""Periodic chain poller that backfills and repairs the projection.

The webhook is the low-latency path; this loop is the safety net. Every cycle
pulls the most recent transactions for each watched contract, merges them,
orders them oldest first and pushes them through the same decode -> reconcile
path the webhook uses. Everything it replays is idempotent, so overlap with
webhook deliveries is harmless.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from launchpad_indexer.chain.client import ChainClientError, HiroClient
from launchpad_indexer.chain.models import RawTransaction
from launchpad_indexer.ingestor.decoder import EventDecoder
from launchpad_indexer.reconciler import ApplyCounts, Reconciler, ReconcileError

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_SYNC_INTERVAL_SECONDS = 30.0
DEFAULT_WARMUP_SECONDS = 5.0
DEFAULT_CYCLE_TIMEOUT_SECONDS = 120.0
DEFAULT_FETCH_LIMIT = 50
DEFAULT_STOP_GRACE_SECONDS = 5.0


class SyncState(str, Enum):
    """State of the poll loop."""

    STOPPED = "stopped"
    STARTING = "starting"
    SYNCING = "syncing"
    IDLE = "idle"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class SyncStats:
    """Statistics for the poll loop across cycles."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    events_applied: int = 0
    last_sync_time: datetime | None = None
    last_sync_duration_seconds: float = 0.0
    last_error: str | None = None


@dataclass
class SyncResult(ApplyCounts):
    """Counts for a single poll cycle."""

    fetched: int = 0


# Type aliases for callbacks
StateCallback = Callable[[SyncState], None]
SyncCallback = Callable[[SyncStats], None]


class PollSyncError(Exception):
    """A poll cycle failed; the next cycle retries it."""


class PollSyncLoop:
    """Background service that polls the chain API and reconciles new events.

    This service:
    - Waits `warmup_seconds`, runs one cycle, then one every `interval_seconds`
    - Fetches the latest `limit` transactions per watched contract
    - Deduplicates by tx id and applies events oldest first
    - Logs and counts failures without stopping

    Example:
        ```python
        loop = PollSyncLoop(client, decoder, reconciler, contract_ids=[factory, curve])
        await loop.start()
        ...
        await loop.stop()
        ```
    """

    def __init__(
        self,
        client: HiroClient,
        decoder: EventDecoder,
        reconciler: Reconciler,
        *,
        contract_ids: Sequence[str],
        limit: int = DEFAULT_FETCH_LIMIT,
        interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        warmup_seconds: float = DEFAULT_WARMUP_SECONDS,
        cycle_timeout_seconds: float = DEFAULT_CYCLE_TIMEOUT_SECONDS,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
        on_state_change: StateCallback | None = None,
        on_sync_complete: SyncCallback | None = None,
    ) -> None:
        """Initialize the poll loop.

        Args:
            client: Chain API client.
            decoder: Decoder turning transactions into domain events.
            reconciler: Reconciler applying events to the store.
            contract_ids: Fully qualified contracts to poll.
            limit: Transactions fetched per contract per cycle.
            interval_seconds: Delay between cycles (default: 30).
            warmup_seconds: Delay before the first cycle (default: 5).
            cycle_timeout_seconds: Upper bound for one cycle.
            stop_grace_seconds: Time `stop()` lets an in-flight cycle finish.
            on_state_change: Callback for state changes.
            on_sync_complete: Callback after each successful cycle.
        """
        self._client = client
        self._decoder = decoder
        self._reconciler = reconciler
        self._contract_ids = list(contract_ids)
        self._limit = limit
        self._interval = interval_seconds
        self._warmup = warmup_seconds
        self._cycle_timeout = cycle_timeout_seconds
        self._stop_grace = stop_grace_seconds
        self._on_state_change = on_state_change
        self._on_sync_complete = on_sync_complete

        self._state = SyncState.STOPPED
        self._stats = SyncStats()
        self._sync_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    @property
    def state(self) -> SyncState:
        """Current loop state."""
        return self._state

    @property
    def stats(self) -> SyncStats:
        """Statistics across cycles."""
        return self._stats

    def _set_state(self, new_state: SyncState) -> None:
        """Update state and notify callback."""
        old_state = self._state
        self._state = new_state
        if self._on_state_change and old_state != new_state:
            try:
                self._on_state_change(new_state)
            except Exception as e:
                logger.warning("State change callback failed: %s", e)

    async def start(self) -> None:
        """Start the background loop; the first cycle runs after the warm-up delay."""
        if self._state != SyncState.STOPPED:
            logger.warning("Cannot start poll loop: already in state %s", self._state.value)
            return

        self._set_state(SyncState.STARTING)
        self._stop_event.clear()
        self._sync_task = asyncio.create_task(self._sync_loop())
        self._set_state(SyncState.IDLE)
        logger.info(
            "Poll sync started for %d contracts (warm-up %.0fs, interval %.0fs)",
            len(self._contract_ids),
            self._warmup,
            self._interval,
        )

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight cycle finish its current event."""
        if self._state == SyncState.STOPPED:
            return

        self._set_state(SyncState.STOPPING)
        self._stop_event.set()

        if self._sync_task:
            with contextlib.suppress(TimeoutError, asyncio.CancelledError):
                # wait_for cancels the task if the grace period runs out.
                await asyncio.wait_for(self._sync_task, timeout=self._stop_grace)
            self._sync_task = None

        self._set_state(SyncState.STOPPED)
        logger.info("Poll sync stopped")

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for `delay`; returns True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except TimeoutError:
            return False

    async def _sync_loop(self) -> None:
        """Background loop: warm-up, then one cycle per interval."""
        delay = self._warmup
        while not self._stop_event.is_set():
            try:
                if await self._wait_or_stop(delay):
                    break
                delay = self._interval
                await self.sync_once()
            except asyncio.CancelledError:
                break
            except PollSyncError as e:
                # Already counted; keep running and retry next interval.
                logger.error("Poll cycle failed: %s", e)
            except Exception:
                logger.exception("Unexpected error in poll loop")

    async def sync_once(self) -> SyncResult:
        """Run one poll cycle now.

        Cycles never overlap: a manual call waits for a running cycle.

        Raises:
            PollSyncError: If fetching or reconciling failed or the cycle timed out.
        """
        async with self._cycle_lock:
            self._set_state(SyncState.SYNCING)
            start_time = datetime.now(UTC)
            self._stats.total_syncs += 1

            try:
                result = await asyncio.wait_for(self._run_cycle(), timeout=self._cycle_timeout)
            except (ChainClientError, ReconcileError, TimeoutError) as e:
                message = str(e) or f"cycle exceeded {self._cycle_timeout:.0f}s"
                self._stats.failed_syncs += 1
                self._stats.last_error = message
                self._set_state(SyncState.ERROR)
                raise PollSyncError(message) from e
            except Exception as e:
                logger.exception("Poll cycle failed unexpectedly")
                self._stats.failed_syncs += 1
                self._stats.last_error = str(e) or type(e).__name__
                self._set_state(SyncState.ERROR)
                raise PollSyncError(self._stats.last_error) from e

            end_time = datetime.now(UTC)
            self._stats.successful_syncs += 1
            self._stats.events_applied += result.applied
            self._stats.last_sync_time = end_time
            self._stats.last_sync_duration_seconds = (end_time - start_time).total_seconds()
            self._stats.last_error = None
            if self._state == SyncState.SYNCING:
                self._set_state(SyncState.IDLE)

            logger.info(
                "Poll cycle: %d fetched, %d events, %d applied (%d new tokens) in %.2fs",
                result.fetched,
                result.processed,
                result.applied,
                result.created,
                self._stats.last_sync_duration_seconds,
            )

            if self._on_sync_complete:
                try:
                    self._on_sync_complete(self._stats)
                except Exception as e:
                    logger.warning("Sync complete callback failed: %s", e)

            return result

    async def _fetch_ordered(self) -> list[RawTransaction]:
        """Fetch every watched contract, dedupe by tx id, order oldest first."""
        by_tx_id: dict[str, RawTransaction] = {}
        for contract_id in self._contract_ids:
            for tx in await self._client.get_transactions(contract_id, limit=self._limit):
                by_tx_id.setdefault(tx.tx_id, tx)
        return sorted(by_tx_id.values(), key=RawTransaction.sort_key)

    async def _run_cycle(self) -> SyncResult:
        result = SyncResult()
        txs = await self._fetch_ordered()
        result.fetched = len(txs)

        for tx in txs:
            if self._stop_event.is_set():
                logger.info("Stop requested; ending cycle early")
                break

            event = self._decoder.decode(tx)
            if event is None:
                result.skipped += 1
                continue

            result.record(await self._reconciler.apply(event))

        return result
