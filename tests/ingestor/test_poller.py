"""Tests for the chain poll loop."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from launchpad_indexer.chain.client import ChainApiError, HiroClient
from launchpad_indexer.chain.models import RawTransaction
from launchpad_indexer.ingestor.decoder import EventDecoder
from launchpad_indexer.ingestor.poller import (
    DEFAULT_FETCH_LIMIT,
    DEFAULT_SYNC_INTERVAL_SECONDS,
    DEFAULT_WARMUP_SECONDS,
    PollSyncError,
    PollSyncLoop,
    SyncState,
    SyncStats,
)
from launchpad_indexer.reconciler import Reconciler
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.repos import TokenRepository

DEPLOYER = "ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM"
FACTORY = f"{DEPLOYER}.launchpad-factory"
CURVE = f"{DEPLOYER}.bonding-curve"


@pytest.fixture
def chain_txs(hiro_registration_item, hiro_buy_item) -> dict[str, list[RawTransaction]]:
    """Transactions per contract, newest first like the API."""
    return {
        FACTORY: [RawTransaction.from_api(hiro_registration_item())],
        CURVE: [
            RawTransaction.from_api(hiro_buy_item("0xbuy2", block_height=103)),
            RawTransaction.from_api(hiro_buy_item("0xbuy1", block_height=101)),
        ],
    }


@pytest.fixture
def mock_client(chain_txs: dict[str, list[RawTransaction]]) -> MagicMock:
    """Create a mock Hiro client serving `chain_txs`."""
    client = MagicMock(spec=HiroClient)

    async def get_transactions(contract_id: str, *, limit: int = 50) -> list[RawTransaction]:
        return chain_txs.get(contract_id, [])[:limit]

    client.get_transactions = AsyncMock(side_effect=get_transactions)
    return client


def _loop(client: MagicMock, db: DatabaseManager, **kwargs) -> PollSyncLoop:
    # Curve first so ordering has to come from the sort, not the fetch order.
    kwargs.setdefault("contract_ids", [CURVE, FACTORY])
    return PollSyncLoop(client, EventDecoder(), Reconciler(db), **kwargs)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


class TestSyncStats:
    """Tests for SyncStats dataclass."""

    def test_defaults(self) -> None:
        stats = SyncStats()

        assert stats.total_syncs == 0
        assert stats.successful_syncs == 0
        assert stats.failed_syncs == 0
        assert stats.events_applied == 0
        assert stats.last_sync_time is None
        assert stats.last_error is None


class TestPollSyncLoop:
    """Tests for PollSyncLoop."""

    @pytest.mark.asyncio
    async def test_init_defaults(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager)

        assert loop.state == SyncState.STOPPED
        assert loop._interval == DEFAULT_SYNC_INTERVAL_SECONDS
        assert loop._warmup == DEFAULT_WARMUP_SECONDS
        assert loop._limit == DEFAULT_FETCH_LIMIT

    @pytest.mark.asyncio
    async def test_sync_once_applies_in_chain_order(
        self, mock_client: MagicMock, db_manager: DatabaseManager
    ) -> None:
        loop = _loop(mock_client, db_manager)

        result = await loop.sync_once()

        assert result.fetched == 3
        assert result.processed == 3
        assert result.created == 1
        assert result.applied == 3
        assert result.deferred == 0
        async with db_manager.get_async_session() as session:
            token = await TokenRepository(session).get_by_symbol("FROG")
        assert token is not None
        assert token.version == 2
        assert token.reserve == Decimal("20")
        assert loop.stats.successful_syncs == 1
        assert loop.stats.events_applied == 3
        assert loop.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_second_cycle_is_idempotent(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager)
        await loop.sync_once()

        result = await loop.sync_once()

        assert result.applied == 0
        assert result.duplicates == 3
        assert loop.stats.successful_syncs == 2

    @pytest.mark.asyncio
    async def test_dedupes_across_contracts(
        self, mock_client: MagicMock, db_manager: DatabaseManager, chain_txs
    ) -> None:
        chain_txs[FACTORY] = chain_txs[FACTORY] + chain_txs[CURVE]
        loop = _loop(mock_client, db_manager)

        result = await loop.sync_once()

        assert result.fetched == 3

    @pytest.mark.asyncio
    async def test_passes_limit(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager, limit=1)

        result = await loop.sync_once()

        assert result.fetched == 2
        mock_client.get_transactions.assert_any_await(CURVE, limit=1)

    @pytest.mark.asyncio
    async def test_client_failure(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        mock_client.get_transactions.side_effect = ChainApiError("HTTP 503")
        loop = _loop(mock_client, db_manager)

        with pytest.raises(PollSyncError, match="503"):
            await loop.sync_once()

        assert loop.state == SyncState.ERROR
        assert loop.stats.failed_syncs == 1
        assert loop.stats.last_error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_cycle_timeout(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        async def hang(contract_id: str, *, limit: int = 50) -> list[RawTransaction]:
            await asyncio.sleep(10)
            return []

        mock_client.get_transactions.side_effect = hang
        loop = _loop(mock_client, db_manager, cycle_timeout_seconds=0.05)

        with pytest.raises(PollSyncError, match="cycle exceeded"):
            await loop.sync_once()

    @pytest.mark.asyncio
    async def test_start_stop(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager, warmup_seconds=0, interval_seconds=60)

        await loop.start()
        await _wait_until(lambda: loop.stats.successful_syncs == 1)
        assert loop.state == SyncState.IDLE

        await loop.stop()
        assert loop.state == SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_warmup_delays_first_cycle(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager, warmup_seconds=60)

        await loop.start()
        await asyncio.sleep(0.05)

        assert loop.stats.total_syncs == 0
        await loop.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failed_cycle(
        self, mock_client: MagicMock, db_manager: DatabaseManager, chain_txs
    ) -> None:
        calls = 0

        async def flaky(contract_id: str, *, limit: int = 50) -> list[RawTransaction]:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ChainApiError("HTTP 502")
            return chain_txs.get(contract_id, [])

        mock_client.get_transactions.side_effect = flaky
        loop = _loop(mock_client, db_manager, warmup_seconds=0, interval_seconds=0.01)

        await loop.start()
        await _wait_until(lambda: loop.stats.successful_syncs >= 1)
        await loop.stop()

        assert loop.stats.failed_syncs == 1
        assert loop.stats.last_error is None

    @pytest.mark.asyncio
    async def test_unexpected_error_counts_as_failed_cycle(
        self, mock_client: MagicMock, db_manager: DatabaseManager
    ) -> None:
        mock_client.get_transactions.side_effect = KeyError("results")
        loop = _loop(mock_client, db_manager)

        with pytest.raises(PollSyncError):
            await loop.sync_once()

        assert loop.state == SyncState.ERROR
        assert loop.stats.failed_syncs == 1
        assert loop.stats.last_error == "'results'"

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(
        self, mock_client: MagicMock, db_manager: DatabaseManager, chain_txs
    ) -> None:
        calls = 0

        async def broken_then_ok(contract_id: str, *, limit: int = 50) -> list[RawTransaction]:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("decoder blew up")
            return chain_txs.get(contract_id, [])

        mock_client.get_transactions.side_effect = broken_then_ok
        loop = _loop(mock_client, db_manager, warmup_seconds=0, interval_seconds=0.01)

        await loop.start()
        await _wait_until(lambda: loop.stats.successful_syncs >= 1)
        assert loop._sync_task is not None
        assert not loop._sync_task.done()
        await loop.stop()

        assert loop.stats.failed_syncs == 1
        assert loop.state == SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager, warmup_seconds=60)

        await loop.start()
        task = loop._sync_task
        await loop.start()

        assert loop._sync_task is task
        await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_when_stopped(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        loop = _loop(mock_client, db_manager)

        await loop.stop()

        assert loop.state == SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_callbacks(self, mock_client: MagicMock, db_manager: DatabaseManager) -> None:
        states: list[SyncState] = []
        completed: list[int] = []
        loop = _loop(
            mock_client,
            db_manager,
            on_state_change=states.append,
            on_sync_complete=lambda stats: completed.append(stats.successful_syncs),
        )

        await loop.sync_once()

        assert states == [SyncState.SYNCING, SyncState.IDLE]
        assert completed == [1]
