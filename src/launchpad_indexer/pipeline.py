"""Service orchestrator for the launchpad indexer.

This module provides the Pipeline class that wires the chain client, decoder,
reconciler, poll loop, webhook ingestor and HTTP server together and manages
their lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from aiohttp import web
from redis.asyncio import Redis

from launchpad_indexer.api import ApiServer
from launchpad_indexer.chain.client import HiroClient
from launchpad_indexer.config import Settings, get_settings
from launchpad_indexer.ingestor.decoder import EventDecoder
from launchpad_indexer.ingestor.poller import PollSyncLoop, SyncResult
from launchpad_indexer.ingestor.webhook import WebhookIngestor
from launchpad_indexer.reconciler import Reconciler
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.locks import KeyedLock, RedisKeyedLock, TokenLock

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main orchestrator for the launchpad indexer.

    Pipeline flow:
        {Poll Sync Loop | Chainhook webhook} → Event Decoder → Reconciler → Store

    Example:
        ```python
        from launchpad_indexer.config import get_settings
        from launchpad_indexer.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        serve_http: bool = True,
        run_poll_loop: bool | None = None,
        create_schema: bool = False,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            serve_http: Start the HTTP server (webhook, sync and read endpoints).
            run_poll_loop: Run the background poll loop. Defaults to SYNC_ENABLED.
            create_schema: Create missing tables on start (SQLite/dev convenience).
        """
        self._settings = settings or get_settings()
        self._serve_http = serve_http
        self._run_poll_loop = self._settings.sync.enabled if run_poll_loop is None else run_poll_loop
        self._create_schema = create_schema

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._hiro_client: HiroClient | None = None
        self._reconciler: Reconciler | None = None
        self._poll_loop: PollSyncLoop | None = None
        self._webhook: WebhookIngestor | None = None
        self._runner: web.AppRunner | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def poll_loop(self) -> PollSyncLoop | None:
        return self._poll_loop

    @property
    def webhook(self) -> WebhookIngestor | None:
        return self._webhook

    @property
    def reconciler(self) -> Reconciler | None:
        return self._reconciler

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def request_stop(self) -> None:
        """Ask `run()` to return; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    def _build_locks(self) -> TokenLock:
        settings = self._settings
        if settings.lock.backend == "redis":
            logger.debug("Initializing Redis lock backend...")
            self._redis = Redis.from_url(settings.redis.url)
            return RedisKeyedLock(self._redis, ttl_seconds=settings.lock.ttl_seconds)
        return KeyedLock()

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url, pool_size=settings.database.pool_size)
        if self._create_schema:
            await self._db_manager.init_schema_async()

        logger.debug("Initializing Hiro client...")
        api_key = settings.stacks.hiro_api_key.get_secret_value() if settings.stacks.hiro_api_key else None
        self._hiro_client = HiroClient(
            base_url=settings.stacks.resolved_api_url,
            api_key=api_key,
            timeout_seconds=settings.stacks.request_timeout_seconds,
            requests_per_second=settings.stacks.requests_per_second,
        )

        contract_ids = settings.stacks.contract_ids
        decoder = EventDecoder(contract_ids=contract_ids)
        self._reconciler = Reconciler(self._db_manager, locks=self._build_locks())

        self._poll_loop = PollSyncLoop(
            self._hiro_client,
            decoder,
            self._reconciler,
            contract_ids=contract_ids,
            limit=settings.sync.limit,
            interval_seconds=settings.sync.interval_seconds,
            warmup_seconds=settings.sync.warmup_seconds,
            cycle_timeout_seconds=settings.sync.cycle_timeout_seconds,
        )

        secret = settings.chainhook.secret.get_secret_value() if settings.chainhook.secret else None
        self._webhook = WebhookIngestor(
            decoder,
            self._reconciler,
            secret=secret,
            processing_timeout_seconds=settings.chainhook.processing_timeout_seconds,
        )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._poll_loop and self._run_poll_loop:
            logger.debug("Starting poll sync loop...")
            await self._poll_loop.start()

        if self._serve_http and self._db_manager:
            server = ApiServer(
                self._db_manager,
                webhook=self._webhook,
                poller=self._poll_loop,
                network=self._settings.stacks.network,
            )
            self._runner = web.AppRunner(server.create_app())
            await self._runner.setup()
            site = web.TCPSite(self._runner, host=self._settings.server.host, port=self._settings.server.port)
            await site.start()
            logger.info("HTTP server listening on %s:%d", self._settings.server.host, self._settings.server.port)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._runner:
            logger.debug("Stopping HTTP server...")
            await self._runner.cleanup()
            self._runner = None

        if self._poll_loop:
            logger.debug("Stopping poll sync loop...")
            await self._poll_loop.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._hiro_client:
            await self._hiro_client.close()
            self._hiro_client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def sync_once(self) -> SyncResult:
        """Run a single poll cycle with the initialized components."""
        if self._poll_loop is None:
            raise RuntimeError("Pipeline is not started")
        return await self._poll_loop.sync_once()

    async def run(self) -> None:
        """Start the pipeline and run until `request_stop()` or cancellation."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
