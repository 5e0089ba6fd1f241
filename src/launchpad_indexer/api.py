"""HTTP surface: chainhook webhook, manual sync, read endpoints and quotes.

Every route is served both at `/<path>` and at `/api/<path>`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from aiohttp import web
from sqlalchemy.exc import SQLAlchemyError

from launchpad_indexer.ingestor.poller import PollSyncError, PollSyncLoop
from launchpad_indexer.ingestor.webhook import WebhookIngestor, WebhookProcessingError
from launchpad_indexer.pricing import curve
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.repos import (
    TOKEN_ORDER_COLUMNS,
    ActivityDTO,
    ActivityRepository,
    TokenDTO,
    TokenRepository,
    TradeDTO,
    TradeRepository,
)

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

MAX_LIMIT = 500
MAX_QUOTE_AMOUNT = Decimal(10**15)
_BONDING_CURVE = curve.BondingCurve()


class BadRequest(ValueError):
    """Invalid query parameter."""


def _dec(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def token_to_dict(token: TokenDTO) -> dict[str, Any]:
    return {
        "id": token.id,
        "symbol": token.symbol,
        "name": token.name,
        "contract_address": token.contract_address,
        "description": token.description,
        "image_uri": token.image_uri,
        "creator": token.creator,
        "tokens_sold": _dec(token.tokens_sold),
        "stx_reserve": _dec(token.reserve),
        "current_price": _dec(token.current_price),
        "market_cap": _dec(token.market_cap),
        "progress_percent": _BONDING_CURVE.progress_percent(token.market_cap),
        "is_graduated": token.is_graduated,
        "graduated_at": _iso(token.graduated_at),
        "created_at": _iso(token.created_at),
    }


def trade_to_dict(trade: TradeDTO) -> dict[str, Any]:
    return {
        "tx_id": trade.tx_id,
        "token_id": trade.token_id,
        "trader": trade.trader,
        "trade_type": trade.trade_type,
        "stx_amount": _dec(trade.stx_amount),
        "token_amount": _dec(trade.token_amount),
        "price_at_trade": _dec(trade.price_at_trade),
        "block_height": trade.block_height,
        "timestamp": _iso(trade.observed_at),
    }


def activity_to_dict(entry: ActivityDTO) -> dict[str, Any]:
    return {
        "id": entry.id,
        "event_type": entry.event_type,
        "tx_id": entry.tx_id,
        "address": entry.address,
        "token_id": entry.token_id,
        "details": entry.details,
        "created_at": _iso(entry.created_at),
    }


def _limit(request: web.Request, default: int) -> int:
    raw = request.query.get("limit")
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise BadRequest("limit must be an integer") from e
    if value < 1:
        raise BadRequest("limit must be positive")
    return min(value, MAX_LIMIT)


def _decimal_param(request: web.Request, name: str, *, default: Decimal | None = None) -> Decimal:
    raw = request.query.get(name)
    if raw is None or raw == "":
        if default is None:
            raise BadRequest(f"{name} is required")
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise BadRequest(f"{name} must be a number") from e
    if not value.is_finite() or value < 0:
        raise BadRequest(f"{name} must be a non-negative number")
    if value > MAX_QUOTE_AMOUNT:
        raise BadRequest(f"{name} is out of range")
    return value


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except BadRequest as e:
        return web.json_response({"error": str(e)}, status=400)
    except SQLAlchemyError:
        logger.exception("Database error serving %s %s", request.method, request.path)
        return web.json_response({"error": "internal server error"}, status=500)


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization,x-chainhook-secret"
    return response


class ApiServer:
    """aiohttp application exposing the indexer.

    Example:
        ```python
        server = ApiServer(db, webhook=ingestor, poller=poll_loop, network="testnet")
        app = server.create_app()
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        webhook: WebhookIngestor | None = None,
        poller: PollSyncLoop | None = None,
        network: str = "testnet",
    ) -> None:
        self._db = db
        self._webhook = webhook
        self._poller = poller
        self._network = network

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware, error_middleware])
        routes: list[tuple[str, str, Handler]] = [
            ("GET", "/health", self.health_handler),
            ("GET", "/tokens", self.tokens_handler),
            ("GET", "/tokens/trending", self.trending_handler),
            ("GET", "/tokens/{symbol}", self.token_detail_handler),
            ("GET", "/tokens/{symbol}/trades", self.token_trades_handler),
            ("GET", "/activity", self.activity_handler),
            ("GET", "/leaderboard", self.leaderboard_handler),
            ("GET", "/quote/buy", self.quote_buy_handler),
            ("GET", "/quote/sell", self.quote_sell_handler),
            ("GET", "/quote/progress", self.quote_progress_handler),
            ("POST", "/chainhook", self.chainhook_handler),
            ("POST", "/sync", self.sync_handler),
        ]
        for method, path, handler in routes:
            for prefix in ("", "/api"):
                app.router.add_route(method, f"{prefix}{path}", handler)
        return app

    # Ingestion

    async def chainhook_handler(self, request: web.Request) -> web.Response:
        if self._webhook is None:
            return web.json_response({"error": "webhook disabled"}, status=503)
        if not self._webhook.authenticate(request.headers):
            logger.warning("Rejected chainhook delivery from %s: bad secret", request.remote)
            return web.json_response({"error": "unauthorized"}, status=401)

        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid json body"}, status=400)

        try:
            result = await self._webhook.ingest(payload)
        except WebhookProcessingError as e:
            logger.error("Chainhook processing failed: %s", e)
            return web.json_response({"error": "processing failed"}, status=500)
        return web.json_response({"status": "processed", **result.to_dict()})

    async def sync_handler(self, request: web.Request) -> web.Response:
        if self._poller is None:
            return web.json_response({"error": "sync unavailable"}, status=503)
        logger.info("Manual sync triggered")
        try:
            result = await self._poller.sync_once()
        except PollSyncError as e:
            logger.error("Manual sync failed: %s", e)
            return web.json_response({"error": "sync failed"}, status=500)
        return web.json_response({"status": "ok", "network": self._network, **result.to_dict()})

    # Reads

    async def health_handler(self, request: web.Request) -> web.Response:
        body: dict[str, Any] = {
            "status": "ok",
            "network": self._network,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if self._poller is not None:
            stats = self._poller.stats
            body["sync"] = {
                "state": self._poller.state.value,
                "successful_syncs": stats.successful_syncs,
                "failed_syncs": stats.failed_syncs,
                "last_sync_time": _iso(stats.last_sync_time),
                "last_error": stats.last_error,
            }
        return web.json_response(body)

    async def tokens_handler(self, request: web.Request) -> web.Response:
        graduated_raw = request.query.get("graduated")
        graduated = None if graduated_raw is None else graduated_raw.lower() == "true"
        order_by = request.query.get("order_by") or request.query.get("orderBy") or "created_at"
        if order_by not in TOKEN_ORDER_COLUMNS:
            raise BadRequest(f"order_by must be one of {', '.join(TOKEN_ORDER_COLUMNS)}")
        descending = request.query.get("order", "desc").lower() != "asc"
        limit = _limit(request, 100)

        async with self._db.get_async_session() as session:
            tokens = await TokenRepository(session).list_tokens(
                graduated=graduated, order_by=order_by, descending=descending, limit=limit
            )
        return web.json_response([token_to_dict(t) for t in tokens])

    async def trending_handler(self, request: web.Request) -> web.Response:
        limit = _limit(request, 10)
        async with self._db.get_async_session() as session:
            tokens = await TokenRepository(session).list_trending(limit=limit)
        return web.json_response([token_to_dict(t) for t in tokens])

    async def token_detail_handler(self, request: web.Request) -> web.Response:
        async with self._db.get_async_session() as session:
            token = await TokenRepository(session).get_by_symbol(request.match_info["symbol"])
        if token is None:
            return web.json_response({"error": "token not found"}, status=404)
        return web.json_response(token_to_dict(token))

    async def token_trades_handler(self, request: web.Request) -> web.Response:
        limit = _limit(request, 50)
        async with self._db.get_async_session() as session:
            token = await TokenRepository(session).get_by_symbol(request.match_info["symbol"])
            if token is None:
                return web.json_response({"error": "token not found"}, status=404)
            trades = await TradeRepository(session).list_for_token(token.id, limit=limit)
        return web.json_response([trade_to_dict(t) for t in trades])

    async def activity_handler(self, request: web.Request) -> web.Response:
        limit = _limit(request, 50)
        async with self._db.get_async_session() as session:
            entries = await ActivityRepository(session).list_recent(
                event_type=request.query.get("type") or None, limit=limit
            )
        return web.json_response([activity_to_dict(e) for e in entries])

    async def leaderboard_handler(self, request: web.Request) -> web.Response:
        limit = _limit(request, 100)
        async with self._db.get_async_session() as session:
            rows = await TradeRepository(session).leaderboard(limit=limit)
        return web.json_response(
            [
                {
                    "rank": rank,
                    "trader": row.trader,
                    "total_volume_stx": _dec(row.total_volume_stx),
                    "trade_count": row.trade_count,
                }
                for rank, row in enumerate(rows, start=1)
            ]
        )

    # Quotes (pure, no store access)

    async def quote_buy_handler(self, request: web.Request) -> web.Response:
        stx = _decimal_param(request, "stx")
        sold = _decimal_param(request, "tokens_sold", default=Decimal(0))
        tokens_out = _BONDING_CURVE.quote_buy(stx, sold)
        return web.json_response(
            {
                "stx_in": _dec(stx),
                "tokens_out": _dec(tokens_out),
                "price": _dec(_BONDING_CURVE.price(sold)),
                "price_after": _dec(_BONDING_CURVE.price(sold + tokens_out)),
            }
        )

    async def quote_sell_handler(self, request: web.Request) -> web.Response:
        tokens = _decimal_param(request, "tokens")
        sold = _decimal_param(request, "tokens_sold", default=Decimal(0))
        gross = _BONDING_CURVE.sell_gross(tokens, sold)
        net = _BONDING_CURVE.quote_sell(tokens, sold)
        return web.json_response(
            {
                "tokens_in": _dec(tokens),
                "stx_gross": _dec(gross),
                "fee": _dec(gross - net),
                "stx_out": _dec(net),
                "price": _dec(_BONDING_CURVE.price(sold)),
            }
        )

    async def quote_progress_handler(self, request: web.Request) -> web.Response:
        if "market_cap" in request.query:
            market_cap = _decimal_param(request, "market_cap")
        else:
            market_cap = _BONDING_CURVE.market_cap(_decimal_param(request, "tokens_sold"))
        return web.json_response(
            {
                "market_cap": _dec(market_cap),
                "progress": _BONDING_CURVE.progress(market_cap),
                "progress_percent": _BONDING_CURVE.progress_percent(market_cap),
                "graduation_threshold": _dec(curve.from_units(curve.GRADUATION_THRESHOLD)),
            }
        )
