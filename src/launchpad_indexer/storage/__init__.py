"""Storage layer - Database schema, repositories and per-token locks."""

from launchpad_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from launchpad_indexer.storage.locks import KeyedLock, LockUnavailableError, RedisKeyedLock, TokenLock
from launchpad_indexer.storage.models import ActivityModel, Base, TokenModel, TradeModel
from launchpad_indexer.storage.repos import (
    ActivityDTO,
    ActivityRepository,
    TokenDTO,
    TokenRepository,
    TradeDTO,
    TraderVolumeDTO,
    TradeRepository,
)

__all__ = [
    "ActivityDTO",
    "ActivityModel",
    "ActivityRepository",
    "Base",
    "DatabaseManager",
    "KeyedLock",
    "LockUnavailableError",
    "RedisKeyedLock",
    "TokenDTO",
    "TokenLock",
    "TokenModel",
    "TokenRepository",
    "TradeDTO",
    "TradeModel",
    "TradeRepository",
    "TraderVolumeDTO",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
