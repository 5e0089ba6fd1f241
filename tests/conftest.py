"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from launchpad_indexer.chain.models import PrintEvent, RawTransaction
from launchpad_indexer.reconciler import Reconciler
from launchpad_indexer.storage.database import DatabaseManager

DEPLOYER = "ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM"
FACTORY = f"{DEPLOYER}.launchpad-factory"
CURVE = f"{DEPLOYER}.bonding-curve"
GRADUATION = f"{DEPLOYER}.alex-graduation"
FROG = f"{DEPLOYER}.frog-token"
CREATOR = "ST3CREATOR0000000000000000000000000000000"
BUYER = "ST2BUYER000000000000000000000000000000000"

BLOCK_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

TxFactory = Callable[..., RawTransaction]


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
async def db_manager():
    """In-memory SQLite database with the schema created."""
    db = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await db.init_schema_async()
    yield db
    await db.dispose_async()


@pytest.fixture
async def file_db_manager(tmp_path):
    """File-backed SQLite database; each session gets its own connection."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'launchpad.db'}")
    await db.init_schema_async()
    yield db
    await db.dispose_async()


@pytest.fixture
def reconciler(db_manager: DatabaseManager) -> Reconciler:
    return Reconciler(db_manager)


# ============================================================================
# Transaction builders
# ============================================================================


def _contract_call(
    tx_id: str,
    *,
    contract_id: str,
    function_name: str,
    sender: str,
    payload: dict[str, Any] | None,
    block_height: int,
    tx_index: int = 0,
    status: str = "success",
) -> RawTransaction:
    events = (PrintEvent(contract_id=contract_id, topic="print", value=payload),) if payload else ()
    return RawTransaction(
        tx_id=tx_id,
        status=status,
        tx_type="contract_call",
        sender=sender,
        contract_id=contract_id,
        function_name=function_name,
        events=events,
        block_height=block_height,
        block_time=BLOCK_TIME,
        tx_index=tx_index,
    )


@pytest.fixture
def registration_tx() -> TxFactory:
    """Build a successful `register-token` call for FROG."""

    def build(
        tx_id: str = "0xreg1",
        *,
        symbol: str = "FROG",
        name: str = "Frog",
        token: str | None = FROG,
        block_height: int = 100,
    ) -> RawTransaction:
        payload: dict[str, Any] = {"event": "token-created", "symbol": symbol, "name": name, "creator": CREATOR}
        if token is not None:
            payload["token"] = token
        return _contract_call(
            tx_id,
            contract_id=FACTORY,
            function_name="register-token",
            sender=CREATOR,
            payload=payload,
            block_height=block_height,
        )

    return build


@pytest.fixture
def buy_tx() -> TxFactory:
    """Build a successful `buy` call; amounts are base units."""

    def build(
        tx_id: str = "0xbuy1",
        *,
        stx_amount: int = 1_000_000_000,
        tokens_received: int | None = None,
        token: str = FROG,
        block_height: int = 101,
        tx_index: int = 0,
    ) -> RawTransaction:
        payload: dict[str, Any] = {"event": "buy", "token": token, "stx_amount": stx_amount, "buyer": BUYER}
        if tokens_received is not None:
            payload["tokens_received"] = tokens_received
        return _contract_call(
            tx_id,
            contract_id=CURVE,
            function_name="buy",
            sender=BUYER,
            payload=payload,
            block_height=block_height,
            tx_index=tx_index,
        )

    return build


@pytest.fixture
def sell_tx() -> TxFactory:
    """Build a successful `sell` call; amounts are base units."""

    def build(
        tx_id: str = "0xsell1",
        *,
        tokens_sold: int = 50_000_000_000,
        stx_received: int | None = None,
        token: str = FROG,
        block_height: int = 102,
    ) -> RawTransaction:
        payload: dict[str, Any] = {"event": "sell", "token": token, "tokens_sold": tokens_sold, "seller": BUYER}
        if stx_received is not None:
            payload["stx_received"] = stx_received
        return _contract_call(
            tx_id,
            contract_id=CURVE,
            function_name="sell",
            sender=BUYER,
            payload=payload,
            block_height=block_height,
        )

    return build


@pytest.fixture
def graduation_tx() -> TxFactory:
    def build(tx_id: str = "0xgrad1", *, token: str = FROG, block_height: int = 200) -> RawTransaction:
        return _contract_call(
            tx_id,
            contract_id=GRADUATION,
            function_name="graduate-token",
            sender=DEPLOYER,
            payload={"event": "token-graduated", "token": token},
            block_height=block_height,
        )

    return build


# ============================================================================
# Wire-format payloads
# ============================================================================


def _hiro_buy_item(tx_id: str = "0xbuy1", *, stx_amount: int = 1_000_000_000, block_height: int = 101) -> dict:
    """A Hiro `/extended/v1/address/{contract}/transactions` result entry for a buy."""
    repr_value = (
        f"(tuple (buyer '{BUYER}) (event \"buy\") (stx-amount u{stx_amount}) "
        f"(token '{FROG}))"
    )
    return {
        "tx_id": tx_id,
        "tx_status": "success",
        "tx_type": "contract_call",
        "sender_address": BUYER,
        "block_height": block_height,
        "block_time": int(BLOCK_TIME.timestamp()),
        "tx_index": 0,
        "event_count": 1,
        "contract_call": {
            "contract_id": CURVE,
            "function_name": "buy",
            "function_args": [
                {"name": "token", "repr": f"'{FROG}", "type": "principal"},
                {"name": "stx-amount", "repr": f"u{stx_amount}", "type": "uint"},
            ],
        },
        "events": [
            {
                "event_index": 0,
                "event_type": "smart_contract_log",
                "contract_log": {"contract_id": CURVE, "topic": "print", "value": {"repr": repr_value}},
            }
        ],
    }


def _hiro_registration_item(tx_id: str = "0xreg1", *, block_height: int = 100) -> dict:
    repr_value = (
        f"(tuple (creator '{CREATOR}) (event \"token-created\") (name \"Frog\") "
        f"(symbol \"FROG\") (token '{FROG}))"
    )
    return {
        "tx_id": tx_id,
        "tx_status": "success",
        "tx_type": "contract_call",
        "sender_address": CREATOR,
        "block_height": block_height,
        "block_time": int(BLOCK_TIME.timestamp()),
        "tx_index": 0,
        "event_count": 1,
        "contract_call": {
            "contract_id": FACTORY,
            "function_name": "register-token",
            "function_args": [
                {"name": "name", "repr": '"Frog"', "type": "(string-ascii 32)"},
                {"name": "symbol", "repr": '"FROG"', "type": "(string-ascii 10)"},
            ],
        },
        "events": [
            {
                "event_index": 0,
                "event_type": "smart_contract_log",
                "contract_log": {"contract_id": FACTORY, "topic": "print", "value": {"repr": repr_value}},
            }
        ],
    }


def _chainhook_buy_tx(tx_id: str = "0xbuy1", *, stx_amount: int = 1_000_000_000) -> dict:
    """A chainhook `apply[].transactions[]` entry for a buy."""
    return {
        "transaction_identifier": {"hash": tx_id},
        "metadata": {
            "success": True,
            "sender": BUYER,
            "position": {"index": 0},
            "kind": {
                "type": "ContractCall",
                "data": {
                    "contract_identifier": CURVE,
                    "method": "buy",
                    "args": [f"'{FROG}", f"u{stx_amount}"],
                },
            },
            "receipt": {
                "events": [
                    {
                        "type": "SmartContractEvent",
                        "data": {
                            "contract_identifier": CURVE,
                            "topic": "print",
                            "value": {"event": "buy", "token": FROG, "stx-amount": stx_amount, "buyer": BUYER},
                        },
                    }
                ]
            },
        },
    }


def _chainhook_payload(*transactions: dict, block_height: int = 101, rollback: list | None = None) -> dict:
    return {
        "apply": [
            {
                "block_identifier": {"index": block_height, "hash": f"0x{block_height:064x}"},
                "timestamp": int(BLOCK_TIME.timestamp()),
                "transactions": list(transactions),
            }
        ],
        "rollback": rollback or [],
    }


@pytest.fixture
def hiro_buy_item() -> Callable[..., dict]:
    return _hiro_buy_item


@pytest.fixture
def hiro_registration_item() -> Callable[..., dict]:
    return _hiro_registration_item


@pytest.fixture
def chainhook_buy_tx() -> Callable[..., dict]:
    return _chainhook_buy_tx


@pytest.fixture
def chainhook_payload() -> Callable[..., dict]:
    return _chainhook_payload
