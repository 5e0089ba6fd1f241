"""Normalized chain transaction records.

Transactions reach the indexer in two shapes: the Hiro REST API (polling) and
chainhook deliveries (webhook). Both are normalized here into `RawTransaction`
so the decoder has a single input type.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from launchpad_indexer.chain.clarity import ClarityParseError, normalize_key, parse_repr

logger = logging.getLogger(__name__)

TX_STATUS_SUCCESS = "success"
TX_TYPE_CONTRACT_CALL = "contract_call"


@dataclass(frozen=True)
class FunctionArg:
    """A contract-call argument (name is unknown for chainhook payloads)."""

    name: str | None
    value: Any


@dataclass(frozen=True)
class PrintEvent:
    """A `print` event emitted by a contract, with its value decoded."""

    contract_id: str
    topic: str
    value: Any

    @property
    def tag(self) -> str | None:
        """The `event` field launchpad contracts put in every print tuple."""
        if isinstance(self.value, dict):
            tag = self.value.get("event")
            return str(tag) if tag is not None else None
        return None


@dataclass(frozen=True)
class RawTransaction:
    """A chain transaction reduced to what the decoder needs."""

    tx_id: str
    status: str
    tx_type: str
    sender: str
    contract_id: str | None = None
    function_name: str | None = None
    args: tuple[FunctionArg, ...] = ()
    events: tuple[PrintEvent, ...] = ()
    block_height: int | None = None
    block_time: datetime | None = None
    tx_index: int = 0
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_success(self) -> bool:
        return self.status == TX_STATUS_SUCCESS

    @property
    def is_contract_call(self) -> bool:
        return self.tx_type == TX_TYPE_CONTRACT_CALL

    def arg(self, name: str, position: int | None = None) -> Any:
        """Look up an argument by name, falling back to its position."""
        for a in self.args:
            if a.name == name:
                return a.value
        if position is not None and 0 <= position < len(self.args):
            candidate = self.args[position]
            if candidate.name is None:
                return candidate.value
        return None

    def sort_key(self) -> tuple[int, float, int]:
        ts = self.block_time.timestamp() if self.block_time else 0.0
        return (self.block_height or 0, ts, self.tx_index)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RawTransaction:
        """Create a RawTransaction from a Hiro API transaction object.

        Accepts both the bare v1 transaction and the v2 `{"tx": {...}}` wrapper.
        """
        if isinstance(data.get("tx"), dict):
            data = data["tx"]

        call = _as_dict(data.get("contract_call"))
        args = tuple(
            FunctionArg(name=a.get("name"), value=_decode_value(a.get("repr")))
            for a in _as_list(call.get("function_args"))
            if isinstance(a, dict)
        )

        events: list[PrintEvent] = []
        for e in _as_list(data.get("events")):
            if not isinstance(e, dict) or e.get("event_type") != "smart_contract_log":
                continue
            log = _as_dict(e.get("contract_log"))
            value = log.get("value")
            if isinstance(value, dict):
                value = value.get("repr")
            events.append(
                PrintEvent(
                    contract_id=str(log.get("contract_id", "")),
                    topic=str(log.get("topic", "")),
                    value=_decode_value(value),
                )
            )

        block_time = _parse_time(data.get("block_time") or data.get("burn_block_time"))
        if block_time is None:
            block_time = _parse_time(data.get("block_time_iso") or data.get("burn_block_time_iso"))

        return cls(
            tx_id=str(data.get("tx_id", "")),
            status=str(data.get("tx_status", "")),
            tx_type=str(data.get("tx_type", "")),
            sender=str(data.get("sender_address", "")),
            contract_id=call.get("contract_id"),
            function_name=call.get("function_name"),
            args=args,
            events=tuple(events),
            block_height=_parse_int(data.get("block_height")),
            block_time=block_time,
            tx_index=_parse_int(data.get("tx_index")) or 0,
            raw=data,
        )

    @classmethod
    def from_chainhook(cls, data: dict[str, Any], block: dict[str, Any] | None = None) -> RawTransaction:
        """Create a RawTransaction from a chainhook `apply[].transactions[]` entry."""
        block = _as_dict(block)
        metadata = _as_dict(data.get("metadata"))
        tx_id = str(_as_dict(data.get("transaction_identifier")).get("hash", ""))

        if "success" in metadata:
            status = TX_STATUS_SUCCESS if metadata.get("success") else "failed"
        else:
            status = str(data.get("status", ""))

        kind = _as_dict(metadata.get("kind"))
        call: dict[str, Any] | None = None
        if kind.get("type") == "ContractCall":
            call = _as_dict(kind.get("data"))
        elif isinstance(kind.get("ContractCall"), dict):
            call = kind["ContractCall"]

        args: tuple[FunctionArg, ...] = ()
        if call is not None:
            args = tuple(FunctionArg(name=None, value=_decode_value(a)) for a in _as_list(call.get("args")))

        events: list[PrintEvent] = []
        for e in _as_list(_as_dict(metadata.get("receipt")).get("events")):
            if not isinstance(e, dict) or e.get("type") != "SmartContractEvent":
                continue
            payload = _as_dict(e.get("data"))
            value = payload.get("value", payload.get("raw_value"))
            events.append(
                PrintEvent(
                    contract_id=str(payload.get("contract_identifier", "")),
                    topic=str(payload.get("topic", "print")),
                    value=_decode_value(value),
                )
            )

        block_identifier = _as_dict(block.get("block_identifier"))
        position = _as_dict(metadata.get("position"))
        return cls(
            tx_id=tx_id,
            status=status,
            tx_type=TX_TYPE_CONTRACT_CALL if call is not None else str(kind.get("type", "")),
            sender=str(metadata.get("sender", "")),
            contract_id=(call or {}).get("contract_identifier"),
            function_name=(call or {}).get("method") or (call or {}).get("function_name"),
            args=args,
            events=tuple(events),
            block_height=_parse_int(block_identifier.get("index")),
            block_time=_parse_time(block.get("timestamp") or _as_dict(block.get("metadata")).get("block_time")),
            tx_index=_parse_int(position.get("index")) or 0,
            raw=data,
        )


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {normalize_key(str(k)): _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _decode_value(value: Any) -> Any:
    """Decode a Clarity value delivered either as JSON or as a repr string."""
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("(", "{", "u", "'", '"')) or text in ("true", "false", "none"):
            try:
                return parse_repr(text)
            except ClarityParseError:
                logger.debug("Unparseable Clarity repr: %.120s", text)
                return None
        return value
    return _normalize(value)


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    with contextlib.suppress(TypeError, ValueError):
        return int(value)
    return None


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    return None
