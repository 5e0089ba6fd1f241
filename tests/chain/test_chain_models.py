"""Tests for normalized chain transaction records."""

from datetime import UTC, datetime

from launchpad_indexer.chain.models import FunctionArg, PrintEvent, RawTransaction

FROG = "ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM.frog-token"
CURVE = "ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM.bonding-curve"


class TestFromApi:
    """Tests for RawTransaction.from_api."""

    def test_contract_call(self, hiro_buy_item) -> None:
        tx = RawTransaction.from_api(hiro_buy_item("0xabc", stx_amount=5))

        assert tx.tx_id == "0xabc"
        assert tx.is_success
        assert tx.is_contract_call
        assert tx.contract_id == CURVE
        assert tx.function_name == "buy"
        assert tx.block_height == 101
        assert tx.block_time == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        assert tx.arg("token") == FROG
        assert tx.arg("stx-amount") == 5

    def test_print_events_decoded(self, hiro_buy_item) -> None:
        tx = RawTransaction.from_api(hiro_buy_item(stx_amount=7))

        assert len(tx.events) == 1
        event = tx.events[0]
        assert event.tag == "buy"
        assert event.value["stx_amount"] == 7
        assert event.value["token"] == FROG

    def test_v2_wrapper(self, hiro_buy_item) -> None:
        tx = RawTransaction.from_api({"tx": hiro_buy_item("0xwrapped")})

        assert tx.tx_id == "0xwrapped"

    def test_non_log_events_ignored(self, hiro_buy_item) -> None:
        item = hiro_buy_item()
        item["events"].append({"event_type": "stx_asset", "asset": {"amount": "1"}})

        tx = RawTransaction.from_api(item)

        assert len(tx.events) == 1

    def test_failed_transaction(self, hiro_buy_item) -> None:
        item = hiro_buy_item()
        item["tx_status"] = "abort_by_response"

        assert not RawTransaction.from_api(item).is_success

    def test_iso_time_fallback(self, hiro_buy_item) -> None:
        item = hiro_buy_item()
        del item["block_time"]
        item["burn_block_time_iso"] = "2026-03-01T12:00:00.000Z"

        assert RawTransaction.from_api(item).block_time == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_unparseable_repr_becomes_none(self, hiro_buy_item) -> None:
        item = hiro_buy_item()
        item["events"][0]["contract_log"]["value"]["repr"] = "(tuple (event"

        tx = RawTransaction.from_api(item)

        assert tx.events[0].value is None
        assert tx.events[0].tag is None


class TestFromChainhook:
    """Tests for RawTransaction.from_chainhook."""

    def test_contract_call(self, chainhook_buy_tx, chainhook_payload) -> None:
        payload = chainhook_payload(chainhook_buy_tx("0xhook", stx_amount=9), block_height=321)
        block = payload["apply"][0]

        tx = RawTransaction.from_chainhook(block["transactions"][0], block)

        assert tx.tx_id == "0xhook"
        assert tx.is_success
        assert tx.is_contract_call
        assert tx.contract_id == CURVE
        assert tx.function_name == "buy"
        assert tx.block_height == 321
        assert tx.block_time == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        # Chainhook args are positional only.
        assert tx.arg("token", 0) == FROG
        assert tx.arg("stx-amount", 1) == 9
        assert tx.events[0].value == {"event": "buy", "token": FROG, "stx_amount": 9, "buyer": tx.sender}

    def test_failed_transaction(self, chainhook_buy_tx) -> None:
        item = chainhook_buy_tx()
        item["metadata"]["success"] = False

        assert not RawTransaction.from_chainhook(item).is_success

    def test_non_contract_call(self) -> None:
        item = {
            "transaction_identifier": {"hash": "0xtransfer"},
            "metadata": {"success": True, "sender": "ST1", "kind": {"type": "NativeTokenTransfer"}},
        }

        tx = RawTransaction.from_chainhook(item)

        assert not tx.is_contract_call
        assert tx.function_name is None

    def test_wrong_shapes_do_not_raise(self) -> None:
        item = {
            "transaction_identifier": "0xnot-a-dict",
            "metadata": {
                "success": True,
                "kind": {"type": "ContractCall", "data": "oops"},
                "receipt": {"events": {"type": "SmartContractEvent"}},
                "position": 3,
            },
        }

        tx = RawTransaction.from_chainhook(item, {"block_identifier": "tip", "metadata": None})

        assert tx.tx_id == ""
        assert tx.events == ()
        assert tx.args == ()
        assert tx.block_height is None


class TestRawTransaction:
    """Tests for RawTransaction helpers."""

    def test_arg_prefers_name(self) -> None:
        tx = RawTransaction(
            tx_id="0x1",
            status="success",
            tx_type="contract_call",
            sender="ST1",
            args=(FunctionArg("symbol", "FROG"), FunctionArg("name", "Frog")),
        )

        assert tx.arg("name", 0) == "Frog"
        assert tx.arg("missing") is None
        # Positional fallback only applies to unnamed args.
        assert tx.arg("missing", 0) is None

    def test_sort_key_orders_by_block_then_index(self) -> None:
        early = RawTransaction("0xa", "success", "contract_call", "ST1", block_height=10, tx_index=5)
        late_first = RawTransaction("0xb", "success", "contract_call", "ST1", block_height=11, tx_index=0)
        late_second = RawTransaction("0xc", "success", "contract_call", "ST1", block_height=11, tx_index=1)

        ordered = sorted([late_second, early, late_first], key=RawTransaction.sort_key)

        assert [t.tx_id for t in ordered] == ["0xa", "0xb", "0xc"]

    def test_print_event_tag(self) -> None:
        assert PrintEvent("c", "print", {"event": "sell"}).tag == "sell"
        assert PrintEvent("c", "print", "not-a-tuple").tag is None
