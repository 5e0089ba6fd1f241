"""Tests for the Clarity repr parser."""

import pytest

from launchpad_indexer.chain.clarity import ClarityParseError, ResponseValue, parse_repr


class TestParseRepr:
    """Tests for parse_repr."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("u12", 12),
            ("-3", -3),
            ("0", 0),
            ('"FROG"', "FROG"),
            ('u"froggy"', "froggy"),
            ("true", True),
            ("false", False),
            ("none", None),
            ("(some u5)", 5),
            ("0xdeadbeef", "0xdeadbeef"),
            ("'ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM", "ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM"),
        ],
    )
    def test_atoms(self, text: str, expected: object) -> None:
        assert parse_repr(text) == expected

    def test_contract_principal(self) -> None:
        assert parse_repr("'ST1ABC.frog-token") == "ST1ABC.frog-token"

    def test_print_tuple(self) -> None:
        value = parse_repr(
            "(tuple (event \"buy\") (stx-amount u1000000000) (token 'ST1ABC.frog-token) (tokens-received u100))"
        )

        assert value == {
            "event": "buy",
            "stx_amount": 1_000_000_000,
            "token": "ST1ABC.frog-token",
            "tokens_received": 100,
        }

    def test_braced_tuple(self) -> None:
        assert parse_repr('{event: "sell", tokens-sold: u7}') == {"event": "sell", "tokens_sold": 7}

    def test_nested_values(self) -> None:
        value = parse_repr("(ok (tuple (ids (list u1 u2 u3)) (owner (some 'ST1ABC))))")

        assert isinstance(value, ResponseValue)
        assert value.ok is True
        assert value.value == {"ids": [1, 2, 3], "owner": "ST1ABC"}

    def test_err_response(self) -> None:
        assert parse_repr("(err u101)") == ResponseValue(ok=False, value=101)

    def test_string_escapes(self) -> None:
        assert parse_repr(r'"say \"hi\""') == 'say "hi"'

    @pytest.mark.parametrize(
        "text",
        ["", "(tuple (a u1)", '"unterminated', "u12 u13", "(map u1)", "banana"],
    )
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ClarityParseError):
            parse_repr(text)

    def test_non_string_input(self) -> None:
        with pytest.raises(ClarityParseError, match="Expected str"):
            parse_repr(12)  # type: ignore[arg-type]
