"""Tests for the command-line entry point."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from launchpad_indexer.__main__ import _build_parser, main, quote
from launchpad_indexer.ingestor.poller import PollSyncError, SyncResult


class TestQuote:
    """Tests for the offline quote command."""

    def test_buy(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["quote", "buy", "--stx", "10"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert Decimal(out["tokens_out"]) == Decimal("1000")
        assert Decimal(out["price"]) == Decimal("0.01")

    def test_sell(self) -> None:
        out = quote("sell", stx=Decimal(0), tokens=Decimal("500"), tokens_sold=Decimal("1000"))

        assert Decimal(out["stx_out"]) == Decimal("5.39")
        assert Decimal(out["fee"]) == Decimal("0.11")

    def test_progress(self) -> None:
        out = quote("progress", stx=Decimal(0), tokens=Decimal(0), tokens_sold=Decimal("1000"))

        assert Decimal(out["market_cap"]) == Decimal("11")
        assert out["progress_percent"] == pytest.approx(11 / 69000 * 100)

    @pytest.mark.parametrize("value", ["abc", "-5", "Infinity"])
    def test_rejects_bad_amount(self, value: str) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["quote", "buy", "--stx", value])

    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args([])


class TestSync:
    """Tests for the one-shot sync command."""

    @pytest.fixture
    def mock_settings(self):
        settings = MagicMock()
        settings.get_logging_level.return_value = logging.INFO
        settings.redacted_summary.return_value = {"database_url": "sqlite:///:memory:"}
        return settings

    @pytest.fixture
    def mock_pipeline(self):
        pipeline = MagicMock()
        pipeline.__aenter__ = AsyncMock(return_value=pipeline)
        pipeline.__aexit__ = AsyncMock(return_value=None)
        pipeline.sync_once = AsyncMock(return_value=SyncResult(fetched=3, applied=2))
        return pipeline

    def test_prints_counts(self, mock_settings, mock_pipeline, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("launchpad_indexer.__main__.get_settings", return_value=mock_settings),
            patch("launchpad_indexer.__main__.Pipeline", return_value=mock_pipeline),
        ):
            assert main(["sync"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["fetched"] == 3
        assert out["applied"] == 2

    def test_failure_exit_code(self, mock_settings, mock_pipeline) -> None:
        mock_pipeline.sync_once.side_effect = PollSyncError("HTTP 503")

        with (
            patch("launchpad_indexer.__main__.get_settings", return_value=mock_settings),
            patch("launchpad_indexer.__main__.Pipeline", return_value=mock_pipeline),
        ):
            assert main(["sync"]) == 1
