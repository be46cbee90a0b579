"""
Tests for ticker lookup and concurrent resolution
"""

import threading
from decimal import Decimal
from unittest.mock import patch

import pandas as pd
import pytest

from stocktracker.exceptions import PriceLookupError, TickerNotFoundError
from stocktracker.services.ticker_resolver import MemoizingResolver, Quote, YahooTickerResolver

from tests.conftest import FakeResolver

APPLE_INFO = {
    "longName": "Apple Inc.",
    "regularMarketPrice": 190.5,
    "regularMarketPreviousClose": 188.25,
}


class TestYahooTickerResolver:
    def test_quote_from_info(self):
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.info = APPLE_INFO
            quote = YahooTickerResolver().lookup(" aapl ")

        mock_ticker.assert_called_once_with("AAPL")
        assert quote.symbol == "AAPL"
        assert quote.company_name == "Apple Inc."
        assert quote.price == Decimal("190.5")
        assert quote.previous_close == Decimal("188.25")
        assert not quote.stale

    def test_quotes_are_cached(self):
        resolver = YahooTickerResolver(cache_ttl=60)
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.info = APPLE_INFO
            resolver.lookup("AAPL")
            resolver.lookup("AAPL")

        assert mock_ticker.call_count == 1

    def test_history_fallback_when_info_has_no_price(self):
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {"shortName": "Some ETF"}
            mock_ticker.return_value.history.return_value = pd.DataFrame(
                {"Close": [50.0, 51.5]}, index=pd.date_range("2024-06-13", periods=2)
            )
            quote = YahooTickerResolver().lookup("ETF")

        assert quote.price == Decimal("51.5")
        assert quote.previous_close == Decimal("50.0")
        assert quote.company_name == "Some ETF"

    def test_no_price_anywhere_is_not_found(self):
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {}
            mock_ticker.return_value.history.return_value = pd.DataFrame()
            with pytest.raises(TickerNotFoundError):
                YahooTickerResolver().lookup("ZZZZZ999")

    def test_provider_404_is_not_found(self):
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.side_effect = Exception("HTTP Error 404: Not Found")
            with pytest.raises(TickerNotFoundError):
                YahooTickerResolver().lookup("ZZZZZ999")

    def test_provider_failure_is_lookup_error(self):
        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.side_effect = ConnectionError("connection reset")
            with pytest.raises(PriceLookupError):
                YahooTickerResolver().lookup("AAPL")

    def test_last_known_is_marked_stale(self):
        resolver = YahooTickerResolver(cache_ttl=0)
        assert resolver.last_known("AAPL") is None

        with patch("stocktracker.services.ticker_resolver.yf.Ticker") as mock_ticker:
            mock_ticker.return_value.info = APPLE_INFO
            resolver.lookup("AAPL")
            mock_ticker.side_effect = ConnectionError("connection reset")
            with pytest.raises(PriceLookupError):
                resolver.lookup("AAPL")

        stale = resolver.last_known("aapl")
        assert stale.stale
        assert stale.price == Decimal("190.5")


class SlowResolver(FakeResolver):
    """MSFT blocks until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def lookup(self, symbol):
        if symbol == "MSFT":
            self.release.wait(5)
        if symbol == "BOOM":
            raise ValueError("unexpected payload")
        return super().lookup(symbol)


class TestResolveMany:
    def test_outcomes_per_symbol(self):
        resolver = FakeResolver()
        resolver.failing.add("MSFT")
        outcomes = resolver.resolve_many(["AAPL", "MSFT", "NOPE", "AAPL"])

        assert isinstance(outcomes["AAPL"], Quote)
        assert isinstance(outcomes["MSFT"], PriceLookupError)
        assert isinstance(outcomes["NOPE"], TickerNotFoundError)
        assert sorted(resolver.lookups) == ["AAPL", "MSFT", "NOPE"]

    def test_empty(self):
        assert FakeResolver().resolve_many([]) == {}

    def test_slow_symbol_times_out_alone(self):
        resolver = SlowResolver()
        try:
            outcomes = resolver.resolve_many(["AAPL", "MSFT"], timeout=0.5)
        finally:
            resolver.release.set()

        assert isinstance(outcomes["AAPL"], Quote)
        assert isinstance(outcomes["MSFT"], PriceLookupError)
        assert "timed out" in outcomes["MSFT"].message

    def test_unexpected_exception_is_wrapped(self):
        outcomes = SlowResolver().resolve_many(["BOOM"])
        assert isinstance(outcomes["BOOM"], PriceLookupError)


class TestMemoizingResolver:
    def test_each_symbol_looked_up_once(self):
        inner = FakeResolver()
        memo = MemoizingResolver(inner)

        memo.lookup("AAPL")
        memo.lookup("AAPL")
        for _ in range(2):
            with pytest.raises(TickerNotFoundError):
                memo.lookup("NOPE")

        assert inner.lookups == ["AAPL", "NOPE"]

    def test_prefetch(self):
        inner = FakeResolver()
        memo = MemoizingResolver(inner)
        memo.prefetch(["AAPL", "MSFT", "AAPL"])

        assert memo.lookup("MSFT").company_name == "Microsoft Corporation"
        assert sorted(inner.lookups) == ["AAPL", "MSFT"]
