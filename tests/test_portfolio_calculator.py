"""
Tests for position folding and portfolio valuation
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from stocktracker.services.portfolio_calculator import (
    PRICE_LIVE,
    PRICE_STALE,
    PRICE_UNAVAILABLE,
    PortfolioAggregator,
    SharesLedger,
    annualized_return,
    fold_positions,
    percent,
)
from stocktracker.services.ticker_resolver import Quote

from tests.conftest import FakeHistory, make_draft


def weighted_average_history():
    return [
        make_draft(shares="10", price="100", on=date(2024, 1, 2)),
        make_draft(shares="10", price="120", on=date(2024, 2, 1)),
    ]


class TestFoldPositions:
    def test_weighted_average_cost(self):
        positions = fold_positions(weighted_average_history(), include_fees=True)
        aapl = positions["AAPL"]

        assert aapl.shares == Decimal("20")
        assert aapl.average_cost == Decimal("110")
        assert aapl.total_cost == Decimal("2200")

    def test_sell_keeps_average_cost(self):
        history = weighted_average_history() + [
            make_draft(tx_type="SELL", shares="5", price="150", on=date(2024, 3, 1)),
        ]
        aapl = fold_positions(history, include_fees=True)["AAPL"]

        assert aapl.shares == Decimal("15")
        assert aapl.average_cost == Decimal("110")
        assert aapl.total_cost == Decimal("1650")

    def test_order_of_input_does_not_matter(self):
        history = weighted_average_history() + [
            make_draft(tx_type="SELL", shares="5", price="150", on=date(2024, 3, 1)),
        ]
        forward = fold_positions(history)["AAPL"]
        backward = fold_positions(list(reversed(history)))["AAPL"]
        assert (forward.shares, forward.total_cost) == (backward.shares, backward.total_cost)

    def test_fees_in_cost_basis_is_configurable(self):
        history = [make_draft(shares="10", price="100", fee="10")]

        assert fold_positions(history, include_fees=True)["AAPL"].total_cost == Decimal("1010")
        assert fold_positions(history, include_fees=False)["AAPL"].total_cost == Decimal("1000")

    def test_closed_positions_dropped(self):
        history = [
            make_draft(shares="10"),
            make_draft(tx_type="SELL", shares="10", on=date(2024, 2, 1)),
        ]
        assert fold_positions(history) == {}

    def test_oversell_in_stored_history_clamps_to_zero(self):
        history = [
            make_draft(shares="5"),
            make_draft(tx_type="SELL", shares="10", on=date(2024, 2, 1)),
            make_draft(shares="2", price="50", on=date(2024, 3, 1)),
        ]
        aapl = fold_positions(history, include_fees=False)["AAPL"]

        assert aapl.shares == Decimal("2")
        assert aapl.total_cost == Decimal("100")

    def test_as_of_excludes_later_trades(self):
        positions = fold_positions(weighted_average_history(), as_of=date(2024, 1, 15))
        assert positions["AAPL"].shares == Decimal("10")


class TestSharesLedger:
    def test_available_through_date(self):
        ledger = SharesLedger(weighted_average_history())

        assert ledger.available("AAPL", date(2024, 1, 1)) == 0
        assert ledger.available("AAPL", date(2024, 1, 15)) == 10
        assert ledger.available("AAPL", date(2024, 6, 1)) == 20
        assert ledger.available("MSFT", date(2024, 6, 1)) == 0

    def test_later_sells_reduce_availability(self):
        ledger = SharesLedger(weighted_average_history())
        ledger.add("AAPL", date(2024, 3, 1), "SELL", Decimal("15"))

        assert ledger.available("AAPL", date(2024, 2, 15)) == 5
        assert ledger.is_consistent("AAPL")

        ledger.add("AAPL", date(2024, 4, 1), "SELL", Decimal("10"))
        assert not ledger.is_consistent("AAPL")


class TestAnnualizedReturn:
    def test_compounds_over_years(self):
        value = annualized_return(Decimal("21"), date(2022, 6, 14), date(2024, 6, 14))
        assert abs(value - Decimal("10")) < Decimal("0.05")

    def test_short_holding_uses_simple_return(self):
        assert annualized_return(Decimal("3.5"), date(2024, 6, 1), date(2024, 6, 14)) == Decimal("3.50")

    def test_total_loss(self):
        assert annualized_return(Decimal("-100"), date(2020, 1, 1), date(2024, 6, 14)) == Decimal("-100.00")

    def test_no_history(self):
        assert annualized_return(Decimal("5"), None, date(2024, 6, 14)) == 0


def test_percent_with_zero_denominator():
    assert percent(Decimal("5"), Decimal("0")) == Decimal("0.00")


class TestPortfolioAggregator:
    def test_empty_history(self, resolver, ctx):
        summary = PortfolioAggregator(resolver).build([], ctx)

        assert summary.holdings == []
        assert summary.total_value == 0
        assert not summary.degraded

    def test_holding_valuation(self, resolver, ctx):
        history = weighted_average_history() + [
            make_draft(tx_type="SELL", shares="5", price="150", on=date(2024, 3, 1)),
        ]
        summary = PortfolioAggregator(resolver, include_fees=True).build(history, ctx)
        holding = summary.holdings[0]

        assert holding.symbol == "AAPL"
        assert holding.shares == Decimal("15")
        assert holding.average_cost == Decimal("110.00")
        assert holding.cost_basis == Decimal("1650.00")
        assert holding.last_price == Decimal("190.00")
        assert holding.current_value == Decimal("2850.00")
        assert holding.total_return_dollars == Decimal("1200.00")
        assert holding.total_return_percent == Decimal("72.73")
        assert holding.day_change == Decimal("30.00")
        assert holding.day_change_percent == Decimal("1.06")
        assert holding.weight == Decimal("100.00")
        assert holding.price_status == PRICE_LIVE
        assert holding.company_name == "Apple Inc."

        assert summary.total_value == Decimal("2850.00")
        assert summary.total_cost == Decimal("1650.00")
        assert summary.total_return_percent == Decimal("72.73")
        assert summary.prices_updated_at == datetime(2024, 6, 14, 20, 0, tzinfo=timezone.utc)

    def test_weights_sum_to_hundred(self, resolver, ctx):
        history = [
            make_draft(shares="10", price="100"),
            make_draft(symbol="MSFT", shares="1", price="400"),
        ]
        summary = PortfolioAggregator(resolver).build(history, ctx)
        weights = {h.symbol: h.weight for h in summary.holdings}

        assert weights == {"AAPL": Decimal("81.90"), "MSFT": Decimal("18.10")}
        assert [h.symbol for h in summary.holdings] == ["AAPL", "MSFT"]

    def test_failed_lookup_degrades_one_symbol(self, resolver, ctx):
        resolver.failing.add("MSFT")
        history = [make_draft(shares="10", price="100"), make_draft(symbol="MSFT", shares="1", price="400")]
        summary = PortfolioAggregator(resolver).build(history, ctx)
        by_symbol = {h.symbol: h for h in summary.holdings}

        assert summary.degraded
        assert summary.unpriced_symbols == ["MSFT"]
        assert by_symbol["MSFT"].price_status == PRICE_UNAVAILABLE
        assert by_symbol["MSFT"].current_value is None
        assert by_symbol["MSFT"].shares == Decimal("1")
        assert by_symbol["AAPL"].current_value == Decimal("1900.00")
        assert by_symbol["AAPL"].weight == Decimal("100.00")
        assert summary.total_value == Decimal("1900.00")

    def test_last_known_quote_used_when_lookup_fails(self, resolver, ctx):
        resolver.failing.add("MSFT")
        resolver.stale["MSFT"] = Quote(
            symbol="MSFT",
            company_name="Microsoft Corporation",
            price=Decimal("410"),
            previous_close=None,
            as_of=datetime(2024, 6, 13, 20, 0, tzinfo=timezone.utc),
            stale=True,
        )
        summary = PortfolioAggregator(resolver).build([make_draft(symbol="MSFT", shares="2", price="400")], ctx)
        holding = summary.holdings[0]

        assert not summary.degraded
        assert holding.price_status == PRICE_STALE
        assert holding.current_value == Decimal("820.00")
        assert holding.day_change is None
        assert summary.day_change == 0

    def test_history_drives_sparkline_and_seven_day_return(self, resolver, ctx):
        history = FakeHistory({"AAPL": {
            date(2024, 6, 3): 170.0,
            date(2024, 6, 7): 180.0,
            date(2024, 6, 10): 185.0,
            date(2024, 6, 14): 190.0,
        }})
        summary = PortfolioAggregator(resolver, history).build([make_draft()], ctx)
        holding = summary.holdings[0]

        assert holding.sparkline == [170.0, 180.0, 185.0, 190.0]
        assert holding.seven_day_return_percent == Decimal("5.56")

    def test_history_failure_is_not_fatal(self, resolver, ctx):
        summary = PortfolioAggregator(resolver, FakeHistory(fail=True)).build([make_draft()], ctx)

        assert summary.holdings[0].sparkline == []
        assert summary.holdings[0].current_value == Decimal("1900.00")

    def test_investment_period(self, resolver, ctx):
        summary = PortfolioAggregator(resolver).build([make_draft(on=date(2023, 6, 14))], ctx)
        assert summary.investment_years == Decimal("1.00")


@pytest.mark.parametrize("include_fees, expected_cost", [(True, Decimal("1010.00")), (False, Decimal("1000.00"))])
def test_aggregator_fee_policy(resolver, ctx, include_fees, expected_cost):
    summary = PortfolioAggregator(resolver, include_fees=include_fees).build(
        [make_draft(shares="10", price="100", fee="10")], ctx
    )
    assert summary.holdings[0].cost_basis == expected_cost
