"""
Tests for column-mapping suggestion and resolution
"""

import pytest

from stocktracker.exceptions import InvalidInputError, MissingFieldMappingError
from stocktracker.services import field_mapping as fm


class TestSuggestMapping:
    def test_common_broker_headers_are_confident(self):
        suggestion = fm.suggest_mapping(["Symbol", "Qty", "Price", "Date"])

        assert suggestion.suggested_mappings == {
            "Symbol": fm.SYMBOL,
            "Qty": fm.SHARES,
            "Price": fm.PRICE_PER_SHARE,
            "Date": fm.TRANSACTION_DATE,
        }
        assert all(score >= 0.9 for score in suggestion.confidence_scores.values())
        assert suggestion.unmapped_columns == []

    def test_header_normalization(self):
        suggestion = fm.suggest_mapping(["  TRADE_DATE ", "Ticker-Symbol", "Broker Fee"])

        assert suggestion.suggested_mappings["  TRADE_DATE "] == fm.TRANSACTION_DATE
        assert suggestion.suggested_mappings["Ticker-Symbol"] == fm.SYMBOL
        assert suggestion.suggested_mappings["Broker Fee"] == fm.BROKER_FEE

    def test_partial_match_scores_lower(self):
        suggestion = fm.suggest_mapping(["Stock Ticker Code"])

        assert suggestion.suggested_mappings == {"Stock Ticker Code": fm.SYMBOL}
        assert suggestion.confidence_scores["Stock Ticker Code"] == fm.PARTIAL_CONFIDENCE
        assert suggestion.accepted() == {}

    @pytest.mark.parametrize("header, canonical", [
        ("Trade Price", fm.PRICE_PER_SHARE),
        ("T. Price", fm.PRICE_PER_SHARE),
        ("Listing Exchange", fm.EXCHANGE),
        ("Remarks", fm.NOTES),
        ("Code", fm.SYMBOL),
        ("Exec Date", fm.TRANSACTION_DATE),
    ])
    def test_broker_specific_aliases(self, header, canonical):
        suggestion = fm.suggest_mapping([header])

        assert suggestion.suggested_mappings == {header: canonical}
        assert suggestion.confidence_scores[header] == fm.EXACT_CONFIDENCE

    def test_misspelled_headers_get_low_confidence_suggestions(self):
        suggestion = fm.suggest_mapping(["Quantitiy", "Trade Dte", "Symbol"])

        assert suggestion.suggested_mappings == {
            "Quantitiy": fm.SHARES,
            "Trade Dte": fm.TRANSACTION_DATE,
            "Symbol": fm.SYMBOL,
        }
        assert suggestion.confidence_scores["Quantitiy"] == 0.62
        assert suggestion.confidence_scores["Trade Dte"] == 0.62
        assert suggestion.accepted() == {"Symbol": fm.SYMBOL}

    def test_containment_beats_near_miss(self):
        suggestion = fm.suggest_mapping(["Quantitiy", "Share Quantity Filled"])

        assert suggestion.suggested_mappings == {"Share Quantity Filled": fm.SHARES}
        assert suggestion.unmapped_columns == ["Quantitiy"]

    def test_unknown_headers_unmapped(self):
        suggestion = fm.suggest_mapping(["Symbol", "Total", "Account"])
        assert suggestion.unmapped_columns == ["Total", "Account"]

    def test_field_never_suggested_twice(self):
        suggestion = fm.suggest_mapping(["Trade Date", "Settlement Date"])

        assert suggestion.suggested_mappings == {"Trade Date": fm.TRANSACTION_DATE}
        assert suggestion.unmapped_columns == ["Settlement Date"]

    def test_exact_match_beats_earlier_partial(self):
        suggestion = fm.suggest_mapping(["Stock Ticker Code", "Ticker"])

        assert suggestion.suggested_mappings == {"Ticker": fm.SYMBOL}
        assert suggestion.unmapped_columns == ["Stock Ticker Code"]

    def test_independent_of_column_order(self):
        headers = ["Date", "Action", "Symbol", "Quantity", "Price", "Commission", "Description"]
        forward = fm.suggest_mapping(headers)
        backward = fm.suggest_mapping(list(reversed(headers)))

        assert forward.suggested_mappings == backward.suggested_mappings
        assert list(forward.suggested_mappings) == headers

    def test_empty_headers_rejected(self):
        with pytest.raises(InvalidInputError):
            fm.suggest_mapping([])


class TestResolveMapping:
    def test_inverts_to_canonical(self):
        columns = fm.resolve_mapping(
            {"Ticker": fm.SYMBOL, "When": fm.TRANSACTION_DATE, "Qty": fm.SHARES, "Cost": fm.PRICE_PER_SHARE,
             "Account": fm.SKIP},
            headers=["Ticker", "When", "Qty", "Cost", "Account"],
        )

        assert columns[fm.SYMBOL] == "Ticker"
        assert columns[fm.SHARES] == "Qty"
        assert columns[fm.TYPE] is None
        assert fm.SKIP not in columns

    def test_missing_required_fields(self):
        with pytest.raises(MissingFieldMappingError) as exc:
            fm.resolve_mapping({"Ticker": fm.SYMBOL, "Qty": fm.SHARES})

        assert set(exc.value.details["missingFields"]) == {fm.TRANSACTION_DATE, fm.PRICE_PER_SHARE}

    def test_duplicate_field_rejected(self):
        with pytest.raises(InvalidInputError):
            fm.resolve_mapping({"A": fm.SYMBOL, "B": fm.SYMBOL, "C": fm.TRANSACTION_DATE,
                                "D": fm.SHARES, "E": fm.PRICE_PER_SHARE})

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidInputError):
            fm.resolve_mapping({"A": "ticker"})

    def test_column_must_exist(self):
        mapping = {"Ticker": fm.SYMBOL, "Date": fm.TRANSACTION_DATE, "Qty": fm.SHARES, "Price": fm.PRICE_PER_SHARE}
        with pytest.raises(InvalidInputError):
            fm.resolve_mapping(mapping, headers=["Ticker", "Date", "Qty"])
