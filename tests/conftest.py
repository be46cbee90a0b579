"""
Shared fixtures.

The database URL must point at an in-memory SQLite database before any
stocktracker module is imported, since the engine is built at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pandas as pd
import pytest

from stocktracker.context import RequestContext
from stocktracker.database import SessionLocal, reset_db_sync
from stocktracker.exceptions import PriceLookupError, TickerNotFoundError
from stocktracker.services.cache import portfolio_cache
from stocktracker.services.price_service import PriceHistorySource
from stocktracker.services.row_validator import TransactionDraft
from stocktracker.services.ticker_resolver import Quote, TickerResolver
from stocktracker.services.transaction_store import SqlTransactionStore

TODAY = date(2024, 6, 14)  # a Friday


class FakeResolver(TickerResolver):
    """In-memory quotes; unknown symbols are not found."""

    def __init__(self, quotes: Optional[Dict[str, tuple]] = None):
        self.quotes = quotes if quotes is not None else {
            "AAPL": ("Apple Inc.", "190.00", "188.00"),
            "MSFT": ("Microsoft Corporation", "420.00", "425.00"),
            "VOD.L": ("Vodafone Group Plc", "0.70", "0.69"),
        }
        self.failing = set()
        self.stale: Dict[str, Quote] = {}
        self.lookups = []

    def lookup(self, symbol: str) -> Quote:
        self.lookups.append(symbol)
        if symbol in self.failing:
            raise PriceLookupError(symbol, "provider down")
        if symbol not in self.quotes:
            raise TickerNotFoundError(symbol)
        name, price, previous = self.quotes[symbol]
        return Quote(
            symbol=symbol,
            company_name=name,
            price=Decimal(price),
            previous_close=Decimal(previous) if previous else None,
            as_of=datetime(2024, 6, 14, 20, 0, tzinfo=timezone.utc),
        )

    def last_known(self, symbol: str) -> Optional[Quote]:
        return self.stale.get(symbol)


class FakeHistory(PriceHistorySource):
    """Closes keyed by symbol -> {date: price}."""

    def __init__(self, closes: Optional[Dict[str, Dict[date, float]]] = None, fail: bool = False):
        self.closes = closes or {}
        self.fail = fail

    def get_closes(self, tickers, start, end) -> pd.DataFrame:
        if self.fail:
            raise RuntimeError("history offline")
        data = {
            t: {pd.Timestamp(d): v for d, v in self.closes[t].items() if start <= d <= end}
            for t in tickers if t in self.closes
        }
        return pd.DataFrame(data).sort_index()


def make_draft(tx_type="BUY", symbol="AAPL", on=date(2024, 1, 2), shares="10", price="100",
               fee="0", notes=None) -> TransactionDraft:
    return TransactionDraft(
        type=tx_type,
        symbol=symbol,
        transaction_date=on,
        shares=Decimal(shares),
        price_per_share=Decimal(price),
        broker_fee=Decimal(fee),
        notes=notes,
    )


@pytest.fixture(autouse=True)
def clean_state():
    reset_db_sync()
    portfolio_cache.clear()
    yield
    portfolio_cache.clear()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store(db_session):
    return SqlTransactionStore(db_session)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def ctx():
    return RequestContext(owner_id="user-1", today=TODAY)
