"""
Historical close prices with persistent database caching.

Fetches daily closes from yfinance and caches them in the
``historical_prices`` table so repeated chart requests do not hit the
provider. Returns a DataFrame indexed by date with one column per ticker;
tickers with no data are simply absent.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Sequence, Tuple

import pandas as pd
import yfinance as yf
from sqlalchemy import and_
from sqlalchemy.orm import Session

from stocktracker.database import SessionLocal
from stocktracker.models import HistoricalPrice

logger = logging.getLogger(__name__)

# How far the cache may lag before a ticker is refetched (weekends, holidays)
CACHE_SLACK_DAYS = 4


def normalize_index(df: pd.DataFrame) -> pd.DataFrame:
    """Tz-naive, midnight-normalized, sorted, de-duplicated DatetimeIndex."""
    if df.empty:
        return df
    index = pd.to_datetime(df.index)
    if index.tz is not None:
        index = index.tz_localize(None)
    df = df.copy()
    df.index = index.normalize()
    df = df[~df.index.duplicated(keep="last")]
    return df.sort_index()


class PriceHistorySource(ABC):
    """Daily close prices for a set of tickers."""

    @abstractmethod
    def get_closes(self, tickers: Sequence[str], start: date, end: date) -> pd.DataFrame:
        """DataFrame of closes, DatetimeIndex rows, ticker columns."""


def _load_from_db_cache(
    db: Session,
    tickers: List[str],
    start_date: date,
    end_date: date
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Load cached prices from database.

    Returns:
        - DataFrame with cached prices (may have gaps)
        - List of tickers whose cache does not cover the range
    """
    prices = db.query(HistoricalPrice).filter(
        and_(
            HistoricalPrice.ticker.in_(tickers),
            HistoricalPrice.date >= start_date,
            HistoricalPrice.date <= end_date
        )
    ).all()

    data: Dict[str, Dict[date, float]] = {}
    for price in prices:
        data.setdefault(price.ticker, {})[price.date] = price.close_price

    df = normalize_index(pd.DataFrame(data)) if data else pd.DataFrame()

    stale = []
    for ticker in tickers:
        cached = data.get(ticker)
        if not cached:
            stale.append(ticker)
            continue
        if min(cached) > start_date + timedelta(days=CACHE_SLACK_DAYS):
            stale.append(ticker)
        elif max(cached) < end_date - timedelta(days=CACHE_SLACK_DAYS):
            stale.append(ticker)

    logger.debug(f"DB cache: {len(prices)} prices loaded, {len(stale)} tickers need updates")
    return df, stale


def _save_to_db_cache(db: Session, ticker: str, prices: Dict[date, float]) -> int:
    """Save prices to database cache. Returns count of new records."""
    if not prices:
        return 0

    existing = {
        row.date: row
        for row in db.query(HistoricalPrice).filter(
            HistoricalPrice.ticker == ticker,
            HistoricalPrice.date.in_(list(prices.keys())),
        )
    }
    count = 0
    now = datetime.now(timezone.utc)
    for price_date, close_price in prices.items():
        row = existing.get(price_date)
        if row:
            row.close_price = close_price
            row.fetched_at = now
        else:
            db.add(HistoricalPrice(ticker=ticker, date=price_date, close_price=close_price, fetched_at=now))
            count += 1
    return count


def _extract_closes(raw: pd.DataFrame, tickers: List[str]) -> pd.DataFrame:
    """Pull the Close column(s) out of a yf.download frame."""
    if raw is None or raw.empty:
        return pd.DataFrame()
    if isinstance(raw.columns, pd.MultiIndex):
        close_data = raw["Close"]
    elif "Close" in raw.columns:
        close_data = raw["Close"]
    else:
        close_data = raw
    if isinstance(close_data, pd.Series):
        close_data = close_data.to_frame(name=tickers[0])
    elif len(tickers) == 1 and list(close_data.columns) == ["Close"]:
        close_data = close_data.rename(columns={"Close": tickers[0]})
    return close_data


class YahooPriceHistorySource(PriceHistorySource):
    """yfinance closes behind the ``historical_prices`` cache."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _download(self, tickers: List[str], start: date, end: date) -> pd.DataFrame:
        logger.info(f"Fetching from yfinance: {len(tickers)} tickers, {start} to {end}")
        try:
            raw = yf.download(
                tickers=tickers if len(tickers) > 1 else tickers[0],
                start=start,
                end=end + timedelta(days=1),
                auto_adjust=True,
                progress=False,
            )
        except Exception as e:
            logger.warning(f"yfinance download failed for {tickers}: {e}")
            return pd.DataFrame()
        return normalize_index(_extract_closes(raw, tickers))

    def get_closes(self, tickers: Sequence[str], start: date, end: date) -> pd.DataFrame:
        tickers = sorted(set(t.upper().strip() for t in tickers if t and t.strip()))
        if not tickers:
            return pd.DataFrame()

        db = self.session_factory()
        try:
            cached, stale = _load_from_db_cache(db, tickers, start, end)
            if not stale:
                return cached

            fetched = self._download(stale, start, end)
            for ticker in stale:
                if ticker not in fetched.columns:
                    logger.warning(f"{ticker}: no price history returned")
                    continue
                series = fetched[ticker].dropna()
                _save_to_db_cache(db, ticker, {ts.date(): float(v) for ts, v in series.items()})
            try:
                db.commit()
            except Exception as e:
                # Cache write failures never fail the request
                db.rollback()
                logger.warning(f"Failed to persist price cache: {e}")

            if cached.empty:
                return fetched
            if fetched.empty:
                return cached
            return normalize_index(fetched.combine_first(cached))
        finally:
            db.close()
