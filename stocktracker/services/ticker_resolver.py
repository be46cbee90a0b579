"""
Ticker lookup against the market data provider.

``TickerResolver`` is the seam the import pipeline and the portfolio
aggregator depend on; ``YahooTickerResolver`` is the production
implementation backed by yfinance with a short in-memory TTL cache and a
last-known-quote fallback for degraded lookups.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple, Union

import yfinance as yf

from stocktracker.config import settings
from stocktracker.exceptions import PriceLookupError, StockTrackerError, TickerNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    symbol: str
    company_name: Optional[str]
    price: Decimal
    previous_close: Optional[Decimal]
    as_of: datetime
    stale: bool = False


LookupOutcome = Union[Quote, StockTrackerError]


class TickerResolver(ABC):
    """Symbol -> company name, latest price and previous close."""

    @abstractmethod
    def lookup(self, symbol: str) -> Quote:
        """Raise TickerNotFoundError for unknown symbols, PriceLookupError when the provider fails."""

    def last_known(self, symbol: str) -> Optional[Quote]:
        """Most recent successful quote regardless of age, marked stale."""
        return None

    def resolve_many(
        self,
        symbols: Iterable[str],
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, LookupOutcome]:
        """
        Look up each distinct symbol once, concurrently.

        A lookup that fails or has not finished within ``timeout`` seconds is
        reported as an error for that symbol only.
        """
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return {}
        max_workers = max_workers or settings.quote_max_workers
        timeout = timeout if timeout is not None else settings.quote_timeout_seconds

        results: Dict[str, LookupOutcome] = {}
        executor = ThreadPoolExecutor(max_workers=min(max_workers, len(unique)))
        try:
            future_to_symbol = {executor.submit(self.lookup, symbol): symbol for symbol in unique}
            try:
                for future in as_completed(future_to_symbol, timeout=timeout):
                    symbol = future_to_symbol[future]
                    try:
                        results[symbol] = future.result()
                    except StockTrackerError as e:
                        results[symbol] = e
                    except Exception as e:
                        logger.warning(f"[TickerResolver] Unexpected lookup failure for {symbol}: {e}")
                        results[symbol] = PriceLookupError(symbol, str(e))
            except FuturesTimeout:
                for future, symbol in future_to_symbol.items():
                    if symbol not in results:
                        logger.warning(f"[TickerResolver] Lookup for {symbol} timed out after {timeout}s")
                        results[symbol] = PriceLookupError(symbol, "lookup timed out")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results


class MemoizingResolver(TickerResolver):
    """Wraps a resolver so each symbol is looked up at most once (per import batch)."""

    def __init__(self, inner: TickerResolver):
        self.inner = inner
        self._results: Dict[str, LookupOutcome] = {}
        self._lock = threading.Lock()

    def lookup(self, symbol: str) -> Quote:
        with self._lock:
            cached = self._results.get(symbol)
        if cached is None:
            try:
                cached = self.inner.lookup(symbol)
            except StockTrackerError as e:
                cached = e
            with self._lock:
                self._results[symbol] = cached
        if isinstance(cached, StockTrackerError):
            raise cached
        return cached

    def last_known(self, symbol: str) -> Optional[Quote]:
        return self.inner.last_known(symbol)

    def prefetch(self, symbols: Iterable[str]) -> None:
        pending = [s for s in dict.fromkeys(symbols) if s not in self._results]
        if not pending:
            return
        outcomes = self.inner.resolve_many(pending)
        with self._lock:
            self._results.update(outcomes)


def _first_positive(info: dict, fields: Tuple[str, ...]) -> Optional[float]:
    for name in fields:
        value = info.get(name)
        if value:
            try:
                value = float(value)
            except (TypeError, ValueError):
                continue
            if value > 0:
                return value
    return None


class YahooTickerResolver(TickerResolver):
    """yfinance-backed resolver with TTL cache."""

    PRICE_FIELDS = ("regularMarketPrice", "currentPrice", "navPrice", "open")
    PREVIOUS_CLOSE_FIELDS = ("regularMarketPreviousClose", "previousClose")

    def __init__(self, cache_ttl: Optional[int] = None):
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.quote_cache_ttl
        self._cache: Dict[str, Tuple[float, Quote]] = {}
        self._last_known: Dict[str, Quote] = {}
        self._lock = threading.Lock()

    def _get_cache(self, symbol: str) -> Optional[Quote]:
        with self._lock:
            entry = self._cache.get(symbol)
        if entry and (time.time() - entry[0]) < self.cache_ttl:
            return entry[1]
        return None

    def _set_cache(self, quote: Quote) -> None:
        with self._lock:
            self._cache[quote.symbol] = (time.time(), quote)
            self._last_known[quote.symbol] = quote

    def last_known(self, symbol: str) -> Optional[Quote]:
        with self._lock:
            quote = self._last_known.get(symbol.upper())
        return replace(quote, stale=True) if quote else None

    def lookup(self, symbol: str) -> Quote:
        symbol = symbol.strip().upper()
        cached = self._get_cache(symbol)
        if cached:
            return cached

        try:
            ticker = yf.Ticker(symbol)
            info = ticker.info or {}
            price = _first_positive(info, self.PRICE_FIELDS)
            previous_close = _first_positive(info, self.PREVIOUS_CLOSE_FIELDS)

            if price is None:
                # Fallback: try to get from recent history
                hist = ticker.history(period="5d")
                if hist is not None and not hist.empty and "Close" in hist.columns:
                    closes = hist["Close"].dropna()
                    if len(closes) > 0:
                        price = float(closes.iloc[-1])
                    if previous_close is None and len(closes) > 1:
                        previous_close = float(closes.iloc[-2])
        except Exception as e:
            message = str(e)
            if "404" in message or "not found" in message.lower():
                raise TickerNotFoundError(symbol)
            logger.warning(f"[TickerResolver] Failed to get quote for {symbol}: {e}")
            raise PriceLookupError(symbol, message)

        if price is None or price <= 0:
            raise TickerNotFoundError(symbol)

        quote = Quote(
            symbol=symbol,
            company_name=info.get("longName") or info.get("shortName") or symbol,
            price=Decimal(str(price)),
            previous_close=Decimal(str(previous_close)) if previous_close else None,
            as_of=datetime.now(timezone.utc),
        )
        logger.info(f"[TickerResolver] Got quote for {symbol}: ${price:.2f}")
        self._set_cache(quote)
        return quote
