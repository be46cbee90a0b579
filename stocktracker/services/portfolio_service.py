"""Portfolio dashboard queries with per-owner response caching."""

import logging
from typing import List, Optional

from stocktracker.config import settings
from stocktracker.context import RequestContext
from stocktracker.services.cache import OwnerCache, portfolio_cache
from stocktracker.services.performance_history import PerformanceHistoryBuilder, PerformancePoint
from stocktracker.services.portfolio_calculator import PortfolioAggregator, PortfolioSummary
from stocktracker.services.price_service import PriceHistorySource
from stocktracker.services.ticker_resolver import TickerResolver
from stocktracker.services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class PortfolioService:
    def __init__(
        self,
        store: TransactionStore,
        resolver: TickerResolver,
        history: PriceHistorySource,
        cache: OwnerCache = portfolio_cache,
        include_fees: Optional[bool] = None,
    ):
        self.store = store
        self.cache = cache
        self.aggregator = PortfolioAggregator(resolver, history, include_fees=include_fees)
        self.performance = PerformanceHistoryBuilder(history, include_fees=include_fees)

    def get_portfolio(self, ctx: RequestContext, refresh: bool = False) -> PortfolioSummary:
        """Current holdings and totals; ``refresh`` bypasses the cache."""
        key = ("portfolio", ctx.today)
        if not refresh:
            cached = self.cache.get(ctx.owner_id, key)
            if cached is not None:
                logger.debug(f"[PortfolioService] Cache hit for {ctx.owner_id}")
                return cached

        summary = self.aggregator.build(self.store.list_for_owner(ctx.owner_id), ctx)
        # Degraded results are not cached so the next request retries the quotes
        if not summary.degraded:
            self.cache.set(ctx.owner_id, key, summary, settings.portfolio_cache_ttl)
        return summary

    def get_performance(self, ctx: RequestContext, time_range: str) -> List[PerformancePoint]:
        key = ("performance", time_range, ctx.today)
        cached = self.cache.get(ctx.owner_id, key)
        if cached is not None:
            return cached

        points = self.performance.build(self.store.list_for_owner(ctx.owner_id), time_range, ctx)
        self.cache.set(ctx.owner_id, key, points, settings.performance_cache_ttl)
        return points
