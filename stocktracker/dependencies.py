"""
FastAPI dependency providers.

Market data clients are process-wide singletons so their caches are
shared between requests; everything touching the database is built per
request around that request's session.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from stocktracker.context import RequestContext
from stocktracker.database import get_db_sync
from stocktracker.services.import_engine import TransactionImportEngine
from stocktracker.services.portfolio_service import PortfolioService
from stocktracker.services.price_service import PriceHistorySource, YahooPriceHistorySource
from stocktracker.services.ticker_resolver import TickerResolver, YahooTickerResolver
from stocktracker.services.transaction_service import TransactionService
from stocktracker.services.transaction_store import SqlTransactionStore, TransactionStore

_resolver: Optional[TickerResolver] = None
_history: Optional[PriceHistorySource] = None


def get_context(x_user_id: Optional[str] = Header(default=None)) -> RequestContext:
    """Caller identity comes from the authenticating proxy in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return RequestContext(owner_id=x_user_id.strip())


def get_resolver() -> TickerResolver:
    global _resolver
    if _resolver is None:
        _resolver = YahooTickerResolver()
    return _resolver


def get_history_source() -> PriceHistorySource:
    global _history
    if _history is None:
        _history = YahooPriceHistorySource()
    return _history


def get_store(db: Session = Depends(get_db_sync)) -> TransactionStore:
    return SqlTransactionStore(db)


def get_import_engine(
    store: TransactionStore = Depends(get_store),
    resolver: TickerResolver = Depends(get_resolver),
) -> TransactionImportEngine:
    return TransactionImportEngine(store, resolver)


def get_transaction_service(
    store: TransactionStore = Depends(get_store),
    resolver: TickerResolver = Depends(get_resolver),
) -> TransactionService:
    return TransactionService(store, resolver)


def get_portfolio_service(
    store: TransactionStore = Depends(get_store),
    resolver: TickerResolver = Depends(get_resolver),
    history: PriceHistorySource = Depends(get_history_source),
) -> PortfolioService:
    return PortfolioService(store, resolver, history)
