"""
SQLAlchemy database models
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Float, UniqueConstraint, Index, event

from .database import Base

TRANSACTION_TYPES = ("BUY", "SELL")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(Base):
    """One executed trade owned by a single user"""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    type = Column(String(4), nullable=False)  # BUY or SELL
    symbol = Column(String(10), nullable=False)
    company_name = Column(String(255))
    transaction_date = Column(Date, nullable=False)
    shares = Column(Numeric(19, 4), nullable=False)
    price_per_share = Column(Numeric(19, 4), nullable=False)
    broker_fee = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    notes = Column(String(500))
    total_amount = Column(Numeric(19, 4), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('ix_transactions_owner_date', 'owner_id', 'transaction_date'),
        Index('ix_transactions_owner_symbol', 'owner_id', 'symbol'),
    )

    def compute_total(self) -> Decimal:
        """shares x price + fee; the only way total_amount is ever set."""
        fee = Decimal(self.broker_fee or 0)
        return Decimal(self.shares) * Decimal(self.price_per_share) + fee

    def __repr__(self) -> str:
        return (f"<Transaction id={self.id} {self.type} {self.shares} {self.symbol} "
                f"@ {self.price_per_share} on {self.transaction_date}>")


@event.listens_for(Transaction, "before_insert")
@event.listens_for(Transaction, "before_update")
def _set_total_amount(mapper, connection, target: Transaction) -> None:
    if target.broker_fee is None:
        target.broker_fee = Decimal("0")
    target.total_amount = target.compute_total()


class HistoricalPrice(Base):
    """
    Persistent cache for historical stock prices.
    Stores daily close prices fetched from yfinance.
    """
    __tablename__ = "historical_prices"
    __table_args__ = (
        UniqueConstraint('ticker', 'date', name='uq_ticker_date'),
        Index('ix_historical_prices_ticker_date', 'ticker', 'date'),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String(10), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    close_price = Column(Float, nullable=False)
    fetched_at = Column(DateTime(timezone=True), default=_utcnow)
