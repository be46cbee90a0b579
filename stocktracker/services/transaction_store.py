"""
Transaction repository.

All reads and writes of ``Transaction`` rows go through a
``TransactionStore``; services never touch the session directly.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from stocktracker.exceptions import RowPersistenceError, StoreUnavailableError, TransactionNotFoundError
from stocktracker.models import Transaction
from stocktracker.services.row_validator import TransactionDraft

logger = logging.getLogger(__name__)

# Errors that mean the store itself is gone, not that one row was bad
SYSTEMIC_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


@dataclass
class RowWriteFailure:
    row_number: int
    message: str


@dataclass
class BatchWriteResult:
    created: List[Tuple[int, Transaction]] = field(default_factory=list)
    failures: List[RowWriteFailure] = field(default_factory=list)


class TransactionStore(ABC):
    """CRUD for one owner's transactions."""

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> List[Transaction]:
        """All transactions, oldest first."""

    @abstractmethod
    def get(self, owner_id: str, transaction_id: int) -> Transaction:
        ...

    @abstractmethod
    def add(self, owner_id: str, draft: TransactionDraft) -> Transaction:
        ...

    @abstractmethod
    def add_many(self, owner_id: str, drafts: Sequence[Tuple[int, TransactionDraft]]) -> BatchWriteResult:
        """
        Insert rows independently. A row that violates a constraint is
        reported in ``failures`` without affecting its siblings; a
        connectivity failure raises StoreUnavailableError and writes nothing.
        """

    @abstractmethod
    def update(self, owner_id: str, transaction_id: int, draft: TransactionDraft) -> Transaction:
        ...

    @abstractmethod
    def delete(self, owner_id: str, transaction_id: int) -> None:
        ...


def _apply_draft(tx: Transaction, draft: TransactionDraft) -> Transaction:
    tx.type = draft.type
    tx.symbol = draft.symbol
    tx.company_name = draft.company_name
    tx.transaction_date = draft.transaction_date
    tx.shares = draft.shares
    tx.price_per_share = draft.price_per_share
    tx.broker_fee = draft.broker_fee
    tx.notes = draft.notes
    return tx


class SqlTransactionStore(TransactionStore):
    """SQLAlchemy-backed store bound to one request session."""

    def __init__(self, db: Session):
        self.db = db

    def _unavailable(self, e: Exception) -> StoreUnavailableError:
        self.db.rollback()
        logger.error(f"[TransactionStore] Database unavailable: {e}")
        return StoreUnavailableError("Transaction store is unavailable", details=str(e))

    def _rejected(self, e: SQLAlchemyError, action: str) -> RowPersistenceError:
        self.db.rollback()
        message = str(getattr(e, "orig", e)) or e.__class__.__name__
        logger.warning(f"[TransactionStore] Database rejected {action}: {message}")
        return RowPersistenceError(f"Failed to {action} transaction: {message}")

    def list_for_owner(self, owner_id: str) -> List[Transaction]:
        try:
            return (
                self.db.query(Transaction)
                .filter(Transaction.owner_id == owner_id)
                .order_by(Transaction.transaction_date, Transaction.id)
                .all()
            )
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)

    def get(self, owner_id: str, transaction_id: int) -> Transaction:
        try:
            tx = (
                self.db.query(Transaction)
                .filter(Transaction.id == transaction_id, Transaction.owner_id == owner_id)
                .first()
            )
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def add(self, owner_id: str, draft: TransactionDraft) -> Transaction:
        tx = _apply_draft(Transaction(owner_id=owner_id), draft)
        try:
            self.db.add(tx)
            self.db.commit()
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)
        except SQLAlchemyError as e:
            raise self._rejected(e, "save")
        logger.info(f"[TransactionStore] Created transaction {tx.id} for owner {owner_id}")
        return tx

    def add_many(self, owner_id: str, drafts: Sequence[Tuple[int, TransactionDraft]]) -> BatchWriteResult:
        result = BatchWriteResult()
        try:
            for row_number, draft in drafts:
                tx = _apply_draft(Transaction(owner_id=owner_id), draft)
                try:
                    with self.db.begin_nested():
                        self.db.add(tx)
                except (IntegrityError, DBAPIError) as e:
                    if isinstance(e, SYSTEMIC_ERRORS):
                        raise
                    message = str(getattr(e, "orig", e)) or e.__class__.__name__
                    logger.warning(f"[TransactionStore] Row {row_number} rejected by database: {message}")
                    result.failures.append(RowWriteFailure(row_number, f"Failed to save transaction: {message}"))
                    continue
                result.created.append((row_number, tx))
            self.db.commit()
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)

        logger.info(
            f"[TransactionStore] Batch for owner {owner_id}: "
            f"{len(result.created)} created, {len(result.failures)} failed"
        )
        return result

    def update(self, owner_id: str, transaction_id: int, draft: TransactionDraft) -> Transaction:
        tx = self.get(owner_id, transaction_id)
        _apply_draft(tx, draft)
        try:
            self.db.commit()
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)
        except SQLAlchemyError as e:
            raise self._rejected(e, "update")
        logger.info(f"[TransactionStore] Updated transaction {transaction_id}")
        return tx

    def delete(self, owner_id: str, transaction_id: int) -> None:
        tx = self.get(owner_id, transaction_id)
        try:
            self.db.delete(tx)
            self.db.commit()
        except SYSTEMIC_ERRORS as e:
            raise self._unavailable(e)
        except SQLAlchemyError as e:
            raise self._rejected(e, "delete")
        logger.info(f"[TransactionStore] Deleted transaction {transaction_id}")
