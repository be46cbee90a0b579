"""
Domain errors.

Every error raised by the services carries exactly one ``ErrorKind``; the
HTTP layer maps kinds to status codes in one exhaustive table.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    INPUT_SHAPE = "input_shape"            # malformed csv, empty file, row limit, bad mapping
    ROW_VALIDATION = "row_validation"      # a single record failed field validation
    ROW_PERSISTENCE = "row_persistence"    # a single record failed to write
    SYSTEMIC = "systemic"                  # the store itself is unavailable
    DEPENDENCY = "dependency"              # market data provider failed
    NOT_FOUND = "not_found"


class StockTrackerError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.SYSTEMIC

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


# (a) input-shape errors

class InvalidInputError(StockTrackerError):
    kind = ErrorKind.INPUT_SHAPE


class MalformedCsvError(InvalidInputError):
    pass


class EmptyFileError(InvalidInputError):
    pass


class TooManyRowsError(InvalidInputError):
    pass


class FileTooLargeError(InvalidInputError):
    pass


class MissingFieldMappingError(InvalidInputError):
    def __init__(self, missing: List[str]):
        super().__init__(
            f"Missing required field mapping: {', '.join(missing)}",
            details={"missingFields": missing},
        )
        self.missing = missing


# (b) / (c) record-level errors

class TransactionValidationError(StockTrackerError):
    """Raised by manual create/update when field validation fails."""

    kind = ErrorKind.ROW_VALIDATION

    def __init__(self, errors: List[Dict[str, Any]]):
        first = errors[0]["message"] if errors else "Invalid transaction"
        super().__init__(first, details=errors)
        self.errors = errors


class RowPersistenceError(StockTrackerError):
    kind = ErrorKind.ROW_PERSISTENCE


class TransactionNotFoundError(StockTrackerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


# (d) systemic

class StoreUnavailableError(StockTrackerError):
    kind = ErrorKind.SYSTEMIC


# (e) external dependency

class TickerNotFoundError(StockTrackerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, symbol: str):
        super().__init__(f"Ticker symbol '{symbol}' not found")
        self.symbol = symbol


class PriceLookupError(StockTrackerError):
    kind = ErrorKind.DEPENDENCY

    def __init__(self, symbol: str, reason: str = "price lookup failed"):
        super().__init__(f"{symbol}: {reason}")
        self.symbol = symbol
