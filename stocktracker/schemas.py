"""
Request/response models for the REST API.

All payloads use camelCase keys; decimals are emitted as JSON numbers.
"""

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from stocktracker.services.csv_parser import CsvRowData

T = TypeVar("T")

Number = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ApiResponse(CamelModel, Generic[T]):
    """Envelope wrapped around every JSON response"""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


# CSV import

class CsvRowModel(CamelModel):
    row_number: int = Field(ge=1)
    data: Dict[str, Optional[str]]

    @field_validator("data", mode="before")
    @classmethod
    def stringify_values(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): (None if val is None else str(val)) for k, val in v.items()}
        return v

    def to_row(self) -> CsvRowData:
        return CsvRowData(row_number=self.row_number, values={k: ("" if v is None else v) for k, v in self.data.items()})


class SuggestMappingRequest(CamelModel):
    headers: List[str]


class MappingSuggestionModel(CamelModel):
    suggested_mappings: Dict[str, str]
    confidence_scores: Dict[str, float]
    unmapped_columns: List[str]


class ParsedUploadModel(CamelModel):
    file_name: Optional[str] = None
    headers: List[str]
    rows: List[CsvRowModel]
    suggestion: MappingSuggestionModel


class ImportRequest(CamelModel):
    rows: List[CsvRowModel]
    field_mappings: Dict[str, str]

    def to_rows(self) -> List[CsvRowData]:
        return [row.to_row() for row in self.rows]


class FieldErrorModel(CamelModel):
    row_number: int
    field: Optional[str] = None
    message: str
    rejected_value: Optional[str] = None


class PreviewRowModel(CamelModel):
    row_number: int
    type: Optional[str] = None
    symbol: Optional[str] = None
    company_name: Optional[str] = None
    transaction_date: Optional[date] = None
    shares: Optional[Number] = None
    price_per_share: Optional[Number] = None
    broker_fee: Optional[Number] = None
    notes: Optional[str] = None
    valid: bool
    errors: List[FieldErrorModel] = []


class ImportPreviewModel(CamelModel):
    valid_rows: List[PreviewRowModel]
    error_rows: List[PreviewRowModel]
    total_rows: int
    valid_count: int
    error_count: int


class TransactionModel(CamelModel):
    id: int
    type: str
    symbol: str
    company_name: Optional[str] = None
    transaction_date: date
    shares: Number
    price_per_share: Number
    broker_fee: Number
    notes: Optional[str] = None
    total_amount: Number
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImportResultModel(CamelModel):
    imported_count: int
    skipped_count: int
    errors: List[FieldErrorModel]
    imported_transactions: List[TransactionModel]


# Manual entry

class TransactionRequest(CamelModel):
    type: str
    symbol: str = Field(min_length=1, max_length=20)
    transaction_date: date
    shares: Decimal
    price_per_share: Decimal
    broker_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    exchange: Optional[str] = None


class TickerValidationModel(CamelModel):
    valid: bool
    symbol: str
    company_name: Optional[str] = None
    error_message: Optional[str] = None


# Portfolio

class HoldingModel(CamelModel):
    symbol: str
    company_name: Optional[str] = None
    shares: Number
    average_cost: Number
    cost_basis: Number
    last_price: Optional[Number] = None
    previous_close: Optional[Number] = None
    current_value: Optional[Number] = None
    total_return_dollars: Optional[Number] = None
    total_return_percent: Optional[Number] = None
    day_change: Optional[Number] = None
    day_change_percent: Optional[Number] = None
    seven_day_return_percent: Number
    weight: Number
    sparkline: List[float] = []
    price_status: str


class PortfolioModel(CamelModel):
    holdings: List[HoldingModel]
    total_value: Number
    total_cost: Number
    total_return_dollars: Number
    total_return_percent: Number
    day_change: Number
    day_change_percent: Number
    annualized_return_percent: Number
    investment_years: Number
    prices_updated_at: Optional[datetime] = None
    degraded: bool = False
    unpriced_symbols: List[str] = []


class PerformancePointModel(CamelModel):
    date: dt.date
    total_value: float
    daily_change: float
    daily_change_percent: float
