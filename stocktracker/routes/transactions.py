"""
Transaction endpoints: CSV import pipeline, export and manual CRUD.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response

from stocktracker.config import settings
from stocktracker.context import RequestContext
from stocktracker.dependencies import get_context, get_import_engine, get_transaction_service
from stocktracker.schemas import (
    ApiResponse,
    CsvRowModel,
    ImportPreviewModel,
    ImportRequest,
    ImportResultModel,
    MappingSuggestionModel,
    ParsedUploadModel,
    SuggestMappingRequest,
    TickerValidationModel,
    TransactionModel,
    TransactionRequest,
)
from stocktracker.services.csv_parser import parse_csv
from stocktracker.services.import_engine import TransactionImportEngine
from stocktracker.services.transaction_service import TransactionInput, TransactionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _to_input(request: TransactionRequest) -> TransactionInput:
    return TransactionInput(
        type=request.type,
        symbol=request.symbol,
        transaction_date=request.transaction_date,
        shares=request.shares,
        price_per_share=request.price_per_share,
        broker_fee=request.broker_fee,
        notes=request.notes,
        exchange=request.exchange,
    )


@router.post("/import/parse", response_model=ApiResponse[ParsedUploadModel])
async def parse_upload(
    file: UploadFile = File(...),
    ctx: RequestContext = Depends(get_context),
    engine: TransactionImportEngine = Depends(get_import_engine),
):
    """Parse an uploaded CSV and suggest a column mapping in one call"""
    # One byte past the limit is enough for parse_csv to reject it
    content = await file.read(settings.max_upload_size + 1)
    parsed = parse_csv(content, max_bytes=settings.max_upload_size)
    suggestion = engine.suggest_mapping(parsed.headers)
    logger.info(f"CSV upload from {ctx.owner_id}: {file.filename}, {len(parsed.rows)} rows")
    return ApiResponse[ParsedUploadModel](data=ParsedUploadModel(
        file_name=file.filename,
        headers=parsed.headers,
        rows=[CsvRowModel(row_number=row.row_number, data=row.values) for row in parsed.rows],
        suggestion=MappingSuggestionModel.model_validate(suggestion),
    ))


@router.post("/import/suggest-mapping", response_model=ApiResponse[MappingSuggestionModel])
def suggest_mapping(
    request: SuggestMappingRequest,
    ctx: RequestContext = Depends(get_context),
    engine: TransactionImportEngine = Depends(get_import_engine),
):
    suggestion = engine.suggest_mapping(request.headers)
    return ApiResponse[MappingSuggestionModel](data=MappingSuggestionModel.model_validate(suggestion))


@router.post("/import/preview", response_model=ApiResponse[ImportPreviewModel])
def preview_import(
    request: ImportRequest,
    ctx: RequestContext = Depends(get_context),
    engine: TransactionImportEngine = Depends(get_import_engine),
):
    preview = engine.preview_import(request.to_rows(), request.field_mappings, ctx)
    return ApiResponse[ImportPreviewModel](data=ImportPreviewModel.model_validate(preview))


@router.post("/import", response_model=ApiResponse[ImportResultModel])
def commit_import(
    request: ImportRequest,
    ctx: RequestContext = Depends(get_context),
    engine: TransactionImportEngine = Depends(get_import_engine),
):
    result = engine.commit_import(request.to_rows(), request.field_mappings, ctx)
    message = f"Imported {result.imported_count} transactions, skipped {result.skipped_count}"
    return ApiResponse[ImportResultModel](
        success=result.imported_count > 0 or not result.errors,
        message=message,
        data=ImportResultModel.model_validate(result),
    )


@router.get("/export")
def export_transactions(
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    csv_text = service.export_csv(ctx)
    filename = f"transactions_{ctx.today.isoformat()}.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/validate-ticker", response_model=ApiResponse[TickerValidationModel])
def validate_ticker(
    symbol: Optional[str] = Query(default=None),
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    validation = service.validate_ticker(symbol)
    return ApiResponse[TickerValidationModel](data=TickerValidationModel.model_validate(validation))


@router.get("", response_model=ApiResponse[List[TransactionModel]])
def list_transactions(
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    transactions = service.list_transactions(ctx)
    return ApiResponse[List[TransactionModel]](data=[TransactionModel.model_validate(tx) for tx in transactions])


@router.get("/{transaction_id}", response_model=ApiResponse[TransactionModel])
def get_transaction(
    transaction_id: int,
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    tx = service.get_transaction(ctx, transaction_id)
    return ApiResponse[TransactionModel](data=TransactionModel.model_validate(tx))


@router.post("", response_model=ApiResponse[TransactionModel], status_code=201)
def create_transaction(
    request: TransactionRequest,
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    tx = service.create_transaction(ctx, _to_input(request))
    return ApiResponse[TransactionModel](message="Transaction created", data=TransactionModel.model_validate(tx))


@router.put("/{transaction_id}", response_model=ApiResponse[TransactionModel])
def update_transaction(
    transaction_id: int,
    request: TransactionRequest,
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    tx = service.update_transaction(ctx, transaction_id, _to_input(request))
    return ApiResponse[TransactionModel](message="Transaction updated", data=TransactionModel.model_validate(tx))


@router.delete("/{transaction_id}", response_model=ApiResponse[None])
def delete_transaction(
    transaction_id: int,
    ctx: RequestContext = Depends(get_context),
    service: TransactionService = Depends(get_transaction_service),
):
    service.delete_transaction(ctx, transaction_id)
    return ApiResponse[None](message="Transaction deleted")
