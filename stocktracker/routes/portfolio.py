from typing import List

from fastapi import APIRouter, Depends, Query

from stocktracker.context import RequestContext
from stocktracker.dependencies import get_context, get_portfolio_service
from stocktracker.schemas import ApiResponse, PerformancePointModel, PortfolioModel
from stocktracker.services.portfolio_service import PortfolioService

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


def _portfolio_response(summary) -> ApiResponse[PortfolioModel]:
    message = None
    if summary.degraded:
        message = f"Prices unavailable for: {', '.join(summary.unpriced_symbols)}"
    return ApiResponse[PortfolioModel](message=message, data=PortfolioModel.model_validate(summary))


@router.get("", response_model=ApiResponse[PortfolioModel])
def get_portfolio(
    ctx: RequestContext = Depends(get_context),
    service: PortfolioService = Depends(get_portfolio_service),
):
    return _portfolio_response(service.get_portfolio(ctx))


@router.get("/refresh", response_model=ApiResponse[PortfolioModel])
def refresh_portfolio(
    ctx: RequestContext = Depends(get_context),
    service: PortfolioService = Depends(get_portfolio_service),
):
    return _portfolio_response(service.get_portfolio(ctx, refresh=True))


@router.get("/performance", response_model=ApiResponse[List[PerformancePointModel]])
def get_performance(
    range: str = Query(default="1mo"),
    ctx: RequestContext = Depends(get_context),
    service: PortfolioService = Depends(get_portfolio_service),
):
    points = service.get_performance(ctx, range)
    return ApiResponse[List[PerformancePointModel]](
        data=[PerformancePointModel.model_validate(p) for p in points]
    )
