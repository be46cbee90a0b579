"""
API routes
"""

from fastapi import APIRouter

from .portfolio import router as portfolio_router
from .transactions import router as transactions_router

api_router = APIRouter()
api_router.include_router(transactions_router)
api_router.include_router(portfolio_router)

__all__ = ["api_router"]
