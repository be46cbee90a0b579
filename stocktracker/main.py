"""
Stock Tracker API
Main FastAPI application entry point
"""

import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import configure_logging, settings
from .database import check_db_connection, init_db_sync
from .exceptions import ErrorKind, StockTrackerError
from .routes import api_router

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.INPUT_SHAPE: 400,
    ErrorKind.ROW_VALIDATION: 422,
    ErrorKind.ROW_PERSISTENCE: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DEPENDENCY: 502,
    ErrorKind.SYSTEMIC: 503,
}

_unmapped = set(ErrorKind) - set(STATUS_BY_KIND)
if _unmapped:
    raise RuntimeError(f"No HTTP status for error kinds: {_unmapped}")

# Initialize FastAPI app
app = FastAPI(
    title="Stock Tracker",
    description="Personal stock portfolio tracker: transaction import and portfolio analytics",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,  # Cache preflight for 24 hours
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if request.url.path.startswith("/api/"):
        response.headers["API-Version"] = __version__
    return response


@app.exception_handler(StockTrackerError)
async def stocktracker_error_handler(request: Request, exc: StockTrackerError):
    status_code = STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.kind.value}): {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind.value}): {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": exc.message, "errorKind": exc.kind.value, "data": exc.details},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """A request body or query that does not fit the endpoint is an input-shape error."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query")),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    logger.info(f"{request.method} {request.url.path} rejected (input_shape): {len(errors)} request errors")
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.INPUT_SHAPE],
        content={
            "success": False,
            "message": "Request validation failed",
            "errorKind": ErrorKind.INPUT_SHAPE.value,
            "data": errors,
        },
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail), "data": None},
        headers=getattr(exc, "headers", None),
    )


app.include_router(api_router, prefix="/api")


@app.on_event("startup")
def startup_event():
    """Initialize logging and database tables"""
    configure_logging()
    init_db_sync()
    logger.info(f"Stock Tracker {__version__} started ({settings.environment})")


@app.get("/health")
async def health_check():
    db_ok = check_db_connection()
    return {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": time.time(),
        "version": __version__,
        "environment": settings.environment,
        "checks": {
            "database": {
                "status": "ok" if db_ok else "error",
            }
        },
    }
