"""
Main FastAPI application for the Invoice Intake backend.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .exceptions import (
    ExternalServiceError,
    FileValidationError,
    NotFoundError,
    PayloadTooLargeError,
)
from .routers.config import router as config_router
from .routers.documents import router as documents_router
from .routers.health import router as health_router


settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Domain exception -> HTTP status
_STATUS_BY_EXCEPTION = {
    FileValidationError: 400,
    NotFoundError: 404,
    PayloadTooLargeError: 413,
    ExternalServiceError: 503,
}


async def _domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = 503
    for exc_type, code in _STATUS_BY_EXCEPTION.items():
        if isinstance(exc, exc_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


for _exc_type in _STATUS_BY_EXCEPTION:
    app.add_exception_handler(_exc_type, _domain_error_handler)

# Routers
app.include_router(health_router, prefix=settings.API_PREFIX)
app.include_router(config_router, prefix=settings.API_PREFIX)
app.include_router(documents_router, prefix=settings.API_PREFIX)


@app.get("/", tags=["root"])
async def root() -> dict:
    """Simple root endpoint."""
    return {"name": app.title, "version": app.version}
