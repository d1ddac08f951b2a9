"""FastAPI application for the rentbook JSON API."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rentbook.api.billing import router as billing_router
from rentbook.api.bills import router as bills_router
from rentbook.api.payments import router as payments_router
from rentbook.api.rent_revisions import router as rent_revisions_router
from rentbook.config import settings
from rentbook.errors import AppError, error_response

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.api_title,
    description="Rent revisions, monthly wing billing and payment reconciliation",
    version=settings.api_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Translate application errors into {"error": {"code", "message"}} responses."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


app.include_router(rent_revisions_router)
app.include_router(billing_router)
app.include_router(bills_router)
app.include_router(payments_router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {"status": "ok"}


__all__ = ["app"]
