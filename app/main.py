"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import init_db, close_db
from app.exceptions import PaymentError
from app.logging_config import configure_logging

from app.api.webhooks.paystack import router as paystack_router
from app.api.payments import router as payments_router
from app.api.admin.promoted_polls import router as admin_promoted_polls_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logging.info(f"Starting up {settings.app_name}...")
    await init_db()

    yield

    # Shutdown
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="PollPeak Payments",
    description="Promoted poll payments, Paystack settlement and campaign administration",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error"},
    )


# CORS middleware
origins = [settings.frontend_url.rstrip("/")]
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Register webhook routes
app.include_router(
    paystack_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

app.include_router(
    payments_router,
    prefix="/payments",
    tags=["payments"],
)

# Register admin routes
app.include_router(
    admin_promoted_polls_router,
    prefix="/admin",
    tags=["admin"],
)
