"""
Task Payments - FastAPI Application
Main application entry point with all routers and middleware
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.database import init_db
from app.exceptions import PaymentError
from app.routers import payments, webhooks
from app.config import get_settings
from app.services.stripe_client import is_stripe_configured

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def log_startup_warnings(app_settings) -> None:
    """Warn about settings that must not reach production."""
    if app_settings.debug:
        logger.warning("DEBUG is on: bearer tokens are accepted without signature verification")
    if not is_stripe_configured():
        logger.warning("STRIPE_SECRET_KEY is not set; payment endpoints will fail until it is configured")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    logger.info("[START] Starting Task Payments API...")
    init_db()
    logger.info("[OK] Database tables created/verified")
    log_startup_warnings(settings)
    yield
    logger.info("[STOP] Shutting down...")


app = FastAPI(
    title=settings.app_name,
    description="""
    ## Task Payments API

    Payment settlement for the task marketplace:
    - Fee breakdown (payer service fee + helper commission)
    - Stripe Checkout with destination charges to the helper's account
    - Stripe Connect Express onboarding for helpers
    - Stripe webhooks, processed at most once per event

    ### Authentication
    Use the marketplace JWT in the Authorization header:
    ```
    Authorization: Bearer <your-token>
    ```
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Translate payment core errors that reach the HTTP layer."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# Include routers
app.include_router(payments.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/healthz"
    }


@app.get("/healthz")
async def health():
    """Health check endpoint."""
    return {"ok": True, "status": "healthy", "stripe_configured": is_stripe_configured()}
