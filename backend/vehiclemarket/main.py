"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vehiclemarket.config import settings
from vehiclemarket.api import negotiations, events

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown tasks."""
    logger.info("VehicleMarket negotiation API starting...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    yield
    logger.info("VehicleMarket negotiation API shutting down...")


# Create FastAPI app
app = FastAPI(
    title="VehicleMarket Negotiation API",
    version="1.0.0",
    description="Buyer-seller price negotiation on bucketed vehicle selections",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    negotiations.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["negotiations"]
)
app.include_router(
    events.router,
    prefix=f"{settings.API_V1_PREFIX}",
    tags=["events"]
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "VehicleMarket Negotiation API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
    }


# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )
