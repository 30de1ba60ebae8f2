"""
Main FastAPI application for the Badal Trust service
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import OperationalError
import logging

from badal_trust.config import settings, get_policy
from badal_trust.api import (
    system,
    certifications,
    capacity,
    rituals,
    certificates,
    verify
)
from badal_trust.services.errors import NotReady, PilgrimTrustError

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Badal Trust Service...")
    policy = get_policy()
    logger.info(f"Trust policy {policy.policy_version} loaded")

    yield

    # Shutdown
    logger.info("Shutting down Badal Trust Service...")


app = FastAPI(
    title="Badal Trust Service",
    description="Pilgrim certification, proxy capacity, ritual proof and completion certificates",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PilgrimTrustError)
async def pilgrim_trust_error_handler(request: Request, exc: PilgrimTrustError):
    content = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, NotReady):
        content["missing"] = exc.missing
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(OperationalError)
async def storage_unavailable_handler(request: Request, exc: OperationalError):
    logger.error(f"Storage unavailable on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "storage_unavailable", "detail": "Please try again shortly"}
    )


# Include routers
app.include_router(system.router, tags=["System"])
app.include_router(certifications.router)
app.include_router(capacity.router)
app.include_router(rituals.router)
app.include_router(certificates.router)
app.include_router(verify.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Badal Trust",
        "version": "1.0.0",
        "status": "running"
    }
