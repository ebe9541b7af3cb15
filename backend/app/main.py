"""
Proof Engine - FastAPI Application

Main entry point for the proof submission backend.

Architecture:
- Channel input → SubmissionGateway (authorize) → RateLimiter
- RateLimiter → ProofAttachmentService (atomic attach + status) → AuditRecorder
- Review decisions → RejectionPolicy → Notifications (delivered after commit)
- Consistency checker and failure-rate monitor run from /internal endpoints
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import APP_ENV, LOG_LEVEL
from .database import init_db
from .routers import (
    admin_router,
    auth_router,
    blobs_router,
    inbound_email_router,
    proofs_router,
    scheduler_router,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info(f"Proof Engine started (env={APP_ENV})")
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Proof Engine",
    description="""
    Proof Submission, Review & Consistency Engine

    Accepts eligibility proofs (income, residency) from the web, direct
    uploads, staff paper entry and inbound email; records staff review
    decisions; archives applications at the rejection threshold.

    ## Key Principles
    - Proof status changes only through the attachment service
    - Attachment, status and audit are written in one unit of work
    - Events and submission audits are append-only
    - Notifications are decided in the transaction, delivered after commit
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(proofs_router)
app.include_router(blobs_router)
app.include_router(inbound_email_router)
app.include_router(admin_router)
app.include_router(scheduler_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
