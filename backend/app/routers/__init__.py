"""Proof Engine - API Routers"""
from .auth import router as auth_router
from .proofs import router as proofs_router
from .blobs import router as blobs_router
from .inbound_email import router as inbound_email_router
from .admin import router as admin_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "proofs_router",
    "blobs_router",
    "inbound_email_router",
    "admin_router",
    "scheduler_router",
]
