"""
Direct Upload Routes

Phase one of a direct-to-storage upload. The client declares the file,
receives a signed blob id and an upload target, writes the bytes to the
storage service itself and later submits only the signed id.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import UserDB
from ..services.proofs import SubmissionGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/blobs", tags=["blobs"])


class DirectUploadRequest(BaseModel):
    filename: str
    byte_size: int = Field(..., ge=0)
    checksum: str
    content_type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class DirectUploadResponse(BaseModel):
    signed_blob_id: str
    upload_url: str
    upload_headers: Dict[str, str]


@router.post("/direct-uploads", response_model=DirectUploadResponse)
async def create_direct_upload(
    body: DirectUploadRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Missing required fields are rejected with 422 by request validation."""
    target = SubmissionGateway(db).create_direct_upload(
        filename=body.filename,
        byte_size=body.byte_size,
        checksum=body.checksum,
        content_type=body.content_type,
        metadata=body.metadata,
    )
    logger.info(f"Direct upload created for {body.filename} ({body.byte_size} bytes) by {current_user.id}")
    return DirectUploadResponse(**target)
