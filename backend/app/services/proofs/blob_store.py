"""
Blob Store

Opaque storage for proof documents. Callers only ever hold a signed blob id;
the bytes live in a storage service addressed by the blob key.

Direct uploads are two-phase: `create_before_direct_upload` records the
client-declared metadata and returns an upload target, the client writes the
bytes to the storage service itself, and later submissions reference the
signed id only.
"""
import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ...config import (
    BLOB_SIGNING_SECRET,
    BLOB_SERVICE_URL,
    BLOB_STORAGE_ROOT,
    DIRECT_UPLOAD_EXPIRE_MINUTES,
)
from ...models.db_models import BlobDB
from .errors import AttachmentFailure, ValidationError


logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "HS256"
BLOB_ID_PURPOSE = "blob_id"
DIRECT_UPLOAD_PURPOSE = "direct_upload"


class DiskStorageService:
    """Local-disk storage service. Keys map to files under `root`."""

    name = "disk"

    def __init__(self, root: str = BLOB_STORAGE_ROOT, service_url: str = BLOB_SERVICE_URL):
        self.root = Path(root)
        self.service_url = service_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        return self.root / key[:2] / key[2:4] / key

    def upload(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def download(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def url_for_direct_upload(self, key: str, token: str) -> str:
        return f"{self.service_url}/{key}?token={token}"

    def headers_for_direct_upload(self, content_type: Optional[str], checksum: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": content_type or "application/octet-stream"}
        if checksum:
            headers["Content-MD5"] = checksum
        return headers


class BlobStore:
    """Creates blob records and resolves signed blob ids."""

    def __init__(self, db: Session, service: Optional[DiskStorageService] = None):
        self.db = db
        self.service = service or DiskStorageService()

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_before_direct_upload(
        self,
        filename: str,
        byte_size: int,
        checksum: str,
        content_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BlobDB:
        """Phase one of a direct upload: record declared metadata only."""
        blob = BlobDB(
            id=str(uuid4()),
            key=self._generate_key(),
            filename=filename,
            content_type=content_type,
            byte_size=byte_size,
            checksum=checksum,
            service_name=self.service.name,
            blob_metadata=metadata or {},
        )
        self.db.add(blob)
        self.db.flush()
        return blob

    def create_and_upload(self, data: bytes, filename: str, content_type: Optional[str]) -> BlobDB:
        """Store bytes received by the server (email, multipart upload)."""
        blob = BlobDB(
            id=str(uuid4()),
            key=self._generate_key(),
            filename=filename,
            content_type=content_type,
            byte_size=len(data),
            checksum=base64.b64encode(hashlib.md5(data).digest()).decode("ascii"),
            service_name=self.service.name,
            blob_metadata={},
        )
        try:
            self.service.upload(blob.key, data)
        except OSError as e:
            logger.error(f"Blob upload failed for {filename}: {e}")
            raise AttachmentFailure(f"Failed to store {filename}: {e}") from e

        self.db.add(blob)
        self.db.flush()
        return blob

    def direct_upload_target(self, blob: BlobDB) -> Dict[str, Any]:
        """Upload URL and headers for phase two of a direct upload."""
        token = self._sign(
            {"blob_id": blob.id, "key": blob.key},
            DIRECT_UPLOAD_PURPOSE,
            expires_in=timedelta(minutes=DIRECT_UPLOAD_EXPIRE_MINUTES),
        )
        return {
            "url": self.service.url_for_direct_upload(blob.key, token),
            "headers": self.service.headers_for_direct_upload(blob.content_type, blob.checksum),
        }

    # =========================================================================
    # SIGNED IDS
    # =========================================================================

    def signed_id(self, blob: BlobDB) -> str:
        return self._sign({"blob_id": blob.id}, BLOB_ID_PURPOSE)

    def find_signed(self, signed_id: str) -> BlobDB:
        """Resolve a signed blob id or raise ValidationError."""
        try:
            payload = jwt.decode(signed_id, BLOB_SIGNING_SECRET, algorithms=[SIGNING_ALGORITHM])
        except JWTError as e:
            raise ValidationError("invalid_reference", "Invalid or expired attachment reference") from e

        if payload.get("purpose") != BLOB_ID_PURPOSE:
            raise ValidationError("invalid_reference", "Invalid or expired attachment reference")

        blob = self.db.query(BlobDB).filter(BlobDB.id == payload.get("blob_id")).first()
        if blob is None:
            raise ValidationError("invalid_reference", "Attachment reference points to a missing blob")
        return blob

    def read(self, blob: BlobDB) -> Optional[bytes]:
        """Blob bytes when the storage service has them."""
        return self.service.download(blob.key)

    def discard(self, key: str) -> None:
        """Remove stored bytes whose blob row was rolled back."""
        try:
            self.service.delete(key)
        except OSError as e:
            logger.error(f"Failed to remove orphaned blob {key}: {e}")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _generate_key() -> str:
        return secrets.token_hex(14)

    @staticmethod
    def _sign(claims: Dict[str, Any], purpose: str, expires_in: Optional[timedelta] = None) -> str:
        to_encode = dict(claims)
        to_encode["purpose"] = purpose
        if expires_in is not None:
            to_encode["exp"] = datetime.utcnow() + expires_in
        return jwt.encode(to_encode, BLOB_SIGNING_SECRET, algorithm=SIGNING_ALGORITHM)
