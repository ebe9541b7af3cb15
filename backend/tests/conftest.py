"""
Shared fixtures.

The database and blob store point at a throwaway directory; both are set
before the app is imported so module-level settings pick them up.
"""
import os
import sys
import tempfile
from datetime import datetime
from uuid import uuid4

_TMP_DIR = tempfile.mkdtemp(prefix="proof_engine_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["BLOB_STORAGE_ROOT"] = os.path.join(_TMP_DIR, "blobs")
os.environ["APP_ENV"] = "test"

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from app.auth import create_access_token
from app.database import Base, SessionLocal, engine, get_db
from app.models.db_models import (
    ApplicationDB,
    ApplicationStatus,
    ProofAttachmentDB,
    ProofStatus,
    ProofType,
    SubmissionMethod,
    UserDB,
    UserRole,
)
from app.services.proofs import BlobStore


PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\n" + b"0" * 2048
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2048


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    from app.main import app

    def override_get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(db):
    def _make(role: UserRole = UserRole.CONSTITUENT, email: str = None) -> UserDB:
        user = UserDB(
            id=str(uuid4()),
            email=email or f"{role.value}-{uuid4().hex[:8]}@example.org",
            first_name="Test",
            last_name=role.value.capitalize(),
            role=role,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def constituent(make_user):
    return make_user(UserRole.CONSTITUENT, email="constituent@example.org")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, email="admin@example.org")


@pytest.fixture
def make_application(db):
    def _make(user: UserDB, **fields) -> ApplicationDB:
        values = {
            "status": ApplicationStatus.IN_PROGRESS,
            "income_proof_status": ProofStatus.NOT_REVIEWED,
            "residency_proof_status": ProofStatus.NOT_REVIEWED,
            "total_rejections": 0,
            "inbound_token": uuid4().hex[:16],
            "created_at": datetime.utcnow(),
        }
        values.update(fields)
        application = ApplicationDB(id=str(uuid4()), user_id=user.id, **values)
        db.add(application)
        db.commit()
        return application
    return _make


@pytest.fixture
def blob_store(db):
    return BlobStore(db)


@pytest.fixture
def make_blob(db, blob_store):
    def _make(data: bytes = PDF_BYTES, filename: str = "proof.pdf", content_type: str = "application/pdf"):
        blob = blob_store.create_and_upload(data, filename, content_type)
        db.commit()
        return blob
    return _make


@pytest.fixture
def signed_blob(blob_store, make_blob):
    def _make(**kwargs) -> str:
        return blob_store.signed_id(make_blob(**kwargs))
    return _make


@pytest.fixture
def attach_existing(db, make_blob):
    """Bind a blob directly, bypassing the service (fixture setup only)."""
    def _attach(application: ApplicationDB, proof_type: ProofType, attached_at: datetime = None) -> ProofAttachmentDB:
        attachment = ProofAttachmentDB(
            id=str(uuid4()),
            application_id=application.id,
            proof_type=proof_type,
            blob_id=make_blob().id,
            submission_method=SubmissionMethod.WEB,
            attached_at=attached_at or datetime.utcnow(),
        )
        db.add(attachment)
        db.commit()
        db.refresh(application)
        return attachment
    return _attach


@pytest.fixture
def auth_headers():
    def _headers(user: UserDB) -> dict:
        token = create_access_token(user.id, user.email, user.role.value)
        return {"Authorization": f"Bearer {token}"}
    return _headers
