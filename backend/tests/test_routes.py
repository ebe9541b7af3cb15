"""
Test Suite: HTTP Routes

Thin checks over the routers; service behaviour is covered elsewhere.
"""
from email.message import EmailMessage
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from app.config import BLOB_STORAGE_ROOT, INBOUND_EMAIL_KEY, INTERNAL_API_KEY
from app.models.db_models import (
    BlobDB,
    EventDB,
    InboundEmailDB,
    InboundEmailStatus,
    ProofStatus,
    ProofType,
)


PDF = b"%PDF-1.4\n" + b"2" * 4096


def query_of(response) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(response.headers["location"]).query).items()}


def stored_files() -> set:
    root = Path(BLOB_STORAGE_ROOT)
    return {p for p in root.rglob("*") if p.is_file()} if root.exists() else set()


class TestResubmitRoute:

    def _url(self, application, proof_type="income"):
        return f"/applications/{application.id}/proofs/{proof_type}/resubmit"

    def test_signed_blob_redirects_with_notice(self, client, db, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        response = client.post(
            self._url(application),
            data={"signed_blob_id": signed_blob()},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert query_of(response) == {"notice": "Proof submitted successfully"}
        db.refresh(application)
        assert application.income_proof_status == ProofStatus.NOT_REVIEWED

    def test_file_upload_is_accepted(self, client, db, constituent, make_application, auth_headers):
        application = make_application(constituent, residency_proof_status=ProofStatus.REJECTED)

        response = client.post(
            self._url(application, "residency"),
            files={"file": ("lease.pdf", PDF, "application/pdf")},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert "notice" in query_of(response)
        db.refresh(application)
        assert application.residency_proof_attached

    def test_unsubmittable_slot_redirects_with_alert(self, client, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent)

        response = client.post(
            self._url(application),
            data={"signed_blob_id": signed_blob()},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert query_of(response) == {"alert": "Invalid proof type or status"}

    def test_garbage_signed_id_redirects_with_alert(self, client, db, constituent, make_application, auth_headers):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        response = client.post(
            self._url(application),
            data={"signed_blob_id": "garbage"},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert query_of(response) == {"alert": "Invalid or expired attachment reference"}
        db.refresh(application)
        assert application.income_proof_status == ProofStatus.REJECTED

    def test_refused_upload_stores_nothing(self, client, db, constituent, make_application, auth_headers):
        application = make_application(constituent)
        before = stored_files()

        response = client.post(
            self._url(application),
            files={"file": ("stub.pdf", PDF, "application/pdf")},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert query_of(response) == {"alert": "Invalid proof type or status"}
        assert stored_files() == before
        assert db.query(BlobDB).count() == 0

    def test_rate_limited_upload_stores_nothing(self, client, db, constituent, make_application, auth_headers):
        from app.services.policy import Policy
        Policy(db).set("proof_submission_rate_limit_web", 0)
        db.commit()
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        before = stored_files()

        response = client.post(
            self._url(application),
            files={"file": ("stub.pdf", PDF, "application/pdf")},
            headers=auth_headers(constituent),
            follow_redirects=False,
        )

        assert query_of(response) == {"alert": "Please wait before submitting another proof"}
        assert stored_files() == before
        assert db.query(BlobDB).count() == 0

    def test_admin_cannot_use_constituent_route(self, client, admin, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        response = client.post(
            self._url(application),
            data={"signed_blob_id": signed_blob()},
            headers=auth_headers(admin),
            follow_redirects=False,
        )
        assert response.status_code == 403


class TestApiRoute:

    def test_rate_limited_is_429(self, client, db, constituent, make_application, signed_blob, auth_headers):
        from app.services.policy import Policy
        Policy(db).set("proof_submission_rate_limit_api", 0)
        db.commit()
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        response = client.post(
            f"/api/applications/{application.id}/proofs/income",
            json={"signed_blob_id": signed_blob()},
            headers=auth_headers(constituent),
        )
        assert response.status_code == 429

    def test_success_body(self, client, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        response = client.post(
            f"/api/applications/{application.id}/proofs/income",
            json={"signed_blob_id": signed_blob()},
            headers=auth_headers(constituent),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["kind"] == "success"
        assert len(body["attachment_ids"]) == 1


class TestDirectUploadRoute:

    def test_creates_upload_target(self, client, constituent, auth_headers):
        response = client.post(
            "/blobs/direct-uploads",
            json={"filename": "stub.pdf", "byte_size": 4096, "checksum": "abc123==", "content_type": "application/pdf"},
            headers=auth_headers(constituent),
        )

        assert response.status_code == 200
        assert set(response.json()) == {"signed_blob_id", "upload_url", "upload_headers"}

    def test_missing_fields_are_422(self, client, constituent, auth_headers):
        response = client.post(
            "/blobs/direct-uploads",
            json={"filename": "stub.pdf"},
            headers=auth_headers(constituent),
        )
        assert response.status_code == 422

    def test_requires_authentication(self, client):
        response = client.post("/blobs/direct-uploads", json={})
        assert response.status_code in (401, 403)


class TestInboundEmailRoute:

    def _raw(self):
        message = EmailMessage()
        message["From"] = "constituent@example.org"
        message["To"] = "proofs@proofs.example.org"
        message["Subject"] = "income proof"
        message.set_content("Pay stub attached")
        message.add_attachment(PDF, maintype="application", subtype="pdf", filename="stub.pdf")
        return bytes(message)

    def test_accepts_and_processes_after_response(self, client, db, constituent, make_application):
        application = make_application(constituent)

        response = client.post(
            "/inbound/emails",
            content=self._raw(),
            headers={"X-Inbound-Key": INBOUND_EMAIL_KEY, "Content-Type": "message/rfc822"},
        )

        assert response.status_code == 202
        assert response.json()["status"] == "pending"
        db.rollback()
        inbound = db.query(InboundEmailDB).filter(InboundEmailDB.id == response.json()["inbound_email_id"]).one()
        assert inbound.status == InboundEmailStatus.PROCESSED
        db.refresh(application)
        assert application.income_proof_attached

    def test_bad_key_is_403(self, client):
        response = client.post("/inbound/emails", content=self._raw(), headers={"X-Inbound-Key": "wrong"})
        assert response.status_code == 403

    def test_empty_body_is_400(self, client):
        response = client.post("/inbound/emails", content=b"", headers={"X-Inbound-Key": INBOUND_EMAIL_KEY})
        assert response.status_code == 400


class TestAdminRoutes:

    def _url(self, application, proof_type="income", action=""):
        return f"/admin/applications/{application.id}/proofs/{proof_type}{action}"

    def test_paper_approval(self, client, admin, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent)

        response = client.post(
            self._url(application),
            json={"status": "approved", "signed_blob_id": signed_blob()},
            headers=auth_headers(admin),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["income_proof_status"] == "approved"

    def test_paper_invalid_status_is_400(self, client, admin, constituent, make_application, auth_headers):
        application = make_application(constituent)

        response = client.post(self._url(application), json={"status": "lost"}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_unknown_application_is_404(self, client, admin, auth_headers):
        response = client.post(
            "/admin/applications/missing/proofs/income",
            json={"status": "rejected", "rejection_reason": "Illegible"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404

    def test_review_rejection(self, client, admin, constituent, make_application, attach_existing, auth_headers):
        application = make_application(constituent)
        attach_existing(application, ProofType.INCOME)

        response = client.post(
            self._url(application, action="/review"),
            json={"status": "rejected", "rejection_reason": "Cropped"},
            headers=auth_headers(admin),
        )

        body = response.json()
        assert body["success"] is True
        assert body["income_proof_status"] == "rejected"
        assert body["total_rejections"] == 1

    def test_review_missing_reason(self, client, admin, constituent, make_application, attach_existing, auth_headers):
        application = make_application(constituent)
        attach_existing(application, ProofType.INCOME)

        response = client.post(
            self._url(application, action="/review"),
            json={"status": "rejected"},
            headers=auth_headers(admin),
        )

        body = response.json()
        assert body["success"] is False
        assert body["error_type"] == "missing_rejection_reason"

    def test_reset_approved_without_attachment(self, client, admin, constituent, make_application, auth_headers):
        application = make_application(constituent, income_proof_status=ProofStatus.APPROVED)

        response = client.post(
            self._url(application, action="/reset"),
            json={"reason": "Attachment lost in migration"},
            headers=auth_headers(admin),
        )

        body = response.json()
        assert body["success"] is True
        assert body["income_proof_status"] == "not_reviewed"

    def test_reset_refused_when_attached(self, client, admin, constituent, make_application, attach_existing, auth_headers):
        application = make_application(constituent)
        attach_existing(application, ProofType.INCOME)

        response = client.post(
            self._url(application, action="/reset"),
            json={"reason": "No reason"},
            headers=auth_headers(admin),
        )

        assert response.json()["success"] is False

    def test_audit_trail(self, client, admin, constituent, make_application, signed_blob, auth_headers):
        application = make_application(constituent)
        client.post(
            self._url(application),
            json={"status": "not_reviewed", "signed_blob_id": signed_blob()},
            headers=auth_headers(admin),
        )

        response = client.get(f"/admin/applications/{application.id}/audit", headers=auth_headers(admin))

        body = response.json()
        assert response.status_code == 200
        assert "proof_submitted" in [e["action"] for e in body["events"]]
        assert body["submission_audits"][0]["submission_method"] == "paper"

    def test_constituent_forbidden(self, client, constituent, make_application, auth_headers):
        application = make_application(constituent)

        response = client.get(f"/admin/applications/{application.id}/audit", headers=auth_headers(constituent))
        assert response.status_code == 403


class TestSchedulerRoutes:

    def test_consistency_check(self, client, db, constituent, make_application):
        make_application(constituent, income_proof_status=ProofStatus.APPROVED)

        response = client.post("/internal/proof-consistency-check", headers={"X-Internal-Key": INTERNAL_API_KEY})

        assert response.status_code == 200
        assert response.json()["violation_count"] == 1

    def test_failure_rate(self, client):
        response = client.post("/internal/proof-failure-rate", headers={"X-Internal-Key": INTERNAL_API_KEY})

        assert response.status_code == 200
        assert response.json()["success_rate"] == 100.0

    def test_deliver(self, client):
        response = client.post("/internal/notifications/deliver", headers={"X-Internal-Key": INTERNAL_API_KEY})
        assert response.json() == {"attempted": 0, "delivered": 0, "failed": 0}

    def test_wrong_key_is_403(self, client):
        response = client.post("/internal/proof-failure-rate", headers={"X-Internal-Key": "guess"})
        assert response.status_code == 403

    def test_missing_key_is_rejected(self, client, db):
        response = client.post("/internal/proof-consistency-check")
        assert response.status_code == 422
        assert db.query(EventDB).count() == 0


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


class TestAuthRoutes:

    def test_login_issues_token_for_me(self, client, db, constituent):
        from app.auth import hash_password
        constituent.password_hash = hash_password("correct horse")
        db.commit()

        response = client.post("/auth/login", json={"email": "Constituent@example.org", "password": "correct horse"})

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me == {"id": constituent.id, "email": "constituent@example.org", "role": "constituent"}

    def test_wrong_password_is_401(self, client, db, constituent):
        from app.auth import hash_password
        constituent.password_hash = hash_password("correct horse")
        db.commit()

        response = client.post("/auth/login", json={"email": "constituent@example.org", "password": "battery"})
        assert response.status_code == 401

    def test_user_without_password_cannot_log_in(self, client, constituent):
        response = client.post("/auth/login", json={"email": "constituent@example.org", "password": "anything"})
        assert response.status_code == 401
