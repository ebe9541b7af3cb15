"""
Test Suite: Proof Attachment Service

The unit of work: transition check, validation, detach/bind, status,
needs_review_since and the Event + ProofSubmissionAudit pair.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from app.models.db_models import (
    EventDB,
    ImmutableRecordError,
    ProofAttachmentDB,
    ProofReviewDB,
    ProofStatus,
    ProofSubmissionAuditDB,
    ProofType,
    SubmissionMethod,
)
from app.models.submission import AttachmentContext, ClientMetadata
from app.services.proofs import (
    AttachmentFailure,
    InvalidTransition,
    ProofAttachmentService,
    ValidationError,
)


WEB = AttachmentContext(channel=SubmissionMethod.WEB, resubmission=True)
PAPER = AttachmentContext(channel=SubmissionMethod.PAPER, staff_initiated=True)


def events(db, action):
    return db.query(EventDB).filter(EventDB.action == action).all()


class TestAttach:

    def test_resubmission_moves_rejected_to_not_reviewed(self, db, constituent, make_application, attach_existing, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        previous = attach_existing(application, ProofType.INCOME)

        attachments = ProofAttachmentService(db).attach(
            application, ProofType.INCOME, [signed_blob()],
            actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            client_metadata=ClientMetadata(ip_address="10.0.0.5", user_agent="pytest"),
        )
        db.commit()
        db.refresh(application)

        assert len(attachments) == 1
        assert application.income_proof_status == ProofStatus.NOT_REVIEWED
        assert application.needs_review_since is not None
        assert [a.id for a in application.active_attachments(ProofType.INCOME)] == [attachments[0].id]
        assert db.get(ProofAttachmentDB, previous.id).detached_at is not None

    def test_writes_exactly_one_event_and_one_audit(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)

        ProofAttachmentService(db).attach(
            application, ProofType.INCOME, [signed_blob()],
            actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            client_metadata=ClientMetadata(ip_address="10.0.0.5", user_agent="pytest"),
        )
        db.commit()

        submitted = events(db, "proof_submitted")
        audits = db.query(ProofSubmissionAuditDB).all()
        assert len(submitted) == 1
        assert len(audits) == 1

        event, audit = submitted[0], audits[0]
        assert event.event_metadata["audit_id"] == audit.id
        assert event.event_metadata["application_id"] == application.id == audit.application_id
        assert event.event_metadata["proof_type"] == "income"
        assert event.created_at == audit.created_at
        assert audit.ip_address == "10.0.0.5"
        assert audit.submission_method == SubmissionMethod.WEB

    def test_audit_write_failure_rolls_back_attachment(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        service = ProofAttachmentService(db)
        service.audit.record_submission = MagicMock(side_effect=RuntimeError("audit table unavailable"))

        with pytest.raises(AttachmentFailure):
            service.attach(
                application, ProofType.INCOME, [signed_blob()],
                actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            )
        db.commit()
        db.refresh(application)

        assert application.income_proof_status == ProofStatus.REJECTED
        assert application.needs_review_since is None
        assert db.query(ProofAttachmentDB).count() == 0
        assert db.query(ProofSubmissionAuditDB).count() == 0
        assert len(events(db, "proof_attachment_failed")) == 1

    def test_validation_failure_records_failure_event(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        tiny = signed_blob(data=b"%PDF-1.4 tiny", filename="tiny.pdf")

        with pytest.raises(ValidationError) as exc:
            ProofAttachmentService(db).attach(
                application, ProofType.INCOME, [tiny],
                actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            )
        db.commit()
        db.refresh(application)

        assert exc.value.error_type == "file_too_small"
        assert application.income_proof_status == ProofStatus.REJECTED
        failure = events(db, "proof_attachment_failed")[0]
        assert failure.event_metadata["error_class"] == "ValidationError"
        assert failure.event_metadata["success"] is False

    def test_invalid_signed_id_is_validation_error(self, db, constituent, make_application):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        with pytest.raises(ValidationError) as exc:
            ProofAttachmentService(db).attach(
                application, ProofType.INCOME, ["not-a-signed-id"],
                actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            )
        db.commit()
        db.refresh(application)

        assert exc.value.error_type == "invalid_reference"
        assert application.income_proof_status == ProofStatus.REJECTED
        assert not application.income_proof_attached

    def test_archived_application_refuses_attach(self, db, constituent, make_application, signed_blob):
        from app.models.db_models import ApplicationStatus
        application = make_application(constituent, status=ApplicationStatus.ARCHIVED,
                                        income_proof_status=ProofStatus.REJECTED)
        with pytest.raises(InvalidTransition):
            ProofAttachmentService(db).attach(
                application, ProofType.INCOME, [signed_blob()],
                actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
            )
        assert db.query(ProofAttachmentDB).count() == 0

    def test_several_blobs_bind_to_one_slot(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent)
        context = AttachmentContext(channel=SubmissionMethod.EMAIL)

        attachments = ProofAttachmentService(db).attach(
            application, ProofType.RESIDENCY, [signed_blob(), signed_blob(filename="page2.pdf")],
            actor_id=constituent.id, channel=SubmissionMethod.EMAIL, context=context,
        )
        db.commit()

        assert len(attachments) == 2
        assert len(events(db, "proof_submitted")) == 1
        assert events(db, "proof_submitted")[0].event_metadata["blob_count"] == 2

    def test_paper_approval_records_review(self, db, admin, constituent, make_application, signed_blob):
        application = make_application(constituent)

        ProofAttachmentService(db).attach(
            application, ProofType.INCOME, [signed_blob()],
            actor_id=admin.id, channel=SubmissionMethod.PAPER, context=PAPER,
            target_status=ProofStatus.APPROVED, notes="Scanned at front desk",
        )
        db.commit()
        db.refresh(application)

        assert application.income_proof_status == ProofStatus.APPROVED
        assert application.needs_review_since is None
        review = db.query(ProofReviewDB).one()
        assert review.status == ProofStatus.APPROVED
        assert review.submission_method == SubmissionMethod.PAPER


class TestStaffOperations:

    def test_record_review_rejection_keeps_attachment(self, db, admin, constituent, make_application, attach_existing):
        application = make_application(constituent, needs_review_since=datetime.utcnow())
        attach_existing(application, ProofType.INCOME)

        ProofAttachmentService(db).record_review(
            application, ProofType.INCOME, ProofStatus.REJECTED, admin.id, rejection_reason="Illegible",
        )
        db.commit()
        db.refresh(application)

        assert application.income_proof_status == ProofStatus.REJECTED
        assert application.income_proof_attached
        assert application.needs_review_since is None
        assert len(events(db, "proof_reviewed")) == 1

    def test_approval_requires_attachment(self, db, admin, constituent, make_application):
        application = make_application(constituent)
        with pytest.raises(InvalidTransition):
            ProofAttachmentService(db).record_review(application, ProofType.INCOME, ProofStatus.APPROVED, admin.id)

    def test_reject_without_attachment(self, db, admin, constituent, make_application):
        application = make_application(constituent)

        ProofAttachmentService(db).reject_without_attachment(
            application, ProofType.RESIDENCY, admin.id, rejection_reason="No document supplied",
        )
        db.commit()
        db.refresh(application)

        assert application.residency_proof_status == ProofStatus.REJECTED
        assert application.income_proof_status == ProofStatus.NOT_REVIEWED
        assert len(events(db, "proof_rejected_without_attachment")) == 1

    def test_reset_approved_without_attachment(self, db, admin, constituent, make_application):
        application = make_application(constituent, income_proof_status=ProofStatus.APPROVED)

        ProofAttachmentService(db).reset_proof_status(application, ProofType.INCOME, admin.id, "Attachment lost")
        db.commit()
        db.refresh(application)

        assert application.income_proof_status == ProofStatus.NOT_REVIEWED
        assert application.proof_absent(ProofType.INCOME)
        assert events(db, "proof_status_reset")[0].event_metadata["reason"] == "Attachment lost"

    def test_reset_refused_when_attached(self, db, admin, constituent, make_application, attach_existing):
        application = make_application(constituent, income_proof_status=ProofStatus.APPROVED)
        attach_existing(application, ProofType.INCOME)

        with pytest.raises(InvalidTransition):
            ProofAttachmentService(db).reset_proof_status(application, ProofType.INCOME, admin.id, "Repair")


class TestAuditImmutability:

    def test_events_cannot_be_updated(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        ProofAttachmentService(db).attach(
            application, ProofType.INCOME, [signed_blob()],
            actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
        )
        db.commit()

        event = events(db, "proof_submitted")[0]
        event.action = "tampered"
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

    def test_audits_cannot_be_deleted(self, db, constituent, make_application, signed_blob):
        application = make_application(constituent, income_proof_status=ProofStatus.REJECTED)
        ProofAttachmentService(db).attach(
            application, ProofType.INCOME, [signed_blob()],
            actor_id=constituent.id, channel=SubmissionMethod.WEB, context=WEB,
        )
        db.commit()

        db.delete(db.query(ProofSubmissionAuditDB).one())
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()
