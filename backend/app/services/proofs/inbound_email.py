"""
Inbound Email Processor

Proof documents mailed to proofs@<domain> (optionally tagged
proofs+<token>+<proof_type>@<domain>) are stored as InboundEmail rows on
receipt and processed after commit.

Checks, in order; the first failure bounces the message:
1. constituent_not_found   - sender is not a constituent
2. inactive_application    - routed application is not active
3. max_rejections_reached  - application hit the rejection threshold
4. no_attachments
5. invalid_attachment      - any attachment fails the validator
6. unauthorized_proof_status / rate_limit_exceeded - from the gateway

A bounce records a proof_submission_<reason> Event, notifies the sender when
known and never mutates the application.
"""
import email
import logging
import re
from datetime import datetime
from email import policy as email_policy
from email.message import EmailMessage
from email.utils import getaddresses, parseaddr
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import INBOUND_EMAIL_MAILBOX
from ...models.db_models import (
    ACTIVE_APPLICATION_STATUSES,
    ApplicationDB,
    InboundEmailDB,
    InboundEmailStatus,
    ProofType,
    UserDB,
    UserRole,
)
from ...models.submission import OutcomeKind, SubmissionRequest, Upload
from ..notifications import NotificationService
from ..policy import Policy
from .audit_recorder import AuditRecorder, get_system_user
from .errors import AttachmentFailure, ValidationError
from .gateway import SubmissionGateway
from .validator import AttachmentCandidate, ProofAttachmentValidator


logger = logging.getLogger(__name__)

RESIDENCY_KEYWORDS = re.compile(r"\b(residency|address)\b")
INCOME_KEYWORDS = re.compile(r"\bincome\b")

GATEWAY_BOUNCE_REASONS = {
    OutcomeKind.AUTHORIZATION_ERROR: "unauthorized_proof_status",
    OutcomeKind.INVALID_TRANSITION: "unauthorized_proof_status",
    OutcomeKind.RATE_LIMITED: "rate_limit_exceeded",
    OutcomeKind.VALIDATION_ERROR: "invalid_attachment",
}


class Bounce(Exception):
    """Halts processing of one inbound email."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


class ParsedEmail:
    """The parts of an RFC 822 message the mailbox cares about."""

    def __init__(self, raw: bytes):
        self.message: EmailMessage = email.message_from_bytes(raw, policy=email_policy.default)
        self.sender = parseaddr(str(self.message.get("From", "")))[1].lower() or None
        self.recipients = [addr.lower() for _, addr in getaddresses([str(v) for v in self.message.get_all("To", [])]) if addr]
        self.subject = str(self.message.get("Subject", "") or "")
        self.message_id = str(self.message.get("Message-ID", "") or "") or None

    @property
    def body(self) -> str:
        part = self.message.get_body(preferencelist=("plain", "html"))
        if part is None:
            return ""
        try:
            return part.get_content()
        except (LookupError, UnicodeDecodeError):
            return ""

    def attachments(self) -> List[Tuple[AttachmentCandidate, bytes]]:
        found = []
        for part in self.message.iter_attachments():
            data = part.get_payload(decode=True) or b""
            candidate = AttachmentCandidate(
                filename=part.get_filename() or "attachment",
                content_type=part.get_content_type(),
                byte_size=len(data),
                content=data,
            )
            found.append((candidate, data))
        return found

    def recipient_tags(self) -> List[str]:
        """Tags from proofs+<tag>+<tag>@ addresses."""
        tags = []
        for address in self.recipients:
            local = address.split("@", 1)[0]
            parts = local.split("+")
            if parts[0] == INBOUND_EMAIL_MAILBOX:
                tags.extend(p for p in parts[1:] if p)
        return tags


class ProofSubmissionMailbox:
    """
    Receives and processes inbound proof emails.

    Usage:
        inbound = mailbox.receive(raw_bytes)        # request time
        mailbox.process(inbound.id)                 # after commit
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[SubmissionGateway] = None,
        validator=None,
    ):
        self.db = db
        self.gateway = gateway or SubmissionGateway(db)
        self.validator = validator or ProofAttachmentValidator()
        self.notifications = NotificationService(db)
        self.audit = AuditRecorder(db)
        self.policy = Policy(db)

    def receive(self, raw: bytes) -> InboundEmailDB:
        """Store the raw message as pending."""
        parsed = ParsedEmail(raw)
        inbound = InboundEmailDB(
            id=str(uuid4()),
            message_id=parsed.message_id,
            sender=parsed.sender,
            recipient=", ".join(parsed.recipients),
            subject=parsed.subject[:500],
            raw_source=raw.decode("utf-8", errors="replace"),
            status=InboundEmailStatus.PENDING,
        )
        self.db.add(inbound)
        self.db.commit()
        logger.info(f"Inbound email {inbound.id} received from {parsed.sender}")
        return inbound

    def process(self, inbound_email_id: str) -> InboundEmailDB:
        inbound = self.db.query(InboundEmailDB).filter(InboundEmailDB.id == inbound_email_id).one()
        if inbound.status != InboundEmailStatus.PENDING:
            logger.info(f"Inbound email {inbound.id} already {inbound.status.value}")
            return inbound

        parsed = ParsedEmail(inbound.raw_source.encode("utf-8"))
        logger.info(f"Processing inbound email {inbound.id} from {parsed.sender} subject '{parsed.subject}'")

        constituent, application = None, None
        try:
            constituent, application = self._route(parsed)
            self._check_application(application)
            attachments = self._check_attachments(parsed)
            self._submit(inbound, parsed, constituent, application, attachments)
        except Bounce as bounce:
            self._bounce(inbound, parsed, constituent, application, bounce)
        except AttachmentFailure as e:
            logger.exception(f"Inbound email {inbound.id} failed: {e}")
            inbound.status = InboundEmailStatus.FAILED
            inbound.processed_at = datetime.utcnow()
            self.db.commit()
            raise

        return inbound

    # =========================================================================
    # CHECKS
    # =========================================================================

    def _route(self, parsed: ParsedEmail) -> Tuple[UserDB, Optional[ApplicationDB]]:
        sender = None
        if parsed.sender:
            sender = self.db.query(UserDB).filter(UserDB.email == parsed.sender).first()
        if sender is None or sender.role != UserRole.CONSTITUENT:
            raise Bounce("constituent_not_found", "Email sender not recognized as a constituent")

        for tag in parsed.recipient_tags():
            application = self.db.query(ApplicationDB).filter(ApplicationDB.inbound_token == tag).first()
            if application is not None and application.user_id == sender.id:
                return sender, application

        application = (
            self.db.query(ApplicationDB)
            .filter(ApplicationDB.user_id == sender.id)
            .order_by(ApplicationDB.created_at.desc())
            .first()
        )
        return sender, application

    def _check_application(self, application: Optional[ApplicationDB]) -> None:
        if application is None or application.status not in ACTIVE_APPLICATION_STATUSES:
            raise Bounce("inactive_application", "No active application found for this constituent")

        max_rejections = self.policy.get("max_proof_rejections")
        if max_rejections is not None and (application.total_rejections or 0) >= max_rejections:
            raise Bounce("max_rejections_reached", "Maximum number of proof submission attempts reached")

    def _check_attachments(self, parsed: ParsedEmail) -> List[Tuple[AttachmentCandidate, bytes]]:
        attachments = parsed.attachments()
        if not attachments:
            raise Bounce("no_attachments", "No attachments found in email")

        for candidate, _ in attachments:
            try:
                self.validator.validate_one(candidate)
            except ValidationError as e:
                raise Bounce("invalid_attachment", f"Invalid attachment: {e}")
        return attachments

    def determine_proof_type(self, parsed: ParsedEmail) -> ProofType:
        for tag in parsed.recipient_tags():
            if tag in (ProofType.INCOME.value, ProofType.RESIDENCY.value):
                return ProofType(tag)

        text = f"{parsed.subject} {parsed.body}".lower()
        if RESIDENCY_KEYWORDS.search(text) and not INCOME_KEYWORDS.search(text):
            return ProofType.RESIDENCY
        return ProofType.INCOME

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def _submit(self, inbound, parsed, constituent, application, attachments) -> None:
        proof_type = self.determine_proof_type(parsed)
        uploads = [
            Upload(data=data, filename=candidate.filename, content_type=candidate.content_type)
            for candidate, data in attachments
        ]

        request = SubmissionRequest.for_email(
            application_id=application.id,
            proof_type=proof_type.value,
            actor_id=constituent.id,
            uploads=uploads,
            inbound_email_id=inbound.id,
            sender=parsed.sender,
            subject=parsed.subject,
        )
        outcome = self.gateway.submit(request)
        if not outcome.success:
            raise Bounce(GATEWAY_BOUNCE_REASONS[outcome.kind], outcome.message)

        self.audit.record_event(
            actor_id=constituent.id,
            action="proof_submission_received",
            metadata={
                "application_id": application.id,
                "inbound_email_id": inbound.id,
                "email_subject": parsed.subject,
                "email_from": parsed.sender,
            },
        )
        self.audit.record_event(
            actor_id=constituent.id,
            action="proof_submission_processed",
            metadata={
                "application_id": application.id,
                "inbound_email_id": inbound.id,
                "proof_type": proof_type.value,
                "attachment_count": len(outcome.attachment_ids),
            },
        )
        inbound.status = InboundEmailStatus.PROCESSED
        inbound.processed_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Inbound email {inbound.id} processed: {len(outcome.attachment_ids)} {proof_type.value} attachment(s)")

    def _bounce(self, inbound, parsed, constituent, application, bounce: Bounce) -> None:
        logger.info(f"Inbound email {inbound.id} bounced: {bounce.reason} - {bounce} (from: {parsed.sender})")
        now = datetime.utcnow()
        actor_id = constituent.id if constituent is not None else get_system_user(self.db).id
        application_id = application.id if application is not None else None

        self.audit.record_event(
            actor_id=actor_id,
            action=f"proof_submission_{bounce.reason}",
            metadata={
                "application_id": application_id,
                "error": str(bounce),
                "error_type": bounce.reason,
                "inbound_email_id": inbound.id,
                "sender_email": parsed.sender,
                "email_subject": parsed.subject,
                "bounce_timestamp": now.isoformat(),
            },
            recorded_at=now,
        )
        if constituent is not None:
            self.notifications.notify(
                recipient_id=constituent.id,
                action="proof_submission_error",
                actor_id=actor_id,
                application_id=application_id,
                metadata={
                    "error_type": bounce.reason,
                    "message": f"Email processing failed: {bounce}",
                },
            )

        inbound.status = InboundEmailStatus.BOUNCED
        inbound.bounce_reason = bounce.reason
        inbound.processed_at = now
        self.db.commit()


def process_inbound_email(inbound_email_id: str, session_factory=None) -> None:
    """Background-task entry point: processing in its own session."""
    if session_factory is None:
        from ...database import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        ProofSubmissionMailbox(db).process(inbound_email_id)
    except Exception as e:
        db.rollback()
        logger.exception(f"Inbound email {inbound_email_id} processing error: {e}")
        raise
    finally:
        db.close()
