"""
Proof Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Text, JSON, ForeignKey,
    Enum as SQLEnum, UniqueConstraint, Index, event,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    CONSTITUENT = "constituent"
    ADMIN = "admin"
    SYSTEM = "system"


class ApplicationStatus(str, Enum):
    """Overall application status."""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    NEEDS_INFORMATION = "needs_information"
    AWAITING_DOCUMENTS = "awaiting_documents"
    APPROVED = "approved"
    ARCHIVED = "archived"


# Applications that may still receive proofs by email
ACTIVE_APPLICATION_STATUSES = (
    ApplicationStatus.IN_PROGRESS,
    ApplicationStatus.NEEDS_INFORMATION,
    ApplicationStatus.AWAITING_DOCUMENTS,
)


class ProofType(str, Enum):
    INCOME = "income"
    RESIDENCY = "residency"


class ProofStatus(str, Enum):
    NOT_REVIEWED = "not_reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


class SubmissionMethod(str, Enum):
    """Channel a proof arrived through."""
    WEB = "web"
    PAPER = "paper"
    EMAIL = "email"
    API = "api"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class InboundEmailStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    BOUNCED = "bounced"
    FAILED = "failed"


class ImmutableRecordError(Exception):
    """Raised when code attempts to modify an append-only audit row."""


# =============================================================================
# USERS & APPLICATIONS
# =============================================================================

class UserDB(Base):
    """Constituents, administrators and the system actor."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.CONSTITUENT)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    applications = relationship("ApplicationDB", back_populates="user", order_by="ApplicationDB.created_at")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_constituent(self) -> bool:
        return self.role == UserRole.CONSTITUENT


class ApplicationDB(Base):
    """
    Eligibility case.

    Proof status fields are written only by ProofAttachmentService.
    total_rejections is monotonic and only incremented by RejectionPolicy.
    """
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(SQLEnum(ApplicationStatus), nullable=False, default=ApplicationStatus.DRAFT)

    # ==========================================================================
    # PROOF STATE
    # ==========================================================================
    income_proof_status = Column(SQLEnum(ProofStatus), nullable=False, default=ProofStatus.NOT_REVIEWED)
    residency_proof_status = Column(SQLEnum(ProofStatus), nullable=False, default=ProofStatus.NOT_REVIEWED)
    needs_review_since = Column(DateTime, nullable=True, index=True)
    total_rejections = Column(Integer, nullable=False, default=0)

    # ==========================================================================
    # ARCHIVAL
    # ==========================================================================
    archived_at = Column(DateTime, nullable=True)
    reapply_eligible_on = Column(Date, nullable=True)

    # Routing token for proofs+<token>@ inbound addresses
    inbound_token = Column(String(32), unique=True, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("UserDB", back_populates="applications")
    attachments = relationship("ProofAttachmentDB", back_populates="application", order_by="ProofAttachmentDB.attached_at")
    reviews = relationship("ProofReviewDB", back_populates="application", order_by="ProofReviewDB.reviewed_at")

    @property
    def archived(self) -> bool:
        return self.status == ApplicationStatus.ARCHIVED

    def proof_status(self, proof_type: ProofType) -> ProofStatus:
        return getattr(self, f"{ProofType(proof_type).value}_proof_status")

    def set_proof_status(self, proof_type: ProofType, status: ProofStatus) -> None:
        setattr(self, f"{ProofType(proof_type).value}_proof_status", status)

    def active_attachments(self, proof_type: ProofType) -> list:
        proof_type = ProofType(proof_type)
        return [
            a for a in self.attachments
            if a.proof_type == proof_type and a.detached_at is None
        ]

    def proof_attached(self, proof_type: ProofType) -> bool:
        return len(self.active_attachments(proof_type)) > 0

    def awaiting_review_since(self, proof_type: ProofType) -> Optional[datetime]:
        """When the slot's current documents were attached, if they still await review."""
        if self.proof_status(proof_type) != ProofStatus.NOT_REVIEWED:
            return None
        attached = [a.attached_at for a in self.active_attachments(proof_type) if a.attached_at]
        return min(attached) if attached else None

    @property
    def income_proof_attached(self) -> bool:
        return self.proof_attached(ProofType.INCOME)

    @property
    def residency_proof_attached(self) -> bool:
        return self.proof_attached(ProofType.RESIDENCY)

    def proof_absent(self, proof_type: ProofType) -> bool:
        """Nothing awaiting review: not_reviewed with no active attachment."""
        proof_type = ProofType(proof_type)
        if self.proof_status(proof_type) != ProofStatus.NOT_REVIEWED:
            return False
        return not self.proof_attached(proof_type)


# =============================================================================
# BLOBS & ATTACHMENTS
# =============================================================================

class BlobDB(Base):
    """Opaque blob record. Bytes live in the blob store under `key`."""
    __tablename__ = "blobs"

    id = Column(String(36), primary_key=True)  # UUID
    key = Column(String(64), unique=True, nullable=False)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=True)
    byte_size = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=True)  # base64 MD5 as declared by the client
    service_name = Column(String(50), nullable=False, default="disk")
    blob_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ProofAttachmentDB(Base):
    """
    Binds a blob to an application's proof slot.
    Rows are never deleted; replacement sets detached_at.
    """
    __tablename__ = "proof_attachments"

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    proof_type = Column(SQLEnum(ProofType), nullable=False)
    blob_id = Column(String(36), ForeignKey("blobs.id"), nullable=False)
    submission_method = Column(SQLEnum(SubmissionMethod), nullable=False)

    attached_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    detached_at = Column(DateTime, nullable=True)

    # Relationships
    application = relationship("ApplicationDB", back_populates="attachments")
    blob = relationship("BlobDB")

    __table_args__ = (
        Index("ix_proof_attachments_slot", "application_id", "proof_type", "detached_at"),
    )


# =============================================================================
# REVIEWS
# =============================================================================

class ProofReviewDB(Base):
    """Staff decision on a proof."""
    __tablename__ = "proof_reviews"

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True)
    admin_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    proof_type = Column(SQLEnum(ProofType), nullable=False)
    status = Column(SQLEnum(ProofStatus), nullable=False)
    submission_method = Column(SQLEnum(SubmissionMethod), nullable=True)
    rejection_reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    application = relationship("ApplicationDB", back_populates="reviews")
    admin = relationship("UserDB")


# =============================================================================
# AUDIT TRAIL (APPEND-ONLY)
# =============================================================================

class EventDB(Base):
    """
    Generic audit event used across the whole application.
    Append-only - no updates or deletes.
    """
    __tablename__ = "events"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)

    # Event Metadata (renamed from 'metadata' which is reserved in SQLAlchemy)
    event_metadata = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class ProofSubmissionAuditDB(Base):
    """
    Compliance record of a proof submission.
    Append-only - no updates or deletes.
    """
    __tablename__ = "proof_submission_audits"

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    proof_type = Column(SQLEnum(ProofType), nullable=False)
    submission_method = Column(SQLEnum(SubmissionMethod), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    audit_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_proof_submission_audits_lookup", "application_id", "proof_type", "submission_method"),
    )


@event.listens_for(EventDB, "before_update")
@event.listens_for(EventDB, "before_delete")
@event.listens_for(ProofSubmissionAuditDB, "before_update")
@event.listens_for(ProofSubmissionAuditDB, "before_delete")
def refuse_audit_mutation(mapper, connection, target):
    """Audit rows are immutable once written."""
    raise ImmutableRecordError(f"{target.__tablename__} rows are append-only")


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationDB(Base):
    """A decision to notify someone. Delivery happens after commit."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)  # UUID
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(100), nullable=False)
    notification_metadata = Column(JSON, nullable=True)

    delivery_status = Column(SQLEnum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING, index=True)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    delivered_at = Column(DateTime, nullable=True)

    recipient = relationship("UserDB", foreign_keys=[recipient_id])


# =============================================================================
# RATE LIMITING & POLICIES
# =============================================================================

class RateLimitCounterDB(Base):
    """Fixed-window counter per (action, method, actor)."""
    __tablename__ = "rate_limit_counters"

    id = Column(String(36), primary_key=True)  # UUID
    action = Column(String(50), nullable=False)
    method = Column(String(20), nullable=False)
    actor_id = Column(String(255), nullable=False)
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("action", "method", "actor_id", "window_start", name="uq_rate_limit_window"),
    )


class PolicyDB(Base):
    """Runtime tunables (integer values)."""
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True)  # UUID
    key = Column(String(100), unique=True, nullable=False)
    value = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# INBOUND EMAIL
# =============================================================================

class InboundEmailDB(Base):
    """Raw inbound message awaiting or after processing."""
    __tablename__ = "inbound_emails"

    id = Column(String(36), primary_key=True)  # UUID
    message_id = Column(String(255), nullable=True, index=True)
    sender = Column(String(255), nullable=True)
    recipient = Column(String(255), nullable=True)
    subject = Column(String(500), nullable=True)
    raw_source = Column(Text, nullable=False)

    status = Column(SQLEnum(InboundEmailStatus), nullable=False, default=InboundEmailStatus.PENDING)
    bounce_reason = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
