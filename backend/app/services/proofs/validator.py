"""
Proof attachment validation.

The validator is pluggable: ProofAttachmentService accepts any object with a
`validate(candidates, context)` method. The default checks structure only
(presence, size, MIME type, filename, PDF active content), never whether the
document proves eligibility.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from ...models.submission import AttachmentContext
from .errors import ValidationError


logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
)

MAX_FILE_SIZE = 10 * 1024 * 1024
MIN_FILE_SIZE = 1024

SUSPICIOUS_EXTENSIONS = re.compile(r"\.(exe|sh|bat|cmd|vbs|js)$", re.IGNORECASE)
PDF_ACTIVE_CONTENT_MARKERS = (b"/JS", b"/JavaScript", b"/Launch", b"/SubmitForm", b"/RichMedia")


@dataclass(frozen=True)
class AttachmentCandidate:
    """What a validator sees of a blob or an email part."""
    filename: str
    content_type: Optional[str]
    byte_size: int
    content: Optional[bytes] = None


class ProofAttachmentValidator:
    """Default structural validator."""

    def validate(self, candidates: Sequence[AttachmentCandidate], context: AttachmentContext) -> None:
        """Raise ValidationError on the first invalid candidate."""
        if not candidates:
            raise ValidationError("no_attachment", "No attachment provided")

        for candidate in candidates:
            self.validate_one(candidate)

        if context.resubmission:
            logger.debug(f"Validated {len(candidates)} resubmitted attachment(s) via {context.channel.value}")

    def validate_one(self, candidate: Optional[AttachmentCandidate]) -> None:
        if candidate is None:
            raise ValidationError("no_attachment", "No attachment provided")

        if candidate.byte_size < MIN_FILE_SIZE:
            raise ValidationError("file_too_small", f"File is too small (minimum {MIN_FILE_SIZE} bytes)")
        if candidate.byte_size > MAX_FILE_SIZE:
            raise ValidationError("file_too_large", f"File is too large (maximum {MAX_FILE_SIZE} bytes)")
        if candidate.content_type not in ALLOWED_MIME_TYPES:
            raise ValidationError("invalid_type", "File type not allowed")
        if self._potentially_malicious(candidate):
            raise ValidationError("suspicious_content", "File contains suspicious content")

    @staticmethod
    def _potentially_malicious(candidate: AttachmentCandidate) -> bool:
        filename = (candidate.filename or "").lower()
        if ".." in filename or "/" in filename or "\\" in filename:
            return True
        if SUSPICIOUS_EXTENSIONS.search(filename):
            return True
        if candidate.content_type == "application/pdf" and candidate.content:
            return any(marker in candidate.content for marker in PDF_ACTIVE_CONTENT_MARKERS)
        return False
