"""
Proof State Machine

Deterministic transitions for a single proof slot (income or residency).
The slot state is the recorded ProofStatus plus ABSENT for a slot that was
never submitted. Entry authority decides who may move a slot:

- CONSTITUENT: submission only, from ABSENT or REJECTED into NOT_REVIEWED
- STAFF_REVIEW: decision on a submitted proof, NOT_REVIEWED into APPROVED/REJECTED
- STAFF_PAPER: scanned/paper entry, any slot state into any status
- OPERATOR: repair of an approved slot with no attachment, back to ABSENT

Archived applications accept no transitions.
"""
from enum import Enum
from typing import Dict, List, Tuple

from ...models.db_models import ApplicationDB, ProofStatus, ProofType
from .errors import InvalidTransition


class SlotState(str, Enum):
    ABSENT = "absent"
    NOT_REVIEWED = "not_reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


class Authority(str, Enum):
    CONSTITUENT = "constituent"
    STAFF_REVIEW = "staff_review"
    STAFF_PAPER = "staff_paper"
    OPERATOR = "operator"


# =============================================================================
# TRANSITION CONFIGURATION
# =============================================================================

ALL_STATES = list(SlotState)
ALL_STATUSES = list(ProofStatus)

TRANSITIONS: Dict[Authority, Dict[SlotState, List[ProofStatus]]] = {
    Authority.CONSTITUENT: {
        SlotState.ABSENT: [ProofStatus.NOT_REVIEWED],
        SlotState.REJECTED: [ProofStatus.NOT_REVIEWED],
    },
    Authority.STAFF_REVIEW: {
        SlotState.NOT_REVIEWED: [ProofStatus.APPROVED, ProofStatus.REJECTED],
    },
    Authority.STAFF_PAPER: {state: ALL_STATUSES for state in ALL_STATES},
    Authority.OPERATOR: {
        SlotState.APPROVED: [ProofStatus.NOT_REVIEWED],
    },
}


class ProofStateMachine:
    """Answers whether a proof slot may move to a status."""

    def slot_state(self, application: ApplicationDB, proof_type: ProofType) -> SlotState:
        if application.proof_absent(proof_type):
            return SlotState.ABSENT
        return SlotState(application.proof_status(proof_type).value)

    def can_transition(
        self,
        application: ApplicationDB,
        proof_type: ProofType,
        to_status: ProofStatus,
        authority: Authority,
    ) -> Tuple[bool, str]:
        """
        Check if a transition is allowed.

        Returns (allowed, reason)
        """
        if application.archived:
            return False, f"Application {application.id} is archived"

        from_state = self.slot_state(application, proof_type)
        allowed = TRANSITIONS.get(authority, {}).get(from_state, [])

        if to_status in allowed:
            return True, "Transition allowed"

        return False, (
            f"Cannot move {ProofType(proof_type).value} proof from {from_state.value} "
            f"to {ProofStatus(to_status).value} as {authority.value}"
        )

    def assert_transition(self, application, proof_type, to_status, authority) -> SlotState:
        """Raise InvalidTransition unless allowed; returns the current slot state."""
        allowed, reason = self.can_transition(application, proof_type, to_status, authority)
        if not allowed:
            raise InvalidTransition(reason)
        return self.slot_state(application, proof_type)

    def get_next_statuses(self, state: SlotState, authority: Authority) -> List[ProofStatus]:
        return TRANSITIONS.get(authority, {}).get(state, [])
