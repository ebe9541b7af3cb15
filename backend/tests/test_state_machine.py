"""
Test Suite: Proof State Machine
"""
from types import SimpleNamespace

import pytest

from app.models.db_models import ApplicationStatus, ProofStatus, ProofType
from app.services.proofs import Authority, InvalidTransition, ProofStateMachine, SlotState


def make_app(income=ProofStatus.NOT_REVIEWED, attached=False, archived=False):
    """Duck-typed application; the state machine only reads these."""
    app = SimpleNamespace(
        id="app-1",
        status=ApplicationStatus.ARCHIVED if archived else ApplicationStatus.IN_PROGRESS,
        archived=archived,
    )
    app.proof_status = lambda pt: income if ProofType(pt) == ProofType.INCOME else ProofStatus.NOT_REVIEWED
    app.proof_attached = lambda pt: attached and ProofType(pt) == ProofType.INCOME
    app.proof_absent = lambda pt: app.proof_status(pt) == ProofStatus.NOT_REVIEWED and not app.proof_attached(pt)
    return app


class TestSlotState:

    def test_absent_when_not_reviewed_without_attachment(self):
        assert ProofStateMachine().slot_state(make_app(), ProofType.INCOME) == SlotState.ABSENT

    def test_not_reviewed_when_attached(self):
        app = make_app(attached=True)
        assert ProofStateMachine().slot_state(app, ProofType.INCOME) == SlotState.NOT_REVIEWED


class TestTransitions:

    @pytest.mark.parametrize("income,attached,allowed", [
        (ProofStatus.NOT_REVIEWED, False, True),    # absent
        (ProofStatus.REJECTED, True, True),
        (ProofStatus.NOT_REVIEWED, True, False),
        (ProofStatus.APPROVED, True, False),
    ])
    def test_constituent_submission(self, income, attached, allowed):
        app = make_app(income=income, attached=attached)
        ok, _ = ProofStateMachine().can_transition(app, ProofType.INCOME, ProofStatus.NOT_REVIEWED, Authority.CONSTITUENT)
        assert ok is allowed

    def test_staff_review_requires_not_reviewed(self):
        machine = ProofStateMachine()
        pending = make_app(attached=True)
        approved = make_app(income=ProofStatus.APPROVED, attached=True)

        assert machine.can_transition(pending, ProofType.INCOME, ProofStatus.APPROVED, Authority.STAFF_REVIEW)[0]
        assert not machine.can_transition(approved, ProofType.INCOME, ProofStatus.REJECTED, Authority.STAFF_REVIEW)[0]

    def test_staff_paper_may_set_any_status(self):
        machine = ProofStateMachine()
        app = make_app(income=ProofStatus.APPROVED, attached=True)
        for status in ProofStatus:
            assert machine.can_transition(app, ProofType.INCOME, status, Authority.STAFF_PAPER)[0]

    def test_operator_reset_only_from_approved(self):
        machine = ProofStateMachine()
        assert machine.can_transition(make_app(income=ProofStatus.APPROVED), ProofType.INCOME,
                                      ProofStatus.NOT_REVIEWED, Authority.OPERATOR)[0]
        assert not machine.can_transition(make_app(income=ProofStatus.REJECTED), ProofType.INCOME,
                                          ProofStatus.NOT_REVIEWED, Authority.OPERATOR)[0]

    def test_archived_application_refuses_everything(self):
        app = make_app(archived=True)
        ok, reason = ProofStateMachine().can_transition(app, ProofType.INCOME, ProofStatus.NOT_REVIEWED, Authority.STAFF_PAPER)
        assert not ok
        assert "archived" in reason

    def test_assert_transition_raises(self):
        app = make_app(income=ProofStatus.APPROVED, attached=True)
        with pytest.raises(InvalidTransition):
            ProofStateMachine().assert_transition(app, ProofType.INCOME, ProofStatus.NOT_REVIEWED, Authority.CONSTITUENT)

    def test_next_statuses(self):
        machine = ProofStateMachine()
        assert machine.get_next_statuses(SlotState.REJECTED, Authority.CONSTITUENT) == [ProofStatus.NOT_REVIEWED]
        assert machine.get_next_statuses(SlotState.APPROVED, Authority.CONSTITUENT) == []
