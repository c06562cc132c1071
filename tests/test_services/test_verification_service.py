"""TDD tests for the document verification state machine."""

from unittest.mock import patch

import pytest

from docvault.models.audit_log import AuditAction
from docvault.models.document import DocumentType, VerificationStatus
from docvault.models.verification_step import StepStatus, StepType
from docvault.services.audit_service import AuditService
from docvault.services.errors import (
    ConflictError,
    DuplicateContentError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from docvault.services.verification_service import (
    TRANSITIONS,
    AnchorData,
    VerificationService,
)

S = VerificationStatus

ANCHOR = AnchorData(
    transaction_id="0xabc",
    block_number="1234",
    blockchain_hash="0xdef",
    network_id="testnet",
    contract_address="0x0000000000000000000000000000000000000001",
)


@pytest.fixture
def audit():
    return AuditService()


@pytest.fixture
def svc(audit):
    return VerificationService(audit)


@pytest.fixture
def create(svc, db_session, user):
    counter = {"n": 0}

    def _create(**overrides):
        counter["n"] += 1
        fields = dict(
            user_id=user.id,
            title="Diploma",
            document_type=DocumentType.DIPLOMA,
            file_name="diploma.pdf",
            file_size=42,
            mime_type="application/pdf",
            content_hash=f"{counter['n']:064x}",
        )
        fields.update(overrides)
        return svc.create(db_session, **fields)

    return _create


def _log(svc, db_session, document):
    return [(s.step_type, s.status) for s in svc.steps(db_session, document.id)]


class TestCreate:
    def test_starts_pending_with_upload_step(self, svc, create, db_session):
        doc = create()
        assert doc.status == S.PENDING
        assert len(doc.shareable_link) == 64
        assert _log(svc, db_session, doc) == [(StepType.FILE_UPLOAD, StepStatus.COMPLETED)]

    def test_shareable_links_are_unique(self, create):
        assert create().shareable_link != create().shareable_link

    def test_duplicate_hash_rejected(self, create):
        create(content_hash="f" * 64)
        with pytest.raises(DuplicateContentError) as exc_info:
            create(content_hash="f" * 64)
        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.status_code == 409

    def test_unique_index_backs_up_precheck(self, svc, create, db_session):
        create(content_hash="e" * 64)
        with patch.object(svc, "find_by_hash", return_value=None):
            with pytest.raises(DuplicateContentError):
                create(content_hash="e" * 64)
        # the failed insert only rolled back its SAVEPOINT
        assert create(content_hash="9" * 64).status == S.PENDING


class TestTransitionTable:
    def test_pending_to_verified_is_not_allowed(self):
        assert (S.PENDING, S.VERIFIED) not in TRANSITIONS

    def test_expired_is_terminal(self):
        assert not any(current == S.EXPIRED for current, _ in TRANSITIONS)

    def test_no_self_transitions(self):
        assert not any(current == target for current, target in TRANSITIONS)


class TestTransition:
    def test_pending_to_processing(self, svc, create, db_session):
        doc = svc.transition(db_session, create().id, "PROCESSING")
        assert doc.status == S.PROCESSING
        assert _log(svc, db_session, doc) == [
            (StepType.FILE_UPLOAD, StepStatus.COMPLETED),
            (StepType.HASH_GENERATION, StepStatus.COMPLETED),
            (StepType.BLOCKCHAIN_SUBMISSION, StepStatus.IN_PROGRESS),
        ]

    def test_processing_to_verified(self, svc, create, db_session):
        doc = create()
        svc.transition(db_session, doc.id, S.PROCESSING)
        svc.transition(db_session, doc.id, S.VERIFIED, ANCHOR)

        assert doc.status == S.VERIFIED
        assert doc.transaction_id == "0xabc"
        assert doc.block_number == "1234"
        assert doc.blockchain_hash == "0xdef"
        assert doc.network_id == "testnet"
        assert doc.verified_at is not None
        steps = svc.steps(db_session, doc.id)
        assert [(s.step_type, s.status) for s in steps] == [
            (StepType.FILE_UPLOAD, StepStatus.COMPLETED),
            (StepType.HASH_GENERATION, StepStatus.COMPLETED),
            (StepType.BLOCKCHAIN_SUBMISSION, StepStatus.COMPLETED),
            (StepType.TRANSACTION_CONFIRMATION, StepStatus.COMPLETED),
            (StepType.VERIFICATION_COMPLETE, StepStatus.COMPLETED),
        ]
        assert steps[3].details == {
            "transactionId": "0xabc",
            "blockNumber": "1234",
            "blockchainHash": "0xdef",
        }
        assert all(s.completed_at is not None for s in steps)

    def test_pending_to_verified_is_illegal(self, svc, create, db_session):
        doc = create()
        with pytest.raises(IllegalTransitionError) as exc_info:
            svc.transition(db_session, doc.id, S.VERIFIED, ANCHOR)
        assert exc_info.value.status_code == 409
        assert doc.status == S.PENDING
        assert len(svc.steps(db_session, doc.id)) == 1

    def test_verified_requires_anchor(self, svc, create, db_session):
        doc = create()
        svc.transition(db_session, doc.id, S.PROCESSING)
        with pytest.raises(ValidationError) as exc_info:
            svc.transition(db_session, doc.id, S.VERIFIED, AnchorData(transaction_id="0x1"))
        assert {e.field for e in exc_info.value.errors} == {"blockNumber", "blockchainHash"}
        assert doc.status == S.PROCESSING

    @pytest.mark.parametrize("start", [S.PENDING, S.PROCESSING])
    def test_failure_resolves_in_flight_steps(self, svc, create, db_session, start):
        doc = create()
        if start == S.PROCESSING:
            svc.transition(db_session, doc.id, S.PROCESSING)
        svc.transition(db_session, doc.id, S.FAILED)
        assert doc.status == S.FAILED
        statuses = [s.status for s in svc.steps(db_session, doc.id)]
        assert StepStatus.IN_PROGRESS not in statuses

    def test_processing_failure_marks_submission_failed(self, svc, create, db_session):
        doc = create()
        svc.transition(db_session, doc.id, S.PROCESSING)
        svc.transition(db_session, doc.id, S.FAILED)
        assert _log(svc, db_session, doc)[-1] == (
            StepType.BLOCKCHAIN_SUBMISSION,
            StepStatus.FAILED,
        )

    @pytest.mark.parametrize(
        "path",
        [[], [S.PROCESSING], [S.PROCESSING, S.VERIFIED], [S.FAILED]],
    )
    def test_everything_can_expire(self, svc, create, db_session, path):
        doc = create()
        for status in path:
            svc.transition(db_session, doc.id, status, ANCHOR)
        svc.transition(db_session, doc.id, S.EXPIRED)
        assert doc.status == S.EXPIRED

    def test_expired_cannot_move(self, svc, create, db_session):
        doc = create()
        svc.transition(db_session, doc.id, S.EXPIRED)
        for target in S:
            with pytest.raises(IllegalTransitionError):
                svc.transition(db_session, doc.id, target, ANCHOR)

    def test_same_status_is_illegal(self, svc, create, db_session):
        doc = create()
        with pytest.raises(IllegalTransitionError):
            svc.transition(db_session, doc.id, S.PENDING)

    def test_unknown_status(self, svc, create, db_session):
        with pytest.raises(ValidationError):
            svc.transition(db_session, create().id, "ARCHIVED")

    def test_lowercase_status_accepted(self, svc, create, db_session):
        assert svc.transition(db_session, create().id, "processing").status == S.PROCESSING

    def test_missing_document(self, svc, db_session):
        with pytest.raises(NotFoundError):
            svc.transition(db_session, "0" * 32, S.PROCESSING)

    def test_one_audit_entry_per_transition(self, svc, audit, create, db_session, user):
        doc = create()
        svc.transition(db_session, doc.id, S.PROCESSING, actor_id=user.id)
        svc.transition(db_session, doc.id, S.VERIFIED, ANCHOR, actor_id=user.id)
        entries = audit.list_logs(
            db_session, action=AuditAction.DOCUMENT_STATUS_UPDATED, resource_id=doc.id
        )
        assert len(entries) == 2
        assert entries[0].details["oldStatus"] == "PROCESSING"
        assert entries[0].details["newStatus"] == "VERIFIED"
        assert entries[0].user_id == user.id
