import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from homeserve.models import Actor, ActorRole, DocumentReviewDecision, DocumentType, VerificationStatus
from homeserve.services.blob_storage import LocalBlobStorage
from homeserve.services.errors import (
    NoDocumentsSubmittedError,
    QuotaExceededError,
    StorageFailureError,
    WorkflowInvalidStateError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
    WorkflowValidationError,
)
from homeserve.services.verification_workflow import VerificationWorkflow
from homeserve.services.workflow_store import WorkflowStore

PROVIDER = Actor(user_id="prov_1", role=ActorRole.PROVIDER)
OTHER_PROVIDER = Actor(user_id="prov_2", role=ActorRole.PROVIDER)
ADMIN = Actor(user_id="admin_1", role=ActorRole.ADMINISTRATOR)
CUSTOMER = Actor(user_id="cust_1", role=ActorRole.CUSTOMER)


class StepClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


class FailingDeleteStorage(LocalBlobStorage):
    def delete(self, storage_path: str) -> None:
        raise StorageFailureError(f"Could not delete {storage_path}")


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStorage(root_dir=str(tmp_path / "uploads"))


@pytest.fixture
def workflow(tmp_path, storage):
    store = WorkflowStore(db_path=str(tmp_path / "workflow.sqlite3"))
    return VerificationWorkflow(store=store, storage=storage, clock=StepClock())


def _upload(workflow, doc_type=DocumentType.BUSINESS_REGISTRATION, mime_type="application/pdf", actor=PROVIDER):
    return workflow.add_document(
        actor,
        actor.user_id,
        doc_type,
        filename="registration.pdf",
        content=b"%PDF-1.4 test",
        mime_type=mime_type,
    )


def test_scenario_approval_flow(workflow, storage):
    view = workflow.register_provider(PROVIDER, display_name="Sparkle Cleaning")
    assert view.verification_status == VerificationStatus.UNSUBMITTED
    assert view.history == []

    view = _upload(workflow)
    stored = view.documents[DocumentType.BUSINESS_REGISTRATION].files[0]
    assert storage.exists(stored.storage_path)

    view = workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    assert view.verification_status == VerificationStatus.PENDING
    assert view.history[-1].reviewer is None

    view = workflow.review(
        ADMIN,
        PROVIDER.user_id,
        approved=True,
        notes="All good",
        document_review={"businessRegistration": DocumentReviewDecision(verified=True)},
    )
    assert view.verification_status == VerificationStatus.VERIFIED
    assert view.is_verified is True
    assert view.documents[DocumentType.BUSINESS_REGISTRATION].verified is True
    assert [entry.status for entry in view.history] == ["pending", "verified"]
    assert view.history[-1].reviewer == "admin_1"


def test_submit_without_documents_fails(workflow):
    workflow.register_provider(PROVIDER)
    with pytest.raises(NoDocumentsSubmittedError):
        workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    assert workflow.get_status(PROVIDER, PROVIDER.user_id).verification_status == VerificationStatus.UNSUBMITTED


def test_register_twice_is_invalid_state(workflow):
    workflow.register_provider(PROVIDER)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.register_provider(PROVIDER)


def test_quota_exceeded_keeps_file_count(workflow):
    workflow.register_provider(PROVIDER)
    for _ in range(2):
        _upload(workflow, DocumentType.REPRESENTATIVE_ID, mime_type="image/png")
    with pytest.raises(QuotaExceededError):
        _upload(workflow, DocumentType.REPRESENTATIVE_ID, mime_type="image/png")
    view = workflow.get_status(PROVIDER, PROVIDER.user_id)
    assert len(view.documents[DocumentType.REPRESENTATIVE_ID].files) == 2


def test_other_provider_cannot_upload_or_view(workflow):
    workflow.register_provider(PROVIDER)
    with pytest.raises(WorkflowPermissionError):
        workflow.add_document(
            OTHER_PROVIDER,
            PROVIDER.user_id,
            DocumentType.PORTFOLIO,
            filename="x.pdf",
            content=b"x",
            mime_type="application/pdf",
        )
    with pytest.raises(WorkflowNotFoundError, match="Provider not found"):
        workflow.get_status(CUSTOMER, PROVIDER.user_id)
    with pytest.raises(WorkflowNotFoundError, match="Provider not found"):
        workflow.get_status(OTHER_PROVIDER, PROVIDER.user_id)


@pytest.mark.parametrize("status_path", [[], ["approve"], ["reject"]])
def test_review_is_only_legal_while_pending(workflow, status_path):
    workflow.register_provider(PROVIDER)
    _upload(workflow)
    if status_path:
        workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
        workflow.review(ADMIN, PROVIDER.user_id, approved=status_path[0] == "approve", notes="decided")
    before = len(workflow.get_status(ADMIN, PROVIDER.user_id).history)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.review(ADMIN, PROVIDER.user_id, approved=True)
    assert len(workflow.get_status(ADMIN, PROVIDER.user_id).history) == before


def test_reject_requires_notes(workflow):
    workflow.register_provider(PROVIDER)
    _upload(workflow)
    workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    with pytest.raises(WorkflowValidationError):
        workflow.review(ADMIN, PROVIDER.user_id, approved=False, notes="   ")
    assert workflow.get_status(ADMIN, PROVIDER.user_id).verification_status == VerificationStatus.PENDING


def test_provider_cannot_review_own_account(workflow):
    workflow.register_provider(PROVIDER)
    _upload(workflow)
    workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    with pytest.raises(WorkflowPermissionError):
        workflow.review(PROVIDER, PROVIDER.user_id, approved=True)


def test_documents_locked_while_pending(workflow):
    workflow.register_provider(PROVIDER)
    view = _upload(workflow)
    file_id = view.documents[DocumentType.BUSINESS_REGISTRATION].files[0].id
    workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.delete_document(PROVIDER, PROVIDER.user_id, DocumentType.BUSINESS_REGISTRATION, file_id)
    with pytest.raises(WorkflowInvalidStateError):
        _upload(workflow)


def test_resubmit_after_rejection_resets_document_flags(workflow):
    workflow.register_provider(PROVIDER)
    _upload(workflow)
    workflow.submit_for_review(PROVIDER, PROVIDER.user_id)
    workflow.review(
        ADMIN,
        PROVIDER.user_id,
        approved=False,
        notes="Registration is blurry",
        document_review={DocumentType.BUSINESS_REGISTRATION: DocumentReviewDecision(verified=True, notes="ok copy")},
    )

    view = _upload(workflow, DocumentType.PORTFOLIO, mime_type="image/jpeg")
    assert view.verification_status == VerificationStatus.REJECTED
    assert len(view.documents[DocumentType.PORTFOLIO].files) == 1

    view = workflow.resubmit(PROVIDER, PROVIDER.user_id)
    bundle = view.documents[DocumentType.BUSINESS_REGISTRATION]
    assert len(view.documents[DocumentType.PORTFOLIO].files) == 1
    assert view.verification_status == VerificationStatus.PENDING
    assert bundle.verified is False
    assert bundle.notes == "ok copy"
    assert [entry.status for entry in view.history] == ["pending", "rejected", "pending"]
    assert view.history[1].notes == "Registration is blurry"


def test_delete_document_removes_blob(workflow, storage):
    workflow.register_provider(PROVIDER)
    view = _upload(workflow)
    stored = view.documents[DocumentType.BUSINESS_REGISTRATION].files[0]

    view = workflow.delete_document(PROVIDER, PROVIDER.user_id, "businessRegistration", stored.id)
    assert view.documents[DocumentType.BUSINESS_REGISTRATION].files == []
    assert not storage.exists(stored.storage_path)
    with pytest.raises(WorkflowNotFoundError):
        workflow.delete_document(PROVIDER, PROVIDER.user_id, "businessRegistration", stored.id)


def test_blob_delete_failure_is_logged_not_raised(tmp_path, caplog):
    storage = FailingDeleteStorage(root_dir=str(tmp_path / "uploads"))
    workflow = VerificationWorkflow(
        store=WorkflowStore(db_path=str(tmp_path / "failing.sqlite3")),
        storage=storage,
        clock=StepClock(),
    )
    workflow.register_provider(PROVIDER)
    view = _upload(workflow)
    file_id = view.documents[DocumentType.BUSINESS_REGISTRATION].files[0].id

    with caplog.at_level(logging.WARNING, logger="homeserve.services.verification_workflow"):
        view = workflow.delete_document(PROVIDER, PROVIDER.user_id, DocumentType.BUSINESS_REGISTRATION, file_id)
    assert view.documents[DocumentType.BUSINESS_REGISTRATION].files == []
    assert any("Blob cleanup failed" in record.getMessage() for record in caplog.records)


def test_set_provider_active_records_status_history(workflow):
    workflow.register_provider(PROVIDER)
    with pytest.raises(WorkflowPermissionError):
        workflow.set_provider_active(PROVIDER, PROVIDER.user_id, is_active=False)

    view = workflow.set_provider_active(ADMIN, PROVIDER.user_id, is_active=False, notes="Complaints under review")
    assert view.is_active is False
    assert view.status_notes == "Complaints under review"
    assert view.status_history[-1].status == "disabled"
    assert view.status_history[-1].reviewer == "admin_1"

    view = workflow.set_provider_active(ADMIN, PROVIDER.user_id, is_active=True)
    assert [entry.status for entry in view.status_history] == ["disabled", "active"]


def test_list_providers_filters_by_status(workflow):
    workflow.register_provider(PROVIDER)
    workflow.register_provider(OTHER_PROVIDER)
    _upload(workflow)
    workflow.submit_for_review(PROVIDER, PROVIDER.user_id)

    pending = workflow.list_providers(ADMIN, status=VerificationStatus.PENDING)
    assert [item.provider_id for item in pending] == ["prov_1"]
    assert pending[0].document_count == 1
    assert len(workflow.list_providers(ADMIN)) == 2
    with pytest.raises(WorkflowPermissionError):
        workflow.list_providers(PROVIDER)
