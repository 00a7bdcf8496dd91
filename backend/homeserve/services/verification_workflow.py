import logging
from datetime import datetime
from typing import Callable, List, Mapping, Optional, Protocol, Union
from uuid import uuid4

from homeserve.models import (
    Actor,
    ActorRole,
    AuditEntry,
    DocumentReviewDecision,
    DocumentType,
    FileRecord,
    ProviderSummary,
    ProviderVerificationView,
    VerificationStatus,
)
from homeserve.services.aggregates import ProviderAccount, utcnow
from homeserve.services.blob_storage import blob_storage
from homeserve.services.document_bundle import DOCUMENT_TYPE_CONFIG, parse_document_type
from homeserve.services.errors import (
    NoDocumentsSubmittedError,
    StorageFailureError,
    WorkflowInvalidStateError,
    WorkflowPermissionError,
)
from homeserve.services.permission_guard import (
    VERIFICATION_ENTITY,
    ensure_can_transition,
    ensure_can_view,
)
from homeserve.services.state_machine import StateMachine, TransitionRule
from homeserve.services.workflow_store import WorkflowStore, workflow_store

logger = logging.getLogger(__name__)

_PROVIDER = frozenset({ActorRole.PROVIDER})
_ADMIN = frozenset({ActorRole.ADMINISTRATOR})

VERIFICATION_MACHINE = StateMachine(
    VERIFICATION_ENTITY,
    [
        TransitionRule("submit", VerificationStatus.UNSUBMITTED.value, VerificationStatus.PENDING.value, _PROVIDER),
        TransitionRule("submit", VerificationStatus.REJECTED.value, VerificationStatus.PENDING.value, _PROVIDER),
        TransitionRule("resubmit", VerificationStatus.UNSUBMITTED.value, VerificationStatus.PENDING.value, _PROVIDER),
        TransitionRule("resubmit", VerificationStatus.REJECTED.value, VerificationStatus.PENDING.value, _PROVIDER),
        TransitionRule("approve", VerificationStatus.PENDING.value, VerificationStatus.VERIFIED.value, _ADMIN),
        TransitionRule(
            "reject",
            VerificationStatus.PENDING.value,
            VerificationStatus.REJECTED.value,
            _ADMIN,
            required_fields=("notes",),
        ),
    ],
)

SUBMITTED_NOTE = "Documents submitted for verification"
RESUBMITTED_NOTE = "Documents resubmitted after rejection"


class BlobStorage(Protocol):
    def store(self, *, owner_id: str, filename: str, content: bytes) -> str: ...

    def delete(self, storage_path: str) -> None: ...


def _clean(notes: Optional[str]) -> Optional[str]:
    if notes is None or not notes.strip():
        return None
    return notes.strip()


class VerificationWorkflow:
    def __init__(
        self,
        store: WorkflowStore,
        storage: BlobStorage,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._storage = storage
        self._clock = clock

    def register_provider(self, actor: Actor, display_name: str = "") -> ProviderVerificationView:
        account = ProviderAccount(
            provider_id=actor.user_id,
            display_name=display_name.strip() or actor.user_id,
            registered_at=self._clock(),
        )
        ensure_can_transition(actor, account, "register")
        with self._store.entity_lock(VERIFICATION_ENTITY, account.provider_id):
            self._store.insert_provider(account)
        logger.info("Registered provider %s", account.provider_id)
        return account.to_view()

    def get_status(self, actor: Actor, provider_id: str) -> ProviderVerificationView:
        account = self._store.load_provider(provider_id)
        ensure_can_view(actor, account)
        return account.to_view()

    def list_providers(self, actor: Actor, status: Optional[VerificationStatus] = None) -> List[ProviderSummary]:
        if actor.role != ActorRole.ADMINISTRATOR:
            raise WorkflowPermissionError("Only administrators can list providers")
        return [account.to_summary() for account in self._store.list_providers(status=status)]

    def add_document(
        self,
        actor: Actor,
        provider_id: str,
        doc_type: Union[DocumentType, str],
        *,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> ProviderVerificationView:
        doc_type = parse_document_type(doc_type) if not isinstance(doc_type, DocumentType) else doc_type
        config = DOCUMENT_TYPE_CONFIG[doc_type]
        with self._store.entity_lock(VERIFICATION_ENTITY, provider_id):
            account = self._store.load_provider(provider_id)
            ensure_can_transition(actor, account, "add_document")
            self._ensure_documents_editable(account)
            bundle = account.bundle(doc_type)
            bundle.check_upload(len(content), mime_type, config)

            storage_path = self._storage.store(owner_id=provider_id, filename=filename, content=content)
            record = FileRecord(
                id=f"doc_{uuid4().hex[:10]}",
                filename=filename,
                storage_path=storage_path,
                upload_date=self._clock(),
                size=len(content),
                mime_type=mime_type,
            )
            bundle.add_file(record, config)
            try:
                self._store.save_provider(account)
            except Exception:
                self._release_blob(storage_path)
                raise
        logger.info("Provider %s uploaded %s file %s", provider_id, doc_type.value, record.id)
        return account.to_view()

    def delete_document(
        self,
        actor: Actor,
        provider_id: str,
        doc_type: Union[DocumentType, str],
        file_id: str,
    ) -> ProviderVerificationView:
        doc_type = parse_document_type(doc_type) if not isinstance(doc_type, DocumentType) else doc_type
        with self._store.entity_lock(VERIFICATION_ENTITY, provider_id):
            account = self._store.load_provider(provider_id)
            ensure_can_transition(actor, account, "delete_document")
            self._ensure_documents_editable(account)
            removed = account.bundle(doc_type).remove_file(file_id)
            self._store.save_provider(account)
        # Metadata is authoritative once saved; blob cleanup happens after.
        self._release_blob(removed.storage_path)
        logger.info("Provider %s removed %s file %s", provider_id, doc_type.value, file_id)
        return account.to_view()

    def submit_for_review(self, actor: Actor, provider_id: str) -> ProviderVerificationView:
        return self._submit(actor, provider_id, "submit", SUBMITTED_NOTE)

    def resubmit(self, actor: Actor, provider_id: str) -> ProviderVerificationView:
        return self._submit(actor, provider_id, "resubmit", RESUBMITTED_NOTE)

    def review(
        self,
        actor: Actor,
        provider_id: str,
        *,
        approved: bool,
        notes: str = "",
        document_review: Optional[Mapping[Union[DocumentType, str], DocumentReviewDecision]] = None,
    ) -> ProviderVerificationView:
        transition = "approve" if approved else "reject"
        decisions = {
            (key if isinstance(key, DocumentType) else parse_document_type(key)): decision
            for key, decision in (document_review or {}).items()
        }
        with self._store.entity_lock(VERIFICATION_ENTITY, provider_id):
            account = self._store.load_provider(provider_id)
            rule = VERIFICATION_MACHINE.resolve(
                actor=actor,
                entity=account,
                transition=transition,
                fields={"notes": notes},
            )
            previous = account.verification_status
            self._apply(account, rule, reviewer=actor.user_id, notes=_clean(notes))
            for doc_type, decision in decisions.items():
                account.bundle(doc_type).mark_reviewed(decision.verified, decision.notes)
            self._store.save_provider(account)
        logger.info(
            "Provider %s verification %s -> %s by %s",
            provider_id,
            previous.value,
            account.verification_status.value,
            actor.user_id,
        )
        return account.to_view()

    def set_provider_active(
        self,
        actor: Actor,
        provider_id: str,
        *,
        is_active: bool,
        notes: str = "",
    ) -> ProviderVerificationView:
        with self._store.entity_lock(VERIFICATION_ENTITY, provider_id):
            account = self._store.load_provider(provider_id)
            ensure_can_transition(actor, account, "set_active")
            account.status_history.append(
                AuditEntry(
                    status="active" if is_active else "disabled",
                    date=self._clock(),
                    notes=_clean(notes),
                    reviewer=actor.user_id,
                )
            )
            account.is_active = is_active
            account.status_notes = _clean(notes)
            self._store.save_provider(account)
        logger.info("Provider %s %s by %s", provider_id, "enabled" if is_active else "disabled", actor.user_id)
        return account.to_view()

    def _submit(self, actor: Actor, provider_id: str, transition: str, note: str) -> ProviderVerificationView:
        with self._store.entity_lock(VERIFICATION_ENTITY, provider_id):
            account = self._store.load_provider(provider_id)
            rule = VERIFICATION_MACHINE.resolve(actor=actor, entity=account, transition=transition)
            if not account.has_documents():
                raise NoDocumentsSubmittedError("Upload at least one document before submitting for verification")
            if account.verification_status == VerificationStatus.REJECTED:
                # A fresh review starts from unverified bundles; reviewer notes stay visible.
                for bundle in account.documents.values():
                    bundle.clear_review()
            previous = account.verification_status
            self._apply(account, rule, reviewer=None, notes=note)
            self._store.save_provider(account)
        logger.info("Provider %s verification %s -> %s", provider_id, previous.value, account.verification_status.value)
        return account.to_view()

    def _apply(
        self,
        account: ProviderAccount,
        rule: TransitionRule,
        *,
        reviewer: Optional[str],
        notes: Optional[str],
    ) -> None:
        next_status = VerificationStatus(rule.to_state)
        # Append first: a clock-skew rejection must leave the status untouched.
        account.history.append(AuditEntry(status=next_status.value, date=self._clock(), notes=notes, reviewer=reviewer))
        account.verification_status = next_status

    def _ensure_documents_editable(self, account: ProviderAccount) -> None:
        if account.verification_status == VerificationStatus.PENDING:
            raise WorkflowInvalidStateError("Documents cannot be changed while verification is pending review")

    def _release_blob(self, storage_path: str) -> None:
        try:
            self._storage.delete(storage_path)
        except StorageFailureError:
            logger.warning("Blob cleanup failed for %s", storage_path, exc_info=True)


verification_workflow = VerificationWorkflow(store=workflow_store, storage=blob_storage)
