from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Dict, Optional

from homeserve.models import (
    Booking,
    BookingStatus,
    DocumentType,
    ProviderSummary,
    ProviderVerificationView,
    VerificationStatus,
)
from homeserve.services.audit_trail import AuditTrail
from homeserve.services.document_bundle import DocumentBundle
from homeserve.services.errors import WorkflowInvalidStateError
from homeserve.services.permission_guard import BOOKING_ENTITY, VERIFICATION_ENTITY


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _empty_bundles() -> Dict[DocumentType, DocumentBundle]:
    return {doc_type: DocumentBundle() for doc_type in DocumentType}


@dataclass
class ProviderAccount:
    entity_kind: ClassVar[str] = VERIFICATION_ENTITY

    provider_id: str
    display_name: str
    verification_status: VerificationStatus = VerificationStatus.UNSUBMITTED
    is_active: bool = True
    status_notes: Optional[str] = None
    documents: Dict[DocumentType, DocumentBundle] = field(default_factory=_empty_bundles)
    history: AuditTrail = field(default_factory=AuditTrail)
    status_history: AuditTrail = field(default_factory=AuditTrail)
    registered_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def status(self) -> VerificationStatus:
        return self.verification_status

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def bundle(self, doc_type: DocumentType) -> DocumentBundle:
        return self.documents.setdefault(doc_type, DocumentBundle())

    def has_documents(self) -> bool:
        return any(bundle.files for bundle in self.documents.values())

    def check_invariants(self) -> None:
        latest = self.history.latest()
        if latest is not None and latest.status != self.verification_status.value:
            raise WorkflowInvalidStateError(
                f"Verification history ends in {latest.status} but provider is {self.verification_status.value}"
            )
        latest_activity = self.status_history.latest()
        if latest_activity is not None and latest_activity.status != ("active" if self.is_active else "disabled"):
            raise WorkflowInvalidStateError("Provider status history is out of sync with is_active")

    def to_view(self) -> ProviderVerificationView:
        return ProviderVerificationView(
            provider_id=self.provider_id,
            display_name=self.display_name,
            verification_status=self.verification_status,
            is_active=self.is_active,
            status_notes=self.status_notes,
            documents={doc_type: self.bundle(doc_type).to_view() for doc_type in DocumentType},
            history=list(self.history.entries),
            status_history=list(self.status_history.entries),
            registered_at=self.registered_at,
        )

    def to_summary(self) -> ProviderSummary:
        last_review = next(
            (entry for entry in reversed(self.history.entries) if entry.reviewer is not None),
            None,
        )
        return ProviderSummary(
            provider_id=self.provider_id,
            display_name=self.display_name,
            verification_status=self.verification_status,
            is_active=self.is_active,
            document_count=sum(len(bundle.files) for bundle in self.documents.values()),
            last_reviewed_at=last_review.date if last_review else None,
        )


@dataclass
class BookingRecord:
    entity_kind: ClassVar[str] = BOOKING_ENTITY

    id: str
    service_id: str
    customer_id: str
    provider_id: str
    date: str
    time: str
    location: str
    notes: str = ""
    status: BookingStatus = BookingStatus.PENDING
    history: AuditTrail = field(default_factory=AuditTrail)
    created_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def check_invariants(self) -> None:
        latest = self.history.latest()
        if latest is None:
            raise WorkflowInvalidStateError("Booking has no status history")
        if latest.status != self.status.value:
            raise WorkflowInvalidStateError(
                f"Booking history ends in {latest.status} but booking is {self.status.value}"
            )

    def to_view(self) -> Booking:
        return Booking(
            id=self.id,
            service_id=self.service_id,
            customer_id=self.customer_id,
            provider_id=self.provider_id,
            date=self.date,
            time=self.time,
            location=self.location,
            notes=self.notes,
            status=self.status,
            status_history=list(self.history.entries),
            created_at=self.created_at,
        )
